# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Platform Context — Singleton that holds all core component references.

Initialized at startup, injected into API routes via FastAPI Depends.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantry.core.config import settings
from tenantry.core.metrics import platform_metrics
from tenantry.kernel.bus import InvalidationBus, InvalidationListener
from tenantry.kernel.directory import TenantDirectory
from tenantry.kernel.guards import AccessGuard
from tenantry.memory.cache import ScopedCache
from tenantry.memory.membership import MembershipContext
from tenantry.memory.selection import SelectionStore
from tenantry.storage.repositories import (
    MembershipRepository,
    PrincipalRepository,
    TenantRepository,
)

logger = logging.getLogger("tenantry.context")


class PlatformContext:
    """
    Holds all runtime references for the platform.
    Created once at startup, used by all API handlers.

    Membership contexts are kept per principal so the active tenant and
    resolution tokens survive across requests of the same session. At
    most `context_limit` are held; the least recently used is dropped
    and rebuilt on its next request from the selection persisted in
    Redis.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        tenants=None,
        memberships=None,
        principals=None,
        context_limit: Optional[int] = None,
    ) -> None:
        self.redis = redis
        self.cache = ScopedCache(redis)
        self.selection = SelectionStore(redis)
        self.bus = InvalidationBus(redis)
        self.listener = InvalidationListener(self.cache)
        self.tenants = tenants or TenantRepository(session_factory)
        self.memberships = memberships or MembershipRepository(session_factory)
        self.principals = principals or PrincipalRepository(session_factory)
        self.directory = TenantDirectory(self.tenants, self.cache)
        self.context_limit = context_limit if context_limit is not None else settings.MEMBERSHIP_CONTEXT_LIMIT
        self._contexts: OrderedDict[str, MembershipContext] = OrderedDict()

    def get_guard(self) -> AccessGuard:
        return AccessGuard(
            directory=self.directory,
            memberships=self.memberships,
            principals=self.principals,
            cache=self.cache,
            selection=self.selection,
        )

    def get_membership_context(self, principal_id: str) -> MembershipContext:
        """Session-scoped context for a principal (created on first use)."""
        context = self._contexts.get(principal_id)
        if context is not None:
            self._contexts.move_to_end(principal_id)
            return context

        context = MembershipContext(principal_id, self.memberships, self.cache, self.selection)
        self._contexts[principal_id] = context
        while len(self._contexts) > self.context_limit:
            evicted, _ = self._contexts.popitem(last=False)
            platform_metrics.inc("membership:context_evicted")
            logger.debug("Dropped idle membership context", extra={"principal_id": evicted})
        return context

    @property
    def context_count(self) -> int:
        return len(self._contexts)

    async def start_listener(self) -> None:
        """Apply invalidation hints from other processes."""
        await self.bus.subscribe(self.listener)
        logger.info("Invalidation listener subscribed")

    async def close(self) -> None:
        await self.bus.close()
        self._contexts.clear()


# ── Singleton ───────────────────────────────────────────────

_ctx: Optional[PlatformContext] = None


def init_platform_context(
    redis: aioredis.Redis,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    **sources,
) -> PlatformContext:
    global _ctx
    _ctx = PlatformContext(redis, session_factory, **sources)
    return _ctx


def get_platform_context() -> PlatformContext:
    if _ctx is None:
        raise RuntimeError("PlatformContext not initialized. Call init_platform_context() first.")
    return _ctx
