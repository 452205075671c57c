# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Tenant Directory — Resolve a tenant signal to a Tenant record.

Signals are tried in one fixed priority order:

    1. explicit tenant id (active selection)
    2. verified custom domain
    3. subdomain

Only the highest-priority signal present is consulted. If it matches
nothing the lookup fails closed with TenantNotFoundError; it never falls
through to a lower-priority signal that might name a different tenant.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError

from tenantry.core.errors import TenantNotFoundError
from tenantry.kernel.namespace import DirectoryKey
from tenantry.memory.cache import ScopedCache
from tenantry.protocols.schema import HostCandidate, Tenant

logger = logging.getLogger("tenantry.directory")

SIGNAL_PRIORITY = ("id", "custom_domain", "subdomain")


def candidate_signals(
    tenant_id: Optional[str] = None,
    candidate: Optional[HostCandidate] = None,
) -> List[Tuple[str, str]]:
    """Present signals as (signal, literal) pairs, highest priority first."""
    present = {
        "id": tenant_id,
        "custom_domain": candidate.custom_domain if candidate else None,
        "subdomain": candidate.subdomain if candidate else None,
    }
    return [(signal, present[signal]) for signal in SIGNAL_PRIORITY if present[signal]]


class TenantDirectory:
    """
    Tenant lookups over a backend source, with an optional query cache.

    The source is any object with async `by_id`, `by_subdomain` and
    `by_custom_domain` methods, each doing an exact-equality query and
    returning a Tenant or None (see storage.repositories.TenantRepository).
    """

    def __init__(self, source, cache: Optional[ScopedCache] = None) -> None:
        self._source = source
        self._cache = cache

    async def lookup(
        self,
        tenant_id: Optional[str] = None,
        candidate: Optional[HostCandidate] = None,
    ) -> Optional[Tenant]:
        """
        Resolve the highest-priority signal.

        Returns None when no signal is present at all.
        Raises TenantNotFoundError when a present signal matches nothing.
        """
        signals = candidate_signals(tenant_id, candidate)
        if not signals:
            return None

        signal, literal = signals[0]
        tenant = await self._fetch(signal, literal)
        if tenant is None:
            logger.info("Tenant lookup failed: %s=%r", signal, literal)
            raise TenantNotFoundError(signal, literal)
        return tenant

    async def get(self, tenant_id: str) -> Tenant:
        """Lookup by primary key only."""
        return await self.lookup(tenant_id=tenant_id)

    async def _fetch(self, signal: str, literal: str) -> Optional[Tenant]:
        key = DirectoryKey(signal, literal)
        if self._cache is not None:
            entry = await self._cache.get(key)
            if entry is not None:
                try:
                    return self._accept(signal, Tenant.model_validate(entry.value))
                except ValidationError:
                    logger.warning("Discarding malformed cached tenant for %s", key)
                    await self._cache.delete(key)

        tenant = await self._query(signal, literal)
        tenant = self._accept(signal, tenant)
        if tenant is not None and self._cache is not None:
            await self._cache.set(key, tenant.model_dump(mode="json"))
        return tenant

    async def _query(self, signal: str, literal: str) -> Optional[Tenant]:
        if signal == "id":
            return await self._source.by_id(literal)
        if signal == "custom_domain":
            return await self._source.by_custom_domain(literal)
        return await self._source.by_subdomain(literal)

    @staticmethod
    def _accept(signal: str, tenant: Optional[Tenant]) -> Optional[Tenant]:
        """Apply the fail-closed rules to a fetched record."""
        if tenant is None or not tenant.is_active:
            return None
        if signal == "custom_domain" and not tenant.has_verified_custom_domain:
            return None
        return tenant

    async def forget(self, *tenants: Tenant) -> int:
        """Drop cached lookups for every routing identifier of the given records."""
        if self._cache is None:
            return 0
        keys = []
        for tenant in tenants:
            keys.append(DirectoryKey("id", tenant.id))
            if tenant.subdomain:
                keys.append(DirectoryKey("subdomain", tenant.subdomain))
            if tenant.custom_domain:
                keys.append(DirectoryKey("custom_domain", tenant.custom_domain))
        return await self._cache.delete(*keys)
