# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Selection Store — Persisted active-tenant choice per principal.

Redis key: tenantry:principal:{principal_id}:selection (no TTL, so the
choice survives across sessions).
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis

from tenantry.kernel.namespace import PrincipalKey

logger = logging.getLogger("tenantry.selection")


class SelectionStore:
    """Reads and writes a principal's preferred tenant."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    @staticmethod
    def _key(principal_id: str) -> str:
        return PrincipalKey("selection", principal_id).render()

    async def load(self, principal_id: str) -> Optional[str]:
        return await self._redis.get(self._key(principal_id))

    async def save(self, principal_id: str, tenant_id: str) -> None:
        await self._redis.set(self._key(principal_id), tenant_id)
        logger.debug(
            "Persisted tenant selection",
            extra={"principal_id": principal_id, "tenant_id": tenant_id},
        )

    async def clear(self, principal_id: str) -> None:
        await self._redis.delete(self._key(principal_id))
