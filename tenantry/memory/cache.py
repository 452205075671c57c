# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Scoped Cache — Redis-backed query cache keyed by the namespace convention.

Only typed keys (CacheKey / PrincipalKey / DirectoryKey) can be written,
so every tenant-specific entry carries its tenant id. Each entry is a
Redis hash:

    value       JSON-encoded payload
    fetched_at  unix timestamp of the fetch

Entries older than `stale_after` are refetched by get_or_fetch; `ttl`
bounds how long Redis keeps them at all.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis

from tenantry.core.config import settings
from tenantry.core.metrics import platform_metrics
from tenantry.kernel.namespace import (
    AnyKey,
    KeyClass,
    LEGACY_RESOURCES,
    classify_key,
    is_tenant_scoped,
    parse_tenant_key,
    resource_patterns,
    tenant_pattern,
)

logger = logging.getLogger("tenantry.cache")

VALUE_FIELD = "value"
FETCHED_AT_FIELD = "fetched_at"


@dataclass
class CacheEntry:
    key: str
    value: Any
    fetched_at: float

    def is_stale(self, stale_after: float, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - self.fetched_at >= stale_after


class ScopedCache:
    """
    Query cache whose keys always follow the tenant namespace convention.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        ttl: Optional[int] = None,
        stale_after: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._ttl = ttl if ttl is not None else settings.CACHE_TTL
        self._stale_after = stale_after if stale_after is not None else settings.CACHE_STALE_AFTER
        self._clock = clock

    # ── Read / Write ────────────────────────────────────────────

    async def get(self, key: AnyKey) -> Optional[CacheEntry]:
        """Return the entry for a key, or None if absent or unreadable."""
        raw_key = key.render()
        raw = await self._redis.hgetall(raw_key)
        if not raw:
            return None
        try:
            return CacheEntry(
                key=raw_key,
                value=json.loads(raw[VALUE_FIELD]),
                fetched_at=float(raw[FETCHED_AT_FIELD]),
            )
        except (KeyError, ValueError, TypeError):
            logger.warning("Dropping unreadable cache entry %s", raw_key)
            await self._redis.delete(raw_key)
            return None

    async def set(self, key: AnyKey, value: Any) -> None:
        raw_key = key.render()
        await self._redis.hset(raw_key, mapping={
            VALUE_FIELD: json.dumps(value, ensure_ascii=False),
            FETCHED_AT_FIELD: repr(self._clock()),
        })
        await self._redis.expire(raw_key, self._ttl)

    async def get_or_fetch(
        self,
        key: AnyKey,
        fetch: Callable[[], Awaitable[Any]],
        cache_none: bool = False,
        keep: Optional[Callable[[], bool]] = None,
    ) -> Any:
        """
        Return a fresh cached value, or call `fetch` and cache its result.

        Exceptions from `fetch` propagate and nothing is written. If `keep`
        is given and returns False once the fetch settles, the result is
        returned but not stored.
        """
        entry = await self.get(key)
        if entry is not None and not entry.is_stale(self._stale_after, self._clock()):
            platform_metrics.inc("cache:hit")
            return entry.value

        platform_metrics.inc("cache:miss")
        value = await fetch()
        if keep is not None and not keep():
            return value
        if value is not None or cache_none:
            await self.set(key, value)
        return value

    async def delete(self, *keys: AnyKey) -> int:
        if not keys:
            return 0
        removed = await self._redis.delete(*(k.render() for k in keys))
        platform_metrics.inc("cache:invalidated", removed)
        return removed

    # ── Invalidation ────────────────────────────────────────────

    async def _delete_matching(self, pattern: str) -> int:
        batch = [key async for key in self._redis.scan_iter(match=pattern)]
        if not batch:
            return 0
        return await self._redis.delete(*batch)

    async def invalidate_tenant(self, tenant_id: str) -> int:
        """Remove every entry keyed to a tenant. Returns the number removed."""
        removed = await self._delete_matching(tenant_pattern(tenant_id))
        platform_metrics.inc("cache:invalidated", removed)
        logger.info(
            "Invalidated %d cache entries", removed,
            extra={"tenant_id": tenant_id},
        )
        return removed

    async def invalidate_principal_entries(self, tenant_id: str, principal_id: str) -> int:
        """
        Remove one tenant's entries that are parameterized by a principal
        (role, profile and similar). Shared tenant data is left alone.
        """
        batch = [
            key async for key in self._redis.scan_iter(match=tenant_pattern(tenant_id))
            if is_tenant_scoped(key) and principal_id in parse_tenant_key(key).params
        ]
        removed = await self._redis.delete(*batch) if batch else 0
        platform_metrics.inc("cache:invalidated", removed)
        logger.debug(
            "Invalidated %d principal entries", removed,
            extra={"tenant_id": tenant_id, "principal_id": principal_id},
        )
        return removed

    async def invalidate_resource(self, tenant_id: str, resource: str) -> int:
        """Remove a resource's entries (all parameter variants) for one tenant."""
        bare, variants = resource_patterns(tenant_id, resource)
        removed = await self._redis.delete(bare)
        removed += await self._delete_matching(variants)
        platform_metrics.inc("cache:invalidated", removed)
        return removed

    async def evict_legacy_keys(self, match: str = "*") -> int:
        """
        Delete every key in the cache keyspace that does not follow the
        namespace convention. Such keys cannot be proven tenant-safe.
        """
        suspects = [
            key async for key in self._redis.scan_iter(match=match)
            if classify_key(key) == KeyClass.LEGACY
        ]
        if not suspects:
            return 0
        known = sum(1 for key in suspects if key.split(":", 1)[0] in LEGACY_RESOURCES)
        removed = await self._redis.delete(*suspects)
        platform_metrics.inc("cache:legacy_evicted", removed)
        logger.warning(
            "Evicted %d unscoped cache keys (%d known legacy resources)",
            removed, known,
        )
        return removed
