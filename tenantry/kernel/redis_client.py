# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Redis Connection Factory — Shared async pool for the query cache,
persisted tenant selections and the invalidation channel.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry
from redis.exceptions import (
    ConnectionError,
    TimeoutError,
    BusyLoadingError,
)

from tenantry.core.config import settings

_pool: Optional[aioredis.Redis] = None

_RETRY = Retry(ExponentialBackoff(cap=2, base=0.1), retries=3)
_RETRY_ERRORS = [ConnectionError, TimeoutError, BusyLoadingError, OSError]

# Errors the guard layer reports as transient (fail closed, never allow)
REDIS_TRANSIENT_ERRORS = (ConnectionError, TimeoutError, BusyLoadingError, OSError)


async def get_redis_pool() -> aioredis.Redis:
    """
    Return the singleton async Redis client.

    Reads the URL from TenantrySettings. Stale pool connections are
    retried with exponential backoff before an error surfaces.
    """
    global _pool
    if _pool is None:
        _pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=50,
            health_check_interval=15,
            retry_on_error=_RETRY_ERRORS,
            retry=_RETRY,
            socket_connect_timeout=5,
            socket_timeout=5,
            client_name="tenantry",
        )
    return _pool


async def close_redis_pool() -> None:
    """Gracefully close the Redis connection pool."""
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None


def inject_redis_for_test(redis_instance: aioredis.Redis) -> None:
    """Inject a fake/mock Redis instance (for testing only)."""
    global _pool
    _pool = redis_instance
