# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Observability API — Metrics and health check.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from tenantry.core.context import get_platform_context
from tenantry.core.metrics import platform_metrics
from tenantry.kernel.redis_client import REDIS_TRANSIENT_ERRORS

logger = logging.getLogger("tenantry.api")

router = APIRouter(tags=["observability"])


@router.get("/health")
async def health_check():
    """Health check with Redis status."""
    ctx = get_platform_context()
    try:
        await ctx.redis.ping()
        redis_status = "connected"
    except REDIS_TRANSIENT_ERRORS as exc:
        logger.warning("Health check: redis unreachable: %s", exc)
        redis_status = "unreachable"
    return {
        "status": "ok" if redis_status == "connected" else "degraded",
        "version": "0.1.0",
        "redis": redis_status,
        "metrics": platform_metrics.snapshot(),
    }


@router.get("/api/metrics")
async def get_metrics():
    """Return current platform metrics."""
    return platform_metrics.snapshot()
