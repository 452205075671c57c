# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Tenantry Application Entry Point.

FastAPI app with lifespan, middleware and all API routers.

    uvicorn tenantry.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tenantry.api.access import router as access_router
from tenantry.api.errors import APIError, api_error_handler, tenantry_error_handler
from tenantry.api.memberships import router as memberships_router
from tenantry.api.middleware import TraceMiddleware
from tenantry.api.observability import router as observability_router
from tenantry.api.tenants import router as tenants_router
from tenantry.core.config import settings
from tenantry.core.context import init_platform_context
from tenantry.core.errors import TenantryError
from tenantry.core.logging import setup_logging
from tenantry.kernel.redis_client import close_redis_pool, get_redis_pool
from tenantry.storage.database import close_db, create_all_tables, get_session_factory, init_db

logger = logging.getLogger("tenantry.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup/shutdown of platform resources."""
    # Startup
    setup_logging(settings.LOG_LEVEL)
    redis = await get_redis_pool()
    await init_db()
    if settings.TENANTRY_ENV == "dev":
        await create_all_tables()
    ctx = init_platform_context(redis, get_session_factory())
    evicted = 0
    if settings.CACHE_EVICT_LEGACY_ON_STARTUP:
        evicted = await ctx.cache.evict_legacy_keys()
    await ctx.start_listener()
    logger.info("[Tenantry] Platform ready (base=%s, evicted %d legacy keys)", settings.BASE_DOMAIN, evicted)
    yield
    # Shutdown
    await ctx.close()
    await close_db()
    await close_redis_pool()
    logger.info("[Tenantry] Shutdown complete")


app = FastAPI(
    title="Tenantry",
    description="Tenant resolution and tenant-scoped cache layer",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(TraceMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Error Handlers ──────────────────────────────────────────
app.add_exception_handler(APIError, api_error_handler)
app.add_exception_handler(TenantryError, tenantry_error_handler)

# ── Routes ──────────────────────────────────────────────────
app.include_router(access_router, prefix="/api")
app.include_router(tenants_router, prefix="/api")
app.include_router(memberships_router, prefix="/api")
app.include_router(observability_router)
