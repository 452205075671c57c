# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
API Error Handling — Unified error structure.

Domain errors from tenantry.core.errors are mapped onto the same
envelope as APIError: {code, message, trace_id, details}.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from tenantry.core.errors import (
    CustomDomainError,
    InvalidCacheKeyError,
    InvalidTransitionError,
    NoActiveTenantError,
    PrincipalSuspendedError,
    StaleResultError,
    TenantAccessDeniedError,
    TenantNotFoundError,
    TenantryError,
    TransientFetchError,
)

logger = logging.getLogger("tenantry.api")


class APIError(Exception):
    """Base API error with structured response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.trace_id = trace_id
        super().__init__(message)


class UnauthenticatedError(APIError):
    def __init__(self, trace_id: str = None):
        super().__init__(
            code="UNAUTHENTICATED",
            message="Missing principal identification",
            status_code=401,
            trace_id=trace_id,
        )


class InsufficientRoleError(APIError):
    def __init__(self, trace_id: str = None):
        super().__init__(
            code="INSUFFICIENT_ROLE",
            message="This action requires the owner or admin role",
            status_code=403,
            trace_id=trace_id,
        )


def _trace_id(request: Request, explicit: Optional[str] = None) -> str:
    return explicit or getattr(request.state, "trace_id", None) or str(uuid.uuid4())


def _envelope(status_code: int, code: str, message: str, trace_id: str, details: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "code": code,
            "message": message,
            "trace_id": trace_id,
            "details": details,
        },
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Global exception handler for APIError."""
    return _envelope(exc.status_code, exc.code, exc.message, _trace_id(request, exc.trace_id), exc.details)


# ── Domain error mapping ────────────────────────────────────

_DOMAIN_ERRORS: Tuple[Tuple[type, int, str], ...] = (
    (TenantNotFoundError, 404, "TENANT_NOT_FOUND"),
    (TenantAccessDeniedError, 403, "ACCESS_DENIED"),
    (PrincipalSuspendedError, 403, "SUSPENDED"),
    (TransientFetchError, 503, "UNAVAILABLE"),
    (NoActiveTenantError, 409, "NO_ACTIVE_TENANT"),
    (StaleResultError, 409, "STALE_RESULT"),
    (InvalidTransitionError, 409, "INVALID_TRANSITION"),
    (CustomDomainError, 422, "INVALID_CUSTOM_DOMAIN"),
    (InvalidCacheKeyError, 400, "INVALID_KEY"),
)


def _details(exc: TenantryError) -> Dict[str, Any]:
    if isinstance(exc, TenantNotFoundError):
        return {"signal": exc.signal, "identifier": exc.identifier}
    # Access denials never reveal which tenant was asked for
    return {}


async def tenantry_error_handler(request: Request, exc: TenantryError) -> JSONResponse:
    """Global exception handler for domain errors."""
    status_code, code = 500, "INTERNAL_ERROR"
    for exc_type, status, name in _DOMAIN_ERRORS:
        if isinstance(exc, exc_type):
            status_code, code = status, name
            break
    trace_id = _trace_id(request)
    message = str(exc)
    if isinstance(exc, TransientFetchError):
        message = "Service temporarily unavailable"
    logger.info(
        "[api] %s -> %d %s", request.url.path, status_code, code,
        extra={"trace_id": trace_id},
    )
    return _envelope(status_code, code, message, trace_id, _details(exc))
