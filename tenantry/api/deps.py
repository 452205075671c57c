# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
API Dependencies — FastAPI dependency injection.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from tenantry.api.errors import UnauthenticatedError
from tenantry.core.tenant import CallerContext


def _principal_from_headers(authorization: Optional[str], x_principal_id: Optional[str]) -> Optional[str]:
    principal_id = (x_principal_id or "").strip() or None
    if not principal_id and authorization:
        # Bearer <principal_id>; token verification belongs to the auth backend
        parts = authorization.split(" ")
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1]:
            principal_id = parts[1]
    return principal_id


async def get_caller(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    x_principal_id: Optional[str] = Header(None, alias="X-Principal-Id"),
    x_forwarded_host: Optional[str] = Header(None, alias="X-Forwarded-Host"),
    host: Optional[str] = Header(None, alias="Host"),
) -> CallerContext:
    """
    Extract caller identity and addressed host.

    Headers:
      - X-Principal-Id: authenticated principal (optional)
      - Authorization:  fallback principal identification
      - X-Forwarded-Host / Host: the host the client addressed
    """
    forwarded = (x_forwarded_host or "").split(",")[0].strip()
    return CallerContext(
        principal_id=_principal_from_headers(authorization, x_principal_id),
        host=forwarded or host,
        trace_id=getattr(request.state, "trace_id", None),
    )


async def get_authenticated_caller(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    x_principal_id: Optional[str] = Header(None, alias="X-Principal-Id"),
    x_forwarded_host: Optional[str] = Header(None, alias="X-Forwarded-Host"),
    host: Optional[str] = Header(None, alias="Host"),
) -> CallerContext:
    """Like get_caller, but rejects anonymous requests with 401."""
    caller = await get_caller(request, authorization, x_principal_id, x_forwarded_host, host)
    if not caller.is_authenticated:
        raise UnauthenticatedError(trace_id=caller.trace_id)
    return caller
