# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Access API — Guard decision for the caller on the addressed host.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from tenantry.api.deps import get_caller
from tenantry.core.context import get_platform_context
from tenantry.core.tenant import CallerContext

router = APIRouter(tags=["access"])


@router.get("/access")
async def get_access_decision(
    path: str = Query("/"),
    caller: CallerContext = Depends(get_caller),
):
    """
    Evaluate the access guards.

    Always 200: the decision itself (allow, redirect, maintenance, ...)
    is the payload.
    """
    ctx = get_platform_context()
    guard = ctx.get_guard()
    context = ctx.get_membership_context(caller.principal_id) if caller.principal_id else None
    decision = await guard.evaluate(caller.host, path, caller.principal_id, context)
    return decision.to_dict()
