# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Memberships API — The caller's tenants and the active selection.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tenantry.api.deps import get_authenticated_caller
from tenantry.core.context import PlatformContext, get_platform_context
from tenantry.core.tenant import CallerContext
from tenantry.kernel.resolver import resolve_host
from tenantry.memory.membership import MembershipContext
from tenantry.protocols import events
from tenantry.protocols.schema import InvalidationEvent

router = APIRouter(prefix="/memberships", tags=["memberships"])


class SwitchRequest(BaseModel):
    tenant_id: str


class ProvisionRequest(BaseModel):
    tenant_id: str


async def _resolved_context(ctx: PlatformContext, caller: CallerContext) -> MembershipContext:
    context = ctx.get_membership_context(caller.principal_id)
    host_tenant = await ctx.directory.lookup(candidate=resolve_host(caller.host))
    await context.resolve(host_tenant.id if host_tenant else None)
    return context


def _context_view(context: MembershipContext) -> dict:
    return {
        "state": context.state.value,
        "active_tenant_id": context.active_tenant_id,
        "needs_selection": context.needs_selection,
        "memberships": [m.model_dump(mode="json") for m in context.offered_memberships],
    }


@router.get("")
async def list_memberships(caller: CallerContext = Depends(get_authenticated_caller)):
    """Memberships offered on this host, the context state and the active tenant."""
    ctx = get_platform_context()
    context = await _resolved_context(ctx, caller)
    return _context_view(context)


@router.post("/active")
async def switch_active_tenant(
    req: SwitchRequest,
    caller: CallerContext = Depends(get_authenticated_caller),
):
    """Switch the active tenant. 403 if the caller is not a member."""
    ctx = get_platform_context()
    context = ctx.get_membership_context(caller.principal_id)
    if not context.is_settled:
        context = await _resolved_context(ctx, caller)
    previous: Optional[str] = context.active_tenant_id
    switched = await context.switch_to_tenant(req.tenant_id)
    if switched and previous:
        await ctx.bus.publish(InvalidationEvent(
            type=events.TENANT_SWITCHED,
            source="api.memberships",
            principal_id=caller.principal_id,
            tenant_id=previous,
        ))
    return {"active_tenant_id": context.active_tenant_id, "switched": switched}


@router.post("", status_code=201)
async def provision_membership(
    req: ProvisionRequest,
    caller: CallerContext = Depends(get_authenticated_caller),
):
    """Join a tenant as a member (idempotent for an active membership, 403 for a deactivated one)."""
    ctx = get_platform_context()
    await ctx.directory.get(req.tenant_id)
    context = ctx.get_membership_context(caller.principal_id)
    membership = await context.create_membership_for_tenant(req.tenant_id)
    await ctx.bus.publish(InvalidationEvent(
        type=events.MEMBERSHIP_CHANGED,
        source="api.memberships",
        principal_id=caller.principal_id,
        tenant_id=req.tenant_id,
    ))
    return {"membership": membership.model_dump(mode="json"), **_context_view(context)}
