# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Tenants API — Host resolution and tenant administration.

Every administrative route requires an active owner/admin membership in
the target tenant. Each mutation invalidates synchronously, then
publishes a hint for other processes.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tenantry.api.deps import get_authenticated_caller, get_caller
from tenantry.api.errors import InsufficientRoleError
from tenantry.core.config import settings
from tenantry.core.context import PlatformContext, get_platform_context
from tenantry.core.errors import CustomDomainError, PrincipalSuspendedError, TenantAccessDeniedError
from tenantry.core.tenant import CallerContext
from tenantry.kernel.resolver import resolve_host, tenant_url
from tenantry.memory.membership import invalidate_principal_access
from tenantry.protocols import events
from tenantry.protocols.schema import InvalidationEvent, Role, Tenant

logger = logging.getLogger("tenantry.api.tenants")

router = APIRouter(prefix="/tenants", tags=["tenants"])


class CustomDomainRequest(BaseModel):
    domain: str


class MaintenanceRequest(BaseModel):
    enabled: bool


class FeaturesRequest(BaseModel):
    features: Dict[str, bool]


class MemberUpdateRequest(BaseModel):
    role: Optional[Role] = None
    is_active: Optional[bool] = None


def _identifiers(*tenants: Optional[Tenant]) -> Dict[str, str]:
    found: Dict[str, str] = {}
    for tenant in tenants:
        if tenant is None:
            continue
        if tenant.subdomain:
            found.setdefault("subdomain", tenant.subdomain)
        if tenant.custom_domain:
            found.setdefault("custom_domain", tenant.custom_domain)
    return found


async def _require_privileged(ctx: PlatformContext, caller: CallerContext, tenant_id: str) -> Tenant:
    """
    Owner/admin gate for administrative routes.

    Membership is checked before the tenant is loaded, so an unknown
    tenant id and a tenant the caller does not belong to get the same
    ACCESS_DENIED answer.
    """
    if not await ctx.get_guard().principal_active(caller.principal_id):
        raise PrincipalSuspendedError(caller.principal_id)
    role = await ctx.memberships.get_role(caller.principal_id, tenant_id)
    tenant = await ctx.tenants.by_id(tenant_id) if role is not None else None
    if tenant is None:
        raise TenantAccessDeniedError(caller.principal_id, tenant_id)
    if not role.is_privileged:
        raise InsufficientRoleError(trace_id=caller.trace_id)
    return tenant


async def _tenant_changed(
    ctx: PlatformContext,
    before: Tenant,
    after: Optional[Tenant],
    event_type: str,
    caller: CallerContext,
) -> None:
    """Invalidate every cached view of a tenant record, then publish the hint."""
    await ctx.directory.forget(*(t for t in (before, after) if t is not None))
    await ctx.cache.invalidate_resource(before.id, "company")
    await ctx.cache.invalidate_resource(before.id, "company-features")
    await ctx.bus.publish(InvalidationEvent(
        type=event_type,
        source="api.tenants",
        tenant_id=before.id,
        principal_id=caller.principal_id,
        identifiers=_identifiers(before, after),
    ))


def _tenant_view(tenant: Tenant) -> dict:
    data = tenant.model_dump(mode="json")
    data["url"] = tenant_url(tenant)
    return data


# ── Resolution ──────────────────────────────────────────────

@router.get("/current")
async def get_current_tenant(caller: CallerContext = Depends(get_caller)):
    """Resolve the addressed host to a tenant (404 if a candidate matches nothing)."""
    ctx = get_platform_context()
    candidate = resolve_host(caller.host)
    tenant = await ctx.directory.lookup(candidate=candidate)
    return {
        "host": caller.host,
        "candidate": candidate.model_dump(),
        "tenant": _tenant_view(tenant) if tenant else None,
    }


# ── Custom domain ───────────────────────────────────────────

@router.put("/{tenant_id}/custom-domain")
async def set_custom_domain(
    tenant_id: str,
    req: CustomDomainRequest,
    caller: CallerContext = Depends(get_authenticated_caller),
):
    """Claim a custom domain; it stays pending until verified."""
    ctx = get_platform_context()
    before = await _require_privileged(ctx, caller, tenant_id)
    after = await ctx.tenants.set_custom_domain(tenant_id, req.domain)
    await _tenant_changed(ctx, before, after, events.CUSTOM_DOMAIN_CHANGED, caller)
    return _tenant_view(after)


@router.post("/{tenant_id}/custom-domain/verify")
async def verify_custom_domain(
    tenant_id: str,
    caller: CallerContext = Depends(get_authenticated_caller),
):
    ctx = get_platform_context()
    before = await _require_privileged(ctx, caller, tenant_id)
    after = await ctx.tenants.verify_custom_domain(tenant_id)
    await _tenant_changed(ctx, before, after, events.CUSTOM_DOMAIN_CHANGED, caller)
    return _tenant_view(after)


@router.delete("/{tenant_id}/custom-domain")
async def remove_custom_domain(
    tenant_id: str,
    caller: CallerContext = Depends(get_authenticated_caller),
):
    ctx = get_platform_context()
    before = await _require_privileged(ctx, caller, tenant_id)
    after = await ctx.tenants.remove_custom_domain(tenant_id)
    await _tenant_changed(ctx, before, after, events.CUSTOM_DOMAIN_CHANGED, caller)
    return _tenant_view(after)


@router.get("/{tenant_id}/custom-domain/dns-records")
async def get_dns_records(
    tenant_id: str,
    caller: CallerContext = Depends(get_authenticated_caller),
):
    """DNS records the tenant must publish before verification."""
    ctx = get_platform_context()
    tenant = await _require_privileged(ctx, caller, tenant_id)
    if not tenant.custom_domain:
        raise CustomDomainError("No custom domain configured")
    return {
        "domain": tenant.custom_domain,
        "status": tenant.custom_domain_status.value if tenant.custom_domain_status else None,
        "records": [
            {"type": "A", "name": "@", "value": settings.DNS_A_RECORD},
            {"type": "CNAME", "name": "www", "value": tenant.custom_domain},
        ],
    }


# ── Settings ────────────────────────────────────────────────

@router.put("/{tenant_id}/maintenance")
async def set_maintenance(
    tenant_id: str,
    req: MaintenanceRequest,
    caller: CallerContext = Depends(get_authenticated_caller),
):
    ctx = get_platform_context()
    before = await _require_privileged(ctx, caller, tenant_id)
    after = await ctx.tenants.set_maintenance(tenant_id, req.enabled)
    await _tenant_changed(ctx, before, after, events.TENANT_UPDATED, caller)
    logger.info(
        "Maintenance mode %s", "on" if req.enabled else "off",
        extra={**caller.log_extra(), "tenant_id": tenant_id},
    )
    return _tenant_view(after)


@router.put("/{tenant_id}/features")
async def set_features(
    tenant_id: str,
    req: FeaturesRequest,
    caller: CallerContext = Depends(get_authenticated_caller),
):
    ctx = get_platform_context()
    before = await _require_privileged(ctx, caller, tenant_id)
    after = await ctx.tenants.set_features(tenant_id, req.features)
    await _tenant_changed(ctx, before, after, events.TENANT_UPDATED, caller)
    return _tenant_view(after)


# ── Members ─────────────────────────────────────────────────

@router.put("/{tenant_id}/members/{principal_id}")
async def update_member(
    tenant_id: str,
    principal_id: str,
    req: MemberUpdateRequest,
    caller: CallerContext = Depends(get_authenticated_caller),
):
    """Change a member's role or active flag."""
    ctx = get_platform_context()
    await _require_privileged(ctx, caller, tenant_id)
    membership = await ctx.memberships.update(principal_id, tenant_id, role=req.role, is_active=req.is_active)
    if membership is None:
        raise TenantAccessDeniedError(principal_id, tenant_id)

    await invalidate_principal_access(ctx.cache, principal_id, tenant_id)
    event_type = events.ROLE_CHANGED if req.role is not None else events.MEMBERSHIP_CHANGED
    await ctx.bus.publish(InvalidationEvent(
        type=event_type,
        source="api.tenants",
        tenant_id=tenant_id,
        principal_id=principal_id,
    ))
    return membership.model_dump(mode="json")
