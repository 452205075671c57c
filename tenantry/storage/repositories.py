# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Repository Layer — Backend access for tenants, principals and memberships.

All methods create their own session and commit within it, so the
guard can run independent lookups concurrently. Rows are converted to
the protocol models before leaving this module.

Connection-level failures surface as TransientFetchError; "no such row"
is a normal None result.
"""

from __future__ import annotations

import functools
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantry.core.errors import CustomDomainError, TenantAccessDeniedError, TransientFetchError
from tenantry.protocols.schema import (
    DomainStatus,
    Membership,
    Principal,
    Role,
    Tenant,
)
from tenantry.storage.models import MembershipRow, PrincipalRow, TenantRow

logger = logging.getLogger("tenantry.repository")

CUSTOM_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{0,61}[a-zA-Z0-9]\.[a-zA-Z]{2,}$")

TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, ConnectionError, TimeoutError)


def transient(operation: str):
    """Wrap connection-level database errors in TransientFetchError."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except TRANSIENT_DB_ERRORS as exc:
                logger.warning("Transient failure during %s: %s", operation, exc)
                raise TransientFetchError(operation, exc) from exc
        return wrapper

    return decorator


def normalize_custom_domain(domain: str) -> str:
    """Trim and lowercase, then validate. Raises CustomDomainError."""
    domain = (domain or "").strip().lower().rstrip(".")
    if not CUSTOM_DOMAIN_RE.match(domain):
        raise CustomDomainError(f"Invalid domain format: '{domain}'")
    return domain


def _tenant(row: TenantRow) -> Tenant:
    return Tenant(
        id=row.id,
        name=row.name,
        subdomain=row.subdomain,
        custom_domain=row.custom_domain,
        custom_domain_status=row.custom_domain_status,
        custom_domain_verified_at=row.custom_domain_verified_at,
        features=dict(row.features or {}),
        maintenance_mode=bool(row.maintenance_mode),
        theme=dict(row.theme or {}),
        status=row.status,
    )


# ── Tenant Repository ───────────────────────────────────────

class TenantRepository:
    """Exact-equality lookups on tenant identifiers plus admin settings."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _one(self, *criteria) -> Optional[Tenant]:
        async with self._session_factory() as session:
            result = await session.execute(select(TenantRow).where(*criteria))
            row = result.scalar_one_or_none()
            return _tenant(row) if row else None

    @transient("tenant lookup by id")
    async def by_id(self, tenant_id: str) -> Optional[Tenant]:
        return await self._one(TenantRow.id == tenant_id)

    @transient("tenant lookup by subdomain")
    async def by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        return await self._one(TenantRow.subdomain == subdomain)

    @transient("tenant lookup by custom domain")
    async def by_custom_domain(self, domain: str) -> Optional[Tenant]:
        return await self._one(TenantRow.custom_domain == domain)

    @transient("tenant create")
    async def create(
        self,
        name: str,
        subdomain: Optional[str] = None,
        tenant_id: Optional[str] = None,
        features: Optional[Dict[str, bool]] = None,
    ) -> Tenant:
        row = TenantRow(name=name, subdomain=subdomain, features=features or {}, theme={})
        if tenant_id:
            row.id = tenant_id
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _tenant(row)

    async def _update(self, tenant_id: str, **values: Any) -> Optional[Tenant]:
        values["updated_at"] = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            await session.execute(
                update(TenantRow).where(TenantRow.id == tenant_id).values(**values)
            )
            await session.commit()
            row = await session.get(TenantRow, tenant_id, populate_existing=True)
            return _tenant(row) if row else None

    # ── Custom domain lifecycle ─────────────────────────────

    @transient("custom domain set")
    async def set_custom_domain(self, tenant_id: str, domain: str) -> Optional[Tenant]:
        """
        Claim a domain for a tenant in pending state.

        Raises CustomDomainError if malformed or already used by another tenant.
        """
        domain = normalize_custom_domain(domain)
        async with self._session_factory() as session:
            result = await session.execute(
                select(TenantRow.id)
                .where(TenantRow.custom_domain == domain)
                .where(TenantRow.id != tenant_id)
            )
            if result.first() is not None:
                raise CustomDomainError(f"Domain '{domain}' is already in use by another tenant")
        logger.info("Custom domain %s set (pending)", domain, extra={"tenant_id": tenant_id})
        return await self._update(
            tenant_id,
            custom_domain=domain,
            custom_domain_status=DomainStatus.PENDING.value,
            custom_domain_verified_at=None,
        )

    @transient("custom domain verify")
    async def verify_custom_domain(self, tenant_id: str) -> Optional[Tenant]:
        """Mark the tenant's domain verified. Raises CustomDomainError if none is set."""
        current = await self.by_id(tenant_id)
        if current is None:
            return None
        if not current.custom_domain:
            raise CustomDomainError("No custom domain configured")
        logger.info("Custom domain %s verified", current.custom_domain, extra={"tenant_id": tenant_id})
        return await self._update(
            tenant_id,
            custom_domain_status=DomainStatus.VERIFIED.value,
            custom_domain_verified_at=datetime.now(timezone.utc),
        )

    @transient("custom domain remove")
    async def remove_custom_domain(self, tenant_id: str) -> Optional[Tenant]:
        return await self._update(
            tenant_id,
            custom_domain=None,
            custom_domain_status=None,
            custom_domain_verified_at=None,
        )

    # ── Settings ────────────────────────────────────────────

    @transient("maintenance toggle")
    async def set_maintenance(self, tenant_id: str, enabled: bool) -> Optional[Tenant]:
        return await self._update(tenant_id, maintenance_mode=enabled)

    @transient("feature update")
    async def set_features(self, tenant_id: str, features: Dict[str, bool]) -> Optional[Tenant]:
        """Merge feature flags into the existing map."""
        current = await self.by_id(tenant_id)
        if current is None:
            return None
        merged = {**current.features, **features}
        return await self._update(tenant_id, features=merged)


# ── Principal Repository ────────────────────────────────────

class PrincipalRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @transient("principal lookup")
    async def get(self, principal_id: str) -> Optional[Principal]:
        async with self._session_factory() as session:
            row = await session.get(PrincipalRow, principal_id)
            if row is None:
                return None
            return Principal(id=row.id, email=row.email, is_active=row.is_active)

    async def is_active(self, principal_id: str) -> Optional[bool]:
        """None when the principal does not exist."""
        principal = await self.get(principal_id)
        return principal.is_active if principal else None

    @transient("principal create")
    async def create(self, email: Optional[str] = None, principal_id: Optional[str] = None) -> Principal:
        row = PrincipalRow(email=email, is_active=True)
        if principal_id:
            row.id = principal_id
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return Principal(id=row.id, email=row.email, is_active=row.is_active)

    @transient("principal status update")
    async def set_active(self, principal_id: str, active: bool) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(PrincipalRow).where(PrincipalRow.id == principal_id).values(is_active=active)
            )
            await session.commit()


# ── Membership Repository ───────────────────────────────────

class MembershipRepository:
    """Memberships are never deleted; removal sets is_active=False."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _membership(row: MembershipRow, tenant: Optional[TenantRow] = None) -> Membership:
        return Membership(
            principal_id=row.principal_id,
            tenant_id=row.tenant_id,
            role=Role(row.role),
            is_active=row.is_active,
            tenant_name=tenant.name if tenant else None,
            tenant_subdomain=tenant.subdomain if tenant else None,
            tenant_custom_domain=tenant.custom_domain if tenant else None,
            created_at=row.created_at,
        )

    @transient("membership list")
    async def list_for_principal(self, principal_id: str) -> List[Membership]:
        """Active memberships in active tenants, with tenant display fields."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(MembershipRow, TenantRow)
                .join(TenantRow, TenantRow.id == MembershipRow.tenant_id)
                .where(MembershipRow.principal_id == principal_id)
                .where(MembershipRow.is_active.is_(True))
                .where(TenantRow.status == "active")
                .order_by(MembershipRow.created_at)
            )
            return [self._membership(m, t) for m, t in result.all()]

    async def _row(self, session: AsyncSession, principal_id: str, tenant_id: str) -> Optional[MembershipRow]:
        result = await session.execute(
            select(MembershipRow)
            .where(MembershipRow.principal_id == principal_id)
            .where(MembershipRow.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    @transient("role lookup")
    async def get_role(self, principal_id: str, tenant_id: str) -> Optional[Role]:
        async with self._session_factory() as session:
            row = await self._row(session, principal_id, tenant_id)
            if row is None or not row.is_active:
                return None
            return Role(row.role)

    @transient("membership create")
    async def create(self, principal_id: str, tenant_id: str, role: Role = Role.MEMBER) -> Membership:
        """
        Provision a membership. An existing active row for the pair is
        returned rather than duplicated.

        A deactivated row is left as it is: only an owner or admin may
        turn it back on (see update), so provisioning raises
        TenantAccessDeniedError instead.
        """
        async with self._session_factory() as session:
            row = await self._row(session, principal_id, tenant_id)
            if row is None:
                row = MembershipRow(principal_id=principal_id, tenant_id=tenant_id, role=Role(role).value)
                session.add(row)
            elif not row.is_active:
                logger.warning(
                    "Refused to provision over a deactivated membership",
                    extra={"principal_id": principal_id, "tenant_id": tenant_id},
                )
                raise TenantAccessDeniedError(principal_id, tenant_id)
            await session.commit()
            await session.refresh(row)
            tenant = await session.get(TenantRow, tenant_id)
            logger.info(
                "Provisioned %s membership", row.role,
                extra={"principal_id": principal_id, "tenant_id": tenant_id},
            )
            return self._membership(row, tenant)

    @transient("membership update")
    async def update(
        self,
        principal_id: str,
        tenant_id: str,
        role: Optional[Role] = None,
        is_active: Optional[bool] = None,
    ) -> Optional[Membership]:
        async with self._session_factory() as session:
            row = await self._row(session, principal_id, tenant_id)
            if row is None:
                return None
            if role is not None:
                row.role = Role(role).value
            if is_active is not None:
                row.is_active = is_active
            await session.commit()
            await session.refresh(row)
            tenant = await session.get(TenantRow, tenant_id)
            return self._membership(row, tenant)
