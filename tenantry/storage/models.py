# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
ORM Models — Tables behind the tenant directory and memberships.

Tables:
  - tenants:     one row per company; soft-disabled via `status`
  - principals:  authenticated users; suspended via `is_active`
  - memberships: (principal, tenant) -> role; unique per pair, never deleted
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from tenantry.storage.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow():
    return datetime.now(timezone.utc)


def _genid():
    return str(uuid.uuid4())


class TenantRow(Base):
    __tablename__ = "tenants"

    id = Column(String(64), primary_key=True, default=_genid)
    name = Column(String(256), nullable=False)
    subdomain = Column(String(63), nullable=True, unique=True)
    custom_domain = Column(String(253), nullable=True, unique=True)
    custom_domain_status = Column(String(16), nullable=True)  # pending/verified
    custom_domain_verified_at = Column(DateTime(timezone=True), nullable=True)
    features = Column(JSONType, nullable=False, default=dict)
    maintenance_mode = Column(Boolean, nullable=False, default=False)
    theme = Column(JSONType, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default="active")  # active/disabled
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Tenant {self.id} sub={self.subdomain}>"


class PrincipalRow(Base):
    __tablename__ = "principals"

    id = Column(String(64), primary_key=True, default=_genid)
    email = Column(String(320), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<Principal {self.id} active={self.is_active}>"


class MembershipRow(Base):
    __tablename__ = "memberships"

    id = Column(String(64), primary_key=True, default=_genid)
    principal_id = Column(String(64), ForeignKey("principals.id"), nullable=False, index=True)
    tenant_id = Column(String(64), ForeignKey("tenants.id"), nullable=False, index=True)
    role = Column(String(16), nullable=False, default="member")  # owner/admin/member
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("principal_id", "tenant_id", name="uq_membership_principal_tenant"),
    )

    def __repr__(self):
        return f"<Membership {self.principal_id}@{self.tenant_id} {self.role}>"
