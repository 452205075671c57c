# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Tenantry Protocol Schema — Typed records at the backend boundary.

Backend rows and cached JSON are parsed into these models exactly once;
every other module works with the typed records.

Design decisions:
  - `Role` is a closed set; unknown roles fail validation instead of
    being silently treated as unprivileged strings.
  - Identifiers are non-empty strings and are never normalized, so a
    record always carries the literal value the backend stored.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"

    @property
    def is_privileged(self) -> bool:
        return self in PRIVILEGED_ROLES


PRIVILEGED_ROLES = frozenset({Role.OWNER, Role.ADMIN})


class DomainStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"


class TenantStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class Tenant(BaseModel):
    """One customer organization ("company")."""

    id: str = Field(..., min_length=1)
    name: str
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    custom_domain_status: Optional[DomainStatus] = None
    custom_domain_verified_at: Optional[datetime] = None
    features: Dict[str, bool] = Field(default_factory=dict)
    maintenance_mode: bool = False
    theme: Dict[str, Any] = Field(default_factory=dict)
    status: TenantStatus = TenantStatus.ACTIVE

    @property
    def has_verified_custom_domain(self) -> bool:
        return bool(self.custom_domain) and self.custom_domain_status == DomainStatus.VERIFIED

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE

    def feature_enabled(self, name: str) -> bool:
        """Unknown features are off."""
        return bool(self.features.get(name, False))


class Membership(BaseModel):
    """A principal's role within one tenant."""

    principal_id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    role: Role
    is_active: bool = True
    tenant_name: Optional[str] = None
    tenant_subdomain: Optional[str] = None
    tenant_custom_domain: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_privileged(self) -> bool:
        return self.is_active and self.role.is_privileged


class Principal(BaseModel):
    """An authenticated user."""

    id: str = Field(..., min_length=1)
    email: Optional[str] = None
    is_active: bool = True


class HostCandidate(BaseModel):
    """Tenant signals derived from the request host."""

    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.subdomain or self.custom_domain)

    model_config = {"frozen": True}


class InvalidationEvent(BaseModel):
    """
    Cache invalidation hint carried on the Redis push channel.

    Receivers treat these as hints: every mutation path has already
    invalidated synchronously before publishing.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    tenant_id: Optional[str] = None
    principal_id: Optional[str] = None
    resources: list[str] = Field(default_factory=list)
    # Directory signals to drop, e.g. {"subdomain": "acme", "custom_domain": "acme.com"}
    identifiers: Dict[str, str] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)

    @field_validator("type")
    @classmethod
    def type_must_be_uppercase(cls, v: str) -> str:
        if v != v.upper():
            raise ValueError(
                f"Event type must be UPPERCASE, got '{v}'. "
                f"Did you mean '{v.upper()}'?"
            )
        return v

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> InvalidationEvent:
        return cls.model_validate_json(data)

    def __repr__(self) -> str:
        return (
            f"InvalidationEvent(type={self.type!r}, tenant={self.tenant_id!r}, "
            f"principal={self.principal_id!r})"
        )
