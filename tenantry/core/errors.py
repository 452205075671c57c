# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Domain Errors — Failure taxonomy for tenant resolution and access.

  TenantNotFoundError      candidate identifier matches no tenant
  TenantAccessDeniedError  principal has no membership in the tenant
  PrincipalSuspendedError  principal administratively disabled
  TransientFetchError      backend/network failure while resolving

The API layer maps these onto its JSON error envelope (see api/errors.py).
"""

from __future__ import annotations

from typing import Optional


class TenantryError(Exception):
    """Root of all tenantry domain errors."""


class TenantNotFoundError(TenantryError):
    """A non-empty tenant candidate resolved to nothing (includes unverified domains)."""

    def __init__(self, signal: str, identifier: str):
        self.signal = signal
        self.identifier = identifier
        super().__init__(f"No tenant for {signal} '{identifier}'")


class TenantAccessDeniedError(TenantryError):
    """Principal is not a member of the requested tenant.

    The message deliberately omits the tenant id so it can be surfaced as-is.
    """

    def __init__(self, principal_id: Optional[str] = None, tenant_id: Optional[str] = None):
        self.principal_id = principal_id
        self.tenant_id = tenant_id
        super().__init__("Access to the requested tenant is not permitted")


class PrincipalSuspendedError(TenantryError):
    def __init__(self, principal_id: str):
        self.principal_id = principal_id
        super().__init__("Account suspended")


class TransientFetchError(TenantryError):
    """Backend or network error while fetching a resolution input."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Transient failure during {operation}{detail}")


class NoActiveTenantError(TenantryError):
    """A tenant-scoped operation ran without an active tenant."""

    def __init__(self):
        super().__init__("No active tenant selected for this session")


class StaleResultError(TenantryError):
    """An in-flight result arrived after its inputs changed and was discarded."""


class InvalidTransitionError(TenantryError):
    """Raised when a membership-context transition is not permitted."""


class InvalidCacheKeyError(TenantryError, ValueError):
    """A cache key segment is empty or the raw key cannot be parsed."""


class CustomDomainError(TenantryError, ValueError):
    """Custom domain is malformed or already claimed by another tenant."""
