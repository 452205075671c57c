# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Caller Context — Identity carried through a request.

The principal comes from request headers; the host is whatever the
client addressed. Tenant identity is never taken from a header, it is
always derived from the host and the principal's memberships.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class CallerContext:
    """Request-scoped caller identity."""

    principal_id: Optional[str] = None
    host: Optional[str] = None
    trace_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.principal_id)

    def log_extra(self) -> dict:
        return {"principal_id": self.principal_id, "trace_id": self.trace_id}

    def __repr__(self) -> str:
        return f"CallerContext(principal={self.principal_id!r}, host={self.host!r})"
