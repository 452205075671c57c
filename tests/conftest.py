# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Shared test fixtures for all Tenantry tests.

Backend sources are in-memory fakes with the same duck-typed interface
as the SQLAlchemy repositories; repository tests use SQLite via aiosqlite.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
import fakeredis.aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tenantry.core.errors import TenantAccessDeniedError, TransientFetchError
from tenantry.core.metrics import platform_metrics
from tenantry.kernel.directory import TenantDirectory
from tenantry.kernel.guards import AccessGuard
from tenantry.kernel.redis_client import inject_redis_for_test
from tenantry.memory.cache import ScopedCache
from tenantry.memory.selection import SelectionStore
from tenantry.protocols.schema import DomainStatus, Membership, Role, Tenant
from tenantry.storage.database import Base, override_engine_for_test
from tenantry.storage.models import MembershipRow, PrincipalRow, TenantRow  # noqa: F401  (registers tables)

BASE = "weplataforma.com.br"


# ── In-memory backend fakes ──────────────────────────────────


class FakeTenantSource:
    """Exact-equality tenant lookups over a dict, with a call log."""

    def __init__(self, tenants: Optional[List[Tenant]] = None):
        self.tenants: Dict[str, Tenant] = {t.id: t for t in tenants or []}
        self.calls: List[Tuple[str, str]] = []
        self.fail_with: Optional[BaseException] = None

    def add(self, tenant: Tenant) -> Tenant:
        self.tenants[tenant.id] = tenant
        return tenant

    async def _find(self, op: str, literal: str, predicate) -> Optional[Tenant]:
        self.calls.append((op, literal))
        if self.fail_with is not None:
            raise self.fail_with
        for tenant in self.tenants.values():
            if predicate(tenant):
                return tenant
        return None

    async def by_id(self, tenant_id: str) -> Optional[Tenant]:
        return await self._find("id", tenant_id, lambda t: t.id == tenant_id)

    async def by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        return await self._find("subdomain", subdomain, lambda t: t.subdomain == subdomain)

    async def by_custom_domain(self, domain: str) -> Optional[Tenant]:
        return await self._find("custom_domain", domain, lambda t: t.custom_domain == domain)


class FakeMembershipSource:
    """
    Membership rows keyed by (principal, tenant).

    `gates` lets a test hold a list_for_principal call open until it
    releases the matching asyncio.Event, to stage out-of-order responses.
    """

    def __init__(self):
        self.rows: Dict[Tuple[str, str], Membership] = {}
        self.list_calls = 0
        self.role_calls = 0
        self.fail_with: Optional[BaseException] = None
        self.gates: List[asyncio.Event] = []

    def add(self, principal_id: str, tenant_id: str, role: Role = Role.MEMBER, is_active: bool = True) -> Membership:
        membership = Membership(principal_id=principal_id, tenant_id=tenant_id, role=role, is_active=is_active)
        self.rows[(principal_id, tenant_id)] = membership
        return membership

    async def list_for_principal(self, principal_id: str) -> List[Membership]:
        self.list_calls += 1
        snapshot = [m for (p, _), m in self.rows.items() if p == principal_id]
        if self.gates:
            gate = self.gates.pop(0)
            await gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return snapshot

    async def get_role(self, principal_id: str, tenant_id: str) -> Optional[Role]:
        self.role_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        membership = self.rows.get((principal_id, tenant_id))
        if membership is None or not membership.is_active:
            return None
        return membership.role

    async def create(self, principal_id: str, tenant_id: str, role: Role = Role.MEMBER) -> Membership:
        existing = self.rows.get((principal_id, tenant_id))
        if existing is None:
            return self.add(principal_id, tenant_id, role)
        if not existing.is_active:
            raise TenantAccessDeniedError(principal_id, tenant_id)
        return existing


class FakePrincipalSource:
    def __init__(self):
        self.status: Dict[str, bool] = {}
        self.fail_with: Optional[BaseException] = None

    def add(self, principal_id: str, active: bool = True) -> None:
        self.status[principal_id] = active

    async def is_active(self, principal_id: str) -> Optional[bool]:
        if self.fail_with is not None:
            raise self.fail_with
        return self.status.get(principal_id)


# ── Redis ────────────────────────────────────────────────────


@pytest.fixture
def mock_redis():
    """Provide a FakeRedis async instance and reset metrics."""
    r = fakeredis.aioredis.FakeRedis(decode_responses=True)
    inject_redis_for_test(r)
    platform_metrics.reset()
    return r


@pytest.fixture
def cache(mock_redis) -> ScopedCache:
    return ScopedCache(mock_redis, ttl=3600, stale_after=300)


@pytest.fixture
def selection(mock_redis) -> SelectionStore:
    return SelectionStore(mock_redis)


# ── Domain data ──────────────────────────────────────────────


@pytest.fixture
def tenant_a() -> Tenant:
    return Tenant(id="t_acme", name="Acme", subdomain="acme")


@pytest.fixture
def tenant_b() -> Tenant:
    return Tenant(
        id="t_globex",
        name="Globex",
        subdomain="globex",
        custom_domain="globex.com",
        custom_domain_status=DomainStatus.VERIFIED,
    )


@pytest.fixture
def tenant_source(tenant_a, tenant_b) -> FakeTenantSource:
    return FakeTenantSource([tenant_a, tenant_b])


@pytest.fixture
def membership_source() -> FakeMembershipSource:
    return FakeMembershipSource()


@pytest.fixture
def principal_source() -> FakePrincipalSource:
    source = FakePrincipalSource()
    source.add("p_1")
    return source


@pytest.fixture
def directory(tenant_source, cache) -> TenantDirectory:
    return TenantDirectory(tenant_source, cache)


@pytest.fixture
def guard(directory, membership_source, principal_source, cache, selection) -> AccessGuard:
    return AccessGuard(
        directory=directory,
        memberships=membership_source,
        principals=principal_source,
        cache=cache,
        selection=selection,
        base_domain=BASE,
    )


@pytest.fixture
def transient_error() -> TransientFetchError:
    return TransientFetchError("test fetch", ConnectionError("connection reset"))


# ── SQLite (aiosqlite) ───────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    override_engine_for_test(engine)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
