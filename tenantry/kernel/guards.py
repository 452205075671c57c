# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Access Guards — Ordered decision gate for every protected view.

Stages run in a fixed order and the first one that returns a decision wins:

    0. public route          -> ALLOW (no tenant context needed)
    1. authentication        -> REDIRECT_SIGN_IN
    2. principal status      -> SUSPENDED
    3. tenant resolution     -> TENANT_NOT_FOUND / NO_TENANTS / SELECT_TENANT
    4. membership            -> REDIRECT_BASE
    5. maintenance mode      -> MAINTENANCE
    6. otherwise             -> ALLOW

Suspension is decided before anything about the tenant, and membership
before maintenance, so an outsider never learns a tenant's maintenance
state. Each stage is a plain function over GuardInputs.

Input failures never allow: a pending input yields LOADING, a transient
fetch failure yields UNAVAILABLE, and any other exception inside a stage
yields that stage's most restrictive outcome.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from tenantry.core.config import settings
from tenantry.core.errors import TenantNotFoundError, TransientFetchError
from tenantry.core.metrics import platform_metrics
from tenantry.kernel.directory import TenantDirectory
from tenantry.kernel.namespace import QueryKeys
from tenantry.kernel.redis_client import REDIS_TRANSIENT_ERRORS
from tenantry.kernel.resolver import base_url, resolve_host
from tenantry.memory.cache import ScopedCache
from tenantry.memory.membership import ContextState, MembershipContext
from tenantry.memory.selection import SelectionStore
from tenantry.protocols.schema import HostCandidate, Membership, Tenant

logger = logging.getLogger("tenantry.guards")


class _Pending:
    """Marker for an input whose fetch has not settled."""

    def __repr__(self) -> str:
        return "PENDING"


PENDING: Any = _Pending()


class GuardOutcome(str, Enum):
    LOADING = "loading"
    ALLOW = "allow"
    REDIRECT_SIGN_IN = "redirect_sign_in"
    SUSPENDED = "suspended"
    TENANT_NOT_FOUND = "tenant_not_found"
    NO_TENANTS = "no_tenants"
    SELECT_TENANT = "select_tenant"
    REDIRECT_BASE = "redirect_base"
    MAINTENANCE = "maintenance"
    UNAVAILABLE = "unavailable"


@dataclass
class GuardDecision:
    outcome: GuardOutcome
    stage: str
    tenant_id: Optional[str] = None
    redirect_url: Optional[str] = None
    redirect_delay: Optional[int] = None
    identifier: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == GuardOutcome.ALLOW

    def to_dict(self) -> Dict[str, Any]:
        data = {"outcome": self.outcome.value, "stage": self.stage}
        for name in ("tenant_id", "redirect_url", "redirect_delay", "identifier"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data


@dataclass
class GuardInputs:
    """
    Everything the stages look at. Fetched inputs hold a value, PENDING,
    or the exception their fetch raised.

    principal_id     None means unauthenticated
    principal_active bool from the principal status lookup
    tenant           Tenant for the host (or the active tenant when the
                     host implies none); None when there is no signal
    membership       principal's active membership in `tenant`, or None
    context_state    MembershipContext state (used when the host implies
                     no tenant)
    """

    path: str = "/"
    principal_id: Any = None
    principal_active: Any = PENDING
    candidate: HostCandidate = field(default_factory=HostCandidate)
    tenant: Any = PENDING
    membership: Any = PENDING
    context_state: Any = PENDING
    base_url: str = ""
    public_routes: Iterable[str] = ()


# ── Helpers ─────────────────────────────────────────────────────

TRANSIENT_ERRORS = (TransientFetchError, asyncio.TimeoutError) + REDIS_TRANSIENT_ERRORS

_SLASHES = re.compile(r"/+")


def normalize_path(path: str) -> str:
    return _SLASHES.sub("/", path or "/")


def is_public_path(path: str, public_routes: Iterable[str]) -> bool:
    normalized = normalize_path(path)
    return any(
        normalized == route or normalized.startswith(route.rstrip("/") + "/")
        for route in public_routes
    )


def _is_pending(value: Any) -> bool:
    return value is PENDING


def _loading(stage: str) -> GuardDecision:
    return GuardDecision(GuardOutcome.LOADING, stage)


def _unavailable(stage: str) -> GuardDecision:
    return GuardDecision(GuardOutcome.UNAVAILABLE, stage)


def _check_fetched(stage: str, value: Any) -> Optional[GuardDecision]:
    """LOADING / UNAVAILABLE for unsettled or transiently failed inputs."""
    if _is_pending(value):
        return _loading(stage)
    if isinstance(value, TRANSIENT_ERRORS):
        return _unavailable(stage)
    if isinstance(value, BaseException):
        raise value
    return None


# ── Stages ──────────────────────────────────────────────────────


def check_public_route(inputs: GuardInputs) -> Optional[GuardDecision]:
    if is_public_path(inputs.path, inputs.public_routes):
        return GuardDecision(GuardOutcome.ALLOW, "public_route")
    return None


def check_authentication(inputs: GuardInputs) -> Optional[GuardDecision]:
    if _is_pending(inputs.principal_id):
        return _loading("authentication")
    if not inputs.principal_id:
        return GuardDecision(GuardOutcome.REDIRECT_SIGN_IN, "authentication", redirect_url="/auth")
    return None


def check_principal_status(inputs: GuardInputs) -> Optional[GuardDecision]:
    pending = _check_fetched("principal_status", inputs.principal_active)
    if pending:
        return pending
    if inputs.principal_active is not True:
        return GuardDecision(GuardOutcome.SUSPENDED, "principal_status")
    return None


def check_tenant_resolution(inputs: GuardInputs) -> Optional[GuardDecision]:
    stage = "tenant_resolution"
    tenant = inputs.tenant
    if isinstance(tenant, TenantNotFoundError):
        return GuardDecision(
            GuardOutcome.TENANT_NOT_FOUND,
            stage,
            identifier=tenant.identifier,
            redirect_url=inputs.base_url,
            redirect_delay=settings.NOT_FOUND_REDIRECT_DELAY,
        )
    pending = _check_fetched(stage, tenant)
    if pending:
        return pending

    if not inputs.candidate.is_empty:
        if tenant is None:
            # A host signal that resolved to nothing must never pass
            return GuardDecision(GuardOutcome.TENANT_NOT_FOUND, stage, redirect_url=inputs.base_url)
        return None

    # No host-implied tenant: fall back to the membership context
    pending = _check_fetched(stage, inputs.context_state)
    if pending:
        return pending
    if tenant is not None:
        return None
    if inputs.context_state == ContextState.NO_MEMBERSHIPS:
        return GuardDecision(GuardOutcome.NO_TENANTS, stage)
    return GuardDecision(GuardOutcome.SELECT_TENANT, stage)


def check_membership(inputs: GuardInputs) -> Optional[GuardDecision]:
    stage = "membership"
    pending = _check_fetched(stage, inputs.membership)
    if pending:
        return pending
    membership = inputs.membership
    if (
        not isinstance(membership, Membership)
        or not membership.is_active
        or membership.tenant_id != inputs.tenant.id
    ):
        return GuardDecision(
            GuardOutcome.REDIRECT_BASE,
            stage,
            redirect_url=inputs.base_url + normalize_path(inputs.path),
        )
    return None


def check_maintenance(inputs: GuardInputs) -> Optional[GuardDecision]:
    tenant: Tenant = inputs.tenant
    if tenant.maintenance_mode and not inputs.membership.is_privileged:
        return GuardDecision(GuardOutcome.MAINTENANCE, "maintenance", tenant_id=tenant.id)
    return None


# Most restrictive outcome per stage when the stage itself blows up
_RESTRICTIVE = {
    "authentication": GuardOutcome.REDIRECT_SIGN_IN,
    "principal_status": GuardOutcome.SUSPENDED,
    "tenant_resolution": GuardOutcome.TENANT_NOT_FOUND,
    "membership": GuardOutcome.REDIRECT_BASE,
    "maintenance": GuardOutcome.MAINTENANCE,
}

Stage = Callable[[GuardInputs], Optional[GuardDecision]]

STAGES: List[Tuple[str, Stage]] = [
    ("authentication", check_authentication),
    ("principal_status", check_principal_status),
    ("tenant_resolution", check_tenant_resolution),
    ("membership", check_membership),
    ("maintenance", check_maintenance),
]


def _required_inputs(inputs: GuardInputs) -> List[Any]:
    if not inputs.principal_id or _is_pending(inputs.principal_id):
        return [inputs.principal_id]
    required = [inputs.principal_active, inputs.tenant, inputs.membership]
    if inputs.candidate.is_empty:
        required.append(inputs.context_state)
    return required


def decide(inputs: GuardInputs) -> GuardDecision:
    """Run the stages in order over fully described inputs."""
    try:
        public = check_public_route(inputs)
    except Exception:
        logger.exception("Public route check failed; treating path as protected")
        public = None
    if public:
        return public

    # Never decide on partially loaded data
    if any(_is_pending(value) for value in _required_inputs(inputs)):
        return _loading("inputs")

    for name, stage in STAGES:
        try:
            decision = stage(inputs)
        except Exception:
            logger.exception("Guard stage %s failed", name)
            decision = GuardDecision(_RESTRICTIVE[name], name)
        if decision is not None:
            return decision

    return GuardDecision(GuardOutcome.ALLOW, "allow", tenant_id=inputs.tenant.id)


# ── Evaluator ───────────────────────────────────────────────────


async def _settle(coro) -> Any:
    """Await a coroutine and return its result or the exception it raised."""
    try:
        return await coro
    except Exception as exc:
        return exc


class AccessGuard:
    """
    Gathers guard inputs from the backend and decides.

    Sources:
      directory   TenantDirectory
      memberships object with list_for_principal / get_role / create
      principals  object with async is_active(principal_id) -> bool | None
    """

    def __init__(
        self,
        directory: TenantDirectory,
        memberships,
        principals,
        cache: ScopedCache,
        selection: SelectionStore,
        base_domain: Optional[str] = None,
        public_routes: Optional[Iterable[str]] = None,
    ) -> None:
        self._directory = directory
        self._memberships = memberships
        self._principals = principals
        self._cache = cache
        self._selection = selection
        self._base_domain = base_domain or settings.BASE_DOMAIN
        self._public_routes = tuple(public_routes if public_routes is not None else settings.PUBLIC_ROUTES)

    def membership_context(self, principal_id: str) -> MembershipContext:
        return MembershipContext(principal_id, self._memberships, self._cache, self._selection)

    async def principal_active(self, principal_id: str) -> bool:
        async def fetch():
            return bool(await self._principals.is_active(principal_id))

        return await self._cache.get_or_fetch(QueryKeys.principal_status(principal_id), fetch)

    async def gather_inputs(
        self,
        host: Optional[str],
        path: str = "/",
        principal_id: Optional[str] = None,
        context: Optional[MembershipContext] = None,
    ) -> GuardInputs:
        candidate = resolve_host(host, base_domain=self._base_domain)
        inputs = GuardInputs(
            path=path,
            principal_id=principal_id,
            candidate=candidate,
            base_url=base_url(base_domain=self._base_domain),
            public_routes=self._public_routes,
        )
        if not principal_id or is_public_path(path, self._public_routes):
            return inputs

        status, host_tenant = await asyncio.gather(
            _settle(self.principal_active(principal_id)),
            _settle(self._directory.lookup(candidate=candidate)),
        )
        inputs.principal_active = status
        inputs.tenant = host_tenant
        if isinstance(host_tenant, BaseException):
            # Resolution already failed; the membership inputs are irrelevant
            inputs.membership = None
            inputs.context_state = None
            return inputs

        context = context or self.membership_context(principal_id)
        host_tenant_id = host_tenant.id if isinstance(host_tenant, Tenant) else None
        resolved = await _settle(context.resolve(host_tenant_id))
        if isinstance(resolved, BaseException):
            inputs.membership = resolved
            inputs.context_state = resolved
            return inputs
        inputs.context_state = resolved

        if host_tenant is None and context.active_tenant_id is not None:
            inputs.tenant = await _settle(self._directory.get(context.active_tenant_id))
        tenant = inputs.tenant
        inputs.membership = context.membership_for(tenant.id) if isinstance(tenant, Tenant) else None
        return inputs

    async def evaluate(
        self,
        host: Optional[str],
        path: str = "/",
        principal_id: Optional[str] = None,
        context: Optional[MembershipContext] = None,
    ) -> GuardDecision:
        start = time.time()
        inputs = await self.gather_inputs(host, path, principal_id, context)
        decision = decide(inputs)
        platform_metrics.inc(f"guard:{decision.outcome.value}")
        platform_metrics.observe("guard_latency", (time.time() - start) * 1000)
        logger.info(
            "Access %s at stage %s for %s%s",
            decision.outcome.value, decision.stage, host, path,
            extra={"principal_id": principal_id, "tenant_id": decision.tenant_id},
        )
        return decision
