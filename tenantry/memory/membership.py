# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Membership Context — Which tenants a principal may use, and which is active.

State machine per principal session:

    UNINITIALIZED -[RESOLVE]-> RESOLVING -[FOUND_NONE]-> NO_MEMBERSHIPS
                                         -[FOUND_ONE]->  SINGLE_MEMBERSHIP
                                         -[FOUND_MANY]-> MULTIPLE_MEMBERSHIPS
                                         -[FAIL]->       UNINITIALIZED

Settled states accept RESOLVE again (re-resolution after invalidation).

The active tenant is only ever changed through `_activate`, reached from
`switch_to_tenant` or `resolve`. Activation drops this principal's entries
in the previous tenant (role, profile) before the new tenant becomes
visible. Shared tenant data stays cached for other principals; its keys
carry the tenant id, so it is never read under another tenant.

Switch listeners are called after the context lock is released, so a
listener may resolve or switch again.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from tenantry.core.errors import (
    InvalidTransitionError,
    NoActiveTenantError,
    StaleResultError,
    TenantAccessDeniedError,
)
from tenantry.core.metrics import platform_metrics
from tenantry.kernel.namespace import QueryKeys
from tenantry.memory.cache import ScopedCache
from tenantry.memory.selection import SelectionStore
from tenantry.protocols.schema import Membership, Role

logger = logging.getLogger("tenantry.membership")


class ContextState(str, Enum):
    UNINITIALIZED = "uninitialized"
    RESOLVING = "resolving"
    NO_MEMBERSHIPS = "no_memberships"
    SINGLE_MEMBERSHIP = "single_membership"
    MULTIPLE_MEMBERSHIPS = "multiple_memberships"


RESOLVE = "RESOLVE"
FOUND_NONE = "FOUND_NONE"
FOUND_ONE = "FOUND_ONE"
FOUND_MANY = "FOUND_MANY"
FAIL = "FAIL"

SETTLED_STATES = frozenset({
    ContextState.NO_MEMBERSHIPS,
    ContextState.SINGLE_MEMBERSHIP,
    ContextState.MULTIPLE_MEMBERSHIPS,
})

_TRANSITIONS: Dict[tuple, ContextState] = {
    (ContextState.UNINITIALIZED, RESOLVE): ContextState.RESOLVING,
    (ContextState.RESOLVING, RESOLVE): ContextState.RESOLVING,
    (ContextState.RESOLVING, FOUND_NONE): ContextState.NO_MEMBERSHIPS,
    (ContextState.RESOLVING, FOUND_ONE): ContextState.SINGLE_MEMBERSHIP,
    (ContextState.RESOLVING, FOUND_MANY): ContextState.MULTIPLE_MEMBERSHIPS,
    (ContextState.RESOLVING, FAIL): ContextState.UNINITIALIZED,
}
for _settled in SETTLED_STATES:
    _TRANSITIONS[(_settled, RESOLVE)] = ContextState.RESOLVING


def transition(state: ContextState, event: str) -> ContextState:
    """Pure reducer. Raises InvalidTransitionError for unknown moves."""
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"No transition from state '{state.value}' on event '{event}'"
        ) from None


def found_event(count: int) -> str:
    if count == 0:
        return FOUND_NONE
    if count == 1:
        return FOUND_ONE
    return FOUND_MANY


def merge_memberships(*sources: Iterable[Membership]) -> List[Membership]:
    """
    Combine membership lists, keeping one entry per tenant (first wins)
    and dropping inactive memberships.
    """
    seen: Dict[str, Membership] = {}
    for source in sources:
        for membership in source:
            if membership.is_active and membership.tenant_id not in seen:
                seen[membership.tenant_id] = membership
    return list(seen.values())


async def invalidate_principal_access(
    cache: ScopedCache,
    principal_id: str,
    tenant_id: Optional[str] = None,
) -> int:
    """
    Drop everything derived from a principal's memberships.

    Called after any change to membership, role or principal status.
    """
    keys = [QueryKeys.memberships(principal_id), QueryKeys.principal_status(principal_id)]
    if tenant_id:
        keys.append(QueryKeys.role(tenant_id, principal_id))
    return await cache.delete(*keys)


SwitchListener = Callable[[Optional[str], Optional[str]], Awaitable[None]]


class MembershipContext:
    """
    Session-scoped membership state for one principal.

    The membership source is any object with async
    `list_for_principal(principal_id)`, `get_role(principal_id, tenant_id)`
    and `create(principal_id, tenant_id, role)` methods
    (see storage.repositories.MembershipRepository).
    """

    def __init__(
        self,
        principal_id: str,
        source,
        cache: ScopedCache,
        selection: SelectionStore,
    ) -> None:
        self._principal_id = principal_id
        self._source = source
        self._cache = cache
        self._selection = selection

        self._state = ContextState.UNINITIALIZED
        self._memberships: Dict[str, Membership] = {}
        self._active: Optional[str] = None
        self._host_tenant_id: Optional[str] = None

        self._token = 0
        self._generation = 0
        self._lock = asyncio.Lock()
        self._listeners: List[SwitchListener] = []

    # ── Read-only view ──────────────────────────────────────────

    @property
    def principal_id(self) -> str:
        return self._principal_id

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def active_tenant_id(self) -> Optional[str]:
        return self._active

    @property
    def generation(self) -> int:
        """Bumped on every change of active tenant."""
        return self._generation

    @property
    def memberships(self) -> List[Membership]:
        return list(self._memberships.values())

    @property
    def is_settled(self) -> bool:
        return self._state in SETTLED_STATES

    @property
    def needs_selection(self) -> bool:
        """Several memberships, no host tenant and no valid selection."""
        return self._state == ContextState.MULTIPLE_MEMBERSHIPS and self._active is None

    @property
    def host_tenant_id(self) -> Optional[str]:
        return self._host_tenant_id

    @property
    def offered_memberships(self) -> List[Membership]:
        """Memberships the principal may pick from; only the host's tenant on a tenant host."""
        if self._host_tenant_id:
            membership = self._memberships.get(self._host_tenant_id)
            return [membership] if membership else []
        return self.memberships

    def membership_for(self, tenant_id: str) -> Optional[Membership]:
        return self._memberships.get(tenant_id)

    def require_active_tenant(self) -> str:
        if self._active is None:
            raise NoActiveTenantError()
        return self._active

    def add_listener(self, listener: SwitchListener) -> None:
        """
        Register a coroutine called as listener(previous, current) on every
        switch, once invalidation is done and the lock is released.
        """
        self._listeners.append(listener)

    # ── Resolution ──────────────────────────────────────────────

    async def resolve(self, host_tenant_id: Optional[str] = None) -> ContextState:
        """
        Fetch memberships and derive the active tenant.

        Active tenant precedence:
          host-implied tenant > persisted selection > the only membership > none.

        Only the most recently started call may write its result.
        """
        self._token += 1
        token = self._token
        generation = self._generation
        self._state = transition(self._state, RESOLVE)

        try:
            memberships = await self._load_memberships(token)
            persisted = await self._selection.load(self._principal_id)
        except Exception:
            if token == self._token:
                self._state = transition(self._state, FAIL)
            raise

        changed = False
        async with self._lock:
            if token != self._token:
                platform_metrics.inc("membership:stale_discarded")
                logger.debug(
                    "Discarding superseded resolution #%d (latest #%d)",
                    token, self._token,
                    extra={"principal_id": self._principal_id},
                )
                return self._state

            self._memberships = {m.tenant_id: m for m in memberships}
            self._host_tenant_id = host_tenant_id
            self._state = transition(self._state, found_event(len(self._memberships)))

            if generation != self._generation and self._active in self._memberships:
                # An explicit switch landed while we were fetching; it wins
                target = self._active
            else:
                target = await self._derive_active(host_tenant_id, persisted)
            previous = self._active
            changed = await self._activate(target, persist=False)

        if changed:
            await self._notify(previous, target)

        logger.info(
            "Membership context %s (%d tenants, active=%s)",
            self._state.value, len(self._memberships), self._active,
            extra={"principal_id": self._principal_id},
        )
        return self._state

    async def _derive_active(
        self,
        host_tenant_id: Optional[str],
        persisted: Optional[str],
    ) -> Optional[str]:
        if host_tenant_id:
            return host_tenant_id if host_tenant_id in self._memberships else None
        if persisted and persisted in self._memberships:
            return persisted
        if persisted:
            # Selection refers to a tenant we no longer belong to
            logger.info(
                "Clearing stale tenant selection %s", persisted,
                extra={"principal_id": self._principal_id},
            )
            await self._selection.clear(self._principal_id)
        if len(self._memberships) == 1:
            return next(iter(self._memberships))
        return None

    async def _load_memberships(self, token: int) -> List[Membership]:
        async def fetch():
            rows = await self._source.list_for_principal(self._principal_id)
            return [m.model_dump(mode="json") for m in merge_memberships(rows)]

        # A superseded fetch must not overwrite what a newer one stored
        raw = await self._cache.get_or_fetch(
            QueryKeys.memberships(self._principal_id), fetch,
            keep=lambda: token == self._token,
        )
        return merge_memberships(Membership.model_validate(item) for item in raw or [])

    # ── Switching ───────────────────────────────────────────────

    async def switch_to_tenant(self, tenant_id: str) -> bool:
        """
        Make `tenant_id` the active tenant.

        Returns False if it already is (no side effects).
        Raises TenantAccessDeniedError, leaving state untouched, if the
        principal has no membership in that tenant.
        """
        async with self._lock:
            if not self._memberships and not self.is_settled:
                raise InvalidTransitionError("Memberships have not been resolved yet")
            if tenant_id not in self._memberships:
                logger.warning(
                    "Rejected switch to a tenant without membership",
                    extra={"principal_id": self._principal_id, "tenant_id": tenant_id},
                )
                raise TenantAccessDeniedError(self._principal_id, tenant_id)
            if tenant_id == self._active:
                return False
            previous = self._active
            await self._activate(tenant_id, persist=True)
            platform_metrics.inc("membership:switch")

        await self._notify(previous, tenant_id)
        return True

    select_tenant = switch_to_tenant

    async def _activate(self, tenant_id: Optional[str], persist: bool) -> bool:
        """The single mutation point of the active tenant. Caller holds the lock."""
        previous = self._active
        if tenant_id == previous:
            return False
        if previous is not None:
            await self._cache.invalidate_principal_entries(previous, self._principal_id)
        if persist and tenant_id is not None:
            await self._selection.save(self._principal_id, tenant_id)
        self._active = tenant_id
        self._generation += 1
        logger.info(
            "Active tenant %s -> %s", previous, tenant_id,
            extra={"principal_id": self._principal_id, "tenant_id": tenant_id},
        )
        return True

    async def _notify(self, previous: Optional[str], current: Optional[str]) -> None:
        for listener in list(self._listeners):
            await listener(previous, current)

    # ── Tenant-scoped lookups ───────────────────────────────────

    async def role_in_active_tenant(self) -> Optional[Role]:
        """
        Role of the principal in the active tenant.

        Raises StaleResultError if the active tenant changed while the
        lookup was in flight; the late result is never stored in state.
        """
        tenant_id = self.require_active_tenant()
        generation = self._generation

        async def fetch():
            role = await self._source.get_role(self._principal_id, tenant_id)
            return role.value if role else None

        raw = await self._cache.get_or_fetch(
            QueryKeys.role(tenant_id, self._principal_id), fetch,
            keep=lambda: generation == self._generation,
        )
        if generation != self._generation:
            platform_metrics.inc("membership:stale_discarded")
            raise StaleResultError(f"Role lookup for tenant {tenant_id} superseded by a switch")
        return Role(raw) if raw else None

    # ── Mutations ───────────────────────────────────────────────

    async def invalidate(self) -> None:
        """Forget cached membership data; the next resolve refetches."""
        await invalidate_principal_access(self._cache, self._principal_id, self._active)

    async def create_membership(self, tenant_id: str, role: Role = Role.MEMBER) -> Membership:
        """Provision a membership for this principal, then re-resolve."""
        membership = await self._source.create(self._principal_id, tenant_id, role)
        await invalidate_principal_access(self._cache, self._principal_id, tenant_id)
        await self.resolve(self._host_tenant_id)
        return membership

    create_membership_for_tenant = create_membership
