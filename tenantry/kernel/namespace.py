# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Namespace Helper — Tenant-scoped cache key convention.

Every cached value lives under one of three key shapes:

    tenantry:tenant:{tenant_id}:{resource}[:{param}...]     tenant data
    tenantry:principal:{principal_id}:{resource}[:{param}...] per-user data
    tenantry:directory:{signal}:{literal}                    tenant lookups

The tenant id always occupies segment 2 of a tenant key. Segments are
percent-encoded, so no id or param can contain a separator: two keys
that differ only in tenant id never collide.

Any key in the cache keyspace that does not parse as one of these shapes
is LEGACY and gets evicted (see ScopedCache.evict_legacy_keys).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union
from urllib.parse import quote, unquote

from tenantry.core.errors import InvalidCacheKeyError

PREFIX = "tenantry"
SEP = ":"

TENANT_SCOPE = "tenant"
PRINCIPAL_SCOPE = "principal"
DIRECTORY_SCOPE = "directory"

DIRECTORY_SIGNALS = ("id", "custom_domain", "subdomain")

Param = Union[str, int]


class KeyClass(str, Enum):
    TENANT = "tenant"
    PRINCIPAL = "principal"
    DIRECTORY = "directory"
    LEGACY = "legacy"


def _encode(segment: Param, what: str) -> str:
    if isinstance(segment, bool) or not isinstance(segment, (str, int)):
        raise InvalidCacheKeyError(f"{what} must be str or int, got {type(segment).__name__}")
    return quote(str(segment), safe="")


def _encode_required(segment: str, what: str) -> str:
    if not segment:
        raise InvalidCacheKeyError(f"{what} must not be empty")
    return _encode(segment, what)


def _is_canonical(segment: str) -> bool:
    """True if the segment is exactly what _encode would produce."""
    return quote(unquote(segment), safe="") == segment


@dataclass(frozen=True)
class CacheKey:
    """
    Key for tenant-specific data.

    `tenant_id` is a required field: a tenant key cannot be built without it.
    """

    resource: str
    tenant_id: str
    params: Tuple[Param, ...] = ()

    def __post_init__(self):
        # Validate eagerly so a bad key fails where it is built
        self.render()

    def render(self) -> str:
        segments = [
            PREFIX,
            TENANT_SCOPE,
            _encode_required(self.tenant_id, "tenant_id"),
            _encode_required(self.resource, "resource"),
        ]
        segments.extend(_encode(p, "param") for p in self.params)
        return SEP.join(segments)

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class PrincipalKey:
    """Key for data owned by one principal across tenants (memberships, status)."""

    resource: str
    principal_id: str
    params: Tuple[Param, ...] = ()

    def __post_init__(self):
        self.render()

    def render(self) -> str:
        segments = [
            PREFIX,
            PRINCIPAL_SCOPE,
            _encode_required(self.principal_id, "principal_id"),
            _encode_required(self.resource, "resource"),
        ]
        segments.extend(_encode(p, "param") for p in self.params)
        return SEP.join(segments)

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class DirectoryKey:
    """Key for a tenant directory lookup; carries the literal candidate string."""

    signal: str
    literal: str

    def __post_init__(self):
        if self.signal not in DIRECTORY_SIGNALS:
            raise InvalidCacheKeyError(f"Unknown directory signal '{self.signal}'")
        self.render()

    def render(self) -> str:
        return SEP.join([
            PREFIX,
            DIRECTORY_SCOPE,
            self.signal,
            _encode_required(self.literal, "literal"),
        ])

    def __str__(self) -> str:
        return self.render()


AnyKey = Union[CacheKey, PrincipalKey, DirectoryKey]


# ── Validator ───────────────────────────────────────────────────


def classify_key(raw: object) -> KeyClass:
    """
    Inspect an arbitrary key and report which convention it follows.

    Anything not produced by the key types above is LEGACY.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return KeyClass.LEGACY
    if not isinstance(raw, str):
        return KeyClass.LEGACY

    parts = raw.split(SEP)
    if len(parts) < 4 or parts[0] != PREFIX:
        return KeyClass.LEGACY
    if not all(_is_canonical(p) for p in parts[2:]):
        return KeyClass.LEGACY

    scope = parts[1]
    if scope == TENANT_SCOPE:
        if parts[2] and parts[3]:
            return KeyClass.TENANT
    elif scope == PRINCIPAL_SCOPE:
        if parts[2] and parts[3]:
            return KeyClass.PRINCIPAL
    elif scope == DIRECTORY_SCOPE:
        if len(parts) == 4 and parts[2] in DIRECTORY_SIGNALS and parts[3]:
            return KeyClass.DIRECTORY
    return KeyClass.LEGACY


def is_tenant_scoped(raw: object) -> bool:
    return classify_key(raw) == KeyClass.TENANT


def tenant_of(raw: object) -> Optional[str]:
    """Extract the tenant id from a tenant key, or None for any other key."""
    if not is_tenant_scoped(raw):
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return unquote(raw.split(SEP)[2])


def parse_tenant_key(raw: str) -> CacheKey:
    """Rebuild a CacheKey from its rendered form (params come back as str)."""
    if not is_tenant_scoped(raw):
        raise InvalidCacheKeyError(f"Not a tenant-scoped key: {raw!r}")
    parts = raw.split(SEP)
    return CacheKey(
        resource=unquote(parts[3]),
        tenant_id=unquote(parts[2]),
        params=tuple(unquote(p) for p in parts[4:]),
    )


# ── Match patterns (Redis SCAN) ─────────────────────────────────


def tenant_pattern(tenant_id: str) -> str:
    """All keys of one tenant."""
    return SEP.join([PREFIX, TENANT_SCOPE, _encode_required(tenant_id, "tenant_id"), "*"])


def resource_patterns(tenant_id: str, resource: str) -> Tuple[str, str]:
    """The bare resource key and every parameterized variant of it."""
    bare = CacheKey(resource, tenant_id).render()
    return bare, bare + SEP + "*"


# ── Pub/Sub channels ────────────────────────────────────────────


def tenant_channel(tenant_id: str) -> str:
    """Invalidation channel for one tenant, e.g. tenantry:events:tenant:t_001."""
    return SEP.join([PREFIX, "events", TENANT_SCOPE, _encode_required(tenant_id, "tenant_id")])


def principal_channel(principal_id: str) -> str:
    return SEP.join([PREFIX, "events", PRINCIPAL_SCOPE, _encode_required(principal_id, "principal_id")])


def all_channels_pattern() -> str:
    """Pattern matching every invalidation channel (PSUBSCRIBE)."""
    return SEP.join([PREFIX, "events", "*"])


# ── Resource registry ───────────────────────────────────────────


class QueryKeys:
    """Canonical keys for the product's cached queries."""

    # Tenant record & settings
    @staticmethod
    def company(tenant_id: str) -> CacheKey:
        return CacheKey("company", tenant_id)

    @staticmethod
    def company_features(tenant_id: str) -> CacheKey:
        return CacheKey("company-features", tenant_id)

    # Profiles & roles
    @staticmethod
    def role(tenant_id: str, principal_id: str) -> CacheKey:
        return CacheKey("role", tenant_id, (principal_id,))

    @staticmethod
    def user_profile(tenant_id: str, principal_id: str) -> CacheKey:
        return CacheKey("userProfile", tenant_id, (principal_id,))

    # Community
    @staticmethod
    def spaces(tenant_id: str, category_id: Optional[str] = None) -> CacheKey:
        return CacheKey("spaces", tenant_id, (category_id,) if category_id else ())

    @staticmethod
    def space_categories(tenant_id: str) -> CacheKey:
        return CacheKey("spaceCategories", tenant_id)

    @staticmethod
    def posts(tenant_id: str, space_id: Optional[str] = None) -> CacheKey:
        return CacheKey("posts", tenant_id, (space_id,) if space_id else ())

    # Learning
    @staticmethod
    def courses(tenant_id: str) -> CacheKey:
        return CacheKey("courses", tenant_id)

    @staticmethod
    def course_modules(tenant_id: str, course_id: Optional[str] = None) -> CacheKey:
        return CacheKey("course-modules", tenant_id, (course_id,) if course_id else ())

    @staticmethod
    def course_lessons(tenant_id: str, module_id: Optional[str] = None) -> CacheKey:
        return CacheKey("course-lessons", tenant_id, (module_id,) if module_id else ())

    # Access control & engagement
    @staticmethod
    def access_groups(tenant_id: str) -> CacheKey:
        return CacheKey("access-groups", tenant_id)

    @staticmethod
    def events(tenant_id: str) -> CacheKey:
        return CacheKey("events", tenant_id)

    @staticmethod
    def challenges(tenant_id: str) -> CacheKey:
        return CacheKey("challenges", tenant_id)

    @staticmethod
    def notifications(tenant_id: str) -> CacheKey:
        return CacheKey("notifications", tenant_id)

    # Per-principal
    @staticmethod
    def memberships(principal_id: str) -> PrincipalKey:
        return PrincipalKey("memberships", principal_id)

    @staticmethod
    def principal_status(principal_id: str) -> PrincipalKey:
        return PrincipalKey("status", principal_id)

    # Directory
    @staticmethod
    def directory(signal: str, literal: str) -> DirectoryKey:
        return DirectoryKey(signal, literal)


# Bare resource names that older code cached without a tenant segment
LEGACY_RESOURCES = frozenset({
    "company",
    "spaces",
    "userSpaces",
    "spaceCategories",
    "posts",
    "courses",
    "userProfile",
    "access-groups",
    "segments",
    "events",
    "challenges",
    "notifications",
    "bulk-actions",
    "bannedWords",
})
