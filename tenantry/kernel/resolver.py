# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Host Resolver — Derive tenant candidates from the request host.

    acme.weplataforma.com.br  -> HostCandidate(subdomain="acme")
    cursos.acme.com           -> HostCandidate(custom_domain="cursos.acme.com")
    weplataforma.com.br       -> HostCandidate()   (marketing site)
    app.weplataforma.com.br   -> HostCandidate()   (reserved label)
    localhost:5173            -> HostCandidate()   (local development)

Pure functions: no I/O, never raise on bad input.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from tenantry.core.config import settings
from tenantry.protocols.schema import HostCandidate, Tenant

_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_NO_CANDIDATE = HostCandidate()


def normalize_host(host: Optional[str]) -> Optional[str]:
    """
    Lowercase, drop port and trailing dot.

    Returns None for anything that is not a plausible DNS host name.
    """
    if not host or not isinstance(host, str):
        return None
    host = host.strip().lower()
    if not host or host.startswith("["):
        # IPv6 literals never name a tenant
        return None
    if host.count(":") > 1:
        return None
    host = host.split(":", 1)[0].rstrip(".")
    if not host:
        return None
    labels = host.split(".")
    if not all(_LABEL_RE.match(label) for label in labels):
        return None
    return host


def is_local_host(host: str, local_hosts: Iterable[str]) -> bool:
    """Local development aliases (and their subdomains) bypass tenant routing."""
    for alias in local_hosts:
        alias = alias.lower()
        if host == alias or host.endswith("." + alias):
            return True
    return False


def _is_ip_address(host: str) -> bool:
    return all(label.isdigit() for label in host.split("."))


def resolve_host(
    host: Optional[str],
    base_domain: Optional[str] = None,
    reserved_labels: Optional[Iterable[str]] = None,
    local_hosts: Optional[Iterable[str]] = None,
) -> HostCandidate:
    """
    Produce the tenant candidate implied by a host string.

    Args:
        host: Raw Host header value (port allowed).
        base_domain: Registered base domain; defaults to settings.BASE_DOMAIN.
        reserved_labels: Leading labels that mean "main site".
        local_hosts: Development aliases with no tenant routing.
    """
    base = (base_domain if base_domain is not None else settings.BASE_DOMAIN).lower().rstrip(".")
    reserved = {
        label.lower()
        for label in (reserved_labels if reserved_labels is not None else settings.RESERVED_LABELS)
    }
    local = local_hosts if local_hosts is not None else settings.LOCAL_HOSTS

    normalized = normalize_host(host)
    if normalized is None:
        return _NO_CANDIDATE
    if is_local_host(normalized, local):
        return _NO_CANDIDATE
    if normalized == base:
        return _NO_CANDIDATE

    if normalized.endswith("." + base):
        extra = normalized[: -(len(base) + 1)].split(".")
        leading = extra[0]
        if leading in reserved:
            return _NO_CANDIDATE
        return HostCandidate(subdomain=leading)

    # Unrelated host: a custom domain needs at least two labels and no raw IPs
    if "." not in normalized or _is_ip_address(normalized):
        return _NO_CANDIDATE
    return HostCandidate(custom_domain=normalized)


# ── Redirect targets ────────────────────────────────────────────


def base_url(
    scheme: Optional[str] = None,
    base_domain: Optional[str] = None,
    path: str = "",
) -> str:
    """URL of the base/marketing host."""
    scheme = scheme or settings.DEFAULT_SCHEME
    base = base_domain or settings.BASE_DOMAIN
    return f"{scheme}://{base}{path}"


def tenant_host(tenant: Tenant, base_domain: Optional[str] = None) -> str:
    """
    Canonical host for a tenant.

    Verified custom domain first, then {subdomain}.{base}, else the base host.
    """
    base = base_domain or settings.BASE_DOMAIN
    if tenant.has_verified_custom_domain:
        return tenant.custom_domain
    if tenant.subdomain:
        return f"{tenant.subdomain}.{base}"
    return base


def tenant_url(
    tenant: Tenant,
    base_domain: Optional[str] = None,
    scheme: Optional[str] = None,
    path: str = "",
) -> str:
    scheme = scheme or settings.DEFAULT_SCHEME
    return f"{scheme}://{tenant_host(tenant, base_domain)}{path}"
