# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.
"""Unit tests for host resolution and redirect targets."""

import pytest

from tenantry.kernel.resolver import (
    base_url,
    is_local_host,
    normalize_host,
    resolve_host,
    tenant_host,
    tenant_url,
)
from tenantry.protocols.schema import DomainStatus, HostCandidate, Tenant

BASE = "weplataforma.com.br"


def resolve(host):
    return resolve_host(host, base_domain=BASE, reserved_labels=["www", "app"], local_hosts=["localhost", "127.0.0.1"])


class TestNormalizeHost:
    def test_lowercases_and_strips_port(self):
        assert normalize_host("Acme.WePlataforma.com.br:8443") == "acme.weplataforma.com.br"

    def test_trailing_dot(self):
        assert normalize_host("acme.com.") == "acme.com"

    @pytest.mark.parametrize("host", [None, "", "   ", "[::1]:8080", "fe80::1", "bad_label.com", "-acme.com"])
    def test_rejects_implausible_hosts(self, host):
        assert normalize_host(host) is None


class TestResolveHost:
    def test_one_extra_label_is_subdomain(self):
        assert resolve("acme.weplataforma.com.br") == HostCandidate(subdomain="acme")

    def test_leading_label_of_deeper_host(self):
        assert resolve("acme.eu.weplataforma.com.br") == HostCandidate(subdomain="acme")

    def test_base_domain_is_empty(self):
        assert resolve(BASE).is_empty

    @pytest.mark.parametrize("label", ["www", "app", "WWW"])
    def test_reserved_labels_are_empty(self, label):
        assert resolve(f"{label}.{BASE}").is_empty

    @pytest.mark.parametrize("host", ["localhost", "localhost:8080", "acme.localhost", "127.0.0.1:3000"])
    def test_local_hosts_are_empty(self, host):
        assert resolve(host).is_empty

    def test_unrelated_host_is_custom_domain(self):
        assert resolve("Community.Example.org:443") == HostCandidate(custom_domain="community.example.org")

    def test_ip_address_is_empty(self):
        assert resolve("10.0.0.7").is_empty

    def test_single_label_is_empty(self):
        assert resolve("intranet").is_empty

    def test_malformed_host_is_empty(self):
        assert resolve("acme..weplataforma.com.br").is_empty

    def test_lookalike_suffix_is_not_subdomain(self):
        # Shares the base as a string suffix but not as a label boundary
        assert resolve("evilweplataforma.com.br") == HostCandidate(custom_domain="evilweplataforma.com.br")

    def test_uses_settings_by_default(self):
        assert resolve_host("acme.weplataforma.com.br") == HostCandidate(subdomain="acme")


class TestIsLocalHost:
    def test_exact_and_suffix(self):
        assert is_local_host("localhost", ["localhost"])
        assert is_local_host("acme.localhost", ["localhost"])
        assert not is_local_host("notlocalhost", ["localhost"])


class TestRedirectTargets:
    def test_base_url(self):
        assert base_url(scheme="https", base_domain=BASE) == f"https://{BASE}"
        assert base_url(scheme="http", base_domain=BASE, path="/x") == f"http://{BASE}/x"

    def test_tenant_host_prefers_verified_custom_domain(self):
        tenant = Tenant(
            id="t1", name="Acme", subdomain="acme",
            custom_domain="acme.com", custom_domain_status=DomainStatus.VERIFIED,
        )
        assert tenant_host(tenant, BASE) == "acme.com"

    def test_tenant_host_ignores_pending_domain(self):
        tenant = Tenant(
            id="t1", name="Acme", subdomain="acme",
            custom_domain="acme.com", custom_domain_status=DomainStatus.PENDING,
        )
        assert tenant_host(tenant, BASE) == f"acme.{BASE}"

    def test_tenant_without_routing_identifiers_uses_base(self):
        assert tenant_host(Tenant(id="t1", name="Acme"), BASE) == BASE

    def test_tenant_url(self):
        tenant = Tenant(id="t1", name="Acme", subdomain="acme")
        assert tenant_url(tenant, BASE, scheme="https", path="/spaces") == f"https://acme.{BASE}/spaces"
