# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.
"""Unit tests for the tenant-scoped cache key convention."""

import pytest

from tenantry.core.errors import InvalidCacheKeyError
from tenantry.kernel.namespace import (
    CacheKey,
    DirectoryKey,
    KeyClass,
    PrincipalKey,
    QueryKeys,
    all_channels_pattern,
    classify_key,
    is_tenant_scoped,
    parse_tenant_key,
    principal_channel,
    resource_patterns,
    tenant_channel,
    tenant_of,
    tenant_pattern,
)


class TestCacheKey:
    def test_render(self):
        assert CacheKey("spaces", "t_001").render() == "tenantry:tenant:t_001:spaces"

    def test_render_with_params(self):
        key = CacheKey("posts", "t_001", ("space_9", 2))
        assert str(key) == "tenantry:tenant:t_001:posts:space_9:2"

    def test_different_tenants_different_keys(self):
        assert CacheKey("spaces", "tenant_a", ("x",)) != CacheKey("spaces", "tenant_b", ("x",))
        assert CacheKey("spaces", "tenant_a", ("x",)).render() != CacheKey("spaces", "tenant_b", ("x",)).render()

    def test_separator_cannot_forge_tenant(self):
        # tenant "a:b" + resource "c" must not collide with tenant "a" + resource "b:c"
        forged = CacheKey("c", "a:b").render()
        honest = CacheKey("b:c", "a").render()
        assert forged != honest
        assert tenant_of(forged) == "a:b"

    @pytest.mark.parametrize("tenant_id", ["", None])
    def test_tenant_id_required(self, tenant_id):
        with pytest.raises(InvalidCacheKeyError):
            CacheKey("spaces", tenant_id)

    def test_empty_resource_rejected(self):
        with pytest.raises(InvalidCacheKeyError):
            CacheKey("", "t_001")

    def test_non_scalar_param_rejected(self):
        with pytest.raises(InvalidCacheKeyError):
            CacheKey("spaces", "t_001", ({"a": 1},))

    def test_roundtrip_through_parser(self):
        key = CacheKey("spaces", "t:1/%", ("cat 1",))
        assert parse_tenant_key(key.render()) == key


class TestOtherKeys:
    def test_principal_key(self):
        assert PrincipalKey("memberships", "p_1").render() == "tenantry:principal:p_1:memberships"

    def test_directory_key(self):
        assert DirectoryKey("subdomain", "acme").render() == "tenantry:directory:subdomain:acme"

    def test_directory_key_unknown_signal(self):
        with pytest.raises(InvalidCacheKeyError):
            DirectoryKey("email", "a@b.c")


class TestClassifyKey:
    def test_tenant(self):
        assert classify_key("tenantry:tenant:t_001:spaces") == KeyClass.TENANT
        assert is_tenant_scoped("tenantry:tenant:t_001:spaces:cat")

    def test_principal_and_directory(self):
        assert classify_key("tenantry:principal:p_1:selection") == KeyClass.PRINCIPAL
        assert classify_key("tenantry:directory:id:t_001") == KeyClass.DIRECTORY

    @pytest.mark.parametrize("raw", [
        "spaces",
        "company:acme",
        "tenantry:tenant:t_001",
        "tenantry:tenant::spaces",
        "tenantry:other:t_001:spaces",
        "tenantry:directory:email:x",
        "tenantry:tenant:a:b:c:raw value",
        42,
    ])
    def test_legacy(self, raw):
        assert classify_key(raw) == KeyClass.LEGACY
        assert tenant_of(raw) is None

    def test_bytes_keys(self):
        assert classify_key(b"tenantry:tenant:t_001:spaces") == KeyClass.TENANT

    def test_parse_rejects_non_tenant_key(self):
        with pytest.raises(InvalidCacheKeyError):
            parse_tenant_key("spaces")


class TestPatternsAndChannels:
    def test_tenant_pattern(self):
        assert tenant_pattern("t_001") == "tenantry:tenant:t_001:*"

    def test_resource_patterns(self):
        bare, variants = resource_patterns("t_001", "spaces")
        assert bare == "tenantry:tenant:t_001:spaces"
        assert variants == "tenantry:tenant:t_001:spaces:*"

    def test_channels(self):
        assert tenant_channel("t_001") == "tenantry:events:tenant:t_001"
        assert principal_channel("p_1") == "tenantry:events:principal:p_1"
        assert tenant_channel("tenant_a") != tenant_channel("tenant_b")
        assert all_channels_pattern() == "tenantry:events:*"


class TestQueryKeys:
    def test_every_tenant_query_carries_tenant(self):
        keys = [
            QueryKeys.company("t1"),
            QueryKeys.company_features("t1"),
            QueryKeys.role("t1", "p1"),
            QueryKeys.user_profile("t1", "p1"),
            QueryKeys.spaces("t1"),
            QueryKeys.spaces("t1", "cat"),
            QueryKeys.space_categories("t1"),
            QueryKeys.posts("t1", "s1"),
            QueryKeys.courses("t1"),
            QueryKeys.course_modules("t1", "c1"),
            QueryKeys.course_lessons("t1", "m1"),
            QueryKeys.access_groups("t1"),
            QueryKeys.events("t1"),
            QueryKeys.challenges("t1"),
            QueryKeys.notifications("t1"),
        ]
        for key in keys:
            assert tenant_of(key.render()) == "t1"

    def test_principal_queries(self):
        assert classify_key(QueryKeys.memberships("p1").render()) == KeyClass.PRINCIPAL
        assert classify_key(QueryKeys.principal_status("p1").render()) == KeyClass.PRINCIPAL
