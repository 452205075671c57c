# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.
"""Unit tests for TenantrySettings configuration."""

from tenantry.core.config import TenantrySettings


class TestTenantrySettings:
    def test_defaults(self):
        s = TenantrySettings(_env_file=None)
        assert s.REDIS_URL == "redis://localhost:6379/0"
        assert "postgresql" in s.DATABASE_URL
        assert s.LOG_LEVEL == "INFO"
        assert s.TENANTRY_ENV == "dev"
        assert s.BASE_DOMAIN == "weplataforma.com.br"
        assert s.RESERVED_LABELS == ["www", "app"]
        assert s.CACHE_TTL == 3600
        assert s.NOT_FOUND_REDIRECT_DELAY == 3
        assert s.MEMBERSHIP_CONTEXT_LIMIT == 10000
        assert "/auth" in s.PUBLIC_ROUTES

    def test_custom_values(self):
        s = TenantrySettings(
            _env_file=None,
            REDIS_URL="redis://custom:6380/1",
            BASE_DOMAIN="example.org",
            CACHE_STALE_AFTER=30,
            CACHE_EVICT_LEGACY_ON_STARTUP=False,
        )
        assert s.REDIS_URL == "redis://custom:6380/1"
        assert s.BASE_DOMAIN == "example.org"
        assert s.CACHE_STALE_AFTER == 30
        assert s.CACHE_EVICT_LEGACY_ON_STARTUP is False

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("BASE_DOMAIN", "staging.example.org")
        monkeypatch.setenv("LOCAL_HOSTS", '["localhost", "dev.local"]')
        s = TenantrySettings(_env_file=None)
        assert s.BASE_DOMAIN == "staging.example.org"
        assert s.LOCAL_HOSTS == ["localhost", "dev.local"]
