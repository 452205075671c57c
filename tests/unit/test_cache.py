# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.
"""Unit tests for ScopedCache and SelectionStore."""

import pytest

from tenantry.core.metrics import platform_metrics
from tenantry.kernel.namespace import CacheKey, QueryKeys
from tenantry.memory.cache import CacheEntry, ScopedCache
from tenantry.memory.selection import SelectionStore


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCacheEntry:
    def test_staleness(self):
        entry = CacheEntry("k", 1, fetched_at=100.0)
        assert not entry.is_stale(60, now=150.0)
        assert entry.is_stale(60, now=160.0)


class TestScopedCache:
    @pytest.mark.asyncio
    async def test_set_and_get(self, cache):
        key = QueryKeys.spaces("t_a")
        await cache.set(key, [{"id": "s1"}])
        entry = await cache.get(key)
        assert entry.value == [{"id": "s1"}]
        assert entry.key == "tenantry:tenant:t_a:spaces"

    @pytest.mark.asyncio
    async def test_get_missing(self, cache):
        assert await cache.get(QueryKeys.spaces("t_a")) is None

    @pytest.mark.asyncio
    async def test_entries_expire(self, cache, mock_redis):
        key = QueryKeys.spaces("t_a")
        await cache.set(key, [])
        assert 0 < await mock_redis.ttl(key.render()) <= 3600

    @pytest.mark.asyncio
    async def test_same_resource_different_tenants_never_shared(self, cache):
        await cache.set(QueryKeys.spaces("t_a"), ["a-space"])
        await cache.set(QueryKeys.spaces("t_b"), ["b-space"])
        assert (await cache.get(QueryKeys.spaces("t_a"))).value == ["a-space"]
        assert (await cache.get(QueryKeys.spaces("t_b"))).value == ["b-space"]

    @pytest.mark.asyncio
    async def test_get_or_fetch_hit_and_miss(self, cache):
        calls = []

        async def fetch():
            calls.append(1)
            return {"n": len(calls)}

        key = QueryKeys.courses("t_a")
        assert await cache.get_or_fetch(key, fetch) == {"n": 1}
        assert await cache.get_or_fetch(key, fetch) == {"n": 1}
        assert len(calls) == 1
        assert platform_metrics.get_counter("cache:miss") == 1
        assert platform_metrics.get_counter("cache:hit") == 1

    @pytest.mark.asyncio
    async def test_stale_entry_is_refetched(self, mock_redis):
        clock = FakeClock()
        cache = ScopedCache(mock_redis, ttl=3600, stale_after=60, clock=clock)
        values = iter(["old", "new"])

        async def fetch():
            return next(values)

        key = QueryKeys.events("t_a")
        assert await cache.get_or_fetch(key, fetch) == "old"
        clock.now += 61
        assert await cache.get_or_fetch(key, fetch) == "new"

    @pytest.mark.asyncio
    async def test_fetch_error_writes_nothing(self, cache):
        async def fetch():
            raise RuntimeError("backend down")

        key = QueryKeys.events("t_a")
        with pytest.raises(RuntimeError):
            await cache.get_or_fetch(key, fetch)
        assert await cache.get(key) is None

    @pytest.mark.asyncio
    async def test_none_not_cached_by_default(self, cache):
        async def fetch():
            return None

        key = QueryKeys.events("t_a")
        assert await cache.get_or_fetch(key, fetch) is None
        assert await cache.get(key) is None
        await cache.get_or_fetch(key, fetch, cache_none=True)
        assert (await cache.get(key)).value is None

    @pytest.mark.asyncio
    async def test_unreadable_entry_dropped(self, cache, mock_redis):
        key = QueryKeys.spaces("t_a")
        await mock_redis.hset(key.render(), mapping={"value": "{not json", "fetched_at": "1"})
        assert await cache.get(key) is None
        assert await mock_redis.exists(key.render()) == 0

    @pytest.mark.asyncio
    async def test_invalidate_tenant_only_touches_that_tenant(self, cache):
        await cache.set(QueryKeys.spaces("t_a"), 1)
        await cache.set(QueryKeys.posts("t_a", "s1"), 2)
        await cache.set(QueryKeys.spaces("t_b"), 3)
        await cache.set(QueryKeys.memberships("p_1"), [])

        removed = await cache.invalidate_tenant("t_a")

        assert removed == 2
        assert await cache.get(QueryKeys.spaces("t_a")) is None
        assert await cache.get(QueryKeys.spaces("t_b")) is not None
        assert await cache.get(QueryKeys.memberships("p_1")) is not None

    @pytest.mark.asyncio
    async def test_invalidate_principal_entries(self, cache, mock_redis):
        await cache.set(QueryKeys.role("t_a", "p_1"), "member")
        await cache.set(QueryKeys.user_profile("t_a", "p_1"), {})
        await cache.set(QueryKeys.role("t_a", "p_2"), "owner")
        await cache.set(QueryKeys.role("t_b", "p_1"), "admin")
        await cache.set(QueryKeys.spaces("t_a"), 1)
        await mock_redis.set("tenantry:tenant:t_a:x y", "1")

        removed = await cache.invalidate_principal_entries("t_a", "p_1")

        assert removed == 2
        assert await cache.get(QueryKeys.role("t_a", "p_2")) is not None
        assert await cache.get(QueryKeys.role("t_b", "p_1")) is not None
        assert await cache.get(QueryKeys.spaces("t_a")) is not None

    @pytest.mark.asyncio
    async def test_invalidate_resource_covers_param_variants(self, cache):
        await cache.set(QueryKeys.spaces("t_a"), 1)
        await cache.set(QueryKeys.spaces("t_a", "cat1"), 2)
        await cache.set(QueryKeys.space_categories("t_a"), 3)

        removed = await cache.invalidate_resource("t_a", "spaces")

        assert removed == 2
        assert await cache.get(QueryKeys.space_categories("t_a")) is not None

    @pytest.mark.asyncio
    async def test_delete(self, cache):
        key = CacheKey("spaces", "t_a")
        await cache.set(key, 1)
        assert await cache.delete(key) == 1
        assert await cache.delete() == 0

    @pytest.mark.asyncio
    async def test_evict_legacy_keys(self, cache, mock_redis):
        await mock_redis.set("spaces", "[]")
        await mock_redis.set("company:acme", "{}")
        await mock_redis.set("some-unscoped-thing", "x")
        await cache.set(QueryKeys.spaces("t_a"), [])
        await mock_redis.set("tenantry:principal:p_1:selection", "t_a")

        removed = await cache.evict_legacy_keys()

        assert removed == 3
        assert await mock_redis.exists("spaces", "company:acme", "some-unscoped-thing") == 0
        assert await cache.get(QueryKeys.spaces("t_a")) is not None
        assert await mock_redis.get("tenantry:principal:p_1:selection") == "t_a"
        assert platform_metrics.get_counter("cache:legacy_evicted") == 3

    @pytest.mark.asyncio
    async def test_evict_legacy_keys_nothing_to_do(self, cache):
        assert await cache.evict_legacy_keys() == 0


class TestSelectionStore:
    @pytest.mark.asyncio
    async def test_save_load_clear(self, mock_redis):
        store = SelectionStore(mock_redis)
        assert await store.load("p_1") is None
        await store.save("p_1", "t_a")
        assert await store.load("p_1") == "t_a"
        assert await mock_redis.ttl("tenantry:principal:p_1:selection") == -1
        await store.clear("p_1")
        assert await store.load("p_1") is None

    @pytest.mark.asyncio
    async def test_per_principal(self, mock_redis):
        store = SelectionStore(mock_redis)
        await store.save("p_1", "t_a")
        await store.save("p_2", "t_b")
        assert await store.load("p_1") == "t_a"
        assert await store.load("p_2") == "t_b"
