"""
Unit tests for CacheService and MemoryCacheBackend.

Tests TTL pass-through, prefix invalidation, metrics and graceful degradation.
"""

import pytest

from missionflow.core.cache import CacheService, MemoryCacheBackend


class BrokenBackend:
    """Backend whose every call fails."""

    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("redis down")

    async def delete(self, key):
        raise ConnectionError("redis down")

    async def delete_prefix(self, prefix):
        raise ConnectionError("redis down")

    async def close(self):
        return None


@pytest.mark.unit
class TestMemoryBackend:
    """Test the aiocache-backed in-process backend."""

    async def test_ttl_is_handed_to_aiocache(self, mocker):
        cache = mocker.AsyncMock()
        backend = MemoryCacheBackend(cache)

        await backend.set("k", {"v": 1}, ttl_seconds=10)

        cache.set.assert_awaited_once_with("k", {"v": 1}, ttl=10)

    async def test_round_trip_and_delete(self):
        backend = MemoryCacheBackend()
        await backend.set("k", {"v": 1}, ttl_seconds=60)

        assert await backend.get("k") == {"v": 1}
        assert await backend.delete("k") is True
        assert await backend.delete("k") is False
        assert await backend.get("k") is None

    async def test_delete_prefix(self):
        backend = MemoryCacheBackend()
        await backend.set("x:1", 1, ttl_seconds=60)
        await backend.set("x:2", 2, ttl_seconds=60)
        await backend.set("y:1", 3, ttl_seconds=60)

        await backend.delete_prefix("x:")

        assert await backend.get("x:1") is None
        assert await backend.get("x:2") is None
        assert await backend.get("y:1") == 3


@pytest.mark.unit
class TestCacheService:
    """Test the service layer on top of a backend."""

    def test_key_templates(self):
        cache = CacheService(MemoryCacheBackend())

        assert (
            cache.key("campaign_snapshot", campaign_id="c-1")
            == "missionflow:v1:campaign:c-1:snapshot"
        )
        assert cache.key("rank_ladder", campaign_id="c-1") == "missionflow:v1:campaign:c-1:ranks"

    def test_ttls_come_from_config(self, config_manager):
        config_manager.set("cache.ttl.rank_ladder", 42)
        cache = CacheService(MemoryCacheBackend(), config_manager)

        assert cache.ttl_for("rank_ladder") == 42
        assert cache.ttl_for("campaign_snapshot") == 60
        assert cache.ttl_for("something_else") == 60

    async def test_hits_and_misses_are_counted(self, config_manager):
        cache = CacheService(MemoryCacheBackend(), config_manager)
        key = cache.key("campaign_snapshot", campaign_id="c-1")

        assert await cache.get(key) is None
        await cache.set(key, {"missions": []}, cache_type="campaign_snapshot")
        assert await cache.get(key) == {"missions": []}

        metrics = cache.get_metrics()
        assert metrics["hits"] == 1
        assert metrics["misses"] == 1
        assert metrics["sets"] == 1
        assert metrics["hit_rate"] == 50.0

    async def test_get_or_load_calls_loader_once(self, config_manager):
        cache = CacheService(MemoryCacheBackend(), config_manager)
        calls = []

        async def loader():
            calls.append(1)
            return {"levels": [1, 2]}

        first = await cache.get_or_load("k", loader, cache_type="rank_ladder")
        second = await cache.get_or_load("k", loader, cache_type="rank_ladder")

        assert first == second == {"levels": [1, 2]}
        assert len(calls) == 1

    async def test_get_or_load_does_not_cache_none(self, config_manager):
        cache = CacheService(MemoryCacheBackend(), config_manager)
        calls = []

        async def loader():
            calls.append(1)
            return None

        await cache.get_or_load("k", loader, cache_type="rank_ladder")
        await cache.get_or_load("k", loader, cache_type="rank_ladder")

        assert len(calls) == 2

    async def test_invalidate_campaign_only_touches_that_campaign(self, config_manager):
        cache = CacheService(MemoryCacheBackend(), config_manager)
        for campaign_id in ("c-1", "c-2"):
            await cache.set(cache.key("campaign_snapshot", campaign_id=campaign_id), 1, ttl_seconds=60)
            await cache.set(cache.key("rank_ladder", campaign_id=campaign_id), 1, ttl_seconds=60)

        assert await cache.invalidate_campaign("c-1") is True

        assert await cache.get(cache.key("rank_ladder", campaign_id="c-1")) is None
        assert await cache.get(cache.key("campaign_snapshot", campaign_id="c-1")) is None
        assert await cache.get(cache.key("rank_ladder", campaign_id="c-2")) == 1
        assert cache.get_metrics()["invalidations"] == 1

    async def test_failing_backend_degrades_to_miss(self, config_manager):
        """Backend errors are counted and never raised."""
        cache = CacheService(BrokenBackend(), config_manager)

        assert await cache.get("k") is None
        assert await cache.set("k", 1, ttl_seconds=5) is False
        assert await cache.delete("k") is False
        assert await cache.invalidate_prefix("missionflow:") is False

        metrics = cache.get_metrics()
        assert metrics["errors"] == 4
        assert metrics["hits"] == 0

    def test_hit_rate_without_reads(self):
        assert CacheService(MemoryCacheBackend()).get_hit_rate() == 0.0
