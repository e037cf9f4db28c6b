"""Unit tests for the response caches and request fingerprints."""

import fakeredis
import pytest

from app.models import StorageError, TravelMode
from app.services.cache import MemoryCacheService, RedisCacheService
from app.utils.cache import ResponseCache, build_fingerprint


class TestResponseCache:
    """Tests for the TTL + insertion-order cache."""

    def test_put_then_get(self, clock) -> None:
        cache = ResponseCache(max_size=10, ttl_seconds=60, clock=clock)
        cache.set("a", {"value": 1})
        assert cache.get("a") == {"value": 1}

    def test_missing_key(self, clock) -> None:
        cache = ResponseCache(max_size=10, ttl_seconds=60, clock=clock)
        assert cache.get("nope") is None

    def test_entry_expires_at_ttl(self, clock) -> None:
        cache = ResponseCache(max_size=10, ttl_seconds=60, clock=clock)
        cache.set("a", {"value": 1})
        clock.advance(59)
        assert cache.get("a") == {"value": 1}
        clock.advance(1)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_evicts_oldest_insertion(self, clock) -> None:
        cache = ResponseCache(max_size=2, ttl_seconds=60, clock=clock)
        cache.set("a", {"n": 1})
        cache.set("b", {"n": 2})
        # Reads do not refresh position
        cache.get("a")
        cache.set("c", {"n": 3})
        assert cache.get("a") is None
        assert cache.keys() == ["b", "c"]

    def test_overwrite_moves_to_newest(self, clock) -> None:
        cache = ResponseCache(max_size=2, ttl_seconds=60, clock=clock)
        cache.set("a", {"n": 1})
        cache.set("b", {"n": 2})
        cache.set("a", {"n": 10})
        cache.set("c", {"n": 3})
        assert cache.get("b") is None
        assert cache.get("a") == {"n": 10}

    def test_rejects_zero_size(self) -> None:
        with pytest.raises(ValueError):
            ResponseCache(max_size=0)


class TestBuildFingerprint:
    """Tests for deterministic cache keys."""

    def test_field_order_does_not_matter(self) -> None:
        a = build_fingerprint("geocode", {"address": "Abisko", "lang": "en"})
        b = build_fingerprint("geocode", {"lang": "en", "address": "Abisko"})
        assert a == b

    def test_namespace_prefix(self) -> None:
        assert build_fingerprint("geocode", {"address": "Abisko"}) == 'geocode:{"address":"Abisko"}'

    def test_floats_are_rounded(self) -> None:
        a = build_fingerprint("directions", {"waypoints": [[68.3495001, 18.8312]]})
        b = build_fingerprint("directions", {"waypoints": [[68.3495, 18.8312]]})
        assert a == b

    def test_sequence_order_matters(self) -> None:
        a = build_fingerprint("directions", {"waypoints": [[1.0, 2.0], [3.0, 4.0]]})
        b = build_fingerprint("directions", {"waypoints": [[3.0, 4.0], [1.0, 2.0]]})
        assert a != b

    def test_enums_use_their_value(self) -> None:
        key = build_fingerprint("directions", {"mode": TravelMode.WALKING})
        assert key == 'directions:{"mode":"walking"}'


class TestMemoryCacheService:
    """Tests for the async cache service wrapper."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self, clock) -> None:
        cache = MemoryCacheService("geocode", ttl_seconds=60, max_size=5, clock=clock)
        await cache.set("k", {"latitude": 1.0})
        assert await cache.get("k") == {"latitude": 1.0}
        assert await cache.delete("k") is True
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_ttl_applies(self, clock) -> None:
        cache = MemoryCacheService("geocode", ttl_seconds=10, max_size=5, clock=clock)
        await cache.set("k", {"latitude": 1.0})
        clock.advance(10)
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_max_size_applies(self, clock) -> None:
        cache = MemoryCacheService("geocode", ttl_seconds=60, max_size=2, clock=clock)
        for i in range(3):
            await cache.set(f"k{i}", {"i": i})
        assert len(cache) == 2
        assert await cache.get("k0") is None


class TestRedisCacheService:
    """Tests for the shared Redis cache, run against fakeredis."""

    @pytest.fixture
    def client(self) -> fakeredis.FakeAsyncRedis:
        return fakeredis.FakeAsyncRedis(decode_responses=True)

    def _cache(self, client, clock, ttl_seconds: float = 60, max_size: int = 5) -> RedisCacheService:
        return RedisCacheService("geocode", ttl_seconds, max_size, client=client, clock=clock)

    @pytest.mark.asyncio
    async def test_set_get_delete(self, client, clock) -> None:
        cache = self._cache(client, clock)
        await cache.set("k", {"latitude": 68.35, "formatted_address": "Abisko"})
        assert await cache.get("k") == {"latitude": 68.35, "formatted_address": "Abisko"}
        assert await cache.delete("k") is True
        assert await cache.get("k") is None
        assert await client.zcard(cache.index_key) == 0

    @pytest.mark.asyncio
    async def test_entries_carry_ttl(self, client, clock) -> None:
        cache = self._cache(client, clock, ttl_seconds=30)
        await cache.set("k", {"i": 1})
        ttl_ms = await client.pttl("cache:k")
        assert 0 < ttl_ms <= 30_000

    @pytest.mark.asyncio
    async def test_evicts_oldest_insertion(self, client, clock) -> None:
        cache = self._cache(client, clock, max_size=2)
        for i in range(3):
            await cache.set(f"k{i}", {"i": i})
            clock.advance(1)
        assert [await cache.get(f"k{i}") for i in range(3)] == [None, {"i": 1}, {"i": 2}]
        assert await client.zcard(cache.index_key) == 2

    @pytest.mark.asyncio
    async def test_expired_entries_leave_the_index(self, client, clock) -> None:
        cache = self._cache(client, clock, ttl_seconds=10, max_size=2)
        await cache.set("old", {"i": 0})
        clock.advance(11)
        await cache.set("new", {"i": 1})
        assert await client.zrange(cache.index_key, 0, -1) == ["cache:new"]

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_a_miss(self, client, clock) -> None:
        cache = self._cache(client, clock)
        await client.set("cache:k", "{not json")
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_redis_errors_are_storage_errors(self, clock) -> None:
        server = fakeredis.FakeServer()
        server.connected = False
        cache = self._cache(fakeredis.FakeAsyncRedis(server=server, decode_responses=True), clock)
        with pytest.raises(StorageError):
            await cache.get("k")
        with pytest.raises(StorageError):
            await cache.set("k", {"i": 1})
