"""Unit tests for the per-operation request orchestrator."""

import pytest

from app.models import (
    InvalidInputError,
    RateLimitedError,
    StorageError,
    UnauthenticatedError,
    UpstreamExhaustedError,
)
from app.services.cache import CacheService, MemoryCacheService
from app.services.orchestrator import RequestOrchestrator
from app.services.rate_limiter import InMemoryRateLimitStore, RateLimiter, RateLimitRule

RULE = RateLimitRule(burst_max=3, burst_window_ms=10_000, sustained_max=10, sustained_window_ms=60_000)


class BrokenCache(CacheService):
    def __init__(self) -> None:
        super().__init__("broken", ttl_seconds=60, max_size=10)

    async def get(self, key):
        raise StorageError("down")

    async def set(self, key, value):
        raise StorageError("down")

    async def delete(self, key):
        raise StorageError("down")


class CountingProducer:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self.calls = 0
        self.payload = payload if payload is not None else {"value": 42}
        self.error = error

    async def __call__(self) -> dict:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.payload


class TestRequestOrchestrator:
    """Tests for the auth -> cache -> limit -> produce -> store sequence."""

    def setup_method(self) -> None:
        self.limiter = RateLimiter(InMemoryRateLimitStore(), {"geocode": RULE})
        self.cache = MemoryCacheService("geocode", ttl_seconds=60, max_size=10)
        self.orchestrator = RequestOrchestrator("geocode", self.cache, self.limiter)

    @pytest.mark.asyncio
    async def test_missing_caller_is_unauthenticated(self) -> None:
        producer = CountingProducer()
        with pytest.raises(UnauthenticatedError):
            await self.orchestrator.run(None, {"address": "Abisko"}, producer)
        with pytest.raises(UnauthenticatedError):
            await self.orchestrator.run("  ", {"address": "Abisko"}, producer)
        assert producer.calls == 0

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self) -> None:
        producer = CountingProducer()
        first = await self.orchestrator.run("user-1", {"address": "Abisko"}, producer)
        second = await self.orchestrator.run("user-2", {"address": "Abisko"}, producer)
        assert first == second == {"value": 42}
        assert producer.calls == 1

    @pytest.mark.asyncio
    async def test_cache_hit_does_not_count_against_limit(self) -> None:
        producer = CountingProducer()
        for _ in range(10):
            await self.orchestrator.run("user-1", {"address": "Abisko"}, producer)
        # Only the first call reached the limiter
        assert await self.limiter.admit("user-1", "geocode") is True

    @pytest.mark.asyncio
    async def test_rate_limited_after_burst(self) -> None:
        producer = CountingProducer()
        for i in range(3):
            await self.orchestrator.run("user-1", {"address": f"place {i}"}, producer)
        with pytest.raises(RateLimitedError) as exc_info:
            await self.orchestrator.run("user-1", {"address": "place 3"}, producer)
        assert exc_info.value.endpoint == "geocode"
        assert exc_info.value.retry_after_seconds >= 1
        assert producer.calls == 3

    @pytest.mark.asyncio
    async def test_service_errors_propagate_and_are_not_cached(self) -> None:
        producer = CountingProducer(error=InvalidInputError("bad"))
        with pytest.raises(InvalidInputError):
            await self.orchestrator.run("user-1", {"address": "x"}, producer)
        assert len(self.cache) == 0

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_upstream_exhausted(self) -> None:
        producer = CountingProducer(error=KeyError("routes"))
        with pytest.raises(UpstreamExhaustedError):
            await self.orchestrator.run("user-1", {"address": "x"}, producer)

    @pytest.mark.asyncio
    async def test_cacheable_predicate(self) -> None:
        producer = CountingProducer(payload={"latitude": None})
        await self.orchestrator.run(
            "user-1", {"address": "x"}, producer, cacheable=lambda p: p["latitude"] is not None
        )
        await self.orchestrator.run(
            "user-1", {"address": "x"}, producer, cacheable=lambda p: p["latitude"] is not None
        )
        assert producer.calls == 2

    @pytest.mark.asyncio
    async def test_cache_failure_fails_open(self) -> None:
        orchestrator = RequestOrchestrator("geocode", BrokenCache(), self.limiter)
        producer = CountingProducer()
        assert await orchestrator.run("user-1", {"address": "x"}, producer) == {"value": 42}
        assert producer.calls == 1

    @pytest.mark.asyncio
    async def test_no_cache_configured(self) -> None:
        orchestrator = RequestOrchestrator("geocode", None, self.limiter)
        producer = CountingProducer()
        await orchestrator.run("user-1", {"address": "x"}, producer)
        await orchestrator.run("user-1", {"address": "x"}, producer)
        assert producer.calls == 2
