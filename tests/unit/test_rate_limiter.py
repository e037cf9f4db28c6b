"""Unit tests for the burst + sustained rate limiter."""

import asyncio

import fakeredis
import pytest

from app.models import StorageError
from app.services.rate_limiter import (
    InMemoryRateLimitStore,
    RateLimiter,
    RateLimitRecord,
    RateLimitRule,
    RateLimitStore,
    RedisRateLimitStore,
    advance_record,
    evaluate,
)

SMALL_RULE = RateLimitRule(burst_max=5, burst_window_ms=1000, sustained_max=8, sustained_window_ms=60_000)


class FailingStore(RateLimitStore):
    async def hit(self, key, rule, now_ms):
        raise StorageError("redis unavailable")


class TestRateLimitRule:
    """Tests for rule validation."""

    def test_rejects_zero_maximum(self) -> None:
        with pytest.raises(ValueError):
            RateLimitRule(0, 1000, 10, 60_000)

    def test_rejects_non_positive_window(self) -> None:
        with pytest.raises(ValueError):
            RateLimitRule(5, 0, 10, 60_000)


class TestAdvanceRecord:
    """Tests for the pure window arithmetic."""

    def test_first_call_starts_both_windows(self) -> None:
        record = advance_record(None, SMALL_RULE, 1_000)
        assert record == RateLimitRecord(1, 1_000, 1, 1_000)

    def test_live_windows_are_incremented(self) -> None:
        record = advance_record(RateLimitRecord(3, 1_000, 2, 1_500), SMALL_RULE, 1_800)
        assert record == RateLimitRecord(4, 1_000, 3, 1_500)

    def test_burst_window_resets_independently(self) -> None:
        record = advance_record(RateLimitRecord(3, 1_000, 2, 1_000), SMALL_RULE, 2_500)
        assert record.window_count == 4
        assert record.burst_count == 1
        assert record.burst_start == 2_500

    def test_window_boundary_is_exclusive(self) -> None:
        # Exactly one window after the start is still inside the window
        record = advance_record(RateLimitRecord(1, 0, 1, 0), SMALL_RULE, 1_000)
        assert record.burst_count == 2

    def test_evaluate_reports_retry_after(self) -> None:
        decision = evaluate(RateLimitRecord(9, 0, 1, 0), SMALL_RULE, 1_500)
        assert decision.admitted is False
        assert decision.retry_after_seconds == 59


class TestRateLimiter:
    """Tests for RateLimiter.check against the in-memory store."""

    def _limiter(self, clock) -> RateLimiter:
        return RateLimiter(InMemoryRateLimitStore(), {"directions": SMALL_RULE}, clock=clock)

    @pytest.mark.asyncio
    async def test_burst_limit(self, clock) -> None:
        limiter = self._limiter(clock)
        for _ in range(5):
            assert await limiter.admit("user-1", "directions") is True

        decision = await limiter.check("user-1", "directions")
        assert decision.admitted is False
        assert decision.retry_after_seconds == 1

    @pytest.mark.asyncio
    async def test_burst_recovers_after_window(self, clock) -> None:
        limiter = self._limiter(clock)
        for _ in range(6):
            await limiter.check("user-1", "directions")
        clock.advance(2)
        assert await limiter.admit("user-1", "directions") is True

    @pytest.mark.asyncio
    async def test_sustained_limit(self, clock) -> None:
        limiter = self._limiter(clock)
        for _ in range(5):
            assert await limiter.admit("user-1", "directions")
        clock.advance(1.5)
        for _ in range(3):
            assert await limiter.admit("user-1", "directions")

        decision = await limiter.check("user-1", "directions")
        assert decision.admitted is False
        assert decision.retry_after_seconds == 59

    @pytest.mark.asyncio
    async def test_sustained_recovers_after_window(self, clock) -> None:
        limiter = self._limiter(clock)
        for _ in range(5):
            await limiter.check("user-1", "directions")
        clock.advance(2)
        for _ in range(4):
            await limiter.check("user-1", "directions")
        assert await limiter.admit("user-1", "directions") is False

        clock.advance(61)
        assert await limiter.admit("user-1", "directions") is True

    @pytest.mark.asyncio
    async def test_rejected_calls_are_counted(self, clock) -> None:
        store = InMemoryRateLimitStore()
        limiter = RateLimiter(store, {"directions": SMALL_RULE}, clock=clock)
        for _ in range(7):
            await limiter.check("user-1", "directions")
        record = store.get(RateLimiter.build_key("user-1", "directions"))
        assert record is not None
        assert record.burst_count == 7
        assert record.window_count == 7

    @pytest.mark.asyncio
    async def test_callers_and_endpoints_are_isolated(self, clock) -> None:
        limiter = RateLimiter(
            InMemoryRateLimitStore(),
            {"directions": SMALL_RULE, "geocode": SMALL_RULE},
            clock=clock,
        )
        for _ in range(5):
            await limiter.check("user-1", "directions")
        assert await limiter.admit("user-1", "directions") is False
        assert await limiter.admit("user-2", "directions") is True
        assert await limiter.admit("user-1", "geocode") is True

    @pytest.mark.asyncio
    async def test_unknown_endpoint_is_admitted(self, clock) -> None:
        limiter = self._limiter(clock)
        for _ in range(50):
            assert await limiter.admit("user-1", "unlisted")

    @pytest.mark.asyncio
    async def test_empty_caller_rejected(self, clock) -> None:
        limiter = self._limiter(clock)
        with pytest.raises(ValueError):
            await limiter.check("", "directions")

    @pytest.mark.asyncio
    async def test_store_failure_fails_closed(self, clock) -> None:
        limiter = RateLimiter(FailingStore(), {"directions": SMALL_RULE}, clock=clock)
        decision = await limiter.check("user-1", "directions")
        assert decision.admitted is False
        assert decision.retry_after_seconds == 1


class TestConcurrentAdmission:
    """Concurrent calls for one key are counted one at a time."""

    @pytest.mark.asyncio
    async def test_in_memory_store(self, clock) -> None:
        limiter = RateLimiter(InMemoryRateLimitStore(), {"directions": SMALL_RULE}, clock=clock)
        results = await asyncio.gather(*(limiter.admit("user-1", "directions") for _ in range(20)))
        assert sum(results) == SMALL_RULE.burst_max

    @pytest.mark.asyncio
    async def test_redis_store(self, clock) -> None:
        store = RedisRateLimitStore(fakeredis.FakeAsyncRedis(decode_responses=True))
        limiter = RateLimiter(store, {"directions": SMALL_RULE}, clock=clock)
        results = await asyncio.gather(*(limiter.admit("user-1", "directions") for _ in range(20)))
        assert sum(results) == SMALL_RULE.burst_max


class TestRedisRateLimitStore:
    """Tests for the Lua-backed store."""

    @pytest.fixture
    def client(self) -> fakeredis.FakeAsyncRedis:
        return fakeredis.FakeAsyncRedis(decode_responses=True)

    @pytest.mark.asyncio
    async def test_first_hit_starts_both_windows(self, client) -> None:
        store = RedisRateLimitStore(client)
        record = await store.hit("user-1:directions", SMALL_RULE, 1_000)
        assert record == RateLimitRecord(1, 1_000, 1, 1_000)

    @pytest.mark.asyncio
    async def test_matches_advance_record(self, client) -> None:
        store = RedisRateLimitStore(client)
        expected = None
        for now_ms in (1_000, 1_400, 1_900, 2_500, 2_600, 70_000):
            expected = advance_record(expected, SMALL_RULE, now_ms)
            assert await store.hit("user-1:directions", SMALL_RULE, now_ms) == expected

    @pytest.mark.asyncio
    async def test_record_persisted_with_expiry(self, client) -> None:
        store = RedisRateLimitStore(client)
        for now_ms in (1_000, 1_100, 1_200):
            await store.hit("user-1:directions", SMALL_RULE, now_ms)

        state = await client.hgetall("rate_limit:user-1:directions")
        assert state == {
            "window_count": "3",
            "window_start": "1000",
            "burst_count": "3",
            "burst_start": "1000",
        }
        ttl_ms = await client.pttl("rate_limit:user-1:directions")
        assert 0 < ttl_ms <= SMALL_RULE.sustained_window_ms + 1

    @pytest.mark.asyncio
    async def test_burst_limit_through_limiter(self, client, clock) -> None:
        limiter = RateLimiter(RedisRateLimitStore(client), {"directions": SMALL_RULE}, clock=clock)
        for _ in range(5):
            assert await limiter.admit("user-1", "directions") is True
        decision = await limiter.check("user-1", "directions")
        assert decision.admitted is False
        assert decision.retry_after_seconds == 1

        clock.advance(2)
        assert await limiter.admit("user-1", "directions") is True

    @pytest.mark.asyncio
    async def test_redis_error_is_storage_error(self) -> None:
        server = fakeredis.FakeServer()
        server.connected = False
        store = RedisRateLimitStore(fakeredis.FakeAsyncRedis(server=server, decode_responses=True))
        with pytest.raises(StorageError):
            await store.hit("user-1:directions", SMALL_RULE, 1_000)

    @pytest.mark.asyncio
    async def test_unreachable_redis_fails_closed(self, clock) -> None:
        server = fakeredis.FakeServer()
        server.connected = False
        store = RedisRateLimitStore(fakeredis.FakeAsyncRedis(server=server, decode_responses=True))
        limiter = RateLimiter(store, {"directions": SMALL_RULE}, clock=clock)
        decision = await limiter.check("user-1", "directions")
        assert decision.admitted is False
        assert decision.retry_after_seconds == 1
