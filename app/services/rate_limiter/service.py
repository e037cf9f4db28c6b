"""Per-caller, per-endpoint rate limiter with burst protection.

Each (caller, endpoint) pair owns a ``RateLimitRecord`` with two counters:
a short burst window and a longer sustained window. Every call increments
both counters before the limits are evaluated, and the record is persisted
even when the call is rejected, so hammering retries stay rejected.

The load-check-increment-store sequence runs as one atomic unit against the
backing store:
- ``InMemoryRateLimitStore``: an ``asyncio.Lock`` (single process only)
- ``RedisRateLimitStore``: a single Lua script (shared across processes)

If the store fails, the limiter fails closed.
"""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Mapping

import redis.asyncio as redis

from app.models import StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    """Static limits for one endpoint. Windows are in milliseconds."""

    burst_max: int
    burst_window_ms: int
    sustained_max: int
    sustained_window_ms: int

    def __post_init__(self) -> None:
        if self.burst_max < 1 or self.sustained_max < 1:
            raise ValueError("rate limit maxima must be at least 1")
        if self.burst_window_ms <= 0 or self.sustained_window_ms <= 0:
            raise ValueError("rate limit windows must be positive")


@dataclass(frozen=True)
class RateLimitRecord:
    """Counter state for one (caller, endpoint) key. Timestamps in ms."""

    window_count: int
    window_start: int
    burst_count: int
    burst_start: int


@dataclass(frozen=True)
class RateLimitDecision:
    admitted: bool
    record: RateLimitRecord
    retry_after_seconds: int = 0


def advance_record(
    record: RateLimitRecord | None, rule: RateLimitRule, now_ms: int
) -> RateLimitRecord:
    """Count one more call against ``record``.

    Each window is checked independently: an elapsed window restarts at
    count 1 from ``now_ms``, a live window is incremented.
    """
    if record is None or now_ms - record.window_start > rule.sustained_window_ms:
        window_count, window_start = 1, now_ms
    else:
        window_count, window_start = record.window_count + 1, record.window_start

    if record is None or now_ms - record.burst_start > rule.burst_window_ms:
        burst_count, burst_start = 1, now_ms
    else:
        burst_count, burst_start = record.burst_count + 1, record.burst_start

    return RateLimitRecord(window_count, window_start, burst_count, burst_start)


def evaluate(record: RateLimitRecord, rule: RateLimitRule, now_ms: int) -> RateLimitDecision:
    """Decide admission for an already advanced record.

    A window that just restarted holds count 1, which every valid rule admits.
    """
    retry_after_ms = 0
    if record.window_count > rule.sustained_max:
        retry_after_ms = max(retry_after_ms, record.window_start + rule.sustained_window_ms - now_ms)
    if record.burst_count > rule.burst_max:
        retry_after_ms = max(retry_after_ms, record.burst_start + rule.burst_window_ms - now_ms)

    admitted = record.window_count <= rule.sustained_max and record.burst_count <= rule.burst_max
    retry_after = 0 if admitted else max(1, math.ceil(retry_after_ms / 1000))
    return RateLimitDecision(admitted=admitted, record=record, retry_after_seconds=retry_after)


class RateLimitStore(ABC):
    """Backing store for rate-limit records."""

    @abstractmethod
    async def hit(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitRecord:
        """Atomically load, advance and persist the record for ``key``.

        Returns:
            The record after counting this call.

        Raises:
            StorageError: If the store could not complete the update.
        """
        ...


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store. Correct for a single worker process only."""

    def __init__(self) -> None:
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitRecord:
        async with self._lock:
            record = advance_record(self._records.get(key), rule, now_ms)
            self._records[key] = record
            return record

    def get(self, key: str) -> RateLimitRecord | None:
        return self._records.get(key)


# Mirrors advance_record(); runs atomically inside Redis.
ADVANCE_RECORD_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local burst_window = tonumber(ARGV[2])
    local sustained_window = tonumber(ARGV[3])
    local ttl = tonumber(ARGV[4])

    local state = redis.call('HMGET', key, 'window_count', 'window_start', 'burst_count', 'burst_start')
    local window_count = tonumber(state[1])
    local window_start = tonumber(state[2])
    local burst_count = tonumber(state[3])
    local burst_start = tonumber(state[4])

    if window_count == nil or window_start == nil or (now - window_start) > sustained_window then
        window_count = 1
        window_start = now
    else
        window_count = window_count + 1
    end

    if burst_count == nil or burst_start == nil or (now - burst_start) > burst_window then
        burst_count = 1
        burst_start = now
    else
        burst_count = burst_count + 1
    end

    redis.call('HSET', key,
        'window_count', window_count, 'window_start', window_start,
        'burst_count', burst_count, 'burst_start', burst_start)
    redis.call('PEXPIRE', key, ttl)

    return {window_count, window_start, burst_count, burst_start}
"""


class RedisRateLimitStore(RateLimitStore):
    """Redis-backed store shared by every worker and instance.

    Records live in hashes under ``rate_limit:{caller}:{endpoint}``. The key
    expires once both windows have elapsed, which is equivalent to a reset.
    """

    KEY_PREFIX = "rate_limit"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._script = client.register_script(ADVANCE_RECORD_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisRateLimitStore":
        return cls(redis.from_url(redis_url, encoding="utf-8", decode_responses=True))

    async def hit(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitRecord:
        ttl_ms = max(rule.burst_window_ms, rule.sustained_window_ms) + 1
        try:
            result = await self._script(
                keys=[f"{self.KEY_PREFIX}:{key}"],
                args=[now_ms, rule.burst_window_ms, rule.sustained_window_ms, ttl_ms],
            )
        except redis.RedisError as e:
            raise StorageError(f"Rate limit update failed for {key}: {e}") from e
        window_count, window_start, burst_count, burst_start = (int(v) for v in result)
        return RateLimitRecord(window_count, window_start, burst_count, burst_start)

    async def close(self) -> None:
        await self._client.aclose()


class RateLimiter:
    """Admits or rejects calls per (caller, endpoint) pair.

    Endpoints without a configured rule are always admitted.
    """

    def __init__(
        self,
        store: RateLimitStore,
        rules: Mapping[str, RateLimitRule],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._rules = dict(rules)
        self._clock = clock

    @staticmethod
    def build_key(caller_id: str, endpoint: str) -> str:
        return f"{caller_id}:{endpoint}"

    async def check(self, caller_id: str, endpoint: str) -> RateLimitDecision:
        """Count this call and return the full decision."""
        if not caller_id:
            raise ValueError("caller_id cannot be empty")

        rule = self._rules.get(endpoint)
        now_ms = int(self._clock() * 1000)
        if rule is None:
            return RateLimitDecision(
                admitted=True, record=RateLimitRecord(0, now_ms, 0, now_ms)
            )

        key = self.build_key(caller_id, endpoint)
        try:
            record = await self._store.hit(key, rule, now_ms)
        except Exception as e:
            # Fail closed
            logger.error(f"[RATE] Store failure for {key}, denying: {e}")
            return RateLimitDecision(
                admitted=False,
                record=RateLimitRecord(0, now_ms, 0, now_ms),
                retry_after_seconds=1,
            )

        decision = evaluate(record, rule, now_ms)
        if not decision.admitted:
            logger.info(
                f"[RATE] Rejected {key}: sustained={record.window_count}/{rule.sustained_max} "
                f"burst={record.burst_count}/{rule.burst_max}"
            )
        return decision

    async def admit(self, caller_id: str, endpoint: str) -> bool:
        return (await self.check(caller_id, endpoint)).admitted
