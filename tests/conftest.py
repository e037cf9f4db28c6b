"""Shared fixtures: a controllable clock and in-memory state."""

import pytest

from app.config import CACHE_POLICIES, RATE_LIMITS
from app.services.cache import MemoryCacheService
from app.services.rate_limiter import InMemoryRateLimitStore, RateLimiter


class FakeClock:
    """Callable clock (seconds since epoch) that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(InMemoryRateLimitStore(), RATE_LIMITS, clock=clock)


@pytest.fixture
def caches(clock: FakeClock) -> dict[str, MemoryCacheService]:
    return {
        name: MemoryCacheService(name, policy.ttl_seconds, policy.max_size, clock=clock)
        for name, policy in CACHE_POLICIES.items()
    }
