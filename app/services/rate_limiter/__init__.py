"""Rate limiter with burst and sustained windows."""

from .service import (
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimiter,
    RateLimitRecord,
    RateLimitRule,
    RateLimitStore,
    RedisRateLimitStore,
    advance_record,
    evaluate,
)

__all__ = [
    "InMemoryRateLimitStore",
    "RateLimitDecision",
    "RateLimiter",
    "RateLimitRecord",
    "RateLimitRule",
    "RateLimitStore",
    "RedisRateLimitStore",
    "advance_record",
    "evaluate",
]
