"""Response cache: in-memory and Redis-backed."""

from .service import CacheService, MemoryCacheService, RedisCacheService

__all__ = [
    "CacheService",
    "MemoryCacheService",
    "RedisCacheService",
]
