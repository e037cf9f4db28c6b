"""Cache service implementation.

This module provides an abstract cache service interface and two bounded
implementations for caching operation responses:

- ``MemoryCacheService``: per-process, backed by ``ResponseCache``
- ``RedisCacheService``: shared across processes, with a sorted-set index
  per namespace so the namespace never holds more than ``max_size`` entries

Only successful payloads are ever stored. Keys are fingerprints built by
``app.utils.cache.build_fingerprint``.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

import redis.asyncio as redis

from app.models import StorageError
from app.utils.cache import ResponseCache

logger = logging.getLogger(__name__)


class CacheService(ABC):
    """Abstract base class for cache services.

    Defines the interface for bounded, TTL-aware response caching. Each
    instance serves a single namespace (usually one operation) with one
    TTL and one capacity.
    """

    def __init__(self, namespace: str, ttl_seconds: float, max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._namespace = namespace
        self._ttl_seconds = ttl_seconds
        self._max_size = max_size

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Retrieve cached value by key.

        Args:
            key: The fingerprint to look up.

        Returns:
            The cached value if present and younger than the TTL, None otherwise.

        Raises:
            StorageError: If the backing store is unreachable.
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store value under key, evicting the oldest entry when full.

        Args:
            key: The fingerprint to store under.
            value: The value to cache (must be JSON serializable).

        Raises:
            StorageError: If the backing store is unreachable.
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a specific key from the cache.

        Returns:
            True if the key was deleted, False if it didn't exist.
        """
        pass

    async def close(self) -> None:
        """Release backing resources. No-op by default."""

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @property
    def max_size(self) -> int:
        return self._max_size


class MemoryCacheService(CacheService):
    """Process-local cache. Instances in separate processes do not share entries."""

    def __init__(
        self,
        namespace: str,
        ttl_seconds: float,
        max_size: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(namespace, ttl_seconds, max_size)
        self._cache = ResponseCache(max_size=max_size, ttl_seconds=ttl_seconds, clock=clock)

    async def get(self, key: str) -> Any | None:
        return self._cache.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._cache.set(key, value)

    async def delete(self, key: str) -> bool:
        return self._cache.delete(key)

    def __len__(self) -> int:
        return len(self._cache)

    def keys(self) -> list[str]:
        return self._cache.keys()


class RedisCacheService(CacheService):
    """Redis-based implementation of the cache service.

    Values are stored as JSON under ``cache:{key}`` with a millisecond TTL.
    Insertion times are tracked in the sorted set ``cache-index:{namespace}``;
    after every write the oldest members beyond ``max_size`` are popped and
    their data keys deleted.

    Attributes:
        _client: The Redis async client instance.
    """

    DATA_PREFIX = "cache"
    INDEX_PREFIX = "cache-index"

    def __init__(
        self,
        namespace: str,
        ttl_seconds: float,
        max_size: int,
        redis_url: str = "redis://localhost:6379",
        client: redis.Redis | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(namespace, ttl_seconds, max_size)
        self._redis_url = redis_url
        self._client = client
        self._clock = clock

    async def connect(self) -> None:
        """Establish connection to Redis."""
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _ensure_connected(self) -> redis.Redis:
        if self._client is None:
            await self.connect()
        return self._client  # type: ignore

    def _data_key(self, key: str) -> str:
        return f"{self.DATA_PREFIX}:{key}"

    @property
    def index_key(self) -> str:
        return f"{self.INDEX_PREFIX}:{self._namespace}"

    async def get(self, key: str) -> Any | None:
        client = await self._ensure_connected()
        try:
            value = await client.get(self._data_key(key))
        except redis.RedisError as e:
            raise StorageError(f"Cache read failed for {self._namespace}: {e}") from e
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"[CACHE] Dropping undecodable entry in {self._namespace}")
            return None

    async def set(self, key: str, value: Any) -> None:
        client = await self._ensure_connected()
        now_ms = int(self._clock() * 1000)
        ttl_ms = int(self._ttl_seconds * 1000)
        data_key = self._data_key(key)
        try:
            await client.set(data_key, json.dumps(value), px=ttl_ms)
            # Entries whose data key has already expired no longer count.
            await client.zremrangebyscore(self.index_key, "-inf", now_ms - ttl_ms)
            await client.zadd(self.index_key, {data_key: now_ms})
            size = await client.zcard(self.index_key)
            if size > self._max_size:
                evicted = await client.zpopmin(self.index_key, size - self._max_size)
                stale = [member for member, _score in evicted]
                if stale:
                    await client.delete(*stale)
                    logger.debug(f"[CACHE] Evicted {len(stale)} entries from {self._namespace}")
        except redis.RedisError as e:
            raise StorageError(f"Cache write failed for {self._namespace}: {e}") from e

    async def delete(self, key: str) -> bool:
        client = await self._ensure_connected()
        data_key = self._data_key(key)
        try:
            await client.zrem(self.index_key, data_key)
            return (await client.delete(data_key)) > 0
        except redis.RedisError as e:
            raise StorageError(f"Cache delete failed for {self._namespace}: {e}") from e
