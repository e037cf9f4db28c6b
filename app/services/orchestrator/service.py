"""Per-operation request orchestration.

Every operation runs the same sequence:

1. reject calls without a caller identity
2. fingerprint the request and look it up in the cache; a hit returns
   immediately without touching the rate limiter or any upstream
3. count the call against the rate limiter; a rejection raises ``RateLimitedError``
4. produce the payload (usually through a ``FallbackPipeline``)
5. store successful payloads in the cache and return them

Cache failures are treated as misses (fail open). Failures are never cached.
"""

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from app.models import (
    RateLimitedError,
    ServiceError,
    UnauthenticatedError,
    UpstreamExhaustedError,
)
from app.services.cache import CacheService
from app.services.rate_limiter import RateLimiter
from app.utils.cache import build_fingerprint

logger = logging.getLogger(__name__)


class RequestOrchestrator:
    """Composes cache, rate limiter and producer for one named operation.

    Args:
        name: Operation name. Used as the rate-limit endpoint and fingerprint namespace.
        cache: Response cache for this operation, or None to skip caching.
        limiter: Shared rate limiter.
    """

    def __init__(
        self,
        name: str,
        cache: Optional[CacheService],
        limiter: RateLimiter,
    ) -> None:
        self.name = name
        self._cache = cache
        self._limiter = limiter

    async def run(
        self,
        caller_id: Optional[str],
        key_params: Mapping[str, Any],
        produce: Callable[[], Awaitable[dict]],
        cacheable: Optional[Callable[[dict], bool]] = None,
    ) -> dict:
        """Run one orchestrated call.

        Args:
            caller_id: Authenticated caller identity.
            key_params: The semantically relevant request fields. Must not
                include the caller: cached results are shared across callers.
            produce: Coroutine factory computing the payload on a cache miss.
            cacheable: Optional predicate; payloads it rejects are returned but
                not stored.

        Raises:
            UnauthenticatedError: No caller identity.
            RateLimitedError: The limiter rejected the call.
            UpstreamExhaustedError: The producer failed with a non-service error.
            ServiceError: Any typed error raised by the producer.
        """
        if not caller_id or not caller_id.strip():
            raise UnauthenticatedError()

        fingerprint = build_fingerprint(self.name, key_params)

        cached = await self._cache_get(fingerprint)
        if cached is not None:
            logger.info(f"[{self.name}] Cache hit")
            return cached

        decision = await self._limiter.check(caller_id, self.name)
        if not decision.admitted:
            raise RateLimitedError(self.name, decision.retry_after_seconds)

        try:
            payload = await produce()
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Unexpected failure: {e}", exc_info=True)
            raise UpstreamExhaustedError(f"{self.name} failed: {e}") from e

        if cacheable is None or cacheable(payload):
            await self._cache_put(fingerprint, payload)
        return payload

    async def _cache_get(self, fingerprint: str) -> Optional[dict]:
        if self._cache is None:
            return None
        try:
            return await self._cache.get(fingerprint)
        except Exception as e:
            logger.warning(f"[{self.name}] Cache read failed, treating as miss: {e}")
            return None

    async def _cache_put(self, fingerprint: str, payload: dict) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(fingerprint, payload)
        except Exception as e:
            logger.warning(f"[{self.name}] Cache write failed: {e}")
