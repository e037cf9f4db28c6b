"""In-memory response cache with TTL expiration.

Process-level store for operation responses. Entries are evicted lazily when
read after their TTL, and eagerly in insertion order once the store holds more
than ``max_size`` entries.
"""

import json
import time
from collections import OrderedDict
from typing import Any, Callable, Mapping

FLOAT_PRECISION = 6


class ResponseCache:
    """TTL-aware, insertion-ordered cache for JSON-serializable responses."""

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._cache: OrderedDict[str, tuple[float, dict]] = OrderedDict()
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock

    def get(self, key: str) -> dict | None:
        if key not in self._cache:
            return None
        stored_at, value = self._cache[key]
        if self._clock() - stored_at >= self._ttl:
            del self._cache[key]
            return None
        return value

    def set(self, key: str, value: dict) -> None:
        # An overwrite is a fresh insertion: it moves to the newest position.
        self._cache.pop(key, None)
        self._cache[key] = (self._clock(), value)
        if len(self._cache) > self._max_size:
            self._cache.popitem(last=False)

    def delete(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    def keys(self) -> list[str]:
        """Keys from oldest to newest insertion."""
        return list(self._cache.keys())

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl_seconds(self) -> float:
        return self._ttl


def _normalize(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return round(value, FLOAT_PRECISION)
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if hasattr(value, "value") and isinstance(getattr(value, "value"), (str, int)):
        # Enums
        return value.value
    return value


def build_fingerprint(namespace: str, params: Mapping[str, Any]) -> str:
    """Build a deterministic cache key for an operation's request parameters.

    Mapping keys are sorted, so field order never matters. Sequence order is
    preserved: callers sort any parameter that is semantically a set before
    passing it in. Floats are rounded to six decimals (~0.1 m).

    Example:
        >>> build_fingerprint("geocode", {"address": "Abisko"})
        'geocode:{"address":"Abisko"}'
    """
    canonical = json.dumps(
        _normalize(params), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )
    return f"{namespace}:{canonical}"
