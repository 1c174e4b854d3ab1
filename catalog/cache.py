"""
Cache-aside reads.

The cache is an optimization only: ``CacheAside.read`` returns the cached
payload when there is one and otherwise computes, stores and returns the
authoritative value. A provider that errors is logged and bypassed, and a
``None`` provider is the explicit "no cache" configuration.

Keys are ``route:signature:TIER``. The plan tier is part of every key because
the payload shape depends on it.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Tuple, TypeVar, Union

import orjson
import redis
from redis.exceptions import RedisError

from .errors import CacheFailure
from .plans import PlanTier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheProvider(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def set_with_ttl(self, key: str, value: bytes, ttl: int) -> None: ...


class RedisCacheProvider:
    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheProvider":
        return cls(redis.from_url(url, socket_timeout=0.5, socket_connect_timeout=0.5))

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self._client.get(key)
        except RedisError as exc:
            raise CacheFailure(str(exc)) from exc

    def set_with_ttl(self, key: str, value: bytes, ttl: int) -> None:
        try:
            self._client.setex(key, ttl, value)
        except RedisError as exc:
            raise CacheFailure(str(exc)) from exc


class MemoryCacheProvider:
    """In-process TTL cache; ``clock`` is injectable for expiry tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[bytes, float]] = {}

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set_with_ttl(self, key: str, value: bytes, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)


def _normalize_value(value: Any, fold: bool) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value)
    return text.strip().lower() if fold else text


def build_cache_key(
    route: str,
    params: Dict[str, Any],
    tier: Union[PlanTier, str],
    casefold: Iterable[str] = (),
) -> str:
    """
    Deterministic cache key for a tiered response.

    - Skips empty params and sorts the rest for stability
    - Keeps values verbatim except the params named in ``casefold``, which are
      stripped and lowercased; only name params the store matches
      case-insensitively
    - Always ends with the plan tier
    """
    casefold = set(casefold)
    if not tier:
        raise ValueError("plan tier is required for cache keys")
    tier_name = tier.value if isinstance(tier, PlanTier) else str(tier).upper()
    filtered = {k: _normalize_value(v, k in casefold) for k, v in params.items() if v not in (None, "")}
    signature = "&".join(f"{k}={filtered[k]}" for k in sorted(filtered)) or "all"
    return f"{route}:{signature}:{tier_name}"


class CacheAside:
    def __init__(self, provider: Optional[CacheProvider] = None):
        self.provider = provider

    @property
    def enabled(self) -> bool:
        return self.provider is not None

    def _get(self, key: str) -> Optional[Any]:
        try:
            raw = self.provider.get(key)
        except Exception as exc:
            logger.warning("Cache get failed for %s, computing directly: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    def _set(self, key: str, value: Any, ttl: int) -> None:
        try:
            self.provider.set_with_ttl(key, orjson.dumps(value), ttl)
        except Exception as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)

    def read(self, key: str, compute_fn: Callable[[], T], ttl: int) -> T:
        """Return the cached value for ``key`` or compute, cache and return it."""
        if self.provider is None:
            return compute_fn()

        cached = self._get(key)
        if cached is not None:
            return cached

        value = compute_fn()
        self._set(key, value, ttl)
        return value
