"""
Quota gate: credential -> plan tier, plus a per-credential request counter.

The counter is incremented first and compared afterwards. An increment that
lands above the ceiling is rolled back with a decrement and the request is
denied, so concurrent requests can never jointly push admitted usage past
the ceiling.

Every increment refreshes the window expiry, which makes the window sliding:
a credential with continuous traffic never gets a reset. This mirrors the
product behavior the service was built against and is kept deliberately until
a fixed calendar window is asked for.

Redis is used in production, an in-memory counter store otherwise.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Protocol, Tuple

import redis

from .errors import AuthError, QuotaExceeded, StoreFailure
from .plans import PlanTier, parse_tier, policy_for

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 30 * 24 * 60 * 60


class CounterStore(Protocol):
    def increment(self, key: str, window_seconds: int) -> int: ...

    def decrement(self, key: str) -> None: ...

    def peek(self, key: str) -> int: ...


class RedisCounterStore:
    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(redis.from_url(url))

    def increment(self, key: str, window_seconds: int) -> int:
        # MULTI/EXEC: the increment and the expiry refresh apply together.
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, window_seconds)
        count, _ = pipe.execute()
        return int(count)

    def decrement(self, key: str) -> None:
        self._client.decr(key)

    def peek(self, key: str) -> int:
        value = self._client.get(key)
        return int(value) if value is not None else 0


class MemoryCounterStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: Dict[str, Tuple[int, float]] = {}

    def _live(self, key: str) -> int:
        entry = self._counters.get(key)
        if entry is None:
            return 0
        count, expires_at = entry
        if self._clock() >= expires_at:
            del self._counters[key]
            return 0
        return count

    def increment(self, key: str, window_seconds: int) -> int:
        with self._lock:
            count = self._live(key) + 1
            self._counters[key] = (count, self._clock() + window_seconds)
            return count

    def decrement(self, key: str) -> None:
        with self._lock:
            entry = self._counters.get(key)
            if entry is not None:
                count, expires_at = entry
                self._counters[key] = (max(count - 1, 0), expires_at)

    def peek(self, key: str) -> int:
        with self._lock:
            return self._live(key)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._counters


@dataclass(frozen=True)
class Admission:
    allow: bool
    plan: PlanTier
    count: int
    ceiling: int

    @property
    def remaining(self) -> int:
        return max(self.ceiling - self.count, 0)


def counter_key(credential: str) -> str:
    return f"quota:{credential}"


class QuotaGate:
    def __init__(
        self,
        plan_keys: Mapping[str, str],
        counters: CounterStore,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
    ):
        self._plans: Dict[str, PlanTier] = {}
        for credential, tier in plan_keys.items():
            plan = parse_tier(tier)
            if plan is None:
                raise ValueError(f"Unknown plan tier {tier!r} configured for an API key")
            self._plans[credential] = plan
        self._counters = counters
        self._window_seconds = window_seconds

    def resolve(self, credential: Optional[str]) -> PlanTier:
        if not credential:
            raise AuthError("Missing API key")
        plan = self._plans.get(credential)
        if plan is None:
            raise AuthError("Unrecognized API key")
        return plan

    def admit(self, credential: Optional[str]) -> Admission:
        """
        Admit one request for ``credential`` or raise.

        Raises AuthError before touching any counter when the credential is
        missing or unknown, QuotaExceeded when the ceiling is reached and
        StoreFailure when the counter backend is unreachable.
        """
        plan = self.resolve(credential)
        ceiling = policy_for(plan).ceiling
        key = counter_key(credential)

        try:
            count = self._counters.increment(key, self._window_seconds)
            if count > ceiling:
                self._counters.decrement(key)
        except Exception as exc:
            logger.exception("Quota counter update failed")
            raise StoreFailure("Quota counter unavailable") from exc

        if count > ceiling:
            logger.info("Quota exceeded for %s plan (ceiling %d)", plan.value, ceiling)
            raise QuotaExceeded(f"{plan.value} plan allows {ceiling} requests per window")
        return Admission(allow=True, plan=plan, count=count, ceiling=ceiling)
