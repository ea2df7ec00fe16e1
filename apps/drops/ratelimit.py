"""Request counters per (action, client address).

check() reads the counter and writes ``count + 1`` back with a TTL equal to
the action's window. The read and the write are separate store calls, so
concurrent requests can slip slightly past the limit; the limiter dampens
abuse and is not an access control.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple, Union

from apps.drops.models import RateCounter
from config.settings import RATE_LIMIT_BACKEND, READ_RATE_LIMIT, READ_RATE_WINDOW, UPLOAD_RATE_LIMIT, \
    UPLOAD_RATE_WINDOW
from utils.timeutil import now_ms

logger = logging.getLogger(__name__)

UPLOAD = 'upload'
READ = 'read'


@dataclass(frozen=True)
class RateLimit:
    limit: int
    window: int  # seconds


@dataclass(frozen=True)
class Allowed:
    remaining: int


@dataclass(frozen=True)
class Denied:
    retry_after: int


Decision = Union[Allowed, Denied]


def default_limits() -> Dict[str, RateLimit]:
    return {
        UPLOAD: RateLimit(UPLOAD_RATE_LIMIT, UPLOAD_RATE_WINDOW),
        READ: RateLimit(READ_RATE_LIMIT, READ_RATE_WINDOW),
    }


class CounterStore(Protocol):
    async def get(self, key: str) -> int:
        ...

    async def set(self, key: str, value: int, ttl: int) -> None:
        ...

    async def evict_expired(self) -> int:
        ...


class DBCounterStore:
    """Counters in the RateCounter table; rows past their TTL read as zero."""

    async def get(self, key: str) -> int:
        row = await RateCounter.filter(key=key, expires_at__gt=now_ms()).first()
        return row.count if row else 0

    async def set(self, key: str, value: int, ttl: int) -> None:
        await RateCounter.update_or_create(
            key=key, defaults={'count': value, 'expires_at': now_ms() + ttl * 1000}
        )

    async def evict_expired(self) -> int:
        return await RateCounter.filter(expires_at__lte=now_ms()).delete()


class MemoryCounterStore:
    """Process-local counters; only meaningful for a single worker."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}

    async def get(self, key: str) -> int:
        entry = self._counters.get(key)
        if entry is None:
            return 0
        count, expires = entry
        if self._clock() >= expires:
            del self._counters[key]
            return 0
        return count

    async def set(self, key: str, value: int, ttl: int) -> None:
        self._counters[key] = (value, self._clock() + ttl)

    async def evict_expired(self) -> int:
        now = self._clock()
        stale = [k for k, (_, expires) in self._counters.items() if now >= expires]
        for k in stale:
            del self._counters[k]
        return len(stale)


class RateLimiter:

    def __init__(self, store: CounterStore, limits: Optional[Dict[str, RateLimit]] = None):
        self.store = store
        self.limits = limits or default_limits()

    @staticmethod
    def _key(action: str, client_key: str) -> str:
        return f'ratelimit:{action}:{client_key}'

    async def check(self, action: str, client_key: str) -> Decision:
        rule = self.limits[action]
        key = self._key(action, client_key)
        count = await self.store.get(key)
        if count >= rule.limit:
            logger.info("rate limit hit: action=%s client=%s count=%d", action, client_key, count)
            return Denied(retry_after=rule.window)
        await self.store.set(key, count + 1, rule.window)
        return Allowed(remaining=rule.limit - count - 1)


def pick_counter_store() -> CounterStore:
    if RATE_LIMIT_BACKEND.lower() == 'memory':
        return MemoryCounterStore()
    return DBCounterStore()
