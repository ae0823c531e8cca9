"""Fixed-window attempt counters keyed by IP and by e-mail.

A window opens on the first attempt for a key and lasts ``window_seconds``.
Fixed windows are a known imprecision: a caller can land up to twice the
limit by straddling a window boundary. That trade-off is accepted in exchange
for one counter per key and a single atomic increment-and-compare.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from math import ceil
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

_PURGE_EVERY = 512

Clock = Callable[[], float]


@dataclass(slots=True)
class CounterWindow:
    count: int
    expires_at: float


@dataclass(slots=True, frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_at: datetime
    count: int
    retry_after: int


class CounterStore(Protocol):
    async def get(self, key: str, now: float) -> CounterWindow | None: ...

    async def increment_if_below(
        self, key: str, limit: int, window_seconds: int, now: float
    ) -> tuple[bool, CounterWindow]: ...

    async def reset(self, key: str) -> None: ...


class InMemoryCounterStore:
    """Per-process counters; losing them on restart only fails open."""

    def __init__(self) -> None:
        self._windows: dict[str, CounterWindow] = {}
        self._lock = asyncio.Lock()
        self._call_count = 0

    def _purge_stale(self, now: float) -> None:
        stale = [key for key, window in self._windows.items() if window.expires_at <= now]
        for key in stale:
            del self._windows[key]

    def _active(self, key: str, now: float) -> CounterWindow | None:
        window = self._windows.get(key)
        if window is None:
            return None
        if window.expires_at <= now:
            del self._windows[key]
            return None
        return window

    async def get(self, key: str, now: float) -> CounterWindow | None:
        async with self._lock:
            window = self._active(key, now)
            return CounterWindow(window.count, window.expires_at) if window else None

    async def increment_if_below(
        self, key: str, limit: int, window_seconds: int, now: float
    ) -> tuple[bool, CounterWindow]:
        async with self._lock:
            self._call_count += 1
            if self._call_count >= _PURGE_EVERY:
                self._call_count = 0
                self._purge_stale(now)

            window = self._active(key, now)
            if window is None:
                window = CounterWindow(count=0, expires_at=now + window_seconds)
                self._windows[key] = window

            if window.count >= limit:
                return False, CounterWindow(window.count, window.expires_at)

            window.count += 1
            return True, CounterWindow(window.count, window.expires_at)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._windows.pop(key, None)


_INCREMENT_IF_BELOW = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local limit = tonumber(ARGV[1])
local allowed = 0
if current < limit then
    current = redis.call('INCR', KEYS[1])
    allowed = 1
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
    ttl = tonumber(ARGV[2])
end
return {allowed, current, ttl}
"""


class RedisCounterStore:
    """Shared counters for several app replicas in one region."""

    def __init__(self, redis: Redis, prefix: str = "registration:rl:v1"):
        self._redis = redis
        self._prefix = prefix
        self._increment = redis.register_script(_INCREMENT_IF_BELOW)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str, now: float) -> CounterWindow | None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.get(self._key(key))
            pipe.pttl(self._key(key))
            raw_count, ttl_ms = await pipe.execute()
        if raw_count is None or ttl_ms is None or int(ttl_ms) <= 0:
            return None
        return CounterWindow(count=int(raw_count), expires_at=now + int(ttl_ms) / 1000)

    async def increment_if_below(
        self, key: str, limit: int, window_seconds: int, now: float
    ) -> tuple[bool, CounterWindow]:
        allowed, count, ttl_ms = await self._increment(
            keys=[self._key(key)],
            args=[limit, window_seconds * 1000],
        )
        window = CounterWindow(count=int(count), expires_at=now + int(ttl_ms) / 1000)
        return bool(int(allowed)), window

    async def reset(self, key: str) -> None:
        await self._redis.delete(self._key(key))


class FixedWindowRateLimiter:
    def __init__(self, store: CounterStore, clock: Clock = time.time):
        self._store = store
        self._clock = clock

    @staticmethod
    def _status(
        allowed: bool,
        limit: int,
        window: CounterWindow | None,
        now: float,
        window_seconds: int,
    ) -> RateLimitStatus:
        count = window.count if window else 0
        expires_at = window.expires_at if window else now + window_seconds
        return RateLimitStatus(
            allowed=allowed,
            remaining=max(0, limit - count),
            reset_at=datetime.fromtimestamp(expires_at, UTC),
            count=count,
            retry_after=max(1, ceil(expires_at - now)),
        )

    async def check(self, key: str, limit: int, window_seconds: int) -> RateLimitStatus:
        now = self._clock()
        window = await self._store.get(key, now)
        allowed = (window.count if window else 0) < limit
        return self._status(allowed, limit, window, now, window_seconds)

    async def consume(self, key: str, limit: int, window_seconds: int) -> RateLimitStatus:
        """Count one real attempt unless the key is already at its ceiling."""
        now = self._clock()
        allowed, window = await self._store.increment_if_below(
            key, limit, window_seconds, now
        )
        return self._status(allowed, limit, window, now, window_seconds)

    async def reset(self, key: str) -> None:
        await self._store.reset(key)


def ip_key(ip_address: str) -> str:
    return f"ip:{ip_address}"


def email_key(email_hash: str) -> str:
    return f"email:{email_hash}"


__all__ = (
    "CounterStore",
    "CounterWindow",
    "FixedWindowRateLimiter",
    "InMemoryCounterStore",
    "RateLimitStatus",
    "RedisCounterStore",
    "email_key",
    "ip_key",
)
