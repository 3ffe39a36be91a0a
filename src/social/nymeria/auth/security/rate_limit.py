"""
Fixed-window rate limiting for the session endpoints.

Two limiters share one contract:

- RateLimiter keeps its counters in process memory. The read-modify-write of an entry is
  guarded by an asyncio lock so concurrent requests for the same identifier can never be
  admitted past the limit.
- RedisRateLimiter keeps its counters in Redis for deployments with more than one worker
  process. Each check is a single MULTI/EXEC pipeline, which makes it atomic per key.

Policies are plain data (RateLimitPolicy) so endpoints can be re-tuned through settings
without touching the limiter.
"""

import asyncio
from dataclasses import dataclass
import logging
from time import time
from typing import Any, Callable, Dict, Final, Optional

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time() * 1000)


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_ms: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: int
    """Epoch milliseconds at which the current window ends."""


@dataclass
class RateLimitEntry:
    count: int
    reset_time: int


AUTH_SYNC: Final = RateLimitPolicy(limit=10, window_ms=60 * 1000)
AUTH_ACTIVITY: Final = RateLimitPolicy(limit=30, window_ms=60 * 1000)
USER_API: Final = RateLimitPolicy(limit=100, window_ms=60 * 1000)
GENERAL: Final = RateLimitPolicy(limit=1000, window_ms=60 * 1000)

RATE_LIMITS: Final[Dict[str, RateLimitPolicy]] = {
    "auth_sync": AUTH_SYNC,
    "auth_activity": AUTH_ACTIVITY,
    "user_api": USER_API,
    "general": GENERAL,
}

SWEEP_INTERVAL_SECONDS: Final = 5 * 60


class RateLimiter:
    """
    In-process fixed-window counter keyed by an arbitrary identifier (usually a client IP).

    A fresh window starts with a count of 1. Within a window the count is incremented while
    it is below the limit; once it has reached the limit, requests are denied without being
    counted until the window ends.
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._entries: Dict[str, RateLimitEntry] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def check(
        self, identifier: str, limit: int, window_ms: int
    ) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(identifier)

            if entry is None or now > entry.reset_time:
                reset_time = now + window_ms
                self._entries[identifier] = RateLimitEntry(
                    count=1, reset_time=reset_time
                )
                return RateLimitResult(
                    allowed=True, remaining=max(0, limit - 1), reset_time=reset_time
                )

            if entry.count >= limit:
                return RateLimitResult(
                    allowed=False, remaining=0, reset_time=entry.reset_time
                )

            entry.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=max(0, limit - entry.count),
                reset_time=entry.reset_time,
            )

    async def apply(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        return await self.check(identifier, policy.limit, policy.window_ms)

    async def sweep(self) -> int:
        """Drop entries whose window has ended. Returns the number of entries removed."""
        async with self._lock:
            now = self._clock()
            expired = [
                identifier
                for identifier, entry in self._entries.items()
                if now > entry.reset_time
            ]
            for identifier in expired:
                del self._entries[identifier]
            return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


class RedisRateLimiter:
    """
    Redis-backed fixed-window counter with the same contract as RateLimiter.

    The window is created with `SET key 0 PX window NX`, counted with `INCR` and read back
    with `PTTL`, all inside one transaction. Requests past the limit are still counted,
    which does not change the outcome: a count above the limit is denied either way.
    Expired keys are removed by Redis, so sweep() has nothing to do.
    """

    def __init__(
        self,
        redis_client: Any,
        prefix: str = "rate_limit",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.redis_client = redis_client
        self.prefix = prefix
        self._clock = clock

    async def check(
        self, identifier: str, limit: int, window_ms: int
    ) -> RateLimitResult:
        key = f"{self.prefix}:{identifier}"
        now = self._clock()

        async with self.redis_client.pipeline(transaction=True) as redis_pipe:
            redis_pipe.set(key, 0, px=window_ms, nx=True)
            redis_pipe.incr(key)
            redis_pipe.pttl(key)
            _, count, ttl = await redis_pipe.execute()

        count = int(count)
        ttl = int(ttl)
        if ttl < 0:
            ttl = window_ms
        reset_time = now + ttl

        if count > limit:
            return RateLimitResult(allowed=False, remaining=0, reset_time=reset_time)

        return RateLimitResult(
            allowed=True, remaining=max(0, limit - count), reset_time=reset_time
        )

    async def apply(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        return await self.check(identifier, policy.limit, policy.window_ms)

    async def sweep(self) -> int:
        return 0


def client_identifier(headers: Any, remote: Optional[str] = None) -> str:
    """
    Pick the identifier used to key rate limits for a request.

    The first X-Forwarded-For entry wins, then X-Real-IP, then the peer address.
    """
    forwarded_for: Optional[str] = headers.get("X-Forwarded-For", None)
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip: Optional[str] = headers.get("X-Real-IP", None)
    if real_ip:
        return real_ip.strip()

    if remote:
        return remote

    return "unknown"
