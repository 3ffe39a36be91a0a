"""
Tests for social.nymeria.auth.security.rate_limit

Covers the fixed-window contract of the in-memory limiter, its behaviour under concurrent
checks, the sweep, the Redis-backed limiter on fakeredis, and client identifier selection.
"""

import asyncio
import pytest
from multidict import CIMultiDict

from social.nymeria.auth.security.rate_limit import (
    AUTH_ACTIVITY,
    AUTH_SYNC,
    GENERAL,
    RATE_LIMITS,
    USER_API,
    RateLimiter,
    RedisRateLimiter,
    client_identifier,
)
from tests.test_helpers import ManualMsClock


class TestPolicies:
    """Test suite for the named policies."""

    def test_policy_values(self):
        assert (AUTH_SYNC.limit, AUTH_SYNC.window_ms) == (10, 60_000)
        assert (AUTH_ACTIVITY.limit, AUTH_ACTIVITY.window_ms) == (30, 60_000)
        assert (USER_API.limit, USER_API.window_ms) == (100, 60_000)
        assert (GENERAL.limit, GENERAL.window_ms) == (1000, 60_000)

    def test_policy_registry(self):
        assert RATE_LIMITS["auth_sync"] is AUTH_SYNC
        assert set(RATE_LIMITS) == {"auth_sync", "auth_activity", "user_api", "general"}


class TestRateLimiter:
    """Test suite for the in-memory RateLimiter."""

    async def test_first_request_opens_window(self):
        clock = ManualMsClock()
        limiter = RateLimiter(clock=clock)

        result = await limiter.check("1.2.3.4", 3, 1000)

        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_time == clock.now + 1000

    async def test_limit_plus_one_is_denied(self):
        clock = ManualMsClock()
        limiter = RateLimiter(clock=clock)

        results = [await limiter.check("1.2.3.4", 3, 1000) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert len({r.reset_time for r in results}) == 1

    async def test_window_resets_after_reset_time(self):
        clock = ManualMsClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(3):
            await limiter.check("1.2.3.4", 3, 1000)
        assert (await limiter.check("1.2.3.4", 3, 1000)).allowed is False

        clock.now += 1000
        assert (await limiter.check("1.2.3.4", 3, 1000)).allowed is False

        clock.now += 1
        result = await limiter.check("1.2.3.4", 3, 1000)
        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_time == clock.now + 1000

    async def test_identifiers_are_independent(self):
        limiter = RateLimiter(clock=ManualMsClock())
        for _ in range(3):
            await limiter.check("a", 3, 1000)

        assert (await limiter.check("a", 3, 1000)).allowed is False
        assert (await limiter.check("b", 3, 1000)).allowed is True

    async def test_apply_uses_policy(self):
        limiter = RateLimiter(clock=ManualMsClock())
        results = [await limiter.apply("ip", AUTH_SYNC) for _ in range(11)]
        assert sum(1 for r in results if r.allowed) == 10
        assert results[-1].allowed is False

    async def test_concurrent_checks_never_exceed_limit(self):
        limiter = RateLimiter(clock=ManualMsClock())

        results = await asyncio.gather(
            *[limiter.check("burst", 10, 60_000) for _ in range(50)]
        )

        assert sum(1 for r in results if r.allowed) == 10
        assert sum(1 for r in results if not r.allowed) == 40

    async def test_sweep_removes_only_expired_entries(self):
        clock = ManualMsClock()
        limiter = RateLimiter(clock=clock)
        await limiter.check("old", 5, 1000)
        clock.now += 500
        await limiter.check("new", 5, 1000)
        clock.now += 501

        removed = await limiter.sweep()

        assert removed == 1
        assert len(limiter) == 1

    async def test_clear(self):
        limiter = RateLimiter(clock=ManualMsClock())
        await limiter.check("a", 5, 1000)
        await limiter.clear()
        assert len(limiter) == 0


class TestRedisRateLimiter:
    """Test suite for RedisRateLimiter using fakeredis."""

    async def test_limit_plus_one_is_denied(self, fake_redis_client):
        clock = ManualMsClock()
        limiter = RedisRateLimiter(fake_redis_client, clock=clock)

        results = [await limiter.check("1.2.3.4", 3, 60_000) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[0].reset_time > clock.now
        assert results[0].reset_time <= clock.now + 60_000

    async def test_key_expires_with_window(self, fake_redis_client):
        limiter = RedisRateLimiter(fake_redis_client, prefix="rl")
        await limiter.check("1.2.3.4", 3, 60_000)

        ttl = await fake_redis_client.pttl("rl:1.2.3.4")
        assert 0 < ttl <= 60_000

    async def test_window_resets_when_key_expires(self, fake_redis_client):
        limiter = RedisRateLimiter(fake_redis_client, prefix="rl")
        for _ in range(3):
            await limiter.check("1.2.3.4", 3, 60_000)
        assert (await limiter.check("1.2.3.4", 3, 60_000)).allowed is False

        await fake_redis_client.delete("rl:1.2.3.4")

        result = await limiter.check("1.2.3.4", 3, 60_000)
        assert result.allowed is True
        assert result.remaining == 2

    async def test_concurrent_checks_never_exceed_limit(self, fake_redis_client):
        limiter = RedisRateLimiter(fake_redis_client)

        results = await asyncio.gather(
            *[limiter.check("burst", 10, 60_000) for _ in range(30)]
        )

        assert sum(1 for r in results if r.allowed) == 10

    async def test_sweep_is_noop(self, fake_redis_client):
        limiter = RedisRateLimiter(fake_redis_client)
        assert await limiter.sweep() == 0


class TestClientIdentifier:
    """Test suite for client_identifier."""

    def test_first_forwarded_for_entry(self):
        headers = CIMultiDict({"X-Forwarded-For": "203.0.113.7, 10.0.0.1, 10.0.0.2"})
        assert client_identifier(headers, "10.0.0.2") == "203.0.113.7"

    def test_real_ip_when_no_forwarded_for(self):
        headers = CIMultiDict({"X-Real-IP": " 198.51.100.4 "})
        assert client_identifier(headers, "10.0.0.2") == "198.51.100.4"

    def test_remote_address_fallback(self):
        assert client_identifier(CIMultiDict(), "192.0.2.1") == "192.0.2.1"

    def test_unknown(self):
        assert client_identifier(CIMultiDict(), None) == "unknown"

    @pytest.mark.parametrize("forwarded", ["", " , 10.0.0.1"])
    def test_blank_forwarded_for_is_skipped(self, forwarded):
        headers = CIMultiDict({"X-Forwarded-For": forwarded, "X-Real-IP": "198.51.100.4"})
        assert client_identifier(headers) == "198.51.100.4"
