"""
Configuration Module for the Nymeria Auth Service

Settings are loaded from environment variables through pydantic-settings, with defaults
suitable for development environments. Shared resources are handed to request handlers and
background tasks through typed AppKeys on the aiohttp application.

Key configuration areas include:
- Service networking and error reporting
- Database and cache connections
- Rate limit backend and policy overrides
- Session lifetime and the protected path prefix
"""

import asyncio
from datetime import timedelta
from typing import Dict, Final, Literal, Optional, Union
import logging
from aio_statsd import TelegrafStatsdClient
from pydantic import (
    AliasChoices,
    Field,
    PostgresDsn,
    RedisDsn,
)
from pydantic_settings import BaseSettings
from aiohttp import web
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from redis import asyncio as redis

from social.nymeria.auth.model.health import HealthGauge
from social.nymeria.auth.security.rate_limit import (
    AUTH_ACTIVITY,
    AUTH_SYNC,
    GENERAL,
    SWEEP_INTERVAL_SECONDS,
    USER_API,
    RateLimiter,
    RateLimitPolicy,
    RedisRateLimiter,
)
from social.nymeria.auth.session.store import SessionStore
from social.nymeria.auth.session.synchronizer import SessionSynchronizer
from social.nymeria.auth.session.tracker import ActivityTracker


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the Nymeria Auth service.

    Environment variables are automatically mapped to settings fields, with aliases
    provided where deployments commonly use another name. For example, the database
    connection string can be set with either PG_DSN or DATABASE_URL.
    """

    debug: bool = False
    """
    Enable debug mode for verbose logging.
    Set with DEBUG=true environment variable.
    """

    http_port: int = Field(alias="port", default=5100)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/1?decode_responses=True",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string, only used by the redis rate limit backend.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    pg_dsn: PostgresDsn = Field(
        "postgresql+asyncpg://postgres:password@db/nymeria",
        validation_alias=AliasChoices("pg_dsn", "database_url"),
    )  # type: ignore
    """
    PostgreSQL connection string for database access.
    Set with PG_DSN or DATABASE_URL environment variables.
    """

    rate_limit_backend: Literal["memory", "redis"] = "memory"
    """
    Where rate limit counters live. "memory" is per process; use "redis" when running
    more than one worker.
    Set with RATE_LIMIT_BACKEND environment variable.
    """

    rate_limit_window_ms: int = Field(default=AUTH_SYNC.window_ms, gt=0)
    """
    Length of every rate limit window in milliseconds.
    Set with RATE_LIMIT_WINDOW_MS environment variable.
    """

    rate_limit_auth_sync: int = Field(default=AUTH_SYNC.limit, gt=0)
    """Requests per window for /api/auth/sync."""

    rate_limit_auth_activity: int = Field(default=AUTH_ACTIVITY.limit, gt=0)
    """Requests per window for /api/auth/activity and /api/auth/deactivate."""

    rate_limit_user_api: int = Field(default=USER_API.limit, gt=0)
    """Requests per window for /api/protected/*."""

    rate_limit_general: int = Field(default=GENERAL.limit, gt=0)
    """Requests per window for anything else that is rate limited."""

    rate_limit_sweep_interval: int = Field(default=SWEEP_INTERVAL_SECONDS, gt=0)
    """
    Seconds between sweeps of expired in-memory rate limit entries.
    Set with RATE_LIMIT_SWEEP_INTERVAL environment variable.
    """

    session_lifetime: Optional[int] = 30 * 24 * 60 * 60
    """
    Seconds a session record stays valid after it is first recorded. Unset for records
    that never expire.
    Set with SESSION_LIFETIME environment variable.
    """

    protected_prefix: str = "/api/protected/"
    """
    Path prefix guarded by the session gateway.
    Set with PROTECTED_PREFIX environment variable.
    """

    session_cookie_name: str = "session-id"
    """
    Cookie consulted by the gateway when no X-Session-Id header is present.
    Set with SESSION_COOKIE_NAME environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    statsd_prefix: str = "nymeria"
    """
    Prefix for all StatsD metrics from this service.
    Set with STATSD_PREFIX environment variable.
    """

    def rate_limit_policies(self) -> Dict[str, RateLimitPolicy]:
        """Named policies with any environment overrides applied."""
        window_ms = self.rate_limit_window_ms
        return {
            "auth_sync": RateLimitPolicy(self.rate_limit_auth_sync, window_ms),
            "auth_activity": RateLimitPolicy(self.rate_limit_auth_activity, window_ms),
            "user_api": RateLimitPolicy(self.rate_limit_user_api, window_ms),
            "general": RateLimitPolicy(self.rate_limit_general, window_ms),
        }

    def session_lifetime_delta(self) -> Optional[timedelta]:
        if self.session_lifetime is None:
            return None
        return timedelta(seconds=self.session_lifetime)


# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

DatabaseAppKey: Final = web.AppKey("database", AsyncEngine)
"""AppKey for accessing the SQLAlchemy async database engine"""

DatabaseSessionMakerAppKey: Final = web.AppKey(
    "database_session_maker", async_sessionmaker[AsyncSession]
)
"""AppKey for accessing the SQLAlchemy async session factory"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client, present with the redis rate limit backend"""

SessionStoreAppKey: Final = web.AppKey("session_store", SessionStore)
"""AppKey for the identity and session record store"""

SessionSynchronizerAppKey: Final = web.AppKey(
    "session_synchronizer", SessionSynchronizer
)
"""AppKey for the session synchronizer"""

ActivityTrackerAppKey: Final = web.AppKey("activity_tracker", ActivityTracker)
"""AppKey for the session activity tracker"""

RateLimiterAppKey: Final = web.AppKey(
    "rate_limiter", Union[RateLimiter, RedisRateLimiter]
)
"""AppKey for the rate limiter guarding the session endpoints"""

RateLimitPoliciesAppKey: Final = web.AppKey(
    "rate_limit_policies", Dict[str, RateLimitPolicy]
)
"""AppKey for the named rate limit policies"""

HealthGaugeAppKey: Final = web.AppKey("health_gauge", HealthGauge)
"""AppKey for accessing the health monitoring gauge"""

TickHealthTaskAppKey: Final = web.AppKey("tick_health_task", asyncio.Task[None])
"""AppKey for the background task that monitors service health"""

RateLimitSweepTaskAppKey: Final = web.AppKey(
    "rate_limit_sweep_task", asyncio.Task[None]
)
"""AppKey for the background task that drops expired rate limit entries"""

TelegrafStatsdClientAppKey: Final = web.AppKey(
    "telegraf_statsd_client", TelegrafStatsdClient
)
"""AppKey for the Telegraf/StatsD metrics client"""
