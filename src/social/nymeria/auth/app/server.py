import asyncio
import contextlib
import logging
from time import time
from typing import (
    Optional,
)
from aio_statsd import TelegrafStatsdClient
from aiohttp import web
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from social.nymeria.auth.app.config import (
    ActivityTrackerAppKey,
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    RateLimiterAppKey,
    RateLimitPoliciesAppKey,
    RateLimitSweepTaskAppKey,
    RedisClientAppKey,
    SessionStoreAppKey,
    SessionSynchronizerAppKey,
    Settings,
    SettingsAppKey,
    TelegrafStatsdClientAppKey,
    TickHealthTaskAppKey,
)
from social.nymeria.auth.app.handlers.helpers import session_gateway_middleware
from social.nymeria.auth.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_ready,
    handle_protected_me,
    handle_protected_sessions,
)
from social.nymeria.auth.app.handlers.session import (
    handle_auth_activity,
    handle_auth_deactivate,
    handle_auth_sync,
)
from social.nymeria.auth.app.headers import security_headers_middleware
from social.nymeria.auth.app.tasks import rate_limit_sweep_task, tick_health_task
from social.nymeria.auth.model.health import HealthGauge
from social.nymeria.auth.security.rate_limit import RateLimiter, RedisRateLimiter
from social.nymeria.auth.session.store import SqlSessionStore
from social.nymeria.auth.session.synchronizer import SessionSynchronizer
from social.nymeria.auth.session.tracker import ActivityTracker

logger = logging.getLogger(__name__)


def wire_session_layer(app: web.Application) -> None:
    """Build the synchronizer and tracker on top of whichever store the app holds."""
    settings = app[SettingsAppKey]
    session_store = app[SessionStoreAppKey]
    app[SessionSynchronizerAppKey] = SessionSynchronizer(
        session_store, settings.session_lifetime_delta()
    )
    app[ActivityTrackerAppKey] = ActivityTracker(session_store)


async def background_tasks(app):
    """
    Create the shared resources and background tasks, and tear them down on shutdown.

    Resources already present on the application (a store, a rate limiter or a statsd
    client handed to `start_web_server`) are used as-is and are not closed here.
    """
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    engine = None
    if SessionStoreAppKey not in app:
        engine = create_async_engine(str(settings.pg_dsn))
        app[DatabaseAppKey] = engine
        database_session = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        app[DatabaseSessionMakerAppKey] = database_session
        app[SessionStoreAppKey] = SqlSessionStore(database_session)

    wire_session_layer(app)

    redis_client = None
    if RateLimiterAppKey not in app:
        if settings.rate_limit_backend == "redis":
            redis_client = redis.Redis(
                connection_pool=redis.ConnectionPool.from_url(str(settings.redis_dsn))
            )
            app[RedisClientAppKey] = redis_client
            app[RateLimiterAppKey] = RedisRateLimiter(redis_client)
        else:
            app[RateLimiterAppKey] = RateLimiter()

    statsd_client = None
    if TelegrafStatsdClientAppKey not in app:
        statsd_client = TelegrafStatsdClient(
            host=settings.statsd_host, port=settings.statsd_port, debug=settings.debug
        )
        await statsd_client.connect()
        app[TelegrafStatsdClientAppKey] = statsd_client

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))
    app[RateLimitSweepTaskAppKey] = asyncio.create_task(rate_limit_sweep_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[TickHealthTaskAppKey].cancel()
    app[RateLimitSweepTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TickHealthTaskAppKey]

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[RateLimitSweepTaskAppKey]

    if engine is not None:
        await engine.dispose()
    if redis_client is not None:
        await redis_client.aclose()
    if statsd_client is not None:
        await statsd_client.close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    settings = request.app[SettingsAppKey]
    statsd_client = request.app[TelegrafStatsdClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        statsd_client.increment(
            f"{settings.statsd_prefix}.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        statsd_client.timer(
            f"{settings.statsd_prefix}.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        statsd_client.increment(
            f"{settings.statsd_prefix}.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


async def start_web_server(
    settings: Optional[Settings] = None,
    session_store=None,
    rate_limiter=None,
    statsd_client=None,
):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(
        middlewares=[
            security_headers_middleware,
            statsd_middleware,
            sentry_middleware,
            session_gateway_middleware,
        ]
    )

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge()
    app[RateLimitPoliciesAppKey] = settings.rate_limit_policies()

    if session_store is not None:
        app[SessionStoreAppKey] = session_store
    if rate_limiter is not None:
        app[RateLimiterAppKey] = rate_limiter
    if statsd_client is not None:
        app[TelegrafStatsdClientAppKey] = statsd_client

    app.add_routes(
        [
            web.post("/api/auth/sync", handle_auth_sync),
            web.post("/api/auth/activity", handle_auth_activity),
            web.post("/api/auth/deactivate", handle_auth_deactivate),
        ]
    )

    protected_prefix = settings.protected_prefix.rstrip("/")
    app.add_routes(
        [
            web.get(f"{protected_prefix}/me", handle_protected_me),
            web.get(f"{protected_prefix}/sessions", handle_protected_sessions),
        ]
    )

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
        ]
    )

    app.cleanup_ctx.append(background_tasks)

    return app
