import asyncio
import logging
from typing import NoReturn
from aiohttp import web
import sentry_sdk

from social.nymeria.auth.app.config import (
    HealthGaugeAppKey,
    RateLimiterAppKey,
    SettingsAppKey,
    TelegrafStatsdClientAppKey,
)

logger = logging.getLogger(__name__)


async def tick_health_task(app: web.Application) -> NoReturn:
    """
    Tick the health gauge every 30 seconds, reducing the health score by 1 each time.
    """

    logger.info("Starting health gauge task")

    health_gauge = app[HealthGaugeAppKey]
    while True:
        await health_gauge.tick()
        await asyncio.sleep(30)


async def rate_limit_sweep_task(app: web.Application) -> NoReturn:
    """
    Drop expired rate limit entries on a fixed interval.

    Sweeping is advisory: an expired entry is already treated as a fresh window by the
    limiter, the sweep only bounds memory.
    """

    logger.info("Starting rate limit sweep task")

    settings = app[SettingsAppKey]
    rate_limiter = app[RateLimiterAppKey]
    statsd_client = app[TelegrafStatsdClientAppKey]

    while True:
        await asyncio.sleep(settings.rate_limit_sweep_interval)
        try:
            removed = await rate_limiter.sweep()
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Rate limit sweep failed")
            continue

        if removed > 0:
            logger.debug("Swept %d expired rate limit entries", removed)
        statsd_client.increment(
            f"{settings.statsd_prefix}.rate_limit.swept",
            removed,
        )
