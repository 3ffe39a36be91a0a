import logging
from aiohttp import web
import sentry_sdk

from social.nymeria.auth.app.config import (
    HealthGaugeAppKey,
    SessionStoreAppKey,
)
from social.nymeria.auth.app.handlers.helpers import (
    identity_json,
    json_error,
    session_json,
    verified_session,
)

logger = logging.getLogger(__name__)


async def handle_protected_me(request: web.Request):
    session = verified_session(request)
    session_store = request.app[SessionStoreAppKey]
    try:
        identity = await session_store.find_identity(session.user_guid)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await request.app[HealthGaugeAppKey].womp()
        logger.exception("handle_protected_me: Exception")
        return json_error(500, {"error": "Failed to fetch user"})

    if identity is None:
        return json_error(404, {"error": "User not found"})

    return web.json_response(
        {
            "user": identity_json(identity),
            "session": session_json(session.record),
        }
    )


async def handle_protected_sessions(request: web.Request):
    session = verified_session(request)
    session_store = request.app[SessionStoreAppKey]
    try:
        session_records = await session_store.list_active_sessions(session.user_guid)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await request.app[HealthGaugeAppKey].womp()
        logger.exception("handle_protected_sessions: Exception")
        return json_error(500, {"error": "Failed to fetch user sessions"})

    return web.json_response(
        [
            dict(
                session_json(session_record),
                current=session_record.session_id == session.session_id,
            )
            for session_record in session_records
        ]
    )


async def handle_internal_ready(request: web.Request):
    health_gauge = request.app[HealthGaugeAppKey]
    healthy = await health_gauge.is_healthy()
    return web.json_response(
        {"ready": healthy, "errors": await health_gauge.value()},
        status=200 if healthy else 503,
    )


async def handle_internal_alive(request: web.Request):
    return web.Response(status=200)
