from dataclasses import dataclass
from datetime import datetime
import json
import logging
from typing import Any, Dict, Optional
from aiohttp import web
import sentry_sdk

from social.nymeria.auth.app.config import (
    ActivityTrackerAppKey,
    HealthGaugeAppKey,
    RateLimiterAppKey,
    RateLimitPoliciesAppKey,
    SettingsAppKey,
    TelegrafStatsdClientAppKey,
)
from social.nymeria.auth.errors import RateLimitExceeded, Unauthorized
from social.nymeria.auth.model.identities import Identity
from social.nymeria.auth.model.sessions import SessionRecord
from social.nymeria.auth.security.rate_limit import (
    RateLimitResult,
    client_identifier,
    now_ms,
)
from social.nymeria.auth.security.sanitize import sanitize_session_id

logger = logging.getLogger(__name__)

SESSION_ID_HEADER = "X-Session-Id"
VERIFIED_SESSION_KEY = "verified_session"


@dataclass(repr=False, eq=False)
class VerifiedSession:
    """
    A session that passed the gateway.

    Attributes:
        session_id: The verified session id
        user_guid: The guid of the identity that owns the session
        record: The session record as read during verification
    """

    session_id: str
    user_guid: str
    record: SessionRecord


def json_error(status: int, body: Dict[str, Any], **kwargs) -> web.Response:
    return web.json_response(body, status=status, **kwargs)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def identity_json(identity: Identity) -> Dict[str, Any]:
    return {
        "guid": identity.guid,
        "did": identity.did,
        "handle": identity.handle,
        "displayName": identity.display_name,
        "avatar": identity.avatar,
        "description": identity.description,
        "pds": identity.pds,
        "lastSeenAt": _isoformat(identity.last_seen_at),
        "createdAt": _isoformat(identity.created_at),
        "updatedAt": _isoformat(identity.updated_at),
    }


def session_json(session_record: SessionRecord) -> Dict[str, Any]:
    return {
        "sessionId": session_record.session_id,
        "deviceId": session_record.device_id,
        "lastActiveAt": _isoformat(session_record.last_active_at),
        "expiresAt": _isoformat(session_record.expires_at),
        "metadata": session_record.session_metadata,
        "createdAt": _isoformat(session_record.created_at),
    }


def rate_limit_headers(limit: int, result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_time),
    }


def rate_limited_response(e: RateLimitExceeded, current_ms: int) -> web.Response:
    retry_after = max(0, (e.reset_time - current_ms + 999) // 1000)
    return json_error(
        429,
        {
            "error": "Rate limit exceeded",
            "resetTime": e.reset_time,
            "remaining": e.remaining,
        },
        headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(e.limit),
            "X-RateLimit-Remaining": str(e.remaining),
            "X-RateLimit-Reset": str(e.reset_time),
        },
    )


async def rate_limit_helper(request: web.Request, policy_name: str) -> RateLimitResult:
    """
    Count a request against a named policy for the requesting client.

    Counters are kept per policy, so exhausting one endpoint group does not lock a client
    out of another.

    Raises:
        RateLimitExceeded: If the client has used up the current window
    """
    settings = request.app[SettingsAppKey]
    rate_limiter = request.app[RateLimiterAppKey]
    policy = request.app[RateLimitPoliciesAppKey][policy_name]
    statsd_client = request.app[TelegrafStatsdClientAppKey]

    identifier = client_identifier(request.headers, request.remote)
    result = await rate_limiter.apply(f"{policy_name}:{identifier}", policy)
    if not result.allowed:
        statsd_client.increment(
            f"{settings.statsd_prefix}.rate_limit.denied",
            1,
            tag_dict={"policy": policy_name},
        )
        logger.info("Rate limit %s exceeded for %s", policy_name, identifier)
        raise RateLimitExceeded(
            reset_time=result.reset_time, limit=policy.limit, remaining=0
        )
    return result


def requested_session_id(request: web.Request) -> Optional[str]:
    settings = request.app[SettingsAppKey]
    session_id: Optional[str] = request.headers.getone(SESSION_ID_HEADER, None)
    if session_id is None:
        session_id = request.cookies.get(settings.session_cookie_name, None)
    return session_id


async def session_gateway_helper(request: web.Request) -> VerifiedSession:
    """
    Verify the session presented by a request.

    The session id is taken from the `X-Session-Id` header, or the session cookie when the
    header is absent. The session must exist, be active and not have expired.

    Raises:
        Unauthorized: If no usable session was presented
    """
    raw_session_id = requested_session_id(request)
    if raw_session_id is None or len(raw_session_id) == 0:
        raise Unauthorized.session_missing()

    session_id = sanitize_session_id(raw_session_id)
    if session_id is None:
        raise Unauthorized.session_malformed()

    activity_tracker = request.app[ActivityTrackerAppKey]
    session_record = await activity_tracker.verify(session_id)

    return VerifiedSession(
        session_id=session_id,
        user_guid=session_record.user_guid,
        record=session_record,
    )


def verified_session(request: web.Request) -> VerifiedSession:
    return request[VERIFIED_SESSION_KEY]


@web.middleware
async def session_gateway_middleware(request: web.Request, handler):
    settings = request.app[SettingsAppKey]
    if not request.path.startswith(settings.protected_prefix):
        return await handler(request)

    statsd_client = request.app[TelegrafStatsdClientAppKey]

    try:
        await rate_limit_helper(request, "user_api")
        request[VERIFIED_SESSION_KEY] = await session_gateway_helper(request)
    except RateLimitExceeded as e:
        return rate_limited_response(e, now_ms())
    except Unauthorized as e:
        logger.info("Gateway rejected %s: %s", request.path, e)
        statsd_client.increment(
            f"{settings.statsd_prefix}.gateway.rejected",
            1,
            tag_dict={"path": request.path},
        )
        raise web.HTTPUnauthorized(
            body=json.dumps({"error": e.reason}), content_type="application/json"
        )
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await request.app[HealthGaugeAppKey].womp()
        logger.exception("session_gateway_middleware: Exception")
        raise web.HTTPInternalServerError(
            body=json.dumps({"error": "Authentication error"}),
            content_type="application/json",
        )

    return await handler(request)
