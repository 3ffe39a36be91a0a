"""
Session endpoints.

Each handler runs the same pipeline: rate limit, content type check, body validation, then
the session layer. Rejections at any step return a JSON error body that never contains the
submitted values.
"""

import logging
from typing import Type, TypeVar
from aiohttp import web
import pydantic
import sentry_sdk

from social.nymeria.auth.app.config import (
    ActivityTrackerAppKey,
    HealthGaugeAppKey,
    RateLimitPoliciesAppKey,
    SessionSynchronizerAppKey,
    SettingsAppKey,
    TelegrafStatsdClientAppKey,
)
from social.nymeria.auth.app.handlers.helpers import (
    identity_json,
    json_error,
    rate_limit_headers,
    rate_limit_helper,
    rate_limited_response,
)
from social.nymeria.auth.app.handlers.schemas import (
    ActivityRequest,
    DeactivateRequest,
    SyncRequest,
    validation_issues,
)
from social.nymeria.auth.errors import (
    NotFound,
    PersistenceFailure,
    RateLimitExceeded,
    ValidationError,
)
from social.nymeria.auth.security.rate_limit import client_identifier, now_ms
from social.nymeria.auth.session.synchronizer import SyncCommand

logger = logging.getLogger(__name__)

RequestModel = TypeVar("RequestModel", bound=pydantic.BaseModel)


async def read_json_body(
    request: web.Request, schema: Type[RequestModel]
) -> RequestModel:
    """
    Parse and validate a JSON request body.

    Raises:
        ValidationError: If the content type is not JSON or the body fails validation
    """
    if "application/json" not in request.headers.get("Content-Type", ""):
        raise ValidationError.invalid_content_type()

    try:
        body = await request.json()
    except ValueError:
        raise ValidationError.invalid_body(
            [{"loc": [], "msg": "Invalid JSON", "type": "json_invalid"}]
        )

    try:
        return schema.model_validate(body)
    except pydantic.ValidationError as e:
        raise ValidationError.invalid_body(validation_issues(e))


def validation_response(request: web.Request, e: ValidationError) -> web.Response:
    logger.info(
        "Rejected %s from %s: %s %s",
        request.path,
        client_identifier(request.headers, request.remote),
        e,
        [(issue["loc"], issue["type"]) for issue in e.issues],
    )
    if len(e.issues) == 0:
        return json_error(400, {"error": "Invalid content type"})
    return json_error(400, {"error": "Invalid request data", "details": e.issues})


async def handle_auth_sync(request: web.Request):
    settings = request.app[SettingsAppKey]
    statsd_client = request.app[TelegrafStatsdClientAppKey]
    policy = request.app[RateLimitPoliciesAppKey]["auth_sync"]

    try:
        rate_limit_result = await rate_limit_helper(request, "auth_sync")
    except RateLimitExceeded as e:
        return rate_limited_response(e, now_ms())

    try:
        sync_request = await read_json_body(request, SyncRequest)
    except ValidationError as e:
        return validation_response(request, e)

    command = SyncCommand(
        did=sync_request.did,
        handle=sync_request.handle,
        session_id=sync_request.session_id,
        device_id=sync_request.device_id,
        display_name=sync_request.display_name,
        avatar=sync_request.avatar,
        description=sync_request.description,
        pds=sync_request.pds,
        metadata=(
            sync_request.metadata.to_record()
            if sync_request.metadata is not None
            else {}
        ),
    )

    synchronizer = request.app[SessionSynchronizerAppKey]
    try:
        outcome = await synchronizer.sync(command)
    except PersistenceFailure as e:
        await request.app[HealthGaugeAppKey].womp()
        logger.error("Sync failed for %s: %s", command.session_id, e)
        return json_error(500, {"error": "Failed to sync user data"})

    statsd_client.increment(
        f"{settings.statsd_prefix}.session.sync",
        1,
        tag_dict={"recorded": str(outcome.session_recorded).lower()},
    )

    return web.json_response(
        {
            "success": True,
            "user": identity_json(outcome.identity),
            "sessionRecorded": outcome.session_recorded,
        },
        headers=rate_limit_headers(policy.limit, rate_limit_result),
    )


async def handle_auth_activity(request: web.Request):
    policy = request.app[RateLimitPoliciesAppKey]["auth_activity"]

    try:
        rate_limit_result = await rate_limit_helper(request, "auth_activity")
    except RateLimitExceeded as e:
        return rate_limited_response(e, now_ms())

    try:
        activity_request = await read_json_body(request, ActivityRequest)
    except ValidationError as e:
        return validation_response(request, e)

    activity_tracker = request.app[ActivityTrackerAppKey]
    try:
        outcome = await activity_tracker.update_activity(
            activity_request.session_id, activity_request.last_active_at
        )
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await request.app[HealthGaugeAppKey].womp()
        logger.error(
            "Activity update failed for %s: %s",
            activity_request.session_id,
            type(e).__name__,
        )
        return json_error(500, {"error": "Failed to update session activity"})

    body = {"success": True}
    if outcome.warning is not None:
        body["warning"] = outcome.warning

    return web.json_response(
        body, headers=rate_limit_headers(policy.limit, rate_limit_result)
    )


async def handle_auth_deactivate(request: web.Request):
    try:
        await rate_limit_helper(request, "auth_activity")
    except RateLimitExceeded as e:
        return rate_limited_response(e, now_ms())

    try:
        deactivate_request = await read_json_body(request, DeactivateRequest)
    except ValidationError as e:
        return validation_response(request, e)

    activity_tracker = request.app[ActivityTrackerAppKey]
    try:
        await activity_tracker.deactivate(deactivate_request.session_id)
    except NotFound:
        return json_error(404, {"error": "Session not found"})
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await request.app[HealthGaugeAppKey].womp()
        logger.error(
            "Deactivate failed for %s: %s",
            deactivate_request.session_id,
            type(e).__name__,
        )
        return json_error(500, {"error": "Failed to deactivate session"})

    return web.json_response({"success": True})
