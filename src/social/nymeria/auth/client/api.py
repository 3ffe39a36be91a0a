"""HTTP client for the session endpoints served by `social.nymeria.auth.app`."""

import asyncio
from datetime import datetime
import logging
from typing import Any, Dict, Optional
import aiohttp
from aiohttp import ClientSession

from social.nymeria.auth.errors import (
    NotFound,
    RateLimitExceeded,
    UpstreamFailure,
)

logger = logging.getLogger(__name__)


class SessionApiClient:
    def __init__(self, http_session: ClientSession, base_url: str) -> None:
        self.http_session = http_session
        self.base_url = base_url.rstrip("/")

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON payload and return the decoded JSON body.

        Raises:
            RateLimitExceeded: On a 429 response
            NotFound: On a 404 response
            UpstreamFailure: On any other non-200 response, a transport error or a timeout
        """
        url = f"{self.base_url}{endpoint}"
        try:
            async with self.http_session.post(url, json=payload) as resp:
                if resp.status == 429:
                    body = await resp.json(content_type=None)
                    raise RateLimitExceeded(
                        reset_time=int(body.get("resetTime", 0)),
                        limit=int(resp.headers.get("X-RateLimit-Limit", 0)),
                        remaining=int(body.get("remaining", 0)),
                    )
                if resp.status == 404:
                    raise NotFound.session()
                if resp.status != 200:
                    raise UpstreamFailure.session_api(endpoint, resp.status)
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Session API %s unreachable: %s", endpoint, type(e).__name__)
            raise UpstreamFailure.unreachable(endpoint) from e

    async def sync(
        self,
        did: str,
        handle: str,
        session_id: str,
        device_id: str,
        display_name: Optional[str] = None,
        avatar: Optional[str] = None,
        description: Optional[str] = None,
        pds: Optional[str] = None,
        user_agent: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "did": did,
            "handle": handle,
            "sessionId": session_id,
            "deviceId": device_id,
        }
        optional = {
            "displayName": display_name,
            "avatar": avatar,
            "description": description,
            "pds": pds,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})

        device_info = {
            k: v
            for k, v in {"userAgent": user_agent, "platform": platform}.items()
            if v is not None
        }
        if device_info:
            payload["metadata"] = {"deviceInfo": device_info}

        return await self._post("/api/auth/sync", payload)

    async def update_activity(
        self, session_id: str, last_active_at: datetime
    ) -> Dict[str, Any]:
        return await self._post(
            "/api/auth/activity",
            {"sessionId": session_id, "lastActiveAt": last_active_at.isoformat()},
        )

    async def deactivate(self, session_id: str) -> None:
        await self._post("/api/auth/deactivate", {"sessionId": session_id})
