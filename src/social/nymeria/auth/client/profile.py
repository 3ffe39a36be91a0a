from typing import Optional
from aiohttp import ClientSession
from pydantic import ValidationError
import sentry_sdk

from social.nymeria.auth.client.models import ProfileMetadata


class ProfileClient:
    """Public profile lookups against an AppView."""

    def __init__(self, http_session: ClientSession, profile_service: str) -> None:
        self.http_session = http_session
        self.profile_service = profile_service.rstrip("/")

    async def fetch(self, did: str) -> Optional[ProfileMetadata]:
        """Fetch the public profile for a DID. Any failure yields None."""
        url = f"{self.profile_service}/xrpc/app.bsky.actor.getProfile"
        try:
            async with self.http_session.get(url, params={"actor": did}) as resp:
                if resp.status != 200:
                    return None
                body = await resp.json()
        except Exception as e:
            sentry_sdk.capture_exception(e)
            return None

        if not isinstance(body, dict):
            return None
        try:
            return ProfileMetadata.model_validate(body)
        except ValidationError:
            return None
