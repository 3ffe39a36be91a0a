"""
Client-side session data.

The session handed to the application is a composition of two halves:

- ExternalSession: what the identity-provider capability returned. The access material it
  carries is opaque, never serialized and never sent anywhere by this package.
- LocalEnrichment: what this package owns: the session and device identifiers, the fetched
  profile, and the derived handle and PDS.

AuthState is the only value that travels through the OAuth redirect. It is signed with a
per-installation key and carries an expiry. On return any
failure to verify or decode it is treated as "no state".
"""

from datetime import datetime, timedelta, timezone
from enum import IntEnum
import json
import logging
from typing import Any, Optional
from jwcrypto import jwk, jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

STATE_ALGORITHM = "HS256"
DEFAULT_STATE_LIFETIME = timedelta(seconds=600)


class AuthPhase(IntEnum):
    """Orchestrator phase.

    Transitions: ANONYMOUS -> SIGNING_IN -> AWAITING_CALLBACK -> AUTHENTICATED ->
    SIGNING_OUT -> ANONYMOUS, and ANONYMOUS -> RESTORING -> AUTHENTICATED | ANONYMOUS.
    """

    anonymous = 1
    signing_in = 2
    awaiting_callback = 3
    authenticated = 4
    restoring = 5
    signing_out = 6


def generate_state_key() -> jwk.JWK:
    return jwk.JWK.generate(kty="oct", size=256, alg=STATE_ALGORITHM)


class AuthState(BaseModel):
    """Sign-in context round-tripped through the OAuth `state` parameter."""

    model_config = ConfigDict(populate_by_name=True)

    ident: str
    redirect: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    def sign(
        self,
        key: jwk.JWK,
        now: Optional[datetime] = None,
        lifetime: timedelta = DEFAULT_STATE_LIFETIME,
    ) -> str:
        """Serialize to a compact HS256 JWS with `iat` and `exp` claims."""
        if now is None:
            now = datetime.now(timezone.utc)
        claims = self.model_dump(by_alias=True, exclude_none=True)
        claims["iat"] = int(now.timestamp())
        claims["exp"] = int((now + lifetime).timestamp())
        token = jwt.JWT(header={"alg": STATE_ALGORITHM}, claims=claims)
        token.make_signed_token(key)
        return token.serialize()

    @classmethod
    def parse(
        cls, value: Optional[str], key: jwk.JWK, now: Optional[datetime] = None
    ) -> Optional["AuthState"]:
        """
        Verify and decode a returned state value.

        Returns None for a missing, forged, expired or malformed value. Never raises.
        """
        if not value:
            return None
        if now is None:
            now = datetime.now(timezone.utc)

        try:
            token = jwt.JWT(
                jwt=value, key=key, algs=[STATE_ALGORITHM], check_claims=False
            )
            claims = json.loads(token.claims)
        except Exception as e:
            logger.warning("Discarding unverifiable state: %s", type(e).__name__)
            return None

        if not isinstance(claims, dict):
            return None

        expires = claims.get("exp", None)
        if not isinstance(expires, int) or expires <= int(now.timestamp()):
            logger.warning("Discarding expired state")
            return None

        try:
            return cls.model_validate(claims)
        except ValidationError:
            logger.warning("Discarding state with unexpected shape")
            return None


class ExternalSession(BaseModel):
    """Session as returned by the identity-provider capability."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    sub: str
    pds: Optional[str] = None
    credentials: Any = Field(default=None, exclude=True, repr=False)


class ProfileMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: Optional[str] = Field(default=None, alias="displayName")
    avatar: Optional[str] = None
    description: Optional[str] = None
    handle: Optional[str] = None


class LocalEnrichment(BaseModel):
    session_id: str
    device_id: str
    profile: Optional[ProfileMetadata] = None
    handle: str
    pds: Optional[str] = None
    redirect: Optional[str] = None
    """Where to send the user once signed in, taken from a verified sign-in state."""


class EnhancedSession(BaseModel):
    """An authenticated session as seen by the application."""

    external: ExternalSession
    local: LocalEnrichment

    @property
    def did(self) -> str:
        return self.external.sub

    @property
    def handle(self) -> str:
        return self.local.handle

    @property
    def pds(self) -> Optional[str]:
        return self.local.pds

    @property
    def session_id(self) -> str:
        return self.local.session_id

    @property
    def device_id(self) -> str:
        return self.local.device_id

    @property
    def profile(self) -> Optional[ProfileMetadata]:
        return self.local.profile

    @property
    def redirect(self) -> Optional[str]:
        return self.local.redirect
