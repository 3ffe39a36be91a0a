"""
Session synchronization: the single write path for "a client is now authenticated as DID X
on session Y".

The two writes (identity, then session record) are not wrapped in one transaction. They form
a two-step saga with a defined partial outcome:

1. Identity upsert fails: the whole sync fails with PersistenceFailure and no session record
   is attempted, so a record can never exist without its owner.
2. Session upsert fails after the identity succeeded: the identity change is kept and the
   outcome reports `session_recorded=False`. The client already holds a valid provider
   session, so this is a retryable state that the next sync or activity tick reconciles.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable, Dict, Optional
import sentry_sdk

from social.nymeria.auth.errors import PersistenceFailure
from social.nymeria.auth.model.identities import Identity
from social.nymeria.auth.model.sessions import SessionRecord
from social.nymeria.auth.session.store import IdentityFields, SessionStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SyncCommand:
    """A validated synchronization request. Every field has already been sanitized."""

    did: str
    handle: str
    session_id: str
    device_id: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    description: Optional[str] = None
    pds: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SyncOutcome:
    identity: Identity
    session: Optional[SessionRecord]

    @property
    def session_recorded(self) -> bool:
        return self.session is not None


class SessionSynchronizer:
    def __init__(
        self,
        store: SessionStore,
        session_lifetime: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.session_lifetime = session_lifetime
        self._clock = clock

    async def sync(self, command: SyncCommand) -> SyncOutcome:
        now = self._clock()

        try:
            identity = await self.store.upsert_identity(
                command.did,
                IdentityFields(
                    handle=command.handle,
                    display_name=command.display_name,
                    avatar=command.avatar,
                    description=command.description,
                    pds=command.pds,
                ),
                now,
            )
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error(
                "Identity upsert failed for %s: %s", command.did, type(e).__name__
            )
            raise PersistenceFailure.identity_upsert() from e

        expires_at = None
        if self.session_lifetime is not None:
            expires_at = now + self.session_lifetime

        try:
            session_record = await self.store.upsert_session(
                command.session_id,
                identity.guid,
                command.device_id,
                command.metadata,
                now,
                expires_at,
            )
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.warning(
                "Session upsert failed for %s on %s, identity kept: %s",
                command.session_id,
                command.did,
                type(e).__name__,
            )
            return SyncOutcome(identity=identity, session=None)

        if session_record.user_guid != identity.guid:
            # An existing session id is never reassigned to another identity.
            logger.warning(
                "Session %s belongs to another identity, ownership unchanged",
                command.session_id,
            )

        return SyncOutcome(identity=identity, session=session_record)
