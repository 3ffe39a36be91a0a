"""Session activity and expiry tracking.

Activity pings may race ahead of the first sync for a session, so a missing record is a
warning rather than an error. Expiry is never swept: a record past its `expires_at` simply
fails the next gateway verification.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, Optional

from social.nymeria.auth.errors import NotFound, Unauthorized
from social.nymeria.auth.model.sessions import SessionRecord
from social.nymeria.auth.session.store import SessionStore
from social.nymeria.auth.session.synchronizer import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityOutcome:
    found: bool

    @property
    def warning(self) -> Optional[str]:
        return None if self.found else "not found"


class ActivityTracker:
    def __init__(
        self, store: SessionStore, clock: Callable[[], datetime] = utc_now
    ) -> None:
        self.store = store
        self._clock = clock

    async def update_activity(
        self, session_id: str, timestamp: datetime
    ) -> ActivityOutcome:
        """Move `last_active_at` forward to `timestamp`. Never moves it backwards."""
        found = await self.store.update_session_activity(session_id, timestamp)
        if not found:
            logger.warning("Session %s not found for activity update", session_id)
        return ActivityOutcome(found=found)

    async def deactivate(self, session_id: str) -> None:
        """
        Flag a session record inactive.

        Raises:
            NotFound: If no record has this session id
        """
        found = await self.store.deactivate_session(session_id, self._clock())
        if not found:
            raise NotFound.session()
        logger.info("Session %s deactivated", session_id)

    async def verify(self, session_id: str) -> SessionRecord:
        """
        Return the active, unexpired record for a session id.

        Raises:
            Unauthorized: If the record is missing, inactive or expired
        """
        session_record = await self.store.find_active_session(session_id)
        if session_record is None:
            raise Unauthorized.session_not_found()
        if await self.store.is_expired(session_id, self._clock()):
            raise Unauthorized.session_expired()
        return session_record
