"""
Persistence interface for identities and session records.

SessionStore is the narrow interface the synchronizer, the activity tracker and the gateway
depend on. SqlSessionStore implements it on PostgreSQL through SQLAlchemy's async ORM.
Every write is a single statement: upserts rely on `INSERT .. ON CONFLICT DO UPDATE` so that
"does it exist" and "write it" can never race.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
)

from social.nymeria.auth.model.identities import Identity, upsert_identity_stmt
from social.nymeria.auth.model.sessions import SessionRecord, upsert_session_stmt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityFields:
    """Mutable identity fields carried by a synchronization request."""

    handle: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    description: Optional[str] = None
    pds: Optional[str] = None


class SessionStore(ABC):

    @abstractmethod
    async def upsert_identity(
        self, did: str, fields: IdentityFields, now: datetime
    ) -> Identity:
        pass

    @abstractmethod
    async def upsert_session(
        self,
        session_id: str,
        owner_guid: str,
        device_id: Optional[str],
        metadata: Dict[str, Any],
        now: datetime,
        expires_at: Optional[datetime] = None,
    ) -> SessionRecord:
        pass

    @abstractmethod
    async def update_session_activity(self, session_id: str, timestamp: datetime) -> bool:
        """Move `last_active_at` forward. Returns False when no record matches."""
        pass

    @abstractmethod
    async def deactivate_session(self, session_id: str, now: datetime) -> bool:
        """Flag the record inactive. Returns False when no record matches."""
        pass

    @abstractmethod
    async def find_active_session(self, session_id: str) -> Optional[SessionRecord]:
        pass

    @abstractmethod
    async def is_expired(self, session_id: str, now: datetime) -> bool:
        """True when the record is missing or its `expires_at` has passed."""
        pass

    @abstractmethod
    async def find_identity(self, guid: str) -> Optional[Identity]:
        pass

    @abstractmethod
    async def list_active_sessions(self, user_guid: str) -> List[SessionRecord]:
        pass


class SqlSessionStore(SessionStore):
    def __init__(self, database_session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.database_session_maker = database_session_maker

    async def upsert_identity(
        self, did: str, fields: IdentityFields, now: datetime
    ) -> Identity:
        stmt = upsert_identity_stmt(
            did,
            fields.handle,
            fields.display_name,
            fields.avatar,
            fields.description,
            fields.pds,
            now,
        ).execution_options(populate_existing=True)

        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                identity = (await database_session.scalars(stmt)).one()
                await database_session.commit()
        return identity

    async def upsert_session(
        self,
        session_id: str,
        owner_guid: str,
        device_id: Optional[str],
        metadata: Dict[str, Any],
        now: datetime,
        expires_at: Optional[datetime] = None,
    ) -> SessionRecord:
        stmt = upsert_session_stmt(
            session_id, owner_guid, device_id, metadata, now, expires_at
        ).execution_options(populate_existing=True)

        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                session_record = (await database_session.scalars(stmt)).one()
                await database_session.commit()
        return session_record

    async def update_session_activity(self, session_id: str, timestamp: datetime) -> bool:
        stmt = (
            update(SessionRecord)
            .where(SessionRecord.session_id == session_id)
            .values(
                last_active_at=func.greatest(SessionRecord.last_active_at, timestamp),
                updated_at=func.now(),
            )
            .returning(SessionRecord.guid)
            .execution_options(synchronize_session=False)
        )
        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                updated = (await database_session.scalars(stmt)).first()
                await database_session.commit()
        return updated is not None

    async def deactivate_session(self, session_id: str, now: datetime) -> bool:
        stmt = (
            update(SessionRecord)
            .where(SessionRecord.session_id == session_id)
            .values(is_active=False, updated_at=now)
            .returning(SessionRecord.guid)
            .execution_options(synchronize_session=False)
        )
        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                deactivated = (await database_session.scalars(stmt)).first()
                await database_session.commit()
        return deactivated is not None

    async def find_active_session(self, session_id: str) -> Optional[SessionRecord]:
        stmt = select(SessionRecord).where(
            SessionRecord.session_id == session_id,
            SessionRecord.is_active.is_(True),
        )
        async with self.database_session_maker() as database_session:
            return (await database_session.scalars(stmt)).first()

    async def is_expired(self, session_id: str, now: datetime) -> bool:
        stmt = select(SessionRecord.expires_at).where(
            SessionRecord.session_id == session_id
        )
        async with self.database_session_maker() as database_session:
            result = (await database_session.execute(stmt)).first()
        if result is None:
            return True
        expires_at = result[0]
        return expires_at is not None and expires_at <= now

    async def find_identity(self, guid: str) -> Optional[Identity]:
        stmt = select(Identity).where(Identity.guid == guid)
        async with self.database_session_maker() as database_session:
            return (await database_session.scalars(stmt)).first()

    async def list_active_sessions(self, user_guid: str) -> List[SessionRecord]:
        stmt = (
            select(SessionRecord)
            .where(
                SessionRecord.user_guid == user_guid,
                SessionRecord.is_active.is_(True),
            )
            .order_by(SessionRecord.last_active_at.desc())
        )
        async with self.database_session_maker() as database_session:
            return list((await database_session.scalars(stmt)).all())
