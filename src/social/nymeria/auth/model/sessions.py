"""Server-side session records.

A session record mirrors one client-held OAuth session: a `session_id` minted by the client,
the device it runs on and the identity that owns it. Records are deactivated on sign-out
rather than deleted.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import JSONB, insert
from sqlalchemy.orm import Mapped, mapped_column
from ulid import ULID

from social.nymeria.auth.model.base import Base, guidpk, timestamptz


class SessionRecord(Base):
    """One client session on one device, owned by an Identity.

    Only non-sensitive metadata is stored here. Tokens never leave the client.
    """

    __tablename__ = "user_sessions"

    guid: Mapped[guidpk]
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    device_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    user_guid: Mapped[str] = mapped_column(
        String(512),
        ForeignKey("identities.guid", ondelete="CASCADE"),
        nullable=False,
    )
    last_active_at: Mapped[timestamptz]
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # "metadata" is reserved on declarative classes.
    session_metadata: Mapped[Dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=dict
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[timestamptz]
    updated_at: Mapped[timestamptz]

    __table_args__ = (
        Index("idx_user_sessions_session_id", "session_id", unique=True),
        Index("idx_user_sessions_user_guid", "user_guid"),
        Index("idx_user_sessions_active", "is_active", "last_active_at"),
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


def upsert_session_stmt(
    session_id: str,
    user_guid: str,
    device_id: Optional[str],
    metadata: Dict[str, Any],
    now: datetime,
    expires_at: Optional[datetime],
):
    """Create PostgreSQL upsert statement for session records.

    Inserts the record for a new session id. For an existing session id only the activity
    timestamp and the metadata move; the owning identity and the device are never
    reassigned.
    """
    stmt = insert(SessionRecord).values(
        [
            {
                "guid": str(ULID()),
                "session_id": session_id,
                "device_id": device_id,
                "user_guid": user_guid,
                "last_active_at": now,
                "expires_at": expires_at,
                "session_metadata": metadata,
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            }
        ]
    )
    return stmt.on_conflict_do_update(
        index_elements=["session_id"],
        set_={
            "last_active_at": stmt.excluded.last_active_at,
            "session_metadata": stmt.excluded.session_metadata,
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(SessionRecord)
