"""AT Protocol identity records.

One row per DID. The handle and profile fields follow whatever the latest successful sign-in
reported; rows are never removed, only flagged inactive.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import Boolean, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, insert
from sqlalchemy.orm import Mapped, mapped_column
from ulid import ULID

from social.nymeria.auth.model.base import Base, guidpk, str512, timestamptz


class Identity(Base):
    """AT Protocol identity keyed by DID.

    The handle is indexed but not unique: handles move between DIDs over time.
    """

    __tablename__ = "identities"

    guid: Mapped[guidpk]
    did: Mapped[str512]
    handle: Mapped[str512]
    display_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    avatar: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pds: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    last_seen_at: Mapped[timestamptz]
    preferences: Mapped[Dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=dict
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[timestamptz]
    updated_at: Mapped[timestamptz]

    __table_args__ = (
        Index("idx_identities_did", "did", unique=True),
        Index("idx_identities_handle", "handle"),
        Index("idx_identities_last_seen", "last_seen_at"),
    )


def upsert_identity_stmt(
    did: str,
    handle: str,
    display_name: Optional[str],
    avatar: Optional[str],
    description: Optional[str],
    pds: Optional[str],
    now: datetime,
):
    """Create PostgreSQL upsert statement for identity records.

    Inserts a new identity or updates the mutable fields of the existing one, returning the
    resulting row. `created_at` is only written on insert, and a missing PDS never replaces
    a known one.
    """
    stmt = insert(Identity).values(
        [
            {
                "guid": str(ULID()),
                "did": did,
                "handle": handle,
                "display_name": display_name,
                "avatar": avatar,
                "description": description,
                "pds": pds,
                "last_seen_at": now,
                "preferences": {},
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            }
        ]
    )
    return stmt.on_conflict_do_update(
        index_elements=["did"],
        set_={
            "handle": stmt.excluded.handle,
            "display_name": stmt.excluded.display_name,
            "avatar": stmt.excluded.avatar,
            "description": stmt.excluded.description,
            "pds": func.coalesce(stmt.excluded.pds, Identity.pds),
            "last_seen_at": stmt.excluded.last_seen_at,
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(Identity)
