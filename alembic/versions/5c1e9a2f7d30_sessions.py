"""identities and session records

Revision ID: 5c1e9a2f7d30
Revises:
Create Date: 2026-10-17 09:12:41.503217

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "5c1e9a2f7d30"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "identities",
        sa.Column("guid", sa.String(512), primary_key=True),
        sa.Column("did", sa.String(512), nullable=False),
        sa.Column("handle", sa.String(512), nullable=False),
        sa.Column("display_name", sa.String(64), nullable=True),
        sa.Column("avatar", sa.String(2048), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("pds", sa.String(2048), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "preferences",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "is_active", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_identities_did", "identities", ["did"], unique=True)
    op.create_index("idx_identities_handle", "identities", ["handle"])
    op.create_index("idx_identities_last_seen", "identities", ["last_seen_at"])

    op.create_table(
        "user_sessions",
        sa.Column("guid", sa.String(512), primary_key=True),
        sa.Column("session_id", sa.String(128), nullable=False),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column(
            "user_guid",
            sa.String(512),
            sa.ForeignKey("identities.guid", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "session_metadata",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "is_active", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_user_sessions_session_id", "user_sessions", ["session_id"], unique=True
    )
    op.create_index("idx_user_sessions_user_guid", "user_sessions", ["user_guid"])
    op.create_index(
        "idx_user_sessions_active", "user_sessions", ["is_active", "last_active_at"]
    )


def downgrade() -> None:
    op.drop_table("user_sessions")
    op.drop_table("identities")
