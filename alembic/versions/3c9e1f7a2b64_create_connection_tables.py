"""Create membership, connection code, request and connection tables

Revision ID: 3c9e1f7a2b64
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c9e1f7a2b64"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def upgrade() -> None:
    """Create the four connection tables with their uniqueness rules."""
    op.create_table(
        "community_memberships",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("community_id", sa.String(36), primary_key=True),
        _timestamp("joined_at"),
    )
    op.create_index(
        "ix_community_memberships_community", "community_memberships", ["community_id"]
    )

    op.create_table(
        "community_member_codes",
        sa.Column("code", sa.String(8), primary_key=True),
        sa.Column("owner_id", sa.String(36), nullable=False),
        sa.Column("community_id", sa.String(36), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index(
        "uq_member_codes_active_owner_community",
        "community_member_codes",
        ["owner_id", "community_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "ix_member_codes_owner_community",
        "community_member_codes",
        ["owner_id", "community_id"],
    )
    op.create_index("ix_member_codes_community", "community_member_codes", ["community_id"])

    op.create_table(
        "connection_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("community_id", sa.String(36), nullable=False),
        sa.Column("initiator_id", sa.String(36), nullable=False),
        sa.Column("requester_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _timestamp("created_at"),
        _timestamp("responded_at", nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("initiator_id <> requester_id", name="ck_requests_not_self"),
    )
    op.create_index(
        "uq_requests_active_triple",
        "connection_requests",
        ["community_id", "initiator_id", "requester_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'accepted')"),
    )
    op.create_index(
        "ix_requests_initiator_status", "connection_requests", ["initiator_id", "status"]
    )
    op.create_index("ix_requests_requester", "connection_requests", ["requester_id"])
    op.create_index("ix_requests_community", "connection_requests", ["community_id"])
    op.create_index("ix_requests_expires_at", "connection_requests", ["expires_at"])

    op.create_table(
        "user_connections",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_a_id", sa.String(36), nullable=False),
        sa.Column("user_b_id", sa.String(36), nullable=False),
        sa.Column("community_id", sa.String(36), nullable=False),
        sa.Column(
            "connection_request_id",
            sa.String(36),
            sa.ForeignKey("connection_requests.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _timestamp("created_at"),
        sa.CheckConstraint("user_a_id < user_b_id", name="ck_connections_ordered_pair"),
        sa.UniqueConstraint(
            "user_a_id", "user_b_id", "community_id", name="uq_connections_pair_community"
        ),
    )
    op.create_index("ix_connections_user_a", "user_connections", ["user_a_id"])
    op.create_index("ix_connections_user_b", "user_connections", ["user_b_id"])
    op.create_index("ix_connections_community", "user_connections", ["community_id"])


def downgrade() -> None:
    """Drop the connection tables in dependency order."""
    op.drop_table("user_connections")
    op.drop_table("connection_requests")
    op.drop_table("community_member_codes")
    op.drop_table("community_memberships")
