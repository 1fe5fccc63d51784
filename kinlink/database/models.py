"""
kinlink.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- community_memberships  — External membership relation (read-only to Kinlink)
- community_member_codes — Shareable connection codes, one active per member/community
- connection_requests    — Redemptions awaiting the code owner's decision
- user_connections       — Undirected, request-derived member connections

Uniqueness is enforced by the database, never by locking:

* ``community_member_codes.code`` is the primary key, so a random collision
  fails the insert and the registry retries with a fresh candidate.
* A partial unique index keeps one *active* code per (owner, community).
* A partial unique index keeps one *active* (pending/accepted) request per
  (community, initiator, requester).
* ``user_connections`` stores pairs ordered ``user_a_id < user_b_id`` with a
  unique constraint, so (A, B) and (B, A) collide.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Kinlink ORM models."""


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ConnectionRequestStatus(enum.StrEnum):
    """Lifecycle of a connection request.  Only PENDING is non-terminal."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


# Statuses that occupy the (community, initiator, requester) slot.
ACTIVE_REQUEST_STATUSES = (
    ConnectionRequestStatus.PENDING.value,
    ConnectionRequestStatus.ACCEPTED.value,
)


# ---------------------------------------------------------------------------
# CommunityMembership — external relation, queried by the membership guard
# ---------------------------------------------------------------------------
class CommunityMembership(Base):
    __tablename__ = "community_memberships"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    community_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_community_memberships_community", "community_id"),
    )

    def __repr__(self) -> str:
        return f"<CommunityMembership user={self.user_id} community={self.community_id}>"


# ---------------------------------------------------------------------------
# MemberConnectionCode — the shareable code
# ---------------------------------------------------------------------------
class MemberConnectionCode(Base):
    """A member's shareable connection code for one community.

    Inactive rows are kept for audit; they still occupy their ``code`` so a
    regenerated code can never equal a previous one.
    """
    __tablename__ = "community_member_codes"

    code: Mapped[str] = mapped_column(String(8), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    community_id: Mapped[str] = mapped_column(String(36), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    __table_args__ = (
        # One active code per member per community; inactive rows unconstrained
        Index(
            "uq_member_codes_active_owner_community",
            "owner_id",
            "community_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index("ix_member_codes_owner_community", "owner_id", "community_id"),
        Index("ix_member_codes_community", "community_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<MemberConnectionCode code={self.code!r} owner={self.owner_id} "
            f"active={self.is_active}>"
        )


# ---------------------------------------------------------------------------
# ConnectionRequest — a redeemed code awaiting the owner's decision
# ---------------------------------------------------------------------------
class ConnectionRequest(Base):
    __tablename__ = "connection_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    community_id: Mapped[str] = mapped_column(String(36), nullable=False)
    initiator_id: Mapped[str] = mapped_column(String(36), nullable=False)  # code owner
    requester_id: Mapped[str] = mapped_column(String(36), nullable=False)  # redeemer
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConnectionRequestStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("initiator_id <> requester_id", name="ck_requests_not_self"),
        Index(
            "uq_requests_active_triple",
            "community_id",
            "initiator_id",
            "requester_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'accepted')"),
            sqlite_where=text("status IN ('pending', 'accepted')"),
        ),
        Index("ix_requests_initiator_status", "initiator_id", "status"),
        Index("ix_requests_requester", "requester_id"),
        Index("ix_requests_community", "community_id"),
        Index("ix_requests_expires_at", "expires_at"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == ConnectionRequestStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<ConnectionRequest id={self.id} initiator={self.initiator_id} "
            f"requester={self.requester_id} status={self.status!r}>"
        )


# ---------------------------------------------------------------------------
# UserConnection — undirected, one row per pair per community
# ---------------------------------------------------------------------------
class UserConnection(Base):
    __tablename__ = "user_connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_a_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_b_id: Mapped[str] = mapped_column(String(36), nullable=False)
    community_id: Mapped[str] = mapped_column(String(36), nullable=False)
    connection_request_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("connection_requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("user_a_id < user_b_id", name="ck_connections_ordered_pair"),
        UniqueConstraint(
            "user_a_id", "user_b_id", "community_id",
            name="uq_connections_pair_community",
        ),
        Index("ix_connections_user_a", "user_a_id"),
        Index("ix_connections_user_b", "user_b_id"),
        Index("ix_connections_community", "community_id"),
    )

    def other_party(self, user_id: str) -> str:
        """Return the member on the other end of this connection."""
        return self.user_b_id if user_id == self.user_a_id else self.user_a_id

    def __repr__(self) -> str:
        return (
            f"<UserConnection id={self.id} pair=({self.user_a_id}, {self.user_b_id}) "
            f"community={self.community_id}>"
        )
