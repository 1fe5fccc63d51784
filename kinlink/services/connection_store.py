"""
kinlink.services.connection_store — Undirected Member Connections
==================================================================

Owns ``user_connections``.  A connection is an unordered pair of members
within a community; it is stored with ``user_a_id < user_b_id`` so that
(A, B) and (B, A) land on the same unique key and a concurrent duplicate
insert fails in the database instead of producing a second row.

Two flavours of every write:

* ``create_if_absent`` — standalone, own transaction.  A lost race is
  resolved by re-reading the winner's row.
* ``create_if_absent_in`` — inside a caller-owned session (the approval
  transaction).  A lost race surfaces as ``IntegrityError`` so the caller can
  roll back its whole unit of work and retry.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kinlink.database.engine import is_unique_violation, run_db
from kinlink.database.models import UserConnection

logger = logging.getLogger(__name__)


def ordered_pair(user_x: str, user_y: str) -> tuple[str, str]:
    """Return the pair in storage order.  Self-pairs are rejected."""
    if user_x == user_y:
        raise ValueError("A member cannot be connected to themselves")
    return (user_x, user_y) if user_x < user_y else (user_y, user_x)


class ConnectionStore:
    """Create and query bidirectional member connections."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Public async API
    # ------------------------------------------------------------------
    async def create_if_absent(
        self,
        user_a: str,
        user_b: str,
        community_id: str,
        request_id: str | None = None,
    ) -> UserConnection:
        """Return the connection for the pair, inserting it if needed.

        Argument order does not matter.  Safe under concurrent calls for the
        same pair: every caller gets the same row back.
        """
        return await run_db(self._create_if_absent_sync, user_a, user_b, community_id, request_id)

    async def find_between(
        self, user_a: str, user_b: str, community_id: str
    ) -> UserConnection | None:
        return await run_db(self._find_between_sync, user_a, user_b, community_id)

    async def list_for_user(self, user_id: str, community_id: str) -> list[UserConnection]:
        """Connections involving *user_id* in a community, newest first."""
        return await run_db(self._list_for_user_sync, user_id, community_id)

    # ------------------------------------------------------------------
    # Session-level operations (composable into a caller's transaction)
    # ------------------------------------------------------------------
    def find_between_in(
        self, session: Session, user_a: str, user_b: str, community_id: str
    ) -> UserConnection | None:
        if user_a == user_b:
            return None
        low, high = ordered_pair(user_a, user_b)
        # Query both orderings so rows written before normalization still match.
        return session.scalar(
            select(UserConnection).where(
                UserConnection.community_id == community_id,
                or_(
                    (UserConnection.user_a_id == low) & (UserConnection.user_b_id == high),
                    (UserConnection.user_a_id == high) & (UserConnection.user_b_id == low),
                ),
            )
        )

    def create_if_absent_in(
        self,
        session: Session,
        user_a: str,
        user_b: str,
        community_id: str,
        request_id: str | None = None,
    ) -> UserConnection:
        """Find or add the connection inside *session* and flush it.

        Raises ``IntegrityError`` if a concurrent writer inserted the pair
        first; the caller owns the transaction and decides how to recover.
        """
        low, high = ordered_pair(user_a, user_b)
        existing = self.find_between_in(session, low, high, community_id)
        if existing is not None:
            return existing

        connection = UserConnection(
            user_a_id=low,
            user_b_id=high,
            community_id=community_id,
            connection_request_id=request_id,
        )
        session.add(connection)
        session.flush()
        logger.info(
            "Created connection %s between %s and %s in community=%s",
            connection.id, low, high, community_id,
        )
        return connection

    # ------------------------------------------------------------------
    # Sync helpers (run via run_db)
    # ------------------------------------------------------------------
    def _create_if_absent_sync(
        self,
        user_a: str,
        user_b: str,
        community_id: str,
        request_id: str | None,
    ) -> UserConnection:
        with Session(self.engine, expire_on_commit=False) as session:
            try:
                connection = self.create_if_absent_in(
                    session, user_a, user_b, community_id, request_id
                )
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if not is_unique_violation(exc):
                    raise
                connection = self.find_between_in(session, user_a, user_b, community_id)
                if connection is None:
                    raise
                logger.info(
                    "Connection between %s and %s in community=%s already created "
                    "concurrently; reusing %s",
                    user_a, user_b, community_id, connection.id,
                )
            session.expunge(connection)
            return connection

    def _find_between_sync(
        self, user_a: str, user_b: str, community_id: str
    ) -> UserConnection | None:
        with Session(self.engine) as session:
            connection = self.find_between_in(session, user_a, user_b, community_id)
            if connection is not None:
                session.expunge(connection)
            return connection

    def _list_for_user_sync(self, user_id: str, community_id: str) -> list[UserConnection]:
        with Session(self.engine) as session:
            rows = session.scalars(
                select(UserConnection)
                .where(
                    UserConnection.community_id == community_id,
                    or_(
                        UserConnection.user_a_id == user_id,
                        UserConnection.user_b_id == user_id,
                    ),
                )
                .order_by(UserConnection.created_at.desc(), UserConnection.id)
            ).all()
            session.expunge_all()
            return list(rows)
