"""
kinlink.services.connection_workflow — Connection Request State Machine
========================================================================

Turns a redeemed code into a ``ConnectionRequest`` and moves that request
through its lifecycle::

    (no request) ──redeem──▶ pending ──approve──▶ accepted  (+ UserConnection)
                                     ├─reject───▶ rejected
                                     └─expiry───▶ expired

Redemption runs a fixed sequence of guards.  Each guard short-circuits, so
later state is never revealed for input that failed an earlier guard (a
caller cannot learn a community's membership rules for a code that does not
exist):

    1. format            → invalid-code
    2. active code       → code-not-found
    3. self              → self-connection-rejected
    4. membership        → membership-required(community_id)
    5. pending request   → already-pending(request_id)
    6. accepted / linked → already-connected
    7. rejected request  → previously-rejected
    8. insert            → request-created(request_id)

Expected user mistakes are outcomes; caller bugs (wrong approver, wrong
state) are exceptions.  See :mod:`kinlink.exceptions`.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kinlink.constants import REQUEST_TTL
from kinlink.database.engine import get_session, is_unique_violation, run_db
from kinlink.database.models import (
    ACTIVE_REQUEST_STATUSES,
    ConnectionRequest,
    ConnectionRequestStatus,
    UserConnection,
    utcnow,
)
from kinlink.engine.codes import is_valid_code, normalize_code
from kinlink.engine.outcomes import RedeemResult
from kinlink.exceptions import (
    PermissionDeniedError,
    RequestExpiredError,
    RequestStateError,
)
from kinlink.services.code_registry import CodeRegistry
from kinlink.services.connection_store import ConnectionStore
from kinlink.services.membership_guard import MembershipGuard

logger = logging.getLogger(__name__)

PENDING = ConnectionRequestStatus.PENDING.value
ACCEPTED = ConnectionRequestStatus.ACCEPTED.value
REJECTED = ConnectionRequestStatus.REJECTED.value
EXPIRED = ConnectionRequestStatus.EXPIRED.value


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything Kinlink writes is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _is_stale(request: ConnectionRequest, now: datetime) -> bool:
    return _as_utc(request.expires_at) <= now


class ConnectionRequestWorkflow:
    """Redeem codes into requests and resolve those requests.

    Parameters
    ----------
    engine:
        Store handle; the workflow owns ``connection_requests``.
    codes, membership, connections:
        Collaborating components.  All reads and writes of their tables go
        through them.
    request_ttl:
        How long a pending request stays actionable.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        codes: CodeRegistry,
        membership: MembershipGuard,
        connections: ConnectionStore,
        request_ttl: timedelta = REQUEST_TTL,
    ) -> None:
        self.engine = engine
        self.codes = codes
        self.membership = membership
        self.connections = connections
        self.request_ttl = request_ttl

    # ==================================================================
    # Redemption
    # ==================================================================
    async def redeem(self, requester_id: str, raw_code: str | None) -> RedeemResult:
        """Resolve *raw_code* on behalf of *requester_id*.

        Never raises for bad input or policy conflicts; storage errors
        propagate unchanged.
        """
        code = normalize_code(raw_code)
        if not is_valid_code(code):
            return RedeemResult.invalid_code()

        member_code = await self.codes.find_active(code)
        if member_code is None:
            return RedeemResult.code_not_found()

        owner_id = member_code.owner_id
        community_id = member_code.community_id

        if owner_id == requester_id:
            return RedeemResult.self_connection_rejected(community_id)

        if not await self.membership.is_member(requester_id, community_id):
            logger.info(
                "Redemption by %s needs membership of community=%s", requester_id, community_id
            )
            return RedeemResult.membership_required(community_id)

        return await run_db(self._resolve_request, community_id, owner_id, requester_id)

    def _resolve_request(
        self, community_id: str, initiator_id: str, requester_id: str
    ) -> RedeemResult:
        """Guards 5-8, then insert.  Runs on a worker thread."""
        now = utcnow()
        with Session(self.engine, expire_on_commit=False) as session:
            # 5. Live pending request for this exact triple
            pending = self._find_triple(session, community_id, initiator_id, requester_id, PENDING)
            if pending is not None:
                if not _is_stale(pending, now):
                    return RedeemResult.already_pending(pending.id, community_id)
                self._expire(session, pending.id, now)

            # 6. Already connected, in either direction
            if self._is_connected(session, community_id, initiator_id, requester_id):
                session.commit()
                return RedeemResult.already_connected(community_id)

            # 7. Previously rejected for this exact triple
            if self._find_triple(session, community_id, initiator_id, requester_id, REJECTED):
                session.commit()
                return RedeemResult.previously_rejected(community_id)

            # 8. Create
            request = ConnectionRequest(
                community_id=community_id,
                initiator_id=initiator_id,
                requester_id=requester_id,
                status=PENDING,
                created_at=now,
                expires_at=now + self.request_ttl,
            )
            session.add(request)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if not is_unique_violation(exc):
                    raise
                return self._resolve_lost_race(session, community_id, initiator_id, requester_id)

            logger.info(
                "Created connection request %s: requester=%s → initiator=%s community=%s",
                request.id, requester_id, initiator_id, community_id,
            )
            return RedeemResult.request_created(request.id, community_id)

    def _resolve_lost_race(
        self,
        session: Session,
        community_id: str,
        initiator_id: str,
        requester_id: str,
    ) -> RedeemResult:
        """A concurrent redemption inserted the triple first; report its row."""
        winner = session.scalar(
            select(ConnectionRequest).where(
                ConnectionRequest.community_id == community_id,
                ConnectionRequest.initiator_id == initiator_id,
                ConnectionRequest.requester_id == requester_id,
                ConnectionRequest.status.in_(ACTIVE_REQUEST_STATUSES),
            )
        )
        if winner is None:
            raise RuntimeError(
                "Connection request insert conflicted but no active request was found"
            )
        logger.info("Concurrent redemption for request %s; reusing it", winner.id)
        if winner.status == ACCEPTED:
            return RedeemResult.already_connected(community_id)
        return RedeemResult.already_pending(winner.id, community_id)

    def _find_triple(
        self,
        session: Session,
        community_id: str,
        initiator_id: str,
        requester_id: str,
        status: str,
    ) -> ConnectionRequest | None:
        return session.scalars(
            select(ConnectionRequest)
            .where(
                ConnectionRequest.community_id == community_id,
                ConnectionRequest.initiator_id == initiator_id,
                ConnectionRequest.requester_id == requester_id,
                ConnectionRequest.status == status,
            )
            .order_by(ConnectionRequest.created_at.desc())
            .limit(1)
        ).first()

    def _is_connected(
        self, session: Session, community_id: str, user_x: str, user_y: str
    ) -> bool:
        accepted = session.scalar(
            select(ConnectionRequest.id)
            .where(
                ConnectionRequest.community_id == community_id,
                ConnectionRequest.status == ACCEPTED,
                or_(
                    and_(
                        ConnectionRequest.initiator_id == user_x,
                        ConnectionRequest.requester_id == user_y,
                    ),
                    and_(
                        ConnectionRequest.initiator_id == user_y,
                        ConnectionRequest.requester_id == user_x,
                    ),
                ),
            )
            .limit(1)
        )
        if accepted is not None:
            return True
        return self.connections.find_between_in(session, user_x, user_y, community_id) is not None

    # ==================================================================
    # Transitions
    # ==================================================================
    async def approve(self, request_id: str, approver_id: str) -> UserConnection:
        """Accept a pending request and materialize the connection.

        Raises
        ------
        PermissionDeniedError
            Unknown request, or *approver_id* is not the code owner.
        RequestStateError
            The request is no longer pending (``RequestExpiredError`` if it
            lapsed).
        """
        return await run_db(self._approve_sync, request_id, approver_id)

    async def reject(self, request_id: str, approver_id: str) -> None:
        """Decline a pending request.  Same preconditions as :meth:`approve`."""
        await run_db(self._reject_sync, request_id, approver_id)

    def _approve_sync(self, request_id: str, approver_id: str) -> UserConnection:
        # A uniqueness conflict on the connection means the reverse request was
        # approved concurrently; the second attempt finds and reuses its row.
        try:
            return self._approve_once(request_id, approver_id)
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            logger.warning("Connection insert for request %s lost a race; retrying", request_id)
        return self._approve_once(request_id, approver_id)

    def _approve_once(self, request_id: str, approver_id: str) -> UserConnection:
        """One approval transaction.  A conflicting insert propagates as IntegrityError."""
        with Session(self.engine, expire_on_commit=False) as session:
            request = self._load_for_response(session, request_id, approver_id)
            connection = self.connections.create_if_absent_in(
                session,
                request.initiator_id,
                request.requester_id,
                request.community_id,
                request.id,
            )
            self._transition(session, request, ACCEPTED)
            session.commit()
            session.expunge(connection)
        logger.info("Approved connection request %s → connection %s", request_id, connection.id)
        return connection

    def _reject_sync(self, request_id: str, approver_id: str) -> None:
        with get_session(self.engine) as session:
            request = self._load_for_response(session, request_id, approver_id)
            self._transition(session, request, REJECTED)
        logger.info("Rejected connection request %s", request_id)

    def _load_for_response(
        self, session: Session, request_id: str, approver_id: str
    ) -> ConnectionRequest:
        """Fetch a request the approver may act on, or raise.

        Authorization is checked before state so strangers learn nothing.
        A lapsed pending request is marked expired (committed) before raising.
        """
        request = session.get(ConnectionRequest, request_id)
        if request is None or request.initiator_id != approver_id:
            logger.warning(
                "User %s denied response to connection request %s", approver_id, request_id
            )
            raise PermissionDeniedError(request_id)
        if not request.is_pending:
            raise RequestStateError(request_id, request.status)

        now = utcnow()
        if _is_stale(request, now):
            self._expire(session, request.id, now)
            session.commit()
            raise RequestExpiredError(request_id, EXPIRED)
        return request

    def _transition(self, session: Session, request: ConnectionRequest, status: str) -> None:
        """Move *request* out of pending.  The WHERE clause makes this a compare-and-set."""
        result = session.execute(
            update(ConnectionRequest)
            .where(ConnectionRequest.id == request.id, ConnectionRequest.status == PENDING)
            .values(status=status, responded_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise RequestStateError(request.id)

    def _expire(self, session: Session, request_id: str, now: datetime) -> None:
        session.execute(
            update(ConnectionRequest)
            .where(ConnectionRequest.id == request_id, ConnectionRequest.status == PENDING)
            .values(status=EXPIRED, responded_at=now)
            .execution_options(synchronize_session=False)
        )
        logger.info("Connection request %s expired", request_id)

    # ==================================================================
    # Queries & maintenance
    # ==================================================================
    async def get_request(self, request_id: str) -> ConnectionRequest | None:
        return await run_db(self._get_request_sync, request_id)

    async def list_pending_for_initiator(
        self, initiator_id: str, community_id: str | None = None
    ) -> list[ConnectionRequest]:
        """Live pending requests against *initiator_id*'s codes, newest first."""
        return await run_db(self._list_pending_sync, initiator_id, community_id)

    async def expire_stale_requests(self) -> int:
        """Mark every lapsed pending request as expired.  Returns how many."""
        return await run_db(self._expire_stale_sync)

    def _get_request_sync(self, request_id: str) -> ConnectionRequest | None:
        with Session(self.engine) as session:
            request = session.get(ConnectionRequest, request_id)
            if request is not None:
                session.expunge(request)
            return request

    def _list_pending_sync(
        self, initiator_id: str, community_id: str | None
    ) -> list[ConnectionRequest]:
        query = (
            select(ConnectionRequest)
            .where(
                ConnectionRequest.initiator_id == initiator_id,
                ConnectionRequest.status == PENDING,
                ConnectionRequest.expires_at > utcnow(),
            )
            .order_by(ConnectionRequest.created_at.desc(), ConnectionRequest.id)
        )
        if community_id is not None:
            query = query.where(ConnectionRequest.community_id == community_id)
        with Session(self.engine) as session:
            rows = session.scalars(query).all()
            session.expunge_all()
            return list(rows)

    def _expire_stale_sync(self) -> int:
        now = utcnow()
        with get_session(self.engine) as session:
            result = session.execute(
                update(ConnectionRequest)
                .where(
                    ConnectionRequest.status == PENDING,
                    ConnectionRequest.expires_at <= now,
                )
                .values(status=EXPIRED, responded_at=now)
                .execution_options(synchronize_session=False)
            )
        expired = result.rowcount or 0
        logger.info("Expired %d stale connection request(s)", expired)
        return expired
