"""
kinlink.services.code_registry — Member Connection Code Registry
=================================================================

Owns the ``community_member_codes`` table: hands out a member's active code
for a community, regenerates it on demand and looks codes up for redemption.

Allocation is optimistic.  Each attempt draws a random candidate, inserts it
and commits; the database's uniqueness rules decide the winner:

* primary key on ``code``        → random collision, try another candidate;
* partial unique (owner, community) WHERE is_active
                                 → a concurrent caller already allocated one
                                   for this member, return theirs.

Any other storage error aborts immediately.  After ``max_attempts`` lost
races the registry gives up with :class:`~kinlink.exceptions.CodeAllocationError`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import Engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kinlink.constants import MAX_CODE_ATTEMPTS
from kinlink.database.engine import is_unique_violation, run_db
from kinlink.database.models import MemberConnectionCode, utcnow
from kinlink.engine.codes import generate_code, is_valid_code, normalize_code
from kinlink.exceptions import CodeAllocationError

logger = logging.getLogger(__name__)


class CodeRegistry:
    """Create, look up, deactivate and regenerate member connection codes.

    Returned rows are detached from their session and safe to read anywhere.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        generator: Callable[[], str] = generate_code,
        max_attempts: int = MAX_CODE_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.engine = engine
        self.generator = generator
        self.max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Public async API
    # ------------------------------------------------------------------
    async def get_or_create_active_code(
        self, owner_id: str, community_id: str
    ) -> MemberConnectionCode:
        """Return the member's active code, allocating one if absent.

        Idempotent: repeated calls return the same row.
        """
        return await run_db(self._allocate, owner_id, community_id, replace=False)

    async def regenerate(self, owner_id: str, community_id: str) -> MemberConnectionCode:
        """Retire the member's active code (if any) and allocate a fresh one.

        The old code stops matching as soon as this returns.
        """
        return await run_db(self._allocate, owner_id, community_id, replace=True)

    async def deactivate(self, owner_id: str, community_id: str) -> bool:
        """Deactivate the member's active code.  Returns False if there was none."""
        return await run_db(self._deactivate_sync, owner_id, community_id)

    async def find_active(self, code: str) -> MemberConnectionCode | None:
        """Look up an active code.  *code* is normalized first; malformed input → None."""
        return await run_db(self._find_active_sync, code)

    async def find_active_for_owner(
        self, owner_id: str, community_id: str
    ) -> MemberConnectionCode | None:
        """Return the member's current active code without allocating."""
        return await run_db(self._find_active_for_owner_sync, owner_id, community_id)

    # ------------------------------------------------------------------
    # Generate-with-retry
    # ------------------------------------------------------------------
    def _allocate(
        self, owner_id: str, community_id: str, *, replace: bool
    ) -> MemberConnectionCode:
        """Run up to ``max_attempts`` generate → insert → commit rounds.

        With ``replace=True`` every attempt first retires the current active
        code inside the same transaction, so a failed attempt rolls the old
        code back to active and a successful one swaps them atomically.
        """
        for attempt in range(1, self.max_attempts + 1):
            with Session(self.engine, expire_on_commit=False) as session:
                if replace:
                    self._retire_active(session, owner_id, community_id)
                else:
                    existing = _active_for_owner(session, owner_id, community_id)
                    if existing is not None:
                        session.expunge(existing)
                        return existing

                candidate = self.generator()
                row = MemberConnectionCode(
                    code=candidate,
                    owner_id=owner_id,
                    community_id=community_id,
                    is_active=True,
                )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    if not is_unique_violation(exc):
                        raise
                    logger.warning(
                        "Connection code collision for owner=%s community=%s "
                        "(attempt %d/%d)",
                        owner_id, community_id, attempt, self.max_attempts,
                    )
                    continue

                session.expunge(row)
                logger.info(
                    "Allocated connection code for owner=%s community=%s%s",
                    owner_id, community_id, " (regenerated)" if replace else "",
                )
                return row

        if not replace:
            # The last conflict may have been a concurrent allocation for this member.
            existing = self._find_active_for_owner_sync(owner_id, community_id)
            if existing is not None:
                return existing

        logger.error(
            "Gave up allocating a connection code for owner=%s community=%s "
            "after %d attempts",
            owner_id, community_id, self.max_attempts,
        )
        raise CodeAllocationError(self.max_attempts)

    def _retire_active(self, session: Session, owner_id: str, community_id: str) -> int:
        result = session.execute(
            update(MemberConnectionCode)
            .where(
                MemberConnectionCode.owner_id == owner_id,
                MemberConnectionCode.community_id == community_id,
                MemberConnectionCode.is_active.is_(True),
            )
            .values(is_active=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Sync helpers (run via run_db)
    # ------------------------------------------------------------------
    def _deactivate_sync(self, owner_id: str, community_id: str) -> bool:
        with Session(self.engine) as session:
            retired = self._retire_active(session, owner_id, community_id)
            session.commit()
        if retired:
            logger.info(
                "Deactivated connection code for owner=%s community=%s",
                owner_id, community_id,
            )
        return bool(retired)

    def _find_active_sync(self, code: str) -> MemberConnectionCode | None:
        normalized = normalize_code(code)
        if not is_valid_code(normalized):
            return None
        with Session(self.engine) as session:
            row = session.scalar(
                select(MemberConnectionCode).where(
                    MemberConnectionCode.code == normalized,
                    MemberConnectionCode.is_active.is_(True),
                )
            )
            if row is not None:
                session.expunge(row)
            return row

    def _find_active_for_owner_sync(
        self, owner_id: str, community_id: str
    ) -> MemberConnectionCode | None:
        with Session(self.engine) as session:
            row = _active_for_owner(session, owner_id, community_id)
            if row is not None:
                session.expunge(row)
            return row


def _active_for_owner(
    session: Session, owner_id: str, community_id: str
) -> MemberConnectionCode | None:
    return session.scalar(
        select(MemberConnectionCode).where(
            MemberConnectionCode.owner_id == owner_id,
            MemberConnectionCode.community_id == community_id,
            MemberConnectionCode.is_active.is_(True),
        )
    )
