"""
kinlink.services.membership_guard — Community Membership Checks
================================================================

Read-only view over the ``community_memberships`` relation.

Membership is checked at redemption time, not when a code is issued: people
join and leave communities after their codes were handed out.
"""

from __future__ import annotations

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from kinlink.database.engine import run_db
from kinlink.database.models import CommunityMembership


class MembershipGuard:
    """Answers "does this user belong to this community?"."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    async def is_member(self, user_id: str, community_id: str) -> bool:
        return await run_db(self._is_member_sync, user_id, community_id)

    async def list_memberships(
        self, community_id: str | None = None
    ) -> list[tuple[str, str]]:
        """Return ``(user_id, community_id)`` pairs, optionally for one community."""
        return await run_db(self._list_memberships_sync, community_id)

    def _is_member_sync(self, user_id: str, community_id: str) -> bool:
        with Session(self.engine) as session:
            return session.get(CommunityMembership, (user_id, community_id)) is not None

    def _list_memberships_sync(self, community_id: str | None) -> list[tuple[str, str]]:
        query = select(CommunityMembership.user_id, CommunityMembership.community_id)
        if community_id is not None:
            query = query.where(CommunityMembership.community_id == community_id)
        query = query.order_by(CommunityMembership.community_id, CommunityMembership.joined_at)
        with Session(self.engine) as session:
            return [(row.user_id, row.community_id) for row in session.execute(query)]
