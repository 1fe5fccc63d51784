"""
kinlink.services.backfill_service — Connection Code Backfill
=============================================================

One-shot utility that gives every existing community member an active
connection code.  Members who joined before codes existed (or whose code was
deactivated) get a fresh one; members who already hold an active code are
left untouched, so the backfill is safe to re-run.
"""

from __future__ import annotations

import logging

from kinlink.services.code_registry import CodeRegistry
from kinlink.services.membership_guard import MembershipGuard

logger = logging.getLogger(__name__)


async def backfill_member_codes(
    registry: CodeRegistry,
    membership: MembershipGuard,
    *,
    community_id: str | None = None,
    dry_run: bool = False,
) -> dict:
    """Allocate an active code for each membership that lacks one.

    Args:
        registry: Code registry to allocate through.
        membership: Source of (user, community) memberships.
        community_id: Restrict the backfill to one community.
        dry_run: If True, count but don't write.

    Returns:
        ``{"memberships": N, "already_active": M, "created": K, "dry_run": bool}``
    """
    pairs = await membership.list_memberships(community_id)
    already_active = 0
    created = 0

    for user_id, member_community_id in pairs:
        existing = await registry.find_active_for_owner(user_id, member_community_id)
        if existing is not None:
            already_active += 1
            continue
        if not dry_run:
            await registry.get_or_create_active_code(user_id, member_community_id)
        created += 1

    logger.info(
        "Code backfill%s: %d membership(s), %d already active, %d %s",
        " (dry run)" if dry_run else "",
        len(pairs), already_active, created,
        "would be created" if dry_run else "created",
    )
    return {
        "memberships": len(pairs),
        "already_active": already_active,
        "created": created,
        "dry_run": dry_run,
    }
