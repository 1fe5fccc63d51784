"""
kinlink.engine.outcomes — Redemption Outcomes
===============================================

Every call to ``redeem`` ends in exactly one :class:`RedeemOutcome`.  Callers
branch on the enum, never on message text; the human-readable message is
derived from the outcome so it cannot drift out of sync with it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

__all__ = ["RedeemOutcome", "RedeemResult"]


class RedeemOutcome(enum.StrEnum):
    """All terminal states of a code redemption, in check order."""
    INVALID_CODE = "invalid-code"
    CODE_NOT_FOUND = "code-not-found"
    SELF_CONNECTION_REJECTED = "self-connection-rejected"
    MEMBERSHIP_REQUIRED = "membership-required"
    ALREADY_PENDING = "already-pending"
    ALREADY_CONNECTED = "already-connected"
    PREVIOUSLY_REJECTED = "previously-rejected"
    REQUEST_CREATED = "request-created"


# Idempotent outcomes count as success so impatient retries are harmless.
_SUCCESS = frozenset({
    RedeemOutcome.REQUEST_CREATED,
    RedeemOutcome.ALREADY_PENDING,
    RedeemOutcome.ALREADY_CONNECTED,
})

_MESSAGES: dict[RedeemOutcome, str] = {
    RedeemOutcome.INVALID_CODE: "Invalid connection code format",
    RedeemOutcome.CODE_NOT_FOUND: "Connection code not found or inactive",
    RedeemOutcome.SELF_CONNECTION_REJECTED: "You cannot connect with yourself",
    RedeemOutcome.MEMBERSHIP_REQUIRED: "You must join this community before connecting",
    RedeemOutcome.ALREADY_PENDING: "Connection request already pending",
    RedeemOutcome.ALREADY_CONNECTED: "Connection already established",
    RedeemOutcome.PREVIOUSLY_REJECTED: "Connection request was previously rejected",
    RedeemOutcome.REQUEST_CREATED: "Connection request created successfully",
}


@dataclass(frozen=True, slots=True)
class RedeemResult:
    """Outcome of a redemption plus the context the caller needs to act on it.

    ``request_id`` is set for ``request-created`` and ``already-pending``;
    ``community_id`` is set once the code has resolved to a community.
    """

    outcome: RedeemOutcome
    request_id: str | None = None
    community_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in _SUCCESS

    @property
    def message(self) -> str:
        return _MESSAGES[self.outcome]

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "success": self.succeeded,
            "request_id": self.request_id,
            "community_id": self.community_id,
            "message": self.message,
        }

    # -- Constructors, one per outcome ------------------------------------

    @classmethod
    def invalid_code(cls) -> RedeemResult:
        return cls(RedeemOutcome.INVALID_CODE)

    @classmethod
    def code_not_found(cls) -> RedeemResult:
        return cls(RedeemOutcome.CODE_NOT_FOUND)

    @classmethod
    def self_connection_rejected(cls, community_id: str) -> RedeemResult:
        return cls(RedeemOutcome.SELF_CONNECTION_REJECTED, community_id=community_id)

    @classmethod
    def membership_required(cls, community_id: str) -> RedeemResult:
        return cls(RedeemOutcome.MEMBERSHIP_REQUIRED, community_id=community_id)

    @classmethod
    def already_pending(cls, request_id: str, community_id: str) -> RedeemResult:
        return cls(RedeemOutcome.ALREADY_PENDING, request_id, community_id)

    @classmethod
    def already_connected(cls, community_id: str) -> RedeemResult:
        return cls(RedeemOutcome.ALREADY_CONNECTED, community_id=community_id)

    @classmethod
    def previously_rejected(cls, community_id: str) -> RedeemResult:
        return cls(RedeemOutcome.PREVIOUSLY_REJECTED, community_id=community_id)

    @classmethod
    def request_created(cls, request_id: str, community_id: str) -> RedeemResult:
        return cls(RedeemOutcome.REQUEST_CREATED, request_id, community_id)
