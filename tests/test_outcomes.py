"""
tests/test_outcomes.py — Redemption Outcome Values
====================================================
"""

from __future__ import annotations

import pytest

from kinlink.engine.outcomes import RedeemOutcome, RedeemResult


class TestRedeemResult:
    @pytest.mark.parametrize(
        "result, succeeded",
        [
            (RedeemResult.invalid_code(), False),
            (RedeemResult.code_not_found(), False),
            (RedeemResult.self_connection_rejected("c"), False),
            (RedeemResult.membership_required("c"), False),
            (RedeemResult.previously_rejected("c"), False),
            (RedeemResult.already_pending("r", "c"), True),
            (RedeemResult.already_connected("c"), True),
            (RedeemResult.request_created("r", "c"), True),
        ],
    )
    def test_success_flag(self, result, succeeded):
        assert result.succeeded is succeeded

    def test_every_outcome_has_a_message(self):
        for outcome in RedeemOutcome:
            assert RedeemResult(outcome).message

    def test_to_dict(self):
        assert RedeemResult.request_created("r-1", "c-1").to_dict() == {
            "outcome": "request-created",
            "success": True,
            "request_id": "r-1",
            "community_id": "c-1",
            "message": "Connection request created successfully",
        }

    def test_membership_required_carries_community(self):
        result = RedeemResult.membership_required("c-9")
        assert result.community_id == "c-9"
        assert result.request_id is None
        assert result.message == "You must join this community before connecting"

    def test_outcome_values_are_stable(self):
        assert [o.value for o in RedeemOutcome] == [
            "invalid-code",
            "code-not-found",
            "self-connection-rejected",
            "membership-required",
            "already-pending",
            "already-connected",
            "previously-rejected",
            "request-created",
        ]
