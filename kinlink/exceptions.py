"""
kinlink.exceptions — Typed Errors
==================================

Only *caller bugs* and *fatal conditions* are exceptions.  Malformed codes,
unknown codes and policy conflicts during redemption are expected traffic and
are reported as :class:`~kinlink.engine.outcomes.RedeemOutcome` values instead.

Messages on authorization and state errors are deliberately generic so an
unauthorized caller learns nothing about the request they poked at.
"""

from __future__ import annotations


class KinlinkError(Exception):
    """Base exception for all Kinlink errors."""


class AuthenticationError(KinlinkError):
    """Raised when the identity provider cannot resolve a caller."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class PermissionDeniedError(KinlinkError):
    """Raised when a caller acts on a request they do not own.

    Also used for unknown request ids, so existence is not revealed.
    """

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id
        super().__init__("Not permitted")


class RequestStateError(KinlinkError):
    """Raised when a connection request is not in a state that allows the transition."""

    def __init__(self, request_id: str, status: str | None = None):
        self.request_id = request_id
        self.status = status
        super().__init__("Request cannot be updated")


class RequestExpiredError(RequestStateError):
    """Raised when a pending request is acted on after its ``expires_at``."""


class CodeAllocationError(KinlinkError):
    """Raised when no unique connection code could be allocated.

    Terminal: the retry budget is already spent, callers must not loop on it.
    """

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Unable to allocate a unique connection code after {attempts} attempts"
        )
