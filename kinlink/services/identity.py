"""
kinlink.services.identity — Caller Identity Providers
======================================================

The service layer never trusts a user id passed in by the caller; it asks an
identity provider on every operation.  Anything with an async
``current_user_id()`` that raises :class:`~kinlink.exceptions.AuthenticationError`
when there is no valid caller will do.
"""

from __future__ import annotations

from typing import Protocol

import jwt
from jwt.exceptions import InvalidTokenError

from kinlink.exceptions import AuthenticationError


class IdentityProvider(Protocol):
    async def current_user_id(self) -> str: ...


class StaticIdentity:
    """A fixed caller.  ``StaticIdentity(None)`` is an anonymous caller."""

    def __init__(self, user_id: str | None) -> None:
        self.user_id = user_id

    async def current_user_id(self) -> str:
        if not self.user_id:
            raise AuthenticationError()
        return self.user_id


class BearerTokenIdentity:
    """Resolve the caller from an ``Authorization: Bearer <jwt>`` header.

    The token must be signed with *secret* and carry the user id in ``sub``.
    """

    def __init__(self, authorization: str | None, secret: str, algorithm: str = "HS256") -> None:
        self.authorization = authorization
        self.secret = secret
        self.algorithm = algorithm

    async def current_user_id(self) -> str:
        if not self.authorization or not self.authorization.startswith("Bearer "):
            raise AuthenticationError("Missing token")
        token = self.authorization.split(" ", 1)[1]
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except InvalidTokenError:
            raise AuthenticationError("Invalid token") from None
        subject = payload.get("sub")
        if not subject:
            raise AuthenticationError("Invalid token")
        return str(subject)
