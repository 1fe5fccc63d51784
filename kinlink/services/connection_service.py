"""
kinlink.services.connection_service — Caller-Facing Connection API
===================================================================

One object per caller context.  Wires the code registry, membership guard,
connection store and request workflow to a shared engine, and resolves the
acting user through the identity provider on **every** call so that user ids
are never taken from request payloads.

Usage::

    service = ConnectionService(engine, StaticIdentity("user-a"))
    code = await service.get_or_create_code("community-1")

    other = ConnectionService(engine, StaticIdentity("user-b"))
    result = await other.redeem_code(code.code)
    if result.outcome is RedeemOutcome.REQUEST_CREATED:
        await service.approve_request(result.request_id)
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import Engine

from kinlink.config import KinlinkConfig
from kinlink.database.models import ConnectionRequest, MemberConnectionCode, UserConnection
from kinlink.engine.codes import generate_code
from kinlink.engine.outcomes import RedeemResult
from kinlink.services.code_registry import CodeRegistry
from kinlink.services.connection_store import ConnectionStore
from kinlink.services.connection_workflow import ConnectionRequestWorkflow
from kinlink.services.identity import IdentityProvider
from kinlink.services.membership_guard import MembershipGuard


class ConnectionService:
    """Facade over the connection components for the current caller."""

    def __init__(
        self,
        engine: Engine,
        identity: IdentityProvider,
        *,
        config: KinlinkConfig | None = None,
        generator: Callable[[], str] = generate_code,
    ) -> None:
        config = config or KinlinkConfig()
        self.identity = identity
        self.codes = CodeRegistry(
            engine, generator=generator, max_attempts=config.max_code_attempts
        )
        self.membership = MembershipGuard(engine)
        self.connections = ConnectionStore(engine)
        self.workflow = ConnectionRequestWorkflow(
            engine,
            codes=self.codes,
            membership=self.membership,
            connections=self.connections,
            request_ttl=config.request_ttl,
        )

    # --- Codes -------------------------------------------------------------
    async def get_or_create_code(self, community_id: str) -> MemberConnectionCode:
        user_id = await self.identity.current_user_id()
        return await self.codes.get_or_create_active_code(user_id, community_id)

    async def regenerate_code(self, community_id: str) -> MemberConnectionCode:
        user_id = await self.identity.current_user_id()
        return await self.codes.regenerate(user_id, community_id)

    async def deactivate_code(self, community_id: str) -> bool:
        user_id = await self.identity.current_user_id()
        return await self.codes.deactivate(user_id, community_id)

    async def fetch_code_details(self, raw_code: str) -> MemberConnectionCode | None:
        """Public lookup of an active code; no caller identity required."""
        return await self.codes.find_active(raw_code)

    # --- Requests ----------------------------------------------------------
    async def redeem_code(self, raw_code: str | None) -> RedeemResult:
        user_id = await self.identity.current_user_id()
        return await self.workflow.redeem(user_id, raw_code)

    async def approve_request(self, request_id: str) -> UserConnection:
        user_id = await self.identity.current_user_id()
        return await self.workflow.approve(request_id, user_id)

    async def reject_request(self, request_id: str) -> None:
        user_id = await self.identity.current_user_id()
        await self.workflow.reject(request_id, user_id)

    async def list_pending_requests(
        self, community_id: str | None = None
    ) -> list[ConnectionRequest]:
        user_id = await self.identity.current_user_id()
        return await self.workflow.list_pending_for_initiator(user_id, community_id)

    # --- Connections -------------------------------------------------------
    async def list_connections(self, community_id: str) -> list[UserConnection]:
        user_id = await self.identity.current_user_id()
        return await self.connections.list_for_user(user_id, community_id)
