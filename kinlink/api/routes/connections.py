"""
kinlink.api.routes.connections — Connection code & request endpoints
=====================================================================

All endpoints except ``GET /codes/{code}`` act on behalf of the bearer-token
caller.  Redemption failures are normal traffic and come back as 200 with
the outcome in the body; caller bugs map to 4xx in :mod:`kinlink.api.main`.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel

from kinlink.api.deps import get_connection_service
from kinlink.database.models import ConnectionRequest, MemberConnectionCode, UserConnection
from kinlink.services.connection_service import ConnectionService

router = APIRouter(prefix="/connections", tags=["connections"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RedeemBody(BaseModel):
    code: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _code_dict(row: MemberConnectionCode) -> dict:
    return {
        "code": row.code,
        "community_id": row.community_id,
        "is_active": row.is_active,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _request_dict(row: ConnectionRequest) -> dict:
    return {
        "id": row.id,
        "community_id": row.community_id,
        "requester_id": row.requester_id,
        "status": row.status,
        "created_at": _iso(row.created_at),
        "expires_at": _iso(row.expires_at),
    }


def _connection_dict(row: UserConnection, viewer_id: str | None = None) -> dict:
    data = {
        "id": row.id,
        "user_a_id": row.user_a_id,
        "user_b_id": row.user_b_id,
        "community_id": row.community_id,
        "created_at": _iso(row.created_at),
    }
    if viewer_id is not None:
        data["other_user_id"] = row.other_party(viewer_id)
    return data


# ---------------------------------------------------------------------------
# Codes
# ---------------------------------------------------------------------------
@router.get("/communities/{community_id}/code")
async def get_my_code(
    community_id: str, service: ConnectionService = Depends(get_connection_service)
):
    """The caller's active code for a community, created on first request."""
    return _code_dict(await service.get_or_create_code(community_id))


@router.post("/communities/{community_id}/code/regenerate", status_code=201)
async def regenerate_my_code(
    community_id: str, service: ConnectionService = Depends(get_connection_service)
):
    return _code_dict(await service.regenerate_code(community_id))


@router.delete("/communities/{community_id}/code")
async def deactivate_my_code(
    community_id: str, service: ConnectionService = Depends(get_connection_service)
):
    return {"deactivated": await service.deactivate_code(community_id)}


@router.get("/codes/{code}")
async def get_code_details(
    code: str, service: ConnectionService = Depends(get_connection_service)
):
    """Public lookup so a landing page can show whose code this is."""
    row = await service.fetch_code_details(code)
    if row is None:
        raise HTTPException(404, "Connection code not found")
    return {
        "code": row.code,
        "owner_id": row.owner_id,
        "community_id": row.community_id,
        "created_at": _iso(row.created_at),
    }


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
@router.post("/redeem")
async def redeem_code(
    body: RedeemBody, service: ConnectionService = Depends(get_connection_service)
):
    result = await service.redeem_code(body.code)
    return result.to_dict()


@router.get("/requests/pending")
async def list_pending_requests(
    community_id: str | None = Query(default=None),
    service: ConnectionService = Depends(get_connection_service),
):
    rows = await service.list_pending_requests(community_id)
    return [_request_dict(r) for r in rows]


@router.post("/requests/{request_id}/approve")
async def approve_request(
    request_id: str, service: ConnectionService = Depends(get_connection_service)
):
    connection = await service.approve_request(request_id)
    return {"connection_id": connection.id, **_connection_dict(connection)}


@router.post("/requests/{request_id}/reject", status_code=204)
async def reject_request(
    request_id: str, service: ConnectionService = Depends(get_connection_service)
):
    await service.reject_request(request_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------
@router.get("/communities/{community_id}")
async def list_connections(
    community_id: str, service: ConnectionService = Depends(get_connection_service)
):
    viewer_id = await service.identity.current_user_id()
    rows = await service.list_connections(community_id)
    return [_connection_dict(r, viewer_id) for r in rows]
