"""Collaboration relay API endpoints."""

from fastapi import APIRouter, Depends, Query, Request

from ..collaboration.rooms import RoomCoordinator
from ..core.schemas.collaboration import ActiveUsersResponse, RoomStatsResponse
from ..middleware.auth import get_current_user_id

router = APIRouter(prefix="/collaboration", tags=["collaboration"])


def get_coordinator(request: Request) -> RoomCoordinator:
    """Room coordinator of the running collaboration server."""
    return request.app.state.collaboration.coordinator


@router.get("/active-users", response_model=ActiveUsersResponse, response_model_by_alias=True)
async def active_users(
    document_id: str = Query(..., min_length=1),
    workspace_id: str = Query(..., min_length=1),
    current_user_id: str = Depends(get_current_user_id),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    """Who is in a document's room right now."""
    users = coordinator.active_users(document_id, workspace_id)
    return ActiveUsersResponse(
        document_id=document_id,
        workspace_id=workspace_id,
        users=users,
        count=len(users),
    )


@router.get("/stats", response_model=RoomStatsResponse)
async def room_stats(coordinator: RoomCoordinator = Depends(get_coordinator)):
    """Room, membership and connection counters."""
    return RoomStatsResponse(**coordinator.stats())
