"""
Pydantic schemas for validating and documenting API and socket payloads.

This package exposes the models used for the real-time relay contract,
document lookups and common responses (errors and health).
"""

from .collaboration import (
    ActiveUsersResponse,
    CollabErrorEvent,
    CollabUpdateBroadcast,
    CollabUpdateRequest,
    Collaborator,
    CursorMoveBroadcast,
    CursorMoveRequest,
    CursorPosition,
    JoinRoomRequest,
    LeaveRoomRequest,
    MembershipNotice,
    RoomStatsResponse,
    RosterEntry,
    Selection,
)
from .common import ErrorResponse, HealthCheckResponse
from .documents import DocumentResponse

__all__ = [
    # Collaboration schemas
    "Selection",
    "CursorPosition",
    "Collaborator",
    "JoinRoomRequest",
    "LeaveRoomRequest",
    "CursorMoveRequest",
    "CollabUpdateRequest",
    "RosterEntry",
    "MembershipNotice",
    "CursorMoveBroadcast",
    "CollabUpdateBroadcast",
    "CollabErrorEvent",
    "ActiveUsersResponse",
    "RoomStatsResponse",
    # Document schemas
    "DocumentResponse",
    # Common schemas
    "ErrorResponse",
    "HealthCheckResponse",
]
