"""
Real-time collaboration schemas.

These models are the wire contract of the Socket.IO relay. Attributes are
snake_case in Python and camelCase on the wire; inbound payloads are accepted
in either form.
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    model_serializer,
    model_validator,
)

UpdateType = Literal["content", "cursor", "selection"]

# Clients only ever send these two through collab-update
ClientUpdateType = Literal["content", "selection"]


class WireModel(BaseModel):
    """Base for relay payloads."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, JSON-safe values."""
        return self.model_dump(by_alias=True, mode="json")


class Selection(WireModel):
    """Character-offset selection inside a document."""

    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @model_validator(mode="after")
    def check_order(self) -> "Selection":
        if self.end < self.start:
            raise ValueError("Selection end must not be before start")
        return self

    @property
    def length(self) -> int:
        return self.end - self.start


class CursorPosition(WireModel):
    """Screen-space pointer position with an optional text selection."""

    x: float = 0.0
    y: float = 0.0
    selection: Optional[Selection] = None

    @model_serializer(mode="wrap")
    def _drop_empty_selection(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        # "no selection" is an absent key on the wire, never null
        data = handler(self)
        if data.get("selection") is None:
            data.pop("selection", None)
        return data


class Collaborator(WireModel):
    """Presence record of a remote user."""

    user_id: str = Field(alias="userId")
    username: str
    avatar: Optional[str] = None
    color: str
    cursor: CursorPosition = Field(default_factory=CursorPosition)
    is_typing: bool = Field(default=False, alias="isTyping")
    last_seen: datetime = Field(default_factory=datetime.utcnow, alias="lastSeen")


# Client -> server

class JoinRoomRequest(WireModel):
    """join-collab-room payload."""

    document_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("documentId", "pageId", "document_id"),
        serialization_alias="documentId",
    )
    workspace_id: str = Field(min_length=1, alias="workspaceId")
    user_id: str = Field(min_length=1, alias="userId")
    username: Optional[str] = None


class LeaveRoomRequest(WireModel):
    """leave-collab-room payload."""

    document_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("documentId", "pageId", "document_id"),
        serialization_alias="documentId",
    )


class CursorMoveRequest(WireModel):
    """cursor-move payload sent by a client."""

    document_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("documentId", "pageId", "document_id"),
        serialization_alias="documentId",
    )
    cursor: CursorPosition
    is_typing: bool = Field(default=False, alias="isTyping")


class CollabUpdateRequest(WireModel):
    """collab-update payload sent by a client. ``data`` is opaque."""

    type: ClientUpdateType
    document_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("documentId", "pageId", "document_id"),
        serialization_alias="documentId",
    )
    data: Any = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# Server -> client

class RosterEntry(WireModel):
    """One occupant in a current-users reply."""

    user_id: str = Field(alias="userId")
    username: Optional[str] = None


class MembershipNotice(WireModel):
    """user-joined / user-left payload."""

    user_id: str = Field(alias="userId")
    socket_id: str = Field(alias="socketId")
    username: Optional[str] = None


class CursorMoveBroadcast(WireModel):
    """cursor-move fan-out payload."""

    user_id: str = Field(alias="userId")
    username: Optional[str] = None
    cursor: CursorPosition
    is_typing: bool = Field(default=False, alias="isTyping")


class CollabUpdateBroadcast(WireModel):
    """collab-update fan-out payload (the Collaboration Update envelope)."""

    type: UpdateType
    page_id: str = Field(alias="pageId")
    document_id: str = Field(alias="documentId")
    user_id: str = Field(alias="userId")
    data: Any = None
    timestamp: datetime


class CollabErrorEvent(WireModel):
    """collab-error payload, sent to the offending socket only."""

    error: str
    message: str
    document_id: Optional[str] = Field(default=None, alias="documentId")
    workspace_id: Optional[str] = Field(default=None, alias="workspaceId")


# REST views

class ActiveUsersResponse(WireModel):
    """Occupants of one room."""

    document_id: str = Field(alias="documentId")
    workspace_id: str = Field(alias="workspaceId")
    users: List[RosterEntry] = Field(default_factory=list)
    count: int = 0


class RoomStatsResponse(BaseModel):
    """Coordinator counters."""

    rooms: int
    memberships: int
    connections: int
