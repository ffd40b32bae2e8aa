"""
Real-time collaboration relay.

Client side: RelaySession keeps one document's presence store in sync with
the room. Server side: CollaborationServer accepts Socket.IO connections and
hands membership and fan-out to RoomCoordinator. The view models in
``views`` render presence snapshots.
"""

from .bridge import CONTENT_UPDATE_EVENT, ERROR_EVENT, EventBridge
from .errors import CollaborationError, OrphanEventError, StaleJoinError, TransportError
from .presence import USER_COLORS, PresenceStore, pick_color
from .rooms import RoomCoordinator, RoomMembership
from .server import CollaborationServer, create_socket_server
from .session import ConnectionStatus, RelaySession, open_relay_session
from .views import CursorIndicator, CursorLayer, ParticipantsPanel

__all__ = [
    # Errors
    "CollaborationError",
    "TransportError",
    "StaleJoinError",
    "OrphanEventError",

    # Presence
    "USER_COLORS",
    "pick_color",
    "PresenceStore",

    # Client
    "ConnectionStatus",
    "RelaySession",
    "open_relay_session",
    "EventBridge",
    "CONTENT_UPDATE_EVENT",
    "ERROR_EVENT",

    # Server
    "RoomCoordinator",
    "RoomMembership",
    "CollaborationServer",
    "create_socket_server",

    # Views
    "CursorIndicator",
    "CursorLayer",
    "ParticipantsPanel",
]
