"""
Socket.IO front end of the collaboration relay.

Translates socket events into RoomCoordinator calls. Handshake metadata
(``userId``, ``workspaceId``, ``documentId`` query parameters and an optional
bearer token in ``auth``) is kept in the Socket.IO session; room joins are
separate ``join-collab-room`` messages.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import parse_qs

import socketio
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..core.schemas.collaboration import (
    CollabErrorEvent,
    CollabUpdateRequest,
    CursorMoveRequest,
    JoinRoomRequest,
    LeaveRoomRequest,
)
from ..security.jwt import decode_access_token
from .errors import StaleJoinError
from .events import COLLAB_ERROR, COLLAB_UPDATE, CURSOR_MOVE, JOIN_ROOM, LEAVE_ROOM
from .rooms import RoomCoordinator

logger = logging.getLogger(__name__)

DocumentFinder = Callable[[str], Awaitable[Optional[Any]]]
TokenVerifier = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


async def find_document_in_db(document_id: str):
    """Look a page up in its own short-lived DB session."""
    from ..core.services.document_service import DocumentService
    from ..database import AsyncSessionLocal

    async with AsyncSessionLocal() as session:
        return await DocumentService(session).find_document(document_id)


def create_socket_server(settings: Settings) -> socketio.AsyncServer:
    """Socket.IO server in ASGI mode; pings detect dead transports."""
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=settings.cors_origins,
        ping_interval=settings.collab_ping_interval,
        ping_timeout=settings.collab_ping_timeout,
        logger=False,
        engineio_logger=False,
    )


def _first(query: Dict[str, list], *names: str) -> Optional[str]:
    for name in names:
        values = query.get(name)
        if values and values[0]:
            return values[0]
    return None


class CollaborationServer:
    """Owns the Socket.IO server and the room coordinator behind it."""

    def __init__(
        self,
        sio: Optional[socketio.AsyncServer] = None,
        settings: Optional[Settings] = None,
        find_document: Optional[DocumentFinder] = None,
        verify_token: Optional[TokenVerifier] = None,
    ):
        self.settings = settings or get_settings()
        self.sio = sio or create_socket_server(self.settings)
        self.coordinator = RoomCoordinator(self.sio.emit)
        self.find_document = find_document or find_document_in_db
        self.verify_token = verify_token or decode_access_token
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on(JOIN_ROOM, self.on_join)
        self.sio.on(LEAVE_ROOM, self.on_leave)
        self.sio.on(CURSOR_MOVE, self.on_cursor_move)
        self.sio.on(COLLAB_UPDATE, self.on_collab_update)

    def asgi_app(self, other_asgi_app=None) -> socketio.ASGIApp:
        """Wrap an HTTP app so both share one ASGI entry point."""
        return socketio.ASGIApp(
            self.sio,
            other_asgi_app=other_asgi_app,
            socketio_path=self.settings.collab_socketio_path,
        )

    async def on_connect(self, sid: str, environ: Dict[str, Any], auth: Any = None) -> bool:
        """Accept a handshake carrying an identity, reject it otherwise."""
        query = parse_qs(environ.get("QUERY_STRING", ""))
        identity = {
            "user_id": _first(query, "userId"),
            "workspace_id": _first(query, "workspaceId"),
            "document_id": _first(query, "documentId", "pageId"),
            "username": None,
            "authenticated": False,
        }

        token = auth.get("token") if isinstance(auth, dict) else None
        if token:
            payload = await self.verify_token(token)
            if not payload or not payload.get("sub"):
                logger.warning(f"Socket {sid} rejected: invalid token")
                return False
            identity.update(
                user_id=str(payload["sub"]),
                username=payload.get("username"),
                authenticated=True,
            )
        elif self.settings.collab_require_auth:
            logger.warning(f"Socket {sid} rejected: no token")
            return False

        if not identity["user_id"]:
            logger.warning(f"Socket {sid} rejected: no user id in handshake")
            return False

        await self.sio.save_session(sid, identity)
        logger.info(
            f"Socket {sid} connected for user {identity['user_id']}",
            extra={"sid": sid, "workspace_id": identity["workspace_id"]},
        )
        return True

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        """Transport gone: leave every room so nobody keeps stale presence."""
        removed = await self.coordinator.leave(sid)
        logger.info(
            f"Socket {sid} disconnected, left {len(removed)} room(s)",
            extra={"sid": sid, "reason": str(reason) if reason is not None else None},
        )

    async def on_join(self, sid: str, data: Any) -> Optional[Dict[str, Any]]:
        try:
            request = JoinRoomRequest.model_validate(data or {})
        except ValidationError as e:
            await self._reject(sid, "ValidationError", str(e))
            return None

        session = await self.sio.get_session(sid)
        user_id = request.user_id
        username = request.username
        if session.get("authenticated"):
            if user_id != session["user_id"]:
                logger.warning(
                    f"Socket {sid} tried to join as {user_id}, using token identity instead"
                )
            user_id = session["user_id"]
            username = session.get("username") or username

        try:
            await self._check_document(request.document_id, request.workspace_id)
        except StaleJoinError as e:
            logger.warning(str(e), extra={"sid": sid})
            await self._reject(
                sid, "StaleJoinError", str(e), request.document_id, request.workspace_id
            )
            return None

        roster = await self.coordinator.join(
            document_id=request.document_id,
            workspace_id=request.workspace_id,
            user_id=user_id,
            username=username,
            connection_id=sid,
        )
        return {"status": "joined", "users": len(roster)}

    async def on_leave(self, sid: str, data: Any) -> None:
        try:
            request = LeaveRoomRequest.model_validate(data or {})
        except ValidationError as e:
            await self._reject(sid, "ValidationError", str(e))
            return
        await self.coordinator.leave(sid, request.document_id)

    async def on_cursor_move(self, sid: str, data: Any) -> None:
        try:
            request = CursorMoveRequest.model_validate(data or {})
        except ValidationError as e:
            await self._reject(sid, "ValidationError", str(e))
            return
        await self.coordinator.cursor_move(
            sid, request.document_id, request.cursor, request.is_typing
        )

    async def on_collab_update(self, sid: str, data: Any) -> None:
        try:
            request = CollabUpdateRequest.model_validate(data or {})
        except ValidationError as e:
            await self._reject(sid, "ValidationError", str(e))
            return
        await self.coordinator.collab_update(
            sid, request.document_id, request.type, request.data, request.timestamp
        )

    async def _check_document(self, document_id: str, workspace_id: str) -> None:
        """Raise StaleJoinError when the page exists in another workspace.

        Unknown pages are fine (an empty room is created). A failing lookup is
        logged and the join goes ahead.
        """
        if not self.settings.collab_validate_documents:
            return
        try:
            page = await self.find_document(document_id)
        except Exception as e:
            logger.error(f"Document lookup failed for {document_id}: {e}")
            return
        if page is None:
            return
        actual = str(page.workspace_id)
        if actual != workspace_id:
            raise StaleJoinError(document_id, workspace_id, actual)

    async def _reject(
        self,
        sid: str,
        error: str,
        message: str,
        document_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> None:
        event = CollabErrorEvent(
            error=error, message=message, document_id=document_id, workspace_id=workspace_id
        )
        try:
            await self.sio.emit(COLLAB_ERROR, event.to_wire(), to=sid)
        except Exception as e:
            logger.error(f"Failed to send collab-error to {sid}: {e}")
