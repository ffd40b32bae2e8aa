"""
Client-side relay session for one open document.

A ``RelaySession`` is created when a document is opened and torn down when it
is closed; there is no process-wide instance. All inbound socket events go
through one queue and are applied by a single pump task, so the presence
store is only ever touched from that task (and from ``disconnect``).

Nothing in the public API raises: transport failures become an ``error``
status, malformed or orphan events are logged and dropped.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Union
from urllib.parse import urlencode

import socketio
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..core.schemas.collaboration import (
    CollabErrorEvent,
    CollabUpdateBroadcast,
    CollabUpdateRequest,
    Collaborator,
    CursorMoveBroadcast,
    CursorMoveRequest,
    CursorPosition,
    JoinRoomRequest,
    MembershipNotice,
    RosterEntry,
)
from .bridge import CONTENT_UPDATE_EVENT, ERROR_EVENT, EventBridge
from .errors import OrphanEventError, StaleJoinError, TransportError
from .events import (
    COLLAB_ERROR,
    COLLAB_UPDATE,
    CURRENT_USERS,
    CURSOR_MOVE,
    JOIN_ROOM,
    USER_JOINED,
    USER_LEFT,
)
from .presence import PresenceStore, pick_color

logger = logging.getLogger(__name__)

INBOUND_EVENTS = (CURRENT_USERS, USER_JOINED, USER_LEFT, CURSOR_MOVE, COLLAB_UPDATE, COLLAB_ERROR)

UNKNOWN_USERNAME = "Unknown User"


class ConnectionStatus(str, Enum):
    """Connection states reported to the status callback."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


StatusCallback = Callable[[ConnectionStatus], None]
DocumentLookup = Callable[[str, str], Awaitable[Optional[Any]]]


def default_client_factory() -> socketio.AsyncClient:
    # Reconnecting is the caller's decision, never automatic
    return socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)


class RelaySession:
    """One client's live connection to one document's collaboration room."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        server_url: Optional[str] = None,
        bridge: Optional[EventBridge] = None,
        client_factory: Optional[Callable[[], Any]] = None,
        rng=None,
    ):
        self.settings = settings or get_settings()
        self.server_url = server_url or self.settings.collab_server_url
        self.bridge = bridge or EventBridge()
        self._client_factory = client_factory or default_client_factory
        self._rng = rng
        self._color = pick_color(rng)

        self._store = PresenceStore()
        self._client = None
        self._status = ConnectionStatus.DISCONNECTED
        self._status_callback: Optional[StatusCallback] = None
        self._closing = False
        self._last_error: Optional[TransportError] = None

        self.document_id: Optional[str] = None
        self.workspace_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.username: Optional[str] = None

        self._inbox: Optional[asyncio.Queue] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._timers: Set[asyncio.Task] = set()

        self._handlers: Dict[str, Callable[[Any], None]] = {
            CURRENT_USERS: self._handle_current_users,
            USER_JOINED: self._handle_user_joined,
            USER_LEFT: self._handle_user_left,
            CURSOR_MOVE: self._handle_cursor_move,
            COLLAB_UPDATE: self._handle_collab_update,
            COLLAB_ERROR: self._handle_collab_error,
        }

    async def __aenter__(self) -> "RelaySession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None or self._status != ConnectionStatus.DISCONNECTED:
            await self.disconnect()

    # status

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def last_error(self) -> Optional[TransportError]:
        """Why the last connect attempt failed, if it did."""
        return self._last_error

    def set_status_callback(self, callback: Optional[StatusCallback]) -> None:
        """Register the single status observer (replaces any previous one)."""
        self._status_callback = callback

    def _set_status(self, status: ConnectionStatus, force: bool = False) -> None:
        if status == self._status and not force:
            return
        self._status = status
        if self._status_callback is None:
            return
        try:
            self._status_callback(status)
        except Exception:
            logger.exception(f"Status callback failed for {status.value}")

    # lifecycle

    async def connect(
        self,
        document_id: str,
        workspace_id: str,
        user_id: str,
        username: str,
        token: Optional[str] = None,
    ) -> None:
        """Open the transport and join the document's room.

        Listeners are registered before the handshake, and the join is sent
        from the connect handler, so no early fan-out is missed. Calling this
        while connecting or connected is a no-op.
        """
        if self._status in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            logger.warning(
                f"connect() ignored, session for {self.document_id} is {self._status.value}"
            )
            return

        if self._client is not None or self._pump_task is not None:
            # left over from a dropped transport
            self._closing = True
            try:
                await self._release()
            finally:
                self._closing = False

        self.document_id = document_id
        self.workspace_id = workspace_id
        self.user_id = user_id
        self.username = username
        self._last_error = None
        self._store.self_user_id = user_id

        self._inbox = asyncio.Queue()
        self._pump_task = asyncio.create_task(self._pump())

        client = self._client_factory()
        self._client = client
        self._register_handlers(client)
        self._set_status(ConnectionStatus.CONNECTING)

        try:
            await client.connect(
                self._connect_url(),
                auth={"token": token} if token else None,
                transports=self.settings.collab_transports,
                socketio_path=self.settings.collab_socketio_path,
                wait_timeout=self.settings.collab_connect_timeout,
            )
        except Exception as e:
            self._last_error = TransportError(str(e))
            logger.error(
                f"Collaboration connect failed: {e}",
                extra={"document_id": document_id, "server_url": self.server_url},
            )
            await self._release()
            self._set_status(ConnectionStatus.ERROR)

    async def reconnect(self, token: Optional[str] = None) -> None:
        """Tear down and join again with the same identity (fresh roster)."""
        identity = (self.document_id, self.workspace_id, self.user_id, self.username)
        if None in identity:
            logger.warning("reconnect() ignored, session was never connected")
            return
        await self.disconnect()
        await self.connect(*identity, token=token)

    async def disconnect(self) -> None:
        """Release the transport, forget all presence, report ``disconnected``."""
        self._closing = True
        try:
            await self._release()
        finally:
            self._closing = False

        self._store.clear()
        self._store.self_user_id = None
        self.document_id = None
        self.workspace_id = None
        self.user_id = None
        self.username = None
        self._set_status(ConnectionStatus.DISCONNECTED, force=True)

    async def _release(self) -> None:
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()

        client, self._client = self._client, None
        if client is not None:
            try:
                await client.disconnect()
            except Exception as e:
                logger.warning(f"Error while closing collaboration transport: {e}")

        pump, self._pump_task = self._pump_task, None
        if pump is not None:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
        self._inbox = None

    def _connect_url(self) -> str:
        query = urlencode({
            "userId": self.user_id,
            "workspaceId": self.workspace_id,
            "documentId": self.document_id,
        })
        separator = "&" if "?" in self.server_url else "?"
        return f"{self.server_url}{separator}{query}"

    # transport callbacks

    def _register_handlers(self, client) -> None:
        client.on("connect", self._on_connect)
        client.on("connect_error", self._on_connect_error)
        client.on("disconnect", self._on_transport_disconnect)
        for event in INBOUND_EVENTS:
            client.on(event, self._enqueuer(event))

    def _enqueuer(self, event: str) -> Callable[..., None]:
        def enqueue(payload: Any = None) -> None:
            if self._inbox is not None:
                self._inbox.put_nowait((event, payload))
        return enqueue

    async def _on_connect(self) -> None:
        join = JoinRoomRequest(
            document_id=self.document_id,
            workspace_id=self.workspace_id,
            user_id=self.user_id,
            username=self.username,
        )
        await self._emit(JOIN_ROOM, join.to_wire())
        self._set_status(ConnectionStatus.CONNECTED)

    def _on_connect_error(self, data: Any = None) -> None:
        self._last_error = TransportError(str(data))
        self._set_status(ConnectionStatus.ERROR)

    def _on_transport_disconnect(self, reason: Any = None) -> None:
        if self._closing or self._status != ConnectionStatus.CONNECTED:
            return
        # Server or network dropped us; presence is stale from here on
        logger.warning(
            f"Collaboration transport lost for {self.document_id}",
            extra={"reason": str(reason) if reason is not None else None},
        )
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()
        self._store.clear()
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def _emit(self, event: str, payload: Dict[str, Any]) -> bool:
        client = self._client
        if client is None:
            return False
        try:
            await client.emit(event, payload)
            return True
        except Exception as e:
            logger.error(f"Failed to emit {event}: {e}", extra={"document_id": self.document_id})
            return False

    # outbound

    async def update_cursor(
        self, cursor: Union[CursorPosition, Dict[str, Any]], is_typing: bool = False
    ) -> None:
        """Broadcast the local cursor.

        A typing update schedules a ``isTyping=False`` update with the same
        cursor after ``collab_typing_clear_seconds``. Earlier schedules are
        not cancelled; they all send the same "stopped typing" state.
        """
        if self._client is None or self.document_id is None:
            return
        try:
            position = CursorPosition.model_validate(cursor)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid cursor {cursor!r}: {e}")
            return

        await self._emit(CURSOR_MOVE, self._cursor_payload(position, is_typing))
        if is_typing:
            self._schedule(self._clear_typing_later(position))

    def _cursor_payload(self, cursor: CursorPosition, is_typing: bool) -> Dict[str, Any]:
        return CursorMoveRequest(
            document_id=self.document_id, cursor=cursor, is_typing=is_typing
        ).to_wire()

    async def _clear_typing_later(self, cursor: CursorPosition) -> None:
        await asyncio.sleep(self.settings.collab_typing_clear_seconds)
        if self.document_id is None:
            return
        await self._emit(CURSOR_MOVE, self._cursor_payload(cursor, False))

    def _schedule(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    async def send_update(self, update_type: str, data: Any) -> None:
        """Fire-and-forget a ``content`` or ``selection`` update."""
        if self._client is None or self.document_id is None:
            return
        try:
            request = CollabUpdateRequest(
                type=update_type,
                document_id=self.document_id,
                data=data,
                timestamp=datetime.utcnow(),
            )
        except ValidationError as e:
            logger.warning(f"Ignoring update of type {update_type!r}: {e}")
            return
        await self._emit(COLLAB_UPDATE, request.to_wire())

    # presence reads

    def get_active_users(self) -> List[Collaborator]:
        """Snapshot of every known collaborator (never the local user)."""
        return self._store.snapshot()

    def get_user_color(self) -> str:
        return self._color

    # inbound

    async def _pump(self) -> None:
        inbox = self._inbox
        while True:
            event, payload = await inbox.get()
            try:
                self.dispatch(event, payload)
            except Exception:
                logger.exception(f"Failed to apply {event}")
            finally:
                inbox.task_done()

    async def drain(self) -> None:
        """Wait until every queued inbound event has been applied."""
        inbox = self._inbox
        if inbox is not None:
            await inbox.join()

    def dispatch(self, event: str, payload: Any) -> None:
        """Apply one inbound event to the presence store."""
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"No handler for inbound event {event}")
            return
        handler(payload)

    def _add_collaborator(self, user_id: str, username: Optional[str]) -> None:
        if self._store.is_self(user_id):
            return
        existing = self._store.get(user_id)
        color = existing.color if existing else pick_color(self._rng)
        self._store.upsert(Collaborator(
            user_id=user_id,
            username=username or UNKNOWN_USERNAME,
            color=color,
        ))

    def _handle_current_users(self, payload: Any) -> None:
        if not isinstance(payload, list):
            logger.warning(f"Ignoring malformed roster: {payload!r}")
            return
        for item in payload:
            try:
                entry = RosterEntry.model_validate(item)
            except ValidationError:
                logger.warning(f"Skipping malformed roster entry: {item!r}")
                continue
            self._add_collaborator(entry.user_id, entry.username)

    def _handle_user_joined(self, payload: Any) -> None:
        try:
            notice = MembershipNotice.model_validate(payload)
        except ValidationError:
            logger.warning(f"Ignoring malformed user-joined: {payload!r}")
            return
        self._add_collaborator(notice.user_id, notice.username)

    def _handle_user_left(self, payload: Any) -> None:
        try:
            notice = MembershipNotice.model_validate(payload)
        except ValidationError:
            logger.warning(f"Ignoring malformed user-left: {payload!r}")
            return
        self._store.remove(notice.user_id)

    def _handle_cursor_move(self, payload: Any) -> None:
        try:
            move = CursorMoveBroadcast.model_validate(payload)
        except ValidationError:
            logger.warning(f"Ignoring malformed cursor-move: {payload!r}")
            return
        if self._store.is_self(move.user_id):
            return
        try:
            self._store.apply_cursor(move.user_id, move.cursor, move.is_typing)
        except OrphanEventError as e:
            logger.debug(f"Dropping cursor-move: {e}")

    def _handle_collab_update(self, payload: Any) -> None:
        try:
            update = CollabUpdateBroadcast.model_validate(payload)
        except ValidationError:
            logger.warning(f"Ignoring malformed collab-update: {payload!r}")
            return
        # selection updates arrive but have no consumer
        if update.type != "content":
            return
        self.bridge.publish(CONTENT_UPDATE_EVENT, update)

    def _handle_collab_error(self, payload: Any) -> None:
        try:
            error = CollabErrorEvent.model_validate(payload)
        except ValidationError:
            logger.warning(f"Ignoring malformed collab-error: {payload!r}")
            return
        logger.warning(f"Relay rejected request: {error.error}: {error.message}")
        self.bridge.publish(ERROR_EVENT, error)


@asynccontextmanager
async def open_relay_session(
    document_id: str,
    workspace_id: str,
    user_id: str,
    username: str,
    *,
    token: Optional[str] = None,
    lookup: Optional[DocumentLookup] = None,
    **session_kwargs,
) -> AsyncIterator[RelaySession]:
    """Scope a relay session to a block: connect on enter, disconnect on exit.

    With ``lookup`` the document is checked first; a document that belongs to
    another workspace raises StaleJoinError before any transport is opened.
    """
    if lookup is not None:
        document = await lookup(document_id, workspace_id)
        if document is not None and str(document.workspace_id) != workspace_id:
            raise StaleJoinError(document_id, workspace_id, str(document.workspace_id))

    async with RelaySession(**session_kwargs) as session:
        await session.connect(document_id, workspace_id, user_id, username, token=token)
        yield session
