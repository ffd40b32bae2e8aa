"""
Room coordination for the collaboration relay.

A room is one (document, workspace) pair. The coordinator tracks which
connections sit in which rooms and fans events out to every member except
the sender. It does not know about Socket.IO: it is handed an ``emit``
coroutine with the ``AsyncServer.emit(event, data, to=sid)`` signature.

Every membership change or fan-out for a room runs under that room's
``asyncio.Lock``, so two broadcasts for the same room never interleave.
Rooms do not share locks.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..core.schemas.collaboration import (
    CollabUpdateBroadcast,
    CursorMoveBroadcast,
    CursorPosition,
    MembershipNotice,
    RosterEntry,
    UpdateType,
)
from .events import COLLAB_UPDATE, CURRENT_USERS, CURSOR_MOVE, USER_JOINED, USER_LEFT

logger = logging.getLogger(__name__)

RoomKey = Tuple[str, str]
Emitter = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class RoomMembership:
    """One connection's presence in one room."""

    document_id: str
    workspace_id: str
    user_id: str
    connection_id: str
    username: Optional[str] = None
    joined_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def room_key(self) -> RoomKey:
        return (self.document_id, self.workspace_id)

    def notice(self) -> Dict[str, Any]:
        return MembershipNotice(
            user_id=self.user_id, socket_id=self.connection_id, username=self.username
        ).to_wire()


def dedupe_roster(memberships, exclude_user_id: Optional[str] = None) -> List[RosterEntry]:
    """One entry per user, in join order."""
    seen = set()
    roster = []
    for membership in memberships:
        if membership.user_id == exclude_user_id or membership.user_id in seen:
            continue
        seen.add(membership.user_id)
        roster.append(RosterEntry(user_id=membership.user_id, username=membership.username))
    return roster


class RoomCoordinator:
    """Membership registry and fan-out for all rooms of one server process."""

    def __init__(self, emit: Emitter):
        self._emit = emit
        # room -> connection id -> membership
        self._rooms: Dict[RoomKey, Dict[str, RoomMembership]] = {}
        # connection id -> document id -> room; one room per (connection, document)
        self._connections: Dict[str, Dict[str, RoomKey]] = {}
        # Locks vanish once no coroutine holds or waits on them
        self._locks: "weakref.WeakValueDictionary[RoomKey, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: RoomKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _send(self, event: str, data: Any, connection_id: str) -> bool:
        try:
            await self._emit(event, data, to=connection_id)
            return True
        except Exception as e:
            # one broken socket must not stop the rest of the fan-out
            logger.error(
                f"Failed to deliver {event} to {connection_id}: {e}",
                extra={"event": event, "sid": connection_id},
            )
            return False

    async def _broadcast_locked(
        self, room: Dict[str, RoomMembership], event: str, data: Any, skip: str
    ) -> int:
        recipients = [sid for sid in room if sid != skip]
        for sid in recipients:
            await self._send(event, data, sid)
        return len(recipients)

    def membership(self, connection_id: str, document_id: str) -> Optional[RoomMembership]:
        """Membership of a connection for a document, if any."""
        key = self._connections.get(connection_id, {}).get(document_id)
        if key is None:
            return None
        return self._rooms.get(key, {}).get(connection_id)

    async def join(
        self,
        document_id: str,
        workspace_id: str,
        user_id: str,
        username: Optional[str],
        connection_id: str,
    ) -> List[RosterEntry]:
        """Register a membership, reply with the roster, announce the joiner.

        Unknown rooms are created on the fly. Joining again from the same
        connection replaces the membership; joining the same document under
        another workspace moves it.
        """
        key: RoomKey = (document_id, workspace_id)

        previous = self._connections.get(connection_id, {}).get(document_id)
        if previous is not None and previous != key:
            await self._leave_room(connection_id, document_id)

        async with self._lock_for(key):
            room = self._rooms.setdefault(key, {})
            membership = RoomMembership(
                document_id=document_id,
                workspace_id=workspace_id,
                user_id=user_id,
                connection_id=connection_id,
                username=username,
            )
            room[connection_id] = membership
            self._connections.setdefault(connection_id, {})[document_id] = key

            others = [m for sid, m in room.items() if sid != connection_id]
            roster = dedupe_roster(others, exclude_user_id=user_id)

            await self._send(CURRENT_USERS, [entry.to_wire() for entry in roster], connection_id)
            notified = await self._broadcast_locked(
                room, USER_JOINED, membership.notice(), skip=connection_id
            )

        logger.info(
            f"User {user_id} joined room {document_id}",
            extra={
                "document_id": document_id,
                "workspace_id": workspace_id,
                "sid": connection_id,
                "roster_size": len(roster),
                "notified": notified,
            },
        )
        return roster

    async def leave(
        self, connection_id: str, document_id: Optional[str] = None
    ) -> List[RoomMembership]:
        """Drop one membership, or all of a connection's memberships on disconnect."""
        if document_id is not None:
            documents = [document_id]
        else:
            documents = list(self._connections.get(connection_id, {}))

        removed = []
        for doc_id in documents:
            membership = await self._leave_room(connection_id, doc_id)
            if membership is not None:
                removed.append(membership)
        return removed

    async def _leave_room(self, connection_id: str, document_id: str) -> Optional[RoomMembership]:
        key = self._connections.get(connection_id, {}).get(document_id)
        if key is None:
            return None

        async with self._lock_for(key):
            rooms_of_connection = self._connections.get(connection_id, {})
            if rooms_of_connection.get(document_id) == key:
                del rooms_of_connection[document_id]
                if not rooms_of_connection:
                    self._connections.pop(connection_id, None)

            room = self._rooms.get(key)
            membership = room.pop(connection_id, None) if room is not None else None
            if membership is None:
                return None

            if room:
                await self._broadcast_locked(
                    room, USER_LEFT, membership.notice(), skip=connection_id
                )
            else:
                del self._rooms[key]

        logger.info(
            f"User {membership.user_id} left room {document_id}",
            extra={"document_id": document_id, "workspace_id": key[1], "sid": connection_id},
        )
        return membership

    async def cursor_move(
        self,
        connection_id: str,
        document_id: str,
        cursor: CursorPosition,
        is_typing: bool,
    ) -> int:
        """Fan a cursor update out to the sender's room. Returns recipient count."""
        membership = self.membership(connection_id, document_id)
        if membership is None:
            logger.debug(
                f"Dropping cursor-move from {connection_id}: not in room {document_id}"
            )
            return 0

        payload = CursorMoveBroadcast(
            user_id=membership.user_id,
            username=membership.username,
            cursor=cursor,
            is_typing=is_typing,
        ).to_wire()
        return await self._fan_out(membership, CURSOR_MOVE, payload)

    async def collab_update(
        self,
        connection_id: str,
        document_id: str,
        update_type: UpdateType,
        data: Any,
        timestamp: datetime,
    ) -> int:
        """Fan an opaque update out to the sender's room. Returns recipient count."""
        membership = self.membership(connection_id, document_id)
        if membership is None:
            logger.debug(
                f"Dropping collab-update from {connection_id}: not in room {document_id}"
            )
            return 0

        payload = CollabUpdateBroadcast(
            type=update_type,
            page_id=document_id,
            document_id=document_id,
            user_id=membership.user_id,
            data=data,
            timestamp=timestamp,
        ).to_wire()
        return await self._fan_out(membership, COLLAB_UPDATE, payload)

    async def _fan_out(self, membership: RoomMembership, event: str, payload: Any) -> int:
        key = membership.room_key
        async with self._lock_for(key):
            room = self._rooms.get(key)
            # sender may have left while we waited for the lock
            if not room or membership.connection_id not in room:
                return 0
            return await self._broadcast_locked(
                room, event, payload, skip=membership.connection_id
            )

    def active_users(self, document_id: str, workspace_id: str) -> List[RosterEntry]:
        """Current occupants of a room, one entry per user."""
        room = self._rooms.get((document_id, workspace_id), {})
        return dedupe_roster(room.values())

    def stats(self) -> Dict[str, int]:
        return {
            "rooms": len(self._rooms),
            "memberships": sum(len(room) for room in self._rooms.values()),
            "connections": len(self._connections),
        }
