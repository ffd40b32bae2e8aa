"""
View models for remote cursors and the participants panel.

Pure presentation: these read presence snapshots and never touch the
network or the presence store.
"""

import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel

from ..config import get_settings
from ..core.schemas.collaboration import Collaborator


def _initial(name: str) -> str:
    return name[:1].upper() if name else "?"


class CursorView(BaseModel):
    """What a visible remote cursor shows."""

    user_id: str
    username: str
    initial: str
    color: str
    x: float
    y: float
    avatar: Optional[str] = None
    selection_label: Optional[str] = None


class CursorIndicator:
    """Visibility of one collaborator's cursor.

    Shown as soon as an update says the user is typing, hidden again
    ``grace_seconds`` after the last typing update or right away on a
    not-typing update. Only a new typing signal (a newer ``last_seen``)
    re-arms the timer, so re-syncing an unchanged snapshot does not keep
    a stale cursor on screen. The grace timer runs
    independently of the relay's own typing auto-clear.
    """

    def __init__(self, collaborator: Collaborator, grace_seconds: Optional[float] = None):
        if grace_seconds is None:
            grace_seconds = get_settings().collab_cursor_visibility_seconds
        self.grace_seconds = grace_seconds
        self._collaborator = collaborator
        self._visible = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._signal_at: Optional[datetime] = None
        self.update(collaborator)

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def user_id(self) -> str:
        return self._collaborator.user_id

    def update(self, collaborator: Collaborator) -> None:
        self._collaborator = collaborator
        if not collaborator.is_typing:
            self._cancel_timer()
            self._visible = False
            self._signal_at = None
            return
        # same snapshot seen again: the grace period keeps running
        if collaborator.last_seen == self._signal_at:
            return
        self._signal_at = collaborator.last_seen
        self._cancel_timer()
        self._visible = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # outside a loop there is nothing to schedule on; stays visible
            return
        self._timer = loop.call_later(self.grace_seconds, self._hide)

    def _hide(self) -> None:
        self._visible = False
        self._timer = None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        self._cancel_timer()
        self._visible = False

    def render(self) -> Optional[CursorView]:
        if not self._visible:
            return None
        user = self._collaborator
        selection = user.cursor.selection
        return CursorView(
            user_id=user.user_id,
            username=user.username,
            initial=_initial(user.username),
            color=user.color,
            x=user.cursor.x,
            y=user.cursor.y,
            avatar=user.avatar,
            selection_label=f"Selected {selection.length} characters" if selection else None,
        )


class CursorLayer:
    """One indicator per collaborator, kept in step with presence snapshots."""

    def __init__(self, grace_seconds: Optional[float] = None):
        self.grace_seconds = grace_seconds
        self._indicators: Dict[str, CursorIndicator] = {}

    def sync(self, collaborators: Iterable[Collaborator]) -> List[CursorView]:
        """Apply a snapshot and return the cursors currently visible."""
        seen = set()
        for collaborator in collaborators:
            seen.add(collaborator.user_id)
            indicator = self._indicators.get(collaborator.user_id)
            if indicator is None:
                self._indicators[collaborator.user_id] = CursorIndicator(
                    collaborator, self.grace_seconds
                )
            else:
                indicator.update(collaborator)

        for user_id in list(self._indicators):
            if user_id not in seen:
                self._indicators.pop(user_id).close()

        return self.render()

    def render(self) -> List[CursorView]:
        views = (indicator.render() for indicator in self._indicators.values())
        return [view for view in views if view is not None]

    def close(self) -> None:
        for indicator in self._indicators.values():
            indicator.close()
        self._indicators.clear()


class ParticipantRow(BaseModel):
    user_id: Optional[str] = None
    label: str
    initial: str
    color: str
    badge: str
    is_self: bool = False
    is_typing: bool = False
    avatar: Optional[str] = None


class ParticipantsView(BaseModel):
    title: str
    participants: List[ParticipantRow]


class ParticipantsPanel:
    """Self plus every known collaborator; nothing while editing alone."""

    def render(self, session) -> Optional[ParticipantsView]:
        users = session.get_active_users()
        if not users:
            return None

        rows = [
            ParticipantRow(
                label="You",
                initial="You",
                color=session.get_user_color(),
                badge="Editing",
                is_self=True,
            )
        ]
        for user in users:
            rows.append(ParticipantRow(
                user_id=user.user_id,
                label=user.username,
                initial=_initial(user.username),
                color=user.color,
                badge="Typing..." if user.is_typing else "Active",
                is_typing=user.is_typing,
                avatar=user.avatar,
            ))

        return ParticipantsView(title=f"Collaborating ({len(users) + 1})", participants=rows)
