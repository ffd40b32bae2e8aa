"""Presence store: who else is in the document and where their cursor is."""

import random
from datetime import datetime
from typing import Dict, List, Optional

from ..core.schemas.collaboration import Collaborator, CursorPosition
from .errors import OrphanEventError

# Fixed palette; two sessions may draw the same color.
USER_COLORS = (
    "#FF6B6B", "#4ECDC4", "#45B7D1", "#96CEB4", "#FFEAA7",
    "#DDA0DD", "#98D8C8", "#F7DC6F", "#BB8FCE", "#85C1E9",
)


def pick_color(rng: Optional[random.Random] = None) -> str:
    """Draw one palette color."""
    return (rng or random).choice(USER_COLORS)


class PresenceStore:
    """Collaborators keyed by user id.

    Never holds an entry for the local user. Mutated only by the owning
    relay session's event handlers, so there is no locking.
    """

    def __init__(self, self_user_id: Optional[str] = None):
        self._entries: Dict[str, Collaborator] = {}
        self._self_user_id = self_user_id

    @property
    def self_user_id(self) -> Optional[str]:
        return self._self_user_id

    @self_user_id.setter
    def self_user_id(self, user_id: Optional[str]) -> None:
        self._self_user_id = user_id
        if user_id is not None:
            self._entries.pop(user_id, None)

    def is_self(self, user_id: Optional[str]) -> bool:
        return user_id is not None and user_id == self._self_user_id

    def upsert(self, collaborator: Collaborator) -> bool:
        """Insert or replace an entry. Returns False when it is the local user."""
        if self.is_self(collaborator.user_id):
            return False
        self._entries[collaborator.user_id] = collaborator
        return True

    def remove(self, user_id: str) -> Optional[Collaborator]:
        return self._entries.pop(user_id, None)

    def get(self, user_id: str) -> Optional[Collaborator]:
        return self._entries.get(user_id)

    def apply_cursor(
        self,
        user_id: str,
        cursor: CursorPosition,
        is_typing: bool,
        seen_at: Optional[datetime] = None,
    ) -> Collaborator:
        """Overwrite a known collaborator's cursor and typing flag.

        Raises OrphanEventError for users that were never added through a
        join or roster event; cursor events do not create entries.
        """
        entry = self._entries.get(user_id)
        if entry is None:
            raise OrphanEventError(user_id)
        entry.cursor = cursor
        entry.is_typing = is_typing
        entry.last_seen = seen_at or datetime.utcnow()
        return entry

    def snapshot(self) -> List[Collaborator]:
        """Copies of all entries, safe to hand to the view layer."""
        return [entry.model_copy(deep=True) for entry in self._entries.values()]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries
