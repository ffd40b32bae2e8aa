"""Collaboration error taxonomy.

Once a relay session is open none of these escape it: the session turns them
into a status change or a dropped event, the server turns them into a
``collab-error`` event for the offending socket. Only ``open_relay_session``
raises StaleJoinError, before any transport exists.
"""

from typing import Optional


class CollaborationError(Exception):
    """Base class for relay errors."""


class TransportError(CollaborationError):
    """Handshake or connect failure."""


class StaleJoinError(CollaborationError):
    """Join for a document that lives in a different workspace."""

    def __init__(
        self,
        document_id: str,
        workspace_id: str,
        actual_workspace_id: Optional[str] = None,
    ):
        self.document_id = document_id
        self.workspace_id = workspace_id
        self.actual_workspace_id = actual_workspace_id
        super().__init__(
            f"Document {document_id} does not belong to workspace {workspace_id}"
        )


class OrphanEventError(CollaborationError):
    """Presence event for a user that never joined."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No collaborator registered for user {user_id}")
