"""
Database models for Mneumonicore.

Only the models the collaboration layer reads are mapped here:
    - Workspace: scope of pages and collaboration rooms
    - Page: the document a collaboration room is opened for
"""

from .base import BaseModel
from .page import Page
from .workspace import Workspace

__all__ = [
    "BaseModel",
    "Workspace",
    "Page",
]
