# Page model - a rich-text document collaborators edit together
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel
from .types import GUID

if TYPE_CHECKING:
    from .workspace import Workspace


class Page(BaseModel):
    """Page with its serialized editor content."""

    __tablename__ = "pages"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    workspace_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )

    workspace: Mapped["Workspace"] = relationship(
        "Workspace",
        back_populates="pages",
        doc="Workspace the page belongs to"
    )

    __table_args__ = (
        Index("ix_pages_workspace_id", "workspace_id"),
    )
