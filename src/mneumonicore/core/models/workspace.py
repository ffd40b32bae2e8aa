# Workspace model - the scope every page and collaboration room lives in
from typing import List, TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel

if TYPE_CHECKING:
    from .page import Page


class Workspace(BaseModel):
    """Workspace grouping pages."""

    __tablename__ = "workspaces"

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    pages: Mapped[List["Page"]] = relationship(
        "Page",
        back_populates="workspace",
        cascade="all, delete-orphan",
        doc="Pages stored in this workspace"
    )
