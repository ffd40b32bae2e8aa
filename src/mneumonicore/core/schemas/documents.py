"""
Document lookup schemas.

Pages are edited elsewhere; the collaboration layer only needs to know
which workspace a page belongs to before a session starts.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DocumentResponse(BaseModel):
    """Page as seen by the collaboration layer."""

    id: UUID
    title: str
    content: str
    workspace_id: UUID = Field(alias="workspaceId")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
