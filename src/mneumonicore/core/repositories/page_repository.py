"""Page repository for database operations."""

from typing import Optional
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.page import Page


class PageRepository:
    """Read access to pages for the collaboration layer."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, page_id: UUID) -> Optional[Page]:
        """Get page by ID regardless of workspace."""
        stmt = select(Page).where(Page.id == page_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id_and_workspace(self, page_id: UUID, workspace_id: UUID) -> Optional[Page]:
        """Get page by ID if it lives in the given workspace."""
        stmt = select(Page).where(and_(Page.id == page_id, Page.workspace_id == workspace_id))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
