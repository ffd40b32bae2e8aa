"""Document service implementation."""

from typing import Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.page import Page
from ..repositories.page_repository import PageRepository
from ..schemas.documents import DocumentResponse
from .interfaces import IDocumentService


def parse_uuid(value: str) -> Optional[UUID]:
    """Parse an opaque id, None when it is not a UUID."""
    try:
        return UUID(str(value))
    except (ValueError, TypeError):
        return None


class DocumentService(IDocumentService):
    """Document service implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.page_repo = PageRepository(session)

    async def get_document(self, document_id: str, workspace_id: str) -> DocumentResponse:
        """Get page by ID within a workspace.

        A page that exists in another workspace is reported as 404 as well,
        so callers cannot probe other workspaces.
        """
        page_uuid = parse_uuid(document_id)
        workspace_uuid = parse_uuid(workspace_id)
        page = None
        if page_uuid and workspace_uuid:
            page = await self.page_repo.get_by_id_and_workspace(page_uuid, workspace_uuid)

        if not page:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Document not found in this workspace",
            )

        return DocumentResponse(
            id=page.id,
            title=page.title,
            content=page.content,
            workspace_id=page.workspace_id,
            updated_at=page.updated_at,
        )

    async def find_document(self, document_id: str) -> Optional[Page]:
        """Find a page in any workspace."""
        page_uuid = parse_uuid(document_id)
        if page_uuid is None:
            return None
        return await self.page_repo.get_by_id(page_uuid)
