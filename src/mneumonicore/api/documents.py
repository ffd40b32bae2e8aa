"""Document lookup API endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db_session
from ..core.services import DocumentService
from ..core.schemas.common import ErrorResponse
from ..core.schemas.documents import DocumentResponse
from ..middleware.auth import get_current_user_id

router = APIRouter(prefix="/workspaces", tags=["documents"])


@router.get(
    "/{workspace_id}/documents/{document_id}",
    response_model=DocumentResponse,
    response_model_by_alias=True,
    responses={404: {"model": ErrorResponse}},
)
async def get_document(
    workspace_id: str,
    document_id: str,
    current_user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """Get a page, but only from the workspace it belongs to."""
    document_service = DocumentService(session)
    return await document_service.get_document(document_id, workspace_id)
