"""
Service interfaces for Mneumonicore.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..models.page import Page
from ..schemas.common import HealthCheckResponse
from ..schemas.documents import DocumentResponse


class IDocumentService(ABC):
    """Document lookups used before and during collaboration."""

    @abstractmethod
    async def get_document(self, document_id: str, workspace_id: str) -> DocumentResponse:
        """Get a page that must belong to the given workspace."""
        pass

    @abstractmethod
    async def find_document(self, document_id: str) -> Optional[Page]:
        """Find a page by id in any workspace, None when unknown."""
        pass


class IHealthService(ABC):
    """Health check service."""

    @abstractmethod
    async def get_health_status(self) -> HealthCheckResponse:
        """Get application health status."""
        pass

    @abstractmethod
    async def check_database_health(self) -> Dict[str, Any]:
        """Check database connectivity."""
        pass

    @abstractmethod
    async def check_redis_health(self) -> Dict[str, Any]:
        """Check Redis connectivity."""
        pass

    @abstractmethod
    async def check_collaboration_health(self) -> Dict[str, Any]:
        """Report relay coordinator state."""
        pass
