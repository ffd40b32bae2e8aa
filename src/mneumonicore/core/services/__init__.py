"""
Service layer interfaces and implementations.
"""

from .interfaces import IDocumentService, IHealthService

from .document_service import DocumentService
from .health_service import HealthService

__all__ = [
    # Interfaces
    "IDocumentService",
    "IHealthService",

    # Implementations
    "DocumentService",
    "HealthService",
]
