"""API routers for Mneumonicore."""

from .auth import router as auth_router
from .collaboration import router as collaboration_router
from .documents import router as documents_router
from .health import router as health_router

__all__ = ["auth_router", "collaboration_router", "documents_router", "health_router"]
