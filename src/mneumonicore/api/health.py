"""Health check API endpoints."""

from typing import Dict, Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db_session
from ..core.services import HealthService
from ..core.schemas.common import HealthCheckResponse

router = APIRouter(prefix="/health", tags=["health"])


def get_health_service(
    request: Request, session: AsyncSession = Depends(get_db_session)
) -> HealthService:
    collaboration = getattr(request.app.state, "collaboration", None)
    coordinator = collaboration.coordinator if collaboration is not None else None
    return HealthService(session, coordinator)


@router.get("/", response_model=HealthCheckResponse)
async def health_check(health_service: HealthService = Depends(get_health_service)):
    """Get overall system health status."""
    return await health_service.get_health_status()


@router.get("/database", response_model=Dict[str, Any])
async def database_health(health_service: HealthService = Depends(get_health_service)):
    """Check database connectivity."""
    return await health_service.check_database_health()


@router.get("/redis", response_model=Dict[str, Any])
async def redis_health(health_service: HealthService = Depends(get_health_service)):
    """Check Redis connectivity."""
    return await health_service.check_redis_health()


@router.get("/collaboration", response_model=Dict[str, Any])
async def collaboration_health(health_service: HealthService = Depends(get_health_service)):
    """Relay room counters."""
    return await health_service.check_collaboration_health()
