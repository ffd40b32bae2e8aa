"""Health service implementation."""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ... import __version__
from ...config import get_settings
from ..schemas.common import HealthCheckResponse
from .interfaces import IHealthService

if TYPE_CHECKING:
    from ...collaboration.rooms import RoomCoordinator


class HealthService(IHealthService):
    """Health check service implementation."""

    def __init__(self, session: AsyncSession, coordinator: Optional["RoomCoordinator"] = None):
        self.session = session
        self.coordinator = coordinator
        self.settings = get_settings()

    async def get_health_status(self) -> HealthCheckResponse:
        """Get app health status."""
        db_health = await self.check_database_health()
        redis_health = await self.check_redis_health()
        collab_health = await self.check_collaboration_health()

        overall_status = "healthy"
        if not db_health["connected"] or not redis_health["connected"]:
            overall_status = "unhealthy"

        return HealthCheckResponse(
            status=overall_status,
            timestamp=datetime.utcnow(),
            version=__version__,
            checks={
                "database": db_health,
                "redis": redis_health,
                "collaboration": collab_health,
            },
        )

    async def check_database_health(self) -> Dict[str, Any]:
        """Check DB connection."""
        try:
            loop = asyncio.get_running_loop()
            start_time = loop.time()
            result = await self.session.execute(text("SELECT 1"))
            result.scalar()
            response_time = (loop.time() - start_time) * 1000

            return {
                "connected": True,
                "status": "healthy",
                "response_time_ms": round(response_time, 2),
            }
        except Exception as e:
            return {
                "connected": False,
                "status": "unhealthy",
                "error": str(e),
                "response_time_ms": 0.0,
            }

    async def check_redis_health(self) -> Dict[str, Any]:
        """Check Redis connection."""
        try:
            r = redis.from_url(self.settings.redis_url)

            loop = asyncio.get_running_loop()
            start_time = loop.time()
            await r.ping()
            response_time = (loop.time() - start_time) * 1000

            await r.aclose()

            return {
                "connected": True,
                "status": "healthy",
                "response_time_ms": round(response_time, 2),
            }
        except Exception as e:
            return {
                "connected": False,
                "status": "unhealthy",
                "error": str(e),
                "response_time_ms": None,
            }

    async def check_collaboration_health(self) -> Dict[str, Any]:
        """Report relay coordinator counters."""
        if self.coordinator is None:
            return {"status": "disabled"}
        return {"status": "healthy", **self.coordinator.stats()}
