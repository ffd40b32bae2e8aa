# Main application entry point
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import auth_router, collaboration_router, documents_router, health_router
from .collaboration import CollaborationServer
from .config import get_settings
from .core.logging import LoggingMiddleware, get_logger, setup_logging
from .core.redis_client import get_redis_client
from .database import create_tables

# Setup logging first
setup_logging()
logger = get_logger("main")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(
        "Starting Mneumonicore relay",
        extra={"version": __version__, "environment": settings.environment, "debug": settings.debug},
    )

    # Redis only backs the token blacklist; the relay works without it
    redis_client = get_redis_client()
    try:
        await redis_client.connect()
        logger.info("Redis connection established")
    except Exception as e:
        logger.warning(f"Redis connection failed: {e}. Continuing without Redis...")

    if os.getenv("MNEUMONICORE_SKIP_LIFESPAN_DB") == "1":
        logger.info("Skipping DB table creation due to MNEUMONICORE_SKIP_LIFESPAN_DB=1")
    else:
        try:
            await create_tables()
            logger.info("Database tables created/verified")
        except Exception as e:
            logger.error("Failed to create database tables", exc_info=e)
            raise

    yield

    logger.info("Shutting down Mneumonicore relay", extra=app.state.collaboration.coordinator.stats())
    try:
        await redis_client.disconnect()
        logger.info("Redis connection closed")
    except Exception as e:
        logger.warning(f"Redis disconnect failed: {e}")


app = FastAPI(
    title=settings.app_name,
    description="Presence and update relay for collaborative document editing",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/api")
app.include_router(collaboration_router, prefix="/api")
app.include_router(documents_router, prefix="/api")
app.include_router(health_router, prefix="/api")

# Socket.IO shares the process (and the coordinator) with the REST routes
collaboration = CollaborationServer(settings=settings)
app.state.collaboration = collaboration

# Serve this one: Socket.IO traffic under /socket.io, everything else to FastAPI
asgi_app = collaboration.asgi_app(app)


@app.get("/")
async def root():
    return {"message": "Mneumonicore API"}


@app.get("/api/")
async def api_root():
    return {
        "message": "Mneumonicore API",
        "version": __version__,
        "documentation": {
            "swagger_ui": "/docs",
            "redoc": "/redoc",
            "openapi_json": "/openapi.json"
        },
        "endpoints": {
            "auth": "/api/auth/",
            "collaboration": "/api/collaboration/",
            "documents": "/api/workspaces/{workspace_id}/documents/{document_id}",
            "health": "/api/health/",
            "socketio": f"/{settings.collab_socketio_path}/",
        }
    }


# Basic unprefixed health endpoint
@app.get("/health")
async def basic_health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("mneumonicore.main:asgi_app", host=settings.host, port=settings.port, reload=settings.reload)
