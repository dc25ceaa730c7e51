"""
FastAPI Application Entry Point.
Initializes the FastAPI app with middleware, CORS, error handlers and routes.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from redis.exceptions import RedisError

from chatcore.config import settings
from chatcore.core.cache import cache
from chatcore.core.database import AsyncSessionLocal, engine
from chatcore.core.exceptions import CacheUnavailable, ChatCoreError
from chatcore.core.websocket import connection_manager

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    await cache.connect()
    yield
    # Shutdown
    await cache.disconnect()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title="chatcore",
    description="Message delivery and caching backend for encrypted direct, group and channel messaging",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)


@app.exception_handler(ChatCoreError)
async def chatcore_error_handler(request: Request, exc: ChatCoreError):
    """Map domain errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc.cause)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


# CORS Middleware
# WebSocket CORS is handled by Socket.IO itself (cors_allowed_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health Check Endpoints
@app.get("/health", tags=["Health"])
async def health_check():
    """Basic health check endpoint."""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "environment": settings.environment,
        }
    )


@app.get("/health/ready", tags=["Health"])
async def readiness_check():
    """
    Readiness check endpoint.
    Verifies database and cache connectivity.
    """
    checks = {"database": False, "redis": False}

    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            checks["database"] = True
    except SQLAlchemyError as e:
        logger.warning(f"Readiness: database check failed: {e}")

    try:
        checks["redis"] = bool(await cache.client.ping())
    except (CacheUnavailable, RedisError) as e:
        logger.warning(f"Readiness: Redis check failed: {e}")

    # The service degrades to the durable store without Redis, so only the database gates readiness
    ready = checks["database"]
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not ready",
            "checks": checks,
        }
    )


@app.get("/health/websocket", tags=["Health"])
async def websocket_health_check():
    """WebSocket session counts for debugging."""
    return {
        "status": "configured",
        "websocket_endpoint": "/socket.io/",
        "active_connections": len(connection_manager.connections),
        "active_users": len(connection_manager.user_sessions),
        "heartbeat_interval": settings.ws_heartbeat_interval,
    }


# Include API routers
from chatcore.api.v1 import messages  # noqa: E402

app.include_router(
    messages.router,
    prefix="/api/v1/messages",
    tags=["Messages"]
)

# Save reference to FastAPI app (for testing)
fastapi_app = app

# Socket.IO wraps FastAPI: /socket.io/* goes to Socket.IO, everything else to FastAPI
app = connection_manager.get_asgi_app(fastapi_app)
