# src/duet_stage/main.py
"""Main entry point for the Duet application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from duet_stage.api.v1 import (
    blocked_router,
    conversations_router,
    friends_router,
    realtime_router,
    users_router,
)
from duet_stage.core.settings import settings
from duet_stage.db.session import create_tables
from duet_stage.services.expiry_sweeper import ExpiredMessageSweeper
from duet_stage.services.orchestrator import EventOrchestrator
from duet_stage.services.presence import PresenceRegistry
from duet_stage.services.push import LoggingPushNotifier

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Duet API",
    description="Real-time friendships and one-to-one messaging",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(friends_router, prefix="/api/v1")
app.include_router(conversations_router, prefix="/api/v1")
app.include_router(users_router, prefix="/api/v1")
app.include_router(blocked_router, prefix="/api/v1")
app.include_router(realtime_router, prefix="/api/v1")

# One registry per process, owned by the connection lifecycle in the WebSocket endpoint.
app.state.presence = PresenceRegistry()
app.state.orchestrator = EventOrchestrator(
    app.state.presence,
    push_notifier=LoggingPushNotifier(),
)
app.state.expiry_sweeper = None


@app.on_event("startup")
async def on_startup() -> None:
    create_tables()
    if settings.expired_sweep_enabled:
        sweeper = ExpiredMessageSweeper()
        await sweeper.start()
        app.state.expiry_sweeper = sweeper
    logger.info("%s %s started", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: ExpiredMessageSweeper | None = getattr(app.state, "expiry_sweeper", None)
    if sweeper:
        await sweeper.stop()
        app.state.expiry_sweeper = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Real-time friendships and one-to-one messaging",
        "websocket": "/api/v1/ws",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("duet_stage.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
