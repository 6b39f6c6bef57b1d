# src/duet_stage/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    blocked_router,
    conversations_router,
    friends_router,
    realtime_router,
    users_router,
)

__all__ = [
    "blocked_router",
    "conversations_router",
    "friends_router",
    "realtime_router",
    "users_router",
]
