# src/duet_stage/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .blocked import router as blocked_router
from .conversations import router as conversations_router
from .friends import router as friends_router
from .realtime import router as realtime_router
from .users import router as users_router

__all__ = [
    "blocked_router",
    "conversations_router",
    "friends_router",
    "realtime_router",
    "users_router",
]
