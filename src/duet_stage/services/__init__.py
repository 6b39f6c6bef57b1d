# src/duet_stage/services/__init__.py
"""Business logic services for the Duet application."""

from .blocking import BlockService
from .conversations import ConversationService
from .friendship import FriendshipService
from .messages import MessageService
from .orchestrator import EventOrchestrator
from .presence import PresenceRegistry

__all__ = [
    "BlockService",
    "ConversationService",
    "FriendshipService",
    "MessageService",
    "EventOrchestrator",
    "PresenceRegistry",
]
