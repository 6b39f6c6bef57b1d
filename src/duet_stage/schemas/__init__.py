# src/duet_stage/schemas/__init__.py
"""
Pydantic schemas for inbound events and outbound payloads.

Inbound frames are parsed into typed events; outbound payloads serialize with
camelCase keys.
"""

from .events import Event, parse_event
from .payloads import (
    ConversationPayload,
    FriendRequestPayload,
    MessageHistoryPayload,
    MessagePayload,
    ReplyPreview,
    UserPayload,
)

__all__ = [
    "Event", "parse_event",
    "ConversationPayload",
    "FriendRequestPayload",
    "MessageHistoryPayload",
    "MessagePayload",
    "ReplyPreview",
    "UserPayload",
]
