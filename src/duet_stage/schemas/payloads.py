# src/duet_stage/schemas/payloads.py
"""Outbound payload schemas shared by the WebSocket events and REST responses."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from duet_stage.models.friend_request import FriendRequestStatus
from duet_stage.models.message import DeliveryStatus, MessageType


class OutboundModel(BaseModel):
    """Base for payloads; serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        """Return the JSON-ready camelCase representation."""
        return self.model_dump(by_alias=True, mode="json")


class UserPayload(OutboundModel):
    """Public view of a user."""

    id: int
    username: str
    tag: str
    handle: str
    profile_picture_url: str | None = None


class FriendRequestPayload(OutboundModel):
    """A friend request with both parties resolved."""

    id: int
    status: FriendRequestStatus
    sender: UserPayload
    receiver: UserPayload
    created_at: datetime
    responded_at: datetime | None = None


class ReplyPreview(OutboundModel):
    """Shortened view of the message being replied to."""

    id: int
    content: str
    sender_username: str
    message_type: MessageType


class MessagePayload(OutboundModel):
    """A message as seen by one viewer."""

    id: int
    conversation_id: int
    sender_id: int
    sender_username: str
    content: str
    message_type: MessageType
    media_url: str | None = None
    media_duration: int | None = None
    delivery_status: DeliveryStatus
    expires_at: datetime | None = None
    created_at: datetime
    reply_to_message_id: int | None = None
    reply_to: ReplyPreview | None = None
    reactions: dict[str, list[int]] = Field(default_factory=dict)
    temp_id: str | None = None


class ConversationPayload(OutboundModel):
    """A conversation summarized for one participant."""

    id: int
    other_user: UserPayload
    last_message: MessagePayload | None = None
    unread_count: int = 0
    disappearing_timer_seconds: int | None = None
    created_at: datetime


class MessageHistoryPayload(OutboundModel):
    """A page of messages, oldest first."""

    conversation_id: int
    messages: list[MessagePayload]
