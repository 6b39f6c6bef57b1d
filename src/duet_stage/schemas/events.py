# src/duet_stage/schemas/events.py
"""Inbound real-time events.

Each WebSocket frame is a JSON object whose ``event`` field selects one of the
models below; the remaining fields are validated against that model.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from duet_stage.core.errors import ValidationFailedError
from duet_stage.core.settings import settings
from duet_stage.models.message import MessageType

HANDLE_PATTERN = r"^[a-zA-Z0-9_]{3,20}#[0-9]{4}$"

_MEDIA_TYPES = {MessageType.IMAGE, MessageType.DRAWING, MessageType.VOICE}


class InboundEvent(BaseModel):
    """Base for all inbound events; fields arrive in camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class SendFriendRequest(InboundEvent):
    event: Literal["sendFriendRequest"]
    recipient_id: PositiveInt


class AcceptFriendRequest(InboundEvent):
    event: Literal["acceptFriendRequest"]
    request_id: PositiveInt


class RejectFriendRequest(InboundEvent):
    event: Literal["rejectFriendRequest"]
    request_id: PositiveInt


class CancelFriendRequest(InboundEvent):
    event: Literal["cancelFriendRequest"]
    request_id: PositiveInt


class Unfriend(InboundEvent):
    event: Literal["unfriend"]
    user_id: PositiveInt


class SendMessage(InboundEvent):
    """A text or media message to a friend."""

    event: Literal["sendMessage"]
    recipient_id: PositiveInt
    content: str = ""
    expires_in: PositiveInt | None = Field(None, description="Seconds until the message expires")
    message_type: MessageType = MessageType.TEXT
    media_url: str | None = None
    media_duration: PositiveInt | None = None
    reply_to_message_id: PositiveInt | None = None
    temp_id: str | None = Field(None, description="Client id echoed back for optimistic rendering")

    @field_validator("media_url")
    @classmethod
    def check_media_url(cls, value: str | None) -> str | None:
        """Only accept media hosted by the configured storage provider."""
        if value in (None, ""):
            return None
        if not re.match(settings.media_url_pattern, value):
            raise ValueError("mediaUrl must point to the media storage service")
        return value

    @model_validator(mode="after")
    def check_content(self) -> SendMessage:
        """Text needs a body; media messages need a URL."""
        if len(self.content) > settings.message_max_length:
            raise ValueError(
                f"Message cannot exceed {settings.message_max_length} characters"
            )
        if self.message_type == MessageType.PING:
            return self
        if self.message_type in _MEDIA_TYPES:
            if self.media_url is None:
                raise ValueError(f"{self.message_type.value} messages require a mediaUrl")
            return self
        if not self.content.strip():
            raise ValueError("Message cannot be empty")
        return self


class SendPing(InboundEvent):
    event: Literal["sendPing"]
    recipient_id: PositiveInt


class GetMessages(InboundEvent):
    event: Literal["getMessages"]
    conversation_id: PositiveInt
    limit: PositiveInt | None = None
    offset: int = Field(0, ge=0)


class MessageDelivered(InboundEvent):
    event: Literal["messageDelivered"]
    message_id: PositiveInt


class MarkConversationRead(InboundEvent):
    event: Literal["markConversationRead"]
    conversation_id: PositiveInt


class AddReaction(InboundEvent):
    event: Literal["addReaction"]
    message_id: PositiveInt
    emoji: str = Field(..., min_length=1, max_length=16)


class RemoveReaction(InboundEvent):
    event: Literal["removeReaction"]
    message_id: PositiveInt
    emoji: str = Field(..., min_length=1, max_length=16)


class HideMessage(InboundEvent):
    event: Literal["hideMessage"]
    message_id: PositiveInt


class DeleteMessage(InboundEvent):
    event: Literal["deleteMessage"]
    message_id: PositiveInt


class ClearChatHistory(InboundEvent):
    event: Literal["clearChatHistory"]
    conversation_id: PositiveInt


class DeleteConversation(InboundEvent):
    event: Literal["deleteConversation"]
    conversation_id: PositiveInt


class SetDisappearingTimer(InboundEvent):
    event: Literal["setDisappearingTimer"]
    conversation_id: PositiveInt
    seconds: PositiveInt | None = None


class StartConversation(InboundEvent):
    event: Literal["startConversation"]
    recipient_id: PositiveInt


class Block(InboundEvent):
    event: Literal["block"]
    user_id: PositiveInt


class Unblock(InboundEvent):
    event: Literal["unblock"]
    user_id: PositiveInt


class GetConversations(InboundEvent):
    event: Literal["getConversations"]


class GetFriends(InboundEvent):
    event: Literal["getFriends"]


class GetFriendRequests(InboundEvent):
    event: Literal["getFriendRequests"]


class GetBlockedUsers(InboundEvent):
    event: Literal["getBlockedUsers"]


class SearchUsers(InboundEvent):
    event: Literal["searchUsers"]
    handle: str = Field(..., pattern=HANDLE_PATTERN)


Event = Annotated[
    SendFriendRequest
    | AcceptFriendRequest
    | RejectFriendRequest
    | CancelFriendRequest
    | Unfriend
    | SendMessage
    | SendPing
    | GetMessages
    | MessageDelivered
    | MarkConversationRead
    | AddReaction
    | RemoveReaction
    | HideMessage
    | DeleteMessage
    | ClearChatHistory
    | DeleteConversation
    | SetDisappearingTimer
    | StartConversation
    | Block
    | Unblock
    | GetConversations
    | GetFriends
    | GetFriendRequests
    | GetBlockedUsers
    | SearchUsers,
    Field(discriminator="event"),
]

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(frame: Any) -> Event:
    """Validate a decoded frame into its event model.

    Fields may sit next to ``event`` or inside a ``data`` object.

    Raises:
        ValidationFailedError: The frame is not an object, names an unknown
            event or carries invalid fields.
    """
    if not isinstance(frame, dict):
        raise ValidationFailedError("Event frame must be a JSON object")
    data = frame.get("data")
    if isinstance(data, dict):
        frame = {**data, "event": frame.get("event")}
    try:
        return _event_adapter.validate_python(frame)
    except ValidationError as exc:
        raise ValidationFailedError(_describe(exc)) from exc


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    if first.get("type") == "union_tag_invalid":
        return "Unknown event"
    if first.get("type") == "union_tag_not_found":
        return "Missing event name"
    # The first location element is the event name itself.
    location = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid event")
    return f"{location}: {message}" if location else message
