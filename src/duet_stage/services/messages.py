"""Message creation, delivery transitions, visibility and reactions.

Two rules apply to every read path here:

* a message whose ``expires_at`` has passed is invisible, whether or not the
  expiry sweeper has deleted it yet;
* a message a viewer hid for themselves is invisible to that viewer only.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from duet_stage.core.errors import NotFoundError, ValidationFailedError
from duet_stage.core.settings import settings
from duet_stage.db.time import utcnow
from duet_stage.models.message import (
    DeliveryStatus,
    Message,
    MessageReaction,
    MessageType,
)
from duet_stage.repositories.message_repo import MessageRepository
from duet_stage.services.delivery import statuses_below

logger = logging.getLogger(__name__)


class MessageService:
    """Message state machine over one session; the caller owns the transaction."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.messages = MessageRepository(db)

    def create(
        self,
        content: str,
        sender_id: int,
        conversation_id: int,
        *,
        expires_at: datetime | None = None,
        message_type: MessageType = MessageType.TEXT,
        media_url: str | None = None,
        media_duration: int | None = None,
        reply_to_message_id: int | None = None,
        initial_status: DeliveryStatus = DeliveryStatus.SENT,
    ) -> Message:
        """Persist a new message.

        Args:
            content: Text body; may be empty for pings and voice notes.
            sender_id: Author of the message.
            conversation_id: Conversation the message belongs to.
            expires_at: Instant after which the message is invisible.
            message_type: Kind of content carried.
            media_url: Externally stored media for image, drawing and voice messages.
            media_duration: Length of a voice message in seconds.
            reply_to_message_id: Message being replied to, in the same conversation.
            initial_status: SENT, or SENDING for transports with an ack round-trip.

        Raises:
            NotFoundError: The reply target is not in this conversation, has
                expired or was hidden by the sender.
        """
        if reply_to_message_id is not None:
            target = self.visible_by_ids([reply_to_message_id], sender_id).get(reply_to_message_id)
            if target is None or target.conversation_id != conversation_id:
                raise NotFoundError("Reply target not found")

        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            media_url=media_url,
            media_duration=media_duration,
            delivery_status=initial_status,
            expires_at=expires_at,
            reply_to_message_id=reply_to_message_id,
            created_at=utcnow(),
        )
        self.messages.add(message)
        logger.debug(
            "Message %s (%s) stored in conversation %s",
            message.id,
            message_type.value,
            conversation_id,
        )
        return message

    def get(self, message_id: int) -> Message | None:
        return self.messages.get_by_id(message_id)

    def require(self, message_id: int) -> Message:
        """Return the message or raise :class:`NotFoundError`."""
        message = self.messages.get_by_id(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        return message

    def update_status(self, message_id: int, new_status: DeliveryStatus) -> DeliveryStatus:
        """Advance a message's delivery status; never moves it backwards.

        Returns:
            The status the message holds afterwards, which is the current one
            when ``new_status`` is not an advance.
        """
        message = self.require(message_id)
        self.messages.advance_status(message_id, new_status, statuses_below(new_status))
        self.db.refresh(message, ["delivery_status"])
        return message.delivery_status

    def mark_conversation_read_from_sender(
        self, conversation_id: int, sender_id: int, now: datetime | None = None
    ) -> list[int]:
        """Move every unread message from ``sender_id`` in the conversation to READ.

        Returns:
            Ids of the messages that changed.
        """
        ids = self.messages.unread_ids_from(conversation_id, sender_id, now or utcnow())
        self.messages.bulk_mark_read(ids)
        return ids

    def find_by_conversation(
        self,
        conversation_id: int,
        viewer_id: int,
        limit: int | None = None,
        offset: int = 0,
        now: datetime | None = None,
    ) -> list[Message]:
        """Return a page of visible messages, oldest first.

        ``offset`` skips that many of the newest visible messages, so
        ``offset=0`` is the latest page.
        """
        limit = limit or settings.message_history_default_limit
        limit = max(1, min(limit, settings.message_history_max_limit))
        window = self.messages.list_visible(
            conversation_id,
            viewer_id,
            now or utcnow(),
            limit=limit + max(offset, 0),
        )
        if offset > 0:
            window = window[: max(len(window) - offset, 0)]
        return window[-limit:]

    def get_last_message(
        self, conversation_id: int, viewer_id: int, now: datetime | None = None
    ) -> Message | None:
        return self.messages.last_visible(conversation_id, viewer_id, now or utcnow())

    def visible_by_ids(
        self, message_ids: Collection[int], viewer_id: int, now: datetime | None = None
    ) -> dict[int, Message]:
        """Return the listed messages that are neither expired nor hidden from ``viewer_id``."""
        return self.messages.get_many_visible(message_ids, viewer_id, now or utcnow())

    def count_unread_for_recipient(
        self, conversation_id: int, user_id: int, now: datetime | None = None
    ) -> int:
        return self.messages.count_unread(conversation_id, user_id, now or utcnow())

    def hide_message_for_user(self, message_id: int, user_id: int) -> bool:
        """Hide one message from ``user_id`` only. Idempotent.

        Returns:
            True when a new hide row was written.
        """
        self.require(message_id)
        if self.messages.get_hide(message_id, user_id) is not None:
            return False
        try:
            with self.db.begin_nested():
                self.messages.add_hide(message_id, user_id)
        except IntegrityError:
            return False
        return True

    def clear_history_for_user(
        self, conversation_id: int, user_id: int, now: datetime | None = None
    ) -> int:
        """Hide every message ``user_id`` can currently see in the conversation."""
        return self.messages.hide_all_visible(conversation_id, user_id, now or utcnow())

    def delete_by_id(self, message_id: int, requester_id: int) -> Message | None:
        """Delete a message for everyone. Only its sender may do this.

        Returns:
            The deleted message, or None when it is missing or the requester
            is not the sender.
        """
        message = self.messages.get_by_id(message_id)
        if message is None or message.sender_id != requester_id:
            return None
        self.messages.delete(message_id)
        return message

    def add_or_update_reaction(self, message_id: int, user_id: int, emoji: str) -> MessageReaction:
        """Set ``emoji`` as the user's single reaction on the message."""
        self._check_emoji(emoji)
        self.require(message_id)
        try:
            with self.db.begin_nested():
                return self.messages.upsert_reaction(message_id, user_id, emoji)
        except IntegrityError:
            # A concurrent first reaction from the same user won; overwrite it.
            self.db.expire_all()
            return self.messages.upsert_reaction(message_id, user_id, emoji)

    def remove_reaction(self, message_id: int, user_id: int, emoji: str) -> bool:
        """Remove the user's reaction if it is ``emoji``; returns True when removed."""
        self._check_emoji(emoji)
        self.require(message_id)
        row = self.messages.get_reaction(message_id, user_id)
        if row is None or row.emoji != emoji:
            return False
        self.messages.delete_reaction(row)
        return True

    def reactions_by_emoji(self, message_ids: Sequence[int]) -> dict[int, dict[str, list[int]]]:
        """Return ``{message_id: {emoji: [user ids]}}`` for the given messages."""
        grouped: dict[int, dict[str, list[int]]] = {}
        for message_id, rows in self.messages.reactions_for(message_ids).items():
            per_emoji: dict[str, list[int]] = {}
            for row in rows:
                per_emoji.setdefault(row.emoji, []).append(row.user_id)
            grouped[message_id] = per_emoji
        return grouped

    def purge_expired(self, now: datetime | None = None, batch_size: int = 500) -> int:
        """Hard-delete up to ``batch_size`` expired messages."""
        return self.messages.delete_expired(now or utcnow(), batch_size=batch_size)

    @staticmethod
    def expiry_for(
        expires_in: int | None,
        timer_seconds: int | None,
        message_type: MessageType = MessageType.TEXT,
        now: datetime | None = None,
    ) -> datetime | None:
        """Work out ``expires_at`` for a new message.

        An explicit ``expires_in`` wins over the conversation's disappearing
        timer. Pings never expire.
        """
        if message_type == MessageType.PING:
            return None
        seconds = expires_in if expires_in else timer_seconds
        if not seconds:
            return None
        return (now or utcnow()) + timedelta(seconds=seconds)

    @staticmethod
    def _check_emoji(emoji: str) -> None:
        if emoji not in settings.allowed_reactions:
            raise ValidationFailedError("Reaction emoji is not allowed")
