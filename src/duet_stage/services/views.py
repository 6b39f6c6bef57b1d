"""Read models pushed to clients: friends, requests, conversations and messages."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.orm import Session

from duet_stage.core.errors import ValidationFailedError
from duet_stage.core.settings import settings
from duet_stage.db.time import as_utc, utcnow
from duet_stage.models.conversation import Conversation
from duet_stage.models.friend_request import FriendRequest
from duet_stage.models.message import Message, MessageType
from duet_stage.models.user import User
from duet_stage.repositories.user_repo import UserRepository
from duet_stage.schemas.payloads import (
    ConversationPayload,
    FriendRequestPayload,
    MessagePayload,
    ReplyPreview,
    UserPayload,
)
from duet_stage.services.blocking import BlockService
from duet_stage.services.conversations import ConversationService
from duet_stage.services.friendship import FriendshipService
from duet_stage.services.messages import MessageService

_PREVIEW_LABELS = {
    MessageType.VOICE: "Voice message",
    MessageType.IMAGE: "Image",
    MessageType.DRAWING: "Image",
    MessageType.PING: "Ping",
}


def user_payload(user: User) -> UserPayload:
    """Convert a User ORM instance to its public payload."""
    return UserPayload(
        id=user.id,
        username=user.username,
        tag=user.tag,
        handle=user.handle,
        profile_picture_url=user.profile_picture_url,
    )


def reply_preview_text(message: Message) -> str:
    """Return the text shown when ``message`` is quoted in a reply."""
    if message.message_type == MessageType.TEXT:
        return (message.content or "")[: settings.reply_preview_length]
    return _PREVIEW_LABELS.get(message.message_type, "")


class ChatViews:
    """Builds the payloads each user sees, filtered through blocks and hides."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.users = UserRepository(db)
        self.friendship = FriendshipService(db)
        self.blocking = BlockService(db, self.friendship)
        self.conversations = ConversationService(db)
        self.messages = MessageService(db)

    def friends(self, user_id: int) -> list[UserPayload]:
        return [user_payload(user) for user in self.friendship.get_friends(user_id)]

    def blocked_users(self, user_id: int) -> list[UserPayload]:
        return [user_payload(user) for user in self.blocking.get_blocked_users(user_id)]

    def pending_count(self, user_id: int) -> int:
        return self.friendship.get_pending_count(user_id)

    def pending_requests(self, user_id: int) -> list[FriendRequestPayload]:
        return self.friend_requests(self.friendship.get_pending_requests(user_id))

    def outgoing_requests(self, user_id: int) -> list[FriendRequestPayload]:
        return self.friend_requests(self.friendship.get_outgoing_requests(user_id))

    def friend_request(self, request: FriendRequest) -> FriendRequestPayload:
        return self.friend_requests([request])[0]

    def friend_requests(self, requests: Sequence[FriendRequest]) -> list[FriendRequestPayload]:
        """Resolve both parties of each request in one query."""
        ids = {request.sender_id for request in requests} | {request.receiver_id for request in requests}
        users = self.users.get_many(ids)
        payloads = []
        for request in requests:
            sender = users.get(request.sender_id)
            receiver = users.get(request.receiver_id)
            if sender is None or receiver is None:
                continue
            payloads.append(
                FriendRequestPayload(
                    id=request.id,
                    status=request.status,
                    sender=user_payload(sender),
                    receiver=user_payload(receiver),
                    created_at=as_utc(request.created_at),
                    responded_at=as_utc(request.responded_at),
                )
            )
        return payloads

    def conversation(self, conversation: Conversation, viewer_id: int) -> ConversationPayload | None:
        """Summarize one conversation for ``viewer_id``; None if the other side is gone."""
        other = self.users.get_by_id(conversation.counterpart(viewer_id))
        if other is None:
            return None
        now = utcnow()
        last = self.messages.get_last_message(conversation.id, viewer_id, now=now)
        return ConversationPayload(
            id=conversation.id,
            other_user=user_payload(other),
            last_message=self.message(last, viewer_id) if last is not None else None,
            unread_count=self.messages.count_unread_for_recipient(conversation.id, viewer_id, now=now),
            disappearing_timer_seconds=conversation.disappearing_timer_seconds,
            created_at=as_utc(conversation.created_at),
        )

    def conversations_for(self, user_id: int) -> list[ConversationPayload]:
        """Return the user's conversations, most recently active first.

        Conversations with a blocked counterpart (either direction) are left out.
        """
        hidden = self.blocking.hidden_user_ids(user_id)
        payloads = []
        for conversation in self.conversations.find_by_user(user_id):
            if conversation.counterpart(user_id) in hidden:
                continue
            payload = self.conversation(conversation, user_id)
            if payload is not None:
                payloads.append(payload)
        payloads.sort(
            key=lambda item: (item.last_message.id if item.last_message else 0, item.id),
            reverse=True,
        )
        return payloads

    def message(
        self, message: Message, viewer_id: int, temp_id: str | None = None
    ) -> MessagePayload:
        return self.message_list([message], viewer_id, temp_id=temp_id)[0]

    def message_list(
        self, messages: Sequence[Message], viewer_id: int, temp_id: str | None = None
    ) -> list[MessagePayload]:
        """Convert messages to the payloads ``viewer_id`` sees.

        Sender, reply and reaction lookups are batched. A reply target that has
        expired or that the viewer hid is not quoted.
        """
        if not messages:
            return []
        reply_ids = {m.reply_to_message_id for m in messages if m.reply_to_message_id}
        replies = self.messages.visible_by_ids(reply_ids, viewer_id)
        sender_ids = {m.sender_id for m in messages} | {r.sender_id for r in replies.values()}
        senders = self.users.get_many(sender_ids)
        reactions = self.messages.reactions_by_emoji([m.id for m in messages])

        def username(user_id: int) -> str:
            sender = senders.get(user_id)
            return sender.username if sender is not None else ""

        payloads = []
        for message in messages:
            reply = replies.get(message.reply_to_message_id) if message.reply_to_message_id else None
            payloads.append(
                MessagePayload(
                    id=message.id,
                    conversation_id=message.conversation_id,
                    sender_id=message.sender_id,
                    sender_username=username(message.sender_id),
                    content=message.content,
                    message_type=message.message_type,
                    media_url=message.media_url,
                    media_duration=message.media_duration,
                    delivery_status=message.delivery_status,
                    expires_at=as_utc(message.expires_at),
                    created_at=as_utc(message.created_at),
                    reply_to_message_id=message.reply_to_message_id,
                    reply_to=ReplyPreview(
                        id=reply.id,
                        content=reply_preview_text(reply),
                        sender_username=username(reply.sender_id),
                        message_type=reply.message_type,
                    )
                    if reply is not None
                    else None,
                    reactions=reactions.get(message.id, {}),
                    temp_id=temp_id,
                )
            )
        return payloads

    def search_users(self, user_id: int, handle: str) -> list[UserPayload]:
        """Find a user by exact ``username#tag``.

        The caller, their friends and anyone blocked either way never show up.
        """
        username, sep, tag = handle.partition("#")
        if not sep or not username or not tag:
            raise ValidationFailedError("Enter username#tag (e.g. username#1234)")
        user = self.users.get_by_handle(username, tag)
        if user is None or user.id == user_id:
            return []
        if self.blocking.is_blocked_by_either(user_id, user.id):
            return []
        if self.friendship.are_friends(user_id, user.id):
            return []
        return [user_payload(user)]
