"""Event orchestration and fan-out.

Every inbound event is handled in two phases:

1. the critical mutation runs in a single transaction (``atomic``); if it
   raises, nothing is persisted and the caller receives an ``error`` event;
2. after the commit, each refresh pushed to an affected online user runs in
   isolation. A failing push is logged and skipped; it never undoes the
   mutation nor stops the pushes after it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from duet_stage.core.errors import ConflictError, DuetError, NotFoundError, UnauthorizedError
from duet_stage.db.session import SessionLocal, atomic
from duet_stage.models.friend_request import FriendRequestStatus
from duet_stage.models.message import DeliveryStatus, MessageType
from duet_stage.repositories.user_repo import UserRepository
from duet_stage.schemas import events as ev
from duet_stage.services.blocking import BlockService
from duet_stage.services.conversations import ConversationService
from duet_stage.services.friendship import FriendshipService
from duet_stage.services.messages import MessageService
from duet_stage.services.presence import ConnectionHandle, PresenceRegistry
from duet_stage.services.push import LoggingPushNotifier, PushNotifier
from duet_stage.services.views import ChatViews

logger = logging.getLogger(__name__)

Handler = Callable[["_Call", Any], Awaitable[None]]


@dataclass
class _Call:
    """State of one inbound event while it is being handled."""

    db: Session
    caller: ConnectionHandle
    user_id: int
    _views: ChatViews | None = field(default=None, repr=False)

    @property
    def views(self) -> ChatViews:
        if self._views is None:
            self._views = ChatViews(self.db)
        return self._views


class EventOrchestrator:
    """Routes inbound events to the state machines and fans results out."""

    def __init__(
        self,
        presence: PresenceRegistry,
        session_factory: Callable[[], Session] = SessionLocal,
        push_notifier: PushNotifier | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            presence: Registry used to reach online users.
            session_factory: Callable returning a new database session per event.
            push_notifier: Notifier used when a message recipient is offline.
        """
        self.presence = presence
        self.session_factory = session_factory
        self.push_notifier: PushNotifier = push_notifier or LoggingPushNotifier()
        self._handlers: dict[str, Handler] = {
            "sendFriendRequest": self._send_friend_request,
            "acceptFriendRequest": self._accept_friend_request,
            "rejectFriendRequest": self._reject_friend_request,
            "cancelFriendRequest": self._cancel_friend_request,
            "unfriend": self._unfriend,
            "sendMessage": self._send_message,
            "sendPing": self._send_ping,
            "getMessages": self._get_messages,
            "messageDelivered": self._message_delivered,
            "markConversationRead": self._mark_conversation_read,
            "addReaction": self._add_reaction,
            "removeReaction": self._remove_reaction,
            "hideMessage": self._hide_message,
            "deleteMessage": self._delete_message,
            "clearChatHistory": self._clear_chat_history,
            "deleteConversation": self._delete_conversation,
            "setDisappearingTimer": self._set_disappearing_timer,
            "startConversation": self._start_conversation,
            "block": self._block,
            "unblock": self._unblock,
            "getConversations": self._get_conversations,
            "getFriends": self._get_friends,
            "getFriendRequests": self._get_friend_requests,
            "getBlockedUsers": self._get_blocked_users,
            "searchUsers": self._search_users,
        }

    async def dispatch(self, caller: ConnectionHandle, user_id: int, event: ev.Event) -> None:
        """Handle one validated event sent by ``user_id`` over ``caller``."""
        handler = self._handlers[event.event]
        with self.session_factory() as db:
            call = _Call(db=db, caller=caller, user_id=user_id)
            try:
                await handler(call, event)
            except DuetError as exc:
                logger.info("%s from user %s rejected: %s", event.event, user_id, exc.message)
                await caller.send("error", exc.to_event())
            except SQLAlchemyError:
                logger.error("%s from user %s failed", event.event, user_id, exc_info=True)
                await caller.send(
                    "error",
                    {"code": "INTERNAL_ERROR", "category": "internal", "message": "Request failed"},
                )

    # ------------------------------------------------------------------
    # Fan-out helpers
    # ------------------------------------------------------------------

    async def _send_to(
        self, call: _Call, user_id: int, event: str, build: Callable[[], Any]
    ) -> bool:
        """Send ``build()`` to ``user_id`` if reachable; returns False when offline."""
        handle = call.caller if user_id == call.user_id else self.presence.get(user_id)
        if handle is None:
            return False
        await handle.send(event, build())
        return True

    async def _isolated(self, call: _Call, label: str, step: Callable[[], Awaitable[Any]]) -> Any:
        """Run a best-effort step; failures are logged and yield None."""
        try:
            return await step()
        except Exception:
            logger.exception("%s for user %s failed (non-critical)", label, call.user_id)
            call.db.rollback()
            return None

    async def _push(self, call: _Call, user_id: int, event: str, build: Callable[[], Any]) -> bool:
        """Best-effort push of one event to one user."""
        sent = await self._isolated(
            call, f"{event} push", lambda: self._send_to(call, user_id, event, build)
        )
        return bool(sent)

    async def _push_friends(self, call: _Call, *user_ids: int) -> None:
        for user_id in user_ids:
            await self._push(
                call, user_id, "friendsList",
                lambda uid=user_id: [u.dump() for u in call.views.friends(uid)],
            )

    async def _push_conversations(self, call: _Call, *user_ids: int) -> None:
        for user_id in user_ids:
            await self._push(
                call, user_id, "conversationsList",
                lambda uid=user_id: [c.dump() for c in call.views.conversations_for(uid)],
            )

    async def _push_pending_count(self, call: _Call, *user_ids: int) -> None:
        for user_id in user_ids:
            await self._push(
                call, user_id, "pendingRequestsCount",
                lambda uid=user_id: {"count": call.views.pending_count(uid)},
            )

    async def _push_requests(self, call: _Call, *user_ids: int) -> None:
        for user_id in user_ids:
            await self._push(
                call, user_id, "friendRequestsList",
                lambda uid=user_id: [r.dump() for r in call.views.pending_requests(uid)],
            )

    async def _push_open_conversation(self, call: _Call, conversation_id: int, *user_ids: int) -> None:
        for user_id in user_ids:
            await self._push(
                call, user_id, "openConversation",
                lambda uid=user_id: self._conversation_dump(call, conversation_id, uid),
            )

    @staticmethod
    def _conversation_dump(call: _Call, conversation_id: int, user_id: int) -> dict | None:
        conversation = ConversationService(call.db).find_by_id(conversation_id)
        if conversation is None:
            return None
        payload = call.views.conversation(conversation, user_id)
        return payload.dump() if payload is not None else None

    # ------------------------------------------------------------------
    # Friend requests
    # ------------------------------------------------------------------

    async def _send_friend_request(self, call: _Call, event: ev.SendFriendRequest) -> None:
        with atomic(call.db):
            request = FriendshipService(call.db).send_request(call.user_id, event.recipient_id)
            request_id = request.id
            accepted = request.status == FriendRequestStatus.ACCEPTED

        if accepted:
            await self._announce_friendship(call, request_id, event.recipient_id)
            return

        def request_payload() -> dict:
            request = FriendshipService(call.db).requests.get_by_id(request_id)
            return call.views.friend_request(request).dump()

        await self._push(call, call.user_id, "friendRequestSent", request_payload)
        await self._push(call, event.recipient_id, "newFriendRequest", request_payload)
        await self._push_pending_count(call, event.recipient_id)

    async def _accept_friend_request(self, call: _Call, event: ev.AcceptFriendRequest) -> None:
        with atomic(call.db):
            request = FriendshipService(call.db).accept_request(event.request_id, call.user_id)
            sender_id = request.sender_id
        await self._announce_friendship(call, event.request_id, sender_id)
        await self._push_requests(call, call.user_id)

    async def _announce_friendship(self, call: _Call, request_id: int, other_id: int) -> None:
        """Fan out a new friendship, creating the pair's conversation on the way."""
        both = (call.user_id, other_id)

        def request_payload() -> dict:
            request = FriendshipService(call.db).requests.get_by_id(request_id)
            return call.views.friend_request(request).dump()

        for user_id in both:
            await self._push(call, user_id, "friendRequestAccepted", request_payload)

        async def create_conversation() -> int:
            with atomic(call.db):
                return ConversationService(call.db).find_or_create(call.user_id, other_id).id

        conversation_id = await self._isolated(call, "conversation creation", create_conversation)

        await self._push_friends(call, *both)
        await self._push_conversations(call, *both)
        await self._push_pending_count(call, *both)
        if conversation_id is not None:
            await self._push_open_conversation(call, conversation_id, *both)

    async def _reject_friend_request(self, call: _Call, event: ev.RejectFriendRequest) -> None:
        with atomic(call.db):
            FriendshipService(call.db).reject_request(event.request_id, call.user_id)
        await self._push(
            call, call.user_id, "friendRequestRejected", lambda: {"requestId": event.request_id}
        )
        await self._push_requests(call, call.user_id)
        await self._push_pending_count(call, call.user_id)

    async def _cancel_friend_request(self, call: _Call, event: ev.CancelFriendRequest) -> None:
        with atomic(call.db):
            request = FriendshipService(call.db).cancel_request(event.request_id, call.user_id)
            receiver_id = request.receiver_id
        await self._push(
            call, call.user_id, "friendRequestCancelled", lambda: {"requestId": event.request_id}
        )
        await self._push_requests(call, receiver_id)
        await self._push_pending_count(call, receiver_id)

    async def _unfriend(self, call: _Call, event: ev.Unfriend) -> None:
        other_id = event.user_id
        with atomic(call.db):
            FriendshipService(call.db).unfriend(call.user_id, other_id)
            conversations = ConversationService(call.db)
            conversation = conversations.find_by_users(call.user_id, other_id)
            conversation_id = conversation.id if conversation is not None else None
            if conversation_id is not None:
                conversations.delete(conversation_id)
        await self._announce_unfriended(call, other_id, conversation_id)

    async def _announce_unfriended(
        self, call: _Call, other_id: int, conversation_id: int | None
    ) -> None:
        both = (call.user_id, other_id)
        for user_id, counterpart in ((call.user_id, other_id), (other_id, call.user_id)):
            await self._push(
                call, user_id, "unfriended",
                lambda cp=counterpart: {"userId": cp, "conversationId": conversation_id},
            )
        await self._push_conversations(call, *both)
        await self._push_friends(call, *both)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _authorize_recipient(self, db: Session, sender_id: int, recipient_id: int) -> None:
        if UserRepository(db).get_by_id(recipient_id) is None:
            raise NotFoundError("User not found")
        BlockService(db).ensure_can_message(sender_id, recipient_id)

    async def _send_message(self, call: _Call, event: ev.SendMessage) -> None:
        await self._deliver_new_message(
            call,
            event.recipient_id,
            content=event.content,
            message_type=event.message_type,
            expires_in=event.expires_in,
            media_url=event.media_url,
            media_duration=event.media_duration,
            reply_to_message_id=event.reply_to_message_id,
            temp_id=event.temp_id,
            sent_event="messageSent",
            new_event="newMessage",
        )

    async def _send_ping(self, call: _Call, event: ev.SendPing) -> None:
        await self._deliver_new_message(
            call,
            event.recipient_id,
            content="",
            message_type=MessageType.PING,
            sent_event="pingSent",
            new_event="newPing",
        )

    async def _deliver_new_message(
        self,
        call: _Call,
        recipient_id: int,
        *,
        content: str,
        message_type: MessageType,
        sent_event: str,
        new_event: str,
        expires_in: int | None = None,
        media_url: str | None = None,
        media_duration: int | None = None,
        reply_to_message_id: int | None = None,
        temp_id: str | None = None,
    ) -> None:
        with atomic(call.db):
            self._authorize_recipient(call.db, call.user_id, recipient_id)
            conversation = ConversationService(call.db).find_or_create(call.user_id, recipient_id)
            expires_at = MessageService.expiry_for(
                expires_in, conversation.disappearing_timer_seconds, message_type
            )
            message = MessageService(call.db).create(
                content,
                call.user_id,
                conversation.id,
                expires_at=expires_at,
                message_type=message_type,
                media_url=media_url,
                media_duration=media_duration,
                reply_to_message_id=reply_to_message_id,
            )
            message_id = message.id

        def payload(viewer_id: int, with_temp_id: bool) -> dict:
            message = MessageService(call.db).require(message_id)
            return call.views.message(
                message, viewer_id, temp_id=temp_id if with_temp_id else None
            ).dump()

        await self._push(call, call.user_id, sent_event, lambda: payload(call.user_id, True))
        delivered = await self._push(
            call, recipient_id, new_event, lambda: payload(recipient_id, False)
        )
        if not delivered:
            kind = "ping" if message_type == MessageType.PING else "new_message"
            await self._isolated(
                call, "push notification", lambda: self.push_notifier.notify(recipient_id, kind)
            )
        await self._push_conversations(call, call.user_id, recipient_id)

    async def _get_messages(self, call: _Call, event: ev.GetMessages) -> None:
        ConversationService(call.db).require_participant(event.conversation_id, call.user_id)
        messages = MessageService(call.db).find_by_conversation(
            event.conversation_id, call.user_id, limit=event.limit, offset=event.offset
        )
        history = {
            "conversationId": event.conversation_id,
            "messages": [m.dump() for m in call.views.message_list(messages, call.user_id)],
        }
        await call.caller.send("messageHistory", history)

    def _require_message_participant(self, db: Session, message_id: int, user_id: int):
        message = MessageService(db).require(message_id)
        conversation = ConversationService(db).require_participant(message.conversation_id, user_id)
        return message, conversation

    async def _message_delivered(self, call: _Call, event: ev.MessageDelivered) -> None:
        with atomic(call.db):
            message, conversation = self._require_message_participant(
                call.db, event.message_id, call.user_id
            )
            if message.sender_id == call.user_id:
                raise ConflictError("Only the recipient can acknowledge delivery")
            sender_id = message.sender_id
            conversation_id = conversation.id
            status = MessageService(call.db).update_status(message.id, DeliveryStatus.DELIVERED)
        await self._push(
            call, sender_id, "messageDelivered",
            lambda: {
                "messageId": event.message_id,
                "conversationId": conversation_id,
                "deliveryStatus": status.value,
            },
        )

    async def _mark_conversation_read(self, call: _Call, event: ev.MarkConversationRead) -> None:
        with atomic(call.db):
            conversation = ConversationService(call.db).require_participant(
                event.conversation_id, call.user_id
            )
            other_id = conversation.counterpart(call.user_id)
            message_ids = MessageService(call.db).mark_conversation_read_from_sender(
                conversation.id, other_id
            )
        if message_ids:
            await self._push(
                call, other_id, "messageDelivered",
                lambda: {
                    "conversationId": event.conversation_id,
                    "messageIds": message_ids,
                    "deliveryStatus": DeliveryStatus.READ.value,
                },
            )
        await self._push_conversations(call, call.user_id)

    async def _add_reaction(self, call: _Call, event: ev.AddReaction) -> None:
        await self._change_reaction(call, event.message_id, event.emoji, add=True)

    async def _remove_reaction(self, call: _Call, event: ev.RemoveReaction) -> None:
        await self._change_reaction(call, event.message_id, event.emoji, add=False)

    async def _change_reaction(self, call: _Call, message_id: int, emoji: str, *, add: bool) -> None:
        with atomic(call.db):
            _, conversation = self._require_message_participant(call.db, message_id, call.user_id)
            messages = MessageService(call.db)
            if add:
                messages.add_or_update_reaction(message_id, call.user_id, emoji)
            else:
                messages.remove_reaction(message_id, call.user_id, emoji)
            conversation_id = conversation.id
            participants = conversation.participant_ids

        def payload() -> dict:
            reactions = MessageService(call.db).reactions_by_emoji([message_id])
            return {
                "messageId": message_id,
                "conversationId": conversation_id,
                "reactions": reactions.get(message_id, {}),
            }

        for user_id in participants:
            await self._push(call, user_id, "reactionUpdated", payload)

    async def _hide_message(self, call: _Call, event: ev.HideMessage) -> None:
        with atomic(call.db):
            _, conversation = self._require_message_participant(
                call.db, event.message_id, call.user_id
            )
            MessageService(call.db).hide_message_for_user(event.message_id, call.user_id)
            conversation_id = conversation.id
        await self._push(
            call, call.user_id, "messageHidden",
            lambda: {"messageId": event.message_id, "conversationId": conversation_id},
        )
        await self._push_conversations(call, call.user_id)

    async def _delete_message(self, call: _Call, event: ev.DeleteMessage) -> None:
        with atomic(call.db):
            _, conversation = self._require_message_participant(
                call.db, event.message_id, call.user_id
            )
            if MessageService(call.db).delete_by_id(event.message_id, call.user_id) is None:
                raise UnauthorizedError("Only the sender can delete this message")
            conversation_id = conversation.id
            participants = conversation.participant_ids
        for user_id in participants:
            await self._push(
                call, user_id, "messageDeleted",
                lambda: {"messageId": event.message_id, "conversationId": conversation_id},
            )
        await self._push_conversations(call, *participants)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def _clear_chat_history(self, call: _Call, event: ev.ClearChatHistory) -> None:
        with atomic(call.db):
            ConversationService(call.db).require_participant(event.conversation_id, call.user_id)
            MessageService(call.db).clear_history_for_user(event.conversation_id, call.user_id)
        await self._push(
            call, call.user_id, "chatHistoryCleared",
            lambda: {"conversationId": event.conversation_id},
        )
        await self._push_conversations(call, call.user_id)

    async def _delete_conversation(self, call: _Call, event: ev.DeleteConversation) -> None:
        with atomic(call.db):
            conversations = ConversationService(call.db)
            conversation = conversations.require_participant(event.conversation_id, call.user_id)
            other_id = conversation.counterpart(call.user_id)
            conversations.delete(conversation.id)
            # A deleted conversation ends the friendship, so a fresh request works again.
            FriendshipService(call.db).unfriend(call.user_id, other_id)
        for user_id in (call.user_id, other_id):
            await self._push(
                call, user_id, "conversationDeleted",
                lambda: {"conversationId": event.conversation_id},
            )
        await self._announce_unfriended(call, other_id, event.conversation_id)

    async def _set_disappearing_timer(self, call: _Call, event: ev.SetDisappearingTimer) -> None:
        with atomic(call.db):
            conversations = ConversationService(call.db)
            conversation = conversations.require_participant(event.conversation_id, call.user_id)
            participants = conversation.participant_ids
            conversations.set_disappearing_timer(conversation.id, event.seconds)
        for user_id in participants:
            await self._push(
                call, user_id, "disappearingTimerUpdated",
                lambda: {"conversationId": event.conversation_id, "seconds": event.seconds},
            )

    async def _start_conversation(self, call: _Call, event: ev.StartConversation) -> None:
        with atomic(call.db):
            self._authorize_recipient(call.db, call.user_id, event.recipient_id)
            conversation_id = ConversationService(call.db).find_or_create(
                call.user_id, event.recipient_id
            ).id
        await self._push_conversations(call, call.user_id)
        await self._push_open_conversation(call, conversation_id, call.user_id)

    # ------------------------------------------------------------------
    # Blocking
    # ------------------------------------------------------------------

    async def _block(self, call: _Call, event: ev.Block) -> None:
        with atomic(call.db):
            BlockService(call.db).block(call.user_id, event.user_id)
        await self._push(call, call.user_id, "userBlocked", lambda: {"userId": event.user_id})
        await self._push_blocked(call)
        await self._push_friends(call, call.user_id, event.user_id)
        await self._push_conversations(call, call.user_id, event.user_id)

    async def _unblock(self, call: _Call, event: ev.Unblock) -> None:
        with atomic(call.db):
            BlockService(call.db).unblock(call.user_id, event.user_id)
        await self._push(call, call.user_id, "userUnblocked", lambda: {"userId": event.user_id})
        await self._push_blocked(call)
        await self._push_friends(call, call.user_id, event.user_id)
        await self._push_conversations(call, call.user_id, event.user_id)

    async def _push_blocked(self, call: _Call) -> None:
        await self._push(
            call, call.user_id, "blockedUsersList",
            lambda: [u.dump() for u in call.views.blocked_users(call.user_id)],
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _get_conversations(self, call: _Call, event: ev.GetConversations) -> None:
        await call.caller.send(
            "conversationsList", [c.dump() for c in call.views.conversations_for(call.user_id)]
        )

    async def _get_friends(self, call: _Call, event: ev.GetFriends) -> None:
        await call.caller.send("friendsList", [u.dump() for u in call.views.friends(call.user_id)])

    async def _get_friend_requests(self, call: _Call, event: ev.GetFriendRequests) -> None:
        await call.caller.send(
            "friendRequestsList", [r.dump() for r in call.views.pending_requests(call.user_id)]
        )
        await call.caller.send(
            "pendingRequestsCount", {"count": call.views.pending_count(call.user_id)}
        )

    async def _get_blocked_users(self, call: _Call, event: ev.GetBlockedUsers) -> None:
        await call.caller.send(
            "blockedUsersList", [u.dump() for u in call.views.blocked_users(call.user_id)]
        )

    async def _search_users(self, call: _Call, event: ev.SearchUsers) -> None:
        results = call.views.search_users(call.user_id, event.handle)
        await call.caller.send("searchUsersResult", [u.dump() for u in results])
