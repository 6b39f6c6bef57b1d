"""Conversation resolver: exactly one conversation per unordered user pair."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from duet_stage.core.errors import NotFoundError, UnauthorizedError, ValidationFailedError
from duet_stage.models.conversation import Conversation
from duet_stage.repositories.conversation_repo import ConversationRepository
from duet_stage.repositories.message_repo import MessageRepository

logger = logging.getLogger(__name__)

MAX_DISAPPEARING_TIMER_SECONDS = 7 * 24 * 60 * 60


class ConversationService:
    """Find, create and delete conversations for one session."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.conversations = ConversationRepository(db)
        self.messages = MessageRepository(db)

    def find_or_create(self, first_id: int, second_id: int) -> Conversation:
        """Return the conversation for the pair, creating it on first use.

        The insert runs inside a savepoint. If a concurrent writer created the
        row first, the unique constraint rejects ours, the savepoint is rolled
        back and the winner's row is returned instead.
        """
        if first_id == second_id:
            raise ValidationFailedError("A conversation needs two different users")
        existing = self.conversations.find_by_pair(first_id, second_id)
        if existing is not None:
            return existing
        try:
            with self.db.begin_nested():
                conversation = self.conversations.insert(first_id, second_id)
        except IntegrityError:
            logger.debug("Conversation for %s/%s created concurrently; re-reading", first_id, second_id)
            conversation = self.conversations.find_by_pair(first_id, second_id)
            if conversation is None:
                raise
            return conversation
        logger.debug("Created conversation %s for %s/%s", conversation.id, first_id, second_id)
        return conversation

    def find_by_id(self, conversation_id: int) -> Conversation | None:
        return self.conversations.get_by_id(conversation_id)

    def find_by_user(self, user_id: int) -> list[Conversation]:
        return self.conversations.list_for_user(user_id)

    def find_by_users(self, first_id: int, second_id: int) -> Conversation | None:
        return self.conversations.find_by_pair(first_id, second_id)

    def require_participant(self, conversation_id: int, user_id: int) -> Conversation:
        """Return the conversation, raising unless ``user_id`` takes part in it."""
        conversation = self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if not conversation.has_participant(user_id):
            raise UnauthorizedError("You are not a participant in this conversation")
        return conversation

    @staticmethod
    def counterpart(conversation: Conversation, user_id: int) -> int:
        """Return the participant of ``conversation`` that is not ``user_id``."""
        return conversation.counterpart(user_id)

    def delete(self, conversation_id: int) -> bool:
        """Delete a conversation together with its messages, hides and reactions."""
        removed_messages = self.messages.delete_by_conversation(conversation_id)
        removed = self.conversations.delete(conversation_id) > 0
        if removed:
            logger.debug(
                "Deleted conversation %s and %s message(s)", conversation_id, removed_messages
            )
        return removed

    def set_disappearing_timer(self, conversation_id: int, seconds: int | None) -> Conversation:
        """Set the default lifetime of new messages, or clear it with None."""
        if seconds is not None and not 0 < seconds <= MAX_DISAPPEARING_TIMER_SECONDS:
            raise ValidationFailedError("Disappearing timer must be between 1 second and 7 days")
        conversation = self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        conversation.disappearing_timer_seconds = seconds
        self.db.flush()
        return conversation
