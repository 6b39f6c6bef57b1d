"""Data access helpers for conversations."""
from __future__ import annotations

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from duet_stage.models.conversation import Conversation

__all__ = ["ConversationRepository"]


class ConversationRepository:
    """Thin wrapper around database access for conversations."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_by_id(self, conversation_id: int) -> Conversation | None:
        """Return a conversation by identifier."""
        return self.session.get(Conversation, conversation_id)

    def find_by_pair(self, first_id: int, second_id: int) -> Conversation | None:
        """Return the conversation between two users regardless of argument order."""
        low, high = sorted((first_id, second_id))
        return self.session.execute(
            select(Conversation).where(
                Conversation.participant_a_id == low,
                Conversation.participant_b_id == high,
            )
        ).scalars().first()

    def list_for_user(self, user_id: int) -> list[Conversation]:
        """Return every conversation ``user_id`` takes part in."""
        return list(
            self.session.execute(
                select(Conversation)
                .where(
                    or_(
                        Conversation.participant_a_id == user_id,
                        Conversation.participant_b_id == user_id,
                    )
                )
                .order_by(Conversation.id)
            ).scalars()
        )

    def insert(self, first_id: int, second_id: int) -> Conversation:
        """Insert the conversation row for a pair and flush it.

        Raises ``IntegrityError`` when a concurrent writer already created it.
        """
        low, high = sorted((first_id, second_id))
        conversation = Conversation(participant_a_id=low, participant_b_id=high)
        self.session.add(conversation)
        self.session.flush()
        return conversation

    def delete(self, conversation_id: int) -> int:
        """Delete the conversation row; messages must be removed first."""
        result = self.session.execute(
            delete(Conversation)
            .where(Conversation.id == conversation_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0
