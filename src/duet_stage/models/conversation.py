# src/duet_stage/models/conversation.py
"""One-to-one conversations, one row per unordered pair of users."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from duet_stage.db.session import Base
from duet_stage.db.time import utcnow


class Conversation(Base):
    """Conversation between two users.

    Participants are stored sorted (``participant_a_id < participant_b_id``);
    the unique constraint on the pair is what makes concurrent
    find-or-create safe.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("participant_a_id", "participant_b_id", name="uq_conversations_pair"),
        CheckConstraint("participant_a_id < participant_b_id", name="ck_conversations_ordered"),
        Index("ix_conversations_participant_b", "participant_b_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_a_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    participant_b_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    # None = messages never disappear by default.
    disappearing_timer_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def participant_ids(self) -> tuple[int, int]:
        """Return both participant ids."""
        return (self.participant_a_id, self.participant_b_id)

    def has_participant(self, user_id: int) -> bool:
        """Return True when ``user_id`` belongs to this conversation."""
        return user_id in self.participant_ids

    def counterpart(self, user_id: int) -> int:
        """Return the participant that is not ``user_id``."""
        return self.participant_b_id if self.participant_a_id == user_id else self.participant_a_id
