# src/duet_stage/models/blocked_pair.py
"""Directional blocks between users."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from duet_stage.db.session import Base
from duet_stage.db.time import utcnow


class BlockedPair(Base):
    """``blocker_id`` has blocked ``blocked_id``.

    A row vetoes messaging and visibility in both directions and outranks any
    accepted friend request.
    """

    __tablename__ = "blocked_pairs"
    __table_args__ = (Index("ix_blocked_pairs_blocked", "blocked_id"),)

    # Composite primary key makes block() an idempotent insert.
    blocker_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    blocked_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
