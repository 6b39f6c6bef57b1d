# src/duet_stage/models/friend_request.py
"""Directional friend requests; friendship is derived from ACCEPTED rows."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, text
from sqlalchemy.orm import Mapped, mapped_column

from duet_stage.db.session import Base
from duet_stage.db.time import utcnow


class FriendRequestStatus(str, enum.Enum):
    """Lifecycle of a friend request."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class FriendRequest(Base):
    """A request from ``sender_id`` to ``receiver_id``.

    ``pair_low_id``/``pair_high_id`` hold the same two ids sorted so the
    unordered pair can carry a uniqueness constraint.
    """

    __tablename__ = "friend_requests"
    __table_args__ = (
        # At most one PENDING request per ordered pair.
        Index(
            "uq_friend_requests_pending_direction",
            "sender_id",
            "receiver_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
        # At most one ACCEPTED request per unordered pair.
        Index(
            "uq_friend_requests_accepted_pair",
            "pair_low_id",
            "pair_high_id",
            unique=True,
            sqlite_where=text("status = 'ACCEPTED'"),
            postgresql_where=text("status = 'ACCEPTED'"),
        ),
        Index("ix_friend_requests_receiver_status", "receiver_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    receiver_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    pair_low_id: Mapped[int] = mapped_column(Integer, nullable=False)
    pair_high_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[FriendRequestStatus] = mapped_column(
        Enum(FriendRequestStatus, native_enum=False, length=16),
        nullable=False,
        default=FriendRequestStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def involves(self, user_id: int) -> bool:
        """Return True when ``user_id`` is the sender or the receiver."""
        return user_id in (self.sender_id, self.receiver_id)

    def counterpart(self, user_id: int) -> int:
        """Return the id on the other side of the request."""
        return self.receiver_id if self.sender_id == user_id else self.sender_id
