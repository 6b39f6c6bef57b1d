# src/duet_stage/models/user.py
"""SQLAlchemy model for user identities.

Accounts are created and owned by the identity subsystem; the chat core only
reads them to resolve ids and handles.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from duet_stage.db.session import Base
from duet_stage.db.time import utcnow


class User(Base):
    """Account identity addressed by a ``username#tag`` handle."""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("username", "tag", name="uq_users_handle"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(20), nullable=False)
    tag: Mapped[str] = mapped_column(String(4), nullable=False, default="0000")
    profile_picture_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def handle(self) -> str:
        """Return the public ``username#tag`` handle."""
        return f"{self.username}#{self.tag}"
