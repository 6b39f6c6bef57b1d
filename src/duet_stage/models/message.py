# src/duet_stage/models/message.py
"""Messages plus their per-viewer hide rows and per-user reactions."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from duet_stage.db.session import Base
from duet_stage.db.time import utcnow


class DeliveryStatus(str, enum.Enum):
    """Delivery progress of a message; see ``services.delivery`` for the order."""

    SENDING = "SENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"


class MessageType(str, enum.Enum):
    """Kinds of message content."""

    TEXT = "TEXT"
    PING = "PING"
    IMAGE = "IMAGE"
    DRAWING = "DRAWING"
    VOICE = "VOICE"


class Message(Base):
    """A message inside a conversation."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        Index("ix_messages_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    message_type: Mapped[MessageType] = mapped_column(
        Enum(MessageType, native_enum=False, length=16),
        nullable=False,
        default=MessageType.TEXT,
    )
    media_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    media_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, native_enum=False, length=16),
        nullable=False,
        default=DeliveryStatus.SENT,
    )
    # Messages past this instant are invisible on every read path.
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reply_to_message_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("messages.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class MessageHide(Base):
    """A user who chose "delete for me" on a message."""

    __tablename__ = "message_hides"

    message_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )


class MessageReaction(Base):
    """The single active emoji a user has on a message.

    The composite primary key is what limits a user to one emoji per message.
    """

    __tablename__ = "message_reactions"

    message_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    emoji: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
