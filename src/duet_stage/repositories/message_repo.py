"""Data access helpers for messages, hides and reactions."""
from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from duet_stage.models.message import DeliveryStatus, Message, MessageHide, MessageReaction

__all__ = ["MessageRepository"]


def _visible_to(viewer_id: int, now: datetime):
    """Criteria hiding expired messages and messages the viewer deleted for themselves."""
    hidden = select(MessageHide.message_id).where(MessageHide.user_id == viewer_id)
    return (
        or_(Message.expires_at.is_(None), Message.expires_at > now),
        Message.id.not_in(hidden),
    )


class MessageRepository:
    """Thin wrapper around database access for messages."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_by_id(self, message_id: int) -> Message | None:
        """Return a message by identifier."""
        return self.session.get(Message, message_id)

    def add(self, message: Message) -> Message:
        """Persist a new message and flush it."""
        self.session.add(message)
        self.session.flush()
        return message

    def list_visible(
        self,
        conversation_id: int,
        viewer_id: int,
        now: datetime,
        limit: int,
        before_id: int | None = None,
    ) -> list[Message]:
        """Return the newest ``limit`` visible messages in chronological order."""
        stmt = select(Message).where(
            Message.conversation_id == conversation_id,
            *_visible_to(viewer_id, now),
        )
        if before_id is not None:
            stmt = stmt.where(Message.id < before_id)
        stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
        rows = list(self.session.execute(stmt).scalars())
        rows.reverse()
        return rows

    def last_visible(self, conversation_id: int, viewer_id: int, now: datetime) -> Message | None:
        """Return the newest message ``viewer_id`` can still see."""
        return self.session.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id, *_visible_to(viewer_id, now))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        ).scalars().first()

    def count_unread(self, conversation_id: int, viewer_id: int, now: datetime) -> int:
        """Count visible messages from the counterpart that are not READ yet."""
        return self.session.execute(
            select(func.count())
            .select_from(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_id != viewer_id,
                Message.delivery_status != DeliveryStatus.READ,
                *_visible_to(viewer_id, now),
            )
        ).scalar() or 0

    def advance_status(
        self,
        message_id: int,
        new_status: DeliveryStatus,
        lower_statuses: Collection[DeliveryStatus],
    ) -> bool:
        """Move a message to ``new_status`` only if it currently sits below it.

        The guard lives in the UPDATE itself so racing writers can never move
        a status backwards. Returns True when a row changed.
        """
        result = self.session.execute(
            update(Message)
            .where(Message.id == message_id, Message.delivery_status.in_(list(lower_statuses)))
            .values(delivery_status=new_status)
            .execution_options(synchronize_session="fetch")
        )
        return bool(result.rowcount)

    def unread_ids_from(self, conversation_id: int, sender_id: int, now: datetime) -> list[int]:
        """Return ids of non-expired, not-yet-READ messages sent by ``sender_id``."""
        return list(
            self.session.execute(
                select(Message.id)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.sender_id == sender_id,
                    Message.delivery_status != DeliveryStatus.READ,
                    or_(Message.expires_at.is_(None), Message.expires_at > now),
                )
                .order_by(Message.id)
            ).scalars()
        )

    def bulk_mark_read(self, message_ids: Sequence[int]) -> int:
        """Set READ on ``message_ids`` in a single statement."""
        if not message_ids:
            return 0
        result = self.session.execute(
            update(Message)
            .where(Message.id.in_(list(message_ids)), Message.delivery_status != DeliveryStatus.READ)
            .values(delivery_status=DeliveryStatus.READ)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def get_hide(self, message_id: int, user_id: int) -> MessageHide | None:
        """Return the hide row for a viewer, if any."""
        return self.session.get(MessageHide, (message_id, user_id))

    def add_hide(self, message_id: int, user_id: int) -> MessageHide:
        """Insert a hide row and flush it."""
        row = MessageHide(message_id=message_id, user_id=user_id)
        self.session.add(row)
        self.session.flush()
        return row

    def hide_all_visible(self, conversation_id: int, user_id: int, now: datetime) -> int:
        """Hide every message ``user_id`` can currently see in the conversation."""
        ids = list(
            self.session.execute(
                select(Message.id).where(
                    Message.conversation_id == conversation_id,
                    *_visible_to(user_id, now),
                )
            ).scalars()
        )
        for message_id in ids:
            self.session.add(MessageHide(message_id=message_id, user_id=user_id))
        self.session.flush()
        return len(ids)

    def get_reaction(self, message_id: int, user_id: int) -> MessageReaction | None:
        """Return the reaction a user left on a message, if any."""
        return self.session.get(MessageReaction, (message_id, user_id))

    def upsert_reaction(self, message_id: int, user_id: int, emoji: str) -> MessageReaction:
        """Set the user's single reaction on a message, replacing any previous emoji."""
        row = self.get_reaction(message_id, user_id)
        if row is None:
            row = MessageReaction(message_id=message_id, user_id=user_id, emoji=emoji)
            self.session.add(row)
        else:
            row.emoji = emoji
        self.session.flush()
        return row

    def delete_reaction(self, row: MessageReaction) -> None:
        """Remove a reaction row."""
        self.session.delete(row)
        self.session.flush()

    def reactions_for(self, message_ids: Collection[int]) -> dict[int, list[MessageReaction]]:
        """Return reactions keyed by message id, oldest first."""
        if not message_ids:
            return {}
        rows = self.session.execute(
            select(MessageReaction)
            .where(MessageReaction.message_id.in_(list(message_ids)))
            .order_by(MessageReaction.created_at, MessageReaction.user_id)
        ).scalars()
        grouped: dict[int, list[MessageReaction]] = {}
        for row in rows:
            grouped.setdefault(row.message_id, []).append(row)
        return grouped

    def get_many_visible(
        self, message_ids: Collection[int], viewer_id: int, now: datetime
    ) -> dict[int, Message]:
        """Return the messages among ``message_ids`` that ``viewer_id`` can still see."""
        if not message_ids:
            return {}
        rows = self.session.execute(
            select(Message).where(Message.id.in_(list(message_ids)), *_visible_to(viewer_id, now))
        ).scalars()
        return {row.id: row for row in rows}

    def _delete_ids(self, message_ids: list[int]) -> int:
        if not message_ids:
            return 0
        # Dependents first; SQLite does not enforce ON DELETE without a pragma.
        self.session.execute(
            update(Message)
            .where(Message.reply_to_message_id.in_(message_ids))
            .values(reply_to_message_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.session.execute(
            delete(MessageHide)
            .where(MessageHide.message_id.in_(message_ids))
            .execution_options(synchronize_session="fetch")
        )
        self.session.execute(
            delete(MessageReaction)
            .where(MessageReaction.message_id.in_(message_ids))
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(
            delete(Message)
            .where(Message.id.in_(message_ids))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def delete(self, message_id: int) -> int:
        """Remove a message for everyone, together with its hides and reactions."""
        return self._delete_ids([message_id])

    def delete_by_conversation(self, conversation_id: int) -> int:
        """Remove every message in a conversation."""
        ids = list(
            self.session.execute(
                select(Message.id).where(Message.conversation_id == conversation_id)
            ).scalars()
        )
        return self._delete_ids(ids)

    def delete_expired(self, now: datetime, batch_size: int = 500) -> int:
        """Remove up to ``batch_size`` messages whose expiry has passed."""
        ids = list(
            self.session.execute(
                select(Message.id)
                .where(Message.expires_at.is_not(None), Message.expires_at <= now)
                .order_by(Message.expires_at)
                .limit(batch_size)
            ).scalars()
        )
        return self._delete_ids(ids)
