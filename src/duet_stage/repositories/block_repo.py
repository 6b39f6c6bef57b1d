"""Data access helpers for blocked pairs."""
from __future__ import annotations

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from duet_stage.models.blocked_pair import BlockedPair

__all__ = ["BlockRepository"]


class BlockRepository:
    """Thin wrapper around database access for blocks."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get(self, blocker_id: int, blocked_id: int) -> BlockedPair | None:
        """Return the block row in exactly this direction."""
        return self.session.get(BlockedPair, (blocker_id, blocked_id))

    def create(self, blocker_id: int, blocked_id: int) -> BlockedPair:
        """Insert a block row and flush it."""
        row = BlockedPair(blocker_id=blocker_id, blocked_id=blocked_id)
        self.session.add(row)
        self.session.flush()
        return row

    def delete(self, blocker_id: int, blocked_id: int) -> int:
        """Delete the block row in exactly this direction; return the row count."""
        result = self.session.execute(
            delete(BlockedPair)
            .where(BlockedPair.blocker_id == blocker_id, BlockedPair.blocked_id == blocked_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def exists_either(self, first_id: int, second_id: int) -> bool:
        """Return True when either user has blocked the other."""
        row = self.session.execute(
            select(BlockedPair.blocker_id)
            .where(
                or_(
                    and_(BlockedPair.blocker_id == first_id, BlockedPair.blocked_id == second_id),
                    and_(BlockedPair.blocker_id == second_id, BlockedPair.blocked_id == first_id),
                )
            )
            .limit(1)
        ).first()
        return row is not None

    def blocked_ids(self, blocker_id: int) -> list[int]:
        """Return the ids ``blocker_id`` has blocked, oldest block first."""
        return list(
            self.session.execute(
                select(BlockedPair.blocked_id)
                .where(BlockedPair.blocker_id == blocker_id)
                .order_by(BlockedPair.created_at)
            ).scalars()
        )

    def blocker_ids(self, blocked_id: int) -> list[int]:
        """Return the ids of users who have blocked ``blocked_id``."""
        return list(
            self.session.execute(
                select(BlockedPair.blocker_id).where(BlockedPair.blocked_id == blocked_id)
            ).scalars()
        )
