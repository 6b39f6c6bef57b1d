"""Data access helpers for user identities."""
from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from duet_stage.models.user import User

__all__ = ["UserRepository"]


class UserRepository:
    """Read-only access to accounts owned by the identity subsystem."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_by_id(self, user_id: int) -> User | None:
        """Return a user by identifier."""
        return self.session.get(User, user_id)

    def get_by_handle(self, username: str, tag: str) -> User | None:
        """Return the user owning ``username#tag``."""
        return self.session.execute(
            select(User).where(User.username == username, User.tag == tag)
        ).scalars().first()

    def get_many(self, user_ids: Iterable[int]) -> dict[int, User]:
        """Return the users for ``user_ids`` keyed by id; unknown ids are skipped."""
        ids = set(user_ids)
        if not ids:
            return {}
        rows = self.session.execute(select(User).where(User.id.in_(ids))).scalars()
        return {user.id: user for user in rows}

    def lock_pair(self, first_id: int, second_id: int) -> list[User]:
        """Lock both user rows for the rest of the transaction.

        Rows are locked in ascending id order so two transactions touching
        the same pair from opposite directions cannot deadlock. Backends
        without row locks (SQLite) ignore ``FOR UPDATE`` and serialize
        writers at the database level instead.
        """
        return list(
            self.session.execute(
                select(User)
                .where(User.id.in_({first_id, second_id}))
                .order_by(User.id)
                .with_for_update()
            ).scalars()
        )
