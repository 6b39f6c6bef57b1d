"""Data access helpers for friend requests."""
from __future__ import annotations

from collections.abc import Collection

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.orm import Session

from duet_stage.models.friend_request import FriendRequest, FriendRequestStatus

__all__ = ["FriendRequestRepository"]


def _between(first_id: int, second_id: int):
    """Match rows linking the two users in either direction."""
    low, high = sorted((first_id, second_id))
    return and_(FriendRequest.pair_low_id == low, FriendRequest.pair_high_id == high)


class FriendRequestRepository:
    """Thin wrapper around database access for friend requests."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_by_id(self, request_id: int) -> FriendRequest | None:
        """Return a friend request by identifier."""
        return self.session.get(FriendRequest, request_id)

    def find_accepted_between(self, first_id: int, second_id: int) -> FriendRequest | None:
        """Return the ACCEPTED request linking the two users, if any."""
        return self.session.execute(
            select(FriendRequest).where(
                _between(first_id, second_id),
                FriendRequest.status == FriendRequestStatus.ACCEPTED,
            )
        ).scalars().first()

    def find_pending(self, sender_id: int, receiver_id: int) -> FriendRequest | None:
        """Return the PENDING request in exactly this direction, if any."""
        return self.session.execute(
            select(FriendRequest).where(
                FriendRequest.sender_id == sender_id,
                FriendRequest.receiver_id == receiver_id,
                FriendRequest.status == FriendRequestStatus.PENDING,
            )
        ).scalars().first()

    def create(self, sender_id: int, receiver_id: int) -> FriendRequest:
        """Insert a new PENDING request and flush it."""
        low, high = sorted((sender_id, receiver_id))
        request = FriendRequest(
            sender_id=sender_id,
            receiver_id=receiver_id,
            pair_low_id=low,
            pair_high_id=high,
            status=FriendRequestStatus.PENDING,
        )
        self.session.add(request)
        self.session.flush()
        return request

    def list_accepted_for(self, user_id: int) -> list[FriendRequest]:
        """Return every ACCEPTED request touching ``user_id``."""
        return list(
            self.session.execute(
                select(FriendRequest)
                .where(
                    or_(FriendRequest.sender_id == user_id, FriendRequest.receiver_id == user_id),
                    FriendRequest.status == FriendRequestStatus.ACCEPTED,
                )
                .order_by(FriendRequest.id)
            ).scalars()
        )

    def list_pending_incoming(
        self, user_id: int, exclude_sender_ids: Collection[int] = ()
    ) -> list[FriendRequest]:
        """Return PENDING requests addressed to ``user_id``, newest first."""
        stmt = select(FriendRequest).where(
            FriendRequest.receiver_id == user_id,
            FriendRequest.status == FriendRequestStatus.PENDING,
        )
        if exclude_sender_ids:
            stmt = stmt.where(FriendRequest.sender_id.not_in(exclude_sender_ids))
        stmt = stmt.order_by(FriendRequest.created_at.desc(), FriendRequest.id.desc())
        return list(self.session.execute(stmt).scalars())

    def list_pending_outgoing(self, user_id: int) -> list[FriendRequest]:
        """Return PENDING requests sent by ``user_id``, newest first."""
        return list(
            self.session.execute(
                select(FriendRequest)
                .where(
                    FriendRequest.sender_id == user_id,
                    FriendRequest.status == FriendRequestStatus.PENDING,
                )
                .order_by(FriendRequest.created_at.desc(), FriendRequest.id.desc())
            ).scalars()
        )

    def count_pending_incoming(self, user_id: int, exclude_sender_ids: Collection[int] = ()) -> int:
        """Count PENDING requests addressed to ``user_id``."""
        stmt = select(func.count()).select_from(FriendRequest).where(
            FriendRequest.receiver_id == user_id,
            FriendRequest.status == FriendRequestStatus.PENDING,
        )
        if exclude_sender_ids:
            stmt = stmt.where(FriendRequest.sender_id.not_in(exclude_sender_ids))
        return self.session.execute(stmt).scalar() or 0

    def delete_accepted_between(self, first_id: int, second_id: int) -> int:
        """Delete the ACCEPTED request(s) linking the two users; return the row count."""
        result = self.session.execute(
            delete(FriendRequest)
            .where(
                _between(first_id, second_id),
                FriendRequest.status == FriendRequestStatus.ACCEPTED,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def delete(self, request: FriendRequest) -> None:
        """Remove a single request."""
        self.session.delete(request)
        self.session.flush()
