"""Friend-request state machine.

States run ``(none) -> PENDING -> {ACCEPTED, REJECTED}``; an ACCEPTED row is
deleted on unfriend so a later request starts clean. Friendship itself is
derived: two users are friends while an ACCEPTED row links them in either
direction.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from duet_stage.core.errors import ConflictError, NotFoundError
from duet_stage.db.time import utcnow
from duet_stage.models.friend_request import FriendRequest, FriendRequestStatus
from duet_stage.models.user import User
from duet_stage.repositories.block_repo import BlockRepository
from duet_stage.repositories.friend_request_repo import FriendRequestRepository
from duet_stage.repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)


class FriendshipService:
    """Request, accept, reject and unfriend operations over one session.

    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.requests = FriendRequestRepository(db)
        self.users = UserRepository(db)
        self.blocks = BlockRepository(db)

    def send_request(self, sender_id: int, receiver_id: int) -> FriendRequest:
        """Send a friend request, auto-accepting when a reverse request is pending.

        Args:
            sender_id: User sending the request.
            receiver_id: User the request is addressed to.

        Returns:
            The new PENDING request, or the reverse request already flipped to
            ACCEPTED when the two users asked each other.

        Raises:
            ConflictError: Self-request, blocked pair, already friends or a
                duplicate pending request.
            NotFoundError: Either user does not exist.
        """
        if sender_id == receiver_id:
            raise ConflictError("Cannot send friend request to yourself")

        # Serializes opposite-direction sends for the same pair.
        locked = self.users.lock_pair(sender_id, receiver_id)
        if len(locked) != 2:
            raise NotFoundError("User not found")

        if self.blocks.exists_either(sender_id, receiver_id):
            raise ConflictError("Cannot send friend request to this user")
        if self.requests.find_accepted_between(sender_id, receiver_id) is not None:
            raise ConflictError("Already friends")
        if self.requests.find_pending(sender_id, receiver_id) is not None:
            raise ConflictError("Friend request already sent")

        reverse = self.requests.find_pending(receiver_id, sender_id)
        if reverse is not None:
            logger.debug(
                "Crossing friend requests between %s and %s; accepting request %s",
                sender_id,
                receiver_id,
                reverse.id,
            )
            return self._mark_accepted(reverse)

        try:
            with self.db.begin_nested():
                request = self.requests.create(sender_id, receiver_id)
        except IntegrityError as exc:
            raise ConflictError("Friend request already sent") from exc
        logger.debug("Friend request %s created: %s -> %s", request.id, sender_id, receiver_id)
        return request

    def accept_request(self, request_id: int, caller_id: int) -> FriendRequest:
        """Accept a pending request addressed to ``caller_id``."""
        request = self._require_pending_for_receiver(request_id, caller_id)
        if self.blocks.exists_either(request.sender_id, request.receiver_id):
            raise ConflictError("Cannot accept a request from this user")
        self.users.lock_pair(request.sender_id, request.receiver_id)
        if self.requests.find_accepted_between(request.sender_id, request.receiver_id):
            raise ConflictError("Already friends")
        return self._mark_accepted(request)

    def reject_request(self, request_id: int, caller_id: int) -> FriendRequest:
        """Reject a pending request addressed to ``caller_id``."""
        request = self._require_pending_for_receiver(request_id, caller_id)
        request.status = FriendRequestStatus.REJECTED
        request.responded_at = utcnow()
        self.db.flush()
        return request

    def cancel_request(self, request_id: int, caller_id: int) -> FriendRequest:
        """Withdraw a pending request the caller sent.

        The row is deleted; the returned instance is detached from the session.
        """
        request = self.requests.get_by_id(request_id)
        if request is None:
            raise NotFoundError("Friend request not found")
        if request.sender_id != caller_id:
            raise ConflictError("Only the sender can cancel this request")
        if request.status != FriendRequestStatus.PENDING:
            raise ConflictError("Friend request is no longer pending")
        self.requests.delete(request)
        return request

    def unfriend(self, first_id: int, second_id: int) -> bool:
        """Remove the friendship between two users; returns False when there was none."""
        removed = self.requests.delete_accepted_between(first_id, second_id)
        if removed:
            logger.debug("Users %s and %s are no longer friends", first_id, second_id)
        return removed > 0

    def are_friends(self, first_id: int, second_id: int) -> bool:
        """Return True when an ACCEPTED request links the two users."""
        return self.requests.find_accepted_between(first_id, second_id) is not None

    def get_friends(self, user_id: int) -> list[User]:
        """Return the friends of ``user_id``, excluding anyone blocked either way."""
        hidden = self._hidden_ids(user_id)
        friend_ids = [
            request.counterpart(user_id)
            for request in self.requests.list_accepted_for(user_id)
        ]
        visible = [friend_id for friend_id in friend_ids if friend_id not in hidden]
        users = self.users.get_many(visible)
        friends = [users[friend_id] for friend_id in visible if friend_id in users]
        friends.sort(key=lambda user: (user.username.lower(), user.tag))
        return friends

    def get_pending_requests(self, user_id: int) -> list[FriendRequest]:
        """Return incoming PENDING requests, newest first."""
        return self.requests.list_pending_incoming(user_id, self._hidden_ids(user_id))

    def get_outgoing_requests(self, user_id: int) -> list[FriendRequest]:
        """Return PENDING requests the user has sent, newest first."""
        return self.requests.list_pending_outgoing(user_id)

    def get_pending_count(self, user_id: int) -> int:
        """Count incoming PENDING requests, matching :meth:`get_pending_requests`."""
        return self.requests.count_pending_incoming(user_id, self._hidden_ids(user_id))

    def _require_pending_for_receiver(self, request_id: int, caller_id: int) -> FriendRequest:
        request = self.requests.get_by_id(request_id)
        if request is None:
            raise NotFoundError("Friend request not found")
        if request.receiver_id != caller_id:
            raise ConflictError("Only the recipient can respond to this request")
        if request.status != FriendRequestStatus.PENDING:
            raise ConflictError("Friend request is no longer pending")
        return request

    def _mark_accepted(self, request: FriendRequest) -> FriendRequest:
        request.status = FriendRequestStatus.ACCEPTED
        request.responded_at = utcnow()
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise ConflictError("Already friends") from exc
        return request

    def _hidden_ids(self, user_id: int) -> set[int]:
        return set(self.blocks.blocked_ids(user_id)) | set(self.blocks.blocker_ids(user_id))
