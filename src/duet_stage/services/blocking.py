"""Block registry and the authorization gate in front of messaging.

A block supersedes friendship: creating one always unfriends the pair, and
while it exists neither side may message, befriend or see the other.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from duet_stage.core.errors import ConflictError, NotFoundError, UnauthorizedError
from duet_stage.models.blocked_pair import BlockedPair
from duet_stage.models.user import User
from duet_stage.repositories.block_repo import BlockRepository
from duet_stage.repositories.user_repo import UserRepository
from duet_stage.services.friendship import FriendshipService

logger = logging.getLogger(__name__)


class BlockService:
    """Block bookkeeping for one session; the caller owns the transaction."""

    def __init__(self, db: Session, friendship: FriendshipService | None = None) -> None:
        self.db = db
        self.blocks = BlockRepository(db)
        self.users = UserRepository(db)
        self.friendship = friendship or FriendshipService(db)

    def block(self, blocker_id: int, blocked_id: int) -> BlockedPair:
        """Block ``blocked_id`` on behalf of ``blocker_id``.

        Idempotent. The pair is unfriended in the same transaction whether or
        not they were friends.
        """
        if blocker_id == blocked_id:
            raise ConflictError("Cannot block yourself")
        if self.users.get_by_id(blocked_id) is None:
            raise NotFoundError("User not found")

        row = self.blocks.get(blocker_id, blocked_id)
        if row is None:
            try:
                with self.db.begin_nested():
                    row = self.blocks.create(blocker_id, blocked_id)
            except IntegrityError:
                # Lost a race with an identical block; the row exists now.
                row = self.blocks.get(blocker_id, blocked_id)
                if row is None:
                    raise
        self.friendship.unfriend(blocker_id, blocked_id)
        logger.debug("User %s blocked user %s", blocker_id, blocked_id)
        return row

    def unblock(self, blocker_id: int, blocked_id: int) -> bool:
        """Remove the block row only; a previous friendship is not restored."""
        if blocker_id == blocked_id:
            raise ConflictError("Cannot unblock yourself")
        return self.blocks.delete(blocker_id, blocked_id) > 0

    def is_blocked(self, blocker_id: int, blocked_id: int) -> bool:
        """Return True when ``blocker_id`` has blocked ``blocked_id``."""
        return self.blocks.get(blocker_id, blocked_id) is not None

    def is_blocked_by_either(self, first_id: int, second_id: int) -> bool:
        """Return True when either user has blocked the other."""
        return self.blocks.exists_either(first_id, second_id)

    def get_blocked_user_ids(self, user_id: int) -> list[int]:
        """Return the ids ``user_id`` has blocked."""
        return self.blocks.blocked_ids(user_id)

    def get_blocked_by_user_ids(self, user_id: int) -> list[int]:
        """Return the ids of users who have blocked ``user_id``."""
        return self.blocks.blocker_ids(user_id)

    def get_blocked_users(self, user_id: int) -> list[User]:
        """Return the users ``user_id`` has blocked, oldest block first."""
        ids = self.get_blocked_user_ids(user_id)
        users = self.users.get_many(ids)
        return [users[blocked_id] for blocked_id in ids if blocked_id in users]

    def hidden_user_ids(self, user_id: int) -> set[int]:
        """Return every user hidden from ``user_id`` because of a block either way."""
        return set(self.get_blocked_user_ids(user_id)) | set(self.get_blocked_by_user_ids(user_id))

    def ensure_can_message(self, sender_id: int, recipient_id: int) -> None:
        """Raise unless ``sender_id`` may message ``recipient_id``."""
        if self.is_blocked_by_either(sender_id, recipient_id):
            raise UnauthorizedError("You cannot message this user")
        if not self.friendship.are_friends(sender_id, recipient_id):
            raise UnauthorizedError("You can only message friends")
