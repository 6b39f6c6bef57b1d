# tests/services/test_blocking.py
"""Block registry and messaging gate tests."""

import pytest

from duet_stage.core.errors import ConflictError, NotFoundError, UnauthorizedError
from duet_stage.services.blocking import BlockService
from duet_stage.services.friendship import FriendshipService


def _befriend(db_session, first, second) -> None:
    friendship = FriendshipService(db_session)
    request = friendship.send_request(first.id, second.id)
    friendship.accept_request(request.id, second.id)


def test_block_supersedes_friendship(db_session, alice, bob) -> None:
    _befriend(db_session, alice, bob)
    service = BlockService(db_session)
    service.ensure_can_message(alice.id, bob.id)

    service.block(alice.id, bob.id)

    assert not service.friendship.are_friends(alice.id, bob.id)
    with pytest.raises(UnauthorizedError, match="cannot message"):
        service.ensure_can_message(alice.id, bob.id)
    with pytest.raises(UnauthorizedError):
        service.ensure_can_message(bob.id, alice.id)


def test_block_is_idempotent_and_directional(db_session, alice, bob) -> None:
    service = BlockService(db_session)
    first = service.block(alice.id, bob.id)
    second = service.block(alice.id, bob.id)

    assert (first.blocker_id, first.blocked_id) == (second.blocker_id, second.blocked_id)
    assert service.is_blocked(alice.id, bob.id)
    assert not service.is_blocked(bob.id, alice.id)
    assert service.is_blocked_by_either(bob.id, alice.id)
    assert service.get_blocked_user_ids(alice.id) == [bob.id]
    assert service.get_blocked_by_user_ids(bob.id) == [alice.id]
    assert service.hidden_user_ids(bob.id) == {alice.id}


def test_cannot_block_yourself_or_unknown_users(db_session, alice) -> None:
    service = BlockService(db_session)
    with pytest.raises(ConflictError):
        service.block(alice.id, alice.id)
    with pytest.raises(NotFoundError):
        service.block(alice.id, 4242)


def test_unblock_does_not_restore_friendship(db_session, alice, bob) -> None:
    _befriend(db_session, alice, bob)
    service = BlockService(db_session)
    service.block(bob.id, alice.id)

    assert service.unblock(bob.id, alice.id) is True
    assert service.unblock(bob.id, alice.id) is False

    assert not service.is_blocked_by_either(alice.id, bob.id)
    with pytest.raises(UnauthorizedError, match="only message friends"):
        service.ensure_can_message(alice.id, bob.id)


def test_strangers_cannot_message(db_session, alice, carol) -> None:
    with pytest.raises(UnauthorizedError):
        BlockService(db_session).ensure_can_message(alice.id, carol.id)
