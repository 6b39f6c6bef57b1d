# tests/services/test_conversations.py
"""Conversation resolver tests."""

import pytest
from sqlalchemy import func, select

from duet_stage.core.errors import NotFoundError, UnauthorizedError, ValidationFailedError
from duet_stage.models import Conversation, Message, MessageHide, MessageReaction
from duet_stage.repositories.conversation_repo import ConversationRepository
from duet_stage.services.conversations import ConversationService


def _conversation_count(db_session) -> int:
    return db_session.execute(select(func.count()).select_from(Conversation)).scalar()


def test_find_or_create_is_order_independent(db_session, alice, bob) -> None:
    service = ConversationService(db_session)

    ids = {
        service.find_or_create(alice.id, bob.id).id,
        service.find_or_create(bob.id, alice.id).id,
        service.find_or_create(alice.id, bob.id).id,
    }

    assert len(ids) == 1
    assert _conversation_count(db_session) == 1
    conversation = service.find_by_users(bob.id, alice.id)
    assert conversation.participant_a_id < conversation.participant_b_id


def test_lost_insert_race_returns_existing_row(db_session, alice, bob, mocker) -> None:
    service = ConversationService(db_session)
    existing = service.find_or_create(alice.id, bob.id)
    db_session.commit()

    original = ConversationRepository.find_by_pair
    calls = {"n": 0}

    def stale_first_lookup(self, first_id, second_id):
        calls["n"] += 1
        if calls["n"] == 1:
            # Simulate a concurrent writer committing between lookup and insert.
            return None
        return original(self, first_id, second_id)

    mocker.patch.object(ConversationRepository, "find_by_pair", stale_first_lookup)

    resolved = service.find_or_create(bob.id, alice.id)

    assert resolved.id == existing.id
    assert calls["n"] == 2
    assert _conversation_count(db_session) == 1


def test_conversation_needs_two_users(db_session, alice) -> None:
    with pytest.raises(ValidationFailedError):
        ConversationService(db_session).find_or_create(alice.id, alice.id)


def test_require_participant(db_session, alice, bob, carol) -> None:
    service = ConversationService(db_session)
    conversation = service.find_or_create(alice.id, bob.id)

    assert service.require_participant(conversation.id, bob.id).id == conversation.id
    assert service.counterpart(conversation, bob.id) == alice.id
    with pytest.raises(UnauthorizedError):
        service.require_participant(conversation.id, carol.id)
    with pytest.raises(NotFoundError):
        service.require_participant(conversation.id + 1, alice.id)


def test_find_by_user_lists_only_own_conversations(db_session, alice, bob, carol) -> None:
    service = ConversationService(db_session)
    ab = service.find_or_create(alice.id, bob.id)
    bc = service.find_or_create(bob.id, carol.id)

    assert [c.id for c in service.find_by_user(alice.id)] == [ab.id]
    assert {c.id for c in service.find_by_user(bob.id)} == {ab.id, bc.id}


def test_delete_cascades_to_messages_hides_and_reactions(db_session, alice, bob) -> None:
    service = ConversationService(db_session)
    conversation = service.find_or_create(alice.id, bob.id)
    message = Message(conversation_id=conversation.id, sender_id=alice.id, content="hi")
    db_session.add(message)
    db_session.flush()
    db_session.add(MessageHide(message_id=message.id, user_id=bob.id))
    db_session.add(MessageReaction(message_id=message.id, user_id=bob.id, emoji="\U0001F525"))
    db_session.flush()

    assert service.delete(conversation.id) is True

    assert _conversation_count(db_session) == 0
    assert db_session.execute(select(func.count()).select_from(Message)).scalar() == 0
    assert db_session.execute(select(func.count()).select_from(MessageHide)).scalar() == 0
    assert db_session.execute(select(func.count()).select_from(MessageReaction)).scalar() == 0
    assert service.delete(conversation.id) is False


def test_disappearing_timer(db_session, alice, bob) -> None:
    service = ConversationService(db_session)
    conversation = service.find_or_create(alice.id, bob.id)

    assert service.set_disappearing_timer(conversation.id, 3600).disappearing_timer_seconds == 3600
    assert service.set_disappearing_timer(conversation.id, None).disappearing_timer_seconds is None
    with pytest.raises(ValidationFailedError):
        service.set_disappearing_timer(conversation.id, 0)
