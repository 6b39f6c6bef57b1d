# tests/v1/test_endpoints.py
"""REST read endpoints."""

from datetime import timedelta

import pytest

from duet_stage.db.time import utcnow
from duet_stage.services.blocking import BlockService
from duet_stage.services.conversations import ConversationService
from duet_stage.services.friendship import FriendshipService
from duet_stage.services.messages import MessageService


@pytest.fixture()
def friends(db_session, alice, bob):
    friendship = FriendshipService(db_session)
    request = friendship.send_request(alice.id, bob.id)
    friendship.accept_request(request.id, bob.id)
    conversation = ConversationService(db_session).find_or_create(alice.id, bob.id)
    db_session.commit()
    return conversation.id


def test_requires_bearer_token(client) -> None:
    assert client.get("/api/v1/friends").status_code in {401, 403}


def test_list_friends(client, auth_headers, friends, alice, bob) -> None:
    response = client.get("/api/v1/friends", headers=auth_headers(alice))

    assert response.status_code == 200
    body = response.json()
    assert [u["id"] for u in body] == [bob.id]
    assert body[0]["handle"] == "bob#2222"
    assert "profilePictureUrl" in body[0]


def test_friend_requests_split_by_direction(client, auth_headers, db_session, alice, bob, carol) -> None:
    friendship = FriendshipService(db_session)
    friendship.send_request(bob.id, alice.id)
    friendship.send_request(alice.id, carol.id)
    db_session.commit()

    body = client.get("/api/v1/friends/requests", headers=auth_headers(alice)).json()

    assert [r["sender"]["id"] for r in body["incoming"]] == [bob.id]
    assert [r["receiver"]["id"] for r in body["outgoing"]] == [carol.id]
    assert body["pendingCount"] == 1


def test_conversations_and_history(client, auth_headers, db_session, friends, alice, bob) -> None:
    messages = MessageService(db_session)
    messages.create("hello", alice.id, friends)
    messages.create("expired", alice.id, friends, expires_at=utcnow() - timedelta(seconds=5))
    db_session.commit()

    conversations = client.get("/api/v1/conversations", headers=auth_headers(bob)).json()
    assert conversations[0]["id"] == friends
    assert conversations[0]["otherUser"]["id"] == alice.id
    assert conversations[0]["lastMessage"]["content"] == "hello"
    assert conversations[0]["unreadCount"] == 1

    history = client.get(
        f"/api/v1/conversations/{friends}/messages", headers=auth_headers(bob)
    ).json()
    assert history["conversationId"] == friends
    assert [m["content"] for m in history["messages"]] == ["hello"]


def test_history_of_foreign_conversation_is_forbidden(client, auth_headers, friends, carol) -> None:
    response = client.get(f"/api/v1/conversations/{friends}/messages", headers=auth_headers(carol))

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "UNAUTHORIZED"


def test_missing_conversation_is_not_found(client, auth_headers, alice) -> None:
    response = client.get("/api/v1/conversations/999/messages", headers=auth_headers(alice))
    assert response.status_code == 404


def test_search_users(client, auth_headers, friends, alice, carol) -> None:
    found = client.get(
        "/api/v1/users/search", params={"handle": "carol#3333"}, headers=auth_headers(alice)
    )
    assert [u["id"] for u in found.json()] == [carol.id]

    friend = client.get(
        "/api/v1/users/search", params={"handle": "bob#2222"}, headers=auth_headers(alice)
    )
    assert friend.json() == []

    invalid = client.get(
        "/api/v1/users/search", params={"handle": "carol"}, headers=auth_headers(alice)
    )
    assert invalid.status_code == 422


def test_blocked_users_and_hidden_conversations(client, auth_headers, db_session, friends, alice, bob) -> None:
    BlockService(db_session).block(alice.id, bob.id)
    db_session.commit()

    blocked = client.get("/api/v1/blocked", headers=auth_headers(alice)).json()
    assert [u["id"] for u in blocked] == [bob.id]
    assert client.get("/api/v1/conversations", headers=auth_headers(bob)).json() == []
    assert client.get("/api/v1/friends", headers=auth_headers(bob)).json() == []
