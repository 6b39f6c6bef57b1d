# tests/services/test_orchestrator.py
"""Event orchestration and fan-out tests."""

import asyncio
from typing import Any

import pytest
from sqlalchemy import func, select

from duet_stage.models import (
    Conversation,
    DeliveryStatus,
    FriendRequest,
    FriendRequestStatus,
    Message,
)
from duet_stage.schemas.events import parse_event

FIRE = "\U0001F525"


class YieldingConnection:
    """Records events and yields to the loop on every send, interleaving handlers."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Any]] = []

    async def send(self, event: str, data: Any) -> None:
        await asyncio.sleep(0)
        self.sent.append((event, data))

    def events(self) -> list[str]:
        return [name for name, _ in self.sent]

    def last(self, event: str) -> Any:
        for name, data in reversed(self.sent):
            if name == event:
                return data
        raise AssertionError(f"{event!r} was never sent; got {self.events()}")


async def send(orchestrator, connection, user, event: str, **fields: Any) -> None:
    await orchestrator.dispatch(connection, user.id, parse_event({"event": event, **fields}))


async def make_friends(orchestrator, connect, first, second):
    first_conn, second_conn = connect(first), connect(second)
    await send(orchestrator, first_conn, first, "sendFriendRequest", recipientId=second.id)
    request_id = second_conn.last("newFriendRequest")["id"]
    await send(orchestrator, second_conn, second, "acceptFriendRequest", requestId=request_id)
    first_conn.clear()
    second_conn.clear()
    return first_conn, second_conn


def _count(db_session, model, *criteria) -> int:
    db_session.expire_all()
    return db_session.execute(select(func.count()).select_from(model).where(*criteria)).scalar()


@pytest.mark.asyncio
async def test_friend_request_notifies_both_sides(orchestrator, connect, alice, bob) -> None:
    alice_conn, bob_conn = connect(alice), connect(bob)

    await send(orchestrator, alice_conn, alice, "sendFriendRequest", recipientId=bob.id)

    sent = alice_conn.last("friendRequestSent")
    assert sent["status"] == "PENDING"
    assert sent["receiver"]["handle"] == "bob#2222"
    assert bob_conn.last("newFriendRequest")["id"] == sent["id"]
    assert bob_conn.last("pendingRequestsCount") == {"count": 1}


@pytest.mark.asyncio
async def test_crossing_requests_become_one_friendship(orchestrator, connect, db_session, alice, bob) -> None:
    alice_conn, bob_conn = connect(alice), connect(bob)

    await send(orchestrator, alice_conn, alice, "sendFriendRequest", recipientId=bob.id)
    await send(orchestrator, bob_conn, bob, "sendFriendRequest", recipientId=alice.id)

    for connection, other in ((alice_conn, bob), (bob_conn, alice)):
        assert connection.last("friendRequestAccepted")["status"] == "ACCEPTED"
        assert [u["id"] for u in connection.last("friendsList")] == [other.id]
        assert len(connection.last("conversationsList")) == 1
        assert connection.last("openConversation")["otherUser"]["id"] == other.id
        assert connection.last("pendingRequestsCount") == {"count": 0}
    assert "error" not in bob_conn.events()
    assert _count(db_session, FriendRequest, FriendRequest.status == FriendRequestStatus.ACCEPTED) == 1
    assert _count(db_session, Conversation) == 1


@pytest.mark.asyncio
async def test_concurrent_crossing_requests_become_one_friendship(
    orchestrator, presence, db_session, alice, bob
) -> None:
    alice_conn, bob_conn = YieldingConnection(), YieldingConnection()
    presence.set(alice.id, alice_conn)
    presence.set(bob.id, bob_conn)

    await asyncio.gather(
        send(orchestrator, alice_conn, alice, "sendFriendRequest", recipientId=bob.id),
        send(orchestrator, bob_conn, bob, "sendFriendRequest", recipientId=alice.id),
    )

    assert _count(db_session, FriendRequest, FriendRequest.status == FriendRequestStatus.ACCEPTED) == 1
    assert _count(db_session, FriendRequest, FriendRequest.status == FriendRequestStatus.PENDING) == 0
    assert _count(db_session, Conversation) == 1
    for connection in (alice_conn, bob_conn):
        assert "error" not in connection.events()
        assert connection.last("friendRequestAccepted")["status"] == "ACCEPTED"


@pytest.mark.asyncio
async def test_duplicate_request_reports_conflict(orchestrator, connect, alice, bob) -> None:
    alice_conn = connect(alice)
    await send(orchestrator, alice_conn, alice, "sendFriendRequest", recipientId=bob.id)

    await send(orchestrator, alice_conn, alice, "sendFriendRequest", recipientId=bob.id)

    assert alice_conn.last("error")["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_rejected_request_can_be_sent_again(orchestrator, connect, alice, bob) -> None:
    alice_conn, bob_conn = connect(alice), connect(bob)
    await send(orchestrator, alice_conn, alice, "sendFriendRequest", recipientId=bob.id)
    request_id = bob_conn.last("newFriendRequest")["id"]

    await send(orchestrator, bob_conn, bob, "rejectFriendRequest", requestId=request_id)
    assert bob_conn.last("friendRequestRejected") == {"requestId": request_id}
    assert bob_conn.last("friendRequestsList") == []

    alice_conn.clear()
    await send(orchestrator, alice_conn, alice, "sendFriendRequest", recipientId=bob.id)
    assert "friendRequestSent" in alice_conn.events()


@pytest.mark.asyncio
async def test_deleting_conversation_unfriends_and_allows_new_request(
    orchestrator, connect, db_session, alice, bob
) -> None:
    alice_conn, bob_conn = await make_friends(orchestrator, connect, alice, bob)
    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="hi")
    conversation_id = alice_conn.last("messageSent")["conversationId"]

    await send(orchestrator, alice_conn, alice, "deleteConversation", conversationId=conversation_id)

    for connection in (alice_conn, bob_conn):
        assert connection.last("conversationDeleted") == {"conversationId": conversation_id}
        assert connection.last("friendsList") == []
        assert connection.last("conversationsList") == []
    assert bob_conn.last("unfriended")["userId"] == alice.id
    assert _count(db_session, Conversation) == 0
    assert _count(db_session, Message) == 0

    alice_conn.clear()
    await send(orchestrator, alice_conn, alice, "sendFriendRequest", recipientId=bob.id)
    assert "friendRequestSent" in alice_conn.events()
    assert "error" not in alice_conn.events()


@pytest.mark.asyncio
async def test_send_message_fans_out_and_echoes_temp_id(orchestrator, connect, alice, bob) -> None:
    alice_conn, bob_conn = await make_friends(orchestrator, connect, alice, bob)

    await send(
        orchestrator, alice_conn, alice, "sendMessage",
        recipientId=bob.id, content="hello", tempId="tmp-1",
    )

    sent = alice_conn.last("messageSent")
    received = bob_conn.last("newMessage")
    assert sent["tempId"] == "tmp-1"
    assert received["tempId"] is None
    assert received["id"] == sent["id"]
    assert received["content"] == "hello"
    assert received["senderUsername"] == "alice"
    assert received["deliveryStatus"] == "SENT"
    assert bob_conn.last("conversationsList")[0]["unreadCount"] == 1


@pytest.mark.asyncio
async def test_offline_recipient_gets_push_notification(
    orchestrator, connect, presence, push_notifier, alice, bob
) -> None:
    alice_conn, bob_conn = await make_friends(orchestrator, connect, alice, bob)
    presence.remove(bob.id, bob_conn)

    await send(orchestrator, alice_conn, alice, "sendPing", recipientId=bob.id)

    assert alice_conn.last("pingSent")["messageType"] == "PING"
    assert bob_conn.sent == []
    assert push_notifier.calls == [(bob.id, "ping")]


@pytest.mark.asyncio
async def test_message_to_stranger_is_rejected_without_side_effects(
    orchestrator, connect, db_session, alice, carol
) -> None:
    alice_conn = connect(alice)

    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=carol.id, content="hey")

    assert alice_conn.last("error")["code"] == "UNAUTHORIZED"
    assert _count(db_session, Message) == 0


@pytest.mark.asyncio
async def test_block_supersedes_friendship(orchestrator, connect, alice, bob) -> None:
    alice_conn, bob_conn = await make_friends(orchestrator, connect, alice, bob)

    await send(orchestrator, bob_conn, bob, "block", userId=alice.id)
    assert bob_conn.last("userBlocked") == {"userId": alice.id}
    assert [u["id"] for u in bob_conn.last("blockedUsersList")] == [alice.id]
    assert alice_conn.last("friendsList") == []
    assert alice_conn.last("conversationsList") == []

    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="hi?")
    assert alice_conn.last("error")["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_failing_push_does_not_undo_mutation(orchestrator, connect, db_session, alice, bob) -> None:
    alice_conn, bob_conn = await make_friends(orchestrator, connect, alice, bob)

    async def broken_send(event: str, data: Any) -> None:
        raise ConnectionResetError("socket closed")

    bob_conn.send = broken_send  # type: ignore[method-assign]

    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="still here")

    assert "error" not in alice_conn.events()
    assert alice_conn.events().count("messageSent") == 1
    assert "conversationsList" in alice_conn.events()
    assert _count(db_session, Message) == 1


@pytest.mark.asyncio
async def test_delivery_receipts_are_monotonic(orchestrator, connect, db_session, alice, bob) -> None:
    alice_conn, bob_conn = await make_friends(orchestrator, connect, alice, bob)
    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="one")
    message = bob_conn.last("newMessage")

    await send(orchestrator, bob_conn, bob, "markConversationRead", conversationId=message["conversationId"])
    read = alice_conn.last("messageDelivered")
    assert read == {
        "conversationId": message["conversationId"],
        "messageIds": [message["id"]],
        "deliveryStatus": "READ",
    }

    await send(orchestrator, bob_conn, bob, "messageDelivered", messageId=message["id"])
    assert alice_conn.last("messageDelivered")["deliveryStatus"] == "READ"
    db_session.expire_all()
    assert db_session.get(Message, message["id"]).delivery_status == DeliveryStatus.READ


@pytest.mark.asyncio
async def test_sender_cannot_acknowledge_own_message(orchestrator, connect, alice, bob) -> None:
    alice_conn, _ = await make_friends(orchestrator, connect, alice, bob)
    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="one")
    message_id = alice_conn.last("messageSent")["id"]

    await send(orchestrator, alice_conn, alice, "messageDelivered", messageId=message_id)

    assert alice_conn.last("error")["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_reactions_are_pushed_to_both_participants(orchestrator, connect, alice, bob) -> None:
    alice_conn, bob_conn = await make_friends(orchestrator, connect, alice, bob)
    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="nice")
    message_id = alice_conn.last("messageSent")["id"]

    await send(orchestrator, bob_conn, bob, "addReaction", messageId=message_id, emoji=FIRE)
    await send(orchestrator, bob_conn, bob, "addReaction", messageId=message_id, emoji=FIRE)

    for connection in (alice_conn, bob_conn):
        assert connection.last("reactionUpdated")["reactions"] == {FIRE: [bob.id]}

    await send(orchestrator, bob_conn, bob, "removeReaction", messageId=message_id, emoji=FIRE)
    assert alice_conn.last("reactionUpdated")["reactions"] == {}


@pytest.mark.asyncio
async def test_hide_versus_delete(orchestrator, connect, alice, bob) -> None:
    alice_conn, bob_conn = await make_friends(orchestrator, connect, alice, bob)
    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="first")
    first = alice_conn.last("messageSent")
    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="second")
    second = alice_conn.last("messageSent")
    conversation_id = first["conversationId"]

    await send(orchestrator, bob_conn, bob, "hideMessage", messageId=first["id"])
    assert bob_conn.last("messageHidden")["messageId"] == first["id"]
    assert "messageHidden" not in alice_conn.events()

    await send(orchestrator, bob_conn, bob, "deleteMessage", messageId=second["id"])
    assert bob_conn.last("error")["code"] == "UNAUTHORIZED"

    await send(orchestrator, alice_conn, alice, "deleteMessage", messageId=second["id"])
    assert bob_conn.last("messageDeleted")["messageId"] == second["id"]

    await send(orchestrator, bob_conn, bob, "getMessages", conversationId=conversation_id)
    await send(orchestrator, alice_conn, alice, "getMessages", conversationId=conversation_id)
    assert bob_conn.last("messageHistory")["messages"] == []
    assert [m["id"] for m in alice_conn.last("messageHistory")["messages"]] == [first["id"]]


@pytest.mark.asyncio
async def test_outsider_cannot_read_history(orchestrator, connect, alice, bob, carol) -> None:
    alice_conn, _ = await make_friends(orchestrator, connect, alice, bob)
    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="private")
    conversation_id = alice_conn.last("messageSent")["conversationId"]
    carol_conn = connect(carol)

    await send(orchestrator, carol_conn, carol, "getMessages", conversationId=conversation_id)

    assert carol_conn.last("error")["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_disappearing_timer_applies_to_new_messages(orchestrator, connect, alice, bob) -> None:
    alice_conn, bob_conn = await make_friends(orchestrator, connect, alice, bob)
    await send(orchestrator, alice_conn, alice, "startConversation", recipientId=bob.id)
    conversation_id = alice_conn.last("openConversation")["id"]

    await send(orchestrator, bob_conn, bob, "setDisappearingTimer", conversationId=conversation_id, seconds=60)
    assert alice_conn.last("disappearingTimerUpdated") == {"conversationId": conversation_id, "seconds": 60}

    await send(orchestrator, alice_conn, alice, "sendMessage", recipientId=bob.id, content="poof")
    assert alice_conn.last("messageSent")["expiresAt"] is not None


@pytest.mark.asyncio
async def test_search_hides_self_friends_and_blocked(orchestrator, connect, alice, bob, carol) -> None:
    alice_conn, _ = await make_friends(orchestrator, connect, alice, bob)

    await send(orchestrator, alice_conn, alice, "searchUsers", handle="carol#3333")
    assert [u["id"] for u in alice_conn.last("searchUsersResult")] == [carol.id]

    await send(orchestrator, alice_conn, alice, "searchUsers", handle="bob#2222")
    assert alice_conn.last("searchUsersResult") == []

    carol_conn = connect(carol)
    await send(orchestrator, carol_conn, carol, "block", userId=alice.id)
    await send(orchestrator, alice_conn, alice, "searchUsers", handle="carol#3333")
    assert alice_conn.last("searchUsersResult") == []
