"""SQLAlchemy models for the Duet Stage service."""

from .blocked_pair import BlockedPair
from .conversation import Conversation
from .friend_request import FriendRequest, FriendRequestStatus
from .message import DeliveryStatus, Message, MessageHide, MessageReaction, MessageType
from .user import User

__all__ = [
    "BlockedPair",
    "Conversation",
    "FriendRequest", "FriendRequestStatus",
    "DeliveryStatus", "Message", "MessageHide", "MessageReaction", "MessageType",
    "User",
]
