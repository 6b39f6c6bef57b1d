"""Friend list and friend request endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from duet_stage.schemas.payloads import FriendRequestPayload, UserPayload

from ..dependencies import CurrentUserDep, ViewsDep

router = APIRouter(prefix="/friends", tags=["friends"])


@router.get("", response_model=list[UserPayload], response_model_by_alias=True)
async def list_friends(current_user: CurrentUserDep, views: ViewsDep) -> list[UserPayload]:
    """Return the caller's friends, excluding blocked users."""
    return views.friends(current_user.id)


@router.get("/requests")
async def list_friend_requests(current_user: CurrentUserDep, views: ViewsDep) -> dict[str, object]:
    """Return pending requests the caller received and sent."""
    incoming: list[FriendRequestPayload] = views.pending_requests(current_user.id)
    outgoing: list[FriendRequestPayload] = views.outgoing_requests(current_user.id)
    return {
        "incoming": [request.dump() for request in incoming],
        "outgoing": [request.dump() for request in outgoing],
        "pendingCount": views.pending_count(current_user.id),
    }
