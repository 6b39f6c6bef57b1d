"""Blocked user endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from duet_stage.schemas.payloads import UserPayload

from ..dependencies import CurrentUserDep, ViewsDep

router = APIRouter(prefix="/blocked", tags=["blocked"])


@router.get("", response_model=list[UserPayload], response_model_by_alias=True)
async def list_blocked_users(current_user: CurrentUserDep, views: ViewsDep) -> list[UserPayload]:
    """Return the users the caller has blocked."""
    return views.blocked_users(current_user.id)
