"""User lookup endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query

from duet_stage.core.errors import DuetError
from duet_stage.schemas.events import HANDLE_PATTERN
from duet_stage.schemas.payloads import UserPayload

from ..dependencies import CurrentUserDep, ViewsDep, as_http_error

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/search", response_model=list[UserPayload], response_model_by_alias=True)
async def search_users(
    current_user: CurrentUserDep,
    views: ViewsDep,
    handle: str = Query(..., pattern=HANDLE_PATTERN, description="username#tag"),
) -> list[UserPayload]:
    """Find a user by exact handle; the caller, friends and blocked users are omitted."""
    try:
        return views.search_users(current_user.id, handle)
    except DuetError as exc:
        raise as_http_error(exc) from exc
