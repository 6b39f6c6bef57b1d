"""Conversation and message history endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query

from duet_stage.core.errors import DuetError
from duet_stage.core.settings import settings
from duet_stage.schemas.payloads import ConversationPayload, MessageHistoryPayload
from duet_stage.services.conversations import ConversationService
from duet_stage.services.messages import MessageService

from ..dependencies import CurrentUserDep, SessionDep, ViewsDep, as_http_error

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationPayload], response_model_by_alias=True)
async def list_conversations(
    current_user: CurrentUserDep, views: ViewsDep
) -> list[ConversationPayload]:
    """Return the caller's conversations, most recently active first."""
    return views.conversations_for(current_user.id)


@router.get(
    "/{conversation_id}/messages",
    response_model=MessageHistoryPayload,
    response_model_by_alias=True,
)
async def get_conversation_messages(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    views: ViewsDep,
    limit: int = Query(
        settings.message_history_default_limit,
        ge=1,
        le=settings.message_history_max_limit,
    ),
    offset: int = Query(0, ge=0),
) -> MessageHistoryPayload:
    """Return a page of visible messages, oldest first."""
    try:
        ConversationService(db).require_participant(conversation_id, current_user.id)
    except DuetError as exc:
        raise as_http_error(exc) from exc
    messages = MessageService(db).find_by_conversation(
        conversation_id, current_user.id, limit=limit, offset=offset
    )
    return MessageHistoryPayload(
        conversation_id=conversation_id,
        messages=views.message_list(messages, current_user.id),
    )
