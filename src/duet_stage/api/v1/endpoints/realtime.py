"""WebSocket transport for real-time chat events."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from duet_stage.core.errors import ValidationFailedError
from duet_stage.core.security import InvalidTokenError, decode_user_id
from duet_stage.repositories.user_repo import UserRepository
from duet_stage.schemas.events import parse_event
from duet_stage.services.orchestrator import EventOrchestrator
from duet_stage.services.presence import PresenceRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


class WebSocketConnection:
    """Connection handle that frames outbound events as ``{"event", "data"}``."""

    def __init__(self, websocket: WebSocket, user_id: int) -> None:
        self.websocket = websocket
        self.user_id = user_id

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": data})


def _token_from(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


@router.websocket("/ws")
async def realtime(websocket: WebSocket) -> None:
    """Authenticate, register presence, then dispatch every frame to the orchestrator."""
    presence: PresenceRegistry = websocket.app.state.presence
    orchestrator: EventOrchestrator = websocket.app.state.orchestrator

    token = _token_from(websocket)
    try:
        if token is None:
            raise InvalidTokenError("Missing token")
        user_id = decode_user_id(token)
    except InvalidTokenError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    with orchestrator.session_factory() as db:
        user = UserRepository(db).get_by_id(user_id)
    if user is None:
        logger.info("Rejected connection for unknown user %s", user_id)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket, user_id)
    presence.set(user_id, connection)
    logger.debug("User %s connected", user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                event = parse_event(json.loads(raw))
            except json.JSONDecodeError:
                await connection.send(
                    "error", ValidationFailedError("Frame is not valid JSON").to_event()
                )
                continue
            except ValidationFailedError as exc:
                await connection.send("error", exc.to_event())
                continue
            await orchestrator.dispatch(connection, user_id, event)
    except WebSocketDisconnect:
        logger.debug("User %s disconnected", user_id)
    finally:
        presence.remove(user_id, connection)
