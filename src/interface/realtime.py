"""WebSocket endpoint for live events.

Frames are JSON objects ``{"event": "<name>", "data": {...}}`` in both
directions. The handshake is authenticated before the socket is accepted.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field, ValidationError
from starlette.websockets import WebSocketState

from src.core.errors import ErrorKind, PermissionDeniedError, QuestlineError, UnauthenticatedError
from src.domain.message import MAX_MESSAGE_LENGTH
from src.domain.task import Target, TargetKind
from src.domain.user import Identity, PresenceStatus
from src.interface.deps import extract_token
from src.services import auth_service, membership_service, message_service, presence_service, realtime_hub
from src.services.realtime_hub import ConnectionClosedError, conversation_room, user_room


router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the hub's connection interface."""

    def __init__(self, websocket: WebSocket, identity: Identity) -> None:
        self.id = uuid.uuid4().hex
        self.user_id = identity.id
        self.identity = identity
        self.websocket = websocket

    async def send(self, event: str, data: dict[str, Any]) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise ConnectionClosedError(self.id)
        try:
            await self.websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError) as e:
            raise ConnectionClosedError(self.id) from e


class Frame(BaseModel):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class SendPayload(BaseModel):
    conversationId: str  # noqa: N815
    content: str = Field(default="", max_length=MAX_MESSAGE_LENGTH)
    imageUrl: str | None = None  # noqa: N815


class TypingPayload(BaseModel):
    conversationId: str  # noqa: N815
    isTyping: bool  # noqa: N815


class ReadPayload(BaseModel):
    conversationId: str  # noqa: N815


class PresencePayload(BaseModel):
    status: PresenceStatus


class RoomPayload(BaseModel):
    roomId: str  # noqa: N815


async def _on_message_send(connection: WebSocketConnection, data: dict[str, Any]) -> None:
    payload = SendPayload.model_validate(data)
    await message_service.send_message(
        sender=connection.identity,
        conversation_id=payload.conversationId,
        content=payload.content,
        image_url=payload.imageUrl,
    )


async def _on_message_typing(connection: WebSocketConnection, data: dict[str, Any]) -> None:
    payload = TypingPayload.model_validate(data)
    await message_service.relay_typing(
        conversation_id=payload.conversationId,
        user_id=connection.user_id,
        is_typing=payload.isTyping,
        connection_id=connection.id,
    )


async def _on_message_read(connection: WebSocketConnection, data: dict[str, Any]) -> None:
    payload = ReadPayload.model_validate(data)
    await message_service.mark_read(conversation_id=payload.conversationId, user_id=connection.user_id)


async def _on_presence_update(connection: WebSocketConnection, data: dict[str, Any]) -> None:
    payload = PresencePayload.model_validate(data)
    await presence_service.update_status(user_id=connection.user_id, status=payload.status)


async def can_join_room(*, user_id: str, room: str) -> bool:
    """Room access: own personal room, member squads/communities, participant conversations."""
    kind, _, room_id = room.partition(":")
    if not room_id:
        return False
    if room == user_room(user_id):
        return True
    if room == conversation_room(room_id):
        return await message_service.is_participant(conversation_id=room_id, user_id=user_id)
    if kind in (TargetKind.SQUAD, TargetKind.COMMUNITY):
        target = Target(kind=TargetKind(kind), id=room_id)
        return await membership_service.get_role(user_id=user_id, target=target) is not None
    return False


async def _on_room_join(connection: WebSocketConnection, data: dict[str, Any]) -> None:
    payload = RoomPayload.model_validate(data)
    if not await can_join_room(user_id=connection.user_id, room=payload.roomId):
        raise PermissionDeniedError("Cannot join this room")
    realtime_hub.hub.join(connection.id, payload.roomId)
    await connection.send("room:joined", {"roomId": payload.roomId})


async def _on_room_leave(connection: WebSocketConnection, data: dict[str, Any]) -> None:
    payload = RoomPayload.model_validate(data)
    realtime_hub.hub.leave(connection.id, payload.roomId)


Handler = Callable[[WebSocketConnection, dict[str, Any]], Awaitable[None]]

HANDLERS: dict[str, Handler] = {
    "message:send": _on_message_send,
    "message:typing": _on_message_typing,
    "message:read": _on_message_read,
    "presence:update": _on_presence_update,
    "room:join": _on_room_join,
    "room:leave": _on_room_leave,
}


async def _send_error(connection: WebSocketConnection, kind: str, message: str) -> None:
    try:
        await connection.send("error", {"kind": kind, "message": message})
    except ConnectionClosedError:
        logger.debug("Could not deliver error event", extra={"connection_id": connection.id})


async def dispatch(connection: WebSocketConnection, raw: Any) -> None:  # noqa: ANN401
    """Route one client frame; failures become ``error`` events and the socket stays open."""
    try:
        frame = Frame.model_validate(raw)
    except ValidationError:
        await _send_error(connection, ErrorKind.VALIDATION_FAILED, "Malformed event")
        return

    handler = HANDLERS.get(frame.event)
    if handler is None:
        await _send_error(connection, ErrorKind.VALIDATION_FAILED, f"Unknown event: {frame.event}")
        return

    try:
        await handler(connection, frame.data)
    except ValidationError as e:
        await _send_error(connection, ErrorKind.VALIDATION_FAILED, f"Invalid {frame.event} payload: {e.errors()[0]['msg']}")
    except QuestlineError as e:
        await _send_error(connection, e.kind, e.message)
    except Exception:
        logger.exception("Unhandled error in socket event", extra={"event": frame.event, "user_id": connection.user_id})
        await _send_error(connection, ErrorKind.INTERNAL, "Internal server error")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    try:
        identity = await auth_service.verify_token(extract_token(websocket, allow_query=True))
    except UnauthenticatedError as e:
        logger.warning("Rejected socket handshake: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket, identity)

    try:
        await presence_service.connect(connection)
        while True:
            try:
                raw = await websocket.receive_json()
            except (ValueError, KeyError):
                await _send_error(connection, ErrorKind.VALIDATION_FAILED, "Malformed event")
                continue
            await dispatch(connection, raw)
    except WebSocketDisconnect:
        logger.debug("Socket closed by client", extra={"connection_id": connection.id})
    finally:
        await presence_service.disconnect(connection)
