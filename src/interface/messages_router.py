"""Direct message endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from src.core.config import Constants
from src.domain.message import EditMessageRequest, SendMessageRequest
from src.domain.user import Identity
from src.interface.deps import get_current_user, ok
from src.services import message_service


router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/conversations")
async def list_conversations(user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    return ok(await message_service.list_conversations(user_id=user.id))


@router.post("/to/{friend_id}", status_code=status.HTTP_201_CREATED)
async def send_to_friend(
    friend_id: str,
    body: SendMessageRequest,
    user: Identity = Depends(get_current_user),
) -> dict[str, Any]:
    sent = await message_service.send_to_friend(
        sender=user,
        friend_id=friend_id,
        content=body.content,
        image_url=body.image_url,
    )
    return ok(sent)


@router.post("/reply/{message_id}", status_code=status.HTTP_201_CREATED)
async def reply(message_id: str, body: SendMessageRequest, user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    sent = await message_service.reply(
        sender=user,
        message_id=message_id,
        content=body.content,
        image_url=body.image_url,
    )
    return ok(sent)


@router.patch("/message/{message_id}")
async def edit_message(
    message_id: str,
    body: EditMessageRequest,
    user: Identity = Depends(get_current_user),
) -> dict[str, Any]:
    return ok(await message_service.edit_message(user_id=user.id, message_id=message_id, content=body.content))


@router.delete("/message/{message_id}")
async def delete_message(message_id: str, user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    await message_service.delete_message(user_id=user.id, message_id=message_id)
    return ok({"message": "Message deleted"})


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, user: Identity = Depends(get_current_user)) -> dict[str, Any]:
    await message_service.mark_read(conversation_id=conversation_id, user_id=user.id)
    return ok({"message": "Marked as read"})


@router.get("/{conversation_id}")
async def get_history(
    conversation_id: str,
    limit: int = Query(default=Constants.MESSAGE_PAGE_SIZE, ge=1, le=Constants.DEFAULT_PER_PAGE_LIMIT),
    cursor: datetime | None = None,
    user: Identity = Depends(get_current_user),
) -> dict[str, Any]:
    """Page of messages before ``cursor`` (oldest first); marks the conversation read."""
    page = await message_service.get_history(
        conversation_id=conversation_id,
        user_id=user.id,
        limit=limit,
        cursor=cursor,
    )
    return ok(page)
