"""Direct messaging domain models."""

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from src.domain.base import ApiModel


MAX_MESSAGE_LENGTH = 2000


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"


class Message(ApiModel):
    """Message data transfer object."""

    id: str
    conversation_id: str
    sender_id: str
    content: str = ""
    image_url: str | None = None
    message_type: MessageType = MessageType.TEXT
    reply_to_id: str | None = None
    created_at: datetime
    edited_at: datetime | None = None
    deleted_at: datetime | None = None


class SendMessageRequest(ApiModel):
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    image_url: str | None = None


class EditMessageRequest(ApiModel):
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
