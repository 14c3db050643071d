"""Notification domain models."""

from datetime import datetime
from enum import StrEnum

from src.domain.base import ApiModel


class NotificationType(StrEnum):
    TASK_VERIFIED = "task_verified"
    TASK_REJECTED = "task_rejected"
    MESSAGE = "message"


class Notification(ApiModel):
    id: str
    user_id: str
    type: str
    title: str
    body: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    is_read: bool = False
    created_at: datetime
