"""Notifications: persisted rows plus a live push to the recipient."""

import logging
from datetime import UTC, datetime

from src.core import db_client
from src.core.logging import span
from src.domain.notification import Notification, NotificationType
from src.services import realtime_hub


logger = logging.getLogger(__name__)


async def notify(
    *,
    user_id: str,
    type: NotificationType,  # noqa: A002
    title: str,
    body: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> Notification | None:
    """Persist a notification and push ``notification:new`` to the user's room.

    Failures are logged and swallowed: a notification never fails the action
    that triggered it.

    Returns:
        The stored notification, or None if it could not be stored
    """
    with span("notification_service.notify"):
        try:
            record = await db_client.create_record(
                collection="notifications",
                data={
                    "user_id": user_id,
                    "type": type,
                    "title": title,
                    "body": body,
                    "reference_type": reference_type,
                    "reference_id": reference_id,
                    "created_at": datetime.now(UTC),
                },
            )
            notification = Notification.model_validate(record)
            await realtime_hub.hub.emit_to_user(
                user_id,
                "notification:new",
                notification.model_dump(mode="json", by_alias=True, include=_PUSHED_FIELDS),
            )
        except Exception:
            logger.exception("Error sending %s notification to user %s", type, user_id)
            return None

        logger.info("Notified user %s: %s", user_id, type, extra={"user_id": user_id, "type": str(type)})
        return notification


_PUSHED_FIELDS = {"id", "type", "title", "body", "reference_type", "reference_id", "created_at"}
