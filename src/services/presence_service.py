"""Presence tracking: online/offline transitions and friend broadcasts."""

import logging
from datetime import UTC, datetime

from src.core import db_client
from src.core.db_client import sanitize_param
from src.core.logging import span
from src.domain.user import PresenceStatus
from src.services import membership_service, realtime_hub
from src.services.realtime_hub import Connection, user_room


logger = logging.getLogger(__name__)


async def set_presence(*, user_id: str, status: PresenceStatus) -> None:
    """Upsert the denormalized presence row."""
    now = datetime.now(UTC)
    async with db_client.transaction():
        existing = await db_client.get_first_record(
            collection="user_presence",
            filter_query=f'user_id = "{sanitize_param(user_id)}"',
        )
        if existing is None:
            await db_client.create_record(
                collection="user_presence",
                data={"user_id": user_id, "status": status, "last_seen": now},
            )
        else:
            await db_client.update_record(
                collection="user_presence",
                record_id=existing["id"],
                data={"status": status, "last_seen": now},
            )


async def get_presence(*, user_id: str) -> PresenceStatus:
    record = await db_client.get_first_record(
        collection="user_presence",
        filter_query=f'user_id = "{sanitize_param(user_id)}"',
    )
    return PresenceStatus(record["status"]) if record else PresenceStatus.OFFLINE


async def broadcast_presence(*, user_id: str, status: PresenceStatus) -> None:
    """Tell each accepted friend's personal room about a status change."""
    friend_ids = await membership_service.accepted_friend_ids(user_id=user_id)
    payload = {"userId": user_id, "status": str(status)}
    for friend_id in friend_ids:
        await realtime_hub.hub.emit_to_room(user_room(friend_id), "presence:update", payload)


async def connect(connection: Connection) -> None:
    """Register a connection, join its standing rooms and announce first connections.

    If any step fails the connection is unregistered again, so a failed
    handshake never leaves its user online.
    """
    with span("presence_service.connect"):
        hub = realtime_hub.hub
        came_online = hub.register(connection)

        try:
            hub.join(connection.id, user_room(connection.user_id))
            for target in await membership_service.member_targets(user_id=connection.user_id):
                hub.join(connection.id, target.room)

            if came_online:
                await set_presence(user_id=connection.user_id, status=PresenceStatus.ONLINE)
        except Exception:
            hub.unregister(connection)
            logger.exception("Failed to set up connection", extra={"user_id": connection.user_id})
            raise

        logger.info(
            "User connected",
            extra={"user_id": connection.user_id, "connection_id": connection.id, "came_online": came_online},
        )
        if came_online:
            await broadcast_presence(user_id=connection.user_id, status=PresenceStatus.ONLINE)


async def disconnect(connection: Connection) -> None:
    """Unregister a connection; the last one out flips the user offline."""
    with span("presence_service.disconnect"):
        went_offline = realtime_hub.hub.unregister(connection)
        logger.info(
            "User disconnected",
            extra={"user_id": connection.user_id, "connection_id": connection.id, "went_offline": went_offline},
        )
        if went_offline:
            await set_presence(user_id=connection.user_id, status=PresenceStatus.OFFLINE)
            await broadcast_presence(user_id=connection.user_id, status=PresenceStatus.OFFLINE)


async def update_status(*, user_id: str, status: PresenceStatus) -> None:
    """Explicit status change requested by the client (busy, away...)."""
    with span("presence_service.update_status"):
        await set_presence(user_id=user_id, status=status)
        await broadcast_presence(user_id=user_id, status=status)
