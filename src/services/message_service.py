"""Direct messages between friends, shared by the REST API and the socket."""

import logging
from datetime import UTC, datetime, timedelta

from src.core import db_client
from src.core.config import Constants
from src.core.db_client import sanitize_param
from src.core.errors import NotFoundError, PermissionDeniedError, ValidationFailedError
from src.core.logging import span
from src.domain.message import Message, MessageType
from src.domain.notification import NotificationType
from src.domain.user import Identity, PresenceStatus, UserSummary
from src.models.service_models import (
    ConversationFriend,
    ConversationSummary,
    LastMessage,
    MessagePage,
    MessageView,
    SentMessage,
)
from src.services import membership_service, notification_service, presence_service, realtime_hub, user_service
from src.services.realtime_hub import conversation_room


logger = logging.getLogger(__name__)


async def _participant_record(*, conversation_id: str, user_id: str) -> dict | None:
    return await db_client.get_first_record(
        collection="conversation_participants",
        filter_query=(
            f'conversation_id = "{sanitize_param(conversation_id)}" && user_id = "{sanitize_param(user_id)}"'
        ),
    )


async def is_participant(*, conversation_id: str, user_id: str) -> bool:
    return await _participant_record(conversation_id=conversation_id, user_id=user_id) is not None


async def ensure_participant(*, conversation_id: str, user_id: str) -> dict:
    """Return the participant row or refuse access.

    Raises:
        PermissionDeniedError: If the user is not a participant of the conversation
    """
    record = await _participant_record(conversation_id=conversation_id, user_id=user_id)
    if record is None:
        raise PermissionDeniedError("Not a participant in this conversation")
    return record


async def participant_ids(*, conversation_id: str) -> list[str]:
    records = await db_client.list_all_records(
        collection="conversation_participants",
        filter_query=f'conversation_id = "{sanitize_param(conversation_id)}"',
    )
    return [record["user_id"] for record in records]


async def _to_view(message: Message) -> MessageView:
    sender = await user_service.get_user_summary(user_id=message.sender_id)
    return MessageView(**message.model_dump(), sender=sender)


async def send_message(
    *,
    sender: Identity,
    conversation_id: str,
    content: str,
    image_url: str | None = None,
    reply_to_id: str | None = None,
) -> MessageView:
    """Persist a message and fan it out.

    Broadcasts ``message:new`` to the conversation room, then notifies every
    other participant (stored row plus ``notification:new`` on their personal room).

    Raises:
        PermissionDeniedError: If the sender is not a participant
        ValidationFailedError: If the message has neither text nor image
    """
    with span("message_service.send_message"):
        if not content and not image_url:
            raise ValidationFailedError("Message cannot be empty")

        await ensure_participant(conversation_id=conversation_id, user_id=sender.id)

        now = datetime.now(UTC)
        async with db_client.transaction():
            record = await db_client.create_record(
                collection="messages",
                data={
                    "conversation_id": conversation_id,
                    "sender_id": sender.id,
                    "content": content,
                    "image_url": image_url,
                    "message_type": MessageType.IMAGE if image_url else MessageType.TEXT,
                    "reply_to_id": reply_to_id,
                    "created_at": now,
                },
            )
            await db_client.update_record(
                collection="conversations",
                record_id=conversation_id,
                data={"updated_at": now},
            )

        view = await _to_view(Message.model_validate(record))
        logger.info(
            "Message %s sent in conversation %s",
            view.id,
            conversation_id,
            extra={"sender_id": sender.id, "conversation_id": conversation_id},
        )

        await realtime_hub.hub.emit_to_room(
            conversation_room(conversation_id),
            "message:new",
            {
                "id": view.id,
                "conversationId": conversation_id,
                "senderId": sender.id,
                "senderName": (view.sender.display_name or view.sender.username) if view.sender else sender.username,
                "senderAvatar": view.sender.avatar_url if view.sender else None,
                "content": view.content,
                "imageUrl": view.image_url,
                "replyToId": view.reply_to_id,
                "createdAt": view.created_at.isoformat(),
            },
        )

        preview = content[: Constants.NOTIFICATION_PREVIEW_LENGTH]
        if len(content) > Constants.NOTIFICATION_PREVIEW_LENGTH:
            preview += "..."
        for recipient_id in await participant_ids(conversation_id=conversation_id):
            if recipient_id == sender.id:
                continue
            await notification_service.notify(
                user_id=recipient_id,
                type=NotificationType.MESSAGE,
                title="New Message",
                body=f"{sender.username}: {preview}",
                reference_type="conversation",
                reference_id=conversation_id,
            )

        return view


async def find_or_create_conversation(*, user_id: str, friend_id: str) -> str:
    """Return the two-party conversation between two users, creating it lazily."""
    mine = {
        record["conversation_id"]
        for record in await db_client.list_all_records(
            collection="conversation_participants",
            filter_query=f'user_id = "{sanitize_param(user_id)}"',
        )
    }
    for record in await db_client.list_all_records(
        collection="conversation_participants",
        filter_query=f'user_id = "{sanitize_param(friend_id)}"',
    ):
        conversation_id = record["conversation_id"]
        if conversation_id in mine and len(await participant_ids(conversation_id=conversation_id)) == 2:  # noqa: PLR2004
            return conversation_id

    now = datetime.now(UTC)
    async with db_client.transaction():
        conversation = await db_client.create_record(
            collection="conversations",
            data={"created_at": now, "updated_at": now},
        )
        for participant_id in (user_id, friend_id):
            await db_client.create_record(
                collection="conversation_participants",
                data={"conversation_id": conversation["id"], "user_id": participant_id},
            )

    logger.info("Created conversation %s", conversation["id"], extra={"user_id": user_id, "friend_id": friend_id})
    return conversation["id"]


async def send_to_friend(
    *,
    sender: Identity,
    friend_id: str,
    content: str,
    image_url: str | None = None,
) -> SentMessage:
    """Send a direct message to an accepted friend.

    Raises:
        PermissionDeniedError: If the two users are not friends
    """
    with span("message_service.send_to_friend"):
        if not await membership_service.are_friends(user_id=sender.id, other_user_id=friend_id):
            raise PermissionDeniedError("Not friends")

        conversation_id = await find_or_create_conversation(user_id=sender.id, friend_id=friend_id)
        message = await send_message(
            sender=sender,
            conversation_id=conversation_id,
            content=content,
            image_url=image_url,
        )
        return SentMessage(message=message, conversation_id=conversation_id)


async def _get_message(message_id: str) -> Message:
    try:
        record = await db_client.get_record(collection="messages", record_id=message_id)
    except KeyError as e:
        raise NotFoundError("Message not found") from e
    return Message.model_validate(record)


async def reply(
    *,
    sender: Identity,
    message_id: str,
    content: str,
    image_url: str | None = None,
) -> SentMessage:
    """Reply to a message; the reply always lands in the original's conversation.

    Raises:
        NotFoundError: If the original message does not exist
        PermissionDeniedError: If the sender is not a participant
    """
    with span("message_service.reply"):
        original = await _get_message(message_id)
        message = await send_message(
            sender=sender,
            conversation_id=original.conversation_id,
            content=content,
            image_url=image_url,
            reply_to_id=original.id,
        )
        return SentMessage(message=message, conversation_id=original.conversation_id)


async def edit_message(*, user_id: str, message_id: str, content: str, now: datetime | None = None) -> MessageView:
    """Edit one's own message within the edit window.

    Raises:
        NotFoundError: If the message does not exist or was deleted
        PermissionDeniedError: If the user did not send it
        ValidationFailedError: If the edit window has passed
    """
    with span("message_service.edit_message"):
        now = now or datetime.now(UTC)
        message = await _get_message(message_id)
        if message.deleted_at is not None:
            raise NotFoundError("Message not found")
        if message.sender_id != user_id:
            raise PermissionDeniedError("You can only edit your own messages")
        if message.created_at < now - timedelta(seconds=Constants.MESSAGE_EDIT_WINDOW_SECONDS):
            raise ValidationFailedError("Message is too old to edit")

        record = await db_client.update_record(
            collection="messages",
            record_id=message.id,
            data={"content": content, "edited_at": now},
        )
        return await _to_view(Message.model_validate(record))


async def delete_message(*, user_id: str, message_id: str) -> None:
    """Soft-delete one's own message.

    Raises:
        NotFoundError: If the message does not exist
        PermissionDeniedError: If the user did not send it
    """
    with span("message_service.delete_message"):
        message = await _get_message(message_id)
        if message.sender_id != user_id:
            raise PermissionDeniedError("You can only delete your own messages")
        if message.deleted_at is None:
            await db_client.update_record(
                collection="messages",
                record_id=message.id,
                data={"deleted_at": datetime.now(UTC)},
            )


async def mark_read(*, conversation_id: str, user_id: str) -> None:
    """Move the user's read marker to now. No broadcast."""
    participant = await ensure_participant(conversation_id=conversation_id, user_id=user_id)
    await db_client.update_record(
        collection="conversation_participants",
        record_id=participant["id"],
        data={"last_read_at": datetime.now(UTC)},
    )


async def get_history(
    *,
    conversation_id: str,
    user_id: str,
    limit: int = Constants.MESSAGE_PAGE_SIZE,
    cursor: datetime | None = None,
) -> MessagePage:
    """Page backwards through a conversation; messages come oldest first.

    Viewing history marks the conversation read.
    """
    with span("message_service.get_history"):
        await ensure_participant(conversation_id=conversation_id, user_id=user_id)

        filter_query = f'conversation_id = "{sanitize_param(conversation_id)}" && deleted_at = null'
        if cursor is not None:
            filter_query += f' && created_at < "{db_client.format_timestamp(cursor)}"'

        records = await db_client.list_records(
            collection="messages",
            filter_query=filter_query,
            sort="-created_at,-id",
            per_page=limit + 1,
        )
        has_more = len(records) > limit
        records = records[:limit]

        messages = [await _to_view(Message.model_validate(record)) for record in reversed(records)]
        await mark_read(conversation_id=conversation_id, user_id=user_id)

        next_cursor = messages[0].created_at.isoformat() if has_more and messages else None
        return MessagePage(messages=messages, has_more=has_more, next_cursor=next_cursor)


async def list_conversations(*, user_id: str) -> list[ConversationSummary]:
    """Every conversation of the user, most recently active first."""
    with span("message_service.list_conversations"):
        memberships = await db_client.list_all_records(
            collection="conversation_participants",
            filter_query=f'user_id = "{sanitize_param(user_id)}"',
        )

        summaries = []
        for membership in memberships:
            conversation_id = membership["conversation_id"]
            conversation = await db_client.get_record(collection="conversations", record_id=conversation_id)

            friend = None
            for other_id in await participant_ids(conversation_id=conversation_id):
                if other_id == user_id:
                    continue
                summary: UserSummary = await user_service.get_user_summary(user_id=other_id)
                status: PresenceStatus = await presence_service.get_presence(user_id=other_id)
                friend = ConversationFriend(**summary.model_dump(), status=status)
                break

            last_record = await db_client.get_first_record(
                collection="messages",
                filter_query=f'conversation_id = "{sanitize_param(conversation_id)}" && deleted_at = null',
                sort="-created_at,-id",
            )
            last_message = None
            has_unread = False
            if last_record is not None:
                last = Message.model_validate(last_record)
                last_message = LastMessage(
                    content=last.content, created_at=last.created_at, is_own=last.sender_id == user_id
                )
                last_read_at = membership.get("last_read_at")
                has_unread = last.sender_id != user_id and (
                    last_read_at is None or last.created_at > datetime.fromisoformat(last_read_at)
                )

            summaries.append(
                ConversationSummary(
                    id=conversation_id,
                    friend=friend,
                    last_message=last_message,
                    last_read_at=membership.get("last_read_at"),
                    has_unread=has_unread,
                    updated_at=conversation["updated_at"],
                )
            )

        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries


async def relay_typing(*, conversation_id: str, user_id: str, is_typing: bool, connection_id: str) -> None:
    """Forward a typing indicator to everyone else viewing the conversation."""
    await ensure_participant(conversation_id=conversation_id, user_id=user_id)
    await realtime_hub.hub.emit_to_room(
        conversation_room(conversation_id),
        "message:typing",
        {"conversationId": conversation_id, "userId": user_id, "isTyping": is_typing},
        skip=connection_id,
    )
