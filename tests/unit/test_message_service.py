"""Tests for direct messaging."""

from datetime import UTC, datetime, timedelta

import pytest

from src.core import db_client
from src.core.errors import NotFoundError, PermissionDeniedError, ValidationFailedError
from src.domain.user import FriendshipStatus
from src.services import message_service
from src.services.realtime_hub import conversation_room
from tests.factories import FakeConnection, create_conversation, create_user, identity_of, make_friends


@pytest.fixture
async def pair(patched_db):
    ada = await create_user("ada")
    bob = await create_user("bob")
    await make_friends(ada["id"], bob["id"])
    conversation = await create_conversation(ada["id"], bob["id"])
    return ada, bob, conversation


async def seed_message(conversation_id: str, sender_id: str, content: str, created_at: datetime) -> dict:
    return await db_client.create_record(
        collection="messages",
        data={
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "message_type": "text",
            "created_at": created_at,
        },
    )


def watch(hub, user_id: str, *rooms: str) -> FakeConnection:
    connection = FakeConnection(user_id)
    hub.register(connection)
    for room in rooms:
        hub.join(connection.id, room)
    return connection


@pytest.mark.unit
class TestSendMessage:
    async def test_broadcasts_to_room_and_notifies_recipient(self, pair, hub):
        ada, bob, conversation = pair
        viewer = watch(hub, bob["id"], conversation_room(conversation["id"]), f"user:{bob['id']}")

        view = await message_service.send_message(
            sender=identity_of(ada), conversation_id=conversation["id"], content="hello"
        )

        event = viewer.events_named("message:new")[0]
        assert event["id"] == view.id
        assert event["senderId"] == ada["id"]
        assert event["senderName"] == "Ada"
        assert event["content"] == "hello"

        pushed = viewer.events_named("notification:new")[0]
        assert pushed["title"] == "New Message"
        assert pushed["body"] == "ada: hello"
        assert pushed["referenceId"] == conversation["id"]

    async def test_sender_is_not_notified(self, pair):
        ada, _, conversation = pair

        await message_service.send_message(sender=identity_of(ada), conversation_id=conversation["id"], content="hi")

        assert await db_client.count_records(collection="notifications", filter_query=f'user_id = "{ada["id"]}"') == 0

    async def test_long_message_preview_is_truncated(self, pair):
        ada, bob, conversation = pair

        await message_service.send_message(
            sender=identity_of(ada), conversation_id=conversation["id"], content="x" * 80
        )

        note = await db_client.get_first_record(collection="notifications", filter_query=f'user_id = "{bob["id"]}"')
        assert note["body"] == "ada: " + "x" * 50 + "..."

    async def test_bumps_conversation_activity(self, pair):
        ada, _, conversation = pair

        await message_service.send_message(sender=identity_of(ada), conversation_id=conversation["id"], content="hi")

        updated = await db_client.get_record(collection="conversations", record_id=conversation["id"])
        assert updated["updated_at"] >= conversation["updated_at"]

    async def test_empty_message_is_rejected(self, pair):
        ada, _, conversation = pair

        with pytest.raises(ValidationFailedError, match="Message cannot be empty"):
            await message_service.send_message(sender=identity_of(ada), conversation_id=conversation["id"], content="")

    async def test_outsider_cannot_send(self, pair):
        _, _, conversation = pair
        eve = await create_user("eve")

        with pytest.raises(PermissionDeniedError, match="Not a participant"):
            await message_service.send_message(sender=identity_of(eve), conversation_id=conversation["id"], content="hi")


@pytest.mark.unit
class TestSendToFriend:
    async def test_reuses_existing_conversation(self, pair):
        ada, bob, conversation = pair

        sent = await message_service.send_to_friend(sender=identity_of(ada), friend_id=bob["id"], content="hey")

        assert sent.conversation_id == conversation["id"]

    async def test_creates_conversation_lazily(self, patched_db):
        ada = await create_user("ada")
        cat = await create_user("cat")
        await make_friends(cat["id"], ada["id"])

        first = await message_service.send_to_friend(sender=identity_of(ada), friend_id=cat["id"], content="one")
        second = await message_service.send_to_friend(sender=identity_of(cat), friend_id=ada["id"], content="two")

        assert first.conversation_id == second.conversation_id
        assert await db_client.count_records(collection="conversations") == 1

    async def test_requires_accepted_friendship(self, patched_db):
        ada = await create_user("ada")
        eve = await create_user("eve")
        await make_friends(ada["id"], eve["id"], status=FriendshipStatus.PENDING)

        with pytest.raises(PermissionDeniedError, match="Not friends"):
            await message_service.send_to_friend(sender=identity_of(ada), friend_id=eve["id"], content="hi")


@pytest.mark.unit
class TestReply:
    async def test_reply_lands_in_original_conversation(self, pair):
        ada, bob, conversation = pair
        original = await seed_message(conversation["id"], ada["id"], "ping", datetime.now(UTC))

        sent = await message_service.reply(sender=identity_of(bob), message_id=original["id"], content="pong")

        assert sent.conversation_id == conversation["id"]
        assert sent.message.reply_to_id == original["id"]

    async def test_reply_to_missing_message(self, pair):
        ada, _, _ = pair

        with pytest.raises(NotFoundError, match="Message not found"):
            await message_service.reply(sender=identity_of(ada), message_id="999", content="pong")


@pytest.mark.unit
class TestEditAndDelete:
    async def test_edit_within_window(self, pair):
        ada, _, conversation = pair
        record = await seed_message(conversation["id"], ada["id"], "typo", datetime.now(UTC))

        view = await message_service.edit_message(user_id=ada["id"], message_id=record["id"], content="fixed")

        assert view.content == "fixed"
        assert view.edited_at is not None

    async def test_edit_after_window(self, pair):
        ada, _, conversation = pair
        sent_at = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
        record = await seed_message(conversation["id"], ada["id"], "old", sent_at)

        with pytest.raises(ValidationFailedError, match="too old"):
            await message_service.edit_message(
                user_id=ada["id"], message_id=record["id"], content="new", now=sent_at + timedelta(minutes=16)
            )

    async def test_only_sender_can_edit_or_delete(self, pair):
        ada, bob, conversation = pair
        record = await seed_message(conversation["id"], ada["id"], "mine", datetime.now(UTC))

        with pytest.raises(PermissionDeniedError, match="edit your own"):
            await message_service.edit_message(user_id=bob["id"], message_id=record["id"], content="theirs")
        with pytest.raises(PermissionDeniedError, match="delete your own"):
            await message_service.delete_message(user_id=bob["id"], message_id=record["id"])

    async def test_delete_is_soft_and_hides_from_history(self, pair):
        ada, bob, conversation = pair
        record = await seed_message(conversation["id"], ada["id"], "oops", datetime.now(UTC))

        await message_service.delete_message(user_id=ada["id"], message_id=record["id"])

        stored = await db_client.get_record(collection="messages", record_id=record["id"])
        assert stored["deleted_at"] is not None
        page = await message_service.get_history(conversation_id=conversation["id"], user_id=bob["id"])
        assert page.messages == []
        with pytest.raises(NotFoundError):
            await message_service.edit_message(user_id=ada["id"], message_id=record["id"], content="again")


@pytest.mark.unit
class TestHistory:
    async def test_pages_backwards_oldest_first(self, pair):
        ada, bob, conversation = pair
        start = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)
        for minute in range(5):
            await seed_message(conversation["id"], ada["id"], f"m{minute}", start + timedelta(minutes=minute))

        page = await message_service.get_history(conversation_id=conversation["id"], user_id=bob["id"], limit=3)

        assert [m.content for m in page.messages] == ["m2", "m3", "m4"]
        assert page.has_more is True
        assert page.next_cursor is not None

        older = await message_service.get_history(
            conversation_id=conversation["id"],
            user_id=bob["id"],
            limit=3,
            cursor=datetime.fromisoformat(page.next_cursor),
        )
        assert [m.content for m in older.messages] == ["m0", "m1"]
        assert older.has_more is False
        assert older.next_cursor is None

    async def test_includes_sender_summary(self, pair):
        ada, bob, conversation = pair
        await seed_message(conversation["id"], ada["id"], "hi", datetime.now(UTC))

        page = await message_service.get_history(conversation_id=conversation["id"], user_id=bob["id"])

        assert page.messages[0].sender.username == "ada"

    async def test_viewing_history_marks_read(self, pair):
        ada, bob, conversation = pair
        await seed_message(conversation["id"], ada["id"], "hi", datetime.now(UTC) - timedelta(minutes=1))

        [before] = await message_service.list_conversations(user_id=bob["id"])
        assert before.has_unread is True

        await message_service.get_history(conversation_id=conversation["id"], user_id=bob["id"])

        [after] = await message_service.list_conversations(user_id=bob["id"])
        assert after.has_unread is False

    async def test_outsider_cannot_read(self, pair):
        _, _, conversation = pair
        eve = await create_user("eve")

        with pytest.raises(PermissionDeniedError):
            await message_service.get_history(conversation_id=conversation["id"], user_id=eve["id"])


@pytest.mark.unit
class TestListConversations:
    async def test_summary_shows_friend_and_last_message(self, pair):
        ada, bob, conversation = pair
        await seed_message(conversation["id"], ada["id"], "first", datetime.now(UTC) - timedelta(minutes=2))
        await seed_message(conversation["id"], ada["id"], "latest", datetime.now(UTC) - timedelta(minutes=1))

        [summary] = await message_service.list_conversations(user_id=ada["id"])

        assert summary.id == conversation["id"]
        assert summary.friend.username == "bob"
        assert summary.friend.status == "offline"
        assert summary.last_message.content == "latest"
        assert summary.last_message.is_own is True
        assert summary.has_unread is False

    async def test_most_recent_first(self, pair):
        ada, _, older = pair
        cat = await create_user("cat")
        await make_friends(ada["id"], cat["id"])
        newer = await create_conversation(ada["id"], cat["id"])
        await message_service.send_message(sender=identity_of(ada), conversation_id=newer["id"], content="hi")

        summaries = await message_service.list_conversations(user_id=ada["id"])

        assert [s.id for s in summaries] == [newer["id"], older["id"]]


@pytest.mark.unit
class TestTyping:
    async def test_typing_skips_originating_connection(self, pair, hub):
        ada, bob, conversation = pair
        room = conversation_room(conversation["id"])
        ada_socket = watch(hub, ada["id"], room)
        bob_socket = watch(hub, bob["id"], room)

        await message_service.relay_typing(
            conversation_id=conversation["id"], user_id=ada["id"], is_typing=True, connection_id=ada_socket.id
        )

        assert ada_socket.events == []
        assert bob_socket.events_named("message:typing") == [
            {"conversationId": conversation["id"], "userId": ada["id"], "isTyping": True}
        ]
