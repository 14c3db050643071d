"""End-to-end tests for the WebSocket endpoint."""

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.core import db_client
from src.main import app
from src.services.auth_service import issue_token
from tests.factories import create_conversation, create_user, identity_of, make_friends


def seed_world() -> dict:
    """Seed synchronously, before the app's own event loop starts."""

    async def seed() -> dict:
        await db_client.init_db()
        try:
            ada = await create_user("ada")
            bob = await create_user("bob")
            eve = await create_user("eve")
            await make_friends(ada["id"], bob["id"])
            conversation = await create_conversation(ada["id"], bob["id"])
            return {"ada": ada, "bob": bob, "eve": eve, "conversation": conversation}
        finally:
            await db_client.close_connection()

    return asyncio.run(seed())


def socket_url(user: dict) -> str:
    return f"/ws?token={issue_token(identity_of(user))}"


@pytest.fixture
def world() -> dict:
    return seed_world()


@pytest.fixture
def client(world):
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.integration
class TestHandshake:
    def test_rejects_missing_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info, client.websocket_connect("/ws"):
            pass

        assert exc_info.value.code == 1008

    def test_rejects_invalid_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info, client.websocket_connect("/ws?token=forged"):
            pass

        assert exc_info.value.code == 1008


@pytest.mark.integration
class TestEvents:
    def test_friend_sees_presence(self, client, world):
        with client.websocket_connect(socket_url(world["ada"])) as ada_socket:
            with client.websocket_connect(socket_url(world["bob"])):
                frame = ada_socket.receive_json()
                assert frame == {"event": "presence:update", "data": {"userId": world["bob"]["id"], "status": "online"}}

            frame = ada_socket.receive_json()
            assert frame == {"event": "presence:update", "data": {"userId": world["bob"]["id"], "status": "offline"}}

    def test_message_reaches_room_and_recipient(self, client, world):
        conversation_id = world["conversation"]["id"]
        with client.websocket_connect(socket_url(world["bob"])) as bob_socket:
            with client.websocket_connect(socket_url(world["ada"])) as ada_socket:
                assert bob_socket.receive_json()["event"] == "presence:update"

                ada_socket.send_json({"event": "room:join", "data": {"roomId": f"conversation:{conversation_id}"}})
                assert ada_socket.receive_json() == {
                    "event": "room:joined",
                    "data": {"roomId": f"conversation:{conversation_id}"},
                }

                bob_socket.send_json({"event": "message:send", "data": {"conversationId": conversation_id, "content": "yo"}})

                new_message = ada_socket.receive_json()
                assert new_message["event"] == "message:new"
                assert new_message["data"]["content"] == "yo"
                assert new_message["data"]["senderId"] == world["bob"]["id"]

                notification = ada_socket.receive_json()
                assert notification["event"] == "notification:new"
                assert notification["data"]["body"] == "bob: yo"

    def test_outsider_cannot_join_conversation(self, client, world):
        conversation_id = world["conversation"]["id"]
        with client.websocket_connect(socket_url(world["eve"])) as eve_socket:
            eve_socket.send_json({"event": "room:join", "data": {"roomId": f"conversation:{conversation_id}"}})

            assert eve_socket.receive_json() == {
                "event": "error",
                "data": {"kind": "permission_denied", "message": "Cannot join this room"},
            }

    def test_bad_frames_become_errors_and_socket_stays_open(self, client, world):
        with client.websocket_connect(socket_url(world["eve"])) as eve_socket:
            eve_socket.send_text("not json")
            assert eve_socket.receive_json()["data"] == {"kind": "validation_failed", "message": "Malformed event"}

            eve_socket.send_json({"event": "task:explode", "data": {}})
            assert eve_socket.receive_json()["data"]["message"] == "Unknown event: task:explode"

            eve_socket.send_json({"event": "message:typing", "data": {"conversationId": "1"}})
            error = eve_socket.receive_json()["data"]
            assert error["kind"] == "validation_failed"
            assert error["message"].startswith("Invalid message:typing payload")

            eve_socket.send_json({"event": "room:join", "data": {"roomId": f"user:{world['eve']['id']}"}})
            assert eve_socket.receive_json()["event"] == "room:joined"
