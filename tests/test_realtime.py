"""WebSocket protocol tests and ConnectionManager unit tests."""

import asyncio
from uuid import uuid4

import pytest
from starlette.websockets import WebSocketDisconnect

from letschat.api import realtime
from letschat.api.realtime import ConnectionManager, frame, manager

from conftest import auth_headers


def receive_until(ws, event):
    """Read frames until one named `event` arrives and return it."""
    while True:
        payload = ws.receive_json()
        if payload["event"] == event:
            return payload


def ws_url(user):
    return f"/ws?token={user['token']}"


def as_str(user):
    return str(user["user"]["id"])


@pytest.fixture
def direct(client, alice, bob):
    response = client.post(
        "/api/conversations",
        json={"type": "direct", "participant_ids": [as_str(bob)]},
        headers=auth_headers(alice["token"]),
    )
    return response.json()["data"]


class TestConnection:
    def test_invalid_token_is_closed_with_policy_violation(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws?token=bogus") as ws:
                ws.receive_json()
        assert exc.value.code == 1008

    def test_missing_token_is_closed(self, client):
        client.cookies.clear()
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
        assert exc.value.code == 1008

    def test_connected_frame_and_stats(self, client, alice):
        with client.websocket_connect(ws_url(alice)) as ws:
            connected = ws.receive_json()

            assert connected["event"] == "connected"
            assert connected["data"]["user"]["id"] == as_str(alice)
            assert client.get("/health").json()["data"]["realtime"]["connected_users"] == 1

    def test_ping(self, client, alice):
        with client.websocket_connect(ws_url(alice)) as ws:
            ws.send_json({"event": "ping"})

            assert receive_until(ws, "pong")["data"]["timestamp"]

    def test_unknown_and_malformed_frames(self, client, alice):
        with client.websocket_connect(ws_url(alice)) as ws:
            ws.send_json({"event": "dance"})
            unknown = receive_until(ws, "error")
            ws.send_json(["not", "a", "frame"])
            malformed = receive_until(ws, "error")

        assert unknown["data"]["message"] == "Unknown event: dance"
        assert malformed["data"]["code"] == "VALIDATION_ERROR"

    def test_non_json_text_frame_closes_socket(self, client, alice):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(ws_url(alice)) as ws:
                receive_until(ws, "connected")
                ws.send_text("not json")
                ws.receive_json()
        assert exc.value.code == 1003

    def test_binary_frame_closes_socket(self, client, alice):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(ws_url(alice)) as ws:
                receive_until(ws, "connected")
                ws.send_bytes(b'{"event": "ping"}')
                ws.receive_json()
        assert exc.value.code == 1003

    def test_presence_is_broadcast(self, client, alice, bob):
        with client.websocket_connect(ws_url(bob)) as bob_ws:
            receive_until(bob_ws, "connected")
            with client.websocket_connect(ws_url(alice)) as alice_ws:
                receive_until(alice_ws, "connected")
                online = receive_until(bob_ws, "user_status")
            offline = receive_until(bob_ws, "user_status")

        assert online["data"] == {"user_id": as_str(alice), "status": "online"}
        assert offline["data"] == {"user_id": as_str(alice), "status": "offline"}


class TestConversationEvents:
    def test_join_requires_membership(self, client, carol, direct):
        with client.websocket_connect(ws_url(carol)) as ws:
            ws.send_json({"event": "join_conversation", "data": {"conversation_id": direct["id"]}})
            error = receive_until(ws, "error")

        assert error["data"]["event"] == "join_conversation"
        assert error["data"]["code"] == "VALIDATION_ERROR"

    def test_send_message_reaches_every_participant(self, client, alice, bob, direct):
        with client.websocket_connect(ws_url(alice)) as alice_ws, client.websocket_connect(ws_url(bob)) as bob_ws:
            receive_until(alice_ws, "connected")
            receive_until(bob_ws, "connected")

            alice_ws.send_json({"event": "send_message", "data": {"conversation_id": direct["id"], "content": "hi"}})

            to_bob = receive_until(bob_ws, "new_message")
            to_alice = receive_until(alice_ws, "new_message")

        assert to_bob["data"]["message"]["content"] == "hi"
        assert to_bob["data"]["message"]["sender_id"] == as_str(alice)
        assert to_alice["data"]["message"]["id"] == to_bob["data"]["message"]["id"]

    def test_send_message_errors_are_reported(self, client, alice, direct):
        with client.websocket_connect(ws_url(alice)) as ws:
            ws.send_json({"event": "send_message", "data": {"conversation_id": direct["id"], "content": ""}})
            error = receive_until(ws, "error")

        assert error["data"]["message"] == "Message content cannot be empty"

    def test_non_string_content_keeps_socket_open(self, client, alice, direct):
        with client.websocket_connect(ws_url(alice)) as ws:
            ws.send_json({"event": "send_message", "data": {"conversation_id": direct["id"], "content": 123}})
            error = receive_until(ws, "error")
            ws.send_json({"event": "ping"})
            pong = receive_until(ws, "pong")

        assert error["data"]["code"] == "VALIDATION_ERROR"
        assert error["data"]["message"] == "Message content must be a string"
        assert pong["data"]["timestamp"]

    def test_leave_conversation_clears_typing(self, client, alice, bob, direct):
        with client.websocket_connect(ws_url(bob)) as bob_ws, client.websocket_connect(ws_url(alice)) as alice_ws:
            for ws in (alice_ws, bob_ws):
                ws.send_json({"event": "join_conversation", "data": {"conversation_id": direct["id"]}})
                receive_until(ws, "joined_conversation")
            alice_ws.send_json({"event": "typing", "data": {"conversation_id": direct["id"], "is_typing": True}})
            receive_until(bob_ws, "typing")

            alice_ws.send_json({"event": "leave_conversation", "data": {"conversation_id": direct["id"]}})
            left = receive_until(alice_ws, "left_conversation")
            stopped = receive_until(bob_ws, "typing")

            assert manager.typing == {}

        assert left["data"]["conversation_id"] == direct["id"]
        assert stopped["data"]["user_id"] == as_str(alice)
        assert stopped["data"]["is_typing"] is False
        assert stopped["data"]["typing_users"] == []

    def test_disconnect_clears_typing(self, client, alice, bob, direct):
        with client.websocket_connect(ws_url(bob)) as bob_ws:
            bob_ws.send_json({"event": "join_conversation", "data": {"conversation_id": direct["id"]}})
            receive_until(bob_ws, "joined_conversation")
            with client.websocket_connect(ws_url(alice)) as alice_ws:
                receive_until(alice_ws, "connected")
                alice_ws.send_json({"event": "typing", "data": {"conversation_id": direct["id"], "is_typing": True}})
                assert receive_until(bob_ws, "typing")["data"]["is_typing"] is True
            stopped = receive_until(bob_ws, "typing")

            assert manager.typing == {}

        assert stopped["data"]["user_id"] == as_str(alice)
        assert stopped["data"]["is_typing"] is False

    def test_offline_participant_gets_queued_events(self, client, alice, bob, direct):
        client.post(
            f"/api/conversations/{direct['id']}/messages",
            json={"content": "while you were away"},
            headers=auth_headers(alice["token"]),
        )
        assert client.get("/health").json()["data"]["realtime"]["queued_events"] == 2  # one per offline participant

        with client.websocket_connect(ws_url(bob)) as ws:
            assert ws.receive_json()["event"] == "connected"
            queued = ws.receive_json()

        assert queued["event"] == "new_message"
        assert queued["data"]["message"]["content"] == "while you were away"

    def test_typing_goes_to_room_members(self, client, alice, bob, direct):
        with client.websocket_connect(ws_url(bob)) as bob_ws, client.websocket_connect(ws_url(alice)) as alice_ws:
            bob_ws.send_json({"event": "join_conversation", "data": {"conversation_id": direct["id"]}})
            joined = receive_until(bob_ws, "joined_conversation")

            alice_ws.send_json({"event": "typing", "data": {"conversation_id": direct["id"], "is_typing": True}})
            typing = receive_until(bob_ws, "typing")

        assert joined["data"]["conversation_id"] == direct["id"]
        assert typing["data"]["user_id"] == as_str(alice)
        assert typing["data"]["is_typing"] is True
        assert typing["data"]["typing_users"] == [as_str(alice)]

    def test_mark_read_is_broadcast(self, client, alice, bob, direct):
        with client.websocket_connect(ws_url(alice)) as alice_ws, client.websocket_connect(ws_url(bob)) as bob_ws:
            receive_until(alice_ws, "connected")
            bob_ws.send_json({"event": "mark_read", "data": {"conversation_id": direct["id"]}})
            seen = receive_until(alice_ws, "messages_marked_read")

        assert seen["data"]["user_id"] == as_str(bob)

    def test_rest_edit_and_delete_are_published(self, client, alice, bob, direct):
        message = client.post(
            f"/api/conversations/{direct['id']}/messages",
            json={"content": "draft"},
            headers=auth_headers(alice["token"]),
        ).json()["data"]["message"]

        with client.websocket_connect(ws_url(bob)) as ws:
            receive_until(ws, "new_message")
            client.put(f"/api/messages/{message['id']}", json={"content": "final"}, headers=auth_headers(alice["token"]))
            edited = receive_until(ws, "message_edited")
            client.delete(f"/api/messages/{message['id']}", headers=auth_headers(alice["token"]))
            deleted = receive_until(ws, "message_deleted")

        assert edited["data"]["message"]["content"] == "final"
        assert deleted["data"]["id"] == message["id"]


class FakeSocket:
    def __init__(self, broken=False):
        self.broken = broken
        self.sent = []

    async def send_json(self, payload):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


class TestConnectionManager:
    def test_dead_sockets_are_pruned(self):
        async def scenario():
            manager = ConnectionManager()
            user_id = uuid4()
            healthy, broken = FakeSocket(), FakeSocket(broken=True)
            await manager.connect(user_id, healthy)
            await manager.connect(user_id, broken)

            delivered = await manager.send_to_user(user_id, frame("ping"))
            return manager, user_id, healthy, delivered

        manager, user_id, healthy, delivered = asyncio.run(scenario())

        assert delivered is True
        assert healthy.sent == [{"event": "ping", "data": {}}]
        assert manager.get_stats()["connections"] == 1

    def test_offline_queue_is_bounded_and_flushed(self):
        async def scenario():
            manager = ConnectionManager(queue_limit=2)
            user_id = uuid4()
            for i in range(3):
                await manager.deliver([user_id], frame("new_message", {"n": i}))
            queued = manager.get_stats()["queued_events"]
            socket = FakeSocket()
            await manager.connect(user_id, socket)
            flushed = await manager.flush_queue(user_id)
            return manager, socket, queued, flushed

        manager, socket, queued, flushed = asyncio.run(scenario())

        assert queued == 2
        assert flushed == 2
        assert [payload["data"]["n"] for payload in socket.sent] == [1, 2]
        assert manager.get_stats()["queued_events"] == 0

    def test_last_disconnect_leaves_rooms(self):
        async def scenario():
            manager = ConnectionManager()
            user_id, room = uuid4(), uuid4()
            first, second = FakeSocket(), FakeSocket()
            assert await manager.connect(user_id, first) is True
            assert await manager.connect(user_id, second) is False
            await manager.join_room(room, user_id)
            assert await manager.disconnect(user_id, first) is False
            assert manager.is_online(user_id)
            assert await manager.disconnect(user_id, second) is True
            return manager, user_id

        manager, user_id = asyncio.run(scenario())

        assert manager.rooms == {}
        assert not manager.is_online(user_id)
        assert not manager.online_user_ids()

    def test_typing_state(self):
        manager = ConnectionManager()
        room, a, b = uuid4(), uuid4(), uuid4()

        manager.set_typing(room, a, True)
        assert set(manager.set_typing(room, b, True)) == {a, b}
        assert manager.typing_conversations(a) == [room]
        assert manager.set_typing(room, a, False) == [b]
        assert manager.set_typing(room, b, False) == []
        assert manager.typing == {}

    def test_handler_failure_is_answered_with_internal_error(self, monkeypatch):
        async def broken_handler(user_id, data):
            raise RuntimeError("boom")

        monkeypatch.setitem(realtime.CLIENT_EVENTS, "ping", broken_handler)
        socket = FakeSocket()

        asyncio.run(realtime.handle_client_event(uuid4(), socket, {"event": "ping"}))

        assert socket.sent == [
            {"event": "error", "data": {"code": "INTERNAL_ERROR", "message": "Internal server error", "event": "ping"}}
        ]
