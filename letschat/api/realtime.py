"""
Realtime delivery over WebSockets.

`ConnectionManager` keeps the per-process state of the realtime channel:

- user id -> open sockets (a user may be connected from several devices)
- conversation id -> user ids that joined the conversation room
- conversation id -> user ids currently typing
- user id -> bounded queue of events produced while the user was offline

Frames are JSON objects ``{"event": <name>, "data": {...}}``. Client events
are dispatched by `handle_client_event`; REST handlers publish through
`publish_new_message` and friends so both entry points fan out identically.

The manager is single-process and in-memory; its maps are guarded by an
`asyncio.Lock`. Sockets that fail during a send are dropped.
"""

from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional, Set
from uuid import UUID
import asyncio
import logging

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from letschat.database.config.config import settings
from letschat.database.core import conversations as conversation_service
from letschat.database.core import messages as message_service
from letschat.database.core.errors import ChatServiceError, ValidationFailed

logger = logging.getLogger(__name__)


def frame(event: str, data: Optional[dict] = None) -> dict:
    return {"event": event, "data": data or {}}


class ConnectionManager:
    """
    In-memory registry of sockets, conversation rooms, typing state and
    offline queues.
    """

    def __init__(self, queue_limit: Optional[int] = None):
        self.queue_limit = queue_limit or settings.OFFLINE_QUEUE_LIMIT
        self.reset()

    def reset(self) -> None:
        """Forget every connection, room and queued event."""
        self.connections: Dict[UUID, Set[WebSocket]] = {}
        self.rooms: Dict[UUID, Set[UUID]] = {}
        self.typing: Dict[UUID, Set[UUID]] = {}
        self.offline_queue: Dict[UUID, Deque[dict]] = {}
        self.lock = asyncio.Lock()

    async def connect(self, user_id: UUID, websocket: WebSocket) -> bool:
        """
        Register an accepted socket.

        Returns
        -------
        bool
            True if this is the user's first open socket.
        """
        async with self.lock:
            sockets = self.connections.setdefault(user_id, set())
            first = not sockets
            sockets.add(websocket)
        logger.debug("WS connect: %s (%d socket(s))", user_id, len(sockets))
        return first

    async def disconnect(self, user_id: UUID, websocket: WebSocket) -> bool:
        """
        Unregister a socket.

        When the user's last socket closes, the user also leaves every room.

        Returns
        -------
        bool
            True if the user has no open socket left.
        """
        async with self.lock:
            sockets = self.connections.get(user_id)
            if sockets is not None:
                sockets.discard(websocket)
                if sockets:
                    return False
                del self.connections[user_id]
            for members in self.rooms.values():
                members.discard(user_id)
            self.rooms = {room: members for room, members in self.rooms.items() if members}
        logger.debug("WS disconnect: %s", user_id)
        return True

    def is_online(self, user_id: UUID) -> bool:
        return bool(self.connections.get(user_id))

    def online_user_ids(self) -> List[UUID]:
        return list(self.connections)

    async def send_to_user(self, user_id: UUID, payload: dict) -> bool:
        """
        Send a frame to every socket of a user.

        Returns
        -------
        bool
            True if at least one socket received it.
        """
        async with self.lock:
            sockets = list(self.connections.get(user_id, ()))
        message = jsonable_encoder(payload)
        delivered = False
        dead = []
        for ws in sockets:
            try:
                await ws.send_json(message)
                delivered = True
            except Exception:
                logger.debug("Dropping dead socket of user %s", user_id)
                dead.append(ws)
        if dead:
            async with self.lock:
                remaining = self.connections.get(user_id, set())
                for ws in dead:
                    remaining.discard(ws)
                if user_id in self.connections and not remaining:
                    del self.connections[user_id]
        return delivered

    async def broadcast(self, user_ids: Iterable[UUID], payload: dict, exclude: Optional[UUID] = None) -> None:
        """Send to the online users among `user_ids`; offline users miss it."""
        for user_id in set(user_ids):
            if user_id != exclude:
                await self.send_to_user(user_id, payload)

    async def deliver(self, user_ids: Iterable[UUID], payload: dict) -> None:
        """Send to online users and queue the frame for offline ones."""
        for user_id in set(user_ids):
            if not await self.send_to_user(user_id, payload):
                self.enqueue(user_id, payload)

    async def send_to_conversation(self, conversation_id: UUID, payload: dict, exclude: Optional[UUID] = None) -> None:
        """Broadcast to the users that joined a conversation room."""
        async with self.lock:
            members = set(self.rooms.get(conversation_id, ()))
        await self.broadcast(members, payload, exclude=exclude)

    async def join_room(self, conversation_id: UUID, user_id: UUID) -> None:
        async with self.lock:
            self.rooms.setdefault(conversation_id, set()).add(user_id)

    async def leave_room(self, conversation_id: UUID, user_id: UUID) -> None:
        async with self.lock:
            members = self.rooms.get(conversation_id)
            if members is not None:
                members.discard(user_id)
                if not members:
                    del self.rooms[conversation_id]

    def set_typing(self, conversation_id: UUID, user_id: UUID, is_typing: bool) -> List[UUID]:
        """Update typing state and return who is typing in the conversation now."""
        typing = self.typing.setdefault(conversation_id, set())
        if is_typing:
            typing.add(user_id)
        else:
            typing.discard(user_id)
        if not typing:
            del self.typing[conversation_id]
        return sorted(typing, key=str)

    def typing_conversations(self, user_id: UUID) -> List[UUID]:
        """Conversations in which the user is currently marked as typing."""
        return [conversation_id for conversation_id, users in self.typing.items() if user_id in users]

    def enqueue(self, user_id: UUID, payload: dict) -> None:
        queue = self.offline_queue.setdefault(user_id, deque(maxlen=self.queue_limit))
        queue.append(payload)

    async def flush_queue(self, user_id: UUID) -> int:
        """Deliver and clear everything queued for a user; returns the count."""
        queue = self.offline_queue.pop(user_id, None)
        if not queue:
            return 0
        for payload in queue:
            await self.send_to_user(user_id, payload)
        logger.debug("Delivered %d queued event(s) to %s", len(queue), user_id)
        return len(queue)

    def get_stats(self) -> dict:
        return {
            "connected_users": len(self.connections),
            "connections": sum(len(sockets) for sockets in self.connections.values()),
            "rooms": len(self.rooms),
            "queued_events": sum(len(queue) for queue in self.offline_queue.values()),
        }


manager = ConnectionManager()
"""Process-wide connection manager shared by the REST and WebSocket handlers."""


# -----------------------
# Publishing helpers
# -----------------------
async def publish_new_message(event: dict) -> None:
    """Fan a message event out to every participant, queueing for offline ones."""
    conversation_id = event["message"]["conversation_id"]
    participant_ids = conversation_service.get_participant_ids(conversation_id=conversation_id)
    await manager.deliver(participant_ids, frame("new_message", event))


async def publish_message_edited(message: dict) -> None:
    participant_ids = conversation_service.get_participant_ids(conversation_id=message["conversation_id"])
    await manager.broadcast(participant_ids, frame("message_edited", {"message": message}))


async def publish_message_deleted(deleted: dict) -> None:
    participant_ids = conversation_service.get_participant_ids(conversation_id=deleted["conversation_id"])
    await manager.broadcast(participant_ids, frame("message_deleted", deleted))


async def publish_user_status(user_id: UUID, status: str) -> None:
    await manager.broadcast(
        manager.online_user_ids(), frame("user_status", {"user_id": user_id, "status": status}), exclude=user_id
    )


async def publish_typing(conversation_id: UUID, user_id: UUID, is_typing: bool) -> None:
    typing_users = manager.set_typing(conversation_id, user_id, is_typing)
    await manager.send_to_conversation(
        conversation_id,
        frame("typing", {
            "conversation_id": conversation_id,
            "user_id": user_id,
            "is_typing": is_typing,
            "typing_users": typing_users,
        }),
        exclude=user_id,
    )


async def publish_typing_stopped(user_id: UUID) -> None:
    for conversation_id in manager.typing_conversations(user_id):
        await publish_typing(conversation_id, user_id, False)


# -----------------------
# Client events
# -----------------------
def _conversation_id(data: dict) -> UUID:
    try:
        return UUID(str(data.get("conversation_id")))
    except (TypeError, ValueError):
        raise ValidationFailed("A valid conversation_id is required")


async def _join_conversation(user_id: UUID, data: dict) -> dict:
    conversation_id = _conversation_id(data)
    if not conversation_service.is_participant(conversation_id=conversation_id, user_id=user_id):
        raise ValidationFailed("Not a participant of this conversation")
    await manager.join_room(conversation_id, user_id)
    return frame("joined_conversation", {"conversation_id": conversation_id})


async def _leave_conversation(user_id: UUID, data: dict) -> dict:
    conversation_id = _conversation_id(data)
    await manager.leave_room(conversation_id, user_id)
    if user_id in manager.typing.get(conversation_id, ()):
        await publish_typing(conversation_id, user_id, False)
    return frame("left_conversation", {"conversation_id": conversation_id})


async def _send_message(user_id: UUID, data: dict) -> None:
    conversation_id = _conversation_id(data)
    reply_to = data.get("reply_to_id")
    try:
        reply_to_id = UUID(str(reply_to)) if reply_to else None
    except ValueError:
        raise ValidationFailed("reply_to_id must be a UUID")
    event = message_service.send_message(
        conversation_id=conversation_id,
        sender_id=user_id,
        content=data.get("content"),
        reply_to_id=reply_to_id,
    )
    if user_id in manager.typing.get(conversation_id, ()):
        await publish_typing(conversation_id, user_id, False)
    await publish_new_message(event)
    return None


async def _typing(user_id: UUID, data: dict) -> None:
    conversation_id = _conversation_id(data)
    if not conversation_service.is_participant(conversation_id=conversation_id, user_id=user_id):
        raise ValidationFailed("Not a participant of this conversation")
    await publish_typing(conversation_id, user_id, bool(data.get("is_typing")))
    return None


async def _mark_read(user_id: UUID, data: dict) -> None:
    conversation_id = _conversation_id(data)
    result = conversation_service.mark_as_read(conversation_id=conversation_id, user_id=user_id)
    participant_ids = conversation_service.get_participant_ids(conversation_id=conversation_id)
    await manager.broadcast(participant_ids, frame("messages_marked_read", result))
    return None


async def _ping(user_id: UUID, data: dict) -> dict:
    return frame("pong", {"timestamp": datetime.now(timezone.utc).isoformat()})


CLIENT_EVENTS = {
    "join_conversation": _join_conversation,
    "leave_conversation": _leave_conversation,
    "send_message": _send_message,
    "typing": _typing,
    "mark_read": _mark_read,
    "ping": _ping,
}
"""Client event name -> handler. A handler may return a frame for the sender."""


async def handle_client_event(user_id: UUID, websocket: WebSocket, message) -> None:
    """
    Dispatch one client frame.

    Service errors, malformed frames and unexpected handler failures are
    answered with an ``error`` frame on the same socket; the connection stays
    open.
    """
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        await websocket.send_json(frame("error", {"code": "VALIDATION_ERROR", "message": "Malformed frame"}))
        return
    handler = CLIENT_EVENTS.get(message["event"])
    if handler is None:
        await websocket.send_json(
            frame("error", {"code": "VALIDATION_ERROR", "message": f"Unknown event: {message['event']}"})
        )
        return
    data = message.get("data") if isinstance(message.get("data"), dict) else {}
    try:
        reply = await handler(user_id, data)
    except ChatServiceError as e:
        await websocket.send_json(frame("error", {"code": e.code, "message": e.detail, "event": message["event"]}))
        return
    except Exception:
        logger.exception("Client event %s of user %s failed", message["event"], user_id)
        await websocket.send_json(
            frame("error", {"code": "INTERNAL_ERROR", "message": "Internal server error", "event": message["event"]})
        )
        return
    if reply is not None:
        await websocket.send_json(jsonable_encoder(reply))
