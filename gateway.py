import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from auth import Authenticator
from backend import RedisBackend
from errors import ChatError, Unauthorized
from membership import RoomResolver, RoomTarget
from presence import PresenceTracker
from relay import MessageRelay
from schemas import events
from schemas.events import (
    Frame,
    DmJoinPayload,
    GroupJoinPayload,
    SendMessagePayload,
    DeleteMessagePayload,
    EditMessagePayload,
)
from logging_config import get_logger

logger = get_logger(__name__)

# Ack message used when a handler fails for a reason the client should not see
GENERIC_FAILURES = {
    events.DM_JOIN: "Failed to join chat",
    events.GROUP_JOIN: "Failed to join group",
    events.MESSAGE_SEND: "Failed to send message",
    events.MESSAGE_DELETE: "Failed to delete message",
    events.MESSAGE_EDIT: "Failed to edit message",
}


@dataclass(eq=False)
class Connection:
    """One authenticated socket. Its rooms die with it."""
    websocket: Any
    user: dict
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    rooms: Set[str] = field(default_factory=set)

    @property
    def user_id(self) -> str:
        return str(self.user["_id"])


class Gateway:
    def __init__(self, backend: RedisBackend, authenticator: Optional[Authenticator] = None):
        self.backend = backend
        self.authenticator = authenticator or Authenticator(backend)
        # Format: {connection_id: Connection}
        self.connections: Dict[str, Connection] = {}
        self.presence = PresenceTracker(self._broadcast_presence)
        self.resolver = RoomResolver(backend)
        self.relay = MessageRelay(backend, self.resolver, self.broadcast_room)
        self._handlers = {
            events.DM_JOIN: self._on_dm_join,
            events.GROUP_JOIN: self._on_group_join,
            events.MESSAGE_SEND: self._on_message_send,
            events.MESSAGE_DELETE: self._on_message_delete,
            events.MESSAGE_EDIT: self._on_message_edit,
        }

    # Connection lifecycle

    async def serve(self, websocket: WebSocket):
        """Authenticate, then pump frames until the socket goes away."""
        try:
            user = await self.authenticator.authenticate(websocket.headers)
        except Unauthorized as e:
            logger.warning(f"WebSocket connection rejected: {e.message}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Unauthorized")
            return

        await websocket.accept()
        connection = await self.register(websocket, user)
        try:
            while True:
                try:
                    raw = await websocket.receive_text()
                except WebSocketDisconnect:
                    logger.info(f"WebSocket disconnected normally for connection {connection.id}")
                    break
                await self.handle_frame(connection, raw)
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection.id}: {e}", exc_info=True)
        finally:
            await self.unregister(connection)

    async def register(self, websocket, user: dict) -> Connection:
        connection = Connection(websocket=websocket, user=user)
        self.connections[connection.id] = connection
        logger.info(f"User {connection.user_id} connected as {connection.id}")
        online = await self.presence.on_connect(connection.user_id, connection.id)
        # Initial snapshot goes to the newcomer on its own as well
        await self.emit(connection, events.PRESENCE_ONLINE_USERS, {"userIds": online})
        return connection

    async def unregister(self, connection: Connection):
        if self.connections.pop(connection.id, None) is None:
            return
        connection.rooms.clear()
        logger.info(f"User {connection.user_id} disconnected ({connection.id})")
        await self.presence.on_disconnect(connection.user_id, connection.id)

    # Inbound frames

    async def handle_frame(self, connection: Connection, raw: str):
        try:
            frame = Frame.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Ignoring malformed frame from connection {connection.id}")
            return

        result = await self.dispatch(connection, frame.event, frame.data)
        if frame.ack is not None:
            await self.emit(connection, events.ACK, result, ack=frame.ack)

    async def dispatch(self, connection: Connection, event: str, data: Any) -> dict:
        """Run one handler to completion and turn its outcome into an ack body."""
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning(f"Unknown event {event!r} from connection {connection.id}")
            return {"ok": False, "message": "Unknown event"}
        try:
            result = await handler(connection, data if data is not None else {})
        except ChatError as e:
            logger.info(f"{event} from user {connection.user_id} refused: {e.message}")
            return {"ok": False, "message": e.message}
        except ValidationError:
            logger.info(f"{event} from user {connection.user_id} had an invalid payload")
            return {"ok": False, "message": "Invalid payload"}
        except Exception as e:
            logger.error(f"{event} failed for user {connection.user_id}: {e}", exc_info=True)
            return {"ok": False, "message": GENERIC_FAILURES[event]}
        return {"ok": True, **result}

    async def _on_dm_join(self, connection: Connection, data) -> dict:
        payload = DmJoinPayload.model_validate(data)
        room_id = await self.resolver.join(connection, RoomTarget.dm(payload.otherUserId))
        logger.info(f"Connection {connection.id} joined {room_id}")
        return {"roomId": room_id}

    async def _on_group_join(self, connection: Connection, data) -> dict:
        payload = GroupJoinPayload.model_validate(data)
        room_id = await self.resolver.join(connection, RoomTarget.group(payload.groupId))
        logger.info(f"Connection {connection.id} joined {room_id}")
        return {"roomId": room_id}

    async def _on_message_send(self, connection: Connection, data) -> dict:
        return await self.relay.send(connection.user_id, SendMessagePayload.model_validate(data))

    async def _on_message_delete(self, connection: Connection, data) -> dict:
        payload = DeleteMessagePayload.model_validate(data)
        return await self.relay.delete(connection.user_id, payload.messageId)

    async def _on_message_edit(self, connection: Connection, data) -> dict:
        payload = EditMessagePayload.model_validate(data)
        return await self.relay.edit(connection.user_id, payload.messageId, payload.text)

    # Outbound

    async def emit(self, connection: Connection, event: str, data: Any, ack: Optional[int] = None):
        frame = {"event": event, "data": data}
        if ack is not None:
            frame["ack"] = ack
        try:
            await connection.websocket.send_text(json.dumps(frame))
        except Exception as e:
            # Connection might be closed; its own receive loop cleans it up
            logger.warning(f"Error sending {event} to connection {connection.id}: {e}")

    async def broadcast_room(self, room_id: str, event: str, data: Any):
        members = [c for c in list(self.connections.values()) if room_id in c.rooms]
        logger.debug(f"Broadcasting {event} to {len(members)} connections in room {room_id}")
        if members:
            await asyncio.gather(*(self.emit(c, event, data) for c in members), return_exceptions=True)

    async def broadcast_all(self, event: str, data: Any):
        targets = list(self.connections.values())
        if targets:
            await asyncio.gather(*(self.emit(c, event, data) for c in targets), return_exceptions=True)

    async def _broadcast_presence(self, user_ids):
        await self.broadcast_all(events.PRESENCE_ONLINE_USERS, {"userIds": list(user_ids)})
