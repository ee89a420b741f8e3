import re
from typing import Awaitable, Callable, Optional

from backend import RedisBackend
from constants import MAX_IMAGE_CHARS, MAX_TEXT_LENGTH
from errors import EmptyMessage, Forbidden, InvalidId, InvalidImage, InvalidKind, NotFound, TooLarge, TooLong
from membership import RoomResolver, RoomTarget
from schemas.events import MESSAGE_NEW, MESSAGE_DELETED, MESSAGE_UPDATED, SendMessagePayload
from logging_config import get_logger

logger = get_logger(__name__)

RoomBroadcast = Callable[[str, str, dict], Awaitable[None]]

MESSAGE_ID_RE = re.compile(r"^[0-9a-f]{32}$")
IMAGE_PREFIX = "data:image/"


def is_valid_message_id(message_id) -> bool:
    return isinstance(message_id, str) and bool(MESSAGE_ID_RE.match(message_id))


def strip_embedded_avatar(sender: dict) -> dict:
    # Inline avatars would be resent with every message
    pic = sender.get("profilePic")
    if isinstance(pic, str) and pic.startswith(IMAGE_PREFIX):
        return {**sender, "profilePic": ""}
    return sender


async def populate_message(backend: RedisBackend, message: dict) -> dict:
    """Expand the sender id into a profile, the way clients render it."""
    sender_id = message.get("sender", "")
    sender = await backend.get_user(sender_id) or {"_id": sender_id, "fullName": "", "profilePic": ""}
    populated = {k: v for k, v in message.items() if v is not None}
    populated["sender"] = strip_embedded_avatar(sender)
    return populated


class MessageRelay:
    """Validates, stores and fans out message operations.

    Every operation re-checks authorization against the store, whatever the
    caller's connection has joined before. The check and the write are two
    separate store round-trips, so a membership revoked in between is not
    seen.
    """

    def __init__(self, backend: RedisBackend, resolver: RoomResolver, broadcast: RoomBroadcast):
        self.backend = backend
        self.resolver = resolver
        self.broadcast = broadcast

    async def send(self, sender_id: str, payload: SendMessagePayload) -> dict:
        text = (payload.text or "").strip()
        image = payload.image if isinstance(payload.image, str) else ""

        if not text and not image:
            raise EmptyMessage()
        if image:
            if not image.startswith(IMAGE_PREFIX):
                raise InvalidImage()
            if len(image) > MAX_IMAGE_CHARS:
                raise TooLarge()

        if payload.kind == "dm":
            target = RoomTarget.dm(payload.otherUserId)
        elif payload.kind == "group":
            target = RoomTarget.group(payload.groupId)
        else:
            raise InvalidKind()

        room_id = await self.resolver.authorize(sender_id, target)

        doc = {"kind": payload.kind, "roomId": room_id, "sender": sender_id, "text": text, "image": image}
        if target.is_group:
            doc["group"] = target.group_id
        else:
            doc["recipient"] = target.other_user_id
        message = await self.backend.create_message(doc)
        logger.info(f"User {sender_id} sent message {message['_id']} to {room_id}")

        await self.broadcast(room_id, MESSAGE_NEW, {"roomId": room_id, "message": await populate_message(self.backend, message)})
        return {"roomId": room_id}

    async def delete(self, requester_id: str, message_id: Optional[str]) -> dict:
        if not is_valid_message_id(message_id):
            raise InvalidId()
        message = await self.backend.get_message(message_id)
        if not message:
            raise NotFound("Message not found")

        is_sender = message.get("sender") == str(requester_id)
        if not is_sender:
            if message.get("kind") != "group":
                raise Forbidden()
            group = await self.backend.get_group(message.get("group"))
            if not group or group["admin"] != str(requester_id):
                raise Forbidden()
            logger.info(f"Group admin {requester_id} deleting message {message_id} in {message['roomId']}")

        if not await self.backend.delete_message(message_id):
            raise NotFound("Message not found")

        room_id = message["roomId"]
        await self.broadcast(room_id, MESSAGE_DELETED, {"roomId": room_id, "messageId": message_id})
        return {}

    async def edit(self, requester_id: str, message_id: Optional[str], text: Optional[str]) -> dict:
        if not is_valid_message_id(message_id):
            raise InvalidId()
        trimmed = (text or "").strip()
        if not trimmed:
            raise EmptyMessage()
        if len(trimmed) > MAX_TEXT_LENGTH:
            raise TooLong()

        existing = await self.backend.get_message(message_id)
        if not existing:
            raise NotFound("Message not found")
        # Admins may delete but never rewrite someone else's words
        if existing.get("sender") != str(requester_id):
            raise Forbidden()
        if existing.get("kind") == "group":
            group = await self.backend.get_group(existing.get("group"))
            if not group or (str(requester_id) not in group["members"] and group["admin"] != str(requester_id)):
                raise Forbidden()

        updated = await self.backend.update_message_text(message_id, trimmed)
        if not updated:
            raise NotFound("Message not found")

        room_id = existing["roomId"]
        await self.broadcast(room_id, MESSAGE_UPDATED, {"roomId": room_id, "message": await populate_message(self.backend, updated)})
        return {}
