import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

import redis.asyncio as redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB
from redis_keys import (
    REDIS_USER_KEY,
    REDIS_FRIENDS_KEY,
    REDIS_GROUP_KEY,
    REDIS_MEMBERS_KEY,
    REDIS_MESSAGE_KEY,
    REDIS_ROOM_MESSAGES_KEY,
    REDIS_MESSAGE_SEQ_KEY,
)
from room_ids import is_valid_user_id
from logging_config import get_logger

logger = get_logger(__name__)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_message_id() -> str:
    return uuid.uuid4().hex


def _to_hash(data: dict) -> dict:
    # Redis hashes only hold strings; None values are left out
    return {k: str(v) for k, v in data.items() if v is not None}


class RedisBackend:
    """Document store for users, groups and messages.

    Every method is a suspension point; nothing here is transactional across
    calls, so callers must not assume an authorization check and a later
    write see the same data.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        if redis_client is None:
            logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
            redis_client = redis.Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                password=REDIS_PASSWORD,
                db=REDIS_DB,
                decode_responses=True,
            )
        self.redis_client = redis_client

    async def ping(self) -> bool:
        try:
            return bool(await self.redis_client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed for {REDIS_HOST}:{REDIS_PORT}: {e}")
            return False

    async def close(self):
        await self.redis_client.aclose()

    # Users

    async def create_user(self, user_id: str, full_name: str, profile_pic: str = "") -> dict:
        if not is_valid_user_id(user_id):
            raise ValueError(f"Invalid user id: {user_id!r}")
        logger.debug(f"Creating user {user_id}")
        key = REDIS_USER_KEY.format(user_id=user_id)
        await self.redis_client.hset(key, mapping={"fullName": full_name, "profilePic": profile_pic or ""})
        return {"_id": user_id, "fullName": full_name, "profilePic": profile_pic or ""}

    async def get_user(self, user_id: str) -> Optional[dict]:
        if not user_id:
            return None
        data = await self.redis_client.hgetall(REDIS_USER_KEY.format(user_id=user_id))
        if not data:
            logger.debug(f"User {user_id} not found")
            return None
        return {"_id": user_id, "fullName": data.get("fullName", ""), "profilePic": data.get("profilePic", "")}

    async def user_exists(self, user_id: str) -> bool:
        if not user_id:
            return False
        return bool(await self.redis_client.exists(REDIS_USER_KEY.format(user_id=user_id)))

    async def add_friends(self, user_id: str, friend_id: str):
        """Friendship is mutual, so both sets are written."""
        logger.debug(f"Linking friends {user_id} <-> {friend_id}")
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.sadd(REDIS_FRIENDS_KEY.format(user_id=user_id), friend_id)
            pipe.sadd(REDIS_FRIENDS_KEY.format(user_id=friend_id), user_id)
            await pipe.execute()

    async def get_friend_ids(self, user_id: str) -> set:
        return set(await self.redis_client.smembers(REDIS_FRIENDS_KEY.format(user_id=user_id)))

    # Groups

    async def create_group(self, group_id: str, name: str, admin_id: str, member_ids: Iterable[str] = ()) -> dict:
        logger.info(f"Creating group {group_id} with admin {admin_id}")
        members = {admin_id, *member_ids}
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(REDIS_GROUP_KEY.format(group_id=group_id), mapping={"name": name, "admin": admin_id})
            pipe.sadd(REDIS_MEMBERS_KEY.format(group_id=group_id), *members)
            await pipe.execute()
        return {"_id": group_id, "name": name, "admin": admin_id, "members": sorted(members)}

    async def get_group(self, group_id: str) -> Optional[dict]:
        if not group_id:
            return None
        data = await self.redis_client.hgetall(REDIS_GROUP_KEY.format(group_id=group_id))
        if not data:
            logger.debug(f"Group {group_id} not found")
            return None
        members = await self.redis_client.smembers(REDIS_MEMBERS_KEY.format(group_id=group_id))
        return {
            "_id": group_id,
            "name": data.get("name", ""),
            "admin": data.get("admin", ""),
            "members": sorted(members),
        }

    async def add_group_member(self, group_id: str, user_id: str):
        await self.redis_client.sadd(REDIS_MEMBERS_KEY.format(group_id=group_id), user_id)

    async def remove_group_member(self, group_id: str, user_id: str):
        await self.redis_client.srem(REDIS_MEMBERS_KEY.format(group_id=group_id), user_id)

    # Messages

    async def create_message(self, message: dict) -> dict:
        """Store a new message and index it under its room."""
        message_id = new_message_id()
        created_at = now_iso()
        seq = await self.redis_client.incr(REDIS_MESSAGE_SEQ_KEY)
        doc = {**message, "_id": message_id, "createdAt": created_at, "updatedAt": created_at}
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(REDIS_MESSAGE_KEY.format(message_id=message_id), mapping=_to_hash(doc))
            pipe.zadd(REDIS_ROOM_MESSAGES_KEY.format(room_id=doc["roomId"]), {message_id: seq})
            await pipe.execute()
        logger.debug(f"Message {message_id} stored in room {doc['roomId']}")
        return doc

    async def get_message(self, message_id: str) -> Optional[dict]:
        data = await self.redis_client.hgetall(REDIS_MESSAGE_KEY.format(message_id=message_id))
        if not data:
            return None
        return data

    async def update_message_text(self, message_id: str, text: str) -> Optional[dict]:
        key = REDIS_MESSAGE_KEY.format(message_id=message_id)
        if not await self.redis_client.exists(key):
            return None
        await self.redis_client.hset(key, mapping={"text": text, "updatedAt": now_iso()})
        return await self.get_message(message_id)

    async def delete_message(self, message_id: str) -> bool:
        message = await self.get_message(message_id)
        if not message:
            return False
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.delete(REDIS_MESSAGE_KEY.format(message_id=message_id))
            pipe.zrem(REDIS_ROOM_MESSAGES_KEY.format(room_id=message["roomId"]), message_id)
            await pipe.execute()
        logger.debug(f"Message {message_id} deleted from room {message['roomId']}")
        return True

    async def get_room_messages(self, room_id: str, limit: int = 50) -> list:
        """Latest ``limit`` messages of a room, oldest first."""
        ids = await self.redis_client.zrange(REDIS_ROOM_MESSAGES_KEY.format(room_id=room_id), -limit, -1)
        messages = []
        for message_id in ids:
            message = await self.get_message(message_id)
            if message:
                messages.append(message)
        return messages


redis_backend = RedisBackend()
