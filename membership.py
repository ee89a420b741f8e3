from dataclasses import dataclass
from typing import Optional

from backend import RedisBackend
from errors import NotFound, Forbidden
from room_ids import dm_room_id, group_room_id, is_valid_user_id
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RoomTarget:
    """Either a direct peer or a group; exactly one is set."""
    other_user_id: Optional[str] = None
    group_id: Optional[str] = None

    @classmethod
    def dm(cls, other_user_id):
        return cls(other_user_id=None if other_user_id is None else str(other_user_id))

    @classmethod
    def group(cls, group_id):
        return cls(group_id=None if group_id is None else str(group_id))

    @property
    def is_group(self) -> bool:
        return self.group_id is not None


class RoomResolver:
    """Decides whether a user may use a room.

    Both joining and sending go through ``authorize`` so the two checks can
    never drift apart.
    """

    def __init__(self, backend: RedisBackend):
        self.backend = backend

    async def authorize(self, user_id: str, target: RoomTarget) -> str:
        if target.is_group:
            return await self._authorize_group(user_id, target.group_id)
        return await self._authorize_dm(user_id, target.other_user_id)

    async def _authorize_dm(self, user_id: str, other_user_id: Optional[str]) -> str:
        if not is_valid_user_id(other_user_id) or not await self.backend.user_exists(other_user_id):
            raise NotFound("User not found")
        friends = await self.backend.get_friend_ids(user_id)
        if other_user_id not in friends:
            logger.info(f"User {user_id} denied dm with non-friend {other_user_id}")
            raise Forbidden("You can only chat with friends")
        return dm_room_id(user_id, other_user_id)

    async def _authorize_group(self, user_id: str, group_id: Optional[str]) -> str:
        group = await self.backend.get_group(group_id) if group_id else None
        if not group:
            raise NotFound("Group not found")
        if str(user_id) not in group["members"]:
            logger.info(f"User {user_id} denied access to group {group_id}")
            raise Forbidden("You are not a member of this group")
        return group_room_id(group_id)

    async def join(self, connection, target: RoomTarget) -> str:
        """Authorize and add the room to the connection; joining twice is a no-op."""
        room_id = await self.authorize(connection.user_id, target)
        if room_id in connection.rooms:
            logger.debug(f"Connection {connection.id} already in room {room_id}")
        connection.rooms.add(room_id)
        return room_id
