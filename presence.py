from typing import Awaitable, Callable, Dict, List, Set

from logging_config import get_logger

logger = get_logger(__name__)

PresenceBroadcast = Callable[[List[str]], Awaitable[None]]


class PresenceTracker:
    """Tracks which users hold at least one live connection.

    State lives in this process only and starts empty on every restart.
    ``broadcast`` is called with the full online list after every change;
    a shared-store implementation can replace this class as long as it
    keeps the same coroutine methods.
    """

    def __init__(self, broadcast: PresenceBroadcast):
        self._broadcast = broadcast
        self._user_connections: Dict[str, Set[str]] = {}

    async def on_connect(self, user_id: str, connection_id: str) -> List[str]:
        connections = self._user_connections.setdefault(str(user_id), set())
        connections.add(connection_id)
        logger.debug(f"User {user_id} now has {len(connections)} live connection(s)")
        return await self._publish()

    async def on_disconnect(self, user_id: str, connection_id: str) -> List[str]:
        user_id = str(user_id)
        connections = self._user_connections.get(user_id)
        if connections is not None:
            connections.discard(connection_id)
            if not connections:
                del self._user_connections[user_id]
                logger.info(f"User {user_id} went offline")
        return await self._publish()

    async def snapshot(self) -> List[str]:
        return [user_id for user_id, connections in self._user_connections.items() if connections]

    async def is_online(self, user_id: str) -> bool:
        return bool(self._user_connections.get(str(user_id)))

    async def connection_ids(self, user_id: str) -> Set[str]:
        return set(self._user_connections.get(str(user_id), ()))

    async def _publish(self) -> List[str]:
        online = await self.snapshot()
        await self._broadcast(online)
        return online
