from typing import Callable, Iterable, List, Optional, Set

from logging_config import get_logger

logger = get_logger(__name__)


class PresenceStore:
    """Client mirror of the server's online-user broadcasts.

    Only the transport writes to it: connect/disconnect flip
    ``is_connected`` and each ``presence:onlineUsers`` replaces the set.
    """

    def __init__(self):
        self.is_connected: bool = False
        self.online_user_ids: Set[str] = set()
        self._listeners: List[Callable[["PresenceStore"], None]] = []

    def set_connected(self, is_connected) -> None:
        self.is_connected = bool(is_connected)
        self._notify()

    def set_online_user_ids(self, user_ids: Optional[Iterable]) -> None:
        if not isinstance(user_ids, (list, tuple, set)):
            user_ids = []
        self.online_user_ids = {str(user_id) for user_id in user_ids}
        logger.debug(f"{len(self.online_user_ids)} users online")
        self._notify()

    def is_online(self, user_id) -> bool:
        return str(user_id) in self.online_user_ids

    def subscribe(self, listener: Callable[["PresenceStore"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
