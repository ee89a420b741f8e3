from typing import Iterable, List, Optional


def message_id(message: dict) -> Optional[str]:
    value = message.get("_id") if isinstance(message, dict) else None
    return None if value is None else str(value)


class Timeline:
    """Ordered messages of one conversation.

    Replayed events are harmless: a created message already present, an
    update for an unknown id and a delete for a removed id are all no-ops.
    """

    def __init__(self, messages: Iterable[dict] = ()):
        self._messages: List[dict] = []
        self.load(messages)

    def load(self, messages: Iterable[dict]) -> None:
        self._messages = []
        for message in messages or ():
            self.apply_created(message)

    def apply_created(self, message: dict) -> bool:
        mid = message_id(message)
        if mid is None or self.index_of(mid) is not None:
            return False
        self._messages.append(dict(message))
        return True

    def apply_updated(self, message: dict) -> bool:
        mid = message_id(message)
        index = self.index_of(mid) if mid is not None else None
        if index is None:
            return False
        self._messages[index] = {**self._messages[index], **message}
        return True

    def apply_deleted(self, mid) -> bool:
        index = self.index_of(str(mid))
        if index is None:
            return False
        del self._messages[index]
        return True

    def index_of(self, mid: str) -> Optional[int]:
        for index, message in enumerate(self._messages):
            if message_id(message) == mid:
                return index
        return None

    def get(self, mid) -> Optional[dict]:
        index = self.index_of(str(mid))
        return None if index is None else self._messages[index]

    @property
    def messages(self) -> List[dict]:
        return list(self._messages)

    def ids(self) -> List[str]:
        return [message_id(m) for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)
