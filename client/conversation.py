import asyncio
import base64
import enum
from typing import Awaitable, Callable, List, Optional

from client.timeline import Timeline
from constants import CLIENT_TIMEOUT_SECONDS, MAX_UPLOAD_BYTES
from room_ids import dm_room_id, group_room_id
from schemas import events
from logging_config import get_logger

logger = get_logger(__name__)

HistoryFetch = Callable[[], Awaitable[List[dict]]]
Notifier = Callable[[str], None]


class ViewState(str, enum.Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


def encode_image(data: bytes, content_type: str) -> str:
    """Client-side check and data-URL encoding of an image upload."""
    if not content_type or not content_type.startswith("image/"):
        raise ValueError("Please select an image file")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValueError(f"Image is too large (max ~{MAX_UPLOAD_BYTES // 1024}KB)")
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


class ConversationView:
    """Timeline of one open conversation kept in sync with the room.

    ``open`` fetches history and joins the room concurrently; the view is
    ready once both succeed within ``timeout``. Live events that arrive
    before that are held back and applied on top of the history.
    """

    def __init__(self, transport, fetch_history: HistoryFetch, kind: str, target_id: str, room_id: str,
                 join_event: str, join_payload: dict, timeout: float = CLIENT_TIMEOUT_SECONDS,
                 notify: Optional[Notifier] = None):
        self.transport = transport
        self.fetch_history = fetch_history
        self.kind = kind
        self.target_id = str(target_id)
        self.room_id = room_id
        self.join_event = join_event
        self.join_payload = join_payload
        self.timeout = timeout
        self.notify = notify or (lambda message: logger.warning(f"Chat: {message}"))
        self.timeline = Timeline()
        self.state = ViewState.LOADING
        self.error: Optional[str] = None
        self._pending_events: list = []
        self._listening = False
        self._handlers = {
            events.MESSAGE_NEW: self._on_new,
            events.MESSAGE_UPDATED: self._on_updated,
            events.MESSAGE_DELETED: self._on_deleted,
        }

    @classmethod
    def direct(cls, transport, history_client, my_user_id: str, other_user_id: str, **kwargs):
        return cls(
            transport,
            lambda: history_client.fetch_dm(other_user_id),
            kind="dm",
            target_id=other_user_id,
            room_id=dm_room_id(my_user_id, other_user_id),
            join_event=events.DM_JOIN,
            join_payload={"otherUserId": other_user_id},
            **kwargs,
        )

    @classmethod
    def group(cls, transport, history_client, group_id: str, **kwargs):
        return cls(
            transport,
            lambda: history_client.fetch_group(group_id),
            kind="group",
            target_id=group_id,
            room_id=group_room_id(group_id),
            join_event=events.GROUP_JOIN,
            join_payload={"groupId": group_id},
            **kwargs,
        )

    @property
    def messages(self) -> List[dict]:
        return self.timeline.messages

    async def open(self) -> ViewState:
        self.state = ViewState.LOADING
        self.error = None
        self._pending_events = []
        self._listen()

        try:
            history, ack = await asyncio.wait_for(
                asyncio.gather(self.fetch_history(), self.transport.emit(self.join_event, self.join_payload)),
                self.timeout,
            )
        except asyncio.TimeoutError:
            return self._fail("Timed out loading conversation")
        except Exception as e:
            return self._fail(getattr(e, "message", None) or "Failed to load messages")

        if self.state is ViewState.CLOSED:
            return self.state
        if not ack.get("ok"):
            return self._fail(ack.get("message") or "Could not join chat")
        if ack.get("roomId"):
            self.room_id = ack["roomId"]

        self.timeline.load(history)
        self.state = ViewState.READY
        pending, self._pending_events = self._pending_events, []
        for event, data in pending:
            self._apply(event, data)
        logger.info(f"Conversation {self.room_id} ready with {len(self.timeline)} messages")
        return self.state

    def close(self):
        """Stop listening; room membership ends with the connection itself."""
        self._unlisten()
        self.state = ViewState.CLOSED
        self._pending_events = []

    def _listen(self):
        if self._listening:
            return
        for event, handler in self._handlers.items():
            self.transport.on(event, handler)
        self._listening = True

    def _unlisten(self):
        if not self._listening:
            return
        for event, handler in self._handlers.items():
            self.transport.off(event, handler)
        self._listening = False

    def _fail(self, message: str) -> ViewState:
        self._unlisten()
        self._pending_events = []
        if self.state is not ViewState.CLOSED:
            self.state = ViewState.ERROR
            self.error = message
            logger.warning(f"Conversation {self.room_id} failed: {message}")
        return self.state

    # Live events

    def _on_new(self, data):
        self._receive(events.MESSAGE_NEW, data)

    def _on_updated(self, data):
        self._receive(events.MESSAGE_UPDATED, data)

    def _on_deleted(self, data):
        self._receive(events.MESSAGE_DELETED, data)

    def _receive(self, event: str, data: dict):
        if not isinstance(data, dict) or data.get("roomId") != self.room_id:
            return
        if self.state is ViewState.READY:
            self._apply(event, data)
        elif self.state is ViewState.LOADING:
            self._pending_events.append((event, data))

    def _apply(self, event: str, data: dict):
        if event == events.MESSAGE_NEW:
            self.timeline.apply_created(data.get("message") or {})
        elif event == events.MESSAGE_UPDATED:
            self.timeline.apply_updated(data.get("message") or {})
        elif event == events.MESSAGE_DELETED:
            self.timeline.apply_deleted(data.get("messageId"))

    # Outgoing operations; failures are transient notices, never fatal

    async def send_text(self, text: str) -> dict:
        return await self._request(events.MESSAGE_SEND, {**self._target(), "text": text}, "Failed to send message")

    async def send_image(self, data: bytes, content_type: str) -> dict:
        try:
            image = encode_image(data, content_type)
        except ValueError as e:
            self.notify(str(e))
            return {"ok": False, "message": str(e)}
        return await self._request(events.MESSAGE_SEND, {**self._target(), "image": image}, "Failed to send image")

    async def edit(self, message_id: str, text: str) -> dict:
        return await self._request(events.MESSAGE_EDIT, {"messageId": message_id, "text": text}, "Failed to edit message")

    async def delete(self, message_id: str) -> dict:
        return await self._request(events.MESSAGE_DELETE, {"messageId": message_id}, "Failed to delete message")

    def _target(self) -> dict:
        if self.kind == "group":
            return {"kind": "group", "groupId": self.target_id}
        return {"kind": "dm", "otherUserId": self.target_id}

    async def _request(self, event: str, payload: dict, fallback: str) -> dict:
        ack = await self.transport.emit(event, payload)
        if not ack.get("ok"):
            self.notify(ack.get("message") or fallback)
        return ack
