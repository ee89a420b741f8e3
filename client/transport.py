import asyncio
import inspect
import itertools
import json
from typing import Any, Callable, Dict, List, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from client.presence import PresenceStore
from constants import CLIENT_TIMEOUT_SECONDS, JWT_COOKIE_NAME
from schemas import events
from logging_config import get_logger

logger = get_logger(__name__)

# Local pseudo-events raised by the transport itself
DISCONNECT = "disconnect"
CONNECT_ERROR = "connect_error"


class TransportError(Exception):
    pass


class GatewayClient:
    """One persistent socket per session, with acknowledged emits.

    Listeners are plain callables or coroutine functions keyed by event name.
    Acks are matched to requests by a per-connection counter.
    """

    def __init__(self, url: str, token: str, presence: Optional[PresenceStore] = None, cookie_name: str = JWT_COOKIE_NAME):
        self.url = url
        self.token = token
        self.cookie_name = cookie_name
        self.presence = presence or PresenceStore()
        self.websocket = None
        self._listeners: Dict[str, List[Callable]] = {}
        self._pending: Dict[int, asyncio.Future] = {}
        self._ack_ids = itertools.count(1)
        self._reader: Optional[asyncio.Task] = None
        self.on(events.PRESENCE_ONLINE_USERS, self._on_online_users)

    @property
    def connected(self) -> bool:
        return self.websocket is not None and self.presence.is_connected

    async def connect(self):
        if self.websocket is not None:
            return
        try:
            websocket = await connect(self.url, additional_headers={"Cookie": f"{self.cookie_name}={self.token}"})
        except (InvalidHandshake, OSError) as e:
            logger.warning(f"Could not connect to {self.url}: {e}")
            await self._fire(CONNECT_ERROR, {"message": str(e)})
            raise TransportError("Could not connect to chat") from e
        self.attach(websocket)
        self._reader = asyncio.create_task(self._read_loop())

    def attach(self, websocket):
        """Adopt an open socket (used by ``connect`` and by tests)."""
        self.websocket = websocket
        self.presence.set_connected(True)
        logger.info(f"Connected to {self.url}")

    async def disconnect(self):
        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            await websocket.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        await self._connection_lost()

    def on(self, event: str, handler: Callable):
        self._listeners.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable):
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: str, data: Any = None, timeout: Optional[float] = CLIENT_TIMEOUT_SECONDS) -> dict:
        """Send an event and wait for its acknowledgment body."""
        if self.websocket is None:
            return {"ok": False, "message": "Not connected"}
        ack_id = next(self._ack_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[ack_id] = future
        try:
            await self.websocket.send(json.dumps({"event": event, "data": data or {}, "ack": ack_id}))
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No acknowledgment for {event} within {timeout}s")
            return {"ok": False, "message": "Request timed out"}
        except ConnectionClosed:
            return {"ok": False, "message": "Connection lost"}
        finally:
            self._pending.pop(ack_id, None)

    async def handle_raw(self, raw: str):
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON frame from server")
            return
        event = frame.get("event")
        if event == events.ACK:
            future = self._pending.get(frame.get("ack"))
            if future is not None and not future.done():
                future.set_result(frame.get("data") or {})
            return
        await self._fire(event, frame.get("data") or {})

    async def _read_loop(self):
        try:
            async for raw in self.websocket:
                await self.handle_raw(raw)
        except ConnectionClosed as e:
            logger.info(f"Connection closed by server: {e}")
        finally:
            if self.websocket is not None:
                self.websocket = None
                await self._connection_lost()

    async def _connection_lost(self):
        for future in self._pending.values():
            if not future.done():
                future.set_result({"ok": False, "message": "Connection lost"})
        self._pending.clear()
        if self.presence.is_connected:
            self.presence.set_connected(False)
            await self._fire(DISCONNECT, {})

    async def _fire(self, event: str, data: Any):
        for handler in list(self._listeners.get(event, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}", exc_info=True)

    def _on_online_users(self, data):
        self.presence.set_online_user_ids(data.get("userIds"))
