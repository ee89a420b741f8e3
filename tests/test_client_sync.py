import ast
import asyncio
import json
from pathlib import Path

import httpx
import pytest

from client.conversation import ConversationView, ViewState, encode_image
from client.history import HistoryClient, HistoryError
from client.presence import PresenceStore
from client.timeline import Timeline
from client.transport import GatewayClient

ROOM = "dm-alice-bob"


def msg(mid, text="hi", **extra):
    return {"_id": mid, "text": text, "roomId": ROOM, **extra}


class FakeTransport:
    """Records emits and lets tests fire server events by hand."""

    def __init__(self, acks=None):
        self.listeners = {}
        self.emitted = []
        self.acks = acks or {}
        self.gate = None

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def off(self, event, handler):
        self.listeners.get(event, []).remove(handler)

    async def emit(self, event, data=None):
        self.emitted.append((event, data))
        if self.gate is not None:
            await self.gate.wait()
        return self.acks.get(event, {"ok": True})

    def fire(self, event, data):
        for handler in list(self.listeners.get(event, [])):
            handler(data)

    def listener_count(self):
        return sum(len(handlers) for handlers in self.listeners.values())


class FakeHistory:
    def __init__(self, messages=None, error=None, delay=0):
        self.messages = messages or []
        self.error = error
        self.delay = delay

    async def fetch_dm(self, other_user_id):
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.messages)

    fetch_group = fetch_dm


def _view(transport, history, **kwargs):
    return ConversationView.direct(transport, history, "bob", "alice", **kwargs)


# Timeline

def test_timeline_applies_events_idempotently():
    timeline = Timeline([msg("1"), msg("2")])
    assert timeline.apply_created(msg("3")) is True
    assert timeline.apply_created(msg("3")) is False
    assert timeline.apply_updated({"_id": "2", "text": "edited"}) is True
    assert timeline.apply_updated({"_id": "2", "text": "edited"}) is True
    assert timeline.apply_updated({"_id": "99", "text": "ghost"}) is False
    assert timeline.apply_deleted("1") is True
    assert timeline.apply_deleted("1") is False

    assert timeline.ids() == ["2", "3"]
    assert timeline.get("2") == {"_id": "2", "text": "edited", "roomId": ROOM}


# Presence store

def test_presence_store_mirrors_broadcasts():
    store = PresenceStore()
    seen = []
    unsubscribe = store.subscribe(lambda s: seen.append(set(s.online_user_ids)))

    store.set_connected(True)
    store.set_online_user_ids(["alice", 42])
    assert store.is_connected is True
    assert store.is_online("42")
    store.set_online_user_ids(None)
    assert store.online_user_ids == set()

    unsubscribe()
    store.set_online_user_ids(["bob"])
    assert seen == [set(), {"alice", "42"}, set()]


# Conversation view

async def test_open_loads_history_and_joins():
    transport = FakeTransport(acks={"dm:join": {"ok": True, "roomId": ROOM}})
    view = _view(transport, FakeHistory([msg("1"), msg("2")]))

    assert await view.open() is ViewState.READY
    assert [m["_id"] for m in view.messages] == ["1", "2"]
    assert transport.emitted == [("dm:join", {"otherUserId": "alice"})]


async def test_live_events_for_active_room_only():
    transport = FakeTransport()
    view = _view(transport, FakeHistory([msg("1")]))
    await view.open()

    transport.fire("message:new", {"roomId": ROOM, "message": msg("2", "nuevo")})
    transport.fire("message:new", {"roomId": "group-g1", "message": msg("x")})
    transport.fire("message:updated", {"roomId": ROOM, "message": {"_id": "1", "text": "editado"}})
    transport.fire("message:deleted", {"roomId": ROOM, "messageId": "2"})
    transport.fire("message:deleted", {"roomId": ROOM, "messageId": "2"})

    assert view.messages == [msg("1", "editado")]


async def test_events_during_loading_are_applied_after_history():
    transport = FakeTransport()
    transport.gate = asyncio.Event()
    view = _view(transport, FakeHistory([msg("1")]))

    opening = asyncio.create_task(view.open())
    await asyncio.sleep(0)
    assert view.state is ViewState.LOADING
    transport.fire("message:new", {"roomId": ROOM, "message": msg("2")})
    # already part of the history page
    transport.fire("message:new", {"roomId": ROOM, "message": msg("1")})
    transport.gate.set()

    assert await opening is ViewState.READY
    assert [m["_id"] for m in view.messages] == ["1", "2"]


async def test_join_refused_is_an_error_state():
    transport = FakeTransport(acks={"dm:join": {"ok": False, "message": "You can only chat with friends"}})
    view = _view(transport, FakeHistory())
    assert await view.open() is ViewState.ERROR
    assert view.error == "You can only chat with friends"


async def test_retry_after_failed_open_listens_once():
    transport = FakeTransport(acks={"dm:join": {"ok": False, "message": "You can only chat with friends"}})
    view = _view(transport, FakeHistory([msg("1")]))

    assert await view.open() is ViewState.ERROR
    assert transport.listener_count() == 0

    transport.acks = {}
    assert await view.open() is ViewState.READY
    assert await view.open() is ViewState.READY
    assert transport.listener_count() == 3

    transport.fire("message:updated", {"roomId": ROOM, "message": {"_id": "1", "text": "otra vez"}})
    assert view.messages == [msg("1", "otra vez")]


async def test_history_failure_is_an_error_state():
    view = _view(FakeTransport(), FakeHistory(error=HistoryError("Failed to load messages", 500)))
    assert await view.open() is ViewState.ERROR
    assert view.error == "Failed to load messages"


async def test_slow_load_times_out():
    view = _view(FakeTransport(), FakeHistory(delay=1), timeout=0.05)
    assert await view.open() is ViewState.ERROR
    assert view.error == "Timed out loading conversation"


async def test_close_unregisters_listeners():
    transport = FakeTransport()
    view = _view(transport, FakeHistory())
    await view.open()
    assert transport.listener_count() == 3
    view.close()
    assert transport.listener_count() == 0
    assert view.state is ViewState.CLOSED
    # no transport-level leave
    assert [event for event, _ in transport.emitted] == ["dm:join"]


async def test_failed_ack_only_notifies():
    notices = []
    transport = FakeTransport(acks={"message:send": {"ok": False, "message": "Message is empty"}})
    view = ConversationView.group(transport, FakeHistory(), "g1", notify=notices.append)
    await view.open()

    ack = await view.send_text("   ")
    assert ack["ok"] is False
    assert notices == ["Message is empty"]
    assert view.state is ViewState.READY
    assert transport.emitted[-1] == ("message:send", {"kind": "group", "groupId": "g1", "text": "   "})


async def test_edit_and_delete_emit_requests():
    transport = FakeTransport()
    view = _view(transport, FakeHistory())
    await view.open()
    await view.edit("1", "nuevo")
    await view.delete("1")
    assert transport.emitted[1:] == [
        ("message:edit", {"messageId": "1", "text": "nuevo"}),
        ("message:delete", {"messageId": "1"}),
    ]


async def test_send_image_checks_before_sending():
    notices = []
    transport = FakeTransport()
    view = _view(transport, FakeHistory(), notify=notices.append)
    await view.open()

    await view.send_image(b"%PDF", "application/pdf")
    await view.send_image(b"\x00" * (700 * 1024 + 1), "image/png")
    assert notices == ["Please select an image file", "Image is too large (max ~700KB)"]
    assert len(transport.emitted) == 1

    await view.send_image(b"GIF89a", "image/gif")
    event, data = transport.emitted[-1]
    assert data["image"] == encode_image(b"GIF89a", "image/gif")
    assert data["image"].startswith("data:image/gif;base64,")


def test_client_modules_do_not_import_server_code():
    server_modules = {"app", "backend", "gateway", "membership", "relay", "auth"}
    for path in Path(__file__).resolve().parent.parent.joinpath("client").glob("*.py"):
        tree = ast.parse(path.read_text())
        imported = set()
        for node in ast.walk(tree):
            if isinstance(node, ast.ImportFrom) and node.module:
                imported.add(node.module.split(".")[0])
            elif isinstance(node, ast.Import):
                imported.update(alias.name.split(".")[0] for alias in node.names)
        assert not imported & server_modules, path.name


# Transport

class FakeSocket:
    def __init__(self):
        self.sent = []
        self.closed = False

    async def send(self, raw):
        self.sent.append(json.loads(raw))

    async def close(self):
        self.closed = True


async def test_gateway_client_matches_acks():
    client = GatewayClient("ws://chat.test/ws", "token")
    socket = FakeSocket()
    client.attach(socket)

    pending = asyncio.create_task(client.emit("group:join", {"groupId": "g1"}))
    await asyncio.sleep(0)
    [frame] = socket.sent
    assert frame["event"] == "group:join"
    await client.handle_raw(json.dumps({"event": "ack", "ack": frame["ack"], "data": {"ok": True, "roomId": "group-g1"}}))
    assert await pending == {"ok": True, "roomId": "group-g1"}


async def test_gateway_client_feeds_presence_and_listeners():
    presence = PresenceStore()
    client = GatewayClient("ws://chat.test/ws", "token", presence=presence)
    client.attach(FakeSocket())
    received = []
    client.on("message:new", received.append)

    await client.handle_raw(json.dumps({"event": "presence:onlineUsers", "data": {"userIds": ["alice", "bob"]}}))
    await client.handle_raw(json.dumps({"event": "message:new", "data": {"roomId": ROOM}}))
    await client.handle_raw("garbage")

    assert presence.is_connected
    assert presence.online_user_ids == {"alice", "bob"}
    assert received == [{"roomId": ROOM}]


async def test_gateway_client_disconnect_fails_pending_acks():
    presence = PresenceStore()
    client = GatewayClient("ws://chat.test/ws", "token", presence=presence)
    socket = FakeSocket()
    client.attach(socket)

    pending = asyncio.create_task(client.emit("dm:join", {"otherUserId": "alice"}))
    await asyncio.sleep(0)
    await client.disconnect()

    assert await pending == {"ok": False, "message": "Connection lost"}
    assert socket.closed
    assert presence.is_connected is False
    assert await client.emit("dm:join", {}) == {"ok": False, "message": "Not connected"}


# History

async def test_history_client_reads_messages_and_errors():
    def handler(request):
        assert request.headers["cookie"] == "jwt=token"
        if request.url.path == "/messages/dm/alice":
            return httpx.Response(200, json={"roomId": ROOM, "messages": [msg("1")]})
        return httpx.Response(403, json={"detail": "You are not a member of this group"})

    client = HistoryClient("http://chat.test", "token", transport=httpx.MockTransport(handler))
    assert await client.fetch_dm("alice") == [msg("1")]
    with pytest.raises(HistoryError) as exc:
        await client.fetch_group("g1")
    assert exc.value.message == "You are not a member of this group"
    assert exc.value.status_code == 403
