import asyncio
import json
import os

# Keep the settings deterministic regardless of the developer's shell
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest_asyncio
from fakeredis import aioredis
from fastapi import WebSocketDisconnect

from backend import RedisBackend
from gateway import Gateway

ALICE, BOB, CAROL, DAVE = "alice", "bob", "carol", "dave"
GROUP = "g1"


class DummyWebSocket:
    """Stands in for a FastAPI WebSocket; collects every frame sent to it."""

    def __init__(self, headers=None):
        self.headers = headers or {}
        self.sent = []
        self.accepted = False
        self.closed = None
        self.incoming = asyncio.Queue()

    async def accept(self):
        self.accepted = True

    async def close(self, code=1000, reason=None):
        self.closed = (code, reason)

    async def send_text(self, data):
        self.sent.append(json.loads(data))

    async def receive_text(self):
        item = await self.incoming.get()
        if item is None:
            raise WebSocketDisconnect(code=1000)
        return item

    def push(self, event, data=None, ack=None):
        self.incoming.put_nowait(json.dumps({"event": event, "data": data, "ack": ack}))

    def hang_up(self):
        self.incoming.put_nowait(None)

    def events(self, name):
        return [frame["data"] for frame in self.sent if frame["event"] == name]

    def acks(self):
        return {frame["ack"]: frame["data"] for frame in self.sent if frame["event"] == "ack"}


@pytest_asyncio.fixture
async def backend():
    backend = RedisBackend(aioredis.FakeRedis(decode_responses=True))
    yield backend
    await backend.redis_client.flushall()
    await backend.close()


@pytest_asyncio.fixture
async def seeded(backend):
    """alice and bob are friends; carol is nobody's friend.

    Group g1 is run by alice with bob as a member; carol and dave are outside.
    """
    await backend.create_user(ALICE, "Alice Adams", "data:image/png;base64,AAAA")
    await backend.create_user(BOB, "Bob Brown", "https://avatars.example/bob.png")
    await backend.create_user(CAROL, "Carol Cruz")
    await backend.create_user(DAVE, "Dave Diaz")
    await backend.add_friends(ALICE, BOB)
    await backend.create_group(GROUP, "Spanish practice", ALICE, [BOB])
    return backend


@pytest_asyncio.fixture
async def gateway(seeded):
    return Gateway(seeded)


@pytest_asyncio.fixture
async def connect(gateway, seeded):
    """Register an authenticated connection for a user, bypassing the handshake."""

    async def _connect(user_id):
        user = await seeded.get_user(user_id)
        return await gateway.register(DummyWebSocket(), user)

    return _connect
