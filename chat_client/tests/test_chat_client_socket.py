"""
Tests for ChatSocket reconnects and for sessions on a dropped socket.
"""
import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError

from chat_client import ChatAPIError, ChatSession
from chat_client import session as session_module
from chat_client.session import ChatSocket

CONV = 7


class FakeConnection:
    """Replays queued frames, then drops (or stays open when ``hold``)."""

    def __init__(self, frames=(), hold=False):
        self.frames = list(frames)
        self.hold = hold
        self.sent = []
        self.closed = False

    async def send(self, data):
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            yield json.dumps(frame)
        if self.hold:
            await asyncio.Event().wait()
        raise ConnectionClosedError(None, None)

    async def close(self):
        self.closed = True


def closed_connection():
    conn = FakeConnection()
    conn.closed = True
    return conn


async def wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_failed_resync_keeps_the_socket_reconnecting(monkeypatch):
    event = {"type": "new_message", "conversation_id": CONV, "message": {"id": 1}}
    connections = [
        FakeConnection(),
        FakeConnection(),
        FakeConnection(frames=[event]),
        FakeConnection(hold=True),
    ]
    made = []

    async def fake_connect(url):
        conn = connections[len(made)]
        made.append(conn)
        return conn

    monkeypatch.setattr(session_module.websockets, "connect", fake_connect)

    resyncs = []
    received = []

    async def resync():
        resyncs.append(1)
        if len(resyncs) == 1:
            raise ChatAPIError("Service unavailable", status_code=503, retryable=True)

    async def handler(e):
        received.append(e)

    socket = ChatSocket("ws://chat.test/ws/chat/", reconnect_delay=0.001, max_delay=0.005)
    await socket.connect()
    await socket.join(CONV, handler, on_reconnect=resync)

    await wait_for(lambda: len(made) == 4 and received)

    assert not socket._reader.done()
    assert received == [event]
    assert len(resyncs) >= 2
    # every reconnect re-joined the room
    assert all({"type": "join", "conversation_id": CONV} in conn.sent for conn in made)
    await socket.close()


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_delivery(monkeypatch):
    first = {"type": "new_message", "conversation_id": CONV, "message": {"id": 1}}
    second = {"type": "new_message", "conversation_id": CONV, "message": {"id": 2}}

    async def fake_connect(url):
        return FakeConnection(frames=[first, second], hold=True)

    monkeypatch.setattr(session_module.websockets, "connect", fake_connect)
    received = []

    async def handler(e):
        received.append(e["message"]["id"])
        if e["message"]["id"] == 1:
            raise ChatAPIError("boom", status_code=500, retryable=True)

    socket = ChatSocket("ws://chat.test/ws/chat/")
    await socket.connect()
    await socket.join(CONV, handler)

    await wait_for(lambda: received == [1, 2])
    assert not socket._reader.done()
    await socket.close()


@pytest.mark.asyncio
async def test_send_on_dropped_connection_is_a_connection_error():
    socket = ChatSocket("ws://chat.test/ws/chat/")
    socket._conn = closed_connection()
    with pytest.raises(ConnectionError):
        await socket.typing(CONV, True)


class NoopAPI:
    async def list_messages(self, conversation_id, page=1):
        return {"results": [], "page": page, "has_more": False}

    async def list_offers(self, conversation_id):
        return []


@pytest.mark.asyncio
async def test_typing_on_dropped_socket_is_swallowed():
    socket = ChatSocket("ws://chat.test/ws/chat/")
    socket._conn = closed_connection()
    session = ChatSession(NoopAPI(), socket, CONV, 1, typing_idle=0.01)

    await session.typing_activity()
    idle_task = session._typing_task
    await asyncio.sleep(0.05)

    assert idle_task.done()
    assert idle_task.exception() is None
    assert session._typing_sent is False


@pytest.mark.asyncio
async def test_close_on_dropped_socket_marks_session_closed():
    socket = ChatSocket("ws://chat.test/ws/chat/")
    socket._conn = FakeConnection(hold=True)
    session = ChatSession(NoopAPI(), socket, CONV, 1)
    await session.open()
    await session.typing_activity()

    socket._conn.closed = True
    await session.close()

    assert session.is_open is False
    assert CONV not in socket._handlers


@pytest.mark.asyncio
async def test_close_marks_session_closed_even_if_leave_fails():
    class BrokenSocket:
        async def join(self, conversation_id, handler, on_reconnect=None):
            pass

        async def leave(self, conversation_id):
            raise RuntimeError("socket gone")

        async def typing(self, conversation_id, is_typing):
            pass

    session = ChatSession(NoopAPI(), BrokenSocket(), CONV, 1)
    await session.open()
    with pytest.raises(RuntimeError):
        await session.close()
    assert session.is_open is False
