"""
Tests for ChatSession and UnreadTracker against in-memory fakes.
"""
import asyncio

import pytest

from chat_client import ChatAPIError, ChatSession, UnreadTracker

ME = 1
THEM = 2
CONV = 7


def message(id, sender_id=THEM, **extra):
    return {
        "id": id,
        "conversation_id": CONV,
        "sender_id": sender_id,
        "content": f"m{id}",
        "is_read": False,
        "sent_at": f"2026-01-01T10:00:{id:02d}Z",
        **extra,
    }


class FakeAPI:
    def __init__(self, messages=(), offers=()):
        self.messages = list(messages)
        self.offers = list(offers)
        self.calls = []
        self.fail_send = False
        self.offer_error = None
        self.conversations = []

    async def list_messages(self, conversation_id, page=1):
        self.calls.append(("list_messages", page))
        return {"results": self.messages, "page": page, "has_more": False}

    async def list_offers(self, conversation_id):
        self.calls.append(("list_offers",))
        return self.offers

    async def send_message(self, conversation_id, content=None, file=None, client_id=None):
        self.calls.append(("send_message", content, client_id))
        if self.fail_send:
            raise ChatAPIError("boom", status_code=503, retryable=True)
        return message(100, sender_id=ME, content=content, client_id=client_id, file=file)

    async def mark_read(self, conversation_id):
        self.calls.append(("mark_read",))
        ids = [m["id"] for m in self.messages if m["sender_id"] != ME and not m["is_read"]]
        return {"updated_count": len(ids), "message_ids": ids}

    async def upload(self, filename, content, mime_type):
        self.calls.append(("upload", filename))
        return {"url": f"https://cdn.test/{filename}", "name": filename, "mime_type": mime_type}

    async def accept_offer(self, offer_id):
        self.calls.append(("accept_offer", offer_id))
        if self.offer_error:
            raise self.offer_error
        return {"id": offer_id, "status": "accepted", "created_at": "2026-01-01T09:00:00Z"}

    async def list_conversations(self, archived=None):
        self.calls.append(("list_conversations",))
        return self.conversations


class FakeSocket:
    def __init__(self):
        self.joined = {}
        self.sent = []

    async def join(self, conversation_id, handler, on_reconnect=None):
        self.joined[conversation_id] = (handler, on_reconnect)

    async def leave(self, conversation_id):
        self.joined.pop(conversation_id, None)

    async def typing(self, conversation_id, is_typing):
        self.sent.append(("typing", conversation_id, is_typing))


def calls_named(api, name):
    return [c for c in api.calls if c[0] == name]


@pytest.mark.asyncio
async def test_open_joins_fetches_and_marks_read():
    api = FakeAPI(messages=[message(1)])
    socket = FakeSocket()
    session = ChatSession(api, socket, CONV, ME)

    await session.open()

    assert CONV in socket.joined
    assert session.timeline.has_message(1)
    assert calls_named(api, "mark_read")
    assert session.timeline.messages[1]["is_read"] is True

    await session.close()
    assert CONV not in socket.joined
    assert session.is_open is False


@pytest.mark.asyncio
async def test_open_while_unfocused_does_not_mark_read():
    api = FakeAPI(messages=[message(1)])
    session = ChatSession(api, FakeSocket(), CONV, ME)
    session.focused = False
    await session.open()
    assert not calls_named(api, "mark_read")

    await session.set_focused(True)
    assert calls_named(api, "mark_read")


@pytest.mark.asyncio
async def test_optimistic_send_is_confirmed():
    api = FakeAPI()
    seen = []
    session = ChatSession(api, FakeSocket(), CONV, ME, on_change=lambda s: seen.append(len(s.timeline.entries())))
    await session.open()

    sent = await session.send("hello")

    assert sent["id"] == 100
    kinds = [e.kind for e in session.timeline.entries()]
    assert kinds == ["message"]
    assert session.timeline.pending == {}
    assert 1 in seen  # the pending copy was rendered first


@pytest.mark.asyncio
async def test_failed_send_rolls_back():
    api = FakeAPI()
    api.fail_send = True
    session = ChatSession(api, FakeSocket(), CONV, ME)
    await session.open()

    with pytest.raises(ChatAPIError):
        await session.send("will fail")
    assert session.timeline.entries() == []


@pytest.mark.asyncio
async def test_send_file_uploads_first():
    api = FakeAPI()
    session = ChatSession(api, FakeSocket(), CONV, ME)
    await session.open()
    sent = await session.send_file("a.png", b"\x89PNG", "image/png")

    names = [c[0] for c in api.calls]
    assert names.index("upload") < names.index("send_message")
    assert sent["file"]["name"] == "a.png"


@pytest.mark.asyncio
async def test_foreign_message_marks_read_only_when_focused():
    api = FakeAPI()
    session = ChatSession(api, FakeSocket(), CONV, ME)
    await session.open()
    api.calls.clear()

    session.focused = False
    api.messages = [message(5)]
    await session.handle_event({"type": "new_message", "conversation_id": CONV, "message": message(5)})
    assert not calls_named(api, "mark_read")

    session.focused = True
    api.messages.append(message(6))
    await session.handle_event({"type": "new_message", "conversation_id": CONV, "message": message(6)})
    assert len(calls_named(api, "mark_read")) == 1

    # our own echo never triggers a read
    await session.handle_event({"type": "new_message", "conversation_id": CONV, "message": message(7, sender_id=ME)})
    assert len(calls_named(api, "mark_read")) == 1


@pytest.mark.asyncio
async def test_duplicate_events_do_not_duplicate_entries():
    api = FakeAPI(messages=[message(1)])
    session = ChatSession(api, FakeSocket(), CONV, ME)
    session.focused = False
    await session.open()
    await session.handle_event({"type": "new_message", "conversation_id": CONV, "message": message(1)})
    assert len(session.timeline.entries()) == 1


@pytest.mark.asyncio
async def test_message_read_event_applies_flags():
    api = FakeAPI(messages=[message(1, sender_id=ME), message(2, sender_id=ME)])
    session = ChatSession(api, FakeSocket(), CONV, ME)
    await session.open()

    await session.handle_event({"type": "message_read", "conversation_id": CONV, "message_ids": [1], "user_id": THEM})
    assert session.timeline.messages[1]["is_read"] is True
    assert session.timeline.messages[2]["is_read"] is False


@pytest.mark.asyncio
async def test_typing_event_tracks_other_user_without_summary_refresh():
    refreshes = []
    session = ChatSession(FakeAPI(), FakeSocket(), CONV, ME, on_summary_refresh=lambda: refreshes.append(1))
    await session.handle_event({"type": "typing", "conversation_id": CONV, "user_id": THEM, "is_typing": True})
    assert session.typing == {THEM: True}
    assert refreshes == []

    await session.handle_event({"type": "new_message", "conversation_id": CONV, "message": message(3)})
    assert THEM not in session.typing
    assert refreshes == [1]


@pytest.mark.asyncio
async def test_payment_prompt_is_kept():
    session = ChatSession(FakeAPI(), FakeSocket(), CONV, ME)
    prompt = {"type": "payment_required", "conversation_id": CONV, "offer_id": 5, "payer_id": ME}
    await session.handle_event(prompt)
    assert session.payment_prompt == prompt


@pytest.mark.asyncio
async def test_offer_state_error_resyncs_from_server():
    api = FakeAPI()
    current = {"id": 5, "status": "rejected", "created_at": "2026-01-01T09:00:00Z"}
    api.offer_error = ChatAPIError("Offer has already been acted upon.", status_code=409, code="already_acted_upon", offer=current)
    session = ChatSession(api, FakeSocket(), CONV, ME)

    with pytest.raises(ChatAPIError):
        await session.accept_offer(5)
    assert session.timeline.offers[5]["status"] == "rejected"
    assert len(calls_named(api, "accept_offer")) == 1


@pytest.mark.asyncio
async def test_offer_action_updates_timeline():
    api = FakeAPI()
    session = ChatSession(api, FakeSocket(), CONV, ME)
    accepted = await session.accept_offer(5)
    assert accepted["status"] == "accepted"
    assert session.timeline.offers[5]["status"] == "accepted"


@pytest.mark.asyncio
async def test_typing_is_debounced_and_stops_when_idle():
    socket = FakeSocket()
    session = ChatSession(FakeAPI(), socket, CONV, ME, typing_idle=0.05)

    await session.typing_activity()
    await session.typing_activity()
    await session.typing_activity()
    assert socket.sent == [("typing", CONV, True)]

    await asyncio.sleep(0.15)
    assert socket.sent == [("typing", CONV, True), ("typing", CONV, False)]


@pytest.mark.asyncio
async def test_reconnect_callback_refetches():
    api = FakeAPI()
    socket = FakeSocket()
    session = ChatSession(api, socket, CONV, ME)
    await session.open()
    before = len(calls_named(api, "list_messages"))

    _, on_reconnect = socket.joined[CONV]
    api.messages = [message(9)]
    await on_reconnect()

    assert len(calls_named(api, "list_messages")) == before + 1
    assert session.timeline.has_message(9)


@pytest.mark.asyncio
async def test_unread_tracker_recomputes_from_conversations():
    api = FakeAPI()
    api.conversations = [{"id": 1, "unread_count": 2}, {"id": 2, "unread_count": 3}]
    changes = []
    tracker = UnreadTracker(api, interval=0.01, on_change=changes.append)

    assert await tracker.refresh() == 5
    api.conversations = [{"id": 1, "unread_count": 0}, {"id": 2, "unread_count": 3}]
    assert await tracker.refresh() == 3
    assert await tracker.refresh() == 3
    assert changes == [5, 3]


@pytest.mark.asyncio
async def test_unread_tracker_polls_in_background():
    api = FakeAPI()
    api.conversations = [{"id": 1, "unread_count": 1}]
    tracker = UnreadTracker(api, interval=0.01)
    tracker.start()
    await asyncio.sleep(0.05)
    await tracker.stop()

    assert tracker.count == 1
    assert len(calls_named(api, "list_conversations")) >= 2
