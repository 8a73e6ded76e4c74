"""
Chat session lifecycle.

``ChatSocket`` owns the websocket and routes room events by
conversation id.  A ``ChatSession`` is created when a conversation view
opens (joins the room, fetches history and offers) and closed when it
goes away (leaves the room).  Events and fetches can both deliver the
same item, so the session merges into its ``Timeline`` by id.  After a
reconnect the session re-fetches; the socket never replays.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from .api import ChatAPI, ChatAPIError
from .timeline import Timeline, total_unread

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], Awaitable[None]]


async def _maybe_await(result):
    if inspect.isawaitable(result):
        await result


class ChatSocket:
    """One websocket per client, multiplexing conversation rooms."""

    def __init__(self, url: str, token: Optional[str] = None, *, reconnect_delay: float = 1.0, max_delay: float = 30.0):
        self.url = f"{url}?token={token}" if token else url
        self.reconnect_delay = reconnect_delay
        self.max_delay = max_delay
        self._conn = None
        self._reader: Optional[asyncio.Task] = None
        self._handlers: dict[Any, EventHandler] = {}
        self._on_reconnect: dict[Any, Callable[[], Awaitable[None]]] = {}
        self._closing = False

    async def connect(self) -> None:
        self._closing = False
        self._conn = await websockets.connect(self.url)
        self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        self._closing = True
        if self._reader:
            self._reader.cancel()
        if self._conn is not None:
            await self._conn.close()
        self._conn = None

    async def send(self, frame: dict) -> None:
        if self._conn is None:
            raise ConnectionError("chat socket is not connected")
        try:
            await self._conn.send(json.dumps(frame))
        except ConnectionClosed as e:
            # the read loop owns reconnecting; callers only see a dropped send
            raise ConnectionError(f"chat socket closed: {e}") from e

    async def join(self, conversation_id, handler: EventHandler, on_reconnect=None) -> None:
        self._handlers[conversation_id] = handler
        if on_reconnect is not None:
            self._on_reconnect[conversation_id] = on_reconnect
        await self.send({"type": "join", "conversation_id": conversation_id})

    async def leave(self, conversation_id) -> None:
        self._handlers.pop(conversation_id, None)
        self._on_reconnect.pop(conversation_id, None)
        if self._conn is None:
            return
        try:
            await self.send({"type": "leave", "conversation_id": conversation_id})
        except ConnectionError as e:
            # the server drops the room with the connection anyway
            logger.debug("leave for conversation=%s dropped: %s", conversation_id, e)

    async def typing(self, conversation_id, is_typing: bool) -> None:
        await self.send({"type": "typing", "conversation_id": conversation_id, "is_typing": is_typing})

    async def dispatch(self, event: dict) -> None:
        if event.get("type") == "error":
            logger.warning("chat socket error: %s (%s)", event.get("detail"), event.get("code"))
        conversation_id = event.get("conversation_id")
        handler = self._handlers.get(conversation_id)
        if handler is None:
            return
        try:
            await handler(event)
        except Exception as e:
            logger.warning(
                "handler for conversation=%s failed on %s event: %s", conversation_id, event.get("type"), e,
            )

    async def _read_loop(self) -> None:
        delay = self.reconnect_delay
        while not self._closing:
            try:
                async for raw in self._conn:
                    delay = self.reconnect_delay
                    try:
                        event = json.loads(raw)
                    except ValueError:
                        logger.warning("Dropping malformed frame: %r", raw[:200])
                        continue
                    await self.dispatch(event)
            except ConnectionClosed as e:
                logger.info("chat socket closed: %s", e)
            if self._closing:
                return
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_delay)
            try:
                self._conn = await websockets.connect(self.url)
            except (OSError, InvalidHandshake) as e:
                logger.warning("chat socket reconnect failed: %s", e)
                continue
            await self._rejoin()

    async def _rejoin(self) -> None:
        """Re-join every room and re-fetch; a failed resync is retried on the next reconnect."""
        for conversation_id in list(self._handlers):
            try:
                await self.send({"type": "join", "conversation_id": conversation_id})
            except ConnectionError as e:
                logger.warning("rejoin dropped, waiting for the next reconnect: %s", e)
                return
            resync = self._on_reconnect.get(conversation_id)
            if resync is None:
                continue
            try:
                await resync()
            except Exception as e:
                logger.warning("resync for conversation=%s failed: %s", conversation_id, e)


class ChatSession:
    """State for one open conversation view."""

    TYPING_IDLE_SECONDS = 2.0

    def __init__(
        self,
        api: ChatAPI,
        socket: ChatSocket,
        conversation_id,
        user_id,
        *,
        on_change: Optional[Callable[["ChatSession"], Any]] = None,
        on_summary_refresh: Optional[Callable[[], Any]] = None,
        typing_idle: Optional[float] = None,
    ):
        self.api = api
        self.socket = socket
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.on_change = on_change
        self.on_summary_refresh = on_summary_refresh
        self.typing_idle = self.TYPING_IDLE_SECONDS if typing_idle is None else typing_idle

        self.timeline = Timeline()
        self.typing: dict[Any, bool] = {}
        self.payment_prompt: Optional[dict] = None
        self.focused = True
        self.is_open = False
        self.page = 1
        self.has_more = False
        self._typing_sent = False
        self._typing_task: Optional[asyncio.Task] = None

    # ---------- lifecycle ----------
    async def open(self) -> None:
        await self.socket.join(self.conversation_id, self.handle_event, on_reconnect=self.refresh)
        self.is_open = True
        await self.refresh()
        if self.focused:
            await self._read_if_unread()

    async def close(self) -> None:
        if self._typing_task is not None:
            self._typing_task.cancel()
            self._typing_task = None
        try:
            if self._typing_sent:
                await self._send_typing(False)
            await self.socket.leave(self.conversation_id)
        finally:
            self.is_open = False

    async def refresh(self) -> None:
        """Re-fetch the newest page and the offers; used on open and after reconnects."""
        page = await self.api.list_messages(self.conversation_id, page=1)
        offers = await self.api.list_offers(self.conversation_id)
        for message in page["results"]:
            self.timeline.upsert_message(message)
        for offer in offers:
            self.timeline.upsert_offer(offer)
        if self.page == 1:
            self.has_more = page["has_more"]
        self._changed()

    async def load_older(self) -> bool:
        if not self.has_more:
            return False
        page = await self.api.list_messages(self.conversation_id, page=self.page + 1)
        self.page += 1
        self.has_more = page["has_more"]
        for message in page["results"]:
            self.timeline.upsert_message(message)
        self._changed()
        return True

    async def set_focused(self, focused: bool) -> None:
        self.focused = focused
        if focused and self.is_open:
            await self._read_if_unread()

    # ---------- sending ----------
    async def send(self, content: str = "", file: Optional[dict] = None, client_id: Optional[str] = None) -> dict:
        """
        Optimistic send: the pending copy shows immediately and is replaced
        by the server's message, or rolled back if the call fails.
        """
        pending = self.timeline.add_pending(content, self.user_id, file=file, client_id=client_id)
        self._changed()
        try:
            message = await self.api.send_message(
                self.conversation_id, content=content, file=file, client_id=pending.client_id,
            )
        except ChatAPIError:
            self.timeline.fail_pending(pending.client_id)
            self._changed()
            raise
        self.timeline.confirm_pending(pending.client_id, message)
        if self._typing_sent:
            await self._stop_typing()
        self._changed()
        await self._refresh_summary()
        return message

    async def send_file(self, filename: str, content: bytes, mime_type: str, caption: str = "") -> dict:
        # upload first; a failed upload never leaves a message behind
        ref = await self.api.upload(filename, content, mime_type)
        return await self.send(caption, file=ref)

    # ---------- typing ----------
    async def typing_activity(self) -> None:
        """Call on each keystroke; emits is_typing=false after the idle timeout."""
        if not self._typing_sent:
            await self._send_typing(True)
        if self._typing_task is not None:
            self._typing_task.cancel()
        self._typing_task = asyncio.create_task(self._typing_idle())

    async def _typing_idle(self) -> None:
        await asyncio.sleep(self.typing_idle)
        self._typing_task = None
        await self._send_typing(False)

    async def _stop_typing(self) -> None:
        if self._typing_task is not None:
            self._typing_task.cancel()
            self._typing_task = None
        await self._send_typing(False)

    async def _send_typing(self, is_typing: bool) -> None:
        self._typing_sent = is_typing
        try:
            await self.socket.typing(self.conversation_id, is_typing)
        except (ConnectionError, ConnectionClosed) as e:
            logger.debug("typing indicator dropped: %s", e)

    # ---------- events ----------
    async def handle_event(self, event: dict) -> None:
        kind = event.get("type")
        if kind == "new_message":
            message = event["message"]
            self.timeline.upsert_message(message)
            sender_id = message.get("sender_id")
            if sender_id != self.user_id:
                self.typing.pop(sender_id, None)
                if self.focused and self.is_open:
                    await self.mark_read()
        elif kind == "message_read":
            self.timeline.apply_read(event.get("message_ids") or [])
        elif kind in ("new_offer", "offer_updated"):
            self.timeline.upsert_offer(event["offer"])
        elif kind == "typing":
            if event.get("user_id") != self.user_id:
                self.typing[event.get("user_id")] = bool(event.get("is_typing"))
            self._changed()
            return
        elif kind == "payment_required":
            self.payment_prompt = event
        else:
            return
        self._changed()
        await self._refresh_summary()

    async def mark_read(self) -> Optional[dict]:
        try:
            result = await self.api.mark_read(self.conversation_id)
        except ChatAPIError as e:
            logger.warning("mark_read failed for conversation=%s: %s", self.conversation_id, e)
            return None
        self.timeline.apply_read(result.get("message_ids") or [])
        return result

    async def _read_if_unread(self) -> None:
        unread = any(
            not m.get("is_read") and m.get("sender_id") != self.user_id
            for m in self.timeline.messages.values()
        )
        if unread:
            await self.mark_read()

    # ---------- offers (never optimistic) ----------
    async def create_offer(self, **fields) -> dict:
        fields.setdefault("conversation_id", self.conversation_id)
        return await self._offer_action(self.api.create_offer, **fields)

    async def accept_offer(self, offer_id) -> dict:
        return await self._offer_action(self.api.accept_offer, offer_id)

    async def reject_offer(self, offer_id) -> dict:
        return await self._offer_action(self.api.reject_offer, offer_id)

    async def counter_offer(self, offer_id, **counter) -> dict:
        return await self._offer_action(self.api.counter_offer, offer_id, **counter)

    async def accept_counter(self, offer_id) -> dict:
        """Returns the new offer spawned from the counter."""
        return await self._offer_action(self.api.accept_counter, offer_id)

    async def _offer_action(self, call, *args, **kwargs) -> dict:
        try:
            offer = await call(*args, **kwargs)
        except ChatAPIError as e:
            # state errors carry the authoritative offer: resync, don't retry
            if e.offer:
                self.timeline.upsert_offer(e.offer)
                self._changed()
            raise
        self.timeline.upsert_offer(offer)
        self._changed()
        await self._refresh_summary()
        return offer

    # ---------- helpers ----------
    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    async def _refresh_summary(self) -> None:
        if self.on_summary_refresh is None:
            return
        try:
            await _maybe_await(self.on_summary_refresh())
        except ChatAPIError as e:
            logger.warning("summary refresh failed: %s", e)


class UnreadTracker:
    """
    Global unread badge.  The count is always recomputed from the
    per-conversation counters, never mutated in place; a periodic poll
    backs up missed events.
    """

    POLL_SECONDS = 10.0

    def __init__(self, api: ChatAPI, *, interval: Optional[float] = None, on_change: Optional[Callable[[int], Any]] = None):
        self.api = api
        self.interval = self.POLL_SECONDS if interval is None else interval
        self.on_change = on_change
        self.conversations: list[dict] = []
        self.count = 0
        self._task: Optional[asyncio.Task] = None

    async def refresh(self) -> int:
        self.conversations = await self.api.list_conversations()
        count = total_unread(self.conversations)
        changed = count != self.count
        self.count = count
        if changed and self.on_change is not None:
            self.on_change(count)
        return count

    async def run(self) -> None:
        while True:
            try:
                await self.refresh()
            except ChatAPIError as e:
                logger.warning("unread poll failed: %s", e)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
