"""
Local timeline for an open conversation.

Messages and offers arrive from two places (REST fetches and socket
events) and may arrive twice, so everything here is keyed by id and
merged rather than appended.  Optimistic sends live in a separate
pending list until the server confirms or rejects them.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

KIND_MESSAGE = "message"
KIND_OFFER = "offer"
KIND_PENDING = "pending"


def parse_ts(value) -> datetime:
    if isinstance(value, datetime):
        ts = value
    elif value:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    else:
        ts = datetime.min
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class TimelineEntry:
    kind: str
    id: Any
    at: datetime
    data: dict

    @property
    def pending(self) -> bool:
        return self.kind == KIND_PENDING


@dataclass
class PendingMessage:
    """An optimistic copy of a message the server has not confirmed yet."""

    client_id: str
    content: str
    sender_id: Any
    file: Optional[dict] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        # never carries read state
        return {
            "client_id": self.client_id,
            "content": self.content,
            "file": self.file,
            "sender_id": self.sender_id,
            "sent_at": self.created_at.isoformat(),
            "pending": True,
        }


def _message_entry(message: dict) -> TimelineEntry:
    return TimelineEntry(KIND_MESSAGE, message["id"], parse_ts(message.get("sent_at")), message)


def _offer_entry(offer: dict) -> TimelineEntry:
    return TimelineEntry(KIND_OFFER, offer["id"], parse_ts(offer.get("created_at")), offer)


def _sort_key(entry: TimelineEntry):
    return (entry.at, entry.id, entry.kind)


def merge_timeline(messages: Iterable[dict], offers: Iterable[dict]) -> list[TimelineEntry]:
    """Messages and offers in one list, de-duplicated by (kind, id), oldest first."""
    by_key: dict[tuple, TimelineEntry] = {}
    for message in messages:
        entry = _message_entry(message)
        by_key[(entry.kind, entry.id)] = entry
    for offer in offers:
        entry = _offer_entry(offer)
        by_key[(entry.kind, entry.id)] = entry
    return sorted(by_key.values(), key=_sort_key)


def total_unread(conversations: Iterable[dict]) -> int:
    """Badge count, always derived from the per-conversation counters."""
    return sum(max(int(c.get("unread_count") or 0), 0) for c in conversations)


class Timeline:
    def __init__(self, messages: Iterable[dict] = (), offers: Iterable[dict] = ()):
        self.messages: dict[Any, dict] = {}
        self.offers: dict[Any, dict] = {}
        self.pending: dict[str, PendingMessage] = {}
        for message in messages:
            self.upsert_message(message)
        for offer in offers:
            self.upsert_offer(offer)

    # ---------- optimistic sends ----------
    def add_pending(
        self, content: str, sender_id, file: Optional[dict] = None, client_id: Optional[str] = None,
    ) -> PendingMessage:
        # re-using a client_id makes an explicit retry idempotent on the server
        item = PendingMessage(client_id=client_id or uuid.uuid4().hex, content=content, sender_id=sender_id, file=file)
        self.pending[item.client_id] = item
        return item

    def confirm_pending(self, client_id: str, message: dict) -> dict:
        self.pending.pop(client_id, None)
        return self.upsert_message(message)

    def fail_pending(self, client_id: str) -> Optional[PendingMessage]:
        """Roll the optimistic copy back; the caller decides whether to retry."""
        return self.pending.pop(client_id, None)

    # ---------- server state ----------
    def upsert_message(self, message: dict) -> dict:
        client_id = message.get("client_id")
        if client_id:
            self.pending.pop(client_id, None)
        existing = self.messages.get(message["id"])
        if existing and existing.get("is_read") and not message.get("is_read"):
            # read flags only move forward
            message = {**message, "is_read": True, "read_at": existing.get("read_at")}
        self.messages[message["id"]] = message
        return message

    def upsert_offer(self, offer: dict) -> dict:
        self.offers[offer["id"]] = offer
        return offer

    def apply_read(self, message_ids: Iterable) -> int:
        changed = 0
        for message_id in message_ids:
            message = self.messages.get(message_id)
            if message is not None and not message.get("is_read"):
                self.messages[message_id] = {**message, "is_read": True}
                changed += 1
        return changed

    def has_message(self, message_id) -> bool:
        return message_id in self.messages

    # ---------- render ----------
    def entries(self) -> list[TimelineEntry]:
        """Confirmed items in order, then pending sends in the order they were made."""
        confirmed = merge_timeline(self.messages.values(), self.offers.values())
        pending = [
            TimelineEntry(KIND_PENDING, item.client_id, item.created_at, item.as_dict())
            for item in sorted(self.pending.values(), key=lambda p: p.created_at)
        ]
        return confirmed + pending
