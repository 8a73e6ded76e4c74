# realtime/services.py
"""
Room-scoped event fan-out over the Channels layer.

Rooms are keyed by conversation id.  Delivery is best-effort: a failed
send is logged and swallowed so the request that produced the event
still succeeds.  Clients de-duplicate by id because an event can race
with (or repeat) what they fetched over REST.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger(__name__)

NEW_MESSAGE = "new_message"
MESSAGE_READ = "message_read"
TYPING = "typing"
NEW_OFFER = "new_offer"
OFFER_UPDATED = "offer_updated"
PAYMENT_REQUIRED = "payment_required"

EVENTS = (NEW_MESSAGE, MESSAGE_READ, TYPING, NEW_OFFER, OFFER_UPDATED, PAYMENT_REQUIRED)

# consumer handler name is derived from this ("room.event" -> room_event)
HANDLER_TYPE = "room.event"


def room_name(conversation_id) -> str:
    return f"conversation_{conversation_id}"


def _envelope(conversation_id, event: str, payload: dict[str, Any]) -> dict[str, Any]:
    if event not in EVENTS:
        raise ValueError(f"unknown realtime event {event!r}")
    # every event names its room so one socket can route many conversations
    payload = {"conversation_id": conversation_id, **payload}
    # channel layers only carry plain types (no Decimal/datetime)
    plain = json.loads(json.dumps(payload, cls=DjangoJSONEncoder))
    return {"type": HANDLER_TYPE, "event": event, "payload": plain}


def broadcast(conversation_id, event: str, payload: dict[str, Any]) -> None:
    """Send an event to every session joined to the conversation's room."""
    message = _envelope(conversation_id, event, payload)
    group = room_name(conversation_id)
    try:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return  # Channels not configured; safely no-op
        async_to_sync(channel_layer.group_send)(group, message)
        logger.debug("[BROADCAST] %s -> %s", event, group)
    except Exception as e:
        logger.error("[BROADCAST] Failed to send %s to %s: %s", event, group, e)


async def abroadcast(conversation_id, event: str, payload: dict[str, Any], channel_layer=None) -> None:
    """Async variant used from inside consumers (e.g. typing indicators)."""
    message = _envelope(conversation_id, event, payload)
    group = room_name(conversation_id)
    try:
        layer = channel_layer or get_channel_layer()
        if layer is None:
            return
        await layer.group_send(group, message)
    except Exception as e:
        logger.error("[BROADCAST] Failed to send %s to %s: %s", event, group, e)
