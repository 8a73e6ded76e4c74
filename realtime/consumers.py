"""
Channels consumer for the chat socket.

One socket per client session.  After connecting, the client joins the
rooms of the conversations it has open and receives every event
published to them.  Control frames:

  {"type": "join", "conversation_id": 7}
  {"type": "leave", "conversation_id": 7}
  {"type": "typing", "conversation_id": 7, "is_typing": true}
  {"type": "send_message", "conversation_id": 7, "content": "hi", "client_id": "..."}
  {"type": "mark_read", "conversation_id": 7}

Events arrive as ``{"type": <event>, ...payload}``.  Failures come back
as ``{"type": "error", "code": ..., "detail": ...}`` on the same socket.
"""
from __future__ import annotations

import logging
from typing import Any

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from rest_framework.exceptions import APIException

from common.exceptions import DomainError, InvalidRequest, NotParticipant
from messaging import services as messaging
from messaging.models import Conversation
from messaging.serializers import SendMessageSerializer

from . import services as realtime

logger = logging.getLogger(__name__)


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """Authenticated socket that multiplexes conversation rooms."""

    async def connect(self) -> None:
        user = self.scope.get("user")
        if not user or not user.is_authenticated:
            await self.close(code=4401)
            return
        self.user = user
        self.rooms: set[int] = set()
        await self.accept()

    async def disconnect(self, code: int) -> None:
        for conversation_id in list(getattr(self, "rooms", ())):
            await self.channel_layer.group_discard(realtime.room_name(conversation_id), self.channel_name)
        self.rooms = set()

    async def receive_json(self, content: dict[str, Any], **kwargs: Any) -> None:
        action = content.get("type")
        handler = {
            "join": self._handle_join,
            "leave": self._handle_leave,
            "typing": self._handle_typing,
            "send_message": self._handle_send,
            "mark_read": self._handle_mark_read,
        }.get(action)
        if handler is None:
            await self._send_error("unknown_action", f"Unknown action {action!r}.")
            return

        try:
            conversation_id = int(content.get("conversation_id"))
        except (TypeError, ValueError):
            await self._send_error("invalid_request", "conversation_id is required.")
            return

        try:
            await handler(conversation_id, content)
        except Conversation.DoesNotExist:
            await self._send_error("not_found", "Conversation not found.", conversation_id)
        except DomainError as e:
            extra = {"fields": e.fields, **e.extra} if e.fields else e.extra
            await self._send_error(e.code, str(e.detail), conversation_id, **extra)
        except APIException as e:
            await self._send_error(e.default_code, str(e.detail), conversation_id)

    # ---------- control frames ----------
    async def _handle_join(self, conversation_id: int, content: dict[str, Any]) -> None:
        await self._load_conversation(conversation_id)
        await self.channel_layer.group_add(realtime.room_name(conversation_id), self.channel_name)
        self.rooms.add(conversation_id)
        logger.debug("user=%s joined room %s", self.user.pk, conversation_id)
        await self.send_json({"type": "joined", "conversation_id": conversation_id})

    async def _handle_leave(self, conversation_id: int, content: dict[str, Any]) -> None:
        await self.channel_layer.group_discard(realtime.room_name(conversation_id), self.channel_name)
        self.rooms.discard(conversation_id)
        await self.send_json({"type": "left", "conversation_id": conversation_id})

    async def _handle_typing(self, conversation_id: int, content: dict[str, Any]) -> None:
        # typing is ephemeral; only relay for rooms this socket has joined
        if conversation_id not in self.rooms:
            raise NotParticipant("Join the conversation before sending typing indicators.")
        await realtime.abroadcast(
            conversation_id,
            realtime.TYPING,
            {
                "conversation_id": conversation_id,
                "user_id": self.user.pk,
                "is_typing": bool(content.get("is_typing", True)),
            },
            channel_layer=self.channel_layer,
        )

    async def _handle_send(self, conversation_id: int, content: dict[str, Any]) -> None:
        # same validation as the REST endpoint; the frame's own "type" is the action
        data = {key: content[key] for key in ("content", "file", "client_id") if content.get(key) is not None}
        if content.get("message_type") is not None:
            data["type"] = content["message_type"]
        ser = SendMessageSerializer(data=data)
        if not ser.is_valid():
            raise InvalidRequest("Message frame is invalid.", fields=ser.errors)
        data = ser.validated_data

        conv = await self._load_conversation(conversation_id)
        message, created = await database_sync_to_async(messaging.send_message)(
            conv,
            self.user,
            content=data.get("content"),
            file=data.get("file"),
            client_id=data.get("client_id") or None,
            type=data.get("type"),
        )
        # ack to the sending socket; the room gets new_message
        await self.send_json({
            "type": "message_sent",
            "conversation_id": conversation_id,
            "created": created,
            "message": await self._serialize_message(message),
        })

    async def _handle_mark_read(self, conversation_id: int, content: dict[str, Any]) -> None:
        conv = await self._load_conversation(conversation_id)
        await database_sync_to_async(messaging.mark_read)(conv, self.user)

    # ---------- room events ----------
    async def room_event(self, event: dict[str, Any]) -> None:
        await self.send_json({"type": event["event"], **event["payload"]})

    # ---------- helpers ----------
    async def _load_conversation(self, conversation_id: int) -> Conversation:
        return await database_sync_to_async(messaging.get_conversation_for)(conversation_id, self.user)

    @database_sync_to_async
    def _serialize_message(self, message) -> dict:
        from messaging.serializers import MessageSerializer

        return dict(MessageSerializer(message).data)

    async def _send_error(self, code: str, detail: str, conversation_id: int | None = None, **extra: Any) -> None:
        frame = {"type": "error", "code": code, "detail": detail}
        if conversation_id is not None:
            frame["conversation_id"] = conversation_id
        frame.update(extra)
        await self.send_json(frame)
