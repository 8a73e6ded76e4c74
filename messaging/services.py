# messaging/services.py
"""
Conversation and message services.

All persistence for the 1:1 chat lives here so the REST views and the
websocket consumer share one code path.  Writers that touch the shared
conversation row (message appends, read marking) lock it for the
duration of the write and use F() expressions for the counters.  Events
go out on the realtime fan-out only after the write has committed.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from common.exceptions import EmptyMessage, InvalidParticipants, NotParticipant
from realtime import services as realtime

from .models import Conversation, Message

logger = logging.getLogger(__name__)

User = get_user_model()


# ============================================================
# ====================== Conversations =======================
# ============================================================

def get_or_create_conversation(user_a, user_b) -> tuple[Conversation, bool]:
    """
    Return the single conversation between two users, creating it lazily.

    The pair is unordered and stored canonically, so (A, B) and (B, A)
    resolve to the same row.  A concurrent create for the same pair hits
    the unique constraint and falls back to reading the winner's row.
    """
    if user_a is None or user_b is None:
        raise InvalidParticipants(fields={"recipient_id": "Two participants are required."})
    if user_a.pk == user_b.pk:
        raise InvalidParticipants(fields={"recipient_id": "Cannot start a conversation with yourself."})

    low, high = sorted([user_a.pk, user_b.pk])
    try:
        with transaction.atomic():
            return Conversation.objects.get_or_create(user1_id=low, user2_id=high)
    except IntegrityError:
        return Conversation.objects.get(user1_id=low, user2_id=high), False


def get_conversation_for(conversation_id, user) -> Conversation:
    """Load a conversation and check the user takes part in it."""
    conv = (
        Conversation.objects
        .select_related("user1__profile", "user2__profile", "last_message")
        .get(pk=conversation_id)
    )
    ensure_participant(conv, user)
    return conv


def ensure_participant(conversation: Conversation, user) -> None:
    if not conversation.has_participant(user.pk):
        logger.warning(
            "user=%s denied access to conversation=%s (not a participant)",
            user.pk, conversation.pk,
        )
        raise NotParticipant()


def list_conversations(user, archived: Optional[bool] = None):
    """Conversations for a user, most recently active first."""
    qs = Conversation.objects.filter(
        Q(user1=user, user1_deleted=False) | Q(user2=user, user2_deleted=False)
    )
    if archived is not None:
        qs = qs.filter(
            Q(user1=user, user1_archived=archived) | Q(user2=user, user2_archived=archived)
        )
    return (
        qs.select_related("user1__profile", "user2__profile", "last_message")
        .order_by(F("last_message_at").desc(nulls_last=True), "-id")
    )


def total_unread(user) -> int:
    """Badge count: sum of the user's unread counters across conversations."""
    as_user1 = Conversation.objects.filter(user1=user, user1_deleted=False).aggregate(
        n=Coalesce(Sum("user1_unread"), 0)
    )["n"]
    as_user2 = Conversation.objects.filter(user2=user, user2_deleted=False).aggregate(
        n=Coalesce(Sum("user2_unread"), 0)
    )["n"]
    return as_user1 + as_user2


def archive_conversation(conversation: Conversation, user, archived: bool = True) -> Conversation:
    ensure_participant(conversation, user)
    slot = conversation.slot_for(user.pk)
    Conversation.objects.filter(pk=conversation.pk).update(**{f"{slot}_archived": bool(archived)})
    conversation.refresh_from_db()
    return conversation


def delete_conversation(conversation: Conversation, user) -> None:
    """Hide a conversation for one participant; it comes back on the next message."""
    ensure_participant(conversation, user)
    slot = conversation.slot_for(user.pk)
    Conversation.objects.filter(pk=conversation.pk).update(**{f"{slot}_deleted": True})


# ============================================================
# ========================= Messages =========================
# ============================================================

def message_type_for(file: Optional[dict], requested: Optional[str] = None) -> str:
    """image/* attachments are images, any other attachment is a file."""
    if file:
        mime = (file.get("mime_type") or "").lower()
        return Message.TYPE_IMAGE if mime.startswith("image/") else Message.TYPE_FILE
    if requested == Message.TYPE_LINK:
        return Message.TYPE_LINK
    return Message.TYPE_TEXT


def send_message(
    conversation: Conversation,
    sender,
    content: Optional[str] = None,
    file: Optional[dict] = None,
    client_id: Optional[str] = None,
    type: Optional[str] = None,
) -> tuple[Message, bool]:
    """
    Append a message to a conversation.

    `file` is the tuple returned by the upload collaborator
    ({"url", "name", "mime_type"}); raw bytes never reach this layer.
    Returns (message, created).  Re-sending with a known `client_id`
    returns the stored message without any side effects.
    """
    ensure_participant(conversation, sender)

    content = (content or "").strip()
    if file and not file.get("url"):
        file = None
    if not content and not file:
        raise EmptyMessage(fields={"content": "Message content or file is required."})

    if client_id:
        existing = Message.objects.filter(
            conversation=conversation, sender=sender, client_id=client_id
        ).first()
        if existing is not None:
            return existing, False

    msg_type = message_type_for(file, type)
    if not content:
        content = "Shared an image" if msg_type == Message.TYPE_IMAGE else "Shared a file"

    try:
        with transaction.atomic():
            message = _append(conversation, sender, msg_type, content, file, client_id)
    except IntegrityError:
        if not client_id:
            raise
        # lost a race against a retry of the same send
        return Message.objects.get(conversation=conversation, sender=sender, client_id=client_id), False

    conversation.refresh_from_db()
    logger.info(
        "message=%s appended to conversation=%s by user=%s (%s)",
        message.pk, conversation.pk, sender.pk, msg_type,
    )

    from .serializers import MessageSerializer
    realtime.broadcast(conversation.pk, realtime.NEW_MESSAGE, {"message": MessageSerializer(message).data})
    _enqueue_notification(message)
    return message, True


def _append(conversation, sender, msg_type, content, file, client_id) -> Message:
    # the row lock serializes appends so sent_at never goes backwards
    conv = Conversation.objects.select_for_update().get(pk=conversation.pk)
    sent_at = timezone.now()
    if conv.last_message_at and conv.last_message_at > sent_at:
        sent_at = conv.last_message_at

    message = Message.objects.create(
        conversation=conv,
        sender=sender,
        type=msg_type,
        content=content,
        file_url=(file or {}).get("url", ""),
        file_name=(file or {}).get("name", ""),
        file_type=(file or {}).get("mime_type", ""),
        client_id=client_id or None,
        sent_at=sent_at,
    )

    recipient_slot = conv.slot_for(conv.other_participant_id(sender.pk))
    sender_slot = conv.slot_for(sender.pk)
    Conversation.objects.filter(pk=conv.pk).update(
        last_message=message,
        last_message_at=sent_at,
        updated_at=timezone.now(),
        **{
            f"{recipient_slot}_unread": F(f"{recipient_slot}_unread") + 1,
            f"{recipient_slot}_deleted": False,
            f"{sender_slot}_deleted": False,
        },
    )
    return message


def list_messages(conversation: Conversation, user, page: int = 1) -> tuple[list[Message], bool]:
    """
    One page of history.  Page 1 is the most recent page; every page is
    returned oldest-first.  Reading never marks anything read.
    """
    ensure_participant(conversation, user)
    try:
        page = max(int(page), 1)
    except (TypeError, ValueError):
        page = 1
    size = settings.MESSAGES_PAGE_SIZE
    start = (page - 1) * size

    rows = list(
        Message.objects
        .filter(conversation=conversation)
        .select_related("sender__profile")
        .order_by("-sent_at", "-id")[start:start + size + 1]
    )
    has_more = len(rows) > size
    rows = rows[:size]
    rows.reverse()
    return rows, has_more


def mark_read(conversation: Conversation, reader) -> dict:
    """
    Mark every unread message from the other participant as read.

    Returns {"updated_count", "message_ids"}.  Calling it with nothing
    unread is a no-op and emits no event.
    """
    ensure_participant(conversation, reader)
    slot = conversation.slot_for(reader.pk)

    with transaction.atomic():
        Conversation.objects.select_for_update().get(pk=conversation.pk)
        unread = (
            Message.objects
            .filter(conversation=conversation, is_read=False)
            .exclude(sender_id=reader.pk)
        )
        message_ids = list(unread.order_by("sent_at", "id").values_list("id", flat=True))
        updated = 0
        if message_ids:
            updated = Message.objects.filter(id__in=message_ids, is_read=False).update(
                is_read=True, read_at=timezone.now()
            )
        remaining = unread.count()
        Conversation.objects.filter(pk=conversation.pk).update(**{f"{slot}_unread": remaining})

    conversation.refresh_from_db()
    if updated:
        logger.info("user=%s read %s message(s) in conversation=%s", reader.pk, updated, conversation.pk)
        realtime.broadcast(
            conversation.pk,
            realtime.MESSAGE_READ,
            {"message_ids": message_ids, "conversation_id": conversation.pk, "user_id": reader.pk},
        )
    return {"updated_count": updated, "message_ids": message_ids}


def _enqueue_notification(message: Message) -> None:
    """Fire-and-forget email fallback for the recipient."""
    if not getattr(settings, "CHAT_NOTIFY_BY_EMAIL", False):
        return
    try:
        from .tasks import notify_new_message

        notify_new_message.delay(message.pk)
    except Exception as e:
        logger.warning("Could not enqueue notification for message=%s: %s", message.pk, e)
