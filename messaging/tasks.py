"""
Celery tasks for the messaging app.

Email is the out-of-band fallback for recipients that are not
currently connected to the socket.
"""
import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

from users.services import display_name

logger = logging.getLogger(__name__)


@shared_task(ignore_result=True)
def notify_new_message(message_id: int) -> bool:
    from .models import Message

    try:
        message = Message.objects.select_related(
            "conversation", "sender__profile"
        ).get(pk=message_id)
    except Message.DoesNotExist:
        logger.warning("notify_new_message: message=%s no longer exists", message_id)
        return False

    conv = message.conversation
    recipient_id = conv.other_participant_id(message.sender_id)
    recipient = conv.user1 if conv.user1_id == recipient_id else conv.user2
    if not recipient.email:
        return False

    sender_name = display_name(message.sender)
    preview = message.content[:140]
    link = f"{settings.FRONTEND_URL.rstrip('/')}/messages/{conv.pk}"
    send_mail(
        subject=f"New message from {sender_name}",
        message=f"{sender_name} wrote:\n\n{preview}\n\nReply: {link}",
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[recipient.email],
        fail_silently=False,
    )
    logger.info("Emailed user=%s about message=%s", recipient.pk, message.pk)
    return True
