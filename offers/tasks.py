"""
Celery tasks for the offers app.

``expire_stale_offers`` is scheduled by celery beat (see
CELERY_BEAT_SCHEDULE) and persists the expiry that reads already derive.
"""
import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

from users.services import display_name

logger = logging.getLogger(__name__)


@shared_task(ignore_result=True)
def expire_stale_offers() -> int:
    from .services import expire_offers

    return expire_offers()


@shared_task(ignore_result=True)
def notify_offer_updated(offer_id: int) -> bool:
    """Email the party that has to act next on an offer."""
    from .models import Offer

    try:
        offer = Offer.objects.select_related("sender__profile", "recipient__profile").get(pk=offer_id)
    except Offer.DoesNotExist:
        logger.warning("notify_offer_updated: offer=%s no longer exists", offer_id)
        return False

    # a pending offer waits on its recipient, a countered one on its sender
    if offer.status == Offer.STATUS_COUNTERED:
        to_user, from_user = offer.sender, offer.recipient
    elif offer.status == Offer.STATUS_PENDING:
        to_user, from_user = offer.recipient, offer.sender
    else:
        to_user, from_user = offer.sender, offer.recipient
    if not to_user.email:
        return False

    link = f"{settings.FRONTEND_URL.rstrip('/')}/messages/{offer.conversation_id}"
    send_mail(
        subject=f"Offer #{offer.pk} for {offer.service}: {offer.effective_status}",
        message=(
            f"{display_name(from_user)} updated offer #{offer.pk} "
            f"({offer.currency} {offer.price}, {offer.delivery_time} days).\n\n"
            f"Status: {offer.effective_status}\n\nView: {link}"
        ),
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[to_user.email],
        fail_silently=False,
    )
    logger.info("Emailed user=%s about offer=%s (%s)", to_user.pk, offer.pk, offer.status)
    return True
