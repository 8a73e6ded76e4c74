# offers/services.py
"""
Offer state machine.

    pending -> accepted | rejected | countered | expired

Only the recipient may accept, reject or counter a pending offer; only
the original sender may accept a counter, which spawns a fresh pending
offer with the roles swapped and leaves the countered one as history.

Expiry is enforced at the point of every mutation: transitions are a
compare-and-swap on ``status=pending AND valid_until > now`` so two
concurrent actions on one offer can never both succeed.  State errors
carry the current offer so callers can resync instead of retrying.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from common.exceptions import (
    AlreadyActedUpon,
    InvalidOfferFields,
    InvalidTransition,
    NotParticipant,
    NotRecipient,
    NotSender,
    OfferExpired,
    PaymentFailed,
)
from messaging.services import ensure_participant
from payments.gateway import initiate_payment
from realtime import services as realtime
from users.models import UserProfile
from users.services import get_role

from .models import Offer
from .serializers import OfferSerializer

logger = logging.getLogger(__name__)


def offer_type_for(user) -> str:
    if get_role(user) == UserProfile.ROLE_BRAND:
        return Offer.TYPE_BRAND_TO_CREATOR
    return Offer.TYPE_CREATOR_TO_BRAND


def flipped_type(offer_type: str) -> str:
    if offer_type == Offer.TYPE_BRAND_TO_CREATOR:
        return Offer.TYPE_CREATOR_TO_BRAND
    return Offer.TYPE_BRAND_TO_CREATOR


def _snapshot(offer: Offer) -> dict:
    return dict(OfferSerializer(offer).data)


# ---------- validation ----------

def _decimal(value) -> Optional[Decimal]:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None


def _int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _check_terms(data: dict, errors: dict, *, revisions_required: bool = True) -> dict:
    """price > 0, delivery_time > 0, revisions >= 0."""
    cleaned = {}
    price = _decimal(data.get("price"))
    if price is None or not price.is_finite() or price <= 0:
        errors["price"] = "Price must be greater than zero."
    else:
        cleaned["price"] = price.quantize(Decimal("0.01"))

    delivery_time = _int(data.get("delivery_time"))
    if delivery_time is None or delivery_time <= 0:
        errors["delivery_time"] = "Delivery time must be a positive number of days."
    else:
        cleaned["delivery_time"] = delivery_time

    raw_revisions = data.get("revisions")
    if raw_revisions is None and not revisions_required:
        cleaned["revisions"] = 0
    else:
        revisions = _int(raw_revisions if raw_revisions is not None else 0)
        if revisions is None or revisions < 0:
            errors["revisions"] = "Revisions cannot be negative."
        else:
            cleaned["revisions"] = revisions
    return cleaned


# ---------- create ----------

def create_offer(conversation, sender, recipient, fields: dict[str, Any]) -> Offer:
    """Create a pending offer from one participant to the other."""
    ensure_participant(conversation, sender)
    if recipient is None or recipient.pk != conversation.other_participant_id(sender.pk):
        raise InvalidOfferFields(fields={"recipient_id": "Recipient must be the other participant."})

    now = timezone.now()
    errors: dict[str, str] = {}
    offer_type = offer_type_for(sender)
    requested_type = fields.get("type")
    if requested_type and requested_type != offer_type:
        errors["type"] = f"Your role can only send {offer_type} offers."

    service = (fields.get("service") or "").strip()
    if not service:
        errors["service"] = "Service is required."

    cleaned = _check_terms(fields, errors, revisions_required=False)

    valid_until = fields.get("valid_until")
    if valid_until is None or valid_until <= now:
        errors["valid_until"] = "Valid-until must be in the future."

    deliverables = fields.get("deliverables") or []
    if not isinstance(deliverables, list):
        errors["deliverables"] = "Deliverables must be a list."

    if errors:
        raise InvalidOfferFields(fields=errors)

    offer = Offer.objects.create(
        conversation=conversation,
        sender=sender,
        recipient=recipient,
        type=offer_type,
        service=service,
        description=fields.get("description") or "",
        deliverables=deliverables,
        terms=fields.get("terms") or "",
        currency=(fields.get("currency") or settings.OFFER_DEFAULT_CURRENCY).upper(),
        valid_until=valid_until,
        status=Offer.STATUS_PENDING,
        **cleaned,
    )
    logger.info(
        "offer=%s created in conversation=%s by user=%s (%s %s %s)",
        offer.pk, conversation.pk, sender.pk, offer.type, offer.price, offer.currency,
    )
    realtime.broadcast(conversation.pk, realtime.NEW_OFFER, {"offer": _snapshot(offer)})
    _enqueue_notification(offer)
    return offer


# ---------- recipient transitions ----------

def _reload(offer) -> Offer:
    pk = offer.pk if isinstance(offer, Offer) else offer
    return Offer.objects.select_related("sender__profile", "recipient__profile").get(pk=pk)


def _recipient_transition(offer, actor, new_status: str, **changes) -> Offer:
    offer = _reload(offer)
    now = timezone.now()

    if actor.pk != offer.recipient_id:
        logger.warning(
            "user=%s tried to move offer=%s to %s but is not its recipient",
            actor.pk, offer.pk, new_status,
        )
        raise NotRecipient()
    if offer.is_expired(now):
        raise OfferExpired(offer=_snapshot(offer))
    if offer.status != Offer.STATUS_PENDING:
        raise AlreadyActedUpon(offer=_snapshot(offer))

    updated = Offer.objects.filter(
        pk=offer.pk, status=Offer.STATUS_PENDING, valid_until__gt=now,
    ).update(status=new_status, updated_at=now, **changes)

    offer = _reload(offer)
    if not updated:
        # lost the race to another transition (or to the clock)
        if offer.is_expired(now):
            raise OfferExpired(offer=_snapshot(offer))
        raise InvalidTransition(offer=_snapshot(offer))

    logger.info("offer=%s %s by user=%s", offer.pk, new_status, actor.pk)
    realtime.broadcast(offer.conversation_id, realtime.OFFER_UPDATED, {"offer": _snapshot(offer)})
    _enqueue_notification(offer)
    return offer


def accept_offer(offer, actor) -> Offer:
    offer = _recipient_transition(offer, actor, Offer.STATUS_ACCEPTED)
    if offer.type in settings.OFFER_PAYMENT_PROMPT_TYPES:
        _prompt_payment(offer)
    return offer


def reject_offer(offer, actor) -> Offer:
    return _recipient_transition(offer, actor, Offer.STATUS_REJECTED)


def counter_offer(offer, actor, counter: dict[str, Any]) -> Offer:
    """Record the recipient's counter terms on the offer."""
    errors: dict[str, str] = {}
    cleaned = _check_terms(counter, errors, revisions_required=False)
    if errors:
        raise InvalidOfferFields(fields=errors)

    payload = {
        "price": str(cleaned["price"]),
        "delivery_time": cleaned["delivery_time"],
        "revisions": cleaned["revisions"],
        "terms": counter.get("terms") or "",
        "message": counter.get("message") or "",
    }
    return _recipient_transition(offer, actor, Offer.STATUS_COUNTERED, counter_offer=payload)


# ---------- sender transition ----------

def accept_counter(offer, actor) -> Offer:
    """
    Accept the counter on a countered offer.

    Returns the newly created pending offer.  The countered offer keeps
    its status; a second accept of the same counter is rejected.
    """
    original = _reload(offer)
    now = timezone.now()

    if actor.pk != original.sender_id:
        logger.warning(
            "user=%s tried to accept the counter on offer=%s but is not its sender",
            actor.pk, original.pk,
        )
        raise NotSender()
    if original.is_expired(now):
        raise OfferExpired(offer=_snapshot(original))
    if original.status != Offer.STATUS_COUNTERED or not original.counter_offer:
        raise InvalidTransition(offer=_snapshot(original))
    if Offer.objects.filter(parent=original).exists():
        raise AlreadyActedUpon(offer=_snapshot(original))

    terms = original.counter_offer
    validity = timedelta(days=settings.OFFER_COUNTER_VALIDITY_DAYS)
    try:
        with transaction.atomic():
            locked = Offer.objects.select_for_update().get(pk=original.pk)
            if locked.status != Offer.STATUS_COUNTERED:
                raise InvalidTransition(offer=_snapshot(locked))
            new_offer = Offer.objects.create(
                conversation_id=locked.conversation_id,
                sender_id=locked.recipient_id,
                recipient_id=locked.sender_id,
                type=flipped_type(locked.type),
                service=locked.service,
                description=locked.description,
                deliverables=locked.deliverables,
                currency=locked.currency,
                price=Decimal(str(terms["price"])),
                delivery_time=int(terms["delivery_time"]),
                revisions=int(terms.get("revisions") or 0),
                terms=terms.get("terms") or "",
                valid_until=now + validity,
                status=Offer.STATUS_PENDING,
                parent=locked,
            )
    except IntegrityError:
        # the parent link is unique; someone else accepted first
        raise AlreadyActedUpon(offer=_snapshot(_reload(original)))

    original = _reload(original)
    new_offer = _reload(new_offer)
    logger.info(
        "counter on offer=%s accepted by user=%s; spawned offer=%s",
        original.pk, actor.pk, new_offer.pk,
    )
    realtime.broadcast(original.conversation_id, realtime.OFFER_UPDATED, {"offer": _snapshot(original)})
    realtime.broadcast(original.conversation_id, realtime.NEW_OFFER, {"offer": _snapshot(new_offer)})
    _enqueue_notification(new_offer)
    return new_offer


# ---------- expiry sweep ----------

def expire_offers(now=None) -> int:
    """Persist ``expired`` on pending offers past their valid-until."""
    now = now or timezone.now()
    stale = list(
        Offer.objects
        .filter(status=Offer.STATUS_PENDING, valid_until__lte=now)
        .values_list("id", flat=True)
    )
    expired = 0
    for offer_id in stale:
        updated = Offer.objects.filter(
            pk=offer_id, status=Offer.STATUS_PENDING, valid_until__lte=now,
        ).update(status=Offer.STATUS_EXPIRED, updated_at=now)
        if not updated:
            continue
        expired += 1
        offer = _reload(offer_id)
        realtime.broadcast(offer.conversation_id, realtime.OFFER_UPDATED, {"offer": _snapshot(offer)})
    if expired:
        logger.info("Expired %s stale offer(s)", expired)
    return expired


# ---------- reads ----------

def list_offers(conversation, user):
    ensure_participant(conversation, user)
    return (
        Offer.objects
        .filter(conversation=conversation)
        .select_related("sender__profile", "recipient__profile")
        .order_by("created_at", "id")
    )


def get_offer(offer_id, user) -> Offer:
    offer = _reload(offer_id)
    if user.pk not in (offer.sender_id, offer.recipient_id):
        logger.warning("user=%s denied access to offer=%s", user.pk, offer.pk)
        raise NotParticipant("You are not a party to this offer.")
    return offer


def list_user_offers(user, status: Optional[str] = None, type: Optional[str] = None):
    """Offers the user sent or received, newest first."""
    now = timezone.now()
    qs = Offer.objects.filter(Q(sender=user) | Q(recipient=user))
    if status == Offer.STATUS_EXPIRED:
        qs = qs.filter(Q(status=Offer.STATUS_EXPIRED) | Q(status=Offer.STATUS_PENDING, valid_until__lte=now))
    elif status == Offer.STATUS_PENDING:
        qs = qs.filter(status=Offer.STATUS_PENDING, valid_until__gt=now)
    elif status:
        qs = qs.filter(status=status)
    if type:
        qs = qs.filter(type=type)
    return qs.select_related("sender__profile", "recipient__profile").order_by("-created_at", "-id")


# ---------- side effects ----------

def _payer_id(offer: Offer):
    # the brand pays whichever direction the offer went
    if offer.type == Offer.TYPE_BRAND_TO_CREATOR:
        return offer.sender_id
    return offer.recipient_id


def _prompt_payment(offer: Offer) -> None:
    """Hand the accepted offer to the payment collaborator and prompt the brand."""
    reference = None
    try:
        reference = initiate_payment(offer.pk, offer.price, offer.currency)
    except PaymentFailed as e:
        logger.warning("Payment could not be initiated for offer=%s: %s", offer.pk, e.detail)
    else:
        Offer.objects.filter(pk=offer.pk).update(checkout_reference=reference)
        offer.checkout_reference = reference

    realtime.broadcast(
        offer.conversation_id,
        realtime.PAYMENT_REQUIRED,
        {
            "offer_id": offer.pk,
            "payer_id": _payer_id(offer),
            "amount": str(offer.price),
            "currency": offer.currency,
            "checkout_reference": reference,
            "message": f"Offer accepted. Complete the payment of {offer.currency} {offer.price} to get started.",
        },
    )


def _enqueue_notification(offer: Offer) -> None:
    if not getattr(settings, "CHAT_NOTIFY_BY_EMAIL", False):
        return
    try:
        from .tasks import notify_offer_updated

        notify_offer_updated.delay(offer.pk)
    except Exception as e:
        logger.warning("Could not enqueue notification for offer=%s: %s", offer.pk, e)
