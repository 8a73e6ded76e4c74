"""
Payment collaborator.

``initiate_payment`` hands an accepted offer to the configured provider
and returns an opaque checkout reference.  Payment processing itself
(webhooks, settlement) happens on the provider's side.

Providers (``PAYMENT_PROVIDER``):
  - ``stripe``: creates a Stripe Checkout Session with the offer id in
    its metadata; the reference is the session id.
  - ``dummy``: deterministic ``dummy_<offer_id>`` reference for dev/test.
"""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

import stripe
from django.conf import settings

from common.exceptions import PaymentFailed

logger = logging.getLogger(__name__)


class DummyGateway:
    name = "dummy"

    def create_checkout(self, offer_id, amount: Decimal, currency: str) -> str:
        return f"dummy_{offer_id}"


class StripeGateway:
    name = "stripe"

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or getattr(settings, "STRIPE_SECRET_KEY", "")

    def create_checkout(self, offer_id, amount: Decimal, currency: str) -> str:
        if not self.api_key:
            raise PaymentFailed("Stripe is not configured.")
        stripe.api_key = self.api_key
        session = stripe.checkout.Session.create(
            mode="payment",
            line_items=[{
                "quantity": 1,
                "price_data": {
                    "currency": currency.lower(),
                    "unit_amount": to_minor_units(amount),
                    "product_data": {"name": f"Offer #{offer_id}"},
                },
            }],
            metadata={"offer_id": str(offer_id)},
            success_url=settings.PAYMENT_SUCCESS_URL.format(offer_id=offer_id),
            cancel_url=settings.PAYMENT_CANCEL_URL.format(offer_id=offer_id),
        )
        return session.id


PROVIDERS = {
    DummyGateway.name: DummyGateway,
    StripeGateway.name: StripeGateway,
}


def to_minor_units(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_gateway(name: str | None = None):
    name = (name or getattr(settings, "PAYMENT_PROVIDER", "dummy")).lower()
    try:
        return PROVIDERS[name]()
    except KeyError:
        raise PaymentFailed(f"Unknown payment provider {name!r}.")


def initiate_payment(offer_id, amount, currency: str) -> str:
    """Start a checkout for an accepted offer; raises PaymentFailed."""
    gateway = get_gateway()
    try:
        reference = gateway.create_checkout(offer_id, Decimal(str(amount)), currency)
    except PaymentFailed:
        raise
    except Exception as e:
        logger.error("[PAYMENT] %s checkout failed for offer=%s: %s", gateway.name, offer_id, e)
        raise PaymentFailed(str(e) or None) from e

    logger.info("[PAYMENT] %s checkout %s created for offer=%s", gateway.name, reference, offer_id)
    return reference
