"""
Domain errors shared by the REST views and the websocket consumer.

Every error is a DRF ``APIException`` so views can simply let it
propagate; the consumer catches ``APIException`` and turns it into an
``{"type": "error", ...}`` frame.  Bodies always carry a stable
``code`` next to the human readable ``detail``.

Families:
  - validation (400): EmptyMessage, InvalidOfferFields, InvalidParticipants,
    InvalidRequest
  - authorization (403): NotParticipant, NotRecipient, NotSender
  - state (409): OfferExpired, InvalidTransition, AlreadyActedUpon
  - upstream collaborators (502): UploadFailed, PaymentFailed
"""
from __future__ import annotations

from typing import Any

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.views import exception_handler


class DomainError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request could not be processed."
    default_code = "error"

    def __init__(self, detail: Any = None, *, fields: dict | None = None, **extra: Any):
        super().__init__(detail=detail or self.default_detail, code=self.default_code)
        self.fields = fields or {}
        self.extra = extra

    @property
    def code(self) -> str:
        return self.default_code

    def as_payload(self) -> dict:
        payload = {"code": self.code, "detail": str(self.detail)}
        if self.fields:
            payload["fields"] = self.fields
        payload.update(self.extra)
        return payload


# ---------- validation ----------

class ValidationFailed(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST


class EmptyMessage(ValidationFailed):
    default_detail = "Message content or file is required."
    default_code = "empty_message"


class InvalidOfferFields(ValidationFailed):
    default_detail = "Offer fields are invalid."
    default_code = "invalid_offer_fields"


class InvalidParticipants(ValidationFailed):
    default_detail = "A conversation requires two distinct participants."
    default_code = "invalid_participants"


class InvalidRequest(ValidationFailed):
    default_detail = "Request is malformed."
    default_code = "invalid_request"


# ---------- authorization ----------

class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action."


class NotParticipant(Forbidden):
    default_detail = "You are not a participant of this conversation."
    default_code = "not_participant"


class NotRecipient(Forbidden):
    default_detail = "Only the recipient of this offer can do that."
    default_code = "not_recipient"


class NotSender(Forbidden):
    default_detail = "Only the sender of this offer can accept its counter-offer."
    default_code = "not_sender"


# ---------- state ----------

class StateError(DomainError):
    """Raised by the offer state machine; carries the current offer."""

    status_code = status.HTTP_409_CONFLICT


class OfferExpired(StateError):
    default_detail = "Offer has expired."
    default_code = "offer_expired"


class InvalidTransition(StateError):
    default_detail = "Offer cannot make this transition from its current state."
    default_code = "invalid_transition"


class AlreadyActedUpon(InvalidTransition):
    default_detail = "Offer has already been acted upon."
    default_code = "already_acted_upon"


# ---------- upstream collaborators ----------

class UpstreamError(DomainError):
    status_code = status.HTTP_502_BAD_GATEWAY


class UploadFailed(UpstreamError):
    default_detail = "File upload failed."
    default_code = "upload_failed"


class PaymentFailed(UpstreamError):
    default_detail = "Payment could not be initiated."
    default_code = "payment_failed"


def api_exception_handler(exc, context):
    """DRF exception handler that renders DomainError payloads verbatim."""
    if isinstance(exc, DomainError):
        response = exception_handler(exc, context)
        if response is not None:
            response.data = exc.as_payload()
        return response
    return exception_handler(exc, context)
