# offers/models.py
from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Offer(models.Model):
    """
    A priced proposal between the two participants of a conversation.

    Expiry is derived at read time (see ``effective_status``); the stored
    status only moves to ``expired`` when the periodic sweep persists it.
    """

    TYPE_BRAND_TO_CREATOR = "brand_to_creator"
    TYPE_CREATOR_TO_BRAND = "creator_to_brand"
    TYPE_CHOICES = (
        (TYPE_BRAND_TO_CREATOR, "Brand to creator"),
        (TYPE_CREATOR_TO_BRAND, "Creator to brand"),
    )

    STATUS_PENDING = "pending"
    STATUS_ACCEPTED = "accepted"
    STATUS_REJECTED = "rejected"
    STATUS_COUNTERED = "countered"
    STATUS_EXPIRED = "expired"
    STATUS_CHOICES = (
        (STATUS_PENDING, "Pending"),
        (STATUS_ACCEPTED, "Accepted"),
        (STATUS_REJECTED, "Rejected"),
        (STATUS_COUNTERED, "Countered"),
        (STATUS_EXPIRED, "Expired"),
    )

    conversation = models.ForeignKey(
        "messaging.Conversation", on_delete=models.CASCADE, related_name="offers",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="sent_offers",
    )
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="received_offers",
    )
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)

    service = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    deliverables = models.JSONField(default=list, blank=True)
    terms = models.TextField(blank=True, default="")

    price = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="INR")
    delivery_time = models.PositiveIntegerField(help_text="Days")
    revisions = models.PositiveIntegerField(default=0)
    valid_until = models.DateTimeField()

    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    # {price, delivery_time, revisions, terms, message}; only while countered
    counter_offer = models.JSONField(null=True, blank=True)

    # the countered offer this one was spawned from by accept-counter
    parent = models.OneToOneField(
        "self", on_delete=models.SET_NULL, null=True, blank=True, related_name="follow_up",
    )
    checkout_reference = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(condition=Q(price__gt=0), name="offer_price_positive"),
            models.CheckConstraint(condition=Q(delivery_time__gt=0), name="offer_delivery_time_positive"),
            models.CheckConstraint(condition=~Q(sender=models.F("recipient")), name="offer_distinct_parties"),
        ]
        indexes = [
            models.Index(fields=["conversation", "created_at"], name="offer_conv_created_idx"),
            models.Index(fields=["status", "valid_until"], name="offer_status_valid_idx"),
        ]

    def __str__(self):
        return f"Offer({self.pk}) {self.type} {self.price} {self.currency} [{self.status}]"

    def is_expired(self, now=None) -> bool:
        if self.status == self.STATUS_EXPIRED:
            return True
        now = now or timezone.now()
        return self.valid_until <= now

    @property
    def effective_status(self) -> str:
        if self.status == self.STATUS_PENDING and self.is_expired():
            return self.STATUS_EXPIRED
        return self.status
