from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from users.serializers import UserSummarySerializer

from .models import Offer

User = get_user_model()


class UserReferenceField(serializers.Field):
    """
    Accepts a user id (int or numeric string) or an object carrying ``id``
    and resolves it to a user once, here at the boundary.
    """

    default_error_messages = {
        "invalid": "Expected a user id or an object with an id.",
        "does_not_exist": "User {pk} does not exist.",
    }

    def to_internal_value(self, data):
        if isinstance(data, dict):
            data = data.get("id")
        if isinstance(data, bool):
            self.fail("invalid")
        try:
            pk = int(data)
        except (TypeError, ValueError):
            self.fail("invalid")
        try:
            return User.objects.select_related("profile").get(pk=pk)
        except User.DoesNotExist:
            self.fail("does_not_exist", pk=pk)

    def to_representation(self, value):
        return value.pk


class OfferSerializer(serializers.ModelSerializer):
    conversation_id = serializers.IntegerField(read_only=True)
    sender = UserSummarySerializer(read_only=True)
    recipient = UserSummarySerializer(read_only=True)
    sender_id = serializers.IntegerField(read_only=True)
    recipient_id = serializers.IntegerField(read_only=True)
    status = serializers.CharField(source="effective_status", read_only=True)
    stored_status = serializers.CharField(source="status", read_only=True)
    parent_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = Offer
        fields = (
            "id",
            "conversation_id",
            "type",
            "service", "description", "deliverables", "terms",
            "price", "currency", "delivery_time", "revisions",
            "valid_until",
            "status", "stored_status",
            "counter_offer",
            "sender", "sender_id",
            "recipient", "recipient_id",
            "parent_id",
            "checkout_reference",
            "created_at", "updated_at",
        )
        read_only_fields = fields


class CreateOfferSerializer(serializers.Serializer):
    conversation_id = serializers.IntegerField(required=False)
    recipient_id = UserReferenceField()
    type = serializers.ChoiceField(choices=Offer.TYPE_CHOICES, required=False)
    service = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    deliverables = serializers.ListField(
        child=serializers.CharField(max_length=500), required=False, default=list,
    )
    terms = serializers.CharField(required=False, allow_blank=True, default="")
    price = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField(max_length=8, required=False, allow_blank=True)
    delivery_time = serializers.IntegerField()
    revisions = serializers.IntegerField(required=False, default=0)
    valid_until = serializers.DateTimeField()

    def to_internal_value(self, data):
        # "recipient" is accepted as an alias of "recipient_id"
        if hasattr(data, "get") and "recipient_id" not in data and "recipient" in data:
            data = {**data, "recipient_id": data.get("recipient")}
        return super().to_internal_value(data)


class CounterOfferSerializer(serializers.Serializer):
    price = serializers.DecimalField(max_digits=12, decimal_places=2)
    delivery_time = serializers.IntegerField()
    revisions = serializers.IntegerField(required=False, default=0)
    terms = serializers.CharField(required=False, allow_blank=True, default="")
    message = serializers.CharField(required=False, allow_blank=True, default="")
