# offers/admin.py
from django.contrib import admin
from .models import Offer


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ("id", "conversation", "type", "sender", "recipient", "price", "currency", "status", "valid_until", "created_at")
    list_filter = ("type", "status", "currency")
    search_fields = ("service", "sender__username", "recipient__username", "checkout_reference")
    raw_id_fields = ("conversation", "sender", "recipient", "parent")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-created_at",)
