"""
Serializers for the users app.

Only the read-only shapes the chat surfaces need: the caller's own
identity and a compact participant summary embedded in conversations,
messages and offers.
"""
from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from .services import avatar_url, display_name, get_role

User = get_user_model()


class UserSummarySerializer(serializers.ModelSerializer):
    full_name = serializers.SerializerMethodField()
    avatar = serializers.SerializerMethodField()
    role = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ("id", "username", "full_name", "avatar", "role")
        read_only_fields = fields

    def get_full_name(self, obj) -> str:
        return display_name(obj)

    def get_avatar(self, obj) -> str:
        return avatar_url(obj)

    def get_role(self, obj) -> str:
        return get_role(obj)


class MeSerializer(UserSummarySerializer):
    class Meta(UserSummarySerializer.Meta):
        fields = ("id", "username", "email", "full_name", "avatar", "role")
        read_only_fields = fields
