from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from users.serializers import UserSummarySerializer
from users.services import avatar_url, display_name

from .models import Conversation, Message

User = get_user_model()


class MessageSerializer(serializers.ModelSerializer):
    conversation_id = serializers.IntegerField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True)
    sender_name = serializers.SerializerMethodField()
    sender_avatar = serializers.SerializerMethodField()
    file = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = (
            "id",
            "conversation_id",
            "sender_id", "sender_name", "sender_avatar",
            "type", "content", "file",
            "client_id",
            "is_read", "read_at",
            "sent_at",
        )
        read_only_fields = fields

    def get_sender_name(self, obj):
        return display_name(getattr(obj, "sender", None))

    def get_sender_avatar(self, obj):
        u = getattr(obj, "sender", None)
        return avatar_url(u) if u else ""

    def get_file(self, obj):
        if not obj.file_url:
            return None
        return {"url": obj.file_url, "name": obj.file_name, "mime_type": obj.file_type}


class AttachmentSerializer(serializers.Serializer):
    """The reference returned by the upload endpoint."""

    url = serializers.CharField(max_length=1000)
    name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    mime_type = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class SendMessageSerializer(serializers.Serializer):
    content = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False, default="")
    file = AttachmentSerializer(required=False, allow_null=True, default=None)
    type = serializers.ChoiceField(choices=[c for c, _ in Message.TYPE_CHOICES], required=False, allow_null=True)
    client_id = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)


class UploadSerializer(serializers.Serializer):
    file = serializers.FileField()


class LastMessageSerializer(serializers.ModelSerializer):
    """Compact snapshot shown in the conversation list."""

    sender_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Message
        fields = ("id", "sender_id", "type", "content", "sent_at", "is_read")
        read_only_fields = fields


class ConversationSerializer(serializers.ModelSerializer):
    participant_ids = serializers.SerializerMethodField()
    other_user = serializers.SerializerMethodField()
    last_message = LastMessageSerializer(read_only=True)
    unread_count = serializers.SerializerMethodField()
    is_archived = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = [
            "id",
            "participant_ids",
            "other_user",
            "last_message",
            "last_message_at",
            "unread_count",
            "is_archived",
            "updated_at", "created_at",
        ]
        read_only_fields = fields

    def _me_id(self):
        req = self.context.get("request")
        return getattr(getattr(req, "user", None), "id", None)

    def get_participant_ids(self, obj: Conversation) -> list[int]:
        return [obj.user1_id, obj.user2_id]

    def get_other_user(self, obj: Conversation):
        me_id = self._me_id()
        if me_id is None or not obj.has_participant(me_id):
            return None
        other = obj.user2 if obj.user1_id == me_id else obj.user1
        return UserSummarySerializer(other).data

    def get_unread_count(self, obj: Conversation) -> int:
        me_id = self._me_id()
        if me_id is None or not obj.has_participant(me_id):
            return 0
        return obj.unread_for(me_id)

    def get_is_archived(self, obj: Conversation) -> bool:
        me_id = self._me_id()
        if me_id is None or not obj.has_participant(me_id):
            return False
        return obj.archived_for(me_id)


class StartConversationSerializer(serializers.Serializer):
    recipient_id = serializers.IntegerField()


class ArchiveSerializer(serializers.Serializer):
    archived = serializers.BooleanField(default=True)
