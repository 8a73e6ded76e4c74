# messaging/admin.py
from django.contrib import admin
from .models import Conversation, Message


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ("id", "user1", "user2", "user1_unread", "user2_unread", "last_message_at", "created_at")
    list_filter = ("user1_archived", "user2_archived", "last_message_at")
    search_fields = ("user1__username", "user2__username")
    raw_id_fields = ("user1", "user2", "last_message")
    ordering = ("-last_message_at",)


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ("id", "conversation", "sender", "type", "is_read", "sent_at")
    list_filter = ("type", "is_read", "sent_at")
    search_fields = ("sender__username", "content", "client_id")
    raw_id_fields = ("conversation", "sender")
    ordering = ("-sent_at",)
