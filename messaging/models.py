# messaging/models.py
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models


class Conversation(models.Model):
    """The single durable 1:1 thread between a brand and a creator."""

    # canonical pair: user1_id < user2_id (see save())
    user1 = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE,
        related_name="conversations_as_user1",
    )
    user2 = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE,
        related_name="conversations_as_user2",
    )

    # denormalized for list views
    last_message = models.ForeignKey(
        "messaging.Message", on_delete=models.SET_NULL,
        related_name="+", null=True, blank=True,
    )
    last_message_at = models.DateTimeField(null=True, blank=True)

    # per-participant bookkeeping; only ever touched with F() expressions
    user1_unread = models.PositiveIntegerField(default=0)
    user2_unread = models.PositiveIntegerField(default=0)
    user1_archived = models.BooleanField(default=False)
    user2_archived = models.BooleanField(default=False)
    user1_deleted = models.BooleanField(default=False)
    user2_deleted = models.BooleanField(default=False)

    updated_at = models.DateTimeField(auto_now=True)
    created_at = models.DateTimeField(auto_now_add=True)

    # ---------- validation ----------
    def clean(self):
        super().clean()
        if not self.user1_id or not self.user2_id:
            raise ValidationError("Direct conversations require both user1 and user2.")
        if self.user1_id == self.user2_id:
            raise ValidationError("A conversation requires two distinct participants.")

    def save(self, *args, **kwargs):
        # keep pairs canonical (smaller id in user1)
        if self.user1_id and self.user2_id and self.user1_id > self.user2_id:
            self.user1_id, self.user2_id = self.user2_id, self.user1_id
        super().save(*args, **kwargs)

    # ---------- participant helpers ----------
    def participants(self):
        return self.user1_id, self.user2_id

    def has_participant(self, user_id) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def other_participant_id(self, user_id):
        return self.user2_id if user_id == self.user1_id else self.user1_id

    def slot_for(self, user_id) -> str:
        """'user1' or 'user2' for a participant id."""
        if user_id == self.user1_id:
            return "user1"
        if user_id == self.user2_id:
            return "user2"
        raise ValueError(f"user {user_id} is not a participant of conversation {self.pk}")

    def unread_for(self, user_id) -> int:
        return getattr(self, f"{self.slot_for(user_id)}_unread")

    def archived_for(self, user_id) -> bool:
        return getattr(self, f"{self.slot_for(user_id)}_archived")

    @property
    def room_name(self) -> str:
        return f"conversation_{self.pk}"

    def __str__(self):
        return f"Conversation({self.user1_id}, {self.user2_id})"

    class Meta:
        constraints = [
            # One unique conversation per unordered (user1, user2) pair
            models.UniqueConstraint(
                fields=["user1", "user2"], name="uniq_conversation_per_user_pair",
            ),
            models.CheckConstraint(
                condition=~models.Q(user1=models.F("user2")),
                name="conversation_distinct_participants",
            ),
        ]
        indexes = [
            models.Index(fields=["-last_message_at"], name="conversation_last_msg_idx"),
        ]


class Message(models.Model):
    TYPE_TEXT = "text"
    TYPE_IMAGE = "image"
    TYPE_FILE = "file"
    TYPE_LINK = "link"
    TYPE_CHOICES = [
        (TYPE_TEXT, "Text"),
        (TYPE_IMAGE, "Image"),
        (TYPE_FILE, "File"),
        (TYPE_LINK, "Link"),
    ]

    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name="messages")
    sender = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="sent_messages")
    type = models.CharField(max_length=8, choices=TYPE_CHOICES, default=TYPE_TEXT)
    content = models.TextField(blank=True, default="")

    # set only when an attachment was stored by the upload collaborator
    file_url = models.CharField(max_length=1000, blank=True, default="")
    file_name = models.CharField(max_length=255, blank=True, default="")
    file_type = models.CharField(max_length=255, blank=True, default="")

    # sender-supplied idempotency key (also matches the optimistic client copy)
    client_id = models.CharField(max_length=64, null=True, blank=True)

    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField()

    def __str__(self):
        return f"Message({self.pk}) in {self.conversation_id} by {self.sender_id}"

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "sender", "client_id"],
                name="uniq_message_client_id",
                condition=models.Q(client_id__isnull=False),
            ),
        ]
        indexes = [
            models.Index(fields=["conversation", "sent_at", "id"], name="message_conv_sent_idx"),
            models.Index(fields=["conversation", "is_read"], name="message_conv_unread_idx"),
        ]
