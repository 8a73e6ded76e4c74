"""
Initial migration for the messaging app.

Defines the Conversation and Message models with the constraints that
keep one conversation per participant pair and make client-supplied
message keys idempotent.
"""
from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Conversation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("last_message_at", models.DateTimeField(blank=True, null=True)),
                ("user1_unread", models.PositiveIntegerField(default=0)),
                ("user2_unread", models.PositiveIntegerField(default=0)),
                ("user1_archived", models.BooleanField(default=False)),
                ("user2_archived", models.BooleanField(default=False)),
                ("user1_deleted", models.BooleanField(default=False)),
                ("user2_deleted", models.BooleanField(default=False)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("user1", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="conversations_as_user1",
                    to=settings.AUTH_USER_MODEL,
                )),
                ("user2", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="conversations_as_user2",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
        ),
        migrations.CreateModel(
            name="Message",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("type", models.CharField(
                    choices=[("text", "Text"), ("image", "Image"), ("file", "File"), ("link", "Link")],
                    default="text", max_length=8,
                )),
                ("content", models.TextField(blank=True, default="")),
                ("file_url", models.CharField(blank=True, default="", max_length=1000)),
                ("file_name", models.CharField(blank=True, default="", max_length=255)),
                ("file_type", models.CharField(blank=True, default="", max_length=255)),
                ("client_id", models.CharField(blank=True, max_length=64, null=True)),
                ("is_read", models.BooleanField(default=False)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                ("sent_at", models.DateTimeField()),
                ("conversation", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="messages",
                    to="messaging.conversation",
                )),
                ("sender", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="sent_messages",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "indexes": [
                    models.Index(fields=["conversation", "sent_at", "id"], name="message_conv_sent_idx"),
                    models.Index(fields=["conversation", "is_read"], name="message_conv_unread_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(client_id__isnull=False),
                        fields=("conversation", "sender", "client_id"),
                        name="uniq_message_client_id",
                    ),
                ],
            },
        ),
        migrations.AddField(
            model_name="conversation",
            name="last_message",
            field=models.ForeignKey(
                blank=True, null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="messaging.message",
            ),
        ),
        migrations.AddConstraint(
            model_name="conversation",
            constraint=models.UniqueConstraint(fields=("user1", "user2"), name="uniq_conversation_per_user_pair"),
        ),
        migrations.AddConstraint(
            model_name="conversation",
            constraint=models.CheckConstraint(
                condition=models.Q(("user1", models.F("user2")), _negated=True),
                name="conversation_distinct_participants",
            ),
        ),
        migrations.AddIndex(
            model_name="conversation",
            index=models.Index(fields=["-last_message_at"], name="conversation_last_msg_idx"),
        ),
    ]
