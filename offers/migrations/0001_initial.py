from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("messaging", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Offer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("type", models.CharField(
                    choices=[("brand_to_creator", "Brand to creator"), ("creator_to_brand", "Creator to brand")],
                    max_length=20,
                )),
                ("service", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("deliverables", models.JSONField(blank=True, default=list)),
                ("terms", models.TextField(blank=True, default="")),
                ("price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="INR", max_length=8)),
                ("delivery_time", models.PositiveIntegerField(help_text="Days")),
                ("revisions", models.PositiveIntegerField(default=0)),
                ("valid_until", models.DateTimeField()),
                ("status", models.CharField(
                    choices=[
                        ("pending", "Pending"),
                        ("accepted", "Accepted"),
                        ("rejected", "Rejected"),
                        ("countered", "Countered"),
                        ("expired", "Expired"),
                    ],
                    db_index=True, default="pending", max_length=12,
                )),
                ("counter_offer", models.JSONField(blank=True, null=True)),
                ("checkout_reference", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("conversation", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="offers",
                    to="messaging.conversation",
                )),
                ("sender", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="sent_offers",
                    to=settings.AUTH_USER_MODEL,
                )),
                ("recipient", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="received_offers",
                    to=settings.AUTH_USER_MODEL,
                )),
                ("parent", models.OneToOneField(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="follow_up",
                    to="offers.offer",
                )),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(fields=["conversation", "created_at"], name="offer_conv_created_idx"),
                    models.Index(fields=["status", "valid_until"], name="offer_status_valid_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("price__gt", 0)), name="offer_price_positive"),
                    models.CheckConstraint(condition=models.Q(("delivery_time__gt", 0)), name="offer_delivery_time_positive"),
                    models.CheckConstraint(
                        condition=models.Q(("sender", models.F("recipient")), _negated=True),
                        name="offer_distinct_parties",
                    ),
                ],
            },
        ),
    ]
