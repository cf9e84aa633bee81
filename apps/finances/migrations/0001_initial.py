import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_id", models.UUIDField(db_index=True)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially refunded"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("external_intent_id", models.CharField(max_length=255, unique=True)),
                ("client_secret", models.CharField(blank=True, max_length=255)),
                ("attempt", models.PositiveIntegerField(default=1)),
                ("refund_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("refund_reason", models.TextField(blank=True)),
                ("external_refund_id", models.CharField(blank=True, max_length=255)),
                ("failure_reason", models.TextField(blank=True)),
                ("succeeded_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_transactions",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment transaction",
                "verbose_name_plural": "Payment transactions",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(status__in=["pending", "succeeded"]),
                        fields=("booking",),
                        name="one_active_payment_per_booking",
                    ),
                    models.CheckConstraint(condition=models.Q(amount__gte=0), name="payment_amount_non_negative"),
                ],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessedWebhookEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("external_intent_id", models.CharField(max_length=255)),
                ("event_type", models.CharField(max_length=100)),
                ("event_id", models.CharField(blank=True, max_length=255)),
                ("received_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "verbose_name": "Processed webhook event",
                "verbose_name_plural": "Processed webhook events",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("external_intent_id", "event_type"),
                        name="unique_webhook_delivery",
                    ),
                ],
            },
        ),
    ]
