import uuid

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="OutboundNotification",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("booking_confirmation", "Booking confirmation"),
                            ("payment_receipt", "Payment receipt"),
                            ("cancellation_confirmation", "Cancellation confirmation"),
                        ],
                        max_length=40,
                    ),
                ),
                ("booking_id", models.UUIDField(blank=True, db_index=True, null=True)),
                ("recipient", models.CharField(max_length=255)),
                ("payload", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("sent", "Sent"), ("failed", "Failed")],
                        default="pending",
                        max_length=10,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "verbose_name": "Outbound notification",
                "verbose_name_plural": "Outbound notifications",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="notification_pending_idx"),
                ],
            },
        ),
    ]
