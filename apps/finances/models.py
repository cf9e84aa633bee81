from __future__ import annotations

import uuid

from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class PaymentTransaction(models.Model):
    """Gateway payment intent of a booking."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        SUCCEEDED = "succeeded", _("Succeeded")
        FAILED = "failed", _("Failed")
        REFUNDED = "refunded", _("Refunded")
        PARTIALLY_REFUNDED = "partially_refunded", _("Partially refunded")

    ACTIVE_STATUSES = (Status.PENDING, Status.SUCCEEDED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="payment_transactions",
    )
    user_id = models.UUIDField(db_index=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    external_intent_id = models.CharField(max_length=255, unique=True)
    client_secret = models.CharField(max_length=255, blank=True)
    attempt = models.PositiveIntegerField(default=1)

    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    refund_reason = models.TextField(blank=True)
    external_refund_id = models.CharField(max_length=255, blank=True)
    failure_reason = models.TextField(blank=True)

    succeeded_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = _("Payment transaction")
        verbose_name_plural = _("Payment transactions")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking"],
                condition=models.Q(status__in=["pending", "succeeded"]),
                name="one_active_payment_per_booking",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gte=0),
                name="payment_amount_non_negative",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.external_intent_id} ({self.status})"


class ProcessedWebhookEvent(models.Model):
    """Idempotency record: one row per (intent, event type) that has been applied."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    external_intent_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=100)
    event_id = models.CharField(max_length=255, blank=True)
    received_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = _("Processed webhook event")
        verbose_name_plural = _("Processed webhook events")
        constraints = [
            models.UniqueConstraint(
                fields=["external_intent_id", "event_type"],
                name="unique_webhook_delivery",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.event_type} for {self.external_intent_id}"
