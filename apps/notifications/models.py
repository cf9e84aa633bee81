from __future__ import annotations

import uuid

from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class OutboundNotification(models.Model):
    """Outbox row written by domain event handlers and drained by the relay task."""

    class Kind(models.TextChoices):
        BOOKING_CONFIRMATION = "booking_confirmation", _("Booking confirmation")
        PAYMENT_RECEIPT = "payment_receipt", _("Payment receipt")
        CANCELLATION_CONFIRMATION = "cancellation_confirmation", _("Cancellation confirmation")

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        SENT = "sent", _("Sent")
        FAILED = "failed", _("Failed")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=40, choices=Kind.choices)
    booking_id = models.UUIDField(null=True, blank=True, db_index=True)
    recipient = models.CharField(max_length=255)
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = _("Outbound notification")
        verbose_name_plural = _("Outbound notifications")
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="notification_pending_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.kind} to {self.recipient} ({self.status})"
