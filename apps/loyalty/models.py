from __future__ import annotations

import uuid
from decimal import Decimal

from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class LoyaltyAccount(models.Model):
    """Points balance and tier of a user."""

    class Tier(models.TextChoices):
        BRONZE = "BRONZE", _("Bronze")
        SILVER = "SILVER", _("Silver")
        GOLD = "GOLD", _("Gold")
        PLATINUM = "PLATINUM", _("Platinum")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.UUIDField(unique=True)
    current_points = models.IntegerField(default=0)
    lifetime_points = models.IntegerField(default=0)
    lifetime_spending = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    tier = models.CharField(max_length=10, choices=Tier.choices, default=Tier.BRONZE)
    tier_updated_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = _("Loyalty account")
        verbose_name_plural = _("Loyalty accounts")
        constraints = [
            models.CheckConstraint(
                condition=models.Q(current_points__gte=0),
                name="loyalty_balance_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user_id}: {self.current_points} ({self.tier})"


class LoyaltyTransaction(models.Model):
    """Append-only ledger entry. The auto primary key orders entries sharing a timestamp."""

    class Type(models.TextChoices):
        EARN = "EARN", _("Earn")
        REDEEM = "REDEEM", _("Redeem")
        BONUS = "BONUS", _("Bonus")
        ADJUSTMENT = "ADJUSTMENT", _("Adjustment")

    entry_id = models.UUIDField(unique=True, default=uuid.uuid4, editable=False)
    account = models.ForeignKey(LoyaltyAccount, on_delete=models.PROTECT, related_name="transactions")
    booking_id = models.UUIDField(null=True, blank=True, db_index=True)
    type = models.CharField(max_length=12, choices=Type.choices)
    points = models.IntegerField()
    balance_after = models.IntegerField()
    description = models.CharField(max_length=255, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = _("Loyalty transaction")
        verbose_name_plural = _("Loyalty transactions")
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["account", "-created_at"], name="loyalty_txn_account_idx"),
            models.Index(fields=["account", "booking_id", "type"], name="loyalty_txn_booking_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.type} {self.points:+d} -> {self.balance_after}"
