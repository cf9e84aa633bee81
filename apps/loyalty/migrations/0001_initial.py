import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="LoyaltyAccount",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_id", models.UUIDField(unique=True)),
                ("current_points", models.IntegerField(default=0)),
                ("lifetime_points", models.IntegerField(default=0)),
                ("lifetime_spending", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                (
                    "tier",
                    models.CharField(
                        choices=[
                            ("BRONZE", "Bronze"),
                            ("SILVER", "Silver"),
                            ("GOLD", "Gold"),
                            ("PLATINUM", "Platinum"),
                        ],
                        default="BRONZE",
                        max_length=10,
                    ),
                ),
                ("tier_updated_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "verbose_name": "Loyalty account",
                "verbose_name_plural": "Loyalty accounts",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(current_points__gte=0),
                        name="loyalty_balance_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LoyaltyTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("entry_id", models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
                ("booking_id", models.UUIDField(blank=True, db_index=True, null=True)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("EARN", "Earn"),
                            ("REDEEM", "Redeem"),
                            ("BONUS", "Bonus"),
                            ("ADJUSTMENT", "Adjustment"),
                        ],
                        max_length=12,
                    ),
                ),
                ("points", models.IntegerField()),
                ("balance_after", models.IntegerField()),
                ("description", models.CharField(blank=True, max_length=255)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="loyalty.loyaltyaccount",
                    ),
                ),
            ],
            options={
                "verbose_name": "Loyalty transaction",
                "verbose_name_plural": "Loyalty transactions",
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["account", "-created_at"], name="loyalty_txn_account_idx"),
                    models.Index(fields=["account", "booking_id", "type"], name="loyalty_txn_booking_idx"),
                ],
            },
        ),
    ]
