import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("innkeep")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Deliver queued guest notifications - every minute
    "deliver-pending-notifications": {
        "task": "notifications.deliver_pending",
        "schedule": 60.0,
        "options": {"expires": 50},
    },
    # Sync payment intents the gateway never reported on - every 5 minutes
    "reconcile-pending-intents": {
        "task": "payments.reconcile_pending_intents",
        "schedule": crontab(minute="*/5"),
    },
    # Compare cached loyalty balances with the ledger - nightly
    "audit-loyalty-ledgers": {
        "task": "loyalty.audit_ledgers",
        "schedule": crontab(minute=30, hour=3),
    },
}

app.conf.timezone = "UTC"
