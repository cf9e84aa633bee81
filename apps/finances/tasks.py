"""Celery tasks for the payments domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from shared.application.bootstrap import get_services

logger = logging.getLogger(__name__)


@shared_task(name="payments.reconcile_pending_intents")
def reconcile_pending_intents() -> dict[str, int]:
    """
    Ask the gateway about intents still PENDING after the reconcile delay.

    Covers webhooks that never arrived and calls whose outcome was unknown.
    Runs every 5 minutes through Celery Beat.
    """
    services = get_services()
    summary = services.reconciler.reconcile_pending_intents(services.settings.reconcile_after)
    if summary['checked']:
        logger.info(f"Reconciled pending payment intents: {summary}")
    return summary
