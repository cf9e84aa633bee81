"""Celery tasks for the notification outbox."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from shared.application.bootstrap import get_services

logger = logging.getLogger(__name__)


@shared_task(name="notifications.deliver_pending")
def deliver_pending(batch_size: int = 50) -> dict[str, int]:
    """
    Send queued notifications.

    Runs every minute through Celery Beat.

    Returns:
        dict: {"sent": ..., "failed": ..., "retrying": ...}
    """
    return get_services().relay.deliver_pending(batch_size=batch_size)
