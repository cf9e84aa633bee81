"""Celery tasks for the loyalty ledger."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from shared.application.bootstrap import get_services

logger = logging.getLogger(__name__)


@shared_task(name="loyalty.audit_ledgers")
def audit_ledgers() -> dict[str, int]:
    """Nightly check that every cached balance equals its ledger sum."""

    mismatches = get_services().ledger.find_mismatches()
    for mismatch in mismatches:
        logger.error(
            f"Loyalty balance mismatch for user {mismatch['user_id']}: "
            f"cached {mismatch['current_points']}, ledger {mismatch['ledger_sum']}"
        )
    return {"mismatches": len(mismatches)}
