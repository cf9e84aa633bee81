"""
Outbox relay

Delivers PENDING outbox rows through the dispatcher. A failed delivery
increments attempts and keeps the error on the row; after max_attempts the
row is marked FAILED and left for an operator.
"""

from typing import Callable
import logging

from apps.notifications.dispatcher import NotificationDispatcher
from apps.notifications.outbox import NotificationStatus
from shared.domain.base import utcnow

logger = logging.getLogger(__name__)


class NotificationRelay:

    def __init__(self, uow_factory: Callable, dispatcher: NotificationDispatcher,
                 max_attempts: int = 5, clock=utcnow):
        self.uow_factory = uow_factory
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts
        self.clock = clock

    def deliver_pending(self, batch_size: int = 50) -> dict:
        with self.uow_factory() as uow:
            pending = uow.notifications.list_pending(limit=batch_size)

        summary = {'sent': 0, 'failed': 0, 'retrying': 0}
        for queued in pending:
            with self.uow_factory() as uow:
                notification = uow.notifications.get(queued.id, lock=True)
                if notification is None or notification.status != NotificationStatus.PENDING:
                    continue

                try:
                    self.dispatcher.dispatch(notification)
                except Exception as e:
                    notification.mark_attempt_failed(str(e), self.max_attempts, self.clock())
                    if notification.status == NotificationStatus.FAILED:
                        summary['failed'] += 1
                        logger.error(
                            f"Giving up on {notification.kind.value} {notification.id} "
                            f"after {notification.attempts} attempts: {e}"
                        )
                    else:
                        summary['retrying'] += 1
                        logger.warning(f"Delivery of {notification.id} failed, will retry: {e}")
                else:
                    notification.mark_sent(self.clock())
                    summary['sent'] += 1

                uow.notifications.save(notification)

        if pending:
            logger.info(f"Processed notification outbox: {summary}")
        return summary
