"""
Unit of Work Pattern

Manages database transactions. Transactional event handlers (the
notification outbox) write into the unit of work before it commits; domain
events are published only after a successful commit.

Every unit of work exposes the same repositories:
- rooms: read-only catalog rooms (row lock doubles as the per-room lock)
- bookings
- payments: payment transactions
- webhook_events: processed webhook deliveries
- loyalty_accounts / loyalty_transactions
- notifications: outbound notification outbox
"""

from abc import ABC, abstractmethod
from typing import Callable, List
import logging

from django.db import transaction

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(ABC):
    """Abstract Unit of Work pattern"""

    rooms = None
    bookings = None
    payments = None
    webhook_events = None
    loyalty_accounts = None
    loyalty_transactions = None
    notifications = None

    def __init__(self, bus=None):
        self._bus = bus
        self._events: List[DomainEvent] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
            return
        try:
            self.commit()
        except Exception:
            self.rollback()
            raise

    @abstractmethod
    def commit(self):
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""
        pass

    def collect_events(self, aggregate):
        """
        Collect events from aggregate root

        Extracts all domain events from the aggregate and
        clears them from the aggregate.
        """
        new_events = aggregate.events
        if new_events:
            self._events.extend(new_events)
            aggregate.clear_events()
            logger.debug(
                f"Collected {len(new_events)} events from "
                f"{aggregate.__class__.__name__} (ID: {aggregate.id})"
            )

    def _bus_or_default(self):
        if self._bus is None:
            from shared.application.message_bus import message_bus
            return message_bus
        return self._bus

    def _handle_events_in_transaction(self):
        """Let transactional handlers write their rows before the commit"""
        if self._events:
            self._bus_or_default().handle_in_transaction(list(self._events), self)

    def _take_events(self) -> List[DomainEvent]:
        events = self._events.copy()
        self._events.clear()
        return events

    def _publish_events(self, events: List[DomainEvent]):
        """
        Publish collected events to message bus

        Called after successful transaction commit. Handler failures are
        logged by the bus and never reach the committed operation.
        """
        bus = self._bus_or_default()

        logger.info(f"Publishing {len(events)} domain events after commit")

        try:
            bus.publish_events(events)
        except Exception as e:
            logger.error(f"Error publishing events: {e}", exc_info=True)


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    Django implementation of Unit of Work

    Manages Django database transactions and ensures domain events
    are published after successful commit.

    Usage:
        with DjangoUnitOfWork() as uow:
            room = uow.rooms.get(room_id, lock=True)   # SELECT ... FOR UPDATE
            booking = Booking.create(...)
            uow.bookings.add(booking)
            uow.collect_events(booking)
        # Transaction commits here, events are published after commit
    """

    def __init__(self, bus=None):
        super().__init__(bus)
        self._transaction = None

        from apps.bookings.repositories import DjangoBookingRepository, DjangoRoomRepository
        from apps.finances.repositories import (
            DjangoPaymentTransactionRepository,
            DjangoWebhookEventRepository,
        )
        from apps.loyalty.repositories import (
            DjangoLoyaltyAccountRepository,
            DjangoLoyaltyTransactionRepository,
        )
        from apps.notifications.repositories import DjangoNotificationRepository

        self.rooms = DjangoRoomRepository()
        self.bookings = DjangoBookingRepository()
        self.payments = DjangoPaymentTransactionRepository()
        self.webhook_events = DjangoWebhookEventRepository()
        self.loyalty_accounts = DjangoLoyaltyAccountRepository()
        self.loyalty_transactions = DjangoLoyaltyTransactionRepository()
        self.notifications = DjangoNotificationRepository()

    def __enter__(self):
        """Start database transaction"""
        self._transaction = transaction.atomic()
        self._transaction.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Complete or rollback transaction"""
        atomic, self._transaction = self._transaction, None
        if exc_type is not None:
            self.rollback()
            atomic.__exit__(exc_type, exc_val, exc_tb)
            return
        try:
            self.commit()
        except Exception as e:
            self.rollback()
            atomic.__exit__(type(e), e, e.__traceback__)
            raise
        atomic.__exit__(None, None, None)

    def commit(self):
        """
        Commit changes and publish events

        Transactional handlers write inside the atomic block. Events are
        published using Django's transaction.on_commit() so they're only
        sent after the database commit succeeds.
        """
        self._handle_events_in_transaction()
        events = self._take_events()
        logger.debug(f"Committing transaction with {len(events)} events")

        if events:
            transaction.on_commit(lambda: self._publish_events(events))

    def rollback(self):
        """Rollback changes and discard events"""
        discarded = self._take_events()
        logger.warning(f"Rolling back transaction, discarding {len(discarded)} events")


UnitOfWorkFactory = Callable[[], AbstractUnitOfWork]
