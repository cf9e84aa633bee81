"""
In-memory persistence

A process-local store with the same semantics as the Django adapters:
- reads inside a unit of work see committed data plus the unit's own writes
- lock=True takes a per-row lock held until the unit of work ends
- writes are staged and applied atomically at commit, after the storage
  constraints (room/date exclusion, unique intent, one active payment per
  booking, unique webhook delivery, non-negative balance) are checked
- domain events are published after commit

Used by the test suite and by anyone embedding the core without a database.
"""

from collections import defaultdict
from itertools import count
import copy
import logging
import threading

from shared.application.uow import AbstractUnitOfWork
from shared.domain.base import Aggregate
from shared.domain.exceptions import ConflictError

from apps.bookings.domain.repositories import BookingRepository, RoomRepository
from apps.finances.domain.entities import ACTIVE_STATUSES as ACTIVE_PAYMENT_STATUSES
from apps.finances.domain.repositories import PaymentTransactionRepository, WebhookEventRepository
from apps.loyalty.domain.repositories import LoyaltyAccountRepository, LoyaltyTransactionRepository
from apps.notifications.outbox import NotificationRepository, NotificationStatus

logger = logging.getLogger(__name__)

ROOMS = 'rooms'
BOOKINGS = 'bookings'
PAYMENTS = 'payments'
WEBHOOK_EVENTS = 'webhook_events'
LOYALTY_ACCOUNTS = 'loyalty_accounts'
LOYALTY_TRANSACTIONS = 'loyalty_transactions'
NOTIFICATIONS = 'notifications'


class InMemoryStore:
    """Committed state shared by all in-memory units of work"""

    lock_timeout = 10

    def __init__(self):
        self.tables = defaultdict(dict)
        self.commit_lock = threading.Lock()
        self._sequence = count(1)
        self._row_locks = {}
        self._row_locks_guard = threading.Lock()

    def next_sequence(self) -> int:
        with self._row_locks_guard:
            return next(self._sequence)

    def row_lock(self, table: str, key) -> threading.Lock:
        with self._row_locks_guard:
            return self._row_locks.setdefault((table, key), threading.Lock())

    def unit_of_work(self, bus=None) -> 'InMemoryUnitOfWork':
        return InMemoryUnitOfWork(self, bus=bus)


def _stored_copy(record):
    record = copy.deepcopy(record)
    if isinstance(record, Aggregate):
        record.clear_events()
    return record


# ===== Storage constraints =====

def _check_booking_exclusion(merged, staged):
    bookings = merged[BOOKINGS]
    for booking in staged.get(BOOKINGS, {}).values():
        if not booking.is_active:
            continue
        for other in bookings.values():
            if (
                other.id != booking.id
                and other.room_id == booking.room_id
                and other.is_active
                and other.dates.overlaps_with(booking.dates)
            ):
                raise ConflictError(
                    "Room is already booked for overlapping dates",
                    room_id=booking.room_id,
                    conflicting_booking_id=other.id,
                )


def _check_payments(merged, staged):
    payments = merged[PAYMENTS]
    for transaction in staged.get(PAYMENTS, {}).values():
        for other in payments.values():
            if other.id == transaction.id:
                continue
            if other.external_intent_id == transaction.external_intent_id:
                raise ConflictError(
                    "Duplicate payment intent",
                    external_intent_id=transaction.external_intent_id,
                )
            if (
                other.booking_id == transaction.booking_id
                and transaction.status in ACTIVE_PAYMENT_STATUSES
                and other.status in ACTIVE_PAYMENT_STATUSES
            ):
                raise ConflictError(
                    "Booking already has an active payment",
                    booking_id=transaction.booking_id,
                )


def _check_loyalty_balance(merged, staged):
    for account in staged.get(LOYALTY_ACCOUNTS, {}).values():
        if account.current_points < 0:
            raise ConflictError("Loyalty balance cannot be negative", user_id=account.user_id)


CONSTRAINTS = (_check_booking_exclusion, _check_payments, _check_loyalty_balance)


class InMemoryUnitOfWork(AbstractUnitOfWork):

    def __init__(self, store: InMemoryStore, bus=None):
        super().__init__(bus)
        self.store = store
        self._staged = defaultdict(dict)
        self._inserted = set()
        self._held_locks = {}

        self.rooms = InMemoryRoomRepository(self)
        self.bookings = InMemoryBookingRepository(self)
        self.payments = InMemoryPaymentTransactionRepository(self)
        self.webhook_events = InMemoryWebhookEventRepository(self)
        self.loyalty_accounts = InMemoryLoyaltyAccountRepository(self)
        self.loyalty_transactions = InMemoryLoyaltyTransactionRepository(self)
        self.notifications = InMemoryNotificationRepository(self)

    # ----- used by repositories -----

    def lock(self, table: str, key):
        if (table, key) in self._held_locks:
            return
        row_lock = self.store.row_lock(table, key)
        if not row_lock.acquire(timeout=self.store.lock_timeout):
            raise ConflictError("Timed out waiting for a row lock", table=table, key=key)
        self._held_locks[(table, key)] = row_lock

    def read(self, table: str, key):
        if key in self._staged[table]:
            return copy.deepcopy(self._staged[table][key])
        record = self.store.tables[table].get(key)
        return copy.deepcopy(record) if record is not None else None

    def rows(self, table: str) -> list:
        merged = dict(self.store.tables[table])
        merged.update(self._staged[table])
        return [copy.deepcopy(record) for record in merged.values()]

    def insert(self, table: str, key, record):
        if (table, key) in self._inserted or self.read(table, key) is not None:
            raise ConflictError(f"Duplicate {table} record", key=key)
        self._inserted.add((table, key))
        self._staged[table][key] = _stored_copy(record)

    def write(self, table: str, key, record):
        self._staged[table][key] = _stored_copy(record)

    # ----- unit of work -----

    def commit(self):
        self._handle_events_in_transaction()
        try:
            with self.store.commit_lock:
                for table, key in self._inserted:
                    if key in self.store.tables[table]:
                        raise ConflictError(f"Duplicate {table} record", key=key)

                merged = defaultdict(dict)
                for table in set(self.store.tables) | set(self._staged):
                    merged[table] = dict(self.store.tables[table])
                    merged[table].update(self._staged[table])
                for check in CONSTRAINTS:
                    check(merged, self._staged)

                for table, rows in self._staged.items():
                    self.store.tables[table].update(rows)
        except ConflictError:
            self._take_events()
            raise
        finally:
            self._reset()

        events = self._take_events()
        if events:
            self._publish_events(events)

    def rollback(self):
        discarded = self._take_events()
        if discarded:
            logger.debug(f"Rolling back, discarding {len(discarded)} events")
        self._reset()

    def _reset(self):
        self._staged = defaultdict(dict)
        self._inserted = set()
        held, self._held_locks = self._held_locks, {}
        for row_lock in held.values():
            row_lock.release()


class _Repository:
    table = None

    def __init__(self, uow: InMemoryUnitOfWork):
        self.uow = uow

    def _get(self, key, lock=False):
        if key is None:
            return None
        if lock:
            self.uow.lock(self.table, key)
        return self.uow.read(self.table, key)


class InMemoryRoomRepository(_Repository, RoomRepository):
    table = ROOMS

    def get(self, room_id, lock=False):
        return self._get(room_id, lock)

    def add(self, room):
        self.uow.insert(self.table, room.id, room)


class InMemoryBookingRepository(_Repository, BookingRepository):
    table = BOOKINGS

    def get(self, booking_id, lock=False):
        return self._get(booking_id, lock)

    def add(self, booking):
        self.uow.insert(self.table, booking.id, booking)

    def save(self, booking):
        self.uow.write(self.table, booking.id, booking)

    def list_active_for_room(self, room_id):
        return [b for b in self.uow.rows(self.table) if b.room_id == room_id and b.is_active]


class InMemoryPaymentTransactionRepository(_Repository, PaymentTransactionRepository):
    table = PAYMENTS

    def get(self, transaction_id, lock=False):
        return self._get(transaction_id, lock)

    def get_by_intent(self, external_intent_id, lock=False):
        for transaction in self.uow.rows(self.table):
            if transaction.external_intent_id == external_intent_id:
                return self._get(transaction.id, lock)
        return None

    def find_active_for_booking(self, booking_id):
        for transaction in self.uow.rows(self.table):
            if transaction.booking_id == booking_id and transaction.is_active:
                return transaction
        return None

    def list_for_booking(self, booking_id):
        rows = [t for t in self.uow.rows(self.table) if t.booking_id == booking_id]
        return sorted(rows, key=lambda t: t.created_at)

    def list_for_user(self, user_id):
        rows = [t for t in self.uow.rows(self.table) if t.user_id == user_id]
        return sorted(rows, key=lambda t: t.created_at, reverse=True)

    def list_pending_created_before(self, cutoff):
        from apps.finances.domain.entities import TransactionStatus

        rows = [
            t for t in self.uow.rows(self.table)
            if t.status == TransactionStatus.PENDING and t.created_at < cutoff
        ]
        return sorted(rows, key=lambda t: t.created_at)

    def add(self, transaction):
        active = self.find_active_for_booking(transaction.booking_id)
        if active is not None and transaction.is_active:
            raise ConflictError("Booking already has an active payment", booking_id=transaction.booking_id)
        self.uow.insert(self.table, transaction.id, transaction)

    def save(self, transaction):
        self.uow.write(self.table, transaction.id, transaction)


class InMemoryWebhookEventRepository(_Repository, WebhookEventRepository):
    table = WEBHOOK_EVENTS

    def exists(self, external_intent_id, event_type):
        return self.uow.read(self.table, (external_intent_id, event_type)) is not None

    def add(self, event):
        self.uow.insert(self.table, (event.external_intent_id, event.event_type), event)


class InMemoryLoyaltyAccountRepository(_Repository, LoyaltyAccountRepository):
    """Keyed by user id, which makes the one-account-per-user rule the primary key"""
    table = LOYALTY_ACCOUNTS

    def get_by_user(self, user_id, lock=False):
        return self._get(user_id, lock)

    def add(self, account):
        self.uow.insert(self.table, account.user_id, account)

    def save(self, account):
        self.uow.write(self.table, account.user_id, account)

    def list_all(self):
        return self.uow.rows(self.table)


class InMemoryLoyaltyTransactionRepository(_Repository, LoyaltyTransactionRepository):
    table = LOYALTY_TRANSACTIONS

    def add(self, entry):
        # sequence number keeps a stable order between entries sharing a timestamp
        entry = copy.copy(entry)
        entry.sequence = self.uow.store.next_sequence()
        self.uow.insert(self.table, entry.id, entry)

    def _for_account(self, account_id):
        rows = [e for e in self.uow.rows(self.table) if e.account_id == account_id]
        return sorted(rows, key=lambda e: (e.created_at, e.sequence), reverse=True)

    def list_for_account(self, account_id, offset=0, limit=None):
        rows = self._for_account(account_id)[offset:]
        return rows if limit is None else rows[:limit]

    def count_for_account(self, account_id):
        return len(self._for_account(account_id))

    def sum_points(self, account_id):
        return sum(e.points for e in self._for_account(account_id))

    def find_for_booking(self, account_id, booking_id, type_):
        for entry in self._for_account(account_id):
            if entry.booking_id == booking_id and entry.type == type_:
                return entry
        return None


class InMemoryNotificationRepository(_Repository, NotificationRepository):
    table = NOTIFICATIONS

    def add(self, notification):
        notification = copy.copy(notification)
        notification.sequence = self.uow.store.next_sequence()
        self.uow.insert(self.table, notification.id, notification)

    def save(self, notification):
        current = self.uow.read(self.table, notification.id)
        notification = copy.copy(notification)
        notification.sequence = getattr(current, 'sequence', 0)
        self.uow.write(self.table, notification.id, notification)

    def get(self, notification_id, lock=False):
        return self._get(notification_id, lock)

    def list_pending(self, limit=100):
        rows = [n for n in self.uow.rows(self.table) if n.status == NotificationStatus.PENDING]
        return sorted(rows, key=lambda n: (n.created_at, n.sequence))[:limit]

    def list_for_booking(self, booking_id):
        rows = [n for n in self.uow.rows(self.table) if n.booking_id == booking_id]
        return sorted(rows, key=lambda n: (n.created_at, n.sequence))
