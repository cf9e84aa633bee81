"""Shared fixtures: the booking core wired to the in-memory store, a fixed
clock and a fake payment gateway."""

from __future__ import annotations

import itertools
import json
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from apps.bookings.domain.entities import Room
from apps.finances.gateway import GatewayIntent, GatewayRefund, PaymentGateway
from apps.finances.signatures import sign_payload
from apps.notifications.dispatcher import NotificationDispatcher
from shared.application.bootstrap import Settings, bootstrap
from shared.application.message_bus import MessageBus
from shared.domain.actors import Actor, UserRole
from shared.domain.value_objects import Money
from shared.infrastructure.memory import InMemoryStore

WEBHOOK_SECRET = "whsec_test_innkeep"
START = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Deterministic clock; tests move it explicitly.

    Setting `tick` makes every read advance the clock by that much.
    """

    def __init__(self, now: datetime = START):
        self.now = now
        self.tick = timedelta(0)

    def __call__(self) -> datetime:
        now = self.now
        self.now += self.tick
        return now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def set(self, now: datetime):
        self.now = now


class FakeGateway(PaymentGateway):
    """Records calls; intents stay 'requires_payment_method' until a test moves them."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.intents: dict[str, GatewayIntent] = {}
        self.by_key: dict[str, str] = {}
        self.refunds: list[dict] = []
        self.refund_keys: dict[str, GatewayRefund] = {}

    def create_intent(self, amount, metadata, idempotency_key):
        if idempotency_key in self.by_key:
            return self.intents[self.by_key[idempotency_key]]
        intent_id = f"pi_test_{next(self._ids)}"
        intent = GatewayIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            client_secret=f"{intent_id}_secret",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        self.by_key[idempotency_key] = intent_id
        return intent

    def retrieve_intent(self, intent_id):
        return self.intents[intent_id]

    def set_status(self, intent_id: str, status: str, last_error: str = ""):
        intent = self.intents[intent_id]
        self.intents[intent_id] = GatewayIntent(
            id=intent.id,
            status=status,
            amount=intent.amount,
            client_secret=intent.client_secret,
            metadata=intent.metadata,
            last_error=last_error,
        )

    def refund(self, intent_id, amount, idempotency_key, reason=""):
        if idempotency_key in self.refund_keys:
            return self.refund_keys[idempotency_key]
        refund = GatewayRefund(
            id=f"re_test_{next(self._ids)}",
            status="succeeded",
            amount=amount or self.intents[intent_id].amount,
            intent_id=intent_id,
        )
        self.refunds.append({"intent_id": intent_id, "amount": amount, "key": idempotency_key, "reason": reason})
        self.refund_keys[idempotency_key] = refund
        return refund


class RecordingDispatcher(NotificationDispatcher):

    def __init__(self):
        self.sent: list[tuple[str, str, dict]] = []
        self.fail_with: Exception | None = None

    def _record(self, kind, recipient, payload):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((kind, recipient, payload))

    def send_booking_confirmation(self, recipient, payload):
        self._record("booking_confirmation", recipient, payload)

    def send_payment_receipt(self, recipient, payload):
        self._record("payment_receipt", recipient, payload)

    def send_cancellation_confirmation(self, recipient, payload):
        self._record("cancellation_confirmation", recipient, payload)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def bus():
    return MessageBus()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def services(store, bus, gateway, dispatcher, clock):
    return bootstrap(
        uow_factory=lambda: store.unit_of_work(bus=bus),
        gateway=gateway,
        dispatcher=dispatcher,
        settings=Settings(webhook_secret=WEBHOOK_SECRET),
        bus=bus,
        clock=clock,
    )


@pytest.fixture
def guest():
    return Actor(user_id=uuid4(), role=UserRole.GUEST)


@pytest.fixture
def other_guest():
    return Actor(user_id=uuid4(), role=UserRole.GUEST)


@pytest.fixture
def staff():
    return Actor(user_id=uuid4(), role=UserRole.STAFF)


@pytest.fixture
def admin():
    return Actor(user_id=uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def make_room(store, bus):
    def _make_room(price="100.00", capacity=2, is_available=True, name="Deluxe"):
        room = Room(
            name=name,
            hotel_name="Hotel Star",
            price_per_night=Money(Decimal(price)),
            capacity=capacity,
            is_available=is_available,
        )
        with store.unit_of_work(bus=bus) as uow:
            uow.rooms.add(room)
        return room
    return _make_room


@pytest.fixture
def room(make_room):
    return make_room()


@pytest.fixture
def make_booking(services, room, guest):
    def _make_booking(check_in=date(2025, 6, 1), check_out=date(2025, 6, 4), actor=None, on_room=None):
        actor = actor or guest
        return services.state_machine.create(
            user_id=actor.user_id,
            room_id=(on_room or room).id,
            check_in=check_in,
            check_out=check_out,
            guests=1,
            guest_name="Ada Guest",
            guest_email="ada@example.com",
        )
    return _make_booking


@pytest.fixture
def send_webhook(services):
    """Sign and deliver a gateway event straight to the reconciler."""

    counter = itertools.count(1)

    def _send(event_type, obj, secret=WEBHOOK_SECRET, signature=None):
        payload = json.dumps({
            "id": f"evt_{next(counter)}",
            "type": event_type,
            "data": {"object": obj},
        }).encode()
        if signature is None:
            signature = sign_payload(payload, secret)
        return services.reconciler.handle_webhook(payload, signature)

    return _send


@pytest.fixture
def paid_booking(services, make_booking, guest, gateway, send_webhook):
    """A CONFIRMED $300 booking for 2025-06-01 -> 06-04 and its captured transaction."""

    booking = make_booking()
    transaction = services.reconciler.create_intent(booking.id, guest)
    gateway.set_status(transaction.external_intent_id, "succeeded")
    send_webhook("payment_intent.succeeded", {"id": transaction.external_intent_id, "object": "payment_intent"})
    return services.state_machine.get(booking.id), transaction.external_intent_id
