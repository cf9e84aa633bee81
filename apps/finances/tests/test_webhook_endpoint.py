"""API tests for the payment gateway webhook, backed by the database."""

from __future__ import annotations

import json
from datetime import date, timedelta
from decimal import Decimal
from unittest import mock
from uuid import uuid4

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.domain.entities import BookingStatus, Room
from apps.finances.models import PaymentTransaction as PaymentTransactionModel
from apps.finances.models import ProcessedWebhookEvent as ProcessedWebhookEventModel
from apps.finances.signatures import sign_payload
from apps.loyalty.models import LoyaltyAccount as LoyaltyAccountModel
from apps.notifications.models import OutboundNotification as OutboundNotificationModel
from conftest import WEBHOOK_SECRET, FakeGateway, RecordingDispatcher
from shared.application.bootstrap import Settings, bootstrap
from shared.application.message_bus import MessageBus
from shared.application.uow import DjangoUnitOfWork
from shared.domain.actors import Actor, UserRole
from shared.domain.value_objects import Money


class PaymentWebhookAPITests(APITestCase):
    def setUp(self) -> None:
        self.gateway = FakeGateway()
        self.services = bootstrap(
            gateway=self.gateway,
            dispatcher=RecordingDispatcher(),
            settings=Settings(webhook_secret=WEBHOOK_SECRET),
            bus=MessageBus(),
        )
        patcher = mock.patch("apps.finances.views.get_services", return_value=self.services)
        patcher.start()
        self.addCleanup(patcher.stop)

        room = Room(name="Deluxe", hotel_name="Hotel Star", price_per_night=Money(Decimal("100.00")), capacity=2)
        with DjangoUnitOfWork() as uow:
            uow.rooms.add(room)

        self.guest = Actor(user_id=uuid4(), role=UserRole.GUEST)
        check_in = date.today() + timedelta(days=30)
        self.booking = self.services.state_machine.create(
            user_id=self.guest.user_id,
            room_id=room.id,
            check_in=check_in,
            check_out=check_in + timedelta(days=3),
            guests=1,
            guest_name="Ada Guest",
            guest_email="ada@example.com",
        )
        self.intent_id = self.services.reconciler.create_intent(self.booking.id, self.guest).external_intent_id
        self.url = reverse("payment-webhook")

    def _post(self, event_type: str, obj: dict, secret: str = WEBHOOK_SECRET):
        payload = json.dumps({"id": "evt_1", "type": event_type, "data": {"object": obj}}).encode()
        return self.client.post(
            self.url,
            data=payload,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=sign_payload(payload, secret),
        )

    def test_success_confirms_booking(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            response = self._post("payment_intent.succeeded", {"id": self.intent_id})

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data, {"status": "processed"})
        self.assertEqual(self.services.state_machine.get(self.booking.id).status, BookingStatus.CONFIRMED)
        transaction = PaymentTransactionModel.objects.get(external_intent_id=self.intent_id)
        self.assertEqual(transaction.status, PaymentTransactionModel.Status.SUCCEEDED)
        account = LoyaltyAccountModel.objects.get(user_id=self.guest.user_id)
        self.assertEqual(account.current_points, 300)
        self.assertEqual(
            set(OutboundNotificationModel.objects.values_list("kind", flat=True)),
            {"booking_confirmation", "payment_receipt"},
        )

    def test_redelivery_is_acknowledged_once(self) -> None:
        first = self._post("payment_intent.succeeded", {"id": self.intent_id})
        second = self._post("payment_intent.succeeded", {"id": self.intent_id})

        self.assertEqual(first.data["status"], "processed")
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data["status"], "duplicate")
        self.assertEqual(ProcessedWebhookEventModel.objects.filter(external_intent_id=self.intent_id).count(), 1)
        self.assertEqual(LoyaltyAccountModel.objects.get(user_id=self.guest.user_id).current_points, 300)

    def test_bad_signature_is_rejected(self) -> None:
        response = self._post("payment_intent.succeeded", {"id": self.intent_id}, secret="whsec_wrong")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_signature")
        self.assertEqual(self.services.state_machine.get(self.booking.id).status, BookingStatus.PENDING_PAYMENT)

    def test_missing_signature_is_rejected(self) -> None:
        response = self.client.post(self.url, data=b"{}", content_type="application/json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_intent_is_acknowledged(self) -> None:
        response = self._post("payment_intent.succeeded", {"id": "pi_missing"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {"status": "unmatched"})
