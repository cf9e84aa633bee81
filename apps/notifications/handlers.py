"""
Domain event handlers feeding the notification outbox

Run inside the originating unit of work, just before it commits, so an
outbox row exists exactly when the booking or payment change does. Nothing
is sent from here; the relay delivers after the commit.
"""

import logging

from apps.bookings.domain.events import BookingCancelled, BookingConfirmed
from apps.finances.domain.events import PaymentSucceeded
from apps.notifications.outbox import NotificationKind, OutboundNotification
from shared.domain.base import utcnow

logger = logging.getLogger(__name__)


class OutboxEventHandlers:

    def __init__(self, clock=utcnow):
        self.clock = clock

    def register(self, bus):
        bus.register_transactional_handler(BookingConfirmed, self.on_booking_confirmed)
        bus.register_transactional_handler(PaymentSucceeded, self.on_payment_succeeded)
        bus.register_transactional_handler(BookingCancelled, self.on_booking_cancelled)

    def _enqueue(self, uow, kind: NotificationKind, booking_id, recipient: str, payload: dict):
        if not recipient:
            logger.warning(f"No recipient for {kind.value} of booking {booking_id}, not queued")
            return None

        now = self.clock()
        notification = OutboundNotification(
            kind=kind,
            booking_id=booking_id,
            recipient=recipient,
            payload=payload,
            created_at=now,
            updated_at=now,
        )
        uow.notifications.add(notification)
        logger.info(f"Queued {kind.value} for booking {booking_id}")
        return notification

    def on_booking_confirmed(self, event: BookingConfirmed, uow):
        self._enqueue(uow, NotificationKind.BOOKING_CONFIRMATION, event.booking_id, event.guest_email, {
            'booking_id': str(event.booking_id),
            'guest_name': event.guest_name,
            'check_in': event.dates.start_date.isoformat(),
            'check_out': event.dates.end_date.isoformat(),
            'amount': str(event.amount_paid.amount),
            'currency': event.amount_paid.currency,
        })

    def on_payment_succeeded(self, event: PaymentSucceeded, uow):
        booking = uow.bookings.get(event.booking_id)
        recipient = booking.guest_email if booking else ''

        self._enqueue(uow, NotificationKind.PAYMENT_RECEIPT, event.booking_id, recipient, {
            'booking_id': str(event.booking_id),
            'transaction_id': str(event.transaction_id),
            'external_intent_id': event.external_intent_id,
            'amount': str(event.amount.amount),
            'currency': event.amount.currency,
        })

    def on_booking_cancelled(self, event: BookingCancelled, uow):
        refund = event.refund_amount
        self._enqueue(uow, NotificationKind.CANCELLATION_CONFIRMATION, event.booking_id, event.guest_email, {
            'booking_id': str(event.booking_id),
            'guest_name': event.guest_name,
            'reason': event.reason,
            'refund_amount': str(refund.amount) if refund else None,
            'currency': refund.currency if refund else None,
        })
