"""Notification dispatchers: how outbox rows reach the guest."""

from abc import ABC, abstractmethod
import logging

from django.conf import settings  # type: ignore
from django.core.mail import send_mail  # type: ignore

from apps.notifications.outbox import NotificationKind, OutboundNotification

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Delivery methods raise on failure; the relay records the error."""

    @abstractmethod
    def send_booking_confirmation(self, recipient: str, payload: dict):
        pass

    @abstractmethod
    def send_payment_receipt(self, recipient: str, payload: dict):
        pass

    @abstractmethod
    def send_cancellation_confirmation(self, recipient: str, payload: dict):
        pass

    def dispatch(self, notification: OutboundNotification):
        senders = {
            NotificationKind.BOOKING_CONFIRMATION: self.send_booking_confirmation,
            NotificationKind.PAYMENT_RECEIPT: self.send_payment_receipt,
            NotificationKind.CANCELLATION_CONFIRMATION: self.send_cancellation_confirmation,
        }
        senders[notification.kind](notification.recipient, notification.payload)


# ============================================================================
# EMAIL NOTIFICATIONS
# ============================================================================

class EmailNotificationDispatcher(NotificationDispatcher):

    def _send(self, recipient: str, subject: str, lines: list):
        send_mail(
            subject=subject,
            message="\n".join(lines),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient],
            fail_silently=False,
        )
        logger.info(f"Email sent successfully to {recipient}: {subject}")

    def send_booking_confirmation(self, recipient, payload):
        self._send(recipient, f"Booking {payload['booking_id']} confirmed", [
            f"Hello {payload.get('guest_name') or 'guest'},",
            "",
            "Your booking is confirmed.",
            f"Check-in: {payload['check_in']}",
            f"Check-out: {payload['check_out']}",
            f"Amount paid: {payload['amount']} {payload['currency']}",
        ])

    def send_payment_receipt(self, recipient, payload):
        self._send(recipient, f"Payment receipt for booking {payload['booking_id']}", [
            "We received your payment.",
            f"Amount: {payload['amount']} {payload['currency']}",
            f"Reference: {payload['external_intent_id']}",
        ])

    def send_cancellation_confirmation(self, recipient, payload):
        lines = [
            f"Hello {payload.get('guest_name') or 'guest'},",
            "",
            f"Your booking {payload['booking_id']} has been cancelled.",
        ]
        if payload.get('reason'):
            lines.append(f"Reason: {payload['reason']}")
        if payload.get('refund_amount'):
            lines.append(f"Refund: {payload['refund_amount']} {payload['currency']}")
        self._send(recipient, f"Booking {payload['booking_id']} cancelled", lines)
