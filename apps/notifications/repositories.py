"""Django ORM implementation of the notification outbox."""

from apps.notifications.models import OutboundNotification as OutboundNotificationModel
from apps.notifications.outbox import (
    NotificationKind,
    NotificationRepository,
    NotificationStatus,
    OutboundNotification,
)
from shared.infrastructure.persistence import lock_queryset_if_possible


def notification_to_entity(obj: OutboundNotificationModel) -> OutboundNotification:
    return OutboundNotification(
        id=obj.id,
        kind=NotificationKind(obj.kind),
        booking_id=obj.booking_id,
        recipient=obj.recipient,
        payload=obj.payload,
        status=NotificationStatus(obj.status),
        attempts=obj.attempts,
        last_error=obj.last_error,
        sent_at=obj.sent_at,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def _notification_fields(notification: OutboundNotification) -> dict:
    return {
        'kind': notification.kind.value,
        'booking_id': notification.booking_id,
        'recipient': notification.recipient,
        'payload': notification.payload,
        'status': notification.status.value,
        'attempts': notification.attempts,
        'last_error': notification.last_error,
        'sent_at': notification.sent_at,
        'created_at': notification.created_at,
        'updated_at': notification.updated_at,
    }


class DjangoNotificationRepository(NotificationRepository):

    def add(self, notification):
        OutboundNotificationModel.objects.create(id=notification.id, **_notification_fields(notification))

    def save(self, notification):
        OutboundNotificationModel.objects.filter(pk=notification.id).update(**_notification_fields(notification))

    def get(self, notification_id, lock=False):
        queryset = OutboundNotificationModel.objects.filter(pk=notification_id)
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        obj = queryset.first()
        return notification_to_entity(obj) if obj else None

    def list_pending(self, limit=100):
        queryset = OutboundNotificationModel.objects.filter(
            status=OutboundNotificationModel.Status.PENDING,
        ).order_by('created_at')[:limit]
        return [notification_to_entity(obj) for obj in queryset]

    def list_for_booking(self, booking_id):
        queryset = OutboundNotificationModel.objects.filter(booking_id=booking_id).order_by('created_at')
        return [notification_to_entity(obj) for obj in queryset]
