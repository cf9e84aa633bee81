"""Django ORM implementation of the booking repositories."""

from apps.bookings.domain.entities import Booking, BookingPaymentStatus, BookingStatus, Room
from apps.bookings.domain.repositories import BookingRepository, RoomRepository
from apps.bookings.models import Booking as BookingModel
from apps.bookings.models import Room as RoomModel
from shared.domain.value_objects import DateRange, Money
from shared.infrastructure.persistence import conflict_on_integrity_error, lock_queryset_if_possible


def _money(amount, currency):
    return Money(amount, currency) if amount is not None else None


def room_to_entity(obj: RoomModel) -> Room:
    return Room(
        id=obj.id,
        name=obj.name,
        hotel_name=obj.hotel_name,
        price_per_night=Money(obj.price_per_night, obj.currency),
        capacity=obj.capacity,
        is_available=obj.is_available,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def booking_to_entity(obj: BookingModel) -> Booking:
    currency = obj.currency
    return Booking(
        id=obj.id,
        user_id=obj.user_id,
        room_id=obj.room_id,
        dates=DateRange(obj.check_in, obj.check_out),
        guests=obj.guests,
        nightly_rate=Money(obj.nightly_rate, currency),
        total_price=Money(obj.total_price, currency),
        discount_from_points=Money(obj.discount_from_points, currency),
        points_earned=obj.points_earned,
        points_redeemed=obj.points_redeemed,
        guest_name=obj.guest_name,
        guest_email=obj.guest_email,
        special_requests=obj.special_requests,
        status=BookingStatus(obj.status),
        payment_status=BookingPaymentStatus(obj.payment_status),
        payment_transaction_id=obj.payment_transaction_id,
        is_paid=obj.is_paid,
        paid_at=obj.paid_at,
        cancellation_reason=obj.cancellation_reason,
        refund_amount=_money(obj.refund_amount, currency),
        confirmed_at=obj.confirmed_at,
        checked_in_at=obj.checked_in_at,
        checked_out_at=obj.checked_out_at,
        cancelled_at=obj.cancelled_at,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def _booking_fields(booking: Booking) -> dict:
    return {
        'user_id': booking.user_id,
        'room_id': booking.room_id,
        'check_in': booking.dates.start_date,
        'check_out': booking.dates.end_date,
        'guests': booking.guests,
        'currency': booking.total_price.currency,
        'nightly_rate': booking.nightly_rate.amount,
        'total_price': booking.total_price.amount,
        'discount_from_points': booking.discount_from_points.amount,
        'points_earned': booking.points_earned,
        'points_redeemed': booking.points_redeemed,
        'guest_name': booking.guest_name,
        'guest_email': booking.guest_email,
        'special_requests': booking.special_requests,
        'status': booking.status.value,
        'payment_status': booking.payment_status.value,
        'payment_transaction_id': booking.payment_transaction_id,
        'is_paid': booking.is_paid,
        'paid_at': booking.paid_at,
        'cancellation_reason': booking.cancellation_reason,
        'refund_amount': booking.refund_amount.amount if booking.refund_amount else None,
        'confirmed_at': booking.confirmed_at,
        'checked_in_at': booking.checked_in_at,
        'checked_out_at': booking.checked_out_at,
        'cancelled_at': booking.cancelled_at,
        'created_at': booking.created_at,
        'updated_at': booking.updated_at,
    }


class DjangoRoomRepository(RoomRepository):

    def get(self, room_id, lock=False):
        queryset = RoomModel.objects.filter(pk=room_id)
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        obj = queryset.first()
        return room_to_entity(obj) if obj else None

    def add(self, room):
        with conflict_on_integrity_error("Room already exists", room_id=str(room.id)):
            RoomModel.objects.create(
                id=room.id,
                name=room.name,
                hotel_name=room.hotel_name,
                price_per_night=room.price_per_night.amount,
                currency=room.price_per_night.currency,
                capacity=room.capacity,
                is_available=room.is_available,
                created_at=room.created_at,
                updated_at=room.updated_at,
            )


class DjangoBookingRepository(BookingRepository):

    def get(self, booking_id, lock=False):
        queryset = BookingModel.objects.filter(pk=booking_id)
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        obj = queryset.first()
        return booking_to_entity(obj) if obj else None

    def add(self, booking):
        with conflict_on_integrity_error("Room is already booked for these dates", room_id=str(booking.room_id)):
            BookingModel.objects.create(id=booking.id, **_booking_fields(booking))

    def save(self, booking):
        with conflict_on_integrity_error("Booking update conflicts with another booking", booking_id=str(booking.id)):
            BookingModel.objects.filter(pk=booking.id).update(**_booking_fields(booking))

    def list_active_for_room(self, room_id):
        queryset = (
            BookingModel.objects
            .filter(room_id=room_id)
            .exclude(status__in=BookingModel.INACTIVE_STATUSES)
            .order_by('check_in')
        )
        return [booking_to_entity(obj) for obj in queryset]
