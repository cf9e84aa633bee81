"""
Booking lifecycle steps shared by the state machine and the payment
reconciler. Each runs inside the caller's unit of work.
"""

from datetime import datetime
from uuid import UUID
import logging

from apps.bookings.domain.entities import Booking
from apps.bookings.domain.policies import BookingPolicy
from apps.bookings.domain.ports import LoyaltyAwarder
from apps.finances.domain.entities import TransactionStatus
from shared.domain.actors import Actor
from shared.domain.exceptions import ConflictError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


def load_booking(uow, booking_id: UUID, lock: bool = False) -> Booking:
    booking = uow.bookings.get(booking_id, lock=lock)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found", booking_id=booking_id)
    return booking


def ensure_owner_or_admin(booking: Booking, actor: Actor):
    if not (actor.is_admin or actor.owns(booking.user_id)):
        raise ForbiddenError("Only the booking owner or an admin can do this", booking_id=booking.id)


def authorize_cancellation(booking: Booking, actor: Actor, now: datetime, policy: BookingPolicy):
    """
    Owner or admin; the status must allow cancelling; non-admins must cancel
    before the window preceding check-in opens.
    """
    ensure_owner_or_admin(booking, actor)
    booking.ensure_can_cancel()
    if not actor.is_admin and now >= policy.cancellation_deadline(booking):
        raise ForbiddenError(
            f"Bookings can only be cancelled at least "
            f"{policy.cancellation_window_hours} hours before check-in",
            booking_id=booking.id,
            deadline=policy.cancellation_deadline(booking).isoformat(),
        )


def confirm_booking_payment(uow, booking: Booking, transaction, loyalty: LoyaltyAwarder,
                            now: datetime) -> bool:
    """
    PENDING_PAYMENT -> CONFIRMED for a captured transaction, then award points
    on the amount actually paid

    Returns False if the booking was already confirmed by this transaction.
    """
    if transaction.booking_id != booking.id:
        raise ConflictError(
            "Payment transaction does not belong to this booking",
            booking_id=booking.id,
            transaction_id=transaction.id,
        )
    if transaction.status != TransactionStatus.SUCCEEDED:
        raise ConflictError(
            f"Payment transaction is {transaction.status.value}, not succeeded",
            transaction_id=transaction.id,
        )

    if not booking.confirm_payment(transaction.id, now):
        logger.info(f"Booking {booking.id} already confirmed by transaction {transaction.id}")
        return False

    entry = loyalty.award_points(booking.user_id, booking.id, booking.payable_amount, uow=uow)
    booking.record_points_earned(entry.points, now)

    uow.bookings.save(booking)
    uow.collect_events(booking)
    logger.info(
        f"Booking {booking.id} confirmed by transaction {transaction.id}, "
        f"{entry.points} points earned"
    )
    return True
