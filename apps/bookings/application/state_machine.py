"""
Booking State Machine

Orchestrates booking status transitions together with availability,
loyalty and refunds. Each operation is one unit of work; the wall clock is
read once per operation.

    create ──> PENDING_PAYMENT ──confirm_payment──> CONFIRMED ──check_in──> CHECKED_IN ──check_out──> CHECKED_OUT
                    │                                   │
                    └──────────cancel──> CANCELLED <────┤
                                                        └──mark_no_show──> NO_SHOW
"""

from datetime import date
from typing import Callable
from uuid import UUID
import logging

from apps.bookings.application.lifecycle import (
    authorize_cancellation,
    confirm_booking_payment,
    load_booking,
)
from apps.bookings.domain.availability import ensure_available
from apps.bookings.domain.entities import Booking, BookingStatus
from apps.bookings.domain.policies import BookingPolicy
from apps.bookings.domain.ports import LoyaltyAwarder, LoyaltyRedeemer, Redemption, RefundIssuer
from shared.domain.actors import Actor
from shared.domain.base import utcnow
from shared.domain.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from shared.domain.value_objects import DateRange, Money

logger = logging.getLogger(__name__)


class BookingStateMachine:

    def __init__(
        self,
        uow_factory: Callable,
        loyalty_awarder: LoyaltyAwarder,
        loyalty_redeemer: LoyaltyRedeemer,
        refund_issuer: RefundIssuer,
        policy: BookingPolicy | None = None,
        clock=utcnow,
    ):
        self.uow_factory = uow_factory
        self.loyalty_awarder = loyalty_awarder
        self.loyalty_redeemer = loyalty_redeemer
        self.refund_issuer = refund_issuer
        self.policy = policy or BookingPolicy()
        self.clock = clock

    def get(self, booking_id: UUID) -> Booking:
        with self.uow_factory() as uow:
            return load_booking(uow, booking_id)

    def create(
        self,
        user_id: UUID,
        room_id: UUID,
        check_in: date,
        check_out: date,
        guests: int,
        guest_name: str = '',
        guest_email: str = '',
        special_requests: str = '',
    ) -> Booking:
        """
        Create a booking in PENDING_PAYMENT

        The room row is locked before the overlap check, so two concurrent
        requests for intersecting dates cannot both pass it.
        """
        try:
            dates = DateRange(check_in, check_out)
        except ValueError as e:
            raise ValidationError(str(e), check_in=check_in, check_out=check_out)

        now = self.clock()
        logger.info(
            f"Creating booking for room {room_id}, user {user_id}, "
            f"dates {check_in} - {check_out}"
        )

        with self.uow_factory() as uow:
            room = uow.rooms.get(room_id, lock=True)
            if room is None:
                raise NotFoundError(f"Room {room_id} not found", room_id=room_id)

            booking = Booking.create(
                room=room,
                user_id=user_id,
                dates=dates,
                guests=guests,
                now=now,
                guest_name=guest_name,
                guest_email=guest_email,
                special_requests=special_requests,
            )
            ensure_available(uow, room.id, dates)

            uow.bookings.add(booking)
            uow.collect_events(booking)

        logger.info(f"Booking {booking.id} created for {booking.total_price}")
        return booking

    def confirm_payment(self, booking_id: UUID, transaction_id: UUID) -> Booking:
        """
        PENDING_PAYMENT -> CONFIRMED for a SUCCEEDED transaction

        A repeated call with the same transaction is a no-op.
        """
        now = self.clock()
        with self.uow_factory() as uow:
            transaction = uow.payments.get(transaction_id, lock=True)
            if transaction is None:
                raise NotFoundError(f"Payment transaction {transaction_id} not found")
            booking = load_booking(uow, booking_id, lock=True)
            confirm_booking_payment(uow, booking, transaction, self.loyalty_awarder, now)
        return booking

    def cancel(
        self,
        booking_id: UUID,
        actor: Actor,
        reason: str = '',
        refund_amount: Money | None = None,
    ) -> Booking:
        """
        Cancel a booking

        Unpaid bookings are cancelled directly. Paid bookings are refunded
        first; the booking only becomes CANCELLED once the gateway accepted
        the refund.
        """
        now = self.clock()
        with self.uow_factory() as uow:
            booking = load_booking(uow, booking_id, lock=True)
            authorize_cancellation(booking, actor, now, self.policy)

            if not booking.is_paid:
                if refund_amount is not None:
                    raise ValidationError("Booking has no captured payment to refund", booking_id=booking_id)
                booking.cancel(reason, now)
                uow.bookings.save(booking)
                uow.collect_events(booking)
                logger.info(f"Booking {booking_id} cancelled by {actor.user_id} before payment")
                return booking

            transaction_id = booking.payment_transaction_id

        # gateway call runs after the booking lock is released
        self.refund_issuer.refund(transaction_id, actor, amount=refund_amount, reason=reason, now=now)
        return self.get(booking_id)

    def _staff_transition(self, booking_id: UUID, actor: Actor, transition: str) -> Booking:
        if not actor.is_staff:
            raise ForbiddenError("Only staff can check guests in or out", user_id=actor.user_id)

        now = self.clock()
        with self.uow_factory() as uow:
            booking = load_booking(uow, booking_id, lock=True)
            getattr(booking, transition)(now)
            uow.bookings.save(booking)
            uow.collect_events(booking)

        logger.info(f"Booking {booking_id}: {transition} by {actor.user_id}, now {booking.status.value}")
        return booking

    def check_in(self, booking_id: UUID, actor: Actor) -> Booking:
        """CONFIRMED -> CHECKED_IN (staff only)"""
        return self._staff_transition(booking_id, actor, 'check_in')

    def check_out(self, booking_id: UUID, actor: Actor) -> Booking:
        """CHECKED_IN -> CHECKED_OUT (staff only)"""
        return self._staff_transition(booking_id, actor, 'check_out')

    def mark_no_show(self, booking_id: UUID, actor: Actor) -> Booking:
        """CONFIRMED -> NO_SHOW (admin only)"""
        if not actor.is_admin:
            raise ForbiddenError("Only admins can mark a booking as no-show", user_id=actor.user_id)
        return self._staff_transition(booking_id, actor, 'mark_no_show')

    def apply_points_redemption(self, booking_id: UUID, actor: Actor, points: int) -> Redemption:
        """
        Spend loyalty points on a booking before paying

        Owner only, once per booking, and only until a payment intent has
        been created. The ledger entry and the booking discount commit
        together.
        """
        now = self.clock()
        with self.uow_factory() as uow:
            booking = load_booking(uow, booking_id, lock=True)
            if not actor.owns(booking.user_id):
                raise ForbiddenError("Only the booking owner can redeem points on it", booking_id=booking_id)
            if booking.status != BookingStatus.PENDING_PAYMENT:
                raise ConflictError(
                    f"Points can only be redeemed while the booking is {BookingStatus.PENDING_PAYMENT.value}",
                    booking_id=booking_id,
                )
            if booking.points_redeemed:
                raise ConflictError("Points were already redeemed for this booking", booking_id=booking_id)
            if uow.payments.list_for_booking(booking.id):
                raise ConflictError("Payment has already been started for this booking", booking_id=booking_id)

            redemption = self.loyalty_redeemer.redeem_points(
                booking.user_id, booking.id, points, booking.total_price, uow=uow
            )
            booking.apply_points_discount(redemption.points, redemption.discount, now)
            uow.bookings.save(booking)
            uow.collect_events(booking)

        logger.info(
            f"Booking {booking_id}: {redemption.points} points redeemed, "
            f"payable now {booking.payable_amount}"
        )
        return redemption
