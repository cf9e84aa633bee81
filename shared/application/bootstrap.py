"""
Bootstrap

Composition root: builds the services and registers command and event
handlers on a message bus.

    services = bootstrap()                          # Django units of work, Stripe
    services = bootstrap(uow_factory=store.unit_of_work, gateway=fake)   # tests

Django callers (views, Celery tasks) use get_services(), which builds the
default container once per process from Django settings.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Callable
import logging
import threading

from apps.bookings.application import command_handlers as booking_commands
from apps.bookings.application.state_machine import BookingStateMachine
from apps.bookings.domain.policies import BookingPolicy, parse_check_in_time
from apps.finances.application import command_handlers as payment_commands
from apps.finances.application.reconciler import PaymentReconciler
from apps.finances.domain.refunds import RefundPolicy
from apps.finances.gateway import PaymentGateway
from apps.loyalty.application import command_handlers as loyalty_commands
from apps.loyalty.application.ledger import LoyaltyLedger
from apps.loyalty.domain.tiers import LoyaltyConfig
from apps.notifications.dispatcher import NotificationDispatcher
from apps.notifications.handlers import OutboxEventHandlers
from apps.notifications.relay import NotificationRelay
from shared.application.message_bus import MessageBus
from shared.domain.base import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    """Plain values the services are configured with"""
    booking_policy: BookingPolicy = field(default_factory=BookingPolicy)
    late_refund_percent: Decimal = Decimal('50')
    loyalty: LoyaltyConfig = field(default_factory=LoyaltyConfig)
    currency: str = 'USD'
    webhook_secret: str = ''
    webhook_tolerance: int = 300
    reconcile_after: timedelta = timedelta(minutes=15)
    notification_max_attempts: int = 5

    @classmethod
    def from_django(cls) -> 'Settings':
        from django.conf import settings

        return cls(
            booking_policy=BookingPolicy(
                cancellation_window_hours=int(settings.BOOKING_CANCELLATION_WINDOW_HOURS),
                check_in_time=parse_check_in_time(settings.BOOKING_CHECK_IN_TIME),
            ),
            late_refund_percent=Decimal(str(settings.LATE_CANCELLATION_REFUND_PERCENT)),
            loyalty=LoyaltyConfig(
                points_per_dollar=int(settings.LOYALTY_POINTS_PER_DOLLAR),
                points_to_dollar_ratio=int(settings.LOYALTY_POINTS_TO_DOLLAR_RATIO),
                max_redemption_percentage=Decimal(str(settings.LOYALTY_MAX_REDEMPTION_PERCENTAGE)),
            ),
            currency=settings.PAYMENT_CURRENCY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            webhook_tolerance=int(settings.PAYMENT_WEBHOOK_TOLERANCE),
            reconcile_after=timedelta(minutes=int(settings.PAYMENT_RECONCILE_AFTER_MINUTES)),
            notification_max_attempts=int(settings.NOTIFICATION_MAX_ATTEMPTS),
        )


@dataclass
class Services:
    bus: MessageBus
    uow_factory: Callable
    ledger: LoyaltyLedger
    reconciler: PaymentReconciler
    state_machine: BookingStateMachine
    relay: NotificationRelay
    outbox: OutboxEventHandlers
    settings: Settings


def bootstrap(
    uow_factory: Callable | None = None,
    gateway: PaymentGateway | None = None,
    dispatcher: NotificationDispatcher | None = None,
    settings: Settings | None = None,
    bus: MessageBus | None = None,
    clock=utcnow,
) -> Services:
    """Wire the booking core; anything not given comes from Django"""
    from shared.application import message_bus as message_bus_module

    bus = bus or message_bus_module.message_bus
    settings = settings or Settings.from_django()

    if uow_factory is None:
        from shared.application.uow import DjangoUnitOfWork

        def uow_factory():
            return DjangoUnitOfWork(bus=bus)

    if gateway is None:
        from django.conf import settings as django_settings
        from apps.finances.gateway import StripeGateway

        gateway = StripeGateway(
            django_settings.STRIPE_SECRET_KEY,
            api_base=django_settings.STRIPE_API_BASE,
            timeout=django_settings.PAYMENT_GATEWAY_TIMEOUT,
        )

    if dispatcher is None:
        from apps.notifications.dispatcher import EmailNotificationDispatcher
        dispatcher = EmailNotificationDispatcher()

    ledger = LoyaltyLedger(uow_factory, config=settings.loyalty, clock=clock)
    reconciler = PaymentReconciler(
        uow_factory,
        gateway,
        ledger,
        webhook_secret=settings.webhook_secret,
        refund_policy=RefundPolicy(
            booking_policy=settings.booking_policy,
            late_refund_percent=settings.late_refund_percent,
        ),
        webhook_tolerance=settings.webhook_tolerance,
        clock=clock,
    )
    state_machine = BookingStateMachine(
        uow_factory,
        loyalty_awarder=ledger,
        loyalty_redeemer=ledger,
        refund_issuer=reconciler,
        policy=settings.booking_policy,
        clock=clock,
    )
    relay = NotificationRelay(uow_factory, dispatcher, settings.notification_max_attempts, clock=clock)
    outbox = OutboxEventHandlers(clock=clock)

    _register_command_handlers(bus, state_machine, reconciler, ledger)
    outbox.register(bus)

    logger.debug("Booking core bootstrapped")
    return Services(
        bus=bus,
        uow_factory=uow_factory,
        ledger=ledger,
        reconciler=reconciler,
        state_machine=state_machine,
        relay=relay,
        outbox=outbox,
        settings=settings,
    )


def _register_command_handlers(bus, state_machine, reconciler, ledger):
    handlers = {
        booking_commands.CreateBooking: booking_commands.CreateBookingHandler(state_machine),
        booking_commands.ConfirmPayment: booking_commands.ConfirmPaymentHandler(state_machine),
        booking_commands.CancelBooking: booking_commands.CancelBookingHandler(state_machine),
        booking_commands.ApplyPointsRedemption: booking_commands.ApplyPointsRedemptionHandler(state_machine),
        booking_commands.CheckIn: booking_commands.CheckInHandler(state_machine),
        booking_commands.CheckOut: booking_commands.CheckOutHandler(state_machine),
        booking_commands.MarkNoShow: booking_commands.MarkNoShowHandler(state_machine),
        payment_commands.CreatePaymentIntent: payment_commands.CreatePaymentIntentHandler(reconciler),
        payment_commands.HandleWebhook: payment_commands.HandleWebhookHandler(reconciler),
        payment_commands.SyncPaymentIntent: payment_commands.SyncPaymentIntentHandler(reconciler),
        payment_commands.RefundPayment: payment_commands.RefundPaymentHandler(reconciler),
        payment_commands.GetPaymentHistory: payment_commands.GetPaymentHistoryHandler(reconciler),
        loyalty_commands.GetLoyaltyAccount: loyalty_commands.GetLoyaltyAccountHandler(ledger),
        loyalty_commands.GetLoyaltyHistory: loyalty_commands.GetLoyaltyHistoryHandler(ledger),
        loyalty_commands.RedeemPoints: loyalty_commands.RedeemPointsHandler(state_machine),
        loyalty_commands.AdjustPoints: loyalty_commands.AdjustPointsHandler(ledger),
    }
    for command_type, handler in handlers.items():
        bus.register_command_handler(command_type, handler.handle)


_services: Services | None = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """Process-wide container for Django entry points, built once per process"""
    global _services
    if _services is None:
        with _services_lock:
            if _services is None:
                _services = bootstrap()
    return _services
