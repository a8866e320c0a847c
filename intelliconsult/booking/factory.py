from collections.abc import Awaitable, Callable

from loguru import logger

from intelliconsult.booking.adapters.email import LoggingNotifier, ResendEmailNotifier
from intelliconsult.booking.adapters.memory import (
    InMemoryAppointmentStore,
    InMemoryPaymentOrderStore,
    InMemoryProfileStore,
)
from intelliconsult.booking.adapters.razorpay import RazorpayGatewayClient
from intelliconsult.booking.adapters.sql import (
    Database,
    SqlAppointmentStore,
    SqlPaymentOrderStore,
    SqlProfileStore,
)
from intelliconsult.booking.clock import SystemClock
from intelliconsult.booking.ledger import AppointmentLedger
from intelliconsult.booking.notifications import NotificationDispatcher
from intelliconsult.booking.payments import PaymentSettlement
from intelliconsult.booking.ports import (
    AppointmentStoreProtocol,
    ClockProtocol,
    NotifierProtocol,
    PaymentGatewayProtocol,
    PaymentOrderStoreProtocol,
    ProfileStoreProtocol,
)
from intelliconsult.booking.reservation import ReservationGuard
from intelliconsult.booking.service import BookingService
from intelliconsult.booking.slots import DEFAULT_HORIZON_DAYS, DEFAULT_SLOT_MINUTES, SlotCatalog
from intelliconsult.booking.suspension import SuspensionCascade
from intelliconsult.config import AppConfig, StorageAdapter


def assemble_booking_service(
    *,
    profiles: ProfileStoreProtocol,
    appointments: AppointmentStoreProtocol,
    orders: PaymentOrderStoreProtocol,
    gateway: PaymentGatewayProtocol,
    notifier: NotifierProtocol,
    clock: ClockProtocol,
    key_secret: str,
    currency: str = "INR",
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> BookingService:
    """Wire the booking components around the given adapters."""
    catalog = SlotCatalog(
        profiles, appointments, clock, slot_minutes=slot_minutes, horizon_days=horizon_days
    )
    ledger = AppointmentLedger(appointments, clock)
    notifications = NotificationDispatcher(notifier)
    return BookingService(
        profiles=profiles,
        appointments=appointments,
        catalog=catalog,
        ledger=ledger,
        guard=ReservationGuard(profiles, appointments, catalog, clock),
        settlement=PaymentSettlement(
            appointments, orders, gateway, clock, key_secret=key_secret, currency=currency
        ),
        cascade=SuspensionCascade(ledger, profiles, notifications),
        notifications=notifications,
        gateway=gateway,
    )


def _build_notifier(config: AppConfig) -> NotifierProtocol:
    if not config.email.resend_api_key:
        logger.warning("No e-mail provider configured; notifications will only be logged")
        return LoggingNotifier()
    return ResendEmailNotifier(
        api_key=config.email.resend_api_key,
        from_address=config.email.from_address,
    )


def _build_gateway(config: AppConfig) -> RazorpayGatewayClient:
    return RazorpayGatewayClient(
        key_id=config.payment.key_id,
        key_secret=config.payment.key_secret,
        api_url=config.payment.api_url,
    )


async def _build_memory(config: AppConfig) -> BookingService:
    return assemble_booking_service(
        profiles=InMemoryProfileStore(),
        appointments=InMemoryAppointmentStore(),
        orders=InMemoryPaymentOrderStore(),
        gateway=_build_gateway(config),
        notifier=_build_notifier(config),
        clock=SystemClock(config.clinic_timezone),
        key_secret=config.payment.key_secret,
        currency=config.payment.currency,
        slot_minutes=config.scheduling.slot_minutes,
        horizon_days=config.scheduling.horizon_days,
    )


async def _build_sql(config: AppConfig) -> BookingService:
    database = Database(config.database.url, echo=config.database.echo)
    await database.create_all()
    return assemble_booking_service(
        profiles=SqlProfileStore(database),
        appointments=SqlAppointmentStore(database),
        orders=SqlPaymentOrderStore(database),
        gateway=_build_gateway(config),
        notifier=_build_notifier(config),
        clock=SystemClock(config.clinic_timezone),
        key_secret=config.payment.key_secret,
        currency=config.payment.currency,
        slot_minutes=config.scheduling.slot_minutes,
        horizon_days=config.scheduling.horizon_days,
    )


_BUILDERS: dict[StorageAdapter, Callable[[AppConfig], Awaitable[BookingService]]] = {
    StorageAdapter.MEMORY: _build_memory,
    StorageAdapter.SQL: _build_sql,
}


async def build_booking_service(config: AppConfig) -> BookingService:
    """Build the booking service for the configured storage adapter."""
    storage = config.storage
    logger.info("Building booking service with storage: {}", storage.value)
    return await _BUILDERS[storage](config)
