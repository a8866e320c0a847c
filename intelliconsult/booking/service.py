import datetime as dt

from loguru import logger

from intelliconsult.booking.adapters.datetime_helpers import time_to_slot_label
from intelliconsult.booking.ledger import AppointmentLedger
from intelliconsult.booking.notifications import NotificationDispatcher
from intelliconsult.booking.payments import PaymentSettlement
from intelliconsult.booking.ports import (
    AbstractBookingService,
    AppointmentStoreProtocol,
    PaymentGatewayProtocol,
    ProfileStoreProtocol,
)
from intelliconsult.booking.reservation import ReservationGuard
from intelliconsult.booking.slots import SlotCatalog
from intelliconsult.booking.suspension import SuspensionCascade
from intelliconsult.domain.exceptions import BookingError, StorageUnavailableError
from intelliconsult.domain.models import (
    Appointment,
    CascadeReport,
    NotificationEvent,
    PartyType,
    PaymentOrder,
    PaymentVerification,
    Slot,
    VisitClassification,
    VisitDetails,
)


class BookingService(AbstractBookingService):
    """Booking engine facade wiring the catalog, ledger, guard, settlement and cascade.

    Known ``BookingError``s propagate unchanged; anything else raised by an
    adapter is wrapped as ``StorageUnavailableError``.
    """

    def __init__(
        self,
        *,
        profiles: ProfileStoreProtocol,
        appointments: AppointmentStoreProtocol,
        catalog: SlotCatalog,
        ledger: AppointmentLedger,
        guard: ReservationGuard,
        settlement: PaymentSettlement,
        cascade: SuspensionCascade,
        notifications: NotificationDispatcher,
        gateway: PaymentGatewayProtocol,
    ) -> None:
        self._profiles = profiles
        self._appointments = appointments
        self._catalog = catalog
        self._ledger = ledger
        self._guard = guard
        self._settlement = settlement
        self._cascade = cascade
        self._notifications = notifications
        self._gateway = gateway

    async def available_slots(self, doctor_id: str, from_date: dt.date | None = None) -> list[Slot]:
        logger.info("Listing available slots for doctor={}", doctor_id)
        try:
            return await self._catalog.available_slots(doctor_id, from_date)
        except BookingError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Slot lookup failed: {exc}") from exc

    async def reserve(
        self,
        doctor_id: str,
        patient_id: str,
        date: dt.date,
        time: dt.time,
        visit: VisitDetails,
    ) -> Appointment:
        logger.info("Reservation request: doctor={}, date={}, time={}", doctor_id, date, time)
        try:
            appointment = await self._guard.reserve(doctor_id, patient_id, date, time, visit)
        except BookingError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Reservation failed: {exc}") from exc

        await self._notify_booked(appointment)
        return appointment

    async def cancel(self, appointment_id: str, requester_id: str) -> Appointment:
        logger.info("Cancelling appointment {}", appointment_id)
        try:
            return await self._ledger.cancel(appointment_id, requester_id=requester_id)
        except BookingError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Cancellation failed: {exc}") from exc

    async def complete(self, appointment_id: str, doctor_id: str) -> Appointment:
        logger.info("Completing appointment {}", appointment_id)
        try:
            return await self._ledger.complete(appointment_id, doctor_id)
        except BookingError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Completion failed: {exc}") from exc

    async def create_payment_order(self, appointment_id: str) -> PaymentOrder:
        logger.info("Creating payment order for appointment {}", appointment_id)
        try:
            return await self._settlement.create_order(appointment_id)
        except BookingError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Payment order creation failed: {exc}") from exc

    async def verify_payment(
        self, order_id: str, payment_id: str, signature: str
    ) -> PaymentVerification:
        logger.info("Verifying payment for order {}", order_id)
        try:
            verification = await self._settlement.verify_payment(order_id, payment_id, signature)
        except BookingError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Payment verification failed: {exc}") from exc

        if verification.verified and not verification.reconciliation_required:
            await self._notify_payment(verification)
        return verification

    async def suspension_cascade(self, party_type: PartyType, party_id: str) -> CascadeReport:
        logger.info("Running suspension cascade for {} {}", party_type.value, party_id)
        try:
            return await self._cascade.on_suspend(party_type, party_id)
        except BookingError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Suspension cascade failed: {exc}") from exc

    async def appointments_for_patient(self, patient_id: str) -> list[Appointment]:
        try:
            return await self._ledger.appointments_for_patient(patient_id)
        except BookingError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Appointment listing failed: {exc}") from exc

    async def appointments_for_doctor(self, doctor_id: str) -> list[Appointment]:
        try:
            return await self._ledger.appointments_for_doctor(doctor_id)
        except BookingError:
            raise
        except Exception as exc:
            raise StorageUnavailableError(f"Appointment listing failed: {exc}") from exc

    def classify(self, appointment: Appointment) -> VisitClassification:
        """Whether the appointment belongs on the upcoming or the past list right now."""
        return self._ledger.classify(appointment)

    async def health_check(self) -> bool:
        return await self._appointments.health_check()

    async def close(self) -> None:
        await self._gateway.close()
        await self._notifications.close()
        await self._appointments.close()

    async def _notify_booked(self, appointment: Appointment) -> None:
        try:
            patient = await self._profiles.get_patient(appointment.patient_id)
        except Exception as exc:
            logger.warning(
                "Skipping booking notification for {}: {}", appointment.appointment_id, exc
            )
            return
        await self._notifications.send(
            NotificationEvent.APPOINTMENT_BOOKED,
            patient.email if patient else "",
            {
                "appointment_id": appointment.appointment_id,
                "date": appointment.date.isoformat(),
                "time": time_to_slot_label(appointment.time),
            },
        )

    async def _notify_payment(self, verification: PaymentVerification) -> None:
        if verification.appointment_id is None:
            return
        try:
            appointment = await self._ledger.get(verification.appointment_id)
            patient = await self._profiles.get_patient(appointment.patient_id)
        except Exception as exc:
            logger.warning("Skipping payment notification for {}: {}", verification.order_id, exc)
            return
        await self._notifications.send(
            NotificationEvent.PAYMENT_CONFIRMED,
            patient.email if patient else "",
            {
                "appointment_id": appointment.appointment_id,
                "amount": appointment.consultation_fee_at_booking,
                "currency": self._settlement.currency,
            },
        )
