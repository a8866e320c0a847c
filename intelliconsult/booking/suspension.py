from loguru import logger

from intelliconsult.booking.adapters.datetime_helpers import time_to_slot_label
from intelliconsult.booking.ledger import AppointmentLedger
from intelliconsult.booking.notifications import NotificationDispatcher
from intelliconsult.booking.ports import ProfileStoreProtocol
from intelliconsult.domain.exceptions import BookingError
from intelliconsult.domain.models import (
    Appointment,
    CancellationReason,
    CancelledBy,
    CascadeReport,
    NotificationEvent,
    PartyType,
)


class SuspensionCascade:
    """Cancels a suspended party's upcoming appointments.

    Cancellations go through ``AppointmentLedger.cancel`` one by one. A
    failure on one appointment is recorded in the report and the walk carries
    on; the caller decides whether to retry.
    """

    def __init__(
        self,
        ledger: AppointmentLedger,
        profiles: ProfileStoreProtocol,
        notifications: NotificationDispatcher,
    ) -> None:
        self._ledger = ledger
        self._profiles = profiles
        self._notifications = notifications

    async def on_suspend(self, party_type: PartyType, party_id: str) -> CascadeReport:
        if party_type is PartyType.DOCTOR:
            upcoming = await self._ledger.upcoming_for_party(doctor_id=party_id)
        else:
            upcoming = await self._ledger.upcoming_for_party(patient_id=party_id)

        logger.info(
            "Suspension cascade for {} {}: {} upcoming appointment(s)",
            party_type.value,
            party_id,
            len(upcoming),
        )

        cancelled: list[Appointment] = []
        failed: list[str] = []
        for appointment in upcoming:
            try:
                result = await self._ledger.cancel(
                    appointment.appointment_id,
                    cancelled_by=CancelledBy.ADMIN,
                    reason=CancellationReason.ACCOUNT_SUSPENDED,
                )
            except BookingError as exc:
                logger.warning(
                    "Cascade could not cancel appointment {}: {}", appointment.appointment_id, exc
                )
                failed.append(appointment.appointment_id)
                continue
            cancelled.append(result)

        report = CascadeReport(
            party_type=party_type,
            party_id=party_id,
            cancelled_count=len(cancelled),
            failed_appointment_ids=failed,
        )
        if not report.complete:
            logger.warning(
                "Suspension cascade for {} {} incomplete: {} failure(s)",
                party_type.value,
                party_id,
                len(failed),
            )

        recipient = await self._party_email(party_type, party_id)
        if recipient is None:
            logger.warning(
                "No profile for {} {}; skipping suspension notice", party_type.value, party_id
            )
        else:
            await self._notifications.send(
                NotificationEvent.ACCOUNT_SUSPENDED,
                recipient,
                {"party_type": party_type.value, "cancelled_count": report.cancelled_count},
            )
        for appointment in cancelled:
            try:
                await self._notify_counterpart(party_type, appointment)
            except BookingError as exc:
                logger.warning(
                    "Could not notify about cancelled appointment {}: {}",
                    appointment.appointment_id,
                    exc,
                )

        return report

    async def _party_email(self, party_type: PartyType, party_id: str) -> str | None:
        if party_type is PartyType.DOCTOR:
            doctor = await self._profiles.get_doctor(party_id)
            return doctor.email if doctor is not None else None
        patient = await self._profiles.get_patient(party_id)
        return patient.email if patient is not None else None

    async def _notify_counterpart(self, party_type: PartyType, appointment: Appointment) -> None:
        if party_type is PartyType.DOCTOR:
            counterpart = await self._profiles.get_patient(appointment.patient_id)
        else:
            counterpart = await self._profiles.get_doctor(appointment.doctor_id)
        if counterpart is None:
            return
        await self._notifications.send(
            NotificationEvent.APPOINTMENT_CANCELLED,
            counterpart.email,
            {
                "appointment_id": appointment.appointment_id,
                "date": appointment.date.isoformat(),
                "time": time_to_slot_label(appointment.time),
                "reason": CancellationReason.ACCOUNT_SUSPENDED.value,
            },
        )
