import datetime as dt

from loguru import logger

from intelliconsult.booking.ports import AppointmentStoreProtocol, ClockProtocol
from intelliconsult.domain.exceptions import (
    AppointmentNotFoundError,
    InvalidTransitionError,
    NotAuthorizedError,
    StorageUnavailableError,
)
from intelliconsult.domain.models import (
    Appointment,
    AppointmentStatus,
    CancellationReason,
    CancellationRecord,
    CancelledBy,
    VisitClassification,
)

_ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.UPCOMING: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

_TIMESTAMP_FIELDS: dict[AppointmentStatus, str] = {
    AppointmentStatus.COMPLETED: "completed_at",
    AppointmentStatus.CANCELLED: "cancelled_at",
}

# A compare-and-set can lose to a concurrent payment update at most a couple of
# times before the appointment settles.
_MAX_TRANSITION_ATTEMPTS = 3


def classify(appointment: Appointment, now: dt.datetime) -> VisitClassification:
    """Place an appointment on the patient's "upcoming" or "past" list.

    Status decides first: completed and cancelled visits are past whatever
    their date. Only an ``upcoming`` appointment falls back to its slot time.
    """
    if appointment.status is not AppointmentStatus.UPCOMING:
        return VisitClassification.PAST
    if appointment.slot.starts_at < now:
        return VisitClassification.PAST
    return VisitClassification.UPCOMING


class AppointmentLedger:
    """Owns the appointment state machine.

    Every status change goes through ``_transition`` so self-cancel, the
    suspension cascade and the external timeout reaper share one rule set.
    """

    def __init__(self, store: AppointmentStoreProtocol, clock: ClockProtocol) -> None:
        self._store = store
        self._clock = clock

    async def get(self, appointment_id: str) -> Appointment:
        appointment = await self._store.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    async def cancel(
        self,
        appointment_id: str,
        *,
        requester_id: str | None = None,
        cancelled_by: CancelledBy = CancelledBy.PATIENT,
        reason: CancellationReason = CancellationReason.PATIENT_REQUEST,
    ) -> Appointment:
        """Move an appointment to ``cancelled``.

        Patients may only cancel their own appointments and doctors only those
        assigned to them; admin and system cancellations skip the check.
        Cancelling an already cancelled appointment returns it unchanged.
        """
        appointment = await self.get(appointment_id)

        if cancelled_by is CancelledBy.PATIENT and requester_id != appointment.patient_id:
            raise NotAuthorizedError("Only the appointment's patient may cancel it", appointment_id)
        if cancelled_by is CancelledBy.DOCTOR and requester_id != appointment.doctor_id:
            raise NotAuthorizedError("Doctor is not assigned to this appointment", appointment_id)

        if appointment.status is AppointmentStatus.CANCELLED:
            logger.info("Appointment {} already cancelled; nothing to do", appointment_id)
            return appointment

        audit = CancellationRecord(
            appointment_id=appointment_id,
            cancelled_by=cancelled_by,
            requester_id=requester_id,
            reason=reason,
            cancelled_at=self._clock.now(),
        )
        cancelled, _ = await self._transition(
            appointment, AppointmentStatus.CANCELLED, audit=audit
        )
        return cancelled

    async def complete(self, appointment_id: str, doctor_id: str) -> Appointment:
        appointment = await self.get(appointment_id)
        if appointment.doctor_id != doctor_id:
            raise NotAuthorizedError("Doctor is not assigned to this appointment", appointment_id)
        completed, _ = await self._transition(appointment, AppointmentStatus.COMPLETED)
        return completed

    async def appointments_for_patient(self, patient_id: str) -> list[Appointment]:
        appointments = await self._store.list_appointments(patient_id=patient_id)
        return sorted(appointments, key=lambda a: (a.date, a.time), reverse=True)

    async def appointments_for_doctor(self, doctor_id: str) -> list[Appointment]:
        appointments = await self._store.list_appointments(doctor_id=doctor_id)
        return sorted(appointments, key=lambda a: (a.date, a.time))

    async def upcoming_for_party(
        self, *, doctor_id: str | None = None, patient_id: str | None = None
    ) -> list[Appointment]:
        return await self._store.list_appointments(
            doctor_id=doctor_id,
            patient_id=patient_id,
            statuses={AppointmentStatus.UPCOMING},
        )

    def classify(self, appointment: Appointment) -> VisitClassification:
        return classify(appointment, self._clock.now())

    async def cancellations(self, appointment_id: str) -> list[CancellationRecord]:
        return await self._store.list_cancellations(appointment_id)

    async def _transition(
        self,
        appointment: Appointment,
        target: AppointmentStatus,
        *,
        audit: CancellationRecord | None = None,
    ) -> tuple[Appointment, bool]:
        """Apply a state-machine step as a compare-and-set on the stored state.

        When the stored appointment changed underneath us the step is
        re-evaluated against the fresh copy, so a cancel that loses to another
        cancel becomes a no-op and one that loses to a completion fails.
        ``audit`` is stored in the same write, stamped with the transition time.
        The flag reports whether this call performed the write.
        """
        for _ in range(_MAX_TRANSITION_ATTEMPTS):
            if appointment.status is target and target is AppointmentStatus.CANCELLED:
                return appointment, False
            if target not in _ALLOWED_TRANSITIONS[appointment.status]:
                raise InvalidTransitionError(
                    appointment.appointment_id, appointment.status.value, target.value
                )

            stamped_at = self._clock.now()
            updated = appointment.model_copy(
                update={"status": target, _TIMESTAMP_FIELDS[target]: stamped_at}
            )
            written = await self._store.update_appointment(
                updated,
                expected_status=appointment.status,
                expected_payment_status=appointment.payment_status,
                cancellation=(
                    audit.model_copy(update={"cancelled_at": stamped_at}) if audit else None
                ),
            )
            if written:
                logger.info(
                    "Appointment {} moved {} -> {}",
                    appointment.appointment_id,
                    appointment.status.value,
                    target.value,
                )
                return updated, True

            logger.info(
                "Appointment {} changed concurrently; re-evaluating {}",
                appointment.appointment_id,
                target.value,
            )
            appointment = await self.get(appointment.appointment_id)

        raise StorageUnavailableError(
            f"Appointment {appointment.appointment_id} kept changing during {target.value}"
        )
