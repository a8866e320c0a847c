import datetime as dt
import uuid

from loguru import logger

from intelliconsult.booking.ports import (
    AppointmentStoreProtocol,
    ClockProtocol,
    ProfileStoreProtocol,
)
from intelliconsult.booking.slots import SlotCatalog
from intelliconsult.domain.exceptions import (
    DoctorNotFoundError,
    PatientNotFoundError,
    SlotConflictError,
    ValidationError,
)
from intelliconsult.domain.models import (
    Appointment,
    AppointmentStatus,
    PaymentStatus,
    VisitDetails,
)


class ReservationGuard:
    """Turns a booking request into an appointment without double-booking.

    Party and schedule checks run first and raise ``ValidationError``. The
    check that the slot is free is left to the store's atomic insert, so two
    racing requests for one slot end as one appointment and one
    ``SlotConflictError``.
    """

    def __init__(
        self,
        profiles: ProfileStoreProtocol,
        appointments: AppointmentStoreProtocol,
        catalog: SlotCatalog,
        clock: ClockProtocol,
    ) -> None:
        self._profiles = profiles
        self._appointments = appointments
        self._catalog = catalog
        self._clock = clock

    async def reserve(
        self,
        doctor_id: str,
        patient_id: str,
        date: dt.date,
        time: dt.time,
        visit: VisitDetails,
    ) -> Appointment:
        if not visit.patient_name_for_visit.strip() or not visit.primary_reason.strip():
            raise ValidationError("Patient name and reason for the visit are required")

        doctor = await self._profiles.get_doctor(doctor_id)
        if doctor is None:
            raise DoctorNotFoundError(doctor_id)
        if not doctor.approved:
            raise ValidationError(f"Doctor {doctor_id} is not approved for bookings")
        if not doctor.active:
            raise ValidationError(f"Doctor {doctor_id} is suspended")

        patient = await self._profiles.get_patient(patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)
        if not patient.active:
            raise ValidationError(f"Patient {patient_id} is suspended")

        if not self._catalog.is_offered(doctor, date, time):
            raise ValidationError(f"Doctor {doctor_id} does not offer {date} {time:%H:%M}")

        appointment = Appointment(
            appointment_id=uuid.uuid4().hex,
            doctor_id=doctor_id,
            patient_id=patient_id,
            date=date,
            time=time,
            consultation_fee_at_booking=doctor.consultation_fee,
            status=AppointmentStatus.UPCOMING,
            payment_status=PaymentStatus.NONE,
            visit=visit,
            booked_at=self._clock.now(),
        )

        try:
            created = await self._appointments.insert_appointment(appointment)
        except SlotConflictError:
            logger.info("Slot conflict: doctor={}, date={}, time={}", doctor_id, date, time)
            raise

        logger.info(
            "Reserved appointment {}: doctor={}, date={}, time={}, fee={}",
            created.appointment_id,
            doctor_id,
            date,
            time,
            created.consultation_fee_at_booking,
        )
        return created
