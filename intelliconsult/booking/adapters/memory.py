import asyncio
import datetime as dt
from collections.abc import Collection

from intelliconsult.domain.exceptions import SlotConflictError
from intelliconsult.domain.models import (
    Appointment,
    AppointmentStatus,
    CancellationRecord,
    Doctor,
    Patient,
    PaymentOrder,
    PaymentOrderStatus,
    PaymentStatus,
)


class InMemoryProfileStore:
    """Doctor and patient profiles held in dicts.

    Load profiles with ``add_doctor``/``add_patient``; the booking engine
    itself only reads.
    """

    def __init__(self) -> None:
        self.doctors: dict[str, Doctor] = {}
        self.patients: dict[str, Patient] = {}

    def add_doctor(self, doctor: Doctor) -> None:
        self.doctors[doctor.doctor_id] = doctor

    def add_patient(self, patient: Patient) -> None:
        self.patients[patient.patient_id] = patient

    async def get_doctor(self, doctor_id: str) -> Doctor | None:
        return self.doctors.get(doctor_id)

    async def get_patient(self, patient_id: str) -> Patient | None:
        return self.patients.get(patient_id)


class InMemoryAppointmentStore:
    """Single-process appointment store.

    A lock makes the slot check and the insert one step, which is the
    in-process equivalent of the SQL adapter's partial unique index.
    """

    def __init__(self) -> None:
        self.appointments: dict[str, Appointment] = {}
        self.cancellations: list[CancellationRecord] = []
        self._lock = asyncio.Lock()

    async def insert_appointment(self, appointment: Appointment) -> Appointment:
        async with self._lock:
            for existing in self.appointments.values():
                if (
                    existing.holds_slot
                    and existing.doctor_id == appointment.doctor_id
                    and existing.date == appointment.date
                    and existing.time == appointment.time
                ):
                    raise SlotConflictError(
                        appointment.doctor_id, appointment.date, appointment.time
                    )
            self.appointments[appointment.appointment_id] = appointment
            return appointment

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        return self.appointments.get(appointment_id)

    async def list_appointments(
        self,
        *,
        doctor_id: str | None = None,
        patient_id: str | None = None,
        statuses: Collection[AppointmentStatus] | None = None,
        from_date: dt.date | None = None,
    ) -> list[Appointment]:
        matches = [
            a
            for a in self.appointments.values()
            if (doctor_id is None or a.doctor_id == doctor_id)
            and (patient_id is None or a.patient_id == patient_id)
            and (statuses is None or a.status in statuses)
            and (from_date is None or a.date >= from_date)
        ]
        return sorted(matches, key=lambda a: (a.date, a.time))

    async def update_appointment(
        self,
        appointment: Appointment,
        *,
        expected_status: AppointmentStatus,
        expected_payment_status: PaymentStatus,
        cancellation: CancellationRecord | None = None,
    ) -> bool:
        async with self._lock:
            current = self.appointments.get(appointment.appointment_id)
            if current is None:
                return False
            if current.status is not expected_status:
                return False
            if current.payment_status is not expected_payment_status:
                return False
            if cancellation is not None:
                self._record_cancellation(cancellation)
            self.appointments[appointment.appointment_id] = appointment
            return True

    def _record_cancellation(self, record: CancellationRecord) -> None:
        self.cancellations.append(record)

    async def list_cancellations(self, appointment_id: str) -> list[CancellationRecord]:
        return [r for r in self.cancellations if r.appointment_id == appointment_id]

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryPaymentOrderStore:
    def __init__(self) -> None:
        self.orders: dict[str, PaymentOrder] = {}

    async def save_order(self, order: PaymentOrder) -> None:
        self.orders[order.order_id] = order

    async def get_order(self, order_id: str) -> PaymentOrder | None:
        return self.orders.get(order_id)

    async def update_order(
        self, order: PaymentOrder, *, expected_status: PaymentOrderStatus
    ) -> bool:
        current = self.orders.get(order.order_id)
        if current is None or current.status is not expected_status:
            return False
        self.orders[order.order_id] = order
        return True
