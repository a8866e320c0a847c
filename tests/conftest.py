import datetime as dt

import pytest

from intelliconsult.booking.adapters.fake import FakePaymentGateway, RecordingNotifier
from intelliconsult.booking.adapters.memory import (
    InMemoryAppointmentStore,
    InMemoryPaymentOrderStore,
    InMemoryProfileStore,
)
from intelliconsult.booking.clock import FixedClock
from intelliconsult.booking.factory import assemble_booking_service
from intelliconsult.booking.ledger import AppointmentLedger
from intelliconsult.booking.service import BookingService
from intelliconsult.booking.slots import SlotCatalog
from intelliconsult.domain.models import Doctor, Patient, VisitDetails, WorkingDay

KEY_SECRET = "test_key_secret"

# Monday 2026-03-02, 08:00 clinic time.
NOW = dt.datetime(2026, 3, 2, 8, 0)
MONDAY = NOW.date()


def make_doctor(**overrides: object) -> Doctor:
    data: dict[str, object] = {
        "doctor_id": "doc-1",
        "full_name": "Dr. Asha Rao",
        "email": "asha@example.com",
        "specialization": "General Medicine",
        "consultation_fee": 500,
        "approved": True,
        "active": True,
        "working_hours": {
            "monday": WorkingDay(enabled=True, start=dt.time(9, 0), end=dt.time(12, 0)),
        },
    }
    data.update(overrides)
    return Doctor.model_validate(data)


def make_patient(**overrides: object) -> Patient:
    data: dict[str, object] = {
        "patient_id": "pat-1",
        "full_name": "Ravi Kumar",
        "email": "ravi@example.com",
    }
    data.update(overrides)
    return Patient.model_validate(data)


def make_visit(**overrides: object) -> VisitDetails:
    data: dict[str, object] = {"patient_name_for_visit": "Ravi Kumar", "primary_reason": "Fever"}
    data.update(overrides)
    return VisitDetails.model_validate(data)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def doctor() -> Doctor:
    return make_doctor()


@pytest.fixture
def patient() -> Patient:
    return make_patient()


@pytest.fixture
def profiles(doctor: Doctor, patient: Patient) -> InMemoryProfileStore:
    store = InMemoryProfileStore()
    store.add_doctor(doctor)
    store.add_patient(patient)
    return store


@pytest.fixture
def appointments() -> InMemoryAppointmentStore:
    return InMemoryAppointmentStore()


@pytest.fixture
def orders() -> InMemoryPaymentOrderStore:
    return InMemoryPaymentOrderStore()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def catalog(
    profiles: InMemoryProfileStore, appointments: InMemoryAppointmentStore, clock: FixedClock
) -> SlotCatalog:
    return SlotCatalog(profiles, appointments, clock)


@pytest.fixture
def ledger(appointments: InMemoryAppointmentStore, clock: FixedClock) -> AppointmentLedger:
    return AppointmentLedger(appointments, clock)


@pytest.fixture
def service(
    profiles: InMemoryProfileStore,
    appointments: InMemoryAppointmentStore,
    orders: InMemoryPaymentOrderStore,
    gateway: FakePaymentGateway,
    notifier: RecordingNotifier,
    clock: FixedClock,
) -> BookingService:
    return assemble_booking_service(
        profiles=profiles,
        appointments=appointments,
        orders=orders,
        gateway=gateway,
        notifier=notifier,
        clock=clock,
        key_secret=KEY_SECRET,
    )


@pytest.fixture
def visit() -> VisitDetails:
    return make_visit()
