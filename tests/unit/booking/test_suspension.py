import datetime as dt

import pytest

from intelliconsult.booking.adapters.fake import FlakyAppointmentStore, RecordingNotifier
from intelliconsult.booking.adapters.memory import InMemoryAppointmentStore, InMemoryProfileStore
from intelliconsult.booking.clock import FixedClock
from intelliconsult.booking.ledger import AppointmentLedger
from intelliconsult.booking.notifications import NotificationDispatcher
from intelliconsult.booking.suspension import SuspensionCascade
from intelliconsult.domain.models import (
    Appointment,
    AppointmentStatus,
    CancellationReason,
    CancelledBy,
    NotificationEvent,
    PartyType,
    Patient,
    VisitDetails,
)

# Fixtures (clock, profiles, appointments, ledger, notifier, visit) provided by tests/conftest.py


@pytest.fixture
def cascade(
    ledger: AppointmentLedger, profiles: InMemoryProfileStore, notifier: RecordingNotifier
) -> SuspensionCascade:
    return SuspensionCascade(ledger, profiles, NotificationDispatcher(notifier))


def _appointment(
    appointment_id: str,
    patient_id: str,
    time: dt.time,
    clock: FixedClock,
    visit: VisitDetails,
    status: AppointmentStatus = AppointmentStatus.UPCOMING,
) -> Appointment:
    return Appointment(
        appointment_id=appointment_id,
        doctor_id="doc-1",
        patient_id=patient_id,
        date=clock.now().date(),
        time=time,
        consultation_fee_at_booking=500,
        status=status,
        visit=visit,
        booked_at=clock.now(),
    )


async def _seed(store: InMemoryAppointmentStore, clock: FixedClock, visit: VisitDetails) -> None:
    await store.insert_appointment(_appointment("a1", "pat-1", dt.time(9, 0), clock, visit))
    await store.insert_appointment(_appointment("a2", "pat-2", dt.time(10, 0), clock, visit))
    await store.insert_appointment(_appointment("a3", "pat-1", dt.time(11, 0), clock, visit))
    await store.insert_appointment(
        _appointment(
            "done", "pat-2", dt.time(8, 0), clock, visit, status=AppointmentStatus.COMPLETED
        )
    )


@pytest.fixture(autouse=True)
def second_patient(profiles: InMemoryProfileStore) -> None:
    profiles.add_patient(Patient(patient_id="pat-2", email="meera@example.com"))


class TestDoctorSuspension:
    @pytest.mark.asyncio
    async def test_cancels_all_upcoming_and_leaves_history(
        self,
        cascade: SuspensionCascade,
        ledger: AppointmentLedger,
        appointments: InMemoryAppointmentStore,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        await _seed(appointments, clock, visit)

        report = await cascade.on_suspend(PartyType.DOCTOR, "doc-1")

        assert report.cancelled_count == 3
        assert report.complete is True
        assert await ledger.upcoming_for_party(doctor_id="doc-1") == []
        done = await appointments.get_appointment("done")
        assert done is not None and done.status is AppointmentStatus.COMPLETED

        records = await ledger.cancellations("a2")
        assert records[0].cancelled_by is CancelledBy.ADMIN
        assert records[0].reason is CancellationReason.ACCOUNT_SUSPENDED

    @pytest.mark.asyncio
    async def test_notifies_doctor_and_each_affected_patient(
        self,
        cascade: SuspensionCascade,
        appointments: InMemoryAppointmentStore,
        notifier: RecordingNotifier,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        await _seed(appointments, clock, visit)

        await cascade.on_suspend(PartyType.DOCTOR, "doc-1")

        assert notifier.events_for("asha@example.com") == [NotificationEvent.ACCOUNT_SUSPENDED]
        assert notifier.events_for("ravi@example.com") == [
            NotificationEvent.APPOINTMENT_CANCELLED,
            NotificationEvent.APPOINTMENT_CANCELLED,
        ]
        assert notifier.events_for("meera@example.com") == [
            NotificationEvent.APPOINTMENT_CANCELLED
        ]

    @pytest.mark.asyncio
    async def test_second_run_is_a_noop(
        self,
        cascade: SuspensionCascade,
        appointments: InMemoryAppointmentStore,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        await _seed(appointments, clock, visit)
        await cascade.on_suspend(PartyType.DOCTOR, "doc-1")

        report = await cascade.on_suspend(PartyType.DOCTOR, "doc-1")

        assert report.cancelled_count == 0
        assert report.complete is True

    @pytest.mark.asyncio
    async def test_partial_failure_is_reported_and_rest_proceed(
        self,
        profiles: InMemoryProfileStore,
        notifier: RecordingNotifier,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        store = FlakyAppointmentStore()
        await _seed(store, clock, visit)
        store.failing_updates.add("a2")
        ledger = AppointmentLedger(store, clock)
        cascade = SuspensionCascade(ledger, profiles, NotificationDispatcher(notifier))

        report = await cascade.on_suspend(PartyType.DOCTOR, "doc-1")

        assert report.cancelled_count == 2
        assert report.failed_appointment_ids == ["a2"]
        assert report.complete is False
        remaining = await ledger.upcoming_for_party(doctor_id="doc-1")
        assert [a.appointment_id for a in remaining] == ["a2"]

        store.failing_updates.clear()
        retry = await cascade.on_suspend(PartyType.DOCTOR, "doc-1")
        assert retry.cancelled_count == 1
        assert retry.complete is True

    @pytest.mark.asyncio
    async def test_failed_audit_write_leaves_appointment_upcoming(
        self,
        profiles: InMemoryProfileStore,
        notifier: RecordingNotifier,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        store = FlakyAppointmentStore()
        await _seed(store, clock, visit)
        store.failing_audits.add("a2")
        ledger = AppointmentLedger(store, clock)
        cascade = SuspensionCascade(ledger, profiles, NotificationDispatcher(notifier))

        report = await cascade.on_suspend(PartyType.DOCTOR, "doc-1")

        assert report.cancelled_count == 2
        assert report.failed_appointment_ids == ["a2"]
        untouched = await store.get_appointment("a2")
        assert untouched is not None and untouched.status is AppointmentStatus.UPCOMING
        assert await ledger.cancellations("a2") == []
        assert notifier.events_for("meera@example.com") == []

        store.failing_audits.clear()
        retry = await cascade.on_suspend(PartyType.DOCTOR, "doc-1")

        assert retry.cancelled_count == 1
        assert retry.complete is True
        assert len(await ledger.cancellations("a2")) == 1
        assert notifier.events_for("meera@example.com") == [
            NotificationEvent.APPOINTMENT_CANCELLED
        ]

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_undo_cancellations(
        self,
        cascade: SuspensionCascade,
        appointments: InMemoryAppointmentStore,
        notifier: RecordingNotifier,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        await _seed(appointments, clock, visit)
        notifier.error = RuntimeError("smtp down")

        report = await cascade.on_suspend(PartyType.DOCTOR, "doc-1")

        assert report.cancelled_count == 3
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_missing_doctor_profile_still_cancels(
        self,
        cascade: SuspensionCascade,
        profiles: InMemoryProfileStore,
        appointments: InMemoryAppointmentStore,
        notifier: RecordingNotifier,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        await _seed(appointments, clock, visit)
        del profiles.doctors["doc-1"]

        report = await cascade.on_suspend(PartyType.DOCTOR, "doc-1")

        assert report.cancelled_count == 3
        assert notifier.events_for("asha@example.com") == []
        assert notifier.events_for("meera@example.com") == [
            NotificationEvent.APPOINTMENT_CANCELLED
        ]

    @pytest.mark.asyncio
    async def test_unknown_doctor_without_appointments(
        self, cascade: SuspensionCascade, notifier: RecordingNotifier
    ) -> None:
        report = await cascade.on_suspend(PartyType.DOCTOR, "nobody")

        assert report.cancelled_count == 0
        assert report.complete is True
        assert notifier.sent == []


class TestPatientSuspension:
    @pytest.mark.asyncio
    async def test_cancels_only_that_patients_appointments(
        self,
        cascade: SuspensionCascade,
        appointments: InMemoryAppointmentStore,
        notifier: RecordingNotifier,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        await _seed(appointments, clock, visit)

        report = await cascade.on_suspend(PartyType.PATIENT, "pat-1")

        assert report.cancelled_count == 2
        other = await appointments.get_appointment("a2")
        assert other is not None and other.status is AppointmentStatus.UPCOMING
        assert notifier.events_for("ravi@example.com") == [NotificationEvent.ACCOUNT_SUSPENDED]
        assert notifier.events_for("asha@example.com") == [
            NotificationEvent.APPOINTMENT_CANCELLED,
            NotificationEvent.APPOINTMENT_CANCELLED,
        ]

    @pytest.mark.asyncio
    async def test_missing_patient_profile_still_cancels(
        self,
        cascade: SuspensionCascade,
        profiles: InMemoryProfileStore,
        appointments: InMemoryAppointmentStore,
        notifier: RecordingNotifier,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        await _seed(appointments, clock, visit)
        del profiles.patients["pat-1"]

        report = await cascade.on_suspend(PartyType.PATIENT, "pat-1")

        assert report.cancelled_count == 2
        assert notifier.events_for("ravi@example.com") == []
        assert notifier.events_for("asha@example.com") == [
            NotificationEvent.APPOINTMENT_CANCELLED,
            NotificationEvent.APPOINTMENT_CANCELLED,
        ]
