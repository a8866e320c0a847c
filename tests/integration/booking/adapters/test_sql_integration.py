"""Integration tests for the SQL storage adapter.

By default these run against a throwaway SQLite file through aiosqlite. Point
``TEST_DATABASE_URL`` (env or .env) at an empty async database to run them
elsewhere.

Run explicitly with::

    pytest -m integration
"""

import asyncio
import datetime as dt
import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from dotenv import load_dotenv

from intelliconsult.booking.adapters.fake import FakePaymentGateway, RecordingNotifier
from intelliconsult.booking.adapters.sql import (
    Database,
    SqlAppointmentStore,
    SqlPaymentOrderStore,
    SqlProfileStore,
)
from intelliconsult.booking.clock import FixedClock
from intelliconsult.booking.factory import assemble_booking_service
from intelliconsult.booking.payments import compute_signature
from intelliconsult.domain.exceptions import SlotConflictError
from intelliconsult.domain.models import (
    Appointment,
    AppointmentStatus,
    BlockedTime,
    CancellationReason,
    CancellationRecord,
    CancelledBy,
    Doctor,
    Patient,
    PaymentOrder,
    PaymentOrderStatus,
    PaymentStatus,
    VisitDetails,
)

load_dotenv(override=True)

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]

KEY_SECRET = "sql_secret"


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database]:
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    db = Database(url)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def booked(visit: VisitDetails) -> Appointment:
    return Appointment(
        appointment_id="appt-1",
        doctor_id="doc-1",
        patient_id="pat-1",
        date=dt.date(2026, 3, 2),
        time=dt.time(10, 0),
        consultation_fee_at_booking=500,
        visit=visit,
        booked_at=dt.datetime(2026, 3, 1, 12, 0),
    )


class TestSqlProfileStore:
    async def test_round_trips_doctor_schedule(self, database: Database, doctor: Doctor) -> None:
        store = SqlProfileStore(database)
        blocked = BlockedTime(
            date=dt.date(2026, 3, 9), start=dt.time(9, 0), end=dt.time(10, 0), reason="conference"
        )
        await store.save_doctor(doctor.model_copy(update={"blocked_times": [blocked]}))

        loaded = await store.get_doctor("doc-1")

        assert loaded is not None
        assert loaded.consultation_fee == 500
        assert loaded.bookable is True
        assert loaded.working_day(dt.date(2026, 3, 2)) == doctor.working_hours["monday"]
        assert loaded.blocked_times == [blocked]

    async def test_missing_profiles(self, database: Database) -> None:
        store = SqlProfileStore(database)

        assert await store.get_doctor("nobody") is None
        assert await store.get_patient("nobody") is None

    async def test_round_trips_patient(self, database: Database, patient: Patient) -> None:
        store = SqlProfileStore(database)
        await store.save_patient(patient)

        assert await store.get_patient("pat-1") == patient


class TestSqlAppointmentStore:
    async def test_insert_and_get(self, database: Database, booked: Appointment) -> None:
        store = SqlAppointmentStore(database)

        await store.insert_appointment(booked)

        assert await store.get_appointment("appt-1") == booked

    async def test_unique_index_rejects_double_booking(
        self, database: Database, booked: Appointment
    ) -> None:
        store = SqlAppointmentStore(database)
        await store.insert_appointment(booked)

        with pytest.raises(SlotConflictError):
            await store.insert_appointment(
                booked.model_copy(update={"appointment_id": "appt-2", "patient_id": "pat-2"})
            )

    async def test_concurrent_inserts_for_one_slot_admit_one(
        self, database: Database, booked: Appointment
    ) -> None:
        store = SqlAppointmentStore(database)
        rival = booked.model_copy(update={"appointment_id": "appt-2", "patient_id": "pat-2"})

        results = await asyncio.gather(
            store.insert_appointment(booked),
            store.insert_appointment(rival),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, SlotConflictError)]
        inserted = [r for r in results if isinstance(r, Appointment)]
        assert len(conflicts) == 1
        assert len(inserted) == 1
        held = await store.list_appointments(doctor_id="doc-1")
        assert [a.appointment_id for a in held] == [inserted[0].appointment_id]

    async def test_cancelled_rows_do_not_hold_slot(
        self, database: Database, booked: Appointment
    ) -> None:
        store = SqlAppointmentStore(database)
        await store.insert_appointment(booked)
        await store.update_appointment(
            booked.model_copy(update={"status": AppointmentStatus.CANCELLED}),
            expected_status=AppointmentStatus.UPCOMING,
            expected_payment_status=PaymentStatus.NONE,
        )

        rebooked = await store.insert_appointment(
            booked.model_copy(update={"appointment_id": "appt-2"})
        )

        assert rebooked.appointment_id == "appt-2"

    async def test_update_is_compare_and_set(
        self, database: Database, booked: Appointment
    ) -> None:
        store = SqlAppointmentStore(database)
        await store.insert_appointment(booked)
        paid = booked.model_copy(
            update={"payment_status": PaymentStatus.PAID, "payment_id": "pay_1"}
        )

        assert await store.update_appointment(
            paid,
            expected_status=AppointmentStatus.UPCOMING,
            expected_payment_status=PaymentStatus.NONE,
        )
        assert not await store.update_appointment(
            paid,
            expected_status=AppointmentStatus.UPCOMING,
            expected_payment_status=PaymentStatus.NONE,
        )
        stored = await store.get_appointment("appt-1")
        assert stored is not None and stored.payment_id == "pay_1"

    async def test_list_filters_and_orders(self, database: Database, booked: Appointment) -> None:
        store = SqlAppointmentStore(database)
        await store.insert_appointment(
            booked.model_copy(update={"appointment_id": "appt-2", "time": dt.time(11, 0)})
        )
        await store.insert_appointment(booked)
        await store.insert_appointment(
            booked.model_copy(
                update={
                    "appointment_id": "appt-3",
                    "date": dt.date(2026, 2, 23),
                    "status": AppointmentStatus.COMPLETED,
                }
            )
        )

        everything = await store.list_appointments(doctor_id="doc-1")
        upcoming = await store.list_appointments(
            patient_id="pat-1", statuses={AppointmentStatus.UPCOMING}
        )
        recent = await store.list_appointments(from_date=dt.date(2026, 3, 1))

        assert [a.appointment_id for a in everything] == ["appt-3", "appt-1", "appt-2"]
        assert [a.appointment_id for a in upcoming] == ["appt-1", "appt-2"]
        assert [a.appointment_id for a in recent] == ["appt-1", "appt-2"]

    async def test_cancellation_record_written_with_the_cancel(
        self, database: Database, booked: Appointment
    ) -> None:
        store = SqlAppointmentStore(database)
        await store.insert_appointment(booked)
        cancelled_at = dt.datetime(2026, 3, 1, 13, 0)
        cancelled = booked.model_copy(
            update={"status": AppointmentStatus.CANCELLED, "cancelled_at": cancelled_at}
        )
        record = CancellationRecord(
            appointment_id="appt-1",
            cancelled_by=CancelledBy.ADMIN,
            reason=CancellationReason.ACCOUNT_SUSPENDED,
            cancelled_at=cancelled_at,
        )

        assert await store.update_appointment(
            cancelled,
            expected_status=AppointmentStatus.UPCOMING,
            expected_payment_status=PaymentStatus.NONE,
            cancellation=record,
        )
        # A stale compare-and-set writes neither the row nor a second record.
        assert not await store.update_appointment(
            cancelled,
            expected_status=AppointmentStatus.UPCOMING,
            expected_payment_status=PaymentStatus.NONE,
            cancellation=record,
        )

        assert await store.list_cancellations("appt-1") == [record]
        assert await store.list_cancellations("other") == []

    async def test_health_check(self, database: Database) -> None:
        assert await SqlAppointmentStore(database).health_check() is True


class TestSqlPaymentOrderStore:
    async def test_save_and_settle(self, database: Database) -> None:
        store = SqlPaymentOrderStore(database)
        order = PaymentOrder(
            order_id="order_1",
            appointment_id="appt-1",
            amount=500,
            currency="INR",
            created_at=dt.datetime(2026, 3, 1, 12, 0),
        )
        await store.save_order(order)
        settled = order.model_copy(
            update={
                "status": PaymentOrderStatus.PAID,
                "payment_id": "pay_1",
                "settled_at": dt.datetime(2026, 3, 1, 12, 5),
            }
        )

        assert await store.update_order(settled, expected_status=PaymentOrderStatus.CREATED)
        assert not await store.update_order(settled, expected_status=PaymentOrderStatus.CREATED)
        assert await store.get_order("order_1") == settled
        assert await store.get_order("missing") is None


class TestBookingOverSql:
    async def test_reserve_pay_cancel(
        self,
        database: Database,
        doctor: Doctor,
        patient: Patient,
        clock: FixedClock,
        visit: VisitDetails,
    ) -> None:
        profiles = SqlProfileStore(database)
        await profiles.save_doctor(doctor)
        await profiles.save_patient(patient)
        service = assemble_booking_service(
            profiles=profiles,
            appointments=SqlAppointmentStore(database),
            orders=SqlPaymentOrderStore(database),
            gateway=FakePaymentGateway(),
            notifier=RecordingNotifier(),
            clock=clock,
            key_secret=KEY_SECRET,
        )
        today = clock.now().date()

        appointment = await service.reserve("doc-1", "pat-1", today, dt.time(10, 0), visit)
        with pytest.raises(SlotConflictError):
            await service.reserve("doc-1", "pat-1", today, dt.time(10, 0), visit)

        order = await service.create_payment_order(appointment.appointment_id)
        verification = await service.verify_payment(
            order.order_id, "pay_1", compute_signature(KEY_SECRET, order.order_id, "pay_1")
        )
        assert verification.verified is True

        cancelled = await service.cancel(appointment.appointment_id, "pat-1")
        assert cancelled.status is AppointmentStatus.CANCELLED
        assert cancelled.payment_status is PaymentStatus.PAID

        slots = await service.available_slots("doc-1", today)
        assert dt.time(10, 0) in [s.time for s in slots if s.date == today]
