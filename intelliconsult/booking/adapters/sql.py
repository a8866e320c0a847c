import datetime as dt
from collections.abc import Collection
from typing import Any

from loguru import logger
from sqlalchemy import JSON, Date, DateTime, Index, String, Time, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from intelliconsult.domain.exceptions import SlotConflictError, StorageUnavailableError
from intelliconsult.domain.models import (
    Appointment,
    AppointmentStatus,
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

# At most one slot-holding appointment per (doctor, date, time).
_HOLDS_SLOT = text("status != 'cancelled'")


class Base(DeclarativeBase):
    pass


class DoctorRow(Base):
    __tablename__ = "doctors"

    doctor_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str] = mapped_column(String(200), default="")
    specialization: Mapped[str] = mapped_column(String(100), default="")
    consultation_fee: Mapped[int] = mapped_column(default=0)
    approved: Mapped[bool] = mapped_column(default=False)
    active: Mapped[bool] = mapped_column(default=True)
    working_hours: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    blocked_times: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)


class PatientRow(Base):
    __tablename__ = "patients"

    patient_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str] = mapped_column(String(200), default="")
    active: Mapped[bool] = mapped_column(default=True)


class AppointmentRow(Base):
    __tablename__ = "appointments"

    appointment_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    doctor_id: Mapped[str] = mapped_column(String(64), index=True)
    patient_id: Mapped[str] = mapped_column(String(64), index=True)
    date: Mapped[dt.date] = mapped_column(Date)
    time: Mapped[dt.time] = mapped_column(Time)
    consultation_fee_at_booking: Mapped[int]
    status: Mapped[str] = mapped_column(String(20))
    payment_status: Mapped[str] = mapped_column(String(20))
    visit: Mapped[dict[str, Any]] = mapped_column(JSON)
    booked_at: Mapped[dt.datetime] = mapped_column(DateTime)
    cancelled_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    paid_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "date",
            "time",
            unique=True,
            sqlite_where=_HOLDS_SLOT,
            postgresql_where=_HOLDS_SLOT,
        ),
    )


class CancellationRow(Base):
    __tablename__ = "appointment_cancellations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    appointment_id: Mapped[str] = mapped_column(String(32), index=True)
    cancelled_by: Mapped[str] = mapped_column(String(20))
    requester_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reason: Mapped[str] = mapped_column(String(40))
    cancelled_at: Mapped[dt.datetime] = mapped_column(DateTime)


class PaymentOrderRow(Base):
    __tablename__ = "payment_orders"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    appointment_id: Mapped[str] = mapped_column(String(32), index=True)
    amount: Mapped[int]
    currency: Mapped[str] = mapped_column(String(3))
    status: Mapped[str] = mapped_column(String(30))
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    receipt_signature: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime)
    settled_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)


class Database:
    """Async engine and session factory shared by the SQL stores."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.engine = create_async_engine(url, echo=echo, pool_pre_ping=True)
        self.sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured")

    async def health_check(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            logger.warning("Database health check failed: {}", exc)
            return False

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")


def _appointment_values(appointment: Appointment) -> dict[str, Any]:
    return {
        "appointment_id": appointment.appointment_id,
        "doctor_id": appointment.doctor_id,
        "patient_id": appointment.patient_id,
        "date": appointment.date,
        "time": appointment.time,
        "consultation_fee_at_booking": appointment.consultation_fee_at_booking,
        "status": appointment.status.value,
        "payment_status": appointment.payment_status.value,
        "visit": appointment.visit.model_dump(mode="json"),
        "booked_at": appointment.booked_at,
        "cancelled_at": appointment.cancelled_at,
        "completed_at": appointment.completed_at,
        "paid_at": appointment.paid_at,
        "order_id": appointment.order_id,
        "payment_id": appointment.payment_id,
    }


def _to_appointment(row: AppointmentRow) -> Appointment:
    return Appointment(
        appointment_id=row.appointment_id,
        doctor_id=row.doctor_id,
        patient_id=row.patient_id,
        date=row.date,
        time=row.time,
        consultation_fee_at_booking=row.consultation_fee_at_booking,
        status=AppointmentStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        visit=VisitDetails.model_validate(row.visit),
        booked_at=row.booked_at,
        cancelled_at=row.cancelled_at,
        completed_at=row.completed_at,
        paid_at=row.paid_at,
        order_id=row.order_id,
        payment_id=row.payment_id,
    )


def _order_values(order: PaymentOrder) -> dict[str, Any]:
    return {
        "order_id": order.order_id,
        "appointment_id": order.appointment_id,
        "amount": order.amount,
        "currency": order.currency,
        "status": order.status.value,
        "payment_id": order.payment_id,
        "receipt_signature": order.receipt_signature,
        "created_at": order.created_at,
        "settled_at": order.settled_at,
    }


def _to_order(row: PaymentOrderRow) -> PaymentOrder:
    return PaymentOrder(
        order_id=row.order_id,
        appointment_id=row.appointment_id,
        amount=row.amount,
        currency=row.currency,
        status=PaymentOrderStatus(row.status),
        payment_id=row.payment_id,
        receipt_signature=row.receipt_signature,
        created_at=row.created_at,
        settled_at=row.settled_at,
    )


class SqlProfileStore:
    """Doctor and patient profiles in the tables shared with the profile service.

    ``save_doctor``/``save_patient`` exist for seeding; the booking engine
    only reads.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get_doctor(self, doctor_id: str) -> Doctor | None:
        try:
            async with self._db.sessions() as session:
                row = await session.get(DoctorRow, doctor_id)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Doctor lookup failed: {exc}") from exc
        if row is None:
            return None
        return Doctor.model_validate(
            {
                "doctor_id": row.doctor_id,
                "full_name": row.full_name,
                "email": row.email,
                "specialization": row.specialization,
                "consultation_fee": row.consultation_fee,
                "approved": row.approved,
                "active": row.active,
                "working_hours": row.working_hours or {},
                "blocked_times": row.blocked_times or [],
            }
        )

    async def get_patient(self, patient_id: str) -> Patient | None:
        try:
            async with self._db.sessions() as session:
                row = await session.get(PatientRow, patient_id)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Patient lookup failed: {exc}") from exc
        if row is None:
            return None
        return Patient(
            patient_id=row.patient_id, full_name=row.full_name, email=row.email, active=row.active
        )

    async def save_doctor(self, doctor: Doctor) -> None:
        data = doctor.model_dump(mode="json")
        async with self._db.sessions() as session, session.begin():
            await session.merge(DoctorRow(**data))

    async def save_patient(self, patient: Patient) -> None:
        async with self._db.sessions() as session, session.begin():
            await session.merge(PatientRow(**patient.model_dump()))


class SqlAppointmentStore:
    """Appointment ledger storage.

    Slot exclusivity comes from the partial unique index on
    ``(doctor_id, date, time)``, so it holds across processes; a losing insert
    surfaces as ``SlotConflictError``.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def insert_appointment(self, appointment: Appointment) -> Appointment:
        try:
            async with self._db.sessions() as session, session.begin():
                session.add(AppointmentRow(**_appointment_values(appointment)))
        except IntegrityError as exc:
            raise SlotConflictError(
                appointment.doctor_id, appointment.date, appointment.time
            ) from exc
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Appointment insert failed: {exc}") from exc
        return appointment

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        try:
            async with self._db.sessions() as session:
                row = await session.get(AppointmentRow, appointment_id)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Appointment lookup failed: {exc}") from exc
        return _to_appointment(row) if row is not None else None

    async def list_appointments(
        self,
        *,
        doctor_id: str | None = None,
        patient_id: str | None = None,
        statuses: Collection[AppointmentStatus] | None = None,
        from_date: dt.date | None = None,
    ) -> list[Appointment]:
        stmt = select(AppointmentRow)
        if doctor_id is not None:
            stmt = stmt.where(AppointmentRow.doctor_id == doctor_id)
        if patient_id is not None:
            stmt = stmt.where(AppointmentRow.patient_id == patient_id)
        if statuses is not None:
            stmt = stmt.where(AppointmentRow.status.in_([s.value for s in statuses]))
        if from_date is not None:
            stmt = stmt.where(AppointmentRow.date >= from_date)
        stmt = stmt.order_by(AppointmentRow.date, AppointmentRow.time)

        try:
            async with self._db.sessions() as session:
                rows = (await session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Appointment query failed: {exc}") from exc
        return [_to_appointment(row) for row in rows]

    async def update_appointment(
        self,
        appointment: Appointment,
        *,
        expected_status: AppointmentStatus,
        expected_payment_status: PaymentStatus,
        cancellation: CancellationRecord | None = None,
    ) -> bool:
        values = _appointment_values(appointment)
        del values["appointment_id"]
        stmt = (
            update(AppointmentRow)
            .where(
                AppointmentRow.appointment_id == appointment.appointment_id,
                AppointmentRow.status == expected_status.value,
                AppointmentRow.payment_status == expected_payment_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._db.sessions() as session, session.begin():
                result = await session.execute(stmt)
                written = result.rowcount == 1  # type: ignore[attr-defined]
                if written and cancellation is not None:
                    session.add(
                        CancellationRow(
                            appointment_id=cancellation.appointment_id,
                            cancelled_by=cancellation.cancelled_by.value,
                            requester_id=cancellation.requester_id,
                            reason=cancellation.reason.value,
                            cancelled_at=cancellation.cancelled_at,
                        )
                    )
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Appointment update failed: {exc}") from exc
        return written

    async def list_cancellations(self, appointment_id: str) -> list[CancellationRecord]:
        stmt = (
            select(CancellationRow)
            .where(CancellationRow.appointment_id == appointment_id)
            .order_by(CancellationRow.id)
        )
        try:
            async with self._db.sessions() as session:
                rows = (await session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Cancellation query failed: {exc}") from exc
        return [
            CancellationRecord(
                appointment_id=row.appointment_id,
                cancelled_by=CancelledBy(row.cancelled_by),
                requester_id=row.requester_id,
                reason=CancellationReason(row.reason),
                cancelled_at=row.cancelled_at,
            )
            for row in rows
        ]

    async def health_check(self) -> bool:
        return await self._db.health_check()

    async def close(self) -> None:
        await self._db.close()


class SqlPaymentOrderStore:
    def __init__(self, database: Database) -> None:
        self._db = database

    async def save_order(self, order: PaymentOrder) -> None:
        try:
            async with self._db.sessions() as session, session.begin():
                session.add(PaymentOrderRow(**_order_values(order)))
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Payment order insert failed: {exc}") from exc

    async def get_order(self, order_id: str) -> PaymentOrder | None:
        try:
            async with self._db.sessions() as session:
                row = await session.get(PaymentOrderRow, order_id)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Payment order lookup failed: {exc}") from exc
        return _to_order(row) if row is not None else None

    async def update_order(
        self, order: PaymentOrder, *, expected_status: PaymentOrderStatus
    ) -> bool:
        values = _order_values(order)
        del values["order_id"]
        stmt = (
            update(PaymentOrderRow)
            .where(
                PaymentOrderRow.order_id == order.order_id,
                PaymentOrderRow.status == expected_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._db.sessions() as session, session.begin():
                result = await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Payment order update failed: {exc}") from exc
        return result.rowcount == 1  # type: ignore[attr-defined]
