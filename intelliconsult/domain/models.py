import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment. ``completed`` and ``cancelled`` are terminal."""

    UPCOMING = "upcoming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Settlement state of an appointment, additive to its lifecycle status."""

    NONE = "none"
    PENDING = "pending"
    PAID = "paid"


class PaymentOrderStatus(str, Enum):
    CREATED = "created"
    PAID = "paid"
    RECONCILIATION_REQUIRED = "reconciliation_required"


class PartyType(str, Enum):
    DOCTOR = "doctor"
    PATIENT = "patient"


class CancelledBy(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    SYSTEM = "system"


class CancellationReason(str, Enum):
    PATIENT_REQUEST = "patient-request"
    DOCTOR_UNAVAILABLE = "doctor-unavailable"
    ACCOUNT_SUSPENDED = "account-suspended"
    PAYMENT_TIMEOUT = "payment-timeout"
    OTHER = "other"


class VisitClassification(str, Enum):
    UPCOMING = "upcoming"
    PAST = "past"


# Occupied slots block new reservations; cancelled ones free the slot again.
SLOT_HOLDING_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {AppointmentStatus.UPCOMING, AppointmentStatus.COMPLETED}
)


class WorkingDay(BaseModel):
    """Working window for one weekday of a doctor's schedule."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    start: dt.time = dt.time(9, 0)
    end: dt.time = dt.time(17, 0)


class BlockedTime(BaseModel):
    """An ad-hoc block on a single date during which no slots are offered."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    start: dt.time
    end: dt.time
    reason: str = ""

    def covers(self, date: dt.date, time: dt.time) -> bool:
        return self.date == date and self.start <= time < self.end


class Doctor(BaseModel):
    """A doctor profile as seen by the booking engine (read-only)."""

    model_config = ConfigDict(frozen=True)

    doctor_id: str
    full_name: str = ""
    email: str = ""
    specialization: str = ""
    consultation_fee: int = 0
    approved: bool = False
    active: bool = True
    working_hours: dict[str, WorkingDay] = Field(default_factory=dict)
    blocked_times: list[BlockedTime] = Field(default_factory=list)

    @property
    def bookable(self) -> bool:
        """Approved by an admin and not currently suspended."""
        return self.approved and self.active

    def working_day(self, date: dt.date) -> WorkingDay | None:
        day = self.working_hours.get(date.strftime("%A").lower())
        if day is None or not day.enabled:
            return None
        return day


class Patient(BaseModel):
    """A patient profile as seen by the booking engine (read-only)."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    full_name: str = ""
    email: str = ""
    active: bool = True


class Slot(BaseModel):
    """A bookable (date, time) pair."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    time: dt.time

    @property
    def starts_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.time)


class VisitDetails(BaseModel):
    """Visit metadata supplied by the patient.

    Only the name and reason are inspected; any additional triage fields are
    kept as extras and passed through unchanged.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    patient_name_for_visit: str
    primary_reason: str
    symptoms: list[str] = Field(default_factory=list)


class Appointment(BaseModel):
    """A booking in the appointment ledger."""

    model_config = ConfigDict(frozen=True)

    appointment_id: str
    doctor_id: str
    patient_id: str
    date: dt.date
    time: dt.time
    consultation_fee_at_booking: int
    status: AppointmentStatus = AppointmentStatus.UPCOMING
    payment_status: PaymentStatus = PaymentStatus.NONE
    visit: VisitDetails
    booked_at: dt.datetime
    cancelled_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    paid_at: dt.datetime | None = None
    order_id: str | None = None
    payment_id: str | None = None

    @property
    def slot(self) -> Slot:
        return Slot(date=self.date, time=self.time)

    @property
    def holds_slot(self) -> bool:
        return self.status in SLOT_HOLDING_STATUSES


class CancellationRecord(BaseModel):
    """Audit entry written for every real ``upcoming -> cancelled`` transition."""

    model_config = ConfigDict(frozen=True)

    appointment_id: str
    cancelled_by: CancelledBy
    requester_id: str | None = None
    reason: CancellationReason
    cancelled_at: dt.datetime


class PaymentOrder(BaseModel):
    """One payment attempt for an appointment, identified by the gateway's order id."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    appointment_id: str
    amount: int
    currency: str
    status: PaymentOrderStatus = PaymentOrderStatus.CREATED
    payment_id: str | None = None
    receipt_signature: str | None = None
    created_at: dt.datetime
    settled_at: dt.datetime | None = None


class GatewayOrder(BaseModel):
    """The gateway's reply to an order creation request."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    amount: int
    currency: str


class PaymentVerification(BaseModel):
    """Outcome of checking a gateway callback."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    verified: bool
    appointment_id: str | None = None
    reconciliation_required: bool = False


class CascadeReport(BaseModel):
    """Result of cancelling a suspended party's upcoming appointments."""

    model_config = ConfigDict(frozen=True)

    party_type: PartyType
    party_id: str
    cancelled_count: int = 0
    failed_appointment_ids: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_appointment_ids


class NotificationEvent(str, Enum):
    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    PAYMENT_CONFIRMED = "payment_confirmed"
    ACCOUNT_SUSPENDED = "account_suspended"
