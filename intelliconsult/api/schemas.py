import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from intelliconsult.booking.adapters.datetime_helpers import parse_slot_time, time_to_slot_label
from intelliconsult.domain.models import Appointment, PartyType, Slot


class SlotResponse(BaseModel):
    date: dt.date
    time: str

    @classmethod
    def from_slot(cls, slot: Slot) -> "SlotResponse":
        return cls(date=slot.date, time=time_to_slot_label(slot.time))


class ReserveRequest(BaseModel):
    """Booking wizard submission. Unknown triage fields are passed through."""

    model_config = ConfigDict(extra="allow")

    doctor_id: str
    patient_id: str
    date: dt.date
    time: dt.time
    patient_name_for_visit: str
    primary_reason: str
    symptoms: list[str] = Field(default_factory=list)

    @field_validator("time", mode="before")
    @classmethod
    def _parse_label(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_slot_time(value)
        return value

    def visit_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "patient_name_for_visit": self.patient_name_for_visit,
            "primary_reason": self.primary_reason,
            "symptoms": self.symptoms,
        }
        fields.update(self.model_extra or {})
        return fields


class AppointmentResponse(BaseModel):
    appointment_id: str
    doctor_id: str
    patient_id: str
    date: dt.date
    time: str
    status: str
    payment_status: str
    consultation_fee_at_booking: int
    classification: str

    @classmethod
    def from_appointment(
        cls, appointment: Appointment, classification: str
    ) -> "AppointmentResponse":
        return cls(
            appointment_id=appointment.appointment_id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            date=appointment.date,
            time=time_to_slot_label(appointment.time),
            status=appointment.status.value,
            payment_status=appointment.payment_status.value,
            consultation_fee_at_booking=appointment.consultation_fee_at_booking,
            classification=classification,
        )


class CancelRequest(BaseModel):
    requester_id: str


class CompleteRequest(BaseModel):
    doctor_id: str


class PaymentOrderRequest(BaseModel):
    appointment_id: str


class PaymentOrderResponse(BaseModel):
    order_id: str
    amount: int
    currency: str


class VerifyPaymentRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str


class VerifyPaymentResponse(BaseModel):
    verified: bool
    reconciliation_required: bool = False
    message: str


class SuspensionRequest(BaseModel):
    party_type: PartyType
    party_id: str


class SuspensionResponse(BaseModel):
    cancelled_count: int
    failed_appointment_ids: list[str]
    complete: bool
