import datetime as dt

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from intelliconsult.api.schemas import (
    AppointmentResponse,
    CancelRequest,
    CompleteRequest,
    PaymentOrderRequest,
    PaymentOrderResponse,
    ReserveRequest,
    SlotResponse,
    SuspensionRequest,
    SuspensionResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from intelliconsult.booking.service import BookingService
from intelliconsult.domain.models import Appointment, VisitDetails

appointments_router = APIRouter(prefix="/appointments", tags=["Appointments"])
payments_router = APIRouter(prefix="/payments", tags=["Payments"])
admin_router = APIRouter(prefix="/admin", tags=["Admin"])
health_router = APIRouter(tags=["Health"])

PAYMENT_NOT_CONFIRMED = "Payment could not be confirmed, please retry or contact support."


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.service


def _to_response(service: BookingService, appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse.from_appointment(
        appointment, service.classify(appointment).value
    )


@appointments_router.get("/available-slots/{doctor_id}", response_model=list[SlotResponse])
async def get_available_slots(
    doctor_id: str,
    from_date: dt.date | None = Query(None),
    service: BookingService = Depends(get_booking_service),
):
    """Open slots for a doctor over the booking horizon, in chronological order."""
    slots = await service.available_slots(doctor_id, from_date)
    return [SlotResponse.from_slot(slot) for slot in slots]


@appointments_router.post(
    "", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED
)
async def create_appointment(
    body: ReserveRequest,
    service: BookingService = Depends(get_booking_service),
):
    appointment = await service.reserve(
        body.doctor_id,
        body.patient_id,
        body.date,
        body.time,
        VisitDetails(**body.visit_fields()),
    )
    return _to_response(service, appointment)


@appointments_router.put("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    body: CancelRequest,
    service: BookingService = Depends(get_booking_service),
):
    """Patient self-cancel. Cancelling twice returns the cancelled appointment."""
    appointment = await service.cancel(appointment_id, body.requester_id)
    return _to_response(service, appointment)


@appointments_router.put("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: str,
    body: CompleteRequest,
    service: BookingService = Depends(get_booking_service),
):
    appointment = await service.complete(appointment_id, body.doctor_id)
    return _to_response(service, appointment)


@appointments_router.get("/patient/{patient_id}", response_model=list[AppointmentResponse])
async def list_patient_appointments(
    patient_id: str,
    service: BookingService = Depends(get_booking_service),
):
    appointments = await service.appointments_for_patient(patient_id)
    return [_to_response(service, a) for a in appointments]


@appointments_router.get("/doctor/{doctor_id}", response_model=list[AppointmentResponse])
async def list_doctor_appointments(
    doctor_id: str,
    service: BookingService = Depends(get_booking_service),
):
    appointments = await service.appointments_for_doctor(doctor_id)
    return [_to_response(service, a) for a in appointments]


@payments_router.post("/orders", response_model=PaymentOrderResponse)
async def create_payment_order(
    body: PaymentOrderRequest,
    service: BookingService = Depends(get_booking_service),
):
    order = await service.create_payment_order(body.appointment_id)
    return PaymentOrderResponse(
        order_id=order.order_id, amount=order.amount, currency=order.currency
    )


@payments_router.post("/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    body: VerifyPaymentRequest,
    service: BookingService = Depends(get_booking_service),
):
    """Confirm a checkout callback. A rejected callback answers 400 and leaves state untouched."""
    verification = await service.verify_payment(body.order_id, body.payment_id, body.signature)
    if not verification.verified:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"verified": False, "retryable": True, "message": PAYMENT_NOT_CONFIRMED},
        )
    if verification.reconciliation_required:
        message = "Payment received but the appointment is no longer active; a refund will follow."
    else:
        message = "Payment confirmed."
    return VerifyPaymentResponse(
        verified=True,
        reconciliation_required=verification.reconciliation_required,
        message=message,
    )


@admin_router.post("/suspensions", response_model=SuspensionResponse)
async def suspend_party(
    body: SuspensionRequest,
    service: BookingService = Depends(get_booking_service),
):
    """Cancel every upcoming appointment of a party that was just suspended.

    The profile flag itself is flipped by the caller before this runs. An
    incomplete report can be retried; already cancelled appointments are skipped.
    """
    report = await service.suspension_cascade(body.party_type, body.party_id)
    return SuspensionResponse(
        cancelled_count=report.cancelled_count,
        failed_appointment_ids=report.failed_appointment_ids,
        complete=report.complete,
    )


@health_router.get("/health")
async def health(service: BookingService = Depends(get_booking_service)):
    healthy = await service.health_check()
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ok" if healthy else "unavailable"},
    )
