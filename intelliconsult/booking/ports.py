import datetime as dt
from abc import ABC, abstractmethod
from collections.abc import Collection
from typing import Any, Protocol

from intelliconsult.domain.models import (
    Appointment,
    AppointmentStatus,
    CancellationRecord,
    CascadeReport,
    Doctor,
    GatewayOrder,
    NotificationEvent,
    PartyType,
    Patient,
    PaymentOrder,
    PaymentOrderStatus,
    PaymentStatus,
    PaymentVerification,
    Slot,
    VisitDetails,
)


class AbstractBookingService(ABC):
    """Abstract base class for the appointment booking and settlement engine."""

    @abstractmethod
    async def available_slots(self, doctor_id: str, from_date: dt.date | None = None) -> list[Slot]:
        """List the slots a doctor can still be booked for.

        Args:
            doctor_id: The doctor's unique ID.
            from_date: First day to consider, or None for today.

        Returns:
            Chronologically sorted slots. Empty if the doctor is suspended or
            fully booked.

        Raises:
            DoctorNotFoundError: If the doctor does not exist.
            StorageUnavailableError: If the store is unreachable.
        """

    @abstractmethod
    async def reserve(
        self,
        doctor_id: str,
        patient_id: str,
        date: dt.date,
        time: dt.time,
        visit: VisitDetails,
    ) -> Appointment:
        """Atomically claim a slot as a new ``upcoming`` appointment.

        Raises:
            ValidationError: If a party is inactive or the slot is not offered.
            SlotConflictError: If another appointment already holds the slot.
            StorageUnavailableError: If the store is unreachable.
        """

    @abstractmethod
    async def cancel(self, appointment_id: str, requester_id: str) -> Appointment:
        """Cancel an appointment on behalf of its patient. Idempotent.

        Raises:
            AppointmentNotFoundError: If the appointment does not exist.
            NotAuthorizedError: If the requester is not the appointment's patient.
            InvalidTransitionError: If the appointment is already completed.
        """

    @abstractmethod
    async def complete(self, appointment_id: str, doctor_id: str) -> Appointment:
        """Mark a visit as completed by its assigned doctor.

        Raises:
            AppointmentNotFoundError: If the appointment does not exist.
            NotAuthorizedError: If the doctor is not assigned to the appointment.
            InvalidTransitionError: If the appointment is not ``upcoming``.
        """

    @abstractmethod
    async def create_payment_order(self, appointment_id: str) -> PaymentOrder:
        """Open a payment order for the fee snapshotted at booking.

        Raises:
            AppointmentNotFoundError: If the appointment does not exist.
            AppointmentNotPayableError: If the appointment cannot take a payment.
            PaymentGatewayError: If the gateway cannot issue an order.
        """

    @abstractmethod
    async def verify_payment(
        self, order_id: str, payment_id: str, signature: str
    ) -> PaymentVerification:
        """Verify a gateway callback and settle the appointment.

        Returns:
            The verification outcome. A bad signature yields ``verified=False``
            rather than an exception.
        """

    @abstractmethod
    async def suspension_cascade(self, party_type: PartyType, party_id: str) -> CascadeReport:
        """Cancel every upcoming appointment of a suspended doctor or patient."""

    @abstractmethod
    async def appointments_for_patient(self, patient_id: str) -> list[Appointment]:
        """All of a patient's appointments, newest first."""

    @abstractmethod
    async def appointments_for_doctor(self, doctor_id: str) -> list[Appointment]:
        """All of a doctor's appointments, oldest first."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the backing store is reachable.

        Returns:
            True if the system is healthy, False otherwise.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by this service."""


class ClockProtocol(Protocol):
    def now(self) -> dt.datetime:
        """Current clinic-local time, timezone-naive."""
        ...


class ProfileStoreProtocol(Protocol):
    """Read-only access to doctor and patient profiles."""

    async def get_doctor(self, doctor_id: str) -> Doctor | None:
        """Fetch a doctor profile."""
        ...

    async def get_patient(self, patient_id: str) -> Patient | None:
        """Fetch a patient profile."""
        ...


class AppointmentStoreProtocol(Protocol):
    """Durable storage for appointments and their cancellation audit trail."""

    async def insert_appointment(self, appointment: Appointment) -> Appointment:
        """Insert a new appointment.

        Must be atomic with respect to the slot: if another appointment holding
        the slot exists, raise ``SlotConflictError`` and insert nothing.
        """
        ...

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        """Fetch an appointment by ID."""
        ...

    async def list_appointments(
        self,
        *,
        doctor_id: str | None = None,
        patient_id: str | None = None,
        statuses: Collection[AppointmentStatus] | None = None,
        from_date: dt.date | None = None,
    ) -> list[Appointment]:
        """List appointments matching every given filter, in chronological order."""
        ...

    async def update_appointment(
        self,
        appointment: Appointment,
        *,
        expected_status: AppointmentStatus,
        expected_payment_status: PaymentStatus,
        cancellation: CancellationRecord | None = None,
    ) -> bool:
        """Replace the stored appointment if its status and payment status are unchanged.

        Args:
            cancellation: Audit record written together with the appointment.
                Either both are stored or neither is.

        Returns:
            True if the write happened, False if the stored state differed.
        """
        ...

    async def list_cancellations(self, appointment_id: str) -> list[CancellationRecord]:
        """Cancellation records for an appointment."""
        ...

    async def health_check(self) -> bool:
        """Check if the store is reachable."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


class PaymentOrderStoreProtocol(Protocol):
    """Storage for payment orders."""

    async def save_order(self, order: PaymentOrder) -> None:
        """Persist a new payment order."""
        ...

    async def get_order(self, order_id: str) -> PaymentOrder | None:
        """Fetch an order by the gateway's order ID."""
        ...

    async def update_order(
        self, order: PaymentOrder, *, expected_status: PaymentOrderStatus
    ) -> bool:
        """Replace the stored order if its status is still ``expected_status``."""
        ...


class PaymentGatewayProtocol(Protocol):
    """Out-of-process payment gateway, used only to open orders."""

    async def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        """Create an order for ``amount`` in the smallest currency unit."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


class NotifierProtocol(Protocol):
    """Delivers notifications to people. Callers never depend on success."""

    async def notify(
        self, event: NotificationEvent, recipient: str, context: dict[str, Any]
    ) -> None:
        """Send a notification about ``event`` to ``recipient``."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...
