class BookingError(Exception):
    """Base exception for all booking engine errors."""


class StorageUnavailableError(BookingError):
    """Raised when the appointment or profile store is unreachable or failing."""


class ValidationError(BookingError):
    """Raised when a request is rejected before touching the ledger."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class DoctorNotFoundError(ValidationError):
    def __init__(self, doctor_id: str) -> None:
        self.doctor_id = doctor_id
        super().__init__(f"Doctor not found: {doctor_id}")


class PatientNotFoundError(ValidationError):
    def __init__(self, patient_id: str) -> None:
        self.patient_id = patient_id
        super().__init__(f"Patient not found: {patient_id}")


class SlotConflictError(BookingError):
    """Raised when the requested slot is already held by another appointment.

    Retryable: the caller should offer a different slot.
    """

    def __init__(self, doctor_id: str, date: object, time: object) -> None:
        self.doctor_id = doctor_id
        self.date = date
        self.time = time
        super().__init__(f"Slot already taken: doctor={doctor_id}, date={date}, time={time}")


class AppointmentNotFoundError(BookingError):
    def __init__(self, appointment_id: str) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Appointment not found: {appointment_id}")


class InvalidTransitionError(BookingError):
    """Raised on a state-machine violation such as completing a cancelled appointment."""

    def __init__(self, appointment_id: str, current: str, target: str) -> None:
        self.appointment_id = appointment_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move appointment {appointment_id} from {current} to {target}")


class NotAuthorizedError(BookingError):
    """Raised when the requester is not allowed to act on an appointment."""

    def __init__(self, reason: str, appointment_id: str | None = None) -> None:
        self.reason = reason
        self.appointment_id = appointment_id
        super().__init__(reason)


class AppointmentNotPayableError(BookingError):
    """Raised when a payment order cannot be created for an appointment."""

    def __init__(self, reason: str, appointment_id: str | None = None) -> None:
        self.reason = reason
        self.appointment_id = appointment_id
        super().__init__(f"Appointment is not payable: {reason}")


class SignatureMismatchError(BookingError):
    """Raised when a gateway callback signature does not match the stored order."""

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Payment signature mismatch for order {order_id}")


class PaymentGatewayError(BookingError):
    """Raised when the payment gateway cannot create an order."""
