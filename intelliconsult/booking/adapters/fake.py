import itertools
from typing import Any

from intelliconsult.booking.adapters.memory import InMemoryAppointmentStore
from intelliconsult.domain.exceptions import StorageUnavailableError
from intelliconsult.domain.models import (
    Appointment,
    AppointmentStatus,
    CancellationRecord,
    GatewayOrder,
    NotificationEvent,
    PaymentStatus,
)


class FakePaymentGateway:
    """In-memory test double for the PaymentGatewayProtocol protocol.

    Issues sequential order ids (``order_fake_1``, ``order_fake_2``, ...).
    Set ``create_error`` to make the next ``create_order`` raise, or
    ``amount_override`` to simulate a gateway echoing a different amount.

    After calls, inspect ``created`` to verify what was sent.
    """

    def __init__(self) -> None:
        self.created: list[tuple[int, str, str]] = []
        self.closed: bool = False

        self.create_error: Exception | None = None
        self.amount_override: int | None = None
        self._ids = itertools.count(1)

    async def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        if self.create_error:
            raise self.create_error
        self.created.append((amount, currency, receipt))
        return GatewayOrder(
            order_id=f"order_fake_{next(self._ids)}",
            amount=self.amount_override if self.amount_override is not None else amount,
            currency=currency,
        )

    async def close(self) -> None:
        self.closed = True


class RecordingNotifier:
    """Notifier that records what it was asked to send.

    Set ``error`` to make every ``notify`` call raise.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[NotificationEvent, str, dict[str, Any]]] = []
        self.error: Exception | None = None
        self.closed: bool = False

    async def notify(
        self, event: NotificationEvent, recipient: str, context: dict[str, Any]
    ) -> None:
        if self.error:
            raise self.error
        self.sent.append((event, recipient, context))

    def events_for(self, recipient: str) -> list[NotificationEvent]:
        return [event for event, to, _ in self.sent if to == recipient]

    async def close(self) -> None:
        self.closed = True


class FlakyAppointmentStore(InMemoryAppointmentStore):
    """In-memory store that fails writes for chosen appointments.

    Add ids to ``failing_updates`` to make their ``update_appointment`` raise
    ``StorageUnavailableError``, or to ``failing_audits`` to make only the
    cancellation record write fail (the appointment is then left unchanged).
    Set ``list_error`` or ``insert_error`` to make the corresponding call raise.
    """

    def __init__(self) -> None:
        super().__init__()
        self.failing_updates: set[str] = set()
        self.failing_audits: set[str] = set()
        self.list_error: Exception | None = None
        self.insert_error: Exception | None = None

    async def insert_appointment(self, appointment: Appointment) -> Appointment:
        if self.insert_error:
            raise self.insert_error
        return await super().insert_appointment(appointment)

    async def list_appointments(self, **filters: Any) -> list[Appointment]:
        if self.list_error:
            raise self.list_error
        return await super().list_appointments(**filters)

    async def update_appointment(
        self,
        appointment: Appointment,
        *,
        expected_status: AppointmentStatus,
        expected_payment_status: PaymentStatus,
        cancellation: CancellationRecord | None = None,
    ) -> bool:
        if appointment.appointment_id in self.failing_updates:
            raise StorageUnavailableError(f"write failed for {appointment.appointment_id}")
        return await super().update_appointment(
            appointment,
            expected_status=expected_status,
            expected_payment_status=expected_payment_status,
            cancellation=cancellation,
        )

    def _record_cancellation(self, record: CancellationRecord) -> None:
        if record.appointment_id in self.failing_audits:
            raise StorageUnavailableError(f"audit write failed for {record.appointment_id}")
        super()._record_cancellation(record)
