import hashlib
import hmac

from loguru import logger

from intelliconsult.booking.ports import (
    AppointmentStoreProtocol,
    ClockProtocol,
    PaymentGatewayProtocol,
    PaymentOrderStoreProtocol,
)
from intelliconsult.domain.exceptions import (
    AppointmentNotFoundError,
    AppointmentNotPayableError,
    PaymentGatewayError,
    SignatureMismatchError,
    StorageUnavailableError,
)
from intelliconsult.domain.models import (
    Appointment,
    AppointmentStatus,
    PaymentOrder,
    PaymentOrderStatus,
    PaymentStatus,
    PaymentVerification,
)

_MAX_SETTLE_ATTEMPTS = 3


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Hex HMAC-SHA256 over ``order_id|payment_id``, as the gateway signs callbacks."""
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class PaymentSettlement:
    """Opens payment orders for appointments and settles verified callbacks."""

    def __init__(
        self,
        appointments: AppointmentStoreProtocol,
        orders: PaymentOrderStoreProtocol,
        gateway: PaymentGatewayProtocol,
        clock: ClockProtocol,
        *,
        key_secret: str,
        currency: str = "INR",
    ) -> None:
        if not key_secret:
            raise ValueError("A payment key secret is required to verify callbacks")
        self._appointments = appointments
        self._orders = orders
        self._gateway = gateway
        self._clock = clock
        self._key_secret = key_secret
        self._currency = currency

    @property
    def currency(self) -> str:
        return self._currency

    async def create_order(self, appointment_id: str) -> PaymentOrder:
        """Open a gateway order for the fee snapshotted at booking.

        The amount never comes from the caller. Re-creating an order for an
        appointment that is still ``pending`` is allowed so an abandoned
        checkout can be retried.
        """
        appointment = await self._get_appointment(appointment_id)
        self._ensure_payable(appointment)

        amount = appointment.consultation_fee_at_booking
        try:
            gateway_order = await self._gateway.create_order(
                amount, self._currency, receipt=f"appt_{appointment_id}"
            )
        except PaymentGatewayError:
            raise
        except Exception as exc:
            raise PaymentGatewayError(f"Order creation failed: {exc}") from exc

        if gateway_order.amount != amount or gateway_order.currency != self._currency:
            raise PaymentGatewayError(
                f"Gateway order {gateway_order.order_id} does not match the requested amount"
            )

        order = PaymentOrder(
            order_id=gateway_order.order_id,
            appointment_id=appointment_id,
            amount=amount,
            currency=self._currency,
            created_at=self._clock.now(),
        )
        await self._orders.save_order(order)

        for _ in range(_MAX_SETTLE_ATTEMPTS):
            pending = appointment.model_copy(
                update={"payment_status": PaymentStatus.PENDING, "order_id": order.order_id}
            )
            if await self._appointments.update_appointment(
                pending,
                expected_status=AppointmentStatus.UPCOMING,
                expected_payment_status=appointment.payment_status,
            ):
                break
            appointment = await self._get_appointment(appointment_id)
            self._ensure_payable(appointment)
        else:
            raise StorageUnavailableError(f"Appointment {appointment_id} kept changing")

        logger.info(
            "Payment order {} created for appointment {}: amount={} {}",
            order.order_id,
            appointment_id,
            amount,
            self._currency,
        )
        return order

    async def verify_payment(
        self, order_id: str, payment_id: str, signature: str
    ) -> PaymentVerification:
        """Check a gateway callback against the stored order and settle it.

        The signature is recomputed from the stored order id, so a signature
        minted for some other order never verifies. A verified payment for an
        appointment that is no longer ``upcoming`` (or was already paid through
        another order) is flagged for reconciliation instead of being applied.
        """
        order = await self._orders.get_order(order_id)
        if order is None:
            logger.warning("Payment callback for unknown order {}", order_id)
            return PaymentVerification(order_id=order_id, verified=False)

        try:
            self._check_signature(order, payment_id, signature)
        except SignatureMismatchError as exc:
            logger.warning("Rejected payment callback, possible tampering: {}", exc)
            return PaymentVerification(
                order_id=order_id, verified=False, appointment_id=order.appointment_id
            )

        if order.status is not PaymentOrderStatus.CREATED:
            return self._replayed(order, payment_id)

        appointment = await self._appointments.get_appointment(order.appointment_id)
        now = self._clock.now()
        for _ in range(_MAX_SETTLE_ATTEMPTS):
            if appointment is None or not self._can_settle(appointment, order):
                return await self._flag_for_reconciliation(order, payment_id, signature)

            paid = appointment.model_copy(
                update={
                    "payment_status": PaymentStatus.PAID,
                    "paid_at": now,
                    "order_id": order.order_id,
                    "payment_id": payment_id,
                }
            )
            if await self._appointments.update_appointment(
                paid,
                expected_status=AppointmentStatus.UPCOMING,
                expected_payment_status=appointment.payment_status,
            ):
                break
            appointment = await self._appointments.get_appointment(order.appointment_id)
        else:
            raise StorageUnavailableError(f"Appointment {order.appointment_id} kept changing")

        settled = order.model_copy(
            update={
                "status": PaymentOrderStatus.PAID,
                "payment_id": payment_id,
                "receipt_signature": signature,
                "settled_at": now,
            }
        )
        if not await self._orders.update_order(settled, expected_status=PaymentOrderStatus.CREATED):
            current = await self._orders.get_order(order_id)
            if current is not None:
                return self._replayed(current, payment_id)

        logger.info("Payment {} settled appointment {}", payment_id, order.appointment_id)
        return PaymentVerification(
            order_id=order_id, verified=True, appointment_id=order.appointment_id
        )

    def _check_signature(self, order: PaymentOrder, payment_id: str, signature: str) -> None:
        if not payment_id or not signature:
            raise SignatureMismatchError(order.order_id)
        expected = compute_signature(self._key_secret, order.order_id, payment_id)
        if not hmac.compare_digest(expected.encode(), signature.encode()):
            raise SignatureMismatchError(order.order_id)

    def _replayed(self, order: PaymentOrder, payment_id: str) -> PaymentVerification:
        """Answer a repeated callback for an order that was already consumed."""
        if order.payment_id != payment_id:
            logger.warning(
                "Order {} already consumed by another payment; rejecting {}",
                order.order_id,
                payment_id,
            )
            return PaymentVerification(
                order_id=order.order_id, verified=False, appointment_id=order.appointment_id
            )
        return PaymentVerification(
            order_id=order.order_id,
            verified=True,
            appointment_id=order.appointment_id,
            reconciliation_required=order.status is PaymentOrderStatus.RECONCILIATION_REQUIRED,
        )

    async def _flag_for_reconciliation(
        self, order: PaymentOrder, payment_id: str, signature: str
    ) -> PaymentVerification:
        flagged = order.model_copy(
            update={
                "status": PaymentOrderStatus.RECONCILIATION_REQUIRED,
                "payment_id": payment_id,
                "receipt_signature": signature,
                "settled_at": self._clock.now(),
            }
        )
        if not await self._orders.update_order(flagged, expected_status=PaymentOrderStatus.CREATED):
            current = await self._orders.get_order(order.order_id)
            if current is not None:
                return self._replayed(current, payment_id)

        logger.warning(
            "Payment {} for order {} cannot settle appointment {}; flagged for refund",
            payment_id,
            order.order_id,
            order.appointment_id,
        )
        return PaymentVerification(
            order_id=order.order_id,
            verified=True,
            appointment_id=order.appointment_id,
            reconciliation_required=True,
        )

    @staticmethod
    def _can_settle(appointment: Appointment, order: PaymentOrder) -> bool:
        if appointment.status is not AppointmentStatus.UPCOMING:
            return False
        if appointment.payment_status is PaymentStatus.PAID:
            return appointment.order_id == order.order_id
        return True

    @staticmethod
    def _ensure_payable(appointment: Appointment) -> None:
        if appointment.status is not AppointmentStatus.UPCOMING:
            raise AppointmentNotPayableError(
                f"appointment is {appointment.status.value}", appointment.appointment_id
            )
        if appointment.payment_status is PaymentStatus.PAID:
            raise AppointmentNotPayableError(
                "appointment is already paid", appointment.appointment_id
            )
        if appointment.consultation_fee_at_booking <= 0:
            raise AppointmentNotPayableError("no fee is due", appointment.appointment_id)

    async def _get_appointment(self, appointment_id: str) -> Appointment:
        appointment = await self._appointments.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment
