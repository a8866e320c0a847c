from typing import Any

import httpx
from loguru import logger

from intelliconsult.domain.exceptions import PaymentGatewayError
from intelliconsult.domain.models import GatewayOrder


class RazorpayGatewayClient:
    """Razorpay client over the REST Orders API.

    Only order creation goes out to Razorpay. Callback signatures are
    verified locally by ``PaymentSettlement``.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        *,
        api_url: str = "https://api.razorpay.com/v1",
        timeout: float = 30,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._client = httpx.AsyncClient(auth=(key_id, key_secret), timeout=timeout)

    async def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        try:
            resp = await self._client.post(
                f"{self._api_url}/orders",
                json={
                    "amount": amount,
                    "currency": currency,
                    "receipt": receipt,
                    "payment_capture": 1,
                },
            )
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Razorpay order request failed: {exc}") from exc

        try:
            data: dict[str, Any] = resp.json()
        except ValueError:
            data = {}

        if resp.is_error:
            error: dict[str, Any] = data.get("error") or {}
            description = error.get("description") or f"HTTP {resp.status_code}"
            raise PaymentGatewayError(f"Razorpay rejected order: {description}")

        order_id = data.get("id")
        if not order_id:
            raise PaymentGatewayError("Razorpay returned no order id")

        logger.info("Razorpay order created: id={}", order_id)
        return GatewayOrder(
            order_id=str(order_id),
            amount=int(data.get("amount", amount)),
            currency=str(data.get("currency", currency)),
        )

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Razorpay client closed")
