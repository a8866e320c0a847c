import asyncio
from typing import Any

import resend
from loguru import logger

from intelliconsult.domain.models import NotificationEvent

_SUBJECTS: dict[NotificationEvent, str] = {
    NotificationEvent.APPOINTMENT_BOOKED: "Your IntelliConsult appointment is booked",
    NotificationEvent.APPOINTMENT_CANCELLED: "Your IntelliConsult appointment was cancelled",
    NotificationEvent.PAYMENT_CONFIRMED: "Payment received for your IntelliConsult appointment",
    NotificationEvent.ACCOUNT_SUSPENDED: "IntelliConsult account suspended",
}


def render_email(event: NotificationEvent, context: dict[str, Any]) -> tuple[str, str]:
    """Build ``(subject, html)`` for a notification."""
    subject = _SUBJECTS[event]
    if event is NotificationEvent.ACCOUNT_SUSPENDED:
        body = (
            "<p>Your IntelliConsult account has been temporarily suspended by our "
            "administrative team. Upcoming appointments have been cancelled.</p>"
            "<p>If you believe this is an error, please contact support.</p>"
        )
    elif event is NotificationEvent.APPOINTMENT_CANCELLED:
        body = (
            f"<p>Your appointment on {context.get('date', '')} at {context.get('time', '')} "
            "has been cancelled.</p>"
        )
    elif event is NotificationEvent.PAYMENT_CONFIRMED:
        body = (
            f"<p>We received your payment of {context.get('amount', '')} "
            f"{context.get('currency', '')} for appointment "
            f"{context.get('appointment_id', '')}.</p>"
        )
    else:
        body = (
            f"<p>Your appointment on {context.get('date', '')} at {context.get('time', '')} "
            "is booked.</p>"
        )
    return subject, f"<div style=\"font-family: Arial, sans-serif;\">{body}</div>"


class ResendEmailNotifier:
    """Sends notification e-mails through Resend.

    The Resend SDK is synchronous, so each send runs in a worker thread.
    """

    def __init__(self, api_key: str, from_address: str) -> None:
        resend.api_key = api_key
        self._from_address = from_address

    async def notify(
        self, event: NotificationEvent, recipient: str, context: dict[str, Any]
    ) -> None:
        subject, html = render_email(event, context)
        params: resend.Emails.SendParams = {
            "from": self._from_address,
            "to": [recipient],
            "subject": subject,
            "html": html,
        }
        response = await asyncio.to_thread(resend.Emails.send, params)
        logger.info("Sent {} e-mail: id={}", event.value, response.get("id"))

    async def close(self) -> None:
        pass


class LoggingNotifier:
    """Notifier used when no e-mail provider is configured."""

    async def notify(
        self, event: NotificationEvent, recipient: str, context: dict[str, Any]
    ) -> None:
        logger.info(
            "Notification {} queued without a provider (context keys: {})",
            event.value,
            sorted(context),
        )

    async def close(self) -> None:
        pass
