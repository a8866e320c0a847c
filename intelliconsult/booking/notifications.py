from typing import Any

from loguru import logger

from intelliconsult.booking.ports import NotifierProtocol
from intelliconsult.domain.models import NotificationEvent


class NotificationDispatcher:
    """Fire-and-forget front for a notifier.

    A failed delivery is logged and dropped; it never undoes the ledger or
    payment change that triggered it.
    """

    def __init__(self, notifier: NotifierProtocol) -> None:
        self._notifier = notifier

    async def send(
        self, event: NotificationEvent, recipient: str, context: dict[str, Any] | None = None
    ) -> bool:
        if not recipient:
            logger.debug("No recipient for {} notification; skipping", event.value)
            return False
        try:
            await self._notifier.notify(event, recipient, context or {})
        except Exception as exc:
            logger.warning("Failed to send {} notification: {}", event.value, exc)
            return False
        return True

    async def close(self) -> None:
        await self._notifier.close()
