from typing import Any

import pytest
import resend

from intelliconsult.booking.adapters.email import (
    LoggingNotifier,
    ResendEmailNotifier,
    render_email,
)
from intelliconsult.domain.models import NotificationEvent


@pytest.fixture
def sent(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Capture what would be handed to Resend instead of sending it."""
    captured: list[dict[str, Any]] = []

    def fake_send(params: dict[str, Any]) -> dict[str, Any]:
        captured.append(params)
        return {"id": f"email_{len(captured)}"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    return captured


@pytest.fixture
def notifier() -> ResendEmailNotifier:
    return ResendEmailNotifier(api_key="re_test", from_address="IntelliConsult <no-reply@test>")


class TestRenderEmail:
    @pytest.mark.parametrize("event", list(NotificationEvent))
    def test_every_event_has_subject_and_body(self, event: NotificationEvent) -> None:
        subject, html = render_email(event, {})

        assert subject
        assert html.startswith("<div")

    def test_cancellation_mentions_slot(self) -> None:
        _, html = render_email(
            NotificationEvent.APPOINTMENT_CANCELLED, {"date": "2026-03-02", "time": "10:00 AM"}
        )

        assert "2026-03-02" in html
        assert "10:00 AM" in html


class TestResendEmailNotifier:
    @pytest.mark.asyncio
    async def test_sends_message(
        self, notifier: ResendEmailNotifier, sent: list[dict[str, Any]]
    ) -> None:
        await notifier.notify(
            NotificationEvent.PAYMENT_CONFIRMED,
            "ravi@example.com",
            {"amount": 500, "currency": "INR", "appointment_id": "appt-1"},
        )

        assert len(sent) == 1
        assert sent[0]["to"] == ["ravi@example.com"]
        assert sent[0]["from"] == "IntelliConsult <no-reply@test>"
        assert sent[0]["subject"] == render_email(NotificationEvent.PAYMENT_CONFIRMED, {})[0]
        assert "500 INR" in sent[0]["html"]
        assert resend.api_key == "re_test"

    @pytest.mark.asyncio
    async def test_provider_error_propagates(
        self, notifier: ResendEmailNotifier, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def failing_send(params: dict[str, Any]) -> dict[str, Any]:
            raise RuntimeError("rate limited")

        monkeypatch.setattr(resend.Emails, "send", failing_send)

        with pytest.raises(RuntimeError, match="rate limited"):
            await notifier.notify(NotificationEvent.APPOINTMENT_BOOKED, "ravi@example.com", {})


class TestLoggingNotifier:
    @pytest.mark.asyncio
    async def test_accepts_any_event(self) -> None:
        notifier = LoggingNotifier()

        await notifier.notify(NotificationEvent.ACCOUNT_SUSPENDED, "ravi@example.com", {"a": 1})
        await notifier.close()
