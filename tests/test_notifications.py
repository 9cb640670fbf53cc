"""Notification backend tests."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest

from crystalfootball.betslips.types import Betslip
from crystalfootball.notifications import email_backend, service, whatsapp_backend


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, duration: float) -> None:
        self.sleeps.append(duration)
        self.now += duration


def test_rate_limiter_waits_when_limit_exceeded() -> None:
    clock = FakeClock()
    limiter = whatsapp_backend.RateLimiter(
        max_events=2,
        window_seconds=10,
        time_fn=clock.time,
        sleep_fn=clock.sleep,
    )
    limiter.wait_for_slot()
    clock.now += 1
    limiter.wait_for_slot()
    clock.now += 1
    limiter.wait_for_slot()
    assert pytest.approx(clock.sleeps[-1], rel=0.01) == 8.0


def _whatsapp_settings(**overrides) -> SimpleNamespace:
    data = {
        "whatsapp_token": "token",
        "whatsapp_phone_number_id": "1234567890",
        "whatsapp_api_base": "https://graph.facebook.com/v18.0",
        "whatsapp_rate_limit_per_minute": 100,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


class DummyResponse:
    def raise_for_status(self) -> None:
        return None

    def json(self) -> dict:
        return {"messages": [{"id": "wamid.test"}]}


class DummyClient:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    def post(self, url: str, json: dict) -> DummyResponse:
        self.sent.append({"url": url, **json})
        return DummyResponse()


def test_whatsapp_backend_posts_templates(monkeypatch) -> None:
    monkeypatch.setattr(whatsapp_backend, "get_settings", lambda: _whatsapp_settings())
    dummy_client = DummyClient()
    backend = whatsapp_backend.WhatsAppBackend(
        client=dummy_client,
        rate_limiter=whatsapp_backend.RateLimiter(0),
    )
    sent = backend.send("payment_pending", ["+96170123456", "+447700900123", "not-a-number"], {"amount": "$20"})
    assert sent == 2
    assert len(dummy_client.sent) == 2
    assert all(msg["url"] == "https://graph.facebook.com/v18.0/1234567890/messages" for msg in dummy_client.sent)
    assert dummy_client.sent[0]["template"]["name"] == "payment_pending"
    assert dummy_client.sent[0]["template"]["components"][0]["parameters"] == [{"type": "text", "text": "$20"}]


def test_whatsapp_backend_logs_when_disabled(monkeypatch, caplog) -> None:
    monkeypatch.setattr(whatsapp_backend, "get_settings", lambda: _whatsapp_settings(whatsapp_token=""))
    backend = whatsapp_backend.WhatsAppBackend()
    assert backend.client is None
    with caplog.at_level("INFO"):
        assert backend.send_template("+96170123456", "subscription_expiring") is True
    assert "[WhatsApp disabled]" in caplog.text


def test_whatsapp_backend_reports_http_failure(monkeypatch) -> None:
    monkeypatch.setattr(whatsapp_backend, "get_settings", lambda: _whatsapp_settings())
    backend = whatsapp_backend.WhatsAppBackend(client=DummyClient(), rate_limiter=whatsapp_backend.RateLimiter(0))

    def failing_post(_payload: dict) -> dict:
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(backend, "_post", failing_post)
    assert backend.send_template("+96170123456", "payment_pending") is False


def test_is_valid_e164() -> None:
    assert whatsapp_backend.is_valid_e164("+96170123456")
    assert not whatsapp_backend.is_valid_e164("0096170123456")
    assert not whatsapp_backend.is_valid_e164(None)


def test_email_backend_logs_without_host(monkeypatch, caplog) -> None:
    settings = SimpleNamespace(email_host="", email_from="Crystal Football <no-reply@example.com>")
    monkeypatch.setattr(email_backend, "get_settings", lambda: settings)
    backend = email_backend.EmailBackend()
    with caplog.at_level("INFO"):
        backend.send("Hello", "Body", ["fan@example.com"])
    assert "[Email disabled]" in caplog.text


class RecordingEmail:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []

    def send(self, subject: str, body: str, recipients) -> None:
        if self.fail:
            raise OSError("smtp down")
        self.sent.append({"subject": subject, "body": body, "recipients": list(recipients)})


class RecordingWhatsApp:
    def __init__(self) -> None:
        self.sent: list[tuple] = []

    def send(self, template_name: str, recipients, parameters=None) -> int:
        recipients = list(recipients)
        self.sent.append((template_name, recipients, parameters))
        return len(recipients)


def _service(monkeypatch, email=None, admin_numbers: str = "") -> service.NotificationService:
    settings = SimpleNamespace(
        dashboard_url="https://crystal.example/dashboard",
        renew_url="https://crystal.example/packages",
        admin_whatsapp_numbers=[n for n in admin_numbers.split(",") if n],
    )
    monkeypatch.setattr(service, "get_settings", lambda: settings)
    return service.NotificationService(email_backend=email or RecordingEmail(), whatsapp_backend=RecordingWhatsApp())


def test_settlement_digest(monkeypatch) -> None:
    notifier = _service(monkeypatch)
    bets = [
        Betslip(
            title="Milan vs Roma",
            home_team="Milan",
            away_team="Roma",
            selection="Over 2.5",
            odds_decimal=2.0,
            stake_units=1.0,
            status="settled",
            outcome="won",
        ),
        Betslip(title="Porto vs Braga", odds_decimal=1.8, stake_units=2.0, status="settled", outcome="lost"),
    ]
    assert notifier.send_settlement_digest(bets, ["fan@example.com"]) is True
    message = notifier.email_backend.sent[0]
    assert message["subject"] == "Crystal Football | 2 betslip(s) settled"
    assert "Over 2.5 @ 2.00 -> WON (+1.00u)" in message["body"]
    assert "Net: -1.00 units" in message["body"]
    assert notifier.send_settlement_digest([], ["fan@example.com"]) is False


def test_expiry_reminder_uses_both_channels(monkeypatch) -> None:
    notifier = _service(monkeypatch)
    end_at = datetime(2024, 5, 20, tzinfo=timezone.utc)
    assert notifier.send_expiry_reminder("fan@example.com", "Monthly VIP", end_at, 1, phone="+96170123456")
    assert notifier.email_backend.sent[0]["subject"] == "Crystal Football Subscription Expires in 1 day"
    assert notifier.whatsapp_backend.sent == [
        ("subscription_expiring", ["+96170123456"], {"expiration_date": "2024-05-20"})
    ]


def test_email_failures_are_logged_not_raised(monkeypatch, caplog) -> None:
    notifier = _service(monkeypatch, email=RecordingEmail(fail=True))
    with caplog.at_level("ERROR"):
        assert notifier.send_payment_received("fan@example.com", "Monthly VIP", 7) is False
    assert "smtp down" in caplog.text


def test_admin_payment_alert(monkeypatch) -> None:
    notifier = _service(monkeypatch, admin_numbers="+96170000001,+96170000002")
    assert notifier.notify_admins_payment_pending(7, 2500, "user-1") == 2
    template, phones, params = notifier.whatsapp_backend.sent[0]
    assert template == "payment_pending"
    assert phones == ["+96170000001", "+96170000002"]
    assert params == {"order_id": "7", "amount": "$25", "user_id": "user-1"}


def test_admin_payment_alert_without_numbers(monkeypatch) -> None:
    notifier = _service(monkeypatch)
    assert notifier.notify_admins_payment_pending(7, 2500, "user-1") == 0
    assert notifier.whatsapp_backend.sent == []
