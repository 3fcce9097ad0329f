"""
Tests for the delivery transports and email templates, with the
network libraries replaced by fakes.
"""

import json
import smtplib

import pytest
from pywebpush import WebPushException

from app.core.config import settings
from app.schemas.jobs import PushSubscriptionInfo
from app.transports import (
    PushSubscriptionGoneError,
    SmtpEmailTransport,
    TransportError,
    WebPushTransport,
    create_smtp_transport,
)
from app.utils.email_templates import render_email


class FakeResponse:
    def __init__(self, status_code: int):
        self.status_code = status_code
        self.text = ""


SUBSCRIPTION = PushSubscriptionInfo(
    endpoint="https://fcm.googleapis.com/fcm/send/device-1",
    p256dh_key="p256dh-key",
    auth_key="auth-key",
)


# ============================================================================
# Web push
# ============================================================================

class TestWebPushTransport:
    @pytest.fixture
    def transport(self):
        return WebPushTransport(vapid_private_key="private-key", vapid_claims_email="ops@example.com", ttl=3600)

    @pytest.mark.asyncio
    async def test_sends_with_vapid_claims(self, transport, monkeypatch):
        calls = []
        monkeypatch.setattr("app.transports.webpush.webpush", lambda **kwargs: calls.append(kwargs))

        await transport.send(SUBSCRIPTION, json.dumps({"title": "Hi"}))

        assert len(calls) == 1
        assert calls[0]["subscription_info"] == {
            "endpoint": SUBSCRIPTION.endpoint,
            "keys": {"p256dh": "p256dh-key", "auth": "auth-key"},
        }
        assert calls[0]["vapid_claims"] == {"sub": "mailto:ops@example.com"}
        assert calls[0]["ttl"] == 3600

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 410])
    async def test_expired_endpoint(self, transport, monkeypatch, status_code):
        def gone(**kwargs):
            raise WebPushException("Push failed", response=FakeResponse(status_code))

        monkeypatch.setattr("app.transports.webpush.webpush", gone)

        with pytest.raises(PushSubscriptionGoneError) as exc_info:
            await transport.send(SUBSCRIPTION, "{}")
        assert exc_info.value.endpoint == SUBSCRIPTION.endpoint

    @pytest.mark.asyncio
    async def test_other_failures_are_retryable(self, transport, monkeypatch):
        def unavailable(**kwargs):
            raise WebPushException("Push failed", response=FakeResponse(503))

        monkeypatch.setattr("app.transports.webpush.webpush", unavailable)

        with pytest.raises(TransportError) as exc_info:
            await transport.send(SUBSCRIPTION, "{}")
        assert not isinstance(exc_info.value, PushSubscriptionGoneError)


# ============================================================================
# SMTP
# ============================================================================

class FakeSMTP:
    instances = []

    def __init__(self, server, port, timeout=None):
        self.server = server
        self.port = port
        self.timeout = timeout
        self.messages = []
        self.logged_in = None
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, msg):
        self.messages.append(msg)


class TestSmtpEmailTransport:
    @pytest.fixture(autouse=True)
    def fake_smtp(self, monkeypatch):
        FakeSMTP.instances = []
        monkeypatch.setattr("app.transports.smtp.smtplib.SMTP", FakeSMTP)

    @pytest.mark.asyncio
    async def test_sends_multipart_digest(self):
        transport = SmtpEmailTransport("smtp.example.com", 587, "noreply@example.com", "secret")

        await transport.send(
            "sam@example.com",
            "Your daily digest - 1 updates",
            "notification-digest",
            {"user_name": "Sam", "frequency": "daily", "total": 1, "groups": {"REMINDER": [{"title": "Study at 5"}]}},
        )

        smtp = FakeSMTP.instances[0]
        assert (smtp.server, smtp.port) == ("smtp.example.com", 587)
        assert smtp.logged_in == ("noreply@example.com", "secret")
        msg = smtp.messages[0]
        assert msg["To"] == "sam@example.com"
        assert [part.get_content_type() for part in msg.get_payload()] == ["text/plain", "text/html"]

    @pytest.mark.asyncio
    async def test_connection_uses_configured_timeout(self, monkeypatch):
        monkeypatch.setattr(settings, "SMTP_SERVER", "smtp.example.com")
        monkeypatch.setattr(settings, "SMTP_EMAIL", "noreply@example.com")
        monkeypatch.setattr(settings, "SMTP_TIMEOUT", 7.5)
        transport = create_smtp_transport()

        await transport.send("sam@example.com", "Hello", "notification", {"title": "t", "message": "m"})

        assert FakeSMTP.instances[0].timeout == 7.5

    @pytest.mark.asyncio
    async def test_smtp_error_becomes_transport_error(self, monkeypatch):
        def refuse(server, port, timeout=None):
            raise smtplib.SMTPConnectError(421, "Service not available")

        monkeypatch.setattr("app.transports.smtp.smtplib.SMTP", refuse)
        transport = SmtpEmailTransport("smtp.example.com", 587, "noreply@example.com")

        with pytest.raises(TransportError):
            await transport.send("sam@example.com", "Hello", "notification", {"title": "t", "message": "m"})


# ============================================================================
# Templates
# ============================================================================

class TestEmailTemplates:
    def test_digest_groups_by_type(self):
        html, text = render_email("notification-digest", {
            "user_name": "Sam",
            "frequency": "weekly",
            "total": 3,
            "groups": {
                "PEER_MATCH": [{"title": "Study buddy found"}],
                "REMINDER": [{"title": "Quiz tomorrow"}, {"title": "Essay due"}],
            },
        })

        assert "Your weekly digest" in html
        assert "Peer Match (1)" in html
        assert "Reminder (2)" in text
        assert "  - Essay due" in text
        assert "3 unread updates" in text

    def test_notification_escapes_content(self):
        html, text = render_email("notification", {"title": "Hi", "message": "<script>alert(1)</script>"})

        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "<script>alert(1)</script>" in text

    def test_relative_links_use_frontend_url(self, monkeypatch):
        monkeypatch.setattr(settings, "FRONTEND_URL", "https://app.example.com/")

        html, text = render_email("notification", {
            "title": "New reply",
            "message": "Someone answered.",
            "action_url": "/threads/5",
            "action_text": "View thread",
        })

        assert 'href="https://app.example.com/threads/5"' in html
        assert "View thread: https://app.example.com/threads/5" in text

    def test_unknown_template(self):
        with pytest.raises(ValueError):
            render_email("password-reset", {})
