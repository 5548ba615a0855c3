import smtplib

import pytest
from sqlalchemy.exc import OperationalError

from bsaas_auth.core import context
from bsaas_auth.services.audit import AuditService
from bsaas_auth.services.email import SmtpEmailSender, redact_email
from bsaas_auth.services.ports import EmailDeliveryError
from conftest import InMemoryAuditLogRepository


@pytest.mark.asyncio
async def test_audit_record_strips_secrets_and_uses_request_context():
    repository = InMemoryAuditLogRepository()
    audit = AuditService(repository)
    context.set_request_id("req-1")
    context.set_client_ip("203.0.113.9")
    try:
        await audit.record("login.success", user_id="u1", session_id="s1", password="x", token="y", provider="google")
    finally:
        context.clear_context()

    entry = repository.entries[0]
    assert entry["event"] == "login.success"
    assert entry["user_id"] == "u1"
    assert entry["session_id"] == "s1"
    assert entry["ip_address"] == "203.0.113.9"
    assert entry["request_id"] == "req-1"
    assert entry["details"] == {"provider": "google"}


@pytest.mark.asyncio
async def test_audit_persist_failure_does_not_propagate():
    class BrokenRepository:
        async def append(self, event, **fields):
            raise OperationalError("INSERT", {}, Exception("db down"))

    await AuditService(BrokenRepository()).record("logout", user_id="u1")


@pytest.mark.asyncio
async def test_audit_without_repository_only_logs():
    await AuditService().record("token.refresh", user_id="u1")


def test_redact_email():
    assert redact_email("jane@example.com") == "ja***@example.com"
    assert redact_email("no-at-sign") == "redacted"


@pytest.mark.asyncio
async def test_smtp_sender_dev_mode_skips_delivery(monkeypatch):
    from bsaas_auth.core.settings import settings

    config = settings.model_copy(update={"smtp_host": None})
    sender = SmtpEmailSender(config)

    def fail_send(*args, **kwargs):  # pragma: no cover - must not be reached
        raise AssertionError("SMTP used in dev mode")

    monkeypatch.setattr(sender, "_send", fail_send)
    await sender.send_mail("user@example.com", "Subject", "Body")


@pytest.mark.asyncio
async def test_smtp_sender_wraps_transport_errors(monkeypatch):
    from bsaas_auth.core.settings import settings

    config = settings.model_copy(update={"smtp_host": "smtp.example.com", "email_from": "noreply@example.com"})
    sender = SmtpEmailSender(config)

    def broken_send(to, subject, body):
        raise smtplib.SMTPServerDisconnected("gone")

    monkeypatch.setattr(sender, "_send", broken_send)
    with pytest.raises(EmailDeliveryError):
        await sender.send_mail("user@example.com", "Subject", "Body")


def test_json_formatter_redacts_secret_extras():
    import json
    import logging

    from bsaas_auth.core.logging import REDACTED, JsonFormatter, RequestContextFilter

    record = logging.LogRecord("bsaas_auth.test", logging.INFO, __file__, 1, "signed in", (), None)
    record.refresh_token = "eyJ-secret"
    record.session_id = "s1"
    RequestContextFilter().filter(record)

    payload = json.loads(JsonFormatter("audit").format(record))

    assert payload["message"] == "signed in"
    assert payload["stream"] == "audit"
    assert payload["service"] == "bsaas-auth"
    assert payload["refresh_token"] == REDACTED
    assert payload["session_id"] == "s1"
    assert payload["request_id"] == "-"
