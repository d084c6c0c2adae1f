import asyncio
import smtplib

import pytest

from portfolio.services import mailer as mailer_module
from portfolio.services.mailer import (
    ContactMailer,
    MailConfigurationError,
    MailDeliveryError,
    MailRuntimeConfig,
    build_subject,
    sanitize_email_address,
    sanitize_header_value,
)


def _config(**overrides) -> MailRuntimeConfig:
    values = {
        "host": "smtp.relay.local",
        "port": 25,
        "use_tls": False,
        "timeout_seconds": 5.0,
        "to_email": "me@example.com",
        "from_email": "noreply@example.com",
        "bcc_email": None,
        "subject_prefix": "[Contact]",
    }
    values.update(overrides)
    return MailRuntimeConfig(**values)


class FakeSMTP:
    instances: list["FakeSMTP"] = []
    offers_starttls = True

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *_exc):
        return False

    def ehlo(self):
        return (250, b"ok")

    def has_extn(self, name):
        return name == "starttls" and self.offers_starttls

    def starttls(self):
        self.started_tls = True

    def send_message(self, msg, to_addrs=None):
        self.sent.append((msg, to_addrs))


@pytest.fixture(autouse=True)
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(mailer_module.smtplib, "SMTP_SSL", FakeSMTP)
    return FakeSMTP


def test_header_sanitizers_strip_line_breaks():
    assert sanitize_header_value(" hello\r\nBcc: victim@example.com ") == "hello Bcc: victim@example.com"
    assert sanitize_email_address('"Eve" <eve@example.com>\r\nX: y') == "Eve eve@example.com X y"
    assert len(sanitize_email_address("a" * 400 + "@example.com")) == 254


def test_build_subject_applies_prefix_and_caps_length():
    assert build_subject("Hello\nthere", "[Contact]") == "[Contact] Hello there"
    assert build_subject("Hello", "") == "Hello"
    assert len(build_subject("x" * 500, "[Contact]")) == len("[Contact] ") + 200
    assert len(build_subject("x" * 500, "p" * 100)) == 240


def test_build_message_headers_and_body():
    msg = ContactMailer(_config()).build_message("visitor@example.com", "Hi", "Body text")

    assert msg["From"] == "noreply@example.com"
    assert msg["To"] == "me@example.com"
    assert msg["Reply-To"] == "visitor@example.com"
    assert msg["Subject"] == "[Contact] Hi"
    assert msg["X-Contact-Form"] == "true"
    assert msg["Bcc"] is None
    assert msg.get_payload(decode=True).decode("utf-8") == "From: visitor@example.com\n\nBody text"


def test_build_message_caps_text():
    msg = ContactMailer(_config()).build_message("v@example.com", "Hi", "x" * 30_000)
    body = msg.get_payload(decode=True).decode("utf-8")
    assert body.endswith("x" * 20_000)
    assert "x" * 20_001 not in body


def test_send_uses_starttls_and_envelope_bcc(fake_smtp):
    mailer = ContactMailer(_config(bcc_email="archive@example.com"))
    message_id = asyncio.run(mailer.send_contact_email("visitor@example.com", "Hi", "Body"))

    (server,) = fake_smtp.instances
    assert server.host == "smtp.relay.local"
    assert server.started_tls is True
    msg, recipients = server.sent[0]
    assert recipients == ["me@example.com", "archive@example.com"]
    assert msg["Bcc"] is None
    assert message_id == msg["Message-ID"]


def test_send_without_starttls_support(fake_smtp, monkeypatch):
    monkeypatch.setattr(FakeSMTP, "offers_starttls", False)
    asyncio.run(ContactMailer(_config()).send_contact_email("visitor@example.com", "Hi", "Body"))
    assert fake_smtp.instances[0].started_tls is False


def test_missing_configuration_raises():
    mailer = ContactMailer(_config(host=None, to_email=None))
    with pytest.raises(MailConfigurationError) as exc_info:
        asyncio.run(mailer.send_contact_email("visitor@example.com", "Hi", "Body"))
    assert "SMTP_HOST" in str(exc_info.value)
    assert "CONTACT_TO_EMAIL" in str(exc_info.value)


def test_relay_errors_become_delivery_errors(monkeypatch):
    def refuse(self, msg, to_addrs=None):
        raise smtplib.SMTPRecipientsRefused({"me@example.com": (550, b"relay denied")})

    monkeypatch.setattr(FakeSMTP, "send_message", refuse)
    with pytest.raises(MailDeliveryError):
        asyncio.run(ContactMailer(_config()).send_contact_email("visitor@example.com", "Hi", "Body"))
