"""SMTP relay transport for contact form messages.

The relay is expected to accept unauthenticated mail from this server, so no
login is attempted. Implicit TLS is used when SMTP_SECURE is set or the port is
465; otherwise STARTTLS is negotiated when the relay offers it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from email.mime.text import MIMEText
from email.utils import make_msgid
import logging
import re
import smtplib
import time
from typing import Optional

from ..config import settings
from ..metrics import CONTACT_EMAILS_TOTAL

logger = logging.getLogger("portfolio.mailer")

MAX_TEXT_CHARS = 20_000
MAX_SUBJECT_CHARS = 200
MAX_PREFIXED_SUBJECT_CHARS = 240
MAX_ADDRESS_CHARS = 254

_LINE_BREAKS = re.compile(r"[\r\n]+")
_ADDRESS_UNSAFE = re.compile(r"[<>()\[\]\\,;:\"']")


class MailDeliveryError(RuntimeError):
    """Base mail delivery error."""


class MailConfigurationError(MailDeliveryError):
    """Raised when the SMTP relay or addresses are not configured."""


class MailTimeoutError(MailDeliveryError):
    """Raised when the relay does not answer in time."""


def sanitize_header_value(value: str) -> str:
    return _LINE_BREAKS.sub(" ", value or "").strip()


def sanitize_email_address(value: str) -> str:
    return _ADDRESS_UNSAFE.sub("", sanitize_header_value(value))[:MAX_ADDRESS_CHARS]


def build_subject(raw: str, prefix: str = "") -> str:
    base = sanitize_header_value(raw)[:MAX_SUBJECT_CHARS]
    cleaned_prefix = sanitize_header_value(prefix)
    prefixed = f"{cleaned_prefix} {base}" if cleaned_prefix else base
    return prefixed[:MAX_PREFIXED_SUBJECT_CHARS]


@dataclass(frozen=True)
class MailRuntimeConfig:
    host: Optional[str]
    port: Optional[int]
    use_tls: bool
    timeout_seconds: float
    to_email: Optional[str]
    from_email: Optional[str]
    bcc_email: Optional[str]
    subject_prefix: str

    def validate(self) -> None:
        missing = [
            name
            for name, value in (
                ("SMTP_HOST", self.host),
                ("SMTP_PORT", self.port),
                ("CONTACT_TO_EMAIL", self.to_email),
                ("CONTACT_FROM_EMAIL", self.from_email),
            )
            if not value
        ]
        if missing:
            raise MailConfigurationError(f"{', '.join(missing)} not set")


class ContactMailer:
    def __init__(self, cfg: MailRuntimeConfig) -> None:
        self._cfg = cfg

    def build_message(self, reply_to: str, subject: str, text: str) -> MIMEText:
        cfg = self._cfg
        reply_address = sanitize_email_address(reply_to)
        body = f"From: {reply_address}\n\n{(text or '')[:MAX_TEXT_CHARS]}"

        msg = MIMEText(body, "plain", "utf-8")
        msg["From"] = sanitize_header_value(cfg.from_email or "")
        msg["To"] = sanitize_header_value(cfg.to_email or "")
        msg["Reply-To"] = reply_address
        msg["Subject"] = build_subject(subject, cfg.subject_prefix)
        msg["Message-ID"] = make_msgid()
        msg["X-Contact-Form"] = "true"
        return msg

    def _recipients(self) -> list[str]:
        recipients = [sanitize_header_value(self._cfg.to_email or "")]
        if self._cfg.bcc_email:
            recipients.append(sanitize_header_value(self._cfg.bcc_email))
        return recipients

    def _open_connection(self) -> smtplib.SMTP:
        cfg = self._cfg
        if cfg.use_tls:
            return smtplib.SMTP_SSL(cfg.host, cfg.port, timeout=cfg.timeout_seconds)

        server = smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout_seconds)
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls()
            server.ehlo()
        return server

    def _send_sync(self, msg: MIMEText) -> str:
        with self._open_connection() as server:
            # Bcc is passed as an envelope recipient only, never as a header.
            server.send_message(msg, to_addrs=self._recipients())
        return msg["Message-ID"]

    async def send_contact_email(self, reply_to: str, subject: str, text: str) -> str:
        self._cfg.validate()
        msg = self.build_message(reply_to, subject, text)

        started = time.monotonic()
        try:
            message_id = await asyncio.wait_for(
                asyncio.to_thread(self._send_sync, msg),
                timeout=self._cfg.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            CONTACT_EMAILS_TOTAL.labels(status="timeout").inc()
            logger.warning(
                "SMTP relay timeout",
                extra={"event": "contact_email_timeout", "reason": "deadline_exceeded"},
            )
            raise MailTimeoutError("SMTP relay timed out") from exc
        except (smtplib.SMTPException, OSError) as exc:
            CONTACT_EMAILS_TOTAL.labels(status="error").inc()
            logger.exception(
                "Contact email delivery failed",
                extra={
                    "event": "contact_email_failed",
                    "reason": exc.__class__.__name__,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )
            raise MailDeliveryError("SMTP relay rejected the message") from exc

        CONTACT_EMAILS_TOTAL.labels(status="sent").inc()
        logger.info(
            "Contact email sent",
            extra={
                "event": "contact_email_sent",
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return message_id


def get_mailer() -> ContactMailer:
    return ContactMailer(
        MailRuntimeConfig(
            host=settings.smtp_host,
            port=settings.smtp_port,
            use_tls=settings.smtp_uses_tls,
            timeout_seconds=settings.smtp_timeout,
            to_email=settings.contact_to_email,
            from_email=settings.contact_from_email,
            bcc_email=settings.contact_bcc_email,
            subject_prefix=settings.contact_subject_prefix,
        )
    )


async def send_contact_email(reply_to: str, subject: str, text: str) -> str:
    """Send a visitor's message through the configured relay; returns the Message-ID."""

    return await get_mailer().send_contact_email(reply_to, subject, text)
