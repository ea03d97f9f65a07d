"""
auth/email.py -- Transactional email for verification and password reset.

The session service depends only on the Mailer protocol. SmtpMailer is the
production implementation; tests pass a recording fake.

When SMTP is not configured (SMTP_HOST empty) the mailer runs in dev mode: it
logs that a message was suppressed, with the recipient redacted, and returns.
It never logs the message body because the body carries a capability token.

Sending is best-effort from the service's point of view: the service logs and
continues when a send raises, so a mail outage never blocks registration or
leaks account existence through forgot-password. The app wraps SmtpMailer
in BackgroundMailer so the SMTP round trip happens off the request thread.
"""

from __future__ import annotations

import functools
import logging
import smtplib
import ssl
from concurrent.futures import Future, ThreadPoolExecutor
from email.message import EmailMessage
from typing import Protocol

logger = logging.getLogger("pricecalc.email")


class Mailer(Protocol):
    def send_verification_email(self, to_email: str, token: str) -> None: ...

    def send_password_reset_email(self, to_email: str, token: str) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    """Send mail over SMTP with STARTTLS."""

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        use_tls: bool = True,
        from_email: str = "",
        frontend_url: str = "http://localhost:5173",
        timeout: float = 10.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.use_tls = use_tls
        self.from_email = from_email or smtp_user
        self.frontend_url = frontend_url.rstrip("/")
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send_verification_email(self, to_email: str, token: str) -> None:
        url = f"{self.frontend_url}/verify-email/{token}"
        body = (
            "Welcome to SaaS Pricing Calculator!\n\n"
            "Please confirm your email address by opening the link below:\n\n"
            f"{url}\n\n"
            "If you did not create an account, you can ignore this message.\n"
        )
        self._send(to_email, "Verify your email address", body)

    def send_password_reset_email(self, to_email: str, token: str) -> None:
        url = f"{self.frontend_url}/reset-password/{token}"
        body = (
            "We received a request to reset your password.\n\n"
            "Open the link below to choose a new password. It expires in one hour.\n\n"
            f"{url}\n\n"
            "If you did not request a reset, you can ignore this message.\n"
        )
        self._send(to_email, "Reset your password", body)

    def _send(self, to_email: str, subject: str, body: str) -> None:
        if not self.is_configured:
            logger.info("SMTP not configured; suppressed %r to %s", subject, redact_email(to_email))
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.set_content(body)

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp_user:
                server.login(self.smtp_user, self.smtp_password)
            server.send_message(msg)
        logger.info("Sent %r to %s", subject, redact_email(to_email))


class BackgroundMailer:
    """Hand sends to a worker thread so request latency never depends on SMTP.

    Without this, forgot-password would take measurably longer for existing
    accounts (an SMTP round trip) than for unknown ones.
    """

    def __init__(self, mailer: Mailer, max_workers: int = 2) -> None:
        self._mailer = mailer
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mailer")

    def send_verification_email(self, to_email: str, token: str) -> None:
        self._submit(self._mailer.send_verification_email, to_email, token)

    def send_password_reset_email(self, to_email: str, token: str) -> None:
        self._submit(self._mailer.send_password_reset_email, to_email, token)

    def _submit(self, send, to_email: str, token: str) -> None:
        future = self._executor.submit(send, to_email, token)
        future.add_done_callback(functools.partial(_log_send_failure, to_email))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


def _log_send_failure(to_email: str, future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Email delivery to %s failed: %s", redact_email(to_email), exc)
