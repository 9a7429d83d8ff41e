"""SMTP delivery of transactional auth emails."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import quote

from app.core.config import EmailConfig
from app.core.logging import redact_email

LOGGER = logging.getLogger(__name__)


def describe_duration(seconds: int) -> str:
    """Largest whole unit for link-expiry copy, e.g. ``24 hours`` or ``30 minutes``."""
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            count = seconds // size
            return f"{count} {unit}" if count == 1 else f"{count} {unit}s"
    return f"{seconds} seconds"


class EmailSender:
    """Render and send verification/reset emails.

    When SMTP is not configured the message is logged instead of sent, which
    keeps local development working without a mail server. SMTP errors are
    raised so the outbox can retry the task.
    """

    def __init__(
        self,
        config: EmailConfig,
        *,
        verification_ttl_seconds: int = 24 * 60 * 60,
        reset_ttl_seconds: int = 60 * 60,
    ) -> None:
        self._config = config
        self._verification_ttl = verification_ttl_seconds
        self._reset_ttl = reset_ttl_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self._config.smtp_host and self._config.from_email)

    def send(self, to_email: str, subject: str, text_body: str, html_body: str) -> None:
        if not self.is_configured:
            LOGGER.info("email_dev_mode to=%s subject=%s", redact_email(to_email), subject)
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self._config.from_name} <{self._config.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        if self._config.smtp_use_tls:
            server: smtplib.SMTP = smtplib.SMTP(
                self._config.smtp_host, self._config.smtp_port, timeout=30
            )
        else:
            server = smtplib.SMTP_SSL(
                self._config.smtp_host, self._config.smtp_port, context=context, timeout=30
            )
        with server:
            if self._config.smtp_use_tls:
                server.starttls(context=context)
            if self._config.smtp_user and self._config.smtp_password:
                server.login(self._config.smtp_user, self._config.smtp_password)
            server.sendmail(self._config.from_email, to_email, msg.as_string())
        LOGGER.info("email_sent to=%s subject=%s", redact_email(to_email), subject)

    def send_verification(self, to_email: str, token: str) -> None:
        link = f"{self._config.frontend_url}/verify-email?token={quote(token)}"
        expiry = f"The link expires in {describe_duration(self._verification_ttl)}."
        self.send(
            to_email,
            "Verify your ReviewGuro email",
            f"Confirm your email address by opening this link:\n{link}\n\n{expiry}",
            f'<p>Confirm your email address:</p><p><a href="{link}">Verify email</a></p>'
            f"<p>{expiry}</p>",
        )

    def send_password_reset(self, to_email: str, token: str) -> None:
        link = f"{self._config.frontend_url}/reset-password?token={quote(token)}"
        notice = (
            f"The link expires in {describe_duration(self._reset_ttl)}. "
            "Ignore this email if you did not ask for it."
        )
        self.send(
            to_email,
            "Reset your ReviewGuro password",
            f"Reset your password by opening this link:\n{link}\n\n{notice}",
            f'<p>Reset your password:</p><p><a href="{link}">Choose a new password</a></p>'
            f"<p>{notice}</p>",
        )
