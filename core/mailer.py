"""
core/mailer.py -- SMTP delivery of account verification emails.

Registration schedules send_verification_email() as a background task after
the 201 response is written, so delivery problems never reach the client.
This module therefore never raises for delivery failures; it reports them
through the return value and the log.

Retry policy:
  Only transient connection failures are retried -- timeouts, refused or
  reset connections, and servers dropping the session. Authentication
  failures and other SMTP protocol errors stop immediately; retrying a wrong
  password only gets the sender rate-limited. Delay before retry n (1-based)
  is EMAIL_RETRY_BASE_DELAY_SECONDS * 2**n, capped at
  EMAIL_RETRY_MAX_DELAY_SECONDS.

Fallback:
  When SMTP is not configured, or every attempt failed, the verification
  link is logged so an operator can hand it over manually.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
import ssl
from email.message import EmailMessage

from core.config import Settings

logger = logging.getLogger("itums.mailer")

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    TimeoutError,
    ConnectionError,
    smtplib.SMTPServerDisconnected,
    smtplib.SMTPConnectError,
)

_SUBJECT = "Verify Your Email Address - IT User Management"


class Mailer:
    """Verification email sender bound to one Settings instance."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return self._settings.smtp_enabled

    def verification_url(self, token: str) -> str:
        return f"{self._settings.frontend_url.rstrip('/')}/verify/{token}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send_verification_email(self, email: str, name: str, token: str) -> bool:
        """Send the verification link to email. Returns True once delivered."""
        url = self.verification_url(token)
        if not self.enabled:
            logger.info("SMTP not configured; verification link for %s: %s", email, url)
            return False

        message = self._build_verification_message(email, name, url)
        attempts = self._settings.email_max_retries + 1
        for attempt in range(attempts):
            try:
                await asyncio.to_thread(self._deliver, message)
            except _TRANSIENT_ERRORS as exc:
                if attempt == attempts - 1:
                    logger.error("Verification email to %s failed after %d attempt(s): %s", email, attempts, exc)
                    break
                delay = self._retry_delay(attempt + 1)
                logger.warning(
                    "SMTP connection error (attempt %d/%d): %s. Retrying in %.2fs",
                    attempt + 1,
                    attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
            except (smtplib.SMTPException, OSError) as exc:
                logger.error("Verification email to %s failed, not retrying: %s", email, exc)
                break
            else:
                logger.info("Verification email sent to %s", email)
                return True

        logger.warning("VERIFICATION URL (email could not be sent) for %s: %s", email, url)
        return False

    def check_connection(self) -> bool:
        """Open an SMTP session, authenticate, and NOOP. Used by manage.py check-email."""
        if not self.enabled:
            logger.warning("SMTP_HOST / EMAIL_FROM not configured")
            return False
        try:
            with self._connect() as smtp:
                smtp.noop()
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP configuration check failed: %s", exc)
            return False
        logger.info("SMTP configuration is valid (%s:%d)", self._settings.smtp_host, self._settings.smtp_port)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _retry_delay(self, retry: int) -> float:
        base = self._settings.email_retry_base_delay_seconds * (2**retry)
        return min(base, self._settings.email_retry_max_delay_seconds)

    def _link_lifetime_hours(self) -> int:
        return max(1, self._settings.verification_token_expire_seconds // 3600)

    def _connect(self) -> smtplib.SMTP:
        s = self._settings
        smtp = smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds)
        try:
            if s.smtp_use_tls:
                smtp.starttls(context=ssl.create_default_context())
            if s.smtp_username:
                smtp.login(s.smtp_username, s.smtp_password)
        except BaseException:
            smtp.close()
            raise
        return smtp

    def _deliver(self, message: EmailMessage) -> None:
        with self._connect() as smtp:
            smtp.send_message(message)

    def _build_verification_message(self, email: str, name: str, url: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = _SUBJECT
        message["From"] = self._settings.email_sender
        message["To"] = email
        message.set_content(
            f"Hi {name},\n\n"
            "Thank you for registering. Please verify your email address by visiting this link:\n\n"
            f"{url}\n\n"
            f"This link expires in {self._link_lifetime_hours()} hours. "
            "If you did not create an account, ignore this email.\n"
        )
        safe_name = html.escape(name)
        safe_url = html.escape(url, quote=True)
        message.add_alternative(
            f"<p>Hello <strong>{safe_name}</strong>,</p>"
            "<p>Thank you for registering. Please verify your email address:</p>"
            f'<p><a href="{safe_url}">Verify Email Address</a></p>'
            f"<p>Or paste this link into your browser:<br>{safe_url}</p>"
            f"<p>This link expires in {self._link_lifetime_hours()} hours.</p>",
            subtype="html",
        )
        return message
