from __future__ import annotations

import html
import logging
import smtplib
import ssl
from concurrent.futures import ThreadPoolExecutor
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

from services.errors import MailDeliveryError

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, to: str, subject: str, html_body: str) -> None: ...


def _redact(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    """
    SMTP delivery over STARTTLS or implicit TLS.
    Without SMTP_HOST it only logs the subject (dev mode).
    """

    def __init__(
        self,
        *,
        host: Optional[str] = None,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_email: Optional[str] = None,
        timeout: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email or user
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    def send(self, to: str, subject: str, html_body: str) -> None:
        if not self.is_configured:
            logger.info("SMTP not configured; skipping email %r to %s", subject, _redact(to))
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.user and self.password:
                        server.login(self.user, self.password)
                    server.sendmail(self.from_email, to, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    if self.user and self.password:
                        server.login(self.user, self.password)
                    server.sendmail(self.from_email, to, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"Failed to send email: {exc.__class__.__name__}") from exc
        logger.info("Email %r sent to %s", subject, _redact(to))


def _layout(title: str, body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h2>{title}</h2>{body}</div>"
    )


class EmailService:
    """
    Transactional emails built on a Mailer.

    OTP emails are sent inline and raise on failure, the caller needs them.
    Notifications go through notify(), which never raises and, with
    background=True, runs on a small worker pool.
    """

    def __init__(self, mailer: Mailer, background: bool = True, max_workers: int = 2):
        self.mailer = mailer
        self._executor = ThreadPoolExecutor(max_workers=max_workers) if background else None

    def notify(self, to: str, subject: str, html_body: str) -> None:
        if self._executor is None:
            self._deliver_quietly(to, subject, html_body)
        else:
            self._executor.submit(self._deliver_quietly, to, subject, html_body)

    def _deliver_quietly(self, to: str, subject: str, html_body: str) -> None:
        try:
            self.mailer.send(to, subject, html_body)
        except Exception:
            logger.exception("Failed to send %r to %s", subject, _redact(to))

    def send_verification_otp(self, email: str, otp: str, name: Optional[str]) -> None:
        self.mailer.send(email, "Email Verification OTP", self._otp_body("Email Verification", name, otp))

    def send_password_reset_otp(self, email: str, otp: str, name: Optional[str]) -> None:
        self.mailer.send(email, "Password Reset OTP", self._otp_body("Password Reset Request", name, otp))

    def _otp_body(self, title: str, name: Optional[str], otp: str) -> str:
        return _layout(
            title,
            f"<p>Hi {html.escape(name or 'User')},</p>"
            f'<h1 style="font-size: 32px; letter-spacing: 5px;">{otp}</h1>'
            "<p>This code will expire in 10 minutes.</p>"
            "<p>If you didn't request this, please ignore this email.</p>",
        )

    def notify_password_changed(self, email: str, name: Optional[str]) -> None:
        self.notify(
            email,
            "Password Changed Successfully",
            _layout(
                "Password Changed",
                f"<p>Hi {html.escape(name or 'User')},</p>"
                "<p>Your password has been successfully changed.</p>"
                "<p>If you didn't make this change, please contact support immediately.</p>",
            ),
        )

    def notify_generated_password(self, email: str, password: str, username: str, name: Optional[str]) -> None:
        self.notify(
            email,
            "Welcome! Your Account Password",
            _layout(
                "Welcome!",
                f"<p>Hi {html.escape(name or 'User')},</p>"
                "<p>Your account was created through social sign-in. You can also log in with:</p>"
                f"<p><strong>Username:</strong> {html.escape(username)}<br>"
                f"<strong>Email:</strong> {html.escape(email)}<br>"
                f"<strong>Password:</strong> <code>{html.escape(password)}</code></p>"
                "<p>Please change this password after your first login.</p>",
            ),
        )

    def send_username_reminder(self, email: str, username: str, name: Optional[str]) -> None:
        self.mailer.send(
            email,
            "Your Username",
            _layout(
                "Username Reminder",
                f"<p>Hi {html.escape(name or 'User')},</p>"
                f"<p>Your username is: <strong>{html.escape(username)}</strong></p>",
            ),
        )
