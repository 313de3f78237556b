"""Account email delivery.

Covers verification and password-reset emails:
- ``EmailSender`` is the delivery port (SMTP in deployments, logging in
  development)
- ``QueuedEmailSender`` hands delivery to a background task so request
  latency never depends on the mail server, which keeps enumeration-safe
  endpoints indistinguishable by timing
- ``AccountMailer`` renders the Jinja2 templates and builds the links

Example:
    sender = QueuedEmailSender(SMTPEmailSender(settings.smtp))
    mailer = AccountMailer(sender, public_url=settings.public_url)
    await mailer.send_verification("a@x.io", "Alice", token, ttl_hours=24)
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Protocol
from urllib.parse import urlencode

from jinja2 import Environment, PackageLoader, select_autoescape

if TYPE_CHECKING:
    from warden.core.config import Settings, SMTPSettings

logger = logging.getLogger(__name__)


class EmailError(Exception):
    """Base exception for email operations."""


class EmailDeliveryError(EmailError):
    """Raised when email delivery fails."""


@dataclass(frozen=True, slots=True)
class EmailMessage:
    """A rendered email ready for delivery."""

    to: str
    subject: str
    text_body: str
    html_body: str | None = None


class EmailSender(Protocol):
    """Delivery port for rendered emails."""

    async def send(self, message: EmailMessage) -> None:
        """Deliver a message or raise EmailDeliveryError."""
        ...


class SMTPEmailSender:
    """Deliver email over SMTP, with implicit TLS or STARTTLS.

    smtplib is blocking, so delivery runs in a worker thread.
    """

    def __init__(self, settings: SMTPSettings) -> None:
        self._settings = settings

    def _domain(self) -> str:
        return self._settings.from_address.rpartition("@")[2] or "localhost"

    def _build(self, message: EmailMessage) -> tuple[MIMEMultipart, str]:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self._settings.from_name} <{self._settings.from_address}>"
        msg["To"] = message.to
        message_id = f"<{secrets.token_hex(16)}@{self._domain()}>"
        msg["Message-ID"] = message_id

        msg.attach(MIMEText(message.text_body, "plain", "utf-8"))
        if message.html_body:
            msg.attach(MIMEText(message.html_body, "html", "utf-8"))
        return msg, message_id

    def _send_sync(self, message: EmailMessage) -> str:
        msg, message_id = self._build(message)
        settings = self._settings
        try:
            if settings.use_ssl:
                # Implicit TLS (port 465)
                server = smtplib.SMTP_SSL(
                    settings.host,
                    settings.port,
                    timeout=settings.timeout,
                    context=ssl.create_default_context(),
                )
            else:
                server = smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout)
                if settings.use_tls:
                    server.starttls(context=ssl.create_default_context())

            with server:
                if settings.username and settings.password:
                    server.login(settings.username, settings.password.get_secret_value())
                server.sendmail(settings.from_address, [message.to], msg.as_string())
        except smtplib.SMTPException as e:
            msg_text = f"SMTP error: {e}"
            raise EmailDeliveryError(msg_text) from e
        except OSError as e:
            msg_text = f"Connection error: {e}"
            raise EmailDeliveryError(msg_text) from e
        return message_id

    async def send(self, message: EmailMessage) -> None:
        """Deliver a message via SMTP off the event loop."""
        message_id = await asyncio.to_thread(self._send_sync, message)
        logger.info("Email sent: subject=%r, message_id=%s", message.subject, message_id)


class LoggingEmailSender:
    """Development sender: logs instead of delivering and keeps the messages."""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)
        logger.info("Email not delivered (SMTP disabled): subject=%r", message.subject)
        logger.debug("Email body:\n%s", message.text_body)


class QueuedEmailSender:
    """Deliver through another sender in background tasks.

    Failures are logged, never raised to the request that triggered them.
    """

    def __init__(self, inner: EmailSender) -> None:
        self._inner = inner
        self._tasks: set[asyncio.Task[None]] = set()

    async def send(self, message: EmailMessage) -> None:
        task = asyncio.create_task(self._deliver(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, message: EmailMessage) -> None:
        try:
            await self._inner.send(message)
        except EmailError:
            logger.exception("Background email delivery failed: subject=%r", message.subject)

    @property
    def pending(self) -> int:
        """Number of deliveries still in flight."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def build_email_sender(settings: Settings) -> QueuedEmailSender:
    """Pick the delivery backend from configuration."""
    inner: EmailSender
    if settings.smtp.enabled:
        inner = SMTPEmailSender(settings.smtp)
    else:
        inner = LoggingEmailSender()
    return QueuedEmailSender(inner)


class AccountMailer:
    """Render and send account emails."""

    def __init__(
        self,
        sender: EmailSender,
        *,
        public_url: str,
        app_name: str = "Warden",
    ) -> None:
        """Initialize the mailer.

        Args:
            sender: Delivery backend.
            public_url: Base URL of the front end that hosts the links.
            app_name: Product name shown in emails.
        """
        self._sender = sender
        self._public_url = public_url.rstrip("/")
        self._app_name = app_name
        self._env = Environment(
            loader=PackageLoader("warden", "templates/email"),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def _link(self, path: str, token: str) -> str:
        return f"{self._public_url}{path}?{urlencode({'token': token})}"

    def render(self, template: str, to: str, subject: str, **context: object) -> EmailMessage:
        """Render the text and HTML variants of a template."""
        context = {"app_name": self._app_name, **context}
        return EmailMessage(
            to=to,
            subject=subject,
            text_body=self._env.get_template(f"{template}.txt").render(**context),
            html_body=self._env.get_template(f"{template}.html").render(**context),
        )

    async def send_verification(self, to: str, name: str, token: str, *, ttl_hours: int) -> None:
        """Send the email-verification link."""
        message = self.render(
            "verify_email",
            to,
            f"Confirm your {self._app_name} email address",
            name=name,
            link=self._link("/verify-email", token),
            ttl_hours=ttl_hours,
        )
        await self._sender.send(message)

    async def send_password_reset(
        self,
        to: str,
        name: str,
        token: str,
        *,
        ttl_minutes: int,
    ) -> None:
        """Send the password-reset link."""
        message = self.render(
            "reset_password",
            to,
            f"Reset your {self._app_name} password",
            name=name,
            link=self._link("/reset-password", token),
            ttl_minutes=ttl_minutes,
        )
        await self._sender.send(message)
