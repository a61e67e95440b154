"""
Outbound email delivery
Mail transports (custom SMTP, Resend, null) and the retrying notification dispatcher
"""

import asyncio
import logging
import smtplib
import ssl
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Awaitable, Callable, Optional

import resend

from . import config
from .exceptions import TransientDeliveryFailure
from .metrics import Metrics

logger = logging.getLogger(__name__)


@dataclass
class OutboundEmail:
    """Everything a transport needs to deliver one message"""

    from_address: str
    to: str
    subject: str
    text: str
    html: str
    # Each attachment: {"filename": str, "content": bytes, "content_type": str}
    attachments: list[dict] = field(default_factory=list)


class MailTransport(ABC):
    """Delivers a single message or raises"""

    name = "base"

    @abstractmethod
    def send(self, message: OutboundEmail) -> str:
        """Deliver the message and return the provider's message id"""


class SmtpTransport(MailTransport):
    """Send through an SMTP relay (STARTTLS, or implicit TLS on port 465)"""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_mime(self, message: OutboundEmail) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = message.subject
        msg["From"] = message.from_address
        msg["To"] = message.to

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(message.text, "plain"))
        body.attach(MIMEText(message.html, "html"))
        msg.attach(body)

        for attachment in message.attachments:
            maintype, _, subtype = attachment.get(
                "content_type", "application/octet-stream"
            ).partition("/")
            part = MIMEBase(maintype, subtype or "octet-stream")
            part.set_payload(attachment["content"])
            encoders.encode_base64(part)
            part.add_header(
                "Content-Disposition", f'attachment; filename="{attachment["filename"]}"'
            )
            msg.attach(part)

        return msg

    def send(self, message: OutboundEmail) -> str:
        msg = self.build_mime(message)

        if self.port == 465:
            context = ssl.create_default_context()
            server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            if self.use_tls:
                context = ssl.create_default_context()
                server.starttls(context=context)

        try:
            if self.username:
                server.login(self.username, self.password or "")
            server.sendmail(
                message.from_address.split("<")[-1].rstrip(">"), [message.to], msg.as_string()
            )
        finally:
            server.quit()

        return f"smtp-{datetime.utcnow().timestamp()}"


class ResendTransport(MailTransport):
    """Send through the Resend API"""

    name = "resend"

    def __init__(self, api_key: str):
        resend.api_key = api_key

    def send(self, message: OutboundEmail) -> str:
        email_data = {
            "from": message.from_address,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
            "html": message.html,
        }
        if message.attachments:
            email_data["attachments"] = [
                {"filename": attachment["filename"], "content": list(attachment["content"])}
                for attachment in message.attachments
            ]

        response = resend.Emails.send(email_data)
        if isinstance(response, dict):
            return response.get("id", "")
        return getattr(response, "id", "") or ""


class NullTransport(MailTransport):
    """Logs instead of sending; used when no mail service is configured"""

    name = "null"

    def send(self, message: OutboundEmail) -> str:
        logger.info(f"[NULL TRANSPORT] Would send email to {message.to}: {message.subject}")
        return f"null-{datetime.utcnow().timestamp()}"


def get_mail_transport() -> MailTransport:
    """
    Pick the configured transport.
    Priority order:
    1. Custom SMTP if SMTP_HOST is set
    2. Resend if RESEND_API_KEY is set
    3. Null transport (development)
    """
    if config.SMTP_HOST:
        return SmtpTransport(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USER,
            password=config.SMTP_PASSWORD,
            use_tls=config.SMTP_USE_TLS,
        )
    if config.RESEND_API_KEY:
        return ResendTransport(config.RESEND_API_KEY)

    logger.warning("⚠️ No email service configured - using null transport")
    return NullTransport()


class NotificationDispatcher:
    """Deliver one email with bounded retries and exponential backoff"""

    def __init__(
        self,
        transport: MailTransport,
        metrics: Metrics,
        from_address: str = config.EMAIL_FROM_ADDRESS,
        max_attempts: int = config.EMAIL_MAX_RETRIES,
        backoff_unit: float = config.EMAIL_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.metrics = metrics
        self.from_address = from_address
        self.max_attempts = max_attempts
        self.backoff_unit = backoff_unit
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt n: unit, 2*unit, 4*unit, ..."""
        return self.backoff_unit * (2 ** (attempt - 1))

    async def _attempt(self, message: OutboundEmail, attempt: int) -> str:
        try:
            return await asyncio.to_thread(self.transport.send, message)
        except Exception as e:
            raise TransientDeliveryFailure(str(e), attempt=attempt, cause=e) from e

    async def send(
        self,
        destination: str,
        subject: str,
        text: str,
        html: str,
        attachments: Optional[list[dict]] = None,
        max_attempts: Optional[int] = None,
    ) -> bool:
        """
        Send an email, retrying transient failures.

        Args:
            destination: Recipient address
            subject: Subject line
            text: Plain-text body
            html: HTML body
            attachments: Optional list of attachments
            max_attempts: Overrides the configured attempt limit (the queue worker passes 1)

        Returns:
            True once any attempt succeeds, False after all attempts fail
        """
        limit = max_attempts or self.max_attempts
        message = OutboundEmail(
            from_address=self.from_address,
            to=destination,
            subject=subject,
            text=text,
            html=html,
            attachments=list(attachments or []),
        )
        start_time = time.monotonic()

        for attempt in range(1, limit + 1):
            logger.info(
                f"📧 Attempting to send email to {destination} (attempt {attempt}/{limit})",
                extra={"to": destination, "subject": subject, "attempt": attempt},
            )
            try:
                message_id = await self._attempt(message, attempt)
            except TransientDeliveryFailure as e:
                logger.error(
                    f"❌ Email sending failed to {destination} (attempt {attempt}): {e.message}",
                    extra={"to": destination, "subject": subject, "attempt": attempt},
                )
                if attempt == limit:
                    break
                self.metrics.increment("email.retried")
                await self._sleep(self.backoff_delay(attempt))
                continue

            logger.info(
                f"✅ Email sent successfully via {self.transport.name}: {message_id}",
                extra={"message_id": message_id, "attempt": attempt},
            )
            self.metrics.increment("email.sent")
            self.metrics.timing("email.delivery_time", time.monotonic() - start_time)
            return True

        logger.error(f"❌ Max retries reached for email to {destination}, giving up")
        self.metrics.increment("email.failed")
        self.metrics.timing("email.delivery_time", time.monotonic() - start_time)
        return False
