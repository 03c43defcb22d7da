"""
Outbound email for QuoteDesk.

Provides pluggable email backends for quote request notifications.

Backends:
    - console: logs the message (development, tests)
    - smtp: aiosmtplib with STARTTLS, CC/BCC and attachments
    - http: POSTs JSON to a hosted email function with a bearer key (httpx)

Every backend is async and raises EmailDeliveryError when a message cannot be
delivered; the quote request orchestrator fans out sends and collects those
errors per recipient.

Configuration (see config.py):
    EMAIL_BACKEND, EMAIL_FROM_ADDRESS, EMAIL_FROM_NAME, EMAIL_TIMEOUT_SECONDS,
    SMTP_HOST, SMTP_PORT, SMTP_USERNAME, SMTP_PASSWORD, SMTP_USE_TLS,
    EMAIL_FUNCTION_URL, EMAIL_FUNCTION_KEY
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Mapping, Optional

import aiosmtplib
import httpx

from ..errors import EmailDeliveryError

logger = logging.getLogger("quotedesk.email")


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_base64(cls, filename: str, content: str, content_type: str | None = None) -> "EmailAttachment":
        return cls(
            filename=filename,
            content=base64.b64decode(content),
            content_type=content_type or "application/octet-stream",
        )


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str
    from_address: str
    from_name: str
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    attachments: List[EmailAttachment] = field(default_factory=list)

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_address}>"


class EmailSender(ABC):
    """Abstract base class for email backends."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> None:
        """
        Deliver one message.

        Raises:
            EmailDeliveryError: the message was not delivered
        """


class ConsoleEmailSender(EmailSender):
    """
    Console email backend for development.

    Logs emails instead of actually sending them.
    """

    async def send(self, message: EmailMessage) -> None:
        logger.info("=" * 80)
        logger.info("EMAIL (Console Backend)")
        logger.info("To: %s", message.to)
        if message.cc:
            logger.info("Cc: %s", ", ".join(message.cc))
        if message.bcc:
            logger.info("Bcc: %s", ", ".join(message.bcc))
        logger.info("From: %s", message.sender)
        logger.info("Subject: %s", message.subject)
        if message.attachments:
            logger.info("Attachments: %s", ", ".join(a.filename for a in message.attachments))
        logger.info("-" * 80)
        logger.info(message.body)
        logger.info("=" * 80)


class SMTPEmailSender(EmailSender):
    """Sends emails via SMTP server with TLS support."""

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool = True,
        timeout: float = 15.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_mime(self, message: EmailMessage) -> MIMEMultipart:
        mime = MIMEMultipart()
        mime["From"] = message.sender
        mime["To"] = message.to
        if message.cc:
            mime["Cc"] = ", ".join(message.cc)
        mime["Subject"] = message.subject
        mime.attach(MIMEText(message.body, "plain"))

        for attachment in message.attachments:
            subtype = attachment.content_type.partition("/")[2]
            part = MIMEApplication(attachment.content, _subtype=subtype or "octet-stream")
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            mime.attach(part)
        return mime

    async def send(self, message: EmailMessage) -> None:
        mime = self.build_mime(message)
        # BCC goes to the envelope only, never to the headers
        recipients = [message.to, *message.cc, *message.bcc]
        try:
            await aiosmtplib.send(
                mime,
                recipients=recipients,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=self.use_tls,
                timeout=self.timeout,
            )
        except aiosmtplib.SMTPException as exc:
            logger.error("SMTP send to %s failed: %s", message.to, exc)
            raise EmailDeliveryError(f"SMTP error: {exc}") from exc
        except OSError as exc:
            logger.error("SMTP connection to %s:%s failed: %s", self.host, self.port, exc)
            raise EmailDeliveryError(f"SMTP connection failed: {exc}") from exc


class HttpEmailSender(EmailSender):
    """Posts messages to a hosted email function (JSON body, bearer auth)."""

    def __init__(self, url: str, api_key: str, timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def build_payload(self, message: EmailMessage) -> dict:
        return {
            "from": message.sender,
            "to": message.to,
            "cc": message.cc,
            "bcc": message.bcc,
            "subject": message.subject,
            "text": message.body,
            "attachments": [
                {
                    "filename": a.filename,
                    "content": base64.b64encode(a.content).decode("ascii"),
                    "contentType": a.content_type,
                }
                for a in message.attachments
            ],
        }

    async def send(self, message: EmailMessage) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=self.build_payload(message), headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Email function request for %s failed: %s", message.to, exc)
            raise EmailDeliveryError(f"Email service unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise EmailDeliveryError(
                f"Email service returned {response.status_code}: {response.reason_phrase}"
            )


def get_email_sender(config: Mapping) -> EmailSender:
    """Build the backend selected by EMAIL_BACKEND."""
    backend = (config.get("EMAIL_BACKEND") or "console").lower()
    timeout = float(config.get("EMAIL_TIMEOUT_SECONDS") or 15)

    if backend == "console":
        return ConsoleEmailSender()

    if backend == "smtp":
        return SMTPEmailSender(
            host=config.get("SMTP_HOST") or "localhost",
            port=int(config.get("SMTP_PORT") or 587),
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            use_tls=bool(config.get("SMTP_USE_TLS", True)),
            timeout=timeout,
        )

    if backend == "http":
        url = config.get("EMAIL_FUNCTION_URL")
        key = config.get("EMAIL_FUNCTION_KEY")
        if not url or not key:
            raise ValueError("EMAIL_BACKEND=http requires EMAIL_FUNCTION_URL and EMAIL_FUNCTION_KEY.")
        return HttpEmailSender(url=url, api_key=key, timeout=timeout)

    raise ValueError(f"Unknown EMAIL_BACKEND: {backend}")
