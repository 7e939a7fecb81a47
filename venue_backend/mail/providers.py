"""Transports that deliver rendered billing mail."""
from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Dict, Optional

from .config import SMTP_SECURITY_SSL, SMTP_SECURITY_STARTTLS, EmailConfig, SMTPSettings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class OutboundEmail:
    recipient: str
    subject: str
    text_body: str
    html_body: str


def build_message(email: OutboundEmail, *, sender: str, reply_to: Optional[str] = None) -> EmailMessage:
    """Build a multipart/alternative message with text and HTML parts."""

    message = EmailMessage()
    message["From"] = sender
    message["To"] = email.recipient
    message["Subject"] = email.subject
    if reply_to:
        message["Reply-To"] = reply_to
    message.set_content(email.text_body)
    message.add_alternative(email.html_body, subtype="html")
    return message


class EmailProvider:
    """Base transport. Subclasses raise when delivery fails."""

    name = "base"

    def __init__(self, *, sender: str, reply_to: Optional[str] = None) -> None:
        self.sender = sender
        self.reply_to = reply_to

    def deliver(self, email: OutboundEmail) -> None:
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"email_provider": self.name, "email_sender": self.sender}


class DevPrintProvider(EmailProvider):
    """Logs messages instead of sending them."""

    name = "dev"

    def deliver(self, email: OutboundEmail) -> None:
        logger.info(
            "Dev email dispatch",
            extra={
                "email_recipient": email.recipient,
                "email_subject": email.subject,
                "email_sender": self.sender,
            },
        )


class SMTPProvider(EmailProvider):
    name = "smtp"

    def __init__(self, *, sender: str, settings: SMTPSettings, reply_to: Optional[str] = None) -> None:
        super().__init__(sender=sender, reply_to=reply_to)
        self.settings = settings

    def _open(self) -> smtplib.SMTP:
        if self.settings.security == SMTP_SECURITY_SSL:
            return smtplib.SMTP_SSL(
                self.settings.host,
                self.settings.port,
                timeout=SMTP_TIMEOUT_SECONDS,
                context=ssl.create_default_context(),
            )
        return smtplib.SMTP(self.settings.host, self.settings.port, timeout=SMTP_TIMEOUT_SECONDS)

    def deliver(self, email: OutboundEmail) -> None:
        message = build_message(email, sender=self.sender, reply_to=self.reply_to)
        with self._open() as client:
            if self.settings.security == SMTP_SECURITY_STARTTLS:
                client.starttls(context=ssl.create_default_context())
            if self.settings.has_credentials:
                client.login(self.settings.username, self.settings.password)
            client.send_message(message)


def create_email_provider(config: EmailConfig) -> EmailProvider:
    if config.transport == "smtp":
        return SMTPProvider(sender=config.sender, settings=config.smtp, reply_to=config.reply_to)
    if config.transport != "dev":
        logger.warning("Unknown EMAIL_PROVIDER %r; billing mail will only be logged", config.transport)
    return DevPrintProvider(sender=config.sender, reply_to=config.reply_to)


__all__ = [
    "DevPrintProvider",
    "EmailProvider",
    "OutboundEmail",
    "SMTPProvider",
    "build_message",
    "create_email_provider",
]
