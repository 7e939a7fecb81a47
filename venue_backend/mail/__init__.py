"""Outbound email configuration, transports and template rendering."""

from .config import EmailConfig, SMTPSettings, load_email_config
from .providers import (
    DevPrintProvider,
    EmailProvider,
    OutboundEmail,
    SMTPProvider,
    build_message,
    create_email_provider,
)
from .renderer import render_subject_body

__all__ = [
    "DevPrintProvider",
    "EmailConfig",
    "EmailProvider",
    "OutboundEmail",
    "SMTPProvider",
    "SMTPSettings",
    "build_message",
    "create_email_provider",
    "load_email_config",
    "render_subject_body",
]
