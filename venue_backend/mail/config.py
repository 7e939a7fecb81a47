"""Email configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os

SMTP_SECURITY_SSL = "ssl"
SMTP_SECURITY_STARTTLS = "starttls"
SMTP_SECURITY_NONE = "none"


@dataclass(frozen=True)
class SMTPSettings:
    host: str
    port: int
    username: Optional[str]
    password: Optional[str]
    security: str

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True)
class EmailConfig:
    """Outbound billing mail: transport, sender identity and link targets."""

    transport: str
    sender: str
    reply_to: Optional[str]
    brand_name: str
    app_base_url: str
    smtp: SMTPSettings


def _flag(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return None


def _smtp_security(env: Mapping[str, str]) -> str:
    if _flag(env.get("SMTP_SECURE")):
        return SMTP_SECURITY_SSL
    if _flag(env.get("SMTP_USE_TLS")) is False:
        return SMTP_SECURITY_NONE
    return SMTP_SECURITY_STARTTLS


def _smtp_port(raw: Optional[str], security: str) -> int:
    if not raw:
        return 465 if security == SMTP_SECURITY_SSL else 587
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"SMTP_PORT must be an integer, got {raw!r}") from exc


def load_email_config(env: Optional[Mapping[str, str]] = None) -> EmailConfig:
    """Load :class:`EmailConfig` from environment variables.

    ``SMTP_SECURE`` selects implicit TLS (port 465 by default); otherwise the
    connection is upgraded with STARTTLS unless ``SMTP_USE_TLS`` is false.
    """

    env_mapping = os.environ if env is None else env

    security = _smtp_security(env_mapping)
    smtp = SMTPSettings(
        host=env_mapping.get("SMTP_HOST", "localhost"),
        port=_smtp_port(env_mapping.get("SMTP_PORT"), security),
        username=env_mapping.get("SMTP_USER") or None,
        password=env_mapping.get("SMTP_PASS") or None,
        security=security,
    )

    return EmailConfig(
        transport=(env_mapping.get("EMAIL_PROVIDER") or "dev").strip().lower() or "dev",
        sender=env_mapping.get("EMAIL_FROM", "noreply@example.com"),
        reply_to=env_mapping.get("EMAIL_REPLY_TO") or None,
        brand_name=env_mapping.get("EMAIL_BRAND_NAME", "where2watch"),
        app_base_url=env_mapping.get("APP_BASE_URL", "http://localhost:3000").rstrip("/"),
        smtp=smtp,
    )


__all__ = [
    "EmailConfig",
    "SMTPSettings",
    "SMTP_SECURITY_NONE",
    "SMTP_SECURITY_SSL",
    "SMTP_SECURITY_STARTTLS",
    "load_email_config",
]
