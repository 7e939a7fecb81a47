"""Billing configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the payment provider, webhook intake and reconciler."""

    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    webhook_tolerance_seconds: int
    checkout_price_id: Optional[str]
    cron_secret: Optional[str]
    trust_platform_cron_header: bool
    grace_period_days: int
    reminder_after_days: int
    reconcile_page_size: int
    reconcile_max_records: int
    scheduler_enabled: bool
    scheduler_interval_seconds: float
    app_base_url: str


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    grace_period_days = max(1, _to_int(env_mapping.get("BILLING_GRACE_PERIOD_DAYS"), default=14))
    reminder_after_days = _to_int(env_mapping.get("BILLING_REMINDER_AFTER_DAYS"), default=7)
    if not 0 < reminder_after_days < grace_period_days:
        raise ValueError("BILLING_REMINDER_AFTER_DAYS must fall inside the grace period")

    return BillingConfig(
        stripe_secret_key=env_mapping.get("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=env_mapping.get("STRIPE_WEBHOOK_SECRET") or None,
        webhook_tolerance_seconds=max(0, _to_int(env_mapping.get("STRIPE_WEBHOOK_TOLERANCE"), default=300)),
        checkout_price_id=env_mapping.get("STRIPE_DEFAULT_PRICE_ID") or None,
        cron_secret=env_mapping.get("CRON_SECRET") or None,
        trust_platform_cron_header=_to_bool(env_mapping.get("TRUST_PLATFORM_CRON_HEADER"), default=False),
        grace_period_days=grace_period_days,
        reminder_after_days=reminder_after_days,
        reconcile_page_size=max(1, _to_int(env_mapping.get("BILLING_RECONCILE_PAGE_SIZE"), default=100)),
        reconcile_max_records=max(1, _to_int(env_mapping.get("BILLING_RECONCILE_MAX_RECORDS"), default=500)),
        scheduler_enabled=_to_bool(env_mapping.get("BILLING_SCHEDULER_ENABLED"), default=False),
        scheduler_interval_seconds=max(
            60.0, _to_float(env_mapping.get("BILLING_SCHEDULER_INTERVAL"), default=15 * 60.0)
        ),
        app_base_url=env_mapping.get("APP_BASE_URL", "http://localhost:3000").rstrip("/"),
    )


__all__ = ["BillingConfig", "load_billing_config"]
