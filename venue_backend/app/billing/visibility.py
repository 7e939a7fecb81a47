"""Visibility gate and owner-facing billing summary."""
from __future__ import annotations

import math
from typing import Optional

from fastapi import status

from .exceptions import VisibilityGateError
from .models import BillingStatus, BillingSummary, VenueBillingRecord
from .timestamps import DAY_MS, days

EMAIL_NOT_VERIFIED = "email_not_verified"
SUBSCRIPTION_CANCELED = "subscription_canceled"
GRACE_PERIOD_EXPIRED = "grace_period_expired"
BILLING_STATUS_CHANGED = "billing_status_changed"

_MESSAGES = {
    EMAIL_NOT_VERIFIED: "Verify the account email address before making the venue visible.",
    SUBSCRIPTION_CANCELED: "Subscription canceled. The venue cannot be made visible until billing is restarted.",
    GRACE_PERIOD_EXPIRED: (
        "Payment failed and the grace period expired. "
        "Update the payment method before making the venue visible."
    ),
    BILLING_STATUS_CHANGED: "Billing status changed while the venue was being updated. Try again.",
}

_LABELS = {
    BillingStatus.ACTIVE: "Active",
    BillingStatus.CANCELED: "Canceled",
    BillingStatus.UNKNOWN: "Unknown",
}


def effective_grace_deadline(record: VenueBillingRecord, *, grace_period_days: int = 14) -> Optional[int]:
    """Stored deadline, or the one implied by the failure timestamp."""

    if record.grace_period_ends_at is not None:
        return record.grace_period_ends_at
    if record.last_payment_failed_at is not None:
        return record.last_payment_failed_at + days(grace_period_days)
    return None


def grace_period_expired(record: VenueBillingRecord, *, now: int, grace_period_days: int = 14) -> bool:
    if record.billing_status != BillingStatus.PAYMENT_FAILED:
        return False
    deadline = effective_grace_deadline(record, grace_period_days=grace_period_days)
    return deadline is not None and now >= deadline


def visibility_blocked_reason(
    record: VenueBillingRecord,
    *,
    now: int,
    grace_period_days: int = 14,
) -> Optional[str]:
    """Code of the billing precondition that blocks visibility, if any."""

    if record.billing_status == BillingStatus.CANCELED:
        return SUBSCRIPTION_CANCELED
    if grace_period_expired(record, now=now, grace_period_days=grace_period_days):
        return GRACE_PERIOD_EXPIRED
    return None


def check_can_enable_visibility(
    record: VenueBillingRecord,
    *,
    now: int,
    operator_override: bool = False,
    grace_period_days: int = 14,
) -> None:
    """Raise :class:`VisibilityGateError` unless the venue may become visible.

    Operators bypass the billing checks; the owner email verification check
    always applies.
    """

    if not record.email_verified:
        raise VisibilityGateError(code=EMAIL_NOT_VERIFIED, message=_MESSAGES[EMAIL_NOT_VERIFIED])
    if operator_override:
        return
    reason = visibility_blocked_reason(record, now=now, grace_period_days=grace_period_days)
    if reason is not None:
        raise VisibilityGateError(code=reason, message=_MESSAGES[reason], detail={"venue_id": record.venue_id})


def billing_status_changed(venue_id: str) -> VisibilityGateError:
    return VisibilityGateError(
        code=BILLING_STATUS_CHANGED,
        message=_MESSAGES[BILLING_STATUS_CHANGED],
        status_code=status.HTTP_409_CONFLICT,
        detail={"venue_id": venue_id},
    )


def describe_billing(record: VenueBillingRecord, *, now: int, grace_period_days: int = 14) -> BillingSummary:
    days_remaining: Optional[int] = None
    if record.billing_status == BillingStatus.PAYMENT_FAILED:
        deadline = effective_grace_deadline(record, grace_period_days=grace_period_days)
        if deadline is not None and deadline > now:
            days_remaining = math.ceil((deadline - now) / DAY_MS)
        if days_remaining:
            unit = "day" if days_remaining == 1 else "days"
            label = f"Payment problem - visible for {days_remaining} more {unit}"
        else:
            label = "Payment problem"
    elif not record.billing_enabled:
        label = "Billing disabled"
    else:
        label = _LABELS[record.billing_status]

    reason = visibility_blocked_reason(record, now=now, grace_period_days=grace_period_days)
    return BillingSummary(
        venue_id=record.venue_id,
        billing_status=record.billing_status,
        billing_enabled=record.billing_enabled,
        label=label,
        is_visible=record.is_visible,
        grace_period_ends_at=effective_grace_deadline(record, grace_period_days=grace_period_days),
        grace_days_remaining=days_remaining,
        visibility_blocked_reason=_MESSAGES[reason] if reason else None,
    )


__all__ = [
    "BILLING_STATUS_CHANGED",
    "EMAIL_NOT_VERIFIED",
    "GRACE_PERIOD_EXPIRED",
    "SUBSCRIPTION_CANCELED",
    "billing_status_changed",
    "check_can_enable_visibility",
    "describe_billing",
    "effective_grace_deadline",
    "grace_period_expired",
    "visibility_blocked_reason",
]
