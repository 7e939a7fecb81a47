"""Pure transition logic for venue billing state.

Nothing here touches storage, the payment provider or email: given an event,
the identifiers it resolved to and the current record, :func:`apply_event`
returns the patch to merge and the notifications to send after the write.
"""
from __future__ import annotations

from typing import Optional

from .models import (
    BillingRecordPatch,
    BillingStatus,
    NotificationEffect,
    NotificationKind,
    ProviderEventType,
    ResolvedEvent,
    Transition,
    VenueBillingRecord,
)
from .timestamps import days

_ACTIVE_PROVIDER_STATUSES = frozenset({"active", "trialing"})
_FAILED_PROVIDER_STATUSES = frozenset({"past_due", "unpaid"})

_CLEARED_GRACE_FIELDS = {
    "last_payment_failed_at": None,
    "grace_period_ends_at": None,
    "reminder_sent_at": None,
}


def map_subscription_status(provider_status: Optional[str]) -> BillingStatus:
    """Map the provider's subscription vocabulary onto :class:`BillingStatus`."""

    normalized = (provider_status or "").strip().lower()
    if normalized in _ACTIVE_PROVIDER_STATUSES:
        return BillingStatus.ACTIVE
    if normalized in _FAILED_PROVIDER_STATUSES:
        return BillingStatus.PAYMENT_FAILED
    return BillingStatus.CANCELED


def parse_event_type(event_type: str) -> Optional[ProviderEventType]:
    try:
        return ProviderEventType(event_type)
    except ValueError:
        return None


def apply_event(
    event_type: str,
    resolved: ResolvedEvent,
    current: VenueBillingRecord,
    *,
    now: int,
    grace_period_days: int = 14,
) -> Transition:
    """Compute the transition caused by ``event_type`` on ``current``."""

    known_type = parse_event_type(event_type)
    if known_type is None:
        return Transition()

    if known_type == ProviderEventType.CHECKOUT_COMPLETED:
        if resolved.subscription_id and resolved.subscription_status:
            next_status = map_subscription_status(resolved.subscription_status)
        else:
            next_status = BillingStatus.ACTIVE
        return _status_transition(current, next_status, resolved, now=now, grace_period_days=grace_period_days)

    if known_type == ProviderEventType.INVOICE_PAYMENT_FAILED:
        return _payment_failed(current, resolved, now=now, grace_period_days=grace_period_days)

    if known_type == ProviderEventType.INVOICE_PAYMENT_SUCCEEDED:
        return _status_transition(current, BillingStatus.ACTIVE, resolved, now=now, grace_period_days=grace_period_days)

    if known_type == ProviderEventType.SUBSCRIPTION_UPDATED:
        next_status = map_subscription_status(resolved.subscription_status)
        return _status_transition(
            current,
            next_status,
            resolved,
            now=now,
            grace_period_days=grace_period_days,
            starts_episode=False,
        )

    # customer.subscription.deleted
    return _status_transition(current, BillingStatus.CANCELED, resolved, now=now, grace_period_days=grace_period_days)


def _provider_ids(resolved: ResolvedEvent) -> dict:
    update: dict = {}
    if resolved.customer_id:
        update["provider_customer_id"] = resolved.customer_id
    if resolved.subscription_id:
        update["provider_subscription_id"] = resolved.subscription_id
    return update


def _payment_failed(
    current: VenueBillingRecord,
    resolved: ResolvedEvent,
    *,
    now: int,
    grace_period_days: int,
) -> Transition:
    update = _provider_ids(resolved)
    if current.in_failure_episode:
        # The episode started earlier; its deadline and reminder marker stand.
        update["billing_status"] = BillingStatus.PAYMENT_FAILED
        return Transition(next_status=BillingStatus.PAYMENT_FAILED, patch=BillingRecordPatch(**update))

    update.update(
        billing_status=BillingStatus.PAYMENT_FAILED,
        last_payment_failed_at=now,
        grace_period_ends_at=now + days(grace_period_days),
        reminder_sent_at=None,
    )
    return Transition(
        next_status=BillingStatus.PAYMENT_FAILED,
        patch=BillingRecordPatch(**update),
        effects=[NotificationEffect(kind=NotificationKind.PAYMENT_FAILED, venue_id=current.venue_id)],
    )


def _status_transition(
    current: VenueBillingRecord,
    next_status: BillingStatus,
    resolved: ResolvedEvent,
    *,
    now: int,
    grace_period_days: int,
    starts_episode: bool = True,
) -> Transition:
    if next_status == BillingStatus.PAYMENT_FAILED and starts_episode:
        return _payment_failed(current, resolved, now=now, grace_period_days=grace_period_days)

    update = _provider_ids(resolved)
    update["billing_status"] = next_status
    if next_status != BillingStatus.PAYMENT_FAILED:
        update.update(_CLEARED_GRACE_FIELDS)
    if next_status == BillingStatus.CANCELED:
        update["is_visible"] = False
    return Transition(next_status=next_status, patch=BillingRecordPatch(**update))


__all__ = ["apply_event", "map_subscription_status", "parse_event_type"]
