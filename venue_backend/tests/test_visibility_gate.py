from __future__ import annotations

import pytest

from venue_backend.app.billing import BillingStatus, VenueBillingRecord, VisibilityGateError
from venue_backend.app.billing.timestamps import days
from venue_backend.app.billing.visibility import (
    EMAIL_NOT_VERIFIED,
    GRACE_PERIOD_EXPIRED,
    SUBSCRIPTION_CANCELED,
    check_can_enable_visibility,
    describe_billing,
    effective_grace_deadline,
)

T0 = 1_700_000_000_000


def _record(**fields) -> VenueBillingRecord:
    values = {"venue_id": "venue-1", "email_verified": True, "billing_status": BillingStatus.ACTIVE}
    values.update(fields)
    return VenueBillingRecord(**values)


def _failed(**fields) -> VenueBillingRecord:
    return _record(
        billing_status=BillingStatus.PAYMENT_FAILED,
        last_payment_failed_at=T0,
        grace_period_ends_at=T0 + days(14),
        **fields,
    )


@pytest.mark.parametrize("status", [BillingStatus.ACTIVE, BillingStatus.UNKNOWN])
def test_healthy_billing_allows_visibility(status):
    check_can_enable_visibility(_record(billing_status=status), now=T0)


def test_canceled_subscription_blocks_visibility():
    with pytest.raises(VisibilityGateError) as excinfo:
        check_can_enable_visibility(_record(billing_status=BillingStatus.CANCELED), now=T0)

    error = excinfo.value
    assert error.code == SUBSCRIPTION_CANCELED
    assert error.payload["error"] == SUBSCRIPTION_CANCELED
    assert error.message.startswith("Subscription canceled")
    http_exc = error.to_http_exception()
    assert http_exc.status_code == 403
    assert http_exc.detail["message"] == error.message


def test_payment_failure_within_grace_period_allows_visibility():
    check_can_enable_visibility(_failed(), now=T0 + days(1))


def test_expired_grace_period_blocks_visibility():
    with pytest.raises(VisibilityGateError) as excinfo:
        check_can_enable_visibility(_failed(), now=T0 + days(15))

    assert excinfo.value.code == GRACE_PERIOD_EXPIRED


def test_missing_deadline_falls_back_to_failure_timestamp():
    record = _record(billing_status=BillingStatus.PAYMENT_FAILED, last_payment_failed_at=T0)

    assert effective_grace_deadline(record) == T0 + days(14)
    check_can_enable_visibility(record, now=T0 + days(13))
    with pytest.raises(VisibilityGateError):
        check_can_enable_visibility(record, now=T0 + days(14))


def test_operator_override_bypasses_billing_checks():
    check_can_enable_visibility(_record(billing_status=BillingStatus.CANCELED), now=T0, operator_override=True)
    check_can_enable_visibility(_failed(), now=T0 + days(30), operator_override=True)


def test_unverified_email_blocks_even_operators():
    record = _record(email_verified=False)

    for override in (False, True):
        with pytest.raises(VisibilityGateError) as excinfo:
            check_can_enable_visibility(record, now=T0, operator_override=override)
        assert excinfo.value.code == EMAIL_NOT_VERIFIED


def test_describe_billing_counts_remaining_days():
    summary = describe_billing(_failed(is_visible=True), now=T0 + days(10))

    assert summary.grace_days_remaining == 4
    assert summary.label == "Payment problem - visible for 4 more days"
    assert summary.visibility_blocked_reason is None
    assert summary.grace_period_ends_at == T0 + days(14)


def test_describe_billing_rounds_partial_day_up():
    summary = describe_billing(_failed(), now=T0 + days(13.5))

    assert summary.grace_days_remaining == 1
    assert summary.label == "Payment problem - visible for 1 more day"


def test_describe_billing_after_expiry():
    summary = describe_billing(_failed(), now=T0 + days(20))

    assert summary.grace_days_remaining is None
    assert summary.label == "Payment problem"
    assert summary.visibility_blocked_reason.startswith("Payment failed and the grace period expired")


def test_describe_billing_for_canceled_and_active():
    canceled = describe_billing(_record(billing_status=BillingStatus.CANCELED), now=T0)
    active = describe_billing(_record(), now=T0)

    assert canceled.label == "Billing disabled"
    assert canceled.billing_enabled is False
    assert canceled.visibility_blocked_reason.startswith("Subscription canceled")
    assert active.label == "Active"
    assert active.billing_enabled is True
    assert active.visibility_blocked_reason is None
