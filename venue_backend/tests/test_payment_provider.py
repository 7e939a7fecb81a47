"""Tests for the Stripe adapter, exercising the SDK's real signature checks."""
from __future__ import annotations

import hashlib
import hmac
import json
import time

import pytest
import stripe

from venue_backend.app.billing import WebhookSignatureError
from venue_backend.app.billing.provider import (
    StripePaymentProvider,
    object_id,
    parse_event,
    venue_id_from_metadata,
)

SECRET = "whsec_test_secret"


def _sign(payload: str, secret: str = SECRET, timestamp=None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _payload() -> str:
    return json.dumps(
        {
            "id": "evt_123",
            "object": "event",
            "type": "invoice.payment_failed",
            "created": 1714521600,
            "data": {"object": {"object": "invoice", "customer": "cus_1", "metadata": {"venueId": "venue-1"}}},
        }
    )


@pytest.fixture
def provider():
    return StripePaymentProvider(api_key="sk_test_123", webhook_secret=SECRET)


def test_construct_event_accepts_valid_signature(provider):
    payload = _payload()

    event = provider.construct_event(payload.encode("utf-8"), _sign(payload))

    assert event.event_id == "evt_123"
    assert event.event_type == "invoice.payment_failed"
    assert event.created_at == 1714521600 * 1000
    assert event.data_object["customer"] == "cus_1"


def test_construct_event_rejects_tampered_body(provider):
    payload = _payload()
    signature = _sign(payload)

    with pytest.raises(WebhookSignatureError):
        provider.construct_event(payload.replace("venue-1", "venue-2").encode("utf-8"), signature)


def test_construct_event_rejects_stale_signature(provider):
    payload = _payload()

    with pytest.raises(WebhookSignatureError):
        provider.construct_event(payload.encode("utf-8"), _sign(payload, timestamp=int(time.time()) - 3600))


def test_construct_event_rejects_body_that_is_not_utf8(provider):
    body = b'{"id": "evt_123", "type": "invoice.paid", "x": "\xff\xfe"}'

    with pytest.raises(WebhookSignatureError):
        provider.construct_event(body, "t=1714521600,v1=deadbeef")


def test_construct_event_requires_signature_header(provider):
    with pytest.raises(WebhookSignatureError):
        provider.construct_event(_payload().encode("utf-8"), None)


def test_construct_event_requires_configured_secret():
    unconfigured = StripePaymentProvider(api_key="sk_test_123", webhook_secret=None)

    with pytest.raises(RuntimeError):
        unconfigured.construct_event(b"{}", "t=1,v1=abc")


def test_missing_subscription_returns_none(provider, monkeypatch):
    def fake_retrieve(subscription_id, **kwargs):
        raise stripe.InvalidRequestError("No such subscription", "id", code="resource_missing")

    monkeypatch.setattr(stripe.Subscription, "retrieve", fake_retrieve)

    assert provider.get_subscription("sub_gone") is None


def test_get_subscription_maps_fields(provider, monkeypatch):
    captured = {}

    def fake_retrieve(subscription_id, **kwargs):
        captured.update(kwargs)
        return {
            "id": subscription_id,
            "status": "past_due",
            "customer": {"id": "cus_1"},
            "metadata": {"venueId": "venue-1"},
        }

    monkeypatch.setattr(stripe.Subscription, "retrieve", fake_retrieve)

    subscription = provider.get_subscription("sub_1")

    assert subscription.status == "past_due"
    assert subscription.customer_id == "cus_1"
    assert subscription.metadata == {"venueId": "venue-1"}
    assert captured["api_key"] == "sk_test_123"


def test_parse_event_requires_id_and_type():
    with pytest.raises(WebhookSignatureError):
        parse_event({"type": "invoice.payment_failed"})


def test_reference_helpers():
    assert object_id("cus_1") == "cus_1"
    assert object_id({"id": "cus_2"}) == "cus_2"
    assert object_id(None) is None
    assert venue_id_from_metadata({"venue_id": "venue-9"}) == "venue-9"
    assert venue_id_from_metadata({"venueId": "a", "venue_id": "b"}) == "a"
    assert venue_id_from_metadata("not-a-mapping") is None
