from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from venue_backend.app.billing import Actor, ActorRole, BillingService, BillingStatus
from venue_backend.app.billing.config import load_billing_config
from venue_backend.app.billing.provider import StripePaymentProvider
from venue_backend.app.billing.timestamps import days
from venue_backend.app.routes import admin as admin_routes
from venue_backend.app.routes import billing as billing_routes

from conftest import T0, VALID_SIGNATURE

OPERATOR = Actor(uid="admin-1", role=ActorRole.OPERATOR)
OWNER = Actor(uid="owner-1", role=ActorRole.VENUE_OWNER, venue_id="venue-1")


@pytest.fixture
def actor_holder():
    return {"actor": OWNER}


@pytest.fixture
def client(service, monkeypatch, actor_holder):
    config = load_billing_config(env={"CRON_SECRET": "cron-secret"})
    monkeypatch.setattr(billing_routes, "get_billing_service", lambda: service)
    monkeypatch.setattr(billing_routes, "get_billing_config", lambda: config)
    monkeypatch.setattr(admin_routes, "get_billing_service", lambda: service)

    app = FastAPI()
    app.include_router(billing_routes.router)
    app.include_router(admin_routes.router)
    app.dependency_overrides[billing_routes.get_current_actor] = lambda: actor_holder["actor"]
    return TestClient(app)


def test_webhook_acknowledges_and_deduplicates(client, repository, webhook_body):
    repository.add_venue("venue-1", billing_status=BillingStatus.ACTIVE)
    body = webhook_body("evt_1", "invoice.payment_failed", {"metadata": {"venueId": "venue-1"}})
    headers = {"Stripe-Signature": VALID_SIGNATURE, "Content-Type": "application/json"}

    first = client.post("/api/stripe/webhook", content=body, headers=headers)
    second = client.post("/api/stripe/webhook", content=body, headers=headers)

    assert first.status_code == 200
    assert first.json() == {"received": True, "duplicate": False, "outcome": "processed"}
    assert second.status_code == 200
    assert second.json()["duplicate"] is True


def test_webhook_with_bad_signature_returns_400(client, webhook_body):
    body = webhook_body("evt_1", "invoice.payment_failed", {})

    response = client.post("/api/stripe/webhook", content=body, headers={"Stripe-Signature": "forged"})

    assert response.status_code == 400


def test_webhook_with_undecodable_body_returns_400(repository, notifier, monkeypatch):
    service = BillingService(
        repository=repository,
        provider=StripePaymentProvider(api_key="sk_test_123", webhook_secret="whsec_test_secret"),
        notifier=notifier,
    )
    monkeypatch.setattr(billing_routes, "get_billing_service", lambda: service)
    app = FastAPI()
    app.include_router(billing_routes.router)

    response = TestClient(app).post(
        "/api/stripe/webhook",
        content=b'{"id": "evt_1", "note": "\xff\xfe"}',
        headers={"Stripe-Signature": "t=1714521600,v1=deadbeef"},
    )

    assert response.status_code == 400


def test_webhook_processing_failure_returns_500(client, repository, webhook_body):
    repository.add_venue("venue-1", billing_status=BillingStatus.ACTIVE)
    repository.fail_next_merge = RuntimeError("database unavailable")
    body = webhook_body("evt_1", "invoice.payment_failed", {"metadata": {"venueId": "venue-1"}})

    response = client.post("/api/stripe/webhook", content=body, headers={"Stripe-Signature": VALID_SIGNATURE})

    assert response.status_code == 500


def test_cron_requires_secret(client):
    assert client.get("/api/cron/billing-grace").status_code == 401
    assert client.get("/api/cron/billing-grace", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/api/cron/billing-grace", headers={"x-vercel-cron": "1"}).status_code == 401


def test_cron_runs_reconciler(client, repository):
    repository.add_venue(
        "venue-1",
        billing_status=BillingStatus.PAYMENT_FAILED,
        last_payment_failed_at=T0 - days(14),
        grace_period_ends_at=T0,
        reminder_sent_at=T0 - days(7),
        is_visible=True,
    )

    response = client.get("/api/cron/billing-grace", headers={"Authorization": "Bearer cron-secret"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "scanned": 1, "reminded": 0, "hidden": 1, "now": T0}
    assert client.get("/api/cron/billing-grace", headers={"X-Cron-Secret": "cron-secret"}).status_code == 200


def test_cron_trusts_platform_header_when_enabled(client, monkeypatch):
    trusting = load_billing_config(env={"TRUST_PLATFORM_CRON_HEADER": "1"})
    monkeypatch.setattr(billing_routes, "get_billing_config", lambda: trusting)

    response = client.get("/api/cron/billing-grace", headers={"x-vercel-cron": "1"})

    assert response.status_code == 200


def test_owner_reads_billing_summary(client, repository):
    repository.add_venue(
        "venue-1",
        billing_status=BillingStatus.PAYMENT_FAILED,
        last_payment_failed_at=T0,
        grace_period_ends_at=T0 + days(14),
        is_visible=True,
    )

    response = client.get("/api/venues/venue-1/billing")

    assert response.status_code == 200
    payload = response.json()
    assert payload["venueId"] == "venue-1"
    assert payload["billingStatus"] == "payment_failed"
    assert payload["graceDaysRemaining"] == 14
    assert payload["label"] == "Payment problem - visible for 14 more days"


def test_owner_cannot_read_other_venue(client, repository):
    repository.add_venue("venue-2")

    assert client.get("/api/venues/venue-2/billing").status_code == 403


def test_missing_venue_returns_404(client, actor_holder):
    actor_holder["actor"] = OPERATOR

    assert client.get("/api/venues/ghost/billing").status_code == 404


def test_visibility_rejection_carries_reason(client, repository):
    repository.add_venue("venue-1", billing_status=BillingStatus.CANCELED)

    response = client.patch("/api/venues/venue-1/visibility", json={"isVisible": True})

    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["error"] == "subscription_canceled"
    assert detail["message"].startswith("Subscription canceled")


def test_visibility_accepted_during_grace_period(client, repository):
    repository.add_venue(
        "venue-1",
        billing_status=BillingStatus.PAYMENT_FAILED,
        last_payment_failed_at=T0 - days(1),
        grace_period_ends_at=T0 + days(13),
    )

    response = client.patch("/api/venues/venue-1/visibility", json={"isVisible": True})

    assert response.status_code == 200
    assert response.json()["isVisible"] is True


def test_admin_routes_require_operator(client, repository):
    repository.add_venue("venue-1")

    assert client.post("/api/admin/venues/venue-1/billing-off").status_code == 403
    assert client.get("/api/admin/venues/venue-1/audit-logs").status_code == 403


def test_operator_billing_off_and_audit_log(client, repository, actor_holder):
    actor_holder["actor"] = OPERATOR
    repository.add_venue("venue-1", billing_status=BillingStatus.ACTIVE, is_visible=True)

    response = client.post("/api/admin/venues/venue-1/billing-off")

    assert response.status_code == 200
    assert response.json()["billingStatus"] == "canceled"
    assert response.json()["isVisible"] is False

    logs = client.get("/api/admin/venues/venue-1/audit-logs").json()["logs"]
    assert [entry["action"] for entry in logs] == ["billing_off"]
    assert logs[0]["adminUid"] == "admin-1"


def test_operator_billing_on_returns_checkout_url(client, repository, actor_holder):
    actor_holder["actor"] = OPERATOR
    repository.add_venue("venue-1", billing_status=BillingStatus.CANCELED)

    response = client.post("/api/admin/venues/venue-1/billing-on")

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "checkoutUrl": "https://checkout.example.com/venue-1",
        "emailSent": True,
    }


def test_operator_billing_on_without_email_returns_400(client, repository, actor_holder):
    actor_holder["actor"] = OPERATOR
    repository.add_venue("venue-1", email=None)

    assert client.post("/api/admin/venues/venue-1/billing-on").status_code == 400
