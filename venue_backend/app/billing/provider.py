"""Stripe-backed implementation of the payment provider interface."""
from __future__ import annotations

import json
import logging
from typing import Dict, Mapping, Optional

import stripe

from .exceptions import WebhookSignatureError
from .models import ProviderCustomer, ProviderEvent, ProviderSubscription
from .timestamps import to_millis

logger = logging.getLogger(__name__)

VENUE_METADATA_KEYS = ("venueId", "venue_id")


def object_id(value: object) -> Optional[str]:
    """Return the id of an expandable provider reference (id string or object)."""

    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        candidate = value.get("id")
        return str(candidate) if candidate else None
    return None


def venue_id_from_metadata(metadata: object) -> Optional[str]:
    if not isinstance(metadata, Mapping):
        return None
    for key in VENUE_METADATA_KEYS:
        value = metadata.get(key)
        if value:
            return str(value)
    return None


def _safe_metadata(value: object) -> Dict[str, str]:
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items()}
    return {}


def _is_missing_resource(exc: stripe.InvalidRequestError) -> bool:
    return getattr(exc, "code", None) == "resource_missing"


class StripePaymentProvider:
    """Thin adapter over the Stripe SDK used by the billing subsystem."""

    def __init__(
        self,
        *,
        api_key: Optional[str],
        webhook_secret: Optional[str],
        tolerance_seconds: int = 300,
        price_id: Optional[str] = None,
    ) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self.price_id = price_id

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise RuntimeError("Missing STRIPE_SECRET_KEY")
        return self.api_key

    def construct_event(self, raw_body: bytes, signature: Optional[str]) -> ProviderEvent:
        if not self.webhook_secret:
            raise RuntimeError("Missing STRIPE_WEBHOOK_SECRET")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
            stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
                tolerance=self.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError(str(exc) or "Invalid signature") from exc
        except ValueError as exc:
            raise WebhookSignatureError("Malformed webhook payload") from exc

        return parse_event(json.loads(payload))

    def get_subscription(self, subscription_id: str) -> Optional[ProviderSubscription]:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._require_api_key())
        except stripe.InvalidRequestError as exc:
            if _is_missing_resource(exc):
                logger.warning("Stripe subscription %s not found", subscription_id)
                return None
            raise
        return ProviderSubscription(
            subscription_id=subscription["id"],
            status=str(subscription.get("status") or ""),
            customer_id=object_id(subscription.get("customer")),
            metadata=_safe_metadata(subscription.get("metadata")),
        )

    def get_customer(self, customer_id: str) -> Optional[ProviderCustomer]:
        try:
            customer = stripe.Customer.retrieve(customer_id, api_key=self._require_api_key())
        except stripe.InvalidRequestError as exc:
            if _is_missing_resource(exc):
                logger.warning("Stripe customer %s not found", customer_id)
                return None
            raise
        if customer.get("deleted"):
            return None
        return ProviderCustomer(
            customer_id=customer["id"],
            email=customer.get("email"),
            metadata=_safe_metadata(customer.get("metadata")),
        )

    def cancel_subscription(self, subscription_id: str) -> None:
        try:
            stripe.Subscription.cancel(subscription_id, api_key=self._require_api_key())
        except stripe.InvalidRequestError as exc:
            if not _is_missing_resource(exc):
                raise
            logger.warning("Stripe subscription %s already gone", subscription_id)

    def create_customer(self, *, email: str, venue_id: str) -> str:
        customer = stripe.Customer.create(
            email=email,
            metadata={"venueId": venue_id},
            api_key=self._require_api_key(),
        )
        return customer["id"]

    def create_checkout_session(
        self,
        *,
        venue_id: str,
        customer_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        if not self.price_id:
            raise RuntimeError("Missing STRIPE_DEFAULT_PRICE_ID")
        session = stripe.checkout.Session.create(
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": self.price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            client_reference_id=venue_id,
            metadata={"venueId": venue_id},
            subscription_data={"metadata": {"venueId": venue_id}},
            api_key=self._require_api_key(),
        )
        url = session.get("url")
        if not url:
            raise RuntimeError("Stripe checkout session is missing a url")
        return str(url)


def parse_event(payload: Mapping[str, object]) -> ProviderEvent:
    """Build a :class:`ProviderEvent` from a decoded webhook body."""

    event_id = payload.get("id")
    event_type = payload.get("type")
    if not event_id or not event_type:
        raise WebhookSignatureError("Webhook payload is missing id or type")

    data = payload.get("data")
    data_object = data.get("object") if isinstance(data, Mapping) else None
    created = payload.get("created")
    return ProviderEvent(
        event_id=str(event_id),
        event_type=str(event_type),
        data_object=dict(data_object) if isinstance(data_object, Mapping) else {},
        # Stripe reports event creation in epoch seconds.
        created_at=int(created) * 1000 if isinstance(created, (int, float)) else to_millis(created),
    )


__all__ = [
    "StripePaymentProvider",
    "VENUE_METADATA_KEYS",
    "object_id",
    "parse_event",
    "venue_id_from_metadata",
]
