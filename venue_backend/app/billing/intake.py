"""Webhook intake: verify, claim exactly once, transition, record outcome."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Optional

from .exceptions import BillingTransitionError, VenueNotFoundError
from .models import (
    ClaimStatus,
    IntakeOutcome,
    IntakeResult,
    NotificationEffect,
    ProviderEvent,
    ProviderEventType,
    ResolvedEvent,
    VenueBillingRecord,
)
from .notifications import send_best_effort
from .provider import object_id, venue_id_from_metadata
from .state_machine import apply_event, parse_event_type
from .timestamps import now_millis

if TYPE_CHECKING:  # pragma: no cover
    from .service import BillingRepository, NotificationGateway, PaymentProvider

logger = logging.getLogger(__name__)

_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}

_SUBSCRIPTION_EVENTS = frozenset(
    {ProviderEventType.SUBSCRIPTION_UPDATED, ProviderEventType.SUBSCRIPTION_DELETED}
)


def _subscription_reference(data_object: dict) -> Optional[str]:
    direct = object_id(data_object.get("subscription"))
    if direct:
        return direct
    # Newer API versions nest the invoice's subscription under ``parent``.
    parent = data_object.get("parent")
    if isinstance(parent, dict):
        details = parent.get("subscription_details")
        if isinstance(details, dict):
            return object_id(details.get("subscription"))
    return None


@dataclass(**_dataclass_kwargs)
class WebhookIntakeService:
    """Applies provider webhook events to venue billing records exactly once."""

    repository: "BillingRepository"
    provider: "PaymentProvider"
    notifier: "NotificationGateway"
    grace_period_days: int = 14
    clock: Callable[[], int] = now_millis

    def handle(self, raw_body: bytes, signature: Optional[str]) -> IntakeResult:
        event = self.provider.construct_event(raw_body, signature)

        claim = self.repository.claim_event(event.event_id, event.event_type)
        if not claim.should_process:
            logger.info(
                "Duplicate provider event acknowledged",
                extra={
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "claim_status": claim.entry.claim_status.value,
                    "attempts": claim.entry.attempts,
                },
            )
            return IntakeResult(
                event_id=event.event_id,
                event_type=event.event_type,
                outcome=IntakeOutcome.DUPLICATE,
                venue_id=claim.entry.resolved_venue_id,
            )

        trace: Dict[str, Optional[str]] = {"venue_id": None}
        applied = False
        error: Optional[str] = "interrupted"
        try:
            applied = self._process(event, trace)
            error = None
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.exception(
                "Provider event processing failed",
                extra={"event_id": event.event_id, "event_type": event.event_type, "venue_id": trace["venue_id"]},
            )
            raise BillingTransitionError(event.event_id, error) from exc
        finally:
            self.repository.finish_event(
                event.event_id,
                ClaimStatus.ERROR if error else ClaimStatus.PROCESSED,
                venue_id=trace["venue_id"],
                error=error,
            )

        return IntakeResult(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=IntakeOutcome.PROCESSED if applied else IntakeOutcome.IGNORED,
            venue_id=trace["venue_id"],
        )

    def resolve(self, event: ProviderEvent) -> ResolvedEvent:
        """Determine which venue, customer and subscription ``event`` refers to."""

        data_object = event.data_object
        event_type = parse_event_type(event.event_type)

        venue_id = venue_id_from_metadata(data_object.get("metadata"))
        customer_id = object_id(data_object.get("customer"))
        subscription_status: Optional[str] = None

        if event_type in _SUBSCRIPTION_EVENTS:
            subscription_id = object_id(data_object.get("id"))
            subscription_status = str(data_object.get("status") or "") or None
        else:
            subscription_id = _subscription_reference(data_object)

        if event_type == ProviderEventType.CHECKOUT_COMPLETED and not venue_id:
            reference = data_object.get("client_reference_id")
            venue_id = str(reference) if reference else None

        needs_status = event_type == ProviderEventType.CHECKOUT_COMPLETED
        if subscription_id and event_type not in _SUBSCRIPTION_EVENTS and (needs_status or not venue_id):
            subscription = self.provider.get_subscription(subscription_id)
            if subscription is not None:
                subscription_status = subscription.status
                customer_id = customer_id or subscription.customer_id
                venue_id = venue_id or venue_id_from_metadata(subscription.metadata)

        if not venue_id and customer_id:
            customer = self.provider.get_customer(customer_id)
            if customer is not None:
                venue_id = venue_id_from_metadata(customer.metadata)

        return ResolvedEvent(
            venue_id=venue_id,
            customer_id=customer_id,
            subscription_id=subscription_id,
            subscription_status=subscription_status,
        )

    def _process(self, event: ProviderEvent, trace: Dict[str, Optional[str]]) -> bool:
        """Apply ``event``; ``trace["venue_id"]`` is set as soon as the venue resolves."""

        if parse_event_type(event.event_type) is None:
            logger.debug("Ignoring provider event type %s", event.event_type)
            return False

        resolved = self.resolve(event)
        trace["venue_id"] = resolved.venue_id
        if not resolved.venue_id:
            logger.warning(
                "Provider event does not resolve to a venue",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return False

        current = self.repository.get_billing_record(resolved.venue_id)
        if current is None:
            logger.warning(
                "Provider event references unknown venue",
                extra={"event_id": event.event_id, "venue_id": resolved.venue_id},
            )
            return False

        transition = apply_event(
            event.event_type,
            resolved,
            current,
            now=self.clock(),
            grace_period_days=self.grace_period_days,
        )
        if transition.is_noop:
            return False

        updated = current
        if not transition.patch.is_empty():
            merged = self.repository.merge_billing_record(current.venue_id, transition.patch)
            if merged is None:
                raise VenueNotFoundError(f"Venue {current.venue_id} disappeared during update")
            updated = merged

        logger.info(
            "Billing transition applied",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "venue_id": updated.venue_id,
                "previous_status": current.billing_status.value,
                "billing_status": updated.billing_status.value,
            },
        )
        self._run_effects(transition.effects, updated)
        return True

    def _run_effects(self, effects: list[NotificationEffect], record: VenueBillingRecord) -> None:
        for effect in effects:
            send_best_effort(self.notifier, effect.kind, record)


__all__ = ["WebhookIntakeService"]
