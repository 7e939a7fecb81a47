"""Billing service coordinating the state store, payment provider and email."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from .exceptions import VenueNotFoundError
from .intake import WebhookIntakeService
from .models import (
    Actor,
    AdminAction,
    AdminActionType,
    BillingRecordPatch,
    BillingStatus,
    BillingSummary,
    ClaimResult,
    ClaimStatus,
    EventLedgerEntry,
    IntakeResult,
    NotificationKind,
    ProviderCustomer,
    ProviderEvent,
    ProviderSubscription,
    ReconcileSummary,
    VenueBillingRecord,
)
from .notifications import send_best_effort
from .reconciler import GracePeriodReconciler
from .timestamps import now_millis
from .visibility import billing_status_changed, check_can_enable_visibility, describe_billing

logger = logging.getLogger(__name__)


class PaymentProvider(Protocol):
    """External payment processor integration."""

    def construct_event(self, raw_body: bytes, signature: Optional[str]) -> ProviderEvent:
        """Verify the webhook signature and decode the event."""

    def get_subscription(self, subscription_id: str) -> Optional[ProviderSubscription]:
        ...

    def get_customer(self, customer_id: str) -> Optional[ProviderCustomer]:
        ...

    def cancel_subscription(self, subscription_id: str) -> None:
        ...

    def create_customer(self, *, email: str, venue_id: str) -> str:
        ...

    def create_checkout_session(
        self,
        *,
        venue_id: str,
        customer_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """Create a subscription checkout session and return its URL."""


class NotificationGateway(Protocol):
    """Sends templated transactional email; raises when delivery fails."""

    def send(self, kind: NotificationKind, recipient: str, params: Mapping[str, object]) -> None:
        ...


class BillingRepository(Protocol):
    """Persistence operations required by the billing subsystem."""

    def claim_event(self, event_id: str, event_type: str) -> ClaimResult:
        ...

    def finish_event(
        self,
        event_id: str,
        status: ClaimStatus,
        *,
        venue_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        ...

    def get_event(self, event_id: str) -> Optional[EventLedgerEntry]:
        ...

    def get_billing_record(self, venue_id: str) -> Optional[VenueBillingRecord]:
        ...

    def merge_billing_record(self, venue_id: str, patch: BillingRecordPatch) -> Optional[VenueBillingRecord]:
        ...

    def list_payment_failed(self, *, after_venue_id: Optional[str], limit: int) -> Sequence[VenueBillingRecord]:
        ...

    def backfill_grace_deadline(self, venue_id: str, deadline: int) -> bool:
        ...

    def mark_reminder_sent(self, venue_id: str, sent_at: int) -> bool:
        ...

    def release_reminder(self, venue_id: str, sent_at: int) -> None:
        ...

    def show_venue(self, venue_id: str, *, expected_status: BillingStatus) -> Optional[VenueBillingRecord]:
        ...

    def hide_for_nonpayment(self, venue_id: str) -> bool:
        ...

    def record_admin_action(self, action: AdminAction) -> AdminAction:
        ...

    def list_admin_actions(self, venue_id: str, *, limit: int = 100) -> Sequence[AdminAction]:
        ...


_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}
_VISIBILITY_ATTEMPTS = 3


@dataclass(**_dataclass_kwargs)
class BillingService:
    """Entry point used by the HTTP layer and the scheduler."""

    repository: BillingRepository
    provider: PaymentProvider
    notifier: NotificationGateway
    grace_period_days: int = 14
    reminder_after_days: int = 7
    reconcile_page_size: int = 100
    reconcile_max_records: int = 500
    app_base_url: str = "http://localhost:3000"
    clock: Callable[[], int] = now_millis
    _intake: Optional[WebhookIntakeService] = field(default=None, init=False, repr=False)
    _reconciler: Optional[GracePeriodReconciler] = field(default=None, init=False, repr=False)

    @property
    def intake(self) -> WebhookIntakeService:
        if self._intake is None:
            self._intake = WebhookIntakeService(
                repository=self.repository,
                provider=self.provider,
                notifier=self.notifier,
                grace_period_days=self.grace_period_days,
                clock=self.clock,
            )
        return self._intake

    @property
    def reconciler(self) -> GracePeriodReconciler:
        if self._reconciler is None:
            self._reconciler = GracePeriodReconciler(
                repository=self.repository,
                notifier=self.notifier,
                grace_period_days=self.grace_period_days,
                reminder_after_days=self.reminder_after_days,
                page_size=self.reconcile_page_size,
                max_records=self.reconcile_max_records,
            )
        return self._reconciler

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> IntakeResult:
        return self.intake.handle(raw_body, signature)

    def reconcile(self, now: Optional[int] = None) -> ReconcileSummary:
        return self.reconciler.reconcile(now if now is not None else self.clock())

    def get_record(self, venue_id: str) -> VenueBillingRecord:
        record = self.repository.get_billing_record(venue_id)
        if record is None:
            raise VenueNotFoundError(f"Venue {venue_id} not found")
        return record

    def billing_summary(self, venue_id: str) -> BillingSummary:
        record = self.get_record(venue_id)
        return describe_billing(record, now=self.clock(), grace_period_days=self.grace_period_days)

    def set_visibility(self, venue_id: str, visible: bool, *, actor: Actor) -> VenueBillingRecord:
        """Change venue visibility, consulting the visibility gate when enabling."""

        record = self.get_record(venue_id)
        if visible and not actor.is_operator:
            updated = self._show_if_status_unchanged(record)
        else:
            if visible:
                check_can_enable_visibility(
                    record,
                    now=self.clock(),
                    operator_override=True,
                    grace_period_days=self.grace_period_days,
                )
            updated = self.repository.merge_billing_record(venue_id, BillingRecordPatch(is_visible=visible))
            if updated is None:
                raise VenueNotFoundError(f"Venue {venue_id} not found")

        if actor.is_operator:
            self._audit(
                actor,
                venue_id,
                AdminActionType.VISIBILITY_OVERRIDE,
                {"is_visible": visible, "billing_status": record.billing_status.value},
            )
        return updated

    def _show_if_status_unchanged(self, record: VenueBillingRecord) -> VenueBillingRecord:
        # The write only lands while billing_status still matches the gated read.
        for _ in range(_VISIBILITY_ATTEMPTS):
            check_can_enable_visibility(record, now=self.clock(), grace_period_days=self.grace_period_days)
            updated = self.repository.show_venue(record.venue_id, expected_status=record.billing_status)
            if updated is not None:
                return updated
            record = self.get_record(record.venue_id)
        raise billing_status_changed(record.venue_id)

    def disable_billing(self, venue_id: str, *, actor: Actor) -> VenueBillingRecord:
        """Operator override: cancel the subscription and hide the venue."""

        record = self.get_record(venue_id)
        if record.provider_subscription_id:
            self.provider.cancel_subscription(record.provider_subscription_id)

        patch = BillingRecordPatch(
            billing_status=BillingStatus.CANCELED,
            is_visible=False,
            last_payment_failed_at=None,
            grace_period_ends_at=None,
            reminder_sent_at=None,
        )
        updated = self.repository.merge_billing_record(venue_id, patch)
        if updated is None:
            raise VenueNotFoundError(f"Venue {venue_id} not found")

        self._audit(
            actor,
            venue_id,
            AdminActionType.BILLING_OFF,
            {
                "previous_status": record.billing_status.value,
                "subscription_id": record.provider_subscription_id,
            },
        )
        return updated

    def enable_billing(self, venue_id: str, *, actor: Actor) -> Dict[str, object]:
        """Operator override: send the venue a checkout link to (re)start billing."""

        record = self.get_record(venue_id)
        if not record.email:
            raise ValueError("Venue is missing an email address")

        customer_id = record.provider_customer_id
        if not customer_id:
            customer_id = self.provider.create_customer(email=record.email, venue_id=venue_id)
            merged = self.repository.merge_billing_record(
                venue_id, BillingRecordPatch(provider_customer_id=customer_id)
            )
            record = merged or record

        checkout_url = self.provider.create_checkout_session(
            venue_id=venue_id,
            customer_id=customer_id,
            success_url=f"{self.app_base_url}/admin?checkout=success",
            cancel_url=f"{self.app_base_url}/admin/super/venues/{venue_id}?checkout=cancel",
        )
        email_sent = send_best_effort(
            self.notifier,
            NotificationKind.START_SUBSCRIPTION,
            record,
            extra={"checkout_url": checkout_url},
        )

        self._audit(
            actor,
            venue_id,
            AdminActionType.BILLING_ON,
            {"customer_id": customer_id, "email_sent": email_sent},
        )
        return {"checkout_url": checkout_url, "email_sent": email_sent}

    def list_audit_log(self, venue_id: str, *, limit: int = 100) -> List[AdminAction]:
        return list(self.repository.list_admin_actions(venue_id, limit=limit))

    def _audit(self, actor: Actor, venue_id: str, action: AdminActionType, details: Dict[str, object]) -> None:
        entry = AdminAction(actor_id=actor.uid, venue_id=venue_id, action=action, details=details)
        try:
            self.repository.record_admin_action(entry)
        except Exception:
            logger.exception(
                "Failed recording admin action",
                extra={"venue_id": venue_id, "action": action.value, "actor_id": actor.uid},
            )


__all__ = [
    "BillingRepository",
    "BillingService",
    "NotificationGateway",
    "PaymentProvider",
]
