from __future__ import annotations

import json
import threading
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import pytest

from venue_backend.app.billing import (
    AdminAction,
    BillingRecordPatch,
    BillingRepository,
    BillingService,
    BillingStatus,
    ClaimResult,
    ClaimStatus,
    EventLedgerEntry,
    NotificationGateway,
    NotificationKind,
    PaymentProvider,
    ProviderCustomer,
    ProviderEvent,
    ProviderSubscription,
    VenueBillingRecord,
    WebhookSignatureError,
)
from venue_backend.app.billing.provider import parse_event
from venue_backend.app.billing.timestamps import days

T0 = 1_700_000_000_000
VALID_SIGNATURE = "t=1,v1=valid"


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, *, day_count: float = 0) -> int:
        self.now += days(day_count)
        return self.now


class InMemoryBillingRepository(BillingRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.ledger: Dict[str, EventLedgerEntry] = {}
        self.records: Dict[str, VenueBillingRecord] = {}
        self.admin_actions: List[AdminAction] = []
        self.fail_next_merge: Optional[Exception] = None
        self.before_show: Optional[Callable[[str], None]] = None

    def add_venue(self, venue_id: str, **fields: object) -> VenueBillingRecord:
        values = {"email": f"{venue_id}@example.com", "name": venue_id.title(), "email_verified": True}
        values.update(fields)
        record = VenueBillingRecord(venue_id=venue_id, **values)
        self.records[venue_id] = record
        return record

    def claim_event(self, event_id: str, event_type: str) -> ClaimResult:
        with self._lock:
            existing = self.ledger.get(event_id)
            if existing is None:
                entry = EventLedgerEntry(event_id=event_id, event_type=event_type)
                self.ledger[event_id] = entry
                return ClaimResult(should_process=True, entry=entry)

            reclaim = existing.claim_status == ClaimStatus.ERROR
            entry = existing.model_copy(
                update={
                    "attempts": existing.attempts + 1,
                    "claim_status": ClaimStatus.PROCESSING if reclaim else existing.claim_status,
                }
            )
            self.ledger[event_id] = entry
            return ClaimResult(should_process=reclaim, entry=entry)

    def finish_event(
        self,
        event_id: str,
        status: ClaimStatus,
        *,
        venue_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            entry = self.ledger[event_id]
            self.ledger[event_id] = entry.model_copy(
                update={
                    "claim_status": status,
                    "resolved_venue_id": venue_id or entry.resolved_venue_id,
                    "last_error": error,
                }
            )

    def get_event(self, event_id: str) -> Optional[EventLedgerEntry]:
        return self.ledger.get(event_id)

    def get_billing_record(self, venue_id: str) -> Optional[VenueBillingRecord]:
        return self.records.get(venue_id)

    def merge_billing_record(self, venue_id: str, patch: BillingRecordPatch) -> Optional[VenueBillingRecord]:
        if self.fail_next_merge is not None:
            exc, self.fail_next_merge = self.fail_next_merge, None
            raise exc
        with self._lock:
            record = self.records.get(venue_id)
            if record is None:
                return None
            updated = patch.apply_to(record)
            self.records[venue_id] = updated
            return updated

    def list_payment_failed(self, *, after_venue_id: Optional[str], limit: int) -> List[VenueBillingRecord]:
        matches = sorted(
            (
                record
                for record in self.records.values()
                if record.billing_status == BillingStatus.PAYMENT_FAILED
                and (after_venue_id is None or record.venue_id > after_venue_id)
            ),
            key=lambda record: record.venue_id,
        )
        return matches[:limit]

    def _conditional_update(self, venue_id: str, condition: Callable[[VenueBillingRecord], bool], **update) -> bool:
        with self._lock:
            record = self.records.get(venue_id)
            if record is None or not condition(record):
                return False
            self.records[venue_id] = record.model_copy(update=update)
            return True

    def backfill_grace_deadline(self, venue_id: str, deadline: int) -> bool:
        return self._conditional_update(
            venue_id,
            lambda r: r.billing_status == BillingStatus.PAYMENT_FAILED and r.grace_period_ends_at is None,
            grace_period_ends_at=deadline,
        )

    def mark_reminder_sent(self, venue_id: str, sent_at: int) -> bool:
        return self._conditional_update(
            venue_id,
            lambda r: r.billing_status == BillingStatus.PAYMENT_FAILED and r.reminder_sent_at is None,
            reminder_sent_at=sent_at,
        )

    def release_reminder(self, venue_id: str, sent_at: int) -> None:
        self._conditional_update(venue_id, lambda r: r.reminder_sent_at == sent_at, reminder_sent_at=None)

    def show_venue(self, venue_id: str, *, expected_status: BillingStatus) -> Optional[VenueBillingRecord]:
        if self.before_show is not None:
            hook, self.before_show = self.before_show, None
            hook(venue_id)
        shown = self._conditional_update(venue_id, lambda r: r.billing_status == expected_status, is_visible=True)
        return self.records[venue_id] if shown else None

    def hide_for_nonpayment(self, venue_id: str) -> bool:
        return self._conditional_update(
            venue_id,
            lambda r: r.billing_status == BillingStatus.PAYMENT_FAILED and r.is_visible,
            is_visible=False,
        )

    def record_admin_action(self, action: AdminAction) -> AdminAction:
        stored = action.model_copy(update={"action_id": len(self.admin_actions) + 1})
        self.admin_actions.append(stored)
        return stored

    def list_admin_actions(self, venue_id: str, *, limit: int = 100) -> List[AdminAction]:
        matches = [action for action in self.admin_actions if action.venue_id == venue_id]
        return list(reversed(matches))[:limit]


class FakePaymentProvider(PaymentProvider):
    def __init__(self) -> None:
        self.subscriptions: Dict[str, ProviderSubscription] = {}
        self.customers: Dict[str, ProviderCustomer] = {}
        self.canceled: List[str] = []
        self.created_customers: List[Tuple[str, str]] = []
        self.checkout_sessions: List[Dict[str, str]] = []

    def construct_event(self, raw_body: bytes, signature: Optional[str]) -> ProviderEvent:
        if signature != VALID_SIGNATURE:
            raise WebhookSignatureError("Invalid signature")
        return parse_event(json.loads(raw_body))

    def get_subscription(self, subscription_id: str) -> Optional[ProviderSubscription]:
        return self.subscriptions.get(subscription_id)

    def get_customer(self, customer_id: str) -> Optional[ProviderCustomer]:
        return self.customers.get(customer_id)

    def cancel_subscription(self, subscription_id: str) -> None:
        self.canceled.append(subscription_id)

    def create_customer(self, *, email: str, venue_id: str) -> str:
        self.created_customers.append((email, venue_id))
        return f"cus_{venue_id}"

    def create_checkout_session(
        self,
        *,
        venue_id: str,
        customer_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        self.checkout_sessions.append(
            {
                "venue_id": venue_id,
                "customer_id": customer_id,
                "success_url": success_url,
                "cancel_url": cancel_url,
            }
        )
        return f"https://checkout.example.com/{venue_id}"


class FakeNotifier(NotificationGateway):
    def __init__(self) -> None:
        self.sent: List[Tuple[NotificationKind, str, Dict[str, object]]] = []
        self.failing_kinds: set[NotificationKind] = set()

    def send(self, kind: NotificationKind, recipient: str, params: Mapping[str, object]) -> None:
        if kind in self.failing_kinds:
            raise RuntimeError(f"{kind.value} delivery failed")
        self.sent.append((kind, recipient, dict(params)))

    def kinds(self) -> List[NotificationKind]:
        return [kind for kind, _, _ in self.sent]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryBillingRepository:
    return InMemoryBillingRepository()


@pytest.fixture
def provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def service(repository, provider, notifier, clock) -> BillingService:
    return BillingService(
        repository=repository,
        provider=provider,
        notifier=notifier,
        app_base_url="https://app.example.com",
        clock=clock,
    )


@pytest.fixture
def webhook_body() -> Callable[..., bytes]:
    def _build(event_id: str, event_type: str, data_object: Mapping[str, object]) -> bytes:
        payload = {
            "id": event_id,
            "type": event_type,
            "created": T0 // 1000,
            "data": {"object": dict(data_object)},
        }
        return json.dumps(payload).encode("utf-8")

    return _build
