"""Domain models for the venue billing lifecycle."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .timestamps import now_millis, to_millis


class BillingStatus(str, Enum):
    """Subscription health of a venue."""

    ACTIVE = "active"
    PAYMENT_FAILED = "payment_failed"
    CANCELED = "canceled"
    UNKNOWN = "unknown"


class ClaimStatus(str, Enum):
    """Lifecycle of an event ledger entry."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class ProviderEventType(str, Enum):
    """Provider event types the state machine reacts to."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class NotificationKind(str, Enum):
    """Transactional email templates sent by the billing subsystem."""

    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REMINDER_DAY7 = "payment_reminder_day7"
    HIDDEN_DAY14 = "hidden_day14"
    START_SUBSCRIPTION = "start_subscription"


class IntakeOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class ActorRole(str, Enum):
    OPERATOR = "superadmin"
    VENUE_OWNER = "venue_owner"


class AdminActionType(str, Enum):
    BILLING_OFF = "billing_off"
    BILLING_ON = "billing_on"
    VISIBILITY_OVERRIDE = "visibility_override"


_RECORD_TIMESTAMP_FIELDS = (
    "last_payment_failed_at",
    "grace_period_ends_at",
    "reminder_sent_at",
    "updated_at",
)


class VenueBillingRecord(BaseModel):
    """Persisted billing state of one venue."""

    venue_id: str
    billing_status: BillingStatus = BillingStatus.UNKNOWN
    provider_customer_id: Optional[str] = None
    provider_subscription_id: Optional[str] = None
    last_payment_failed_at: Optional[int] = None
    grace_period_ends_at: Optional[int] = None
    reminder_sent_at: Optional[int] = None
    is_visible: bool = False
    name: Optional[str] = None
    email: Optional[str] = None
    email_verified: bool = False
    updated_at: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator(*_RECORD_TIMESTAMP_FIELDS, mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: object) -> Optional[int]:
        return to_millis(value)

    @property
    def billing_enabled(self) -> bool:
        return self.billing_status != BillingStatus.CANCELED

    @property
    def in_failure_episode(self) -> bool:
        return (
            self.billing_status == BillingStatus.PAYMENT_FAILED
            and self.last_payment_failed_at is not None
        )


class BillingRecordPatch(BaseModel):
    """Sparse update applied to a :class:`VenueBillingRecord` in one merge write.

    Only fields passed explicitly are written; passing ``None`` clears a field.
    """

    billing_status: Optional[BillingStatus] = None
    provider_customer_id: Optional[str] = None
    provider_subscription_id: Optional[str] = None
    last_payment_failed_at: Optional[int] = None
    grace_period_ends_at: Optional[int] = None
    reminder_sent_at: Optional[int] = None
    is_visible: Optional[bool] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("last_payment_failed_at", "grace_period_ends_at", "reminder_sent_at", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: object) -> Optional[int]:
        return to_millis(value)

    def changes(self) -> Dict[str, object]:
        return self.model_dump(exclude_unset=True)

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def apply_to(self, record: VenueBillingRecord) -> VenueBillingRecord:
        return record.model_copy(update={**self.changes(), "updated_at": now_millis()})


class EventLedgerEntry(BaseModel):
    """Idempotency record of one inbound provider event."""

    event_id: str
    event_type: str
    claim_status: ClaimStatus = ClaimStatus.PROCESSING
    attempts: int = Field(default=1, ge=1)
    resolved_venue_id: Optional[str] = None
    last_error: Optional[str] = None
    created_at: int = Field(default_factory=now_millis)
    updated_at: int = Field(default_factory=now_millis)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: object) -> Optional[int]:
        return to_millis(value)


class ClaimResult(BaseModel):
    should_process: bool
    entry: EventLedgerEntry

    model_config = ConfigDict(frozen=True)


class ProviderEvent(BaseModel):
    """Verified provider webhook event."""

    event_id: str
    event_type: str
    data_object: Dict[str, object] = Field(default_factory=dict)
    created_at: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class ProviderSubscription(BaseModel):
    subscription_id: str
    status: str
    customer_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class ProviderCustomer(BaseModel):
    customer_id: str
    email: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class ResolvedEvent(BaseModel):
    """Identifiers an event refers to, after provider lookups."""

    venue_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    subscription_status: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class NotificationEffect(BaseModel):
    """Post-commit notification requested by a transition."""

    kind: NotificationKind
    venue_id: str

    model_config = ConfigDict(frozen=True)


class Transition(BaseModel):
    """Outcome of the pure state machine for one event."""

    next_status: Optional[BillingStatus] = None
    patch: BillingRecordPatch = Field(default_factory=BillingRecordPatch)
    effects: List[NotificationEffect] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def is_noop(self) -> bool:
        return self.patch.is_empty() and not self.effects


class IntakeResult(BaseModel):
    event_id: str
    event_type: str
    outcome: IntakeOutcome
    venue_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ReconcileSummary(BaseModel):
    scanned: int = 0
    reminded: int = 0
    hidden: int = 0
    backfilled: int = 0
    failures: int = 0
    now: int

    model_config = ConfigDict(frozen=True)


class BillingSummary(BaseModel):
    """Owner-facing description of a venue's billing state."""

    venue_id: str
    billing_status: BillingStatus
    billing_enabled: bool
    label: str
    is_visible: bool
    grace_period_ends_at: Optional[int] = None
    grace_days_remaining: Optional[int] = None
    visibility_blocked_reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class Actor(BaseModel):
    """Authenticated caller of the billing API."""

    uid: str
    role: ActorRole
    venue_id: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_operator(self) -> bool:
        return self.role == ActorRole.OPERATOR

    def can_manage(self, venue_id: str) -> bool:
        return self.is_operator or self.venue_id == venue_id


class AdminAction(BaseModel):
    """Audit trail entry for an operator action."""

    action_id: Optional[int] = None
    actor_id: str
    venue_id: Optional[str] = None
    action: AdminActionType
    details: Dict[str, object] = Field(default_factory=dict)
    created_at: int = Field(default_factory=now_millis)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("created_at", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: object) -> Optional[int]:
        return to_millis(value)


__all__ = [
    "Actor",
    "ActorRole",
    "AdminAction",
    "AdminActionType",
    "BillingRecordPatch",
    "BillingStatus",
    "BillingSummary",
    "ClaimResult",
    "ClaimStatus",
    "EventLedgerEntry",
    "IntakeOutcome",
    "IntakeResult",
    "NotificationEffect",
    "NotificationKind",
    "ProviderCustomer",
    "ProviderEvent",
    "ProviderEventType",
    "ProviderSubscription",
    "ReconcileSummary",
    "ResolvedEvent",
    "Transition",
    "VenueBillingRecord",
]
