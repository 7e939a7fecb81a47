"""Billing lifecycle package: event ledger, state machine, reconciler and gate."""

from .exceptions import (
    BillingError,
    BillingTransitionError,
    VenueNotFoundError,
    VisibilityGateError,
    WebhookSignatureError,
)
from .intake import WebhookIntakeService
from .models import (
    Actor,
    ActorRole,
    AdminAction,
    AdminActionType,
    BillingRecordPatch,
    BillingStatus,
    BillingSummary,
    ClaimResult,
    ClaimStatus,
    EventLedgerEntry,
    IntakeOutcome,
    IntakeResult,
    NotificationEffect,
    NotificationKind,
    ProviderCustomer,
    ProviderEvent,
    ProviderEventType,
    ProviderSubscription,
    ReconcileSummary,
    ResolvedEvent,
    Transition,
    VenueBillingRecord,
)
from .reconciler import GracePeriodReconciler
from .service import (
    BillingRepository,
    BillingService,
    NotificationGateway,
    PaymentProvider,
)
from .state_machine import apply_event, map_subscription_status

__all__ = [
    "Actor",
    "ActorRole",
    "AdminAction",
    "AdminActionType",
    "BillingError",
    "BillingRecordPatch",
    "BillingRepository",
    "BillingService",
    "BillingStatus",
    "BillingSummary",
    "BillingTransitionError",
    "ClaimResult",
    "ClaimStatus",
    "EventLedgerEntry",
    "GracePeriodReconciler",
    "IntakeOutcome",
    "IntakeResult",
    "NotificationEffect",
    "NotificationGateway",
    "NotificationKind",
    "PaymentProvider",
    "ProviderCustomer",
    "ProviderEvent",
    "ProviderEventType",
    "ProviderSubscription",
    "ReconcileSummary",
    "ResolvedEvent",
    "Transition",
    "VenueBillingRecord",
    "VenueNotFoundError",
    "VisibilityGateError",
    "WebhookIntakeService",
    "WebhookSignatureError",
    "apply_event",
    "map_subscription_status",
]
