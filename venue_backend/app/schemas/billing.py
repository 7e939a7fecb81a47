"""API schemas for billing endpoints."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import (
    AdminAction,
    BillingStatus,
    BillingSummary,
    IntakeOutcome,
    IntakeResult,
    ReconcileSummary,
    VenueBillingRecord,
)


class WebhookAckResponse(BaseModel):
    received: bool = True
    duplicate: bool = False
    outcome: IntakeOutcome

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: IntakeResult) -> "WebhookAckResponse":
        return cls(duplicate=result.outcome == IntakeOutcome.DUPLICATE, outcome=result.outcome)


class GraceRunResponse(BaseModel):
    ok: bool = True
    scanned: int
    reminded: int
    hidden: int
    now: int

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: ReconcileSummary) -> "GraceRunResponse":
        return cls(
            scanned=summary.scanned,
            reminded=summary.reminded,
            hidden=summary.hidden,
            now=summary.now,
        )


class BillingSummaryResponse(BaseModel):
    venue_id: str = Field(alias="venueId")
    billing_status: BillingStatus = Field(alias="billingStatus")
    billing_enabled: bool = Field(alias="billingEnabled")
    label: str
    is_visible: bool = Field(alias="isVisible")
    grace_period_ends_at: Optional[int] = Field(alias="gracePeriodEndsAt", default=None)
    grace_days_remaining: Optional[int] = Field(alias="graceDaysRemaining", default=None)
    visibility_blocked_reason: Optional[str] = Field(alias="visibilityBlockedReason", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: BillingSummary) -> "BillingSummaryResponse":
        return cls(**summary.model_dump())


class VisibilityUpdateRequest(BaseModel):
    is_visible: bool = Field(alias="isVisible")

    model_config = ConfigDict(populate_by_name=True)


class VenueBillingResponse(BaseModel):
    venue_id: str = Field(alias="venueId")
    billing_status: BillingStatus = Field(alias="billingStatus")
    billing_enabled: bool = Field(alias="billingEnabled")
    is_visible: bool = Field(alias="isVisible")
    grace_period_ends_at: Optional[int] = Field(alias="gracePeriodEndsAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_record(cls, record: VenueBillingRecord) -> "VenueBillingResponse":
        return cls(
            venue_id=record.venue_id,
            billing_status=record.billing_status,
            billing_enabled=record.billing_enabled,
            is_visible=record.is_visible,
            grace_period_ends_at=record.grace_period_ends_at,
        )


class BillingOnResponse(BaseModel):
    ok: bool = True
    checkout_url: str = Field(alias="checkoutUrl")
    email_sent: bool = Field(alias="emailSent")

    model_config = ConfigDict(populate_by_name=True)


class AuditLogEntry(BaseModel):
    id: Optional[int] = None
    admin_uid: str = Field(alias="adminUid")
    venue_id: Optional[str] = Field(alias="venueId", default=None)
    action: str
    details: Dict[str, object] = Field(default_factory=dict)
    created_at: int = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_action(cls, action: AdminAction) -> "AuditLogEntry":
        return cls(
            id=action.action_id,
            admin_uid=action.actor_id,
            venue_id=action.venue_id,
            action=action.action.value,
            details=action.details,
            created_at=action.created_at,
        )


class AuditLogResponse(BaseModel):
    logs: List[AuditLogEntry]

    model_config = ConfigDict(populate_by_name=True)
