"""Operator routes for billing overrides and the admin audit trail."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..billing import Actor, VenueNotFoundError
from ..schemas.billing import AuditLogEntry, AuditLogResponse, BillingOnResponse, VenueBillingResponse
from ..services.billing import get_billing_service
from .billing import get_current_actor


def require_operator(current_actor: Actor = Depends(get_current_actor)) -> Actor:
    if not current_actor.is_operator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return current_actor


router = APIRouter(prefix="/api/admin/venues", tags=["admin"])


@router.post("/{venue_id}/billing-off", response_model=VenueBillingResponse)
def billing_off(
    venue_id: str,
    *,
    operator: Actor = Depends(require_operator),
) -> VenueBillingResponse:
    try:
        record = get_billing_service().disable_billing(venue_id, actor=operator)
    except VenueNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return VenueBillingResponse.from_record(record)


@router.post("/{venue_id}/billing-on", response_model=BillingOnResponse)
def billing_on(
    venue_id: str,
    *,
    operator: Actor = Depends(require_operator),
) -> BillingOnResponse:
    try:
        result = get_billing_service().enable_billing(venue_id, actor=operator)
    except VenueNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return BillingOnResponse(checkout_url=str(result["checkout_url"]), email_sent=bool(result["email_sent"]))


@router.get("/{venue_id}/audit-logs", response_model=AuditLogResponse)
def audit_logs(
    venue_id: str,
    *,
    operator: Actor = Depends(require_operator),
) -> AuditLogResponse:
    actions = get_billing_service().list_audit_log(venue_id)
    return AuditLogResponse(logs=[AuditLogEntry.from_action(action) for action in actions])
