"""API routes for provider webhooks, the grace-period trigger and venue visibility."""
from __future__ import annotations

import hmac
import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from ..billing import (
    Actor,
    BillingTransitionError,
    VenueNotFoundError,
    VisibilityGateError,
    WebhookSignatureError,
)
from ..billing.config import BillingConfig
from ..schemas.billing import (
    BillingSummaryResponse,
    GraceRunResponse,
    VenueBillingResponse,
    VisibilityUpdateRequest,
    WebhookAckResponse,
)
from ..services.billing import get_billing_config, get_billing_service
from ... import app_context

logger = logging.getLogger(__name__)

_BEARER_PATTERN = re.compile(r"^Bearer (.+)$", re.IGNORECASE)


def get_current_actor(authorization: Optional[str] = Header(None)) -> Actor:
    return app_context.get_current_actor(authorization=authorization)


def _secret_matches(candidate: Optional[str], secret: str) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8"))


def is_cron_authorized(
    config: BillingConfig,
    *,
    authorization: Optional[str],
    cron_secret_header: Optional[str],
    platform_cron_header: Optional[str],
) -> bool:
    if config.trust_platform_cron_header and platform_cron_header == "1":
        return True
    if not config.cron_secret:
        return False
    match = _BEARER_PATTERN.match(authorization or "")
    bearer = match.group(1) if match else None
    return _secret_matches(bearer, config.cron_secret) or _secret_matches(cron_secret_header, config.cron_secret)


def _require_venue_access(actor: Actor, venue_id: str) -> None:
    if not actor.can_manage(venue_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


router = APIRouter(prefix="/api", tags=["billing"])


@router.post("/stripe/webhook", response_model=WebhookAckResponse)
async def receive_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookAckResponse:
    service = get_billing_service()
    raw_body = await request.body()
    try:
        result = await run_in_threadpool(service.handle_webhook, raw_body, stripe_signature)
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except BillingTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed",
        ) from exc
    return WebhookAckResponse.from_result(result)


@router.get("/cron/billing-grace", response_model=GraceRunResponse)
def run_billing_grace(
    authorization: Optional[str] = Header(None),
    x_cron_secret: Optional[str] = Header(None),
    x_vercel_cron: Optional[str] = Header(None),
) -> GraceRunResponse:
    if not is_cron_authorized(
        get_billing_config(),
        authorization=authorization,
        cron_secret_header=x_cron_secret,
        platform_cron_header=x_vercel_cron,
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    summary = get_billing_service().reconcile()
    return GraceRunResponse.from_summary(summary)


@router.get("/venues/{venue_id}/billing", response_model=BillingSummaryResponse)
def get_venue_billing(
    venue_id: str,
    *,
    current_actor: Actor = Depends(get_current_actor),
) -> BillingSummaryResponse:
    _require_venue_access(current_actor, venue_id)
    try:
        summary = get_billing_service().billing_summary(venue_id)
    except VenueNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return BillingSummaryResponse.from_summary(summary)


@router.patch("/venues/{venue_id}/visibility", response_model=VenueBillingResponse)
def update_visibility(
    venue_id: str,
    payload: VisibilityUpdateRequest,
    *,
    current_actor: Actor = Depends(get_current_actor),
) -> VenueBillingResponse:
    _require_venue_access(current_actor, venue_id)
    try:
        record = get_billing_service().set_visibility(venue_id, payload.is_visible, actor=current_actor)
    except VenueNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except VisibilityGateError as exc:
        logger.info(
            "Visibility change rejected",
            extra={"venue_id": venue_id, "reason": exc.code, "actor_id": current_actor.uid},
        )
        raise exc.to_http_exception() from exc
    return VenueBillingResponse.from_record(record)
