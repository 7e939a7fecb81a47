"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Mapping

from ..billing import BillingService, NotificationGateway, NotificationKind
from ..billing.config import BillingConfig, load_billing_config
from ..billing.provider import StripePaymentProvider
from ..billing.repository import PostgresBillingRepository
from ...mail import (
    EmailConfig,
    EmailProvider,
    OutboundEmail,
    create_email_provider,
    load_email_config,
    render_subject_body,
)


logger = logging.getLogger("billing")


class EmailNotificationGateway(NotificationGateway):
    """Renders billing templates and hands them to the configured email provider."""

    def __init__(self, provider: EmailProvider, config: EmailConfig) -> None:
        self.provider = provider
        self.config = config

    def send(self, kind: NotificationKind, recipient: str, params: Mapping[str, object]) -> None:
        context = {
            "brand_name": self.config.brand_name,
            "app_base_url": self.config.app_base_url,
            "dashboard_url": f"{self.config.app_base_url}/admin",
            **params,
        }
        subject, text_body, html_body = render_subject_body(kind.value, context)
        self.provider.deliver(OutboundEmail(recipient, subject, text_body, html_body))
        logger.info(
            "Billing email sent",
            extra={
                "notification_kind": kind.value,
                "venue_id": params.get("venue_id"),
                **self.provider.describe(),
            },
        )


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    config = get_billing_config()
    email_config = load_email_config()
    repository = PostgresBillingRepository()
    provider = StripePaymentProvider(
        api_key=config.stripe_secret_key,
        webhook_secret=config.stripe_webhook_secret,
        tolerance_seconds=config.webhook_tolerance_seconds,
        price_id=config.checkout_price_id,
    )
    notifier = EmailNotificationGateway(create_email_provider(email_config), email_config)
    service = BillingService(
        repository=repository,
        provider=provider,
        notifier=notifier,
        grace_period_days=config.grace_period_days,
        reminder_after_days=config.reminder_after_days,
        reconcile_page_size=config.reconcile_page_size,
        reconcile_max_records=config.reconcile_max_records,
        app_base_url=config.app_base_url,
    )
    return service


__all__ = ["EmailNotificationGateway", "get_billing_config", "get_billing_service"]
