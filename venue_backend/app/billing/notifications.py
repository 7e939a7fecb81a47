"""Best-effort delivery of billing notifications."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Mapping, Optional

from .models import NotificationKind, VenueBillingRecord
from .timestamps import from_millis

if TYPE_CHECKING:  # pragma: no cover
    from .service import NotificationGateway

logger = logging.getLogger(__name__)

DEFAULT_VENUE_NAME = "your venue"


def notification_params(record: VenueBillingRecord) -> Dict[str, object]:
    deadline = from_millis(record.grace_period_ends_at)
    return {
        "venue_id": record.venue_id,
        "venue_name": record.name or DEFAULT_VENUE_NAME,
        "grace_period_ends_on": deadline.date().isoformat() if deadline else "",
    }


def send_best_effort(
    notifier: "NotificationGateway",
    kind: NotificationKind,
    record: VenueBillingRecord,
    *,
    extra: Optional[Mapping[str, object]] = None,
) -> bool:
    """Send ``kind`` to the venue's contact address; never raises.

    Returns ``True`` only when the gateway accepted the message.
    """

    if not record.email:
        logger.warning(
            "Skipping billing notification without recipient",
            extra={"venue_id": record.venue_id, "notification_kind": kind.value},
        )
        return False

    params = notification_params(record)
    if extra:
        params.update(extra)
    try:
        notifier.send(kind, record.email, params)
    except Exception:
        logger.exception(
            "Billing notification failed",
            extra={"venue_id": record.venue_id, "notification_kind": kind.value},
        )
        return False
    return True


__all__ = ["notification_params", "send_best_effort"]
