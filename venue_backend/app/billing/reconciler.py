"""Time-driven enforcement of the payment grace period."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .models import NotificationKind, ReconcileSummary, VenueBillingRecord
from .notifications import send_best_effort
from .timestamps import days, now_millis
from .visibility import effective_grace_deadline

if TYPE_CHECKING:  # pragma: no cover
    from .service import BillingRepository, NotificationGateway

logger = logging.getLogger(__name__)

_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}


@dataclass
class _VenueOutcome:
    reminded: bool = False
    hidden: bool = False
    backfilled: bool = False
    failures: int = 0


@dataclass(**_dataclass_kwargs)
class GracePeriodReconciler:
    """Sends the day-7 reminder and hides venues once the grace period ends."""

    repository: "BillingRepository"
    notifier: "NotificationGateway"
    grace_period_days: int = 14
    reminder_after_days: int = 7
    page_size: int = 100
    max_records: int = 500

    def reconcile(self, now: Optional[int] = None) -> ReconcileSummary:
        current_time = now if now is not None else now_millis()
        scanned = reminded = hidden = backfilled = failures = 0
        after_venue_id: Optional[str] = None

        while scanned < self.max_records:
            limit = min(self.page_size, self.max_records - scanned)
            page = self.repository.list_payment_failed(after_venue_id=after_venue_id, limit=limit)
            for record in page:
                scanned += 1
                outcome = self._reconcile_venue(record, current_time)
                reminded += int(outcome.reminded)
                hidden += int(outcome.hidden)
                backfilled += int(outcome.backfilled)
                failures += outcome.failures
            if len(page) < limit:
                break
            after_venue_id = page[-1].venue_id
        else:
            logger.warning(
                "Grace period scan stopped at record cap",
                extra={"max_records": self.max_records},
            )

        summary = ReconcileSummary(
            scanned=scanned,
            reminded=reminded,
            hidden=hidden,
            backfilled=backfilled,
            failures=failures,
            now=current_time,
        )
        logger.info(
            "Grace period reconciliation completed",
            extra={
                "scanned": scanned,
                "reminded": reminded,
                "hidden": hidden,
                "backfilled": backfilled,
                "failures": failures,
            },
        )
        return summary

    def _reconcile_venue(self, record: VenueBillingRecord, now: int) -> _VenueOutcome:
        outcome = _VenueOutcome()
        deadline = effective_grace_deadline(record, grace_period_days=self.grace_period_days)

        if record.grace_period_ends_at is None and deadline is not None:
            try:
                outcome.backfilled = self.repository.backfill_grace_deadline(record.venue_id, deadline)
            except Exception:
                outcome.failures += 1
                logger.exception("Failed backfilling grace deadline", extra={"venue_id": record.venue_id})

        try:
            outcome.reminded = self._maybe_remind(record, deadline, now)
        except Exception:
            outcome.failures += 1
            logger.exception("Failed sending day-7 reminder", extra={"venue_id": record.venue_id})

        try:
            outcome.hidden = self._maybe_hide(record, deadline, now)
        except Exception:
            outcome.failures += 1
            logger.exception("Failed hiding venue after grace period", extra={"venue_id": record.venue_id})

        return outcome

    def _maybe_remind(self, record: VenueBillingRecord, deadline: Optional[int], now: int) -> bool:
        failed_at = record.last_payment_failed_at
        if record.reminder_sent_at is not None or failed_at is None:
            return False
        if now < failed_at + days(self.reminder_after_days):
            return False
        if deadline is not None and now >= deadline:
            return False
        if not record.email:
            logger.warning("Venue has no email for reminder", extra={"venue_id": record.venue_id})
            return False

        if not self.repository.mark_reminder_sent(record.venue_id, now):
            # Another run claimed the reminder first.
            return False
        if send_best_effort(self.notifier, NotificationKind.PAYMENT_REMINDER_DAY7, record):
            return True
        self.repository.release_reminder(record.venue_id, now)
        raise RuntimeError("Reminder delivery failed")

    def _maybe_hide(self, record: VenueBillingRecord, deadline: Optional[int], now: int) -> bool:
        if not record.is_visible or deadline is None or now < deadline:
            return False
        if not self.repository.hide_for_nonpayment(record.venue_id):
            return False
        send_best_effort(self.notifier, NotificationKind.HIDDEN_DAY14, record)
        return True


__all__ = ["GracePeriodReconciler"]
