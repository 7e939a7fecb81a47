"""In-process scheduler for the billing grace-period reconciler."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Event, Lock, Thread
from typing import Dict, Optional

from venue_backend.app.billing import ReconcileSummary
from venue_backend.app.billing.timestamps import isoformat_millis, to_millis
from venue_backend.app.services.billing import get_billing_config, get_billing_service

logger = logging.getLogger(__name__)

_scheduler_lock = Lock()
_worker: Optional["_GraceWorker"] = None

_GRACE_METRICS: Dict[str, object] = {
    "runs": 0,
    "scanned": 0,
    "reminded": 0,
    "hidden": 0,
    "failures": 0,
    "last_run_at": None,
    "last_success_at": None,
    "last_error": None,
}
_metrics_lock = Lock()


def reconcile_grace_periods(now: Optional[int] = None) -> ReconcileSummary:
    return get_billing_service().reconcile(now)


def _record_run_start(started_at: datetime) -> None:
    with _metrics_lock:
        _GRACE_METRICS["runs"] = int(_GRACE_METRICS.get("runs", 0)) + 1
        _GRACE_METRICS["last_run_at"] = started_at


def _record_run_success(completed_at: datetime, summary: ReconcileSummary) -> None:
    with _metrics_lock:
        _GRACE_METRICS["scanned"] = int(_GRACE_METRICS.get("scanned", 0)) + summary.scanned
        _GRACE_METRICS["reminded"] = int(_GRACE_METRICS.get("reminded", 0)) + summary.reminded
        _GRACE_METRICS["hidden"] = int(_GRACE_METRICS.get("hidden", 0)) + summary.hidden
        _GRACE_METRICS["failures"] = int(_GRACE_METRICS.get("failures", 0)) + summary.failures
        _GRACE_METRICS["last_success_at"] = completed_at
        _GRACE_METRICS["last_error"] = None


def _record_run_failure(error: Exception) -> None:
    with _metrics_lock:
        _GRACE_METRICS["failures"] = int(_GRACE_METRICS.get("failures", 0)) + 1
        _GRACE_METRICS["last_error"] = f"{type(error).__name__}: {error}"


def run_grace_job(*, now: Optional[datetime] = None) -> ReconcileSummary:
    current_time = now or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)

    _record_run_start(current_time)
    try:
        summary = reconcile_grace_periods(to_millis(current_time))
    except Exception as exc:
        _record_run_failure(exc)
        logger.exception("Grace period job failed")
        raise
    else:
        _record_run_success(current_time, summary)
        logger.info(
            "Grace period job completed",
            extra={
                "scanned": summary.scanned,
                "reminded": summary.reminded,
                "hidden": summary.hidden,
                "failures": summary.failures,
                "run_at": isoformat_millis(summary.now),
            },
        )
        return summary


class _GraceWorker(Thread):
    def __init__(self, *, interval: float):
        super().__init__(daemon=True, name="billing-grace-worker")
        self._interval = max(1.0, interval)
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        while not self._stop_event.is_set():
            try:
                run_grace_job()
            except Exception:
                # Logged inside run_grace_job; the next tick retries.
                pass
            if self._stop_event.wait(self._interval):
                break


def start_grace_scheduler() -> bool:
    """Start the background worker when enabled in configuration."""

    global _worker
    config = get_billing_config()
    if not config.scheduler_enabled:
        logger.info("Billing grace scheduler disabled")
        return False
    with _scheduler_lock:
        if _worker is not None:
            return True
        _worker = _GraceWorker(interval=config.scheduler_interval_seconds)
        _worker.start()
        logger.info(
            "Billing grace scheduler started",
            extra={"interval_seconds": config.scheduler_interval_seconds},
        )
    return True


def shutdown_grace_scheduler() -> None:
    global _worker
    with _scheduler_lock:
        if _worker is None:
            return
        _worker.stop()
        _worker.join(timeout=1.0)
        _worker = None
        logger.info("Billing grace scheduler stopped")


def get_grace_metrics() -> Dict[str, object]:
    with _metrics_lock:
        last_run_at = _GRACE_METRICS.get("last_run_at")
        last_success_at = _GRACE_METRICS.get("last_success_at")
        return {
            **_GRACE_METRICS,
            "last_run_at": last_run_at.isoformat() if last_run_at else None,
            "last_success_at": last_success_at.isoformat() if last_success_at else None,
        }


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        _GRACE_METRICS.update(
            {
                "runs": 0,
                "scanned": 0,
                "reminded": 0,
                "hidden": 0,
                "failures": 0,
                "last_run_at": None,
                "last_success_at": None,
                "last_error": None,
            }
        )


__all__ = [
    "get_grace_metrics",
    "run_grace_job",
    "shutdown_grace_scheduler",
    "start_grace_scheduler",
]
