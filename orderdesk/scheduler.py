"""Time-based triggers for the billing passes."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from threading import Event, Lock, Thread
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from .app.billing import BillingService, MonthlyBillingResult, RetryRunSummary
from .config import BillingConfig

logger = logging.getLogger(__name__)

MONTHLY = "monthly"
RETRY = "retry"


def _empty_metrics() -> Dict[str, object]:
    return {
        "runs": 0,
        "succeeded": 0,
        "failed": 0,
        "last_run_at": None,
        "last_success_at": None,
        "last_error": None,
    }


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def next_monthly_run(now: datetime, tz_name: str) -> datetime:
    """Next 1st-of-month midnight in ``tz_name``, strictly after ``now``."""

    tz = ZoneInfo(tz_name)
    local = _aware(now).astimezone(tz)
    target = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if target <= local:
        if target.month == 12:
            target = target.replace(year=target.year + 1, month=1)
        else:
            target = target.replace(month=target.month + 1)
    return target.astimezone(timezone.utc)


def next_retry_run(now: datetime, every_hours: int) -> datetime:
    """Next slot on the UTC hour grid that is a multiple of ``every_hours``."""

    step = max(1, every_hours)
    current = _aware(now).astimezone(timezone.utc)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    slot = midnight + timedelta(hours=(current.hour // step) * step)
    while slot <= current:
        slot += timedelta(hours=step)
    return slot


class _BillingWorker(Thread):
    def __init__(
        self,
        trigger: str,
        job: Callable[[], object],
        next_run: Callable[[datetime], datetime],
    ) -> None:
        super().__init__(daemon=True, name=f"billing-{trigger}")
        self.trigger = trigger
        self._job = job
        self._next_run = next_run
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        while not self._stop_event.is_set():
            now = datetime.now(timezone.utc)
            delay = max((self._next_run(now) - now).total_seconds(), 0.0)
            if self._stop_event.wait(delay):
                return
            try:
                self._job()
            except Exception:
                # Already logged by the job; the schedule continues.
                pass


class BillingScheduler:
    """Owns the monthly and retry triggers plus their run metrics."""

    def __init__(self, service: BillingService, config: Optional[BillingConfig] = None) -> None:
        self.service = service
        self.config = config or service.config
        self._lock = Lock()
        self._workers: Dict[str, _BillingWorker] = {}
        self._metrics_lock = Lock()
        self._metrics: Dict[str, Dict[str, object]] = {MONTHLY: _empty_metrics(), RETRY: _empty_metrics()}

    @property
    def running(self) -> bool:
        with self._lock:
            return bool(self._workers)

    def start(self) -> None:
        with self._lock:
            if self._workers:
                raise RuntimeError("Billing scheduler already started")
            tz_name = self.config.billing_timezone
            every_hours = self.config.retry_every_hours
            self._workers = {
                MONTHLY: _BillingWorker(MONTHLY, self.run_monthly, lambda now: next_monthly_run(now, tz_name)),
                RETRY: _BillingWorker(RETRY, self.run_retry, lambda now: next_retry_run(now, every_hours)),
            }
            for worker in self._workers.values():
                worker.start()
            now = datetime.now(timezone.utc)
            logger.info(
                "Billing scheduler started",
                extra={
                    "next_monthly_run": next_monthly_run(now, tz_name).isoformat(),
                    "next_retry_run": next_retry_run(now, every_hours).isoformat(),
                },
            )

    def stop(self) -> None:
        with self._lock:
            workers = list(self._workers.values())
            for worker in workers:
                worker.stop()
            for worker in workers:
                worker.join(timeout=1.0)
            self._workers = {}
        logger.info("Billing scheduler stopped")

    def run_monthly(self, *, now: Optional[datetime] = None) -> MonthlyBillingResult:
        current = _aware(now) if now else datetime.now(timezone.utc)
        self._record_start(MONTHLY, current)
        try:
            result = self.service.run_monthly_billing(current)
        except Exception as exc:
            self._record_failure(MONTHLY, exc)
            logger.exception("Monthly billing run failed", extra={"trigger": MONTHLY})
            raise
        succeeded = result.renewal.success_count + result.pack_exceeded.success_count
        failed = result.renewal.failed_count + result.pack_exceeded.failed_count
        self._record_success(MONTHLY, current, succeeded, failed)
        return result

    def run_retry(self, *, now: Optional[datetime] = None) -> RetryRunSummary:
        current = _aware(now) if now else datetime.now(timezone.utc)
        self._record_start(RETRY, current)
        try:
            summary = self.service.run_payment_retries(current)
        except Exception as exc:
            self._record_failure(RETRY, exc)
            logger.exception("Payment retry run failed", extra={"trigger": RETRY})
            raise
        self._record_success(RETRY, current, summary.succeeded, summary.failed)
        return summary

    def _record_start(self, trigger: str, started_at: datetime) -> None:
        with self._metrics_lock:
            metrics = self._metrics[trigger]
            metrics["runs"] = int(metrics["runs"]) + 1
            metrics["last_run_at"] = started_at

    def _record_success(self, trigger: str, completed_at: datetime, succeeded: int, failed: int) -> None:
        with self._metrics_lock:
            metrics = self._metrics[trigger]
            metrics["succeeded"] = int(metrics["succeeded"]) + succeeded
            metrics["failed"] = int(metrics["failed"]) + failed
            metrics["last_success_at"] = completed_at
            metrics["last_error"] = None

    def _record_failure(self, trigger: str, error: Exception) -> None:
        with self._metrics_lock:
            metrics = self._metrics[trigger]
            metrics["failed"] = int(metrics["failed"]) + 1
            metrics["last_error"] = f"{type(error).__name__}: {error}"

    def get_metrics(self) -> Dict[str, Dict[str, object]]:
        with self._metrics_lock:
            return {
                trigger: {
                    **values,
                    "last_run_at": values["last_run_at"].isoformat() if values.get("last_run_at") else None,
                    "last_success_at": values["last_success_at"].isoformat() if values.get("last_success_at") else None,
                }
                for trigger, values in self._metrics.items()
            }


__all__ = ["BillingScheduler", "next_monthly_run", "next_retry_run"]
