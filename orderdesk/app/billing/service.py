"""Core service running renewal, pack-exceeded and retry billing passes."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Protocol, Sequence
from uuid import uuid4

from ...config import BillingConfig
from ..pricing import Pack, PricingError, overage_amount, renewal_amount
from ..subscriptions import (
    ExternalPaymentStatus,
    Subscription,
    SubscriptionLifecycleStore,
    SubscriptionNotFound,
    billing_period_key,
)
from ..subscriptions import transitions
from ..subscriptions.periods import ensure_aware
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingRecord,
    BillingRecordStatus,
    BillingRecordType,
    BillingRunSummary,
    BillingRunType,
    ChargeResult,
    MonthlyBillingResult,
    OutcomeStatus,
    PaymentFailure,
    RetryRunSummary,
    SubscriptionOutcome,
)

logger = logging.getLogger(__name__)


class PaymentProcessor(Protocol):
    """External payment processor integration."""

    def charge(
        self,
        subscription_id: str,
        amount: Decimal,
        *,
        currency: str,
        idempotency_key: str,
    ) -> ChargeResult:
        """Charge the subscription's payment method."""

    def get_status(self, subscription_id: str) -> ExternalPaymentStatus:
        """Return the processor's view of the subscription."""


class PackCatalog(Protocol):
    """Read-only access to pack definitions."""

    def get_pack(self, pack_id: str) -> Optional[Pack]:
        ...


class BillingNotifier(Protocol):
    """Dispatches billing related notifications."""

    def notify_payment_failure(self, failure: PaymentFailure) -> None:
        ...

    def notify_grace_period_expired(self, subscription: Subscription) -> None:
        ...

    def notify_attempts_exhausted(self, record: BillingRecord, subscription: Optional[Subscription]) -> None:
        ...


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


class BillingLedger(Protocol):
    """Per-(subscription, period, type) record of charges."""

    def get_record(
        self,
        subscription_id: str,
        billing_period: str,
        record_type: BillingRecordType,
    ) -> Optional[BillingRecord]:
        ...

    def create_record(self, record: BillingRecord) -> bool:
        ...

    def update_record(self, record: BillingRecord) -> BillingRecord:
        ...

    def list_retryable(
        self,
        now: datetime,
        *,
        max_attempts: int,
        retry_interval: timedelta,
    ) -> Sequence[BillingRecord]:
        ...

    def list_open_records(self, subscription_id: str) -> Sequence[BillingRecord]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BillingService:
    """Coordinates renewals, overage charges and retries against the processor."""

    store: SubscriptionLifecycleStore
    ledger: BillingLedger
    processor: PaymentProcessor
    catalog: PackCatalog
    notifier: BillingNotifier
    event_logger: BillingEventLogger
    config: BillingConfig = field(default_factory=BillingConfig)
    clock: Callable[[], datetime] = field(default=_utcnow)

    def _now(self, now: Optional[datetime] = None) -> datetime:
        return ensure_aware(now) if now is not None else self.clock()

    # -- public passes -------------------------------------------------

    def run_monthly_billing(self, now: Optional[datetime] = None) -> MonthlyBillingResult:
        """Renewal pass, then the pack-exceeded pass over the renewed periods."""

        current = self._now(now)
        renewal = self.run_monthly_renewal(current)
        pack_exceeded = self.run_pack_exceeded_billing(current)
        return MonthlyBillingResult(renewal=renewal, pack_exceeded=pack_exceeded)

    def run_monthly_renewal(self, now: Optional[datetime] = None) -> BillingRunSummary:
        current = self._now(now)
        due = self.store.list_due_for_renewal(current)
        logger.info(
            "Starting monthly renewal",
            extra={"run_type": BillingRunType.MONTHLY_RENEWAL.value, "due": len(due)},
        )
        outcomes = self._run_batch(
            [sub.subscription_id for sub in due],
            lambda subscription_id, pool: self._renew_one(subscription_id, current, pool),
        )
        return self._summarize(BillingRunType.MONTHLY_RENEWAL, current, outcomes)

    def run_pack_exceeded_billing(self, now: Optional[datetime] = None) -> BillingRunSummary:
        current = self._now(now)
        candidates = self.store.list_with_pending_overage()
        logger.info(
            "Starting pack exceeded billing",
            extra={"run_type": BillingRunType.PACK_EXCEEDED.value, "candidates": len(candidates)},
        )
        outcomes = self._run_batch(
            [sub.subscription_id for sub in candidates],
            lambda subscription_id, pool: self._bill_overage_one(subscription_id, current, pool),
        )
        return self._summarize(BillingRunType.PACK_EXCEEDED, current, outcomes)

    def run_payment_retries(self, now: Optional[datetime] = None) -> RetryRunSummary:
        """Expire elapsed grace periods, then retry eligible ledger records."""

        current = self._now(now)
        expired = 0
        for subscription in self.store.list_in_arrears():
            if subscription.grace_period_end is None or subscription.grace_period_end > current:
                continue
            try:
                self._expire_grace_period(subscription.subscription_id, current)
                expired += 1
            except Exception:
                logger.exception(
                    "Failed to expire grace period",
                    extra={"subscription_id": subscription.subscription_id},
                )

        records = list(
            self.ledger.list_retryable(
                current,
                max_attempts=self.config.max_charge_attempts,
                retry_interval=timedelta(hours=self.config.retry_interval_hours),
            )
        )
        by_id = {record.record_id: record for record in records}
        outcomes = self._run_batch(
            list(by_id),
            lambda record_id, pool: self._retry_one(by_id[record_id], current, pool),
            subject=lambda record_id: by_id[record_id].subscription_id,
        )
        summary = RetryRunSummary(
            started_at=current,
            completed_at=self.clock(),
            processed=len(records),
            succeeded=sum(1 for outcome in outcomes if outcome.status == OutcomeStatus.SUCCEEDED),
            failed=sum(1 for outcome in outcomes if outcome.status != OutcomeStatus.SUCCEEDED),
            expired=expired,
        )
        logger.info(
            "Payment retry completed",
            extra={
                "run_type": BillingRunType.RETRY.value,
                "processed": summary.processed,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "expired": summary.expired,
            },
        )
        return summary

    def sync_external_status(self, subscription_id: str) -> Subscription:
        """Refresh ``external_payment_status`` from the processor."""

        status = self.processor.get_status(subscription_id)
        current = self._now()
        return self.store.update(
            subscription_id,
            lambda sub: sub
            if sub.external_payment_status == status
            else sub.model_copy(update={"external_payment_status": status, "updated_at": current}),
        )

    # -- batch plumbing ------------------------------------------------

    def _run_batch(
        self,
        keys: Sequence[str],
        handler: Callable[[str, ThreadPoolExecutor], SubscriptionOutcome],
        *,
        subject: Optional[Callable[[str], str]] = None,
    ) -> List[SubscriptionOutcome]:
        if not keys:
            return []
        subject_of = subject or (lambda key: key)
        charge_pool = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="billing-charge"
        )
        try:
            with ThreadPoolExecutor(
                max_workers=self.config.max_workers, thread_name_prefix="billing-batch"
            ) as batch_pool:
                futures = [
                    (key, batch_pool.submit(self._isolated, handler, key, subject_of(key), charge_pool))
                    for key in keys
                ]
                return [future.result() for _, future in futures]
        finally:
            charge_pool.shutdown(wait=False, cancel_futures=True)

    def _isolated(
        self,
        handler: Callable[[str, ThreadPoolExecutor], SubscriptionOutcome],
        key: str,
        subscription_id: str,
        charge_pool: ThreadPoolExecutor,
    ) -> SubscriptionOutcome:
        try:
            return handler(key, charge_pool)
        except SubscriptionNotFound:
            logger.warning("Subscription disappeared during billing", extra={"subscription_id": subscription_id})
            return SubscriptionOutcome(
                subscription_id=subscription_id, status=OutcomeStatus.FAILED, reason="subscription not found"
            )
        except Exception as exc:
            logger.exception("Unexpected billing failure", extra={"subscription_id": subscription_id})
            return SubscriptionOutcome(
                subscription_id=subscription_id,
                status=OutcomeStatus.FAILED,
                reason=f"{type(exc).__name__}: {exc}",
            )

    def _summarize(
        self,
        run_type: BillingRunType,
        started_at: datetime,
        outcomes: Iterable[SubscriptionOutcome],
    ) -> BillingRunSummary:
        summary = BillingRunSummary(
            run_type=run_type,
            started_at=started_at,
            completed_at=self.clock(),
            outcomes=tuple(outcomes),
        )
        logger.info(
            "Billing run completed",
            extra={
                "run_type": run_type.value,
                "success_count": summary.success_count,
                "failed_count": summary.failed_count,
                "skipped_count": summary.skipped_count,
            },
        )
        return summary

    def _charge(
        self,
        record: BillingRecord,
        charge_pool: ThreadPoolExecutor,
    ) -> ChargeResult:
        if record.amount <= 0:
            return ChargeResult(success=True, external_status=ExternalPaymentStatus.ACTIVE)
        future: Future = charge_pool.submit(
            self.processor.charge,
            record.subscription_id,
            record.amount,
            currency=record.currency,
            idempotency_key=record.record_id,
        )
        try:
            return future.result(timeout=self.config.charge_timeout_seconds)
        except FutureTimeout:
            future.cancel()
            logger.warning(
                "Payment processor call timed out",
                extra={
                    "subscription_id": record.subscription_id,
                    "record_id": record.record_id,
                    "timeout_seconds": self.config.charge_timeout_seconds,
                },
            )
            return ChargeResult(success=False, failure_reason="processor timeout", retryable=True)
        except Exception as exc:
            logger.warning(
                "Payment processor call failed",
                extra={"subscription_id": record.subscription_id, "record_id": record.record_id, "error": repr(exc)},
            )
            return ChargeResult(success=False, failure_reason=f"processor error: {type(exc).__name__}", retryable=True)

    def _record_attempt(self, record: BillingRecord, result: ChargeResult, now: datetime) -> BillingRecord:
        attempts = record.retry_count + 1
        if result.success:
            status = BillingRecordStatus.COMPLETED
        elif not result.retryable or attempts >= self.config.max_charge_attempts:
            status = BillingRecordStatus.FAILED
        else:
            status = BillingRecordStatus.PENDING
        updated = record.model_copy(
            update={
                "status": status,
                "retry_count": attempts,
                "last_attempt_at": now,
                "failure_reason": None if result.success else result.failure_reason,
                "external_charge_id": result.charge_id or record.external_charge_id,
                "updated_at": now,
            }
        )
        return self.ledger.update_record(updated)

    def _open_record(
        self,
        subscription_id: str,
        billing_period: str,
        record_type: BillingRecordType,
        amount: Decimal,
        now: datetime,
    ) -> Optional[BillingRecord]:
        """Create the ledger entry, or ``None`` when a concurrent run already did."""

        record = BillingRecord(
            record_id=f"br_{uuid4().hex}",
            subscription_id=subscription_id,
            billing_period=billing_period,
            record_type=record_type,
            amount=amount,
            currency=self.config.currency,
            created_at=now,
            updated_at=now,
        )
        if not self.ledger.create_record(record):
            return None
        return record

    def _units_for_pack(self, pack_id: str) -> Optional[int]:
        pack = self.catalog.get_pack(pack_id)
        return pack.included_units if pack else None

    # -- monthly renewal ---------------------------------------------

    def _renewal_transition(self, subscription: Subscription, now: datetime) -> Subscription:
        if (
            not subscription.is_active
            or subscription.is_in_arrears
            or subscription.current_period_end > now
        ):
            return subscription
        return transitions.renew(subscription, now, units_for_pack=self._units_for_pack)

    def _settle_renewal(self, subscription: Subscription, now: datetime, *, paid: bool) -> Subscription:
        renewed = self._renewal_transition(subscription, now)
        if renewed is subscription or not renewed.is_active:
            return renewed
        if paid:
            return transitions.mark_payment_recovered(renewed, now)
        return transitions.mark_payment_failed(renewed, now, grace_period_days=self.store.grace_period_days)

    def _renew_one(
        self,
        subscription_id: str,
        now: datetime,
        charge_pool: ThreadPoolExecutor,
    ) -> SubscriptionOutcome:
        """Renew period by period until the current period contains ``now``."""

        outcome = self._renew_period(subscription_id, now, charge_pool)
        renewed: List[SubscriptionOutcome] = []
        while outcome.status == OutcomeStatus.SUCCEEDED:
            renewed.append(outcome)
            outcome = self._renew_period(subscription_id, now, charge_pool)
        if not renewed or outcome.status == OutcomeStatus.FAILED:
            return outcome
        if len(renewed) == 1:
            return renewed[0]
        logger.info(
            "Renewed elapsed periods",
            extra={"subscription_id": subscription_id, "periods": len(renewed)},
        )
        return SubscriptionOutcome(
            subscription_id=subscription_id,
            status=OutcomeStatus.SUCCEEDED,
            amount=sum((item.amount or Decimal("0") for item in renewed), Decimal("0")),
            reason=f"renewed {len(renewed)} elapsed periods",
            record_id=renewed[-1].record_id,
        )

    def _renew_period(
        self,
        subscription_id: str,
        now: datetime,
        charge_pool: ThreadPoolExecutor,
    ) -> SubscriptionOutcome:
        subscription = self.store.get(subscription_id)
        preview = self._renewal_transition(subscription, now)
        if preview is subscription:
            return SubscriptionOutcome(subscription_id=subscription_id, status=OutcomeStatus.SKIPPED, reason="not due")

        if not preview.is_active:
            ended = self.store.update(subscription_id, lambda sub: self._renewal_transition(sub, now))
            self._audit(BillingAuditEventType.SUBSCRIPTION_CANCELED, ended)
            return SubscriptionOutcome(
                subscription_id=subscription_id, status=OutcomeStatus.SKIPPED, reason="subscription ended"
            )

        billing_period = billing_period_key(subscription.current_period_end, self.config.billing_timezone)
        record = self.ledger.get_record(subscription_id, billing_period, BillingRecordType.MONTHLY_RENEWAL)
        if record is not None and record.status == BillingRecordStatus.COMPLETED:
            self.store.update(subscription_id, lambda sub: self._settle_renewal(sub, now, paid=True))
            logger.info(
                "Renewal already billed for period",
                extra={"subscription_id": subscription_id, "billing_period": billing_period},
            )
            return SubscriptionOutcome(
                subscription_id=subscription_id,
                status=OutcomeStatus.SUCCEEDED,
                amount=record.amount,
                reason="already billed",
                record_id=record.record_id,
            )

        if record is not None and record.status == BillingRecordStatus.FAILED:
            # Attempts for this period are used up; settle as unpaid without charging.
            settled = self.store.update(subscription_id, lambda sub: self._settle_renewal(sub, now, paid=False))
            logger.warning(
                "Renewal charge attempts already exhausted for period",
                extra={"subscription_id": subscription_id, "billing_period": billing_period},
            )
            self._audit(BillingAuditEventType.PAYMENT_FAILED, settled, {"record_id": record.record_id})
            return SubscriptionOutcome(
                subscription_id=subscription_id,
                status=OutcomeStatus.FAILED,
                amount=record.amount,
                reason=record.failure_reason or "charge attempts exhausted",
                record_id=record.record_id,
            )

        if record is None:
            pack = self.catalog.get_pack(preview.pack_id)
            if pack is None:
                logger.error(
                    "Pack missing from catalog; renewal skipped",
                    extra={"subscription_id": subscription_id, "pack_id": preview.pack_id},
                )
                return SubscriptionOutcome(
                    subscription_id=subscription_id, status=OutcomeStatus.FAILED, reason="unknown pack"
                )
            try:
                amount = renewal_amount(pack)
            except PricingError as exc:
                logger.error(
                    "Pricing configuration error; renewal skipped",
                    extra={"subscription_id": subscription_id, "pack_id": pack.pack_id, "error": str(exc)},
                )
                return SubscriptionOutcome(
                    subscription_id=subscription_id,
                    status=OutcomeStatus.FAILED,
                    reason=f"pricing configuration error: {type(exc).__name__}",
                )
            record = self._open_record(
                subscription_id, billing_period, BillingRecordType.MONTHLY_RENEWAL, amount, now
            )
            if record is None:
                return SubscriptionOutcome(
                    subscription_id=subscription_id,
                    status=OutcomeStatus.SKIPPED,
                    reason="billed by concurrent run",
                )

        result = self._charge(record, charge_pool)
        record = self._record_attempt(record, result, now)
        settled = self.store.update(subscription_id, lambda sub: self._settle_renewal(sub, now, paid=result.success))

        if subscription.has_pending_change and not settled.has_pending_change:
            self._audit(BillingAuditEventType.PENDING_CHANGE_APPLIED, settled)

        if result.success:
            self._audit(
                BillingAuditEventType.SUBSCRIPTION_RENEWED,
                settled,
                {"record_id": record.record_id, "billing_period": billing_period},
            )
            return SubscriptionOutcome(
                subscription_id=subscription_id,
                status=OutcomeStatus.SUCCEEDED,
                amount=record.amount,
                record_id=record.record_id,
            )

        logger.warning(
            "Renewal charge failed",
            extra={
                "subscription_id": subscription_id,
                "billing_period": billing_period,
                "reason": result.failure_reason,
            },
        )
        self._notify(
            self.notifier.notify_payment_failure,
            PaymentFailure(
                subscription_id=subscription_id,
                record_id=record.record_id,
                amount_due=record.amount,
                currency=record.currency,
                reason=result.failure_reason,
                occurred_at=now,
                grace_period_end=settled.grace_period_end,
            ),
        )
        self._audit(BillingAuditEventType.PAYMENT_FAILED, settled, {"record_id": record.record_id})
        if record.status == BillingRecordStatus.FAILED:
            self._notify(self.notifier.notify_attempts_exhausted, record, settled)
        return SubscriptionOutcome(
            subscription_id=subscription_id,
            status=OutcomeStatus.FAILED,
            amount=record.amount,
            reason=result.failure_reason,
            record_id=record.record_id,
        )

    # -- pack exceeded -------------------------------------------------

    def _bill_overage_one(
        self,
        subscription_id: str,
        now: datetime,
        charge_pool: ThreadPoolExecutor,
    ) -> SubscriptionOutcome:
        subscription = self.store.get(subscription_id)
        units = subscription.overage_units_pending
        if units <= 0:
            return SubscriptionOutcome(subscription_id=subscription_id, status=OutcomeStatus.SKIPPED, reason="no overage")

        # Keyed by the date the overage period closed: the renewed period start,
        # or the period end for a subscription that ended at renewal.
        closed_at = subscription.current_period_start if subscription.is_active else subscription.current_period_end
        billing_period = billing_period_key(closed_at, self.config.billing_timezone)
        record = self.ledger.get_record(subscription_id, billing_period, BillingRecordType.PACK_EXCEEDED)
        if record is not None:
            # The ledger owns the unpaid amount from here on, retried or already settled.
            self.store.clear_pending_overage(subscription_id, now=now)
            return SubscriptionOutcome(
                subscription_id=subscription_id,
                status=OutcomeStatus.SUCCEEDED if record.status == BillingRecordStatus.COMPLETED else OutcomeStatus.SKIPPED,
                amount=record.amount,
                reason="already billed",
                record_id=record.record_id,
            )

        pack = self.catalog.get_pack(subscription.pack_id)
        try:
            if pack is None:
                raise PricingError("pack missing from catalog", entity_id=subscription.pack_id)
            amount = overage_amount(pack, units)
        except PricingError as exc:
            logger.error(
                "Pricing configuration error; overage billing skipped",
                extra={"subscription_id": subscription_id, "pack_id": subscription.pack_id, "error": str(exc)},
            )
            return SubscriptionOutcome(
                subscription_id=subscription_id,
                status=OutcomeStatus.FAILED,
                reason=f"pricing configuration error: {type(exc).__name__}",
            )

        record = self._open_record(subscription_id, billing_period, BillingRecordType.PACK_EXCEEDED, amount, now)
        if record is None:
            return SubscriptionOutcome(
                subscription_id=subscription_id, status=OutcomeStatus.SKIPPED, reason="billed by concurrent run"
            )

        result = self._charge(record, charge_pool)
        record = self._record_attempt(record, result, now)
        self.store.clear_pending_overage(subscription_id, now=now)

        if result.success:
            self._audit(
                BillingAuditEventType.OVERAGE_CHARGED,
                subscription,
                {"record_id": record.record_id, "units": str(units), "amount": str(record.amount)},
            )
            return SubscriptionOutcome(
                subscription_id=subscription_id,
                status=OutcomeStatus.SUCCEEDED,
                amount=record.amount,
                record_id=record.record_id,
            )

        # Overage failures are reported but never move the subscription to past due.
        logger.warning(
            "Pack exceeded charge failed",
            extra={
                "subscription_id": subscription_id,
                "billing_period": billing_period,
                "reason": result.failure_reason,
            },
        )
        if record.status == BillingRecordStatus.FAILED:
            self._notify(self.notifier.notify_attempts_exhausted, record, subscription)
        return SubscriptionOutcome(
            subscription_id=subscription_id,
            status=OutcomeStatus.FAILED,
            amount=record.amount,
            reason=result.failure_reason,
            record_id=record.record_id,
        )

    # -- retries -------------------------------------------------------

    def _expire_grace_period(self, subscription_id: str, now: datetime) -> None:
        expired = self.store.expire_grace_period(subscription_id, now=now)
        for record in self.ledger.list_open_records(subscription_id):
            if record.record_type != BillingRecordType.MONTHLY_RENEWAL:
                continue
            self.ledger.update_record(
                record.model_copy(
                    update={
                        "status": BillingRecordStatus.FAILED,
                        "failure_reason": "grace period expired",
                        "updated_at": now,
                    }
                )
            )
        logger.warning("Grace period expired", extra={"subscription_id": subscription_id})
        self._notify(self.notifier.notify_grace_period_expired, expired)
        self._audit(BillingAuditEventType.GRACE_PERIOD_EXPIRED, expired)

    def _retry_one(
        self,
        record: BillingRecord,
        now: datetime,
        charge_pool: ThreadPoolExecutor,
    ) -> SubscriptionOutcome:
        subscription_id = record.subscription_id
        subscription = self.store.repository.get(subscription_id)
        is_renewal = record.record_type == BillingRecordType.MONTHLY_RENEWAL
        if subscription is None or (is_renewal and not subscription.is_active):
            reason = "subscription not found" if subscription is None else "subscription canceled"
            self.ledger.update_record(
                record.model_copy(
                    update={"status": BillingRecordStatus.FAILED, "failure_reason": reason, "updated_at": now}
                )
            )
            return SubscriptionOutcome(
                subscription_id=subscription_id, status=OutcomeStatus.FAILED, reason=reason, record_id=record.record_id
            )

        result = self._charge(record, charge_pool)
        record = self._record_attempt(record, result, now)

        if result.success:
            if is_renewal and subscription.is_in_arrears:
                recovered = self.store.record_payment_success(subscription_id, now=now)
                self._audit(BillingAuditEventType.PAYMENT_RECOVERED, recovered, {"record_id": record.record_id})
            elif not is_renewal:
                self._audit(
                    BillingAuditEventType.OVERAGE_CHARGED,
                    subscription,
                    {"record_id": record.record_id, "amount": str(record.amount)},
                )
            return SubscriptionOutcome(
                subscription_id=subscription_id,
                status=OutcomeStatus.SUCCEEDED,
                amount=record.amount,
                record_id=record.record_id,
            )

        if is_renewal and subscription.is_in_arrears:
            subscription = self.store.record_payment_failure(subscription_id, now=now)
        logger.warning(
            "Payment retry failed",
            extra={
                "subscription_id": subscription_id,
                "record_id": record.record_id,
                "attempts": record.retry_count,
                "reason": result.failure_reason,
            },
        )
        if record.status == BillingRecordStatus.FAILED:
            self._notify(self.notifier.notify_attempts_exhausted, record, subscription)
        return SubscriptionOutcome(
            subscription_id=subscription_id,
            status=OutcomeStatus.FAILED,
            amount=record.amount,
            reason=result.failure_reason,
            record_id=record.record_id,
        )

    # -- side channels -------------------------------------------------

    def _audit(
        self,
        event_type: BillingAuditEventType,
        subscription: Subscription,
        metadata: Optional[dict] = None,
    ) -> None:
        self._notify(
            self.event_logger.log,
            BillingAuditEvent(
                event_type=event_type,
                subscription_id=subscription.subscription_id,
                actor_id=subscription.client_id,
                metadata=metadata or {},
            ),
        )

    def _notify(self, callback: Callable[..., None], *args: object) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("Billing notification failed", extra={"callback": getattr(callback, "__name__", "")})


__all__ = [
    "BillingEventLogger",
    "BillingLedger",
    "BillingNotifier",
    "BillingService",
    "PackCatalog",
    "PaymentProcessor",
]
