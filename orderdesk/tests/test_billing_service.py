"""Billing passes against in-memory repositories and a scripted processor."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from threading import Event, Lock
from typing import Callable, List, Optional, Tuple

import pytest

from orderdesk.app.billing import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingEventLogger,
    BillingNotifier,
    BillingRecord,
    BillingRecordStatus,
    BillingRecordType,
    BillingService,
    ChargeResult,
    InMemoryBillingLedger,
    OutcomeStatus,
    PaymentFailure,
    PaymentProcessor,
)
from orderdesk.app.pricing import InMemoryPackCatalog, Pack, PricedEntity, PricingStructure
from orderdesk.app.subscriptions import (
    AssignmentType,
    ExternalPaymentStatus,
    InMemorySubscriptionRepository,
    PendingChangeType,
    Subscription,
    SubscriptionLifecycleStore,
    SubscriptionState,
)
from orderdesk.app.vendors import StaticVendorDirectory, VendorAssignmentResolver
from orderdesk.config import BillingConfig


START = datetime(2024, 1, 15, 12, tzinfo=timezone.utc)
PERIOD_END = datetime(2024, 2, 15, 12, tzinfo=timezone.utc)
RUN_AT = PERIOD_END + timedelta(hours=1)
PERIOD_KEY = "2024-02"


def _approve(subscription_id: str, amount: Decimal) -> ChargeResult:
    return ChargeResult(success=True, external_status=ExternalPaymentStatus.ACTIVE, charge_id=f"ch-{subscription_id}")


def _decline(subscription_id: str, amount: Decimal) -> ChargeResult:
    return ChargeResult(success=False, external_status=ExternalPaymentStatus.PAST_DUE, failure_reason="insufficient_funds")


class ScriptedProcessor(PaymentProcessor):
    def __init__(self) -> None:
        self.decide: Callable[[str, Decimal], ChargeResult] = _approve
        self.calls: List[Tuple[str, Decimal, str]] = []
        self.status = ExternalPaymentStatus.ACTIVE
        self.block: Optional[Event] = None
        self._lock = Lock()

    def charge(self, subscription_id, amount, *, currency, idempotency_key):
        with self._lock:
            self.calls.append((subscription_id, amount, idempotency_key))
        if self.block is not None:
            self.block.wait(5)
        return self.decide(subscription_id, amount)

    def get_status(self, subscription_id):
        return self.status


class FakeNotifier(BillingNotifier):
    def __init__(self) -> None:
        self.payment_failures: List[PaymentFailure] = []
        self.grace_expired: List[Subscription] = []
        self.exhausted: List[BillingRecord] = []

    def notify_payment_failure(self, failure: PaymentFailure) -> None:
        self.payment_failures.append(failure)

    def notify_grace_period_expired(self, subscription: Subscription) -> None:
        self.grace_expired.append(subscription)

    def notify_attempts_exhausted(self, record, subscription) -> None:
        self.exhausted.append(record)


class FailingNotifier(FakeNotifier):
    def notify_payment_failure(self, failure: PaymentFailure) -> None:
        raise RuntimeError("mail server down")


class FakeEventLogger(BillingEventLogger):
    def __init__(self) -> None:
        self.events: List[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)

    def types(self) -> List[BillingAuditEventType]:
        return [event.event_type for event in self.events]


def _pack(pack_id: str = "pack-100", price: str = "99", units: int = 100, overage: Optional[str] = "1.25") -> Pack:
    return Pack(
        pack_id=pack_id,
        price=PricedEntity(entity_id=pack_id, base_price=Decimal(price)),
        included_units=units,
        overage=PricedEntity(entity_id=f"{pack_id}:overage", base_price=Decimal(overage)) if overage else None,
    )


@pytest.fixture
def billing_components():
    repository = InMemorySubscriptionRepository()
    store = SubscriptionLifecycleStore(repository=repository, grace_period_days=7)
    ledger = InMemoryBillingLedger()
    processor = ScriptedProcessor()
    catalog = InMemoryPackCatalog([_pack(), _pack("pack-250", price="199", units=250)])
    notifier = FakeNotifier()
    event_logger = FakeEventLogger()
    service = BillingService(
        store=store,
        ledger=ledger,
        processor=processor,
        catalog=catalog,
        notifier=notifier,
        event_logger=event_logger,
        config=BillingConfig(max_workers=2, charge_timeout_seconds=2.0),
    )
    store.create_subscription(
        client_id="client-1",
        pack=catalog.get_pack("pack-100"),
        start_date=START,
        vendor_assignee_id="vendor-a",
        subscription_id="sub-1",
    )
    yield store, ledger, processor, catalog, notifier, event_logger, service
    if processor.block is not None:
        processor.block.set()


def test_successful_renewal_charges_and_advances_period(billing_components):
    store, ledger, processor, _, _, event_logger, service = billing_components

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.success_count == 1
    subscription = store.get("sub-1")
    assert subscription.current_period_start == PERIOD_END
    assert subscription.current_period_end == datetime(2024, 3, 15, 12, tzinfo=timezone.utc)
    assert subscription.state == SubscriptionState.ACTIVE
    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL)
    assert record.status == BillingRecordStatus.COMPLETED
    assert record.amount == Decimal("99.00")
    assert processor.calls == [("sub-1", Decimal("99.00"), record.record_id)]
    assert BillingAuditEventType.SUBSCRIPTION_RENEWED in event_logger.types()


def test_failed_renewal_enters_grace_and_retry_recovers(billing_components):
    store, ledger, processor, _, notifier, event_logger, service = billing_components
    processor.decide = _decline

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.failed_count == 1
    failed = store.get("sub-1")
    assert failed.payment_failed_at == RUN_AT
    assert failed.grace_period_end == RUN_AT + timedelta(days=7)
    assert failed.external_payment_status == ExternalPaymentStatus.PAST_DUE
    assert failed.is_active is True
    assert notifier.payment_failures[0].amount_due == Decimal("99.00")
    assert BillingAuditEventType.PAYMENT_FAILED in event_logger.types()

    too_early = service.run_payment_retries(RUN_AT + timedelta(hours=6))
    assert too_early.processed == 0

    processor.decide = _approve
    retry = service.run_payment_retries(RUN_AT + timedelta(hours=25))

    assert (retry.processed, retry.succeeded, retry.failed) == (1, 1, 0)
    recovered = store.get("sub-1")
    assert recovered.payment_failed_at is None
    assert recovered.grace_period_end is None
    assert recovered.state == SubscriptionState.ACTIVE
    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL)
    assert record.status == BillingRecordStatus.COMPLETED
    assert record.retry_count == 2
    assert len({key for _, _, key in processor.calls}) == 1
    assert BillingAuditEventType.PAYMENT_RECOVERED in event_logger.types()


def test_subscription_in_arrears_is_not_renewed_again(billing_components):
    store, _, processor, _, _, _, service = billing_components
    processor.decide = _decline
    service.run_monthly_renewal(RUN_AT)

    next_month = service.run_monthly_renewal(datetime(2024, 3, 15, 13, tzinfo=timezone.utc))

    assert len(next_month.outcomes) == 0
    assert len(processor.calls) == 1
    assert store.get("sub-1").current_period_start == PERIOD_END


def test_retries_stop_after_max_attempts(billing_components):
    store, ledger, processor, _, notifier, _, service = billing_components
    processor.decide = _decline
    service.run_monthly_renewal(RUN_AT)

    service.run_payment_retries(RUN_AT + timedelta(hours=25))
    service.run_payment_retries(RUN_AT + timedelta(hours=50))
    idle = service.run_payment_retries(RUN_AT + timedelta(hours=75))

    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL)
    assert record.status == BillingRecordStatus.FAILED
    assert record.retry_count == 3
    assert idle.processed == 0
    assert len(processor.calls) == 3
    assert notifier.exhausted == [record]
    assert store.get("sub-1").state == SubscriptionState.GRACE_PERIOD


def test_non_retryable_failure_is_not_retried(billing_components):
    _, ledger, processor, _, notifier, _, service = billing_components
    processor.decide = lambda sub_id, amount: ChargeResult(
        success=False, failure_reason="card_declined", retryable=False
    )

    service.run_monthly_renewal(RUN_AT)
    retry = service.run_payment_retries(RUN_AT + timedelta(days=2))

    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL)
    assert record.status == BillingRecordStatus.FAILED
    assert retry.processed == 0
    assert len(notifier.exhausted) == 1


def test_grace_period_expiry_cancels_and_fails_open_record(billing_components):
    store, ledger, processor, _, notifier, event_logger, service = billing_components
    processor.decide = _decline
    service.run_monthly_renewal(RUN_AT)

    summary = service.run_payment_retries(RUN_AT + timedelta(days=7, hours=1))

    assert summary.expired == 1
    assert summary.processed == 0
    canceled = store.get("sub-1")
    assert canceled.is_active is False
    assert canceled.state == SubscriptionState.CANCELED
    assert [sub.subscription_id for sub in notifier.grace_expired] == ["sub-1"]
    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL)
    assert record.status == BillingRecordStatus.FAILED
    assert record.failure_reason == "grace period expired"
    assert BillingAuditEventType.GRACE_PERIOD_EXPIRED in event_logger.types()


def test_processor_timeout_is_recorded_as_failure(billing_components):
    store, ledger, processor, _, _, _, service = billing_components
    service.config = BillingConfig(max_workers=2, charge_timeout_seconds=0.05)
    processor.block = Event()

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.failed_count == 1
    assert summary.outcomes[0].reason == "processor timeout"
    assert store.get("sub-1").is_in_arrears is True
    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL)
    assert record.status == BillingRecordStatus.PENDING
    assert record.retry_count == 1


def test_processor_exception_is_recorded_as_failure(billing_components):
    store, _, processor, _, _, _, service = billing_components

    def explode(subscription_id, amount):
        raise ConnectionError("502 from processor")

    processor.decide = explode

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.failed_count == 1
    assert summary.outcomes[0].reason == "processor error: ConnectionError"
    assert store.get("sub-1").is_in_arrears is True


def test_completed_ledger_record_prevents_second_charge(billing_components):
    store, ledger, processor, _, _, _, service = billing_components
    ledger.create_record(
        BillingRecord(
            record_id="br-earlier",
            subscription_id="sub-1",
            billing_period=PERIOD_KEY,
            record_type=BillingRecordType.MONTHLY_RENEWAL,
            amount=Decimal("99.00"),
            status=BillingRecordStatus.COMPLETED,
            retry_count=1,
        )
    )

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.success_count == 1
    assert summary.outcomes[0].reason == "already billed"
    assert processor.calls == []
    assert store.get("sub-1").current_period_start == PERIOD_END


def test_concurrent_run_that_wins_the_ledger_skips_the_loser(billing_components):
    _, ledger, processor, _, _, _, service = billing_components
    original_get = ledger.get_record
    ledger.get_record = lambda *args: None
    ledger.create_record(
        BillingRecord(
            record_id="br-other-run",
            subscription_id="sub-1",
            billing_period=PERIOD_KEY,
            record_type=BillingRecordType.MONTHLY_RENEWAL,
            amount=Decimal("99.00"),
        )
    )

    summary = service.run_monthly_renewal(RUN_AT)

    ledger.get_record = original_get
    assert summary.skipped_count == 1
    assert summary.outcomes[0].reason == "billed by concurrent run"
    assert processor.calls == []


def test_rerunning_monthly_billing_does_not_double_charge(billing_components):
    _, _, processor, _, _, _, service = billing_components

    service.run_monthly_billing(RUN_AT)
    second = service.run_monthly_billing(RUN_AT)

    assert len(second.renewal.outcomes) == 0
    assert len(processor.calls) == 1


def test_overage_is_billed_after_renewal(billing_components):
    store, ledger, processor, _, _, event_logger, service = billing_components
    store.record_usage("sub-1", 130, now=START + timedelta(days=3))

    result = service.run_monthly_billing(RUN_AT)

    assert result.renewal.success_count == 1
    assert result.pack_exceeded.success_count == 1
    subscription = store.get("sub-1")
    assert subscription.total_units_used == 0
    assert subscription.overage_units_pending == 0
    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.PACK_EXCEEDED)
    assert record.amount == Decimal("37.50")
    assert record.status == BillingRecordStatus.COMPLETED
    assert sorted(amount for _, amount, _ in processor.calls) == [Decimal("37.50"), Decimal("99.00")]
    assert BillingAuditEventType.OVERAGE_CHARGED in event_logger.types()


def test_overage_failure_does_not_block_service(billing_components):
    store, ledger, processor, _, notifier, _, service = billing_components
    store.record_usage("sub-1", 110, now=START + timedelta(days=3))
    processor.decide = lambda sub_id, amount: _decline(sub_id, amount) if amount == Decimal("12.50") else _approve(
        sub_id, amount
    )

    result = service.run_monthly_billing(RUN_AT)

    assert result.renewal.success_count == 1
    assert result.pack_exceeded.failed_count == 1
    subscription = store.get("sub-1")
    assert subscription.is_in_arrears is False
    assert subscription.state == SubscriptionState.ACTIVE
    assert subscription.overage_units_pending == 0
    assert notifier.payment_failures == []
    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.PACK_EXCEEDED)
    assert record.status == BillingRecordStatus.PENDING

    processor.decide = _approve
    retry = service.run_payment_retries(RUN_AT + timedelta(hours=25))

    assert retry.succeeded == 1
    assert ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.PACK_EXCEEDED).status == (
        BillingRecordStatus.COMPLETED
    )
    assert store.get("sub-1").state == SubscriptionState.ACTIVE


def test_scheduled_vendor_change_applies_at_renewal(billing_components):
    store, _, _, _, _, event_logger, service = billing_components
    resolver = VendorAssignmentResolver(store=store, vendors=StaticVendorDirectory(["vendor-a", "vendor-b"]))
    resolver.assign_vendor(["sub-1"], "vendor-b", AssignmentType.SCHEDULED, now=START + timedelta(days=1))

    before = store.get("sub-1")
    assert before.vendor_assignee_id == "vendor-a"
    assert before.pending_vendor_effective_at == PERIOD_END

    service.run_monthly_renewal(RUN_AT)

    after = store.get("sub-1")
    assert after.vendor_assignee_id == "vendor-b"
    assert after.has_pending_change is False
    assert BillingAuditEventType.PENDING_CHANGE_APPLIED in event_logger.types()


def test_scheduled_upgrade_is_priced_on_the_new_pack(billing_components):
    store, ledger, _, _, _, _, service = billing_components
    store.schedule_pack_change("sub-1", PendingChangeType.UPGRADE, pack_id="pack-250", now=START)

    service.run_monthly_renewal(RUN_AT)

    subscription = store.get("sub-1")
    assert subscription.pack_id == "pack-250"
    assert subscription.total_units_included == 250
    assert ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL).amount == Decimal("199.00")


def test_unsubscribed_subscription_ends_without_charge(billing_components):
    store, ledger, processor, _, _, event_logger, service = billing_components
    store.unsubscribe("sub-1", now=START + timedelta(days=5))

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.skipped_count == 1
    assert processor.calls == []
    assert store.get("sub-1").state == SubscriptionState.CANCELED
    assert summary.outcomes[0].status == OutcomeStatus.SKIPPED
    assert ledger.all_records() == []
    assert BillingAuditEventType.SUBSCRIPTION_CANCELED in event_logger.types()


def test_final_period_overage_is_billed_when_unsubscribe_takes_effect(billing_components):
    store, ledger, processor, _, _, _, service = billing_components
    store.record_usage("sub-1", 120, now=START + timedelta(days=2))
    store.unsubscribe("sub-1", now=START + timedelta(days=5))

    result = service.run_monthly_billing(RUN_AT)

    assert result.renewal.outcomes[0].reason == "subscription ended"
    assert result.pack_exceeded.success_count == 1
    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.PACK_EXCEEDED)
    assert record.amount == Decimal("25.00")
    assert record.status == BillingRecordStatus.COMPLETED
    assert processor.calls == [("sub-1", Decimal("25.00"), record.record_id)]
    ended = store.get("sub-1")
    assert ended.state == SubscriptionState.CANCELED
    assert ended.overage_units_pending == 0


def test_final_period_overage_is_billed_when_pending_cancel_applies(billing_components):
    store, ledger, processor, _, _, _, service = billing_components
    store.record_usage("sub-1", 120, now=START + timedelta(days=2))
    store.schedule_pack_change("sub-1", PendingChangeType.CANCEL, now=START + timedelta(days=5))

    result = service.run_monthly_billing(RUN_AT)

    assert result.renewal.outcomes[0].reason == "subscription ended"
    assert store.get("sub-1").is_active is False
    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.PACK_EXCEEDED)
    assert record.amount == Decimal("25.00")
    assert len(processor.calls) == 1
    assert ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL) is None


def test_late_run_renews_every_elapsed_period(billing_components):
    store, ledger, processor, _, _, event_logger, service = billing_components
    late = RUN_AT + timedelta(days=62)

    summary = service.run_monthly_renewal(late)

    assert summary.success_count == 1
    assert summary.outcomes[0].amount == Decimal("297.00")
    assert summary.outcomes[0].reason == "renewed 3 elapsed periods"
    subscription = store.get("sub-1")
    assert subscription.current_period_start == datetime(2024, 4, 15, 12, tzinfo=timezone.utc)
    assert subscription.current_period_end == datetime(2024, 5, 15, 12, tzinfo=timezone.utc)
    assert subscription.current_period_end > late
    for period in ("2024-02", "2024-03", "2024-04"):
        assert ledger.get_record("sub-1", period, BillingRecordType.MONTHLY_RENEWAL).status == (
            BillingRecordStatus.COMPLETED
        )
    assert len(processor.calls) == 3
    assert event_logger.types().count(BillingAuditEventType.SUBSCRIPTION_RENEWED) == 3

    again = service.run_monthly_renewal(late)
    assert len(again.outcomes) == 0
    assert len(processor.calls) == 3


def test_exhausted_ledger_record_is_settled_without_charging(billing_components):
    store, ledger, processor, _, _, _, service = billing_components
    ledger.create_record(
        BillingRecord(
            record_id="br-exhausted",
            subscription_id="sub-1",
            billing_period=PERIOD_KEY,
            record_type=BillingRecordType.MONTHLY_RENEWAL,
            amount=Decimal("99.00"),
            status=BillingRecordStatus.FAILED,
            retry_count=3,
            failure_reason="insufficient_funds",
        )
    )

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.failed_count == 1
    assert summary.outcomes[0].reason == "insufficient_funds"
    assert processor.calls == []
    assert ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL).retry_count == 3
    subscription = store.get("sub-1")
    assert subscription.current_period_start == PERIOD_END
    assert subscription.state == SubscriptionState.GRACE_PERIOD


def test_pricing_configuration_error_leaves_subscription_untouched(billing_components):
    store, ledger, processor, catalog, _, _, service = billing_components
    catalog.add(
        Pack(
            pack_id="pack-100",
            price=PricedEntity(entity_id="pack-100", pricing_structure=PricingStructure.QUANTITY),
            included_units=100,
        )
    )

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.failed_count == 1
    assert summary.outcomes[0].reason == "pricing configuration error: NoTiersConfigured"
    assert processor.calls == []
    assert ledger.all_records() == []
    assert store.get("sub-1").current_period_end == PERIOD_END


def test_zero_amount_renewal_completes_without_processor(billing_components):
    store, ledger, processor, catalog, _, _, service = billing_components
    catalog.add(_pack(price="0"))

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.success_count == 1
    assert processor.calls == []
    record = ledger.get_record("sub-1", PERIOD_KEY, BillingRecordType.MONTHLY_RENEWAL)
    assert record.status == BillingRecordStatus.COMPLETED
    assert store.get("sub-1").current_period_start == PERIOD_END


def test_notifier_failure_does_not_abort_batch(billing_components):
    store, _, processor, catalog, _, _, service = billing_components
    service.notifier = FailingNotifier()
    store.create_subscription(client_id="client-2", pack=catalog.get_pack("pack-100"), start_date=START, subscription_id="sub-2")
    processor.decide = _decline

    summary = service.run_monthly_renewal(RUN_AT)

    assert summary.failed_count == 2
    assert store.get("sub-1").is_in_arrears is True
    assert store.get("sub-2").is_in_arrears is True


def test_sync_external_status_updates_subscription(billing_components):
    store, _, processor, _, _, _, service = billing_components
    processor.status = ExternalPaymentStatus.TRIALING

    updated = service.sync_external_status("sub-1")

    assert updated.external_payment_status == ExternalPaymentStatus.TRIALING
    assert store.get("sub-1").version == 1
