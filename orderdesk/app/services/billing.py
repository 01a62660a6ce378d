"""Application wiring for the billing engine."""
from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Optional
from uuid import uuid4

from ...config import BillingConfig, load_billing_config
from ...scheduler import BillingScheduler
from ..billing import (
    BillingAuditEvent,
    BillingEventLogger,
    BillingNotifier,
    BillingRecord,
    BillingService,
    ChargeResult,
    PaymentFailure,
    PaymentProcessor,
    PostgresBillingLedger,
)
from ..pricing import PostgresPackCatalog
from ..subscriptions import (
    ExternalPaymentStatus,
    PostgresSubscriptionRepository,
    Subscription,
    SubscriptionLifecycleStore,
    SubscriptionUsageTracker,
)
from ..vendors import PostgresVendorDirectory, VendorAssignmentResolver


logger = logging.getLogger("billing")


class LoggingBillingNotifier(BillingNotifier):
    """Notifier that records billing notifications to the application logger."""

    def notify_payment_failure(self, failure: PaymentFailure) -> None:
        logger.warning(
            "Payment failure for subscription %s record=%s amount=%s %s",
            failure.subscription_id,
            failure.record_id,
            failure.amount_due,
            failure.currency,
        )

    def notify_grace_period_expired(self, subscription: Subscription) -> None:
        logger.warning(
            "Grace period expired for subscription %s client=%s",
            subscription.subscription_id,
            subscription.client_id,
        )

    def notify_attempts_exhausted(self, record: BillingRecord, subscription: Optional[Subscription]) -> None:
        logger.error(
            "Payment failed after %s attempts subscription=%s client=%s period=%s type=%s amount=%s %s",
            record.retry_count,
            record.subscription_id,
            subscription.client_id if subscription else None,
            record.billing_period,
            record.record_type.value,
            record.amount,
            record.currency,
        )


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s subscription=%s actor=%s metadata=%s",
            event.event_type.value,
            event.subscription_id,
            event.actor_id,
            event.metadata,
        )


class LocalSandboxPaymentProcessor(PaymentProcessor):
    """Processor that approves every charge; for local development."""

    def charge(
        self,
        subscription_id: str,
        amount: Decimal,
        *,
        currency: str,
        idempotency_key: str,
    ) -> ChargeResult:
        logger.debug(
            "Sandbox charge subscription=%s amount=%s %s key=%s",
            subscription_id,
            amount,
            currency,
            idempotency_key,
        )
        return ChargeResult(
            success=True,
            external_status=ExternalPaymentStatus.ACTIVE,
            charge_id=f"ch_{uuid4().hex}",
        )

    def get_status(self, subscription_id: str) -> ExternalPaymentStatus:
        return ExternalPaymentStatus.ACTIVE


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_subscription_store() -> SubscriptionLifecycleStore:
    config = get_billing_config()
    return SubscriptionLifecycleStore(
        repository=PostgresSubscriptionRepository(),
        grace_period_days=config.grace_period_days,
        write_attempts=config.store_write_attempts,
    )


@lru_cache(maxsize=1)
def get_usage_tracker() -> SubscriptionUsageTracker:
    return SubscriptionUsageTracker(get_subscription_store())


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    service = BillingService(
        store=get_subscription_store(),
        ledger=PostgresBillingLedger(),
        processor=LocalSandboxPaymentProcessor(),
        catalog=PostgresPackCatalog(),
        notifier=LoggingBillingNotifier(),
        event_logger=LoggingBillingEventLogger(),
        config=get_billing_config(),
    )
    return service


@lru_cache(maxsize=1)
def get_vendor_resolver() -> VendorAssignmentResolver:
    return VendorAssignmentResolver(store=get_subscription_store(), vendors=PostgresVendorDirectory())


@lru_cache(maxsize=1)
def get_billing_scheduler() -> BillingScheduler:
    return BillingScheduler(get_billing_service(), get_billing_config())


__all__ = [
    "LocalSandboxPaymentProcessor",
    "LoggingBillingEventLogger",
    "LoggingBillingNotifier",
    "get_billing_config",
    "get_billing_scheduler",
    "get_billing_service",
    "get_subscription_store",
    "get_usage_tracker",
    "get_vendor_resolver",
]
