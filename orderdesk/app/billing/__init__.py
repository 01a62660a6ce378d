"""Recurring billing: ledger, charge orchestration and retry policy."""

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
from .repository import InMemoryBillingLedger, PostgresBillingLedger
from .service import (
    BillingEventLogger,
    BillingLedger,
    BillingNotifier,
    BillingService,
    PackCatalog,
    PaymentProcessor,
)

__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingEventLogger",
    "BillingLedger",
    "BillingNotifier",
    "BillingRecord",
    "BillingRecordStatus",
    "BillingRecordType",
    "BillingRunSummary",
    "BillingRunType",
    "BillingService",
    "ChargeResult",
    "InMemoryBillingLedger",
    "MonthlyBillingResult",
    "OutcomeStatus",
    "PackCatalog",
    "PaymentFailure",
    "PaymentProcessor",
    "PostgresBillingLedger",
    "RetryRunSummary",
    "SubscriptionOutcome",
]
