"""Domain models for the billing system."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..subscriptions.models import ExternalPaymentStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BillingRunType(str, Enum):
    """Kinds of scheduler executions."""

    MONTHLY_RENEWAL = "monthly_renewal"
    PACK_EXCEEDED = "pack_exceeded"
    RETRY = "retry"


class BillingRecordType(str, Enum):
    """Charges tracked in the billing ledger."""

    MONTHLY_RENEWAL = "monthly_renewal"
    PACK_EXCEEDED = "pack_exceeded"


class BillingRecordStatus(str, Enum):
    """Status of a ledger entry."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BillingRecord(BaseModel):
    """One charge per subscription, billing period and record type."""

    record_id: str
    subscription_id: str
    billing_period: str = Field(pattern=r"^\d{4}-\d{2}$")
    record_type: BillingRecordType
    amount: Decimal = Field(ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    status: BillingRecordStatus = BillingRecordStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    last_attempt_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    external_charge_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def key(self) -> tuple:
        return (self.subscription_id, self.billing_period, self.record_type)


class ChargeResult(BaseModel):
    """Outcome of a payment processor charge."""

    success: bool
    external_status: Optional[ExternalPaymentStatus] = None
    failure_reason: Optional[str] = None
    retryable: bool = True
    charge_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class SubscriptionOutcome(BaseModel):
    """Per-subscription result within a billing run."""

    subscription_id: str
    status: OutcomeStatus
    amount: Optional[Decimal] = None
    reason: Optional[str] = None
    record_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class BillingRunSummary(BaseModel):
    """Result of one renewal or pack-exceeded pass."""

    run_type: BillingRunType
    started_at: datetime
    completed_at: Optional[datetime] = None
    outcomes: Sequence[SubscriptionOutcome] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == OutcomeStatus.SUCCEEDED)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == OutcomeStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == OutcomeStatus.SKIPPED)


class RetryRunSummary(BaseModel):
    """Result of a payment retry pass."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    expired: int = 0

    model_config = ConfigDict(frozen=True)


class MonthlyBillingResult(BaseModel):
    """Renewal pass followed by the pack-exceeded pass."""

    renewal: BillingRunSummary
    pack_exceeded: BillingRunSummary

    model_config = ConfigDict(frozen=True)


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    SUBSCRIPTION_RENEWED = "subscription_renewed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RECOVERED = "payment_recovered"
    GRACE_PERIOD_EXPIRED = "grace_period_expired"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    PENDING_CHANGE_APPLIED = "pending_change_applied"
    OVERAGE_CHARGED = "overage_charged"


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    subscription_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentFailure(BaseModel):
    """Represents a payment failure that triggered a grace period."""

    subscription_id: str
    record_id: Optional[str] = None
    amount_due: Decimal = Decimal("0")
    currency: str = "USD"
    reason: Optional[str] = None
    occurred_at: datetime = Field(default_factory=_utcnow)
    grace_period_end: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)
