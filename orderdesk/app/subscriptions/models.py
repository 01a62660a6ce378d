"""Domain models for pack subscriptions."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ExternalPaymentStatus(str, Enum):
    """Subscription status as reported by the payment processor."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    TRIALING = "trialing"


class SubscriptionState(str, Enum):
    """Lifecycle state derived from a subscription record."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    GRACE_PERIOD = "grace_period"
    CANCELING = "canceling"
    CANCELED = "canceled"


class PendingChangeType(str, Enum):
    """Kinds of scheduled pack changes."""

    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    CANCEL = "cancel"


class AssignmentType(str, Enum):
    """When a vendor reassignment takes effect."""

    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(BaseModel):
    """A client's commitment to a pack, with billing and pending-change state."""

    subscription_id: str
    client_id: str
    pack_id: str
    is_active: bool = True
    start_date: datetime
    end_date: Optional[datetime] = None
    current_period_start: datetime
    current_period_end: datetime
    external_payment_reference: Optional[str] = None
    external_payment_status: Optional[ExternalPaymentStatus] = None
    grace_period_end: Optional[datetime] = None
    payment_failed_at: Optional[datetime] = None
    payment_retry_count: int = Field(default=0, ge=0)
    vendor_assignee_id: Optional[str] = None
    pending_vendor_assignee_id: Optional[str] = None
    pending_vendor_effective_at: Optional[datetime] = None
    pending_pack_id: Optional[str] = None
    pending_change_type: Optional[PendingChangeType] = None
    pending_pack_effective_at: Optional[datetime] = None
    unsubscribed_at: Optional[datetime] = None
    unsubscribe_effective_at: Optional[datetime] = None
    total_units_included: int = Field(default=0, ge=0)
    total_units_used: int = Field(default=0, ge=0)
    overage_units_pending: int = Field(default=0, ge=0)
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _check_pending_slots(self) -> "Subscription":
        if (self.pending_vendor_assignee_id is None) != (self.pending_vendor_effective_at is None):
            raise ValueError("pending vendor assignee and effective date must be set together")
        if self.pending_pack_id is not None and self.pending_change_type is None:
            raise ValueError("pending pack requires a pending change type")
        if (self.pending_change_type is None) != (self.pending_pack_effective_at is None):
            raise ValueError("pending change type and effective date must be set together")
        return self

    @property
    def has_pending_vendor_change(self) -> bool:
        return self.pending_vendor_assignee_id is not None

    @property
    def has_pending_pack_change(self) -> bool:
        return self.pending_change_type is not None

    @property
    def has_pending_change(self) -> bool:
        """Orthogonal flag: a vendor or pack change is scheduled."""
        return self.has_pending_vendor_change or self.has_pending_pack_change

    @property
    def is_in_arrears(self) -> bool:
        """``True`` while a failed renewal charge is outstanding."""
        return self.is_active and self.payment_failed_at is not None

    @property
    def state(self) -> SubscriptionState:
        """Status badge shown to administrators."""

        if not self.is_active:
            return SubscriptionState.CANCELED
        if self.unsubscribed_at is not None:
            return SubscriptionState.CANCELING
        if self.payment_failed_at is not None:
            if self.grace_period_end is not None:
                return SubscriptionState.GRACE_PERIOD
            return SubscriptionState.PAST_DUE
        return SubscriptionState.ACTIVE
