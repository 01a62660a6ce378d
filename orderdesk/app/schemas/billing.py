"""API schemas for the subscription admin endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import BillingRunSummary, MonthlyBillingResult, OutcomeStatus, RetryRunSummary
from ..subscriptions import AssignmentType, PendingChangeType, Subscription, SubscriptionState, remaining_units
from ..vendors import BulkAssignmentResult


class SubscriptionRow(BaseModel):
    """One line of the admin subscription table."""

    subscription_id: str = Field(alias="subscriptionId")
    client_id: str = Field(alias="clientId")
    pack_id: str = Field(alias="packId")
    vendor_assignee_id: Optional[str] = Field(alias="vendorAssigneeId", default=None)
    state: SubscriptionState
    is_active: bool = Field(alias="isActive")
    current_period_start: datetime = Field(alias="currentPeriodStart")
    current_period_end: datetime = Field(alias="currentPeriodEnd")
    grace_period_end: Optional[datetime] = Field(alias="gracePeriodEnd", default=None)
    has_pending_change: bool = Field(alias="hasPendingChange")
    pending_vendor_assignee_id: Optional[str] = Field(alias="pendingVendorAssigneeId", default=None)
    pending_vendor_effective_at: Optional[datetime] = Field(alias="pendingVendorEffectiveAt", default=None)
    pending_pack_id: Optional[str] = Field(alias="pendingPackId", default=None)
    pending_change_type: Optional[PendingChangeType] = Field(alias="pendingChangeType", default=None)
    pending_pack_effective_at: Optional[datetime] = Field(alias="pendingPackEffectiveAt", default=None)
    unsubscribe_effective_at: Optional[datetime] = Field(alias="unsubscribeEffectiveAt", default=None)
    total_units_included: int = Field(alias="totalUnitsIncluded")
    total_units_used: int = Field(alias="totalUnitsUsed")
    remaining_units: int = Field(alias="remainingUnits")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionRow":
        return cls(
            subscription_id=subscription.subscription_id,
            client_id=subscription.client_id,
            pack_id=subscription.pack_id,
            vendor_assignee_id=subscription.vendor_assignee_id,
            state=subscription.state,
            is_active=subscription.is_active,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            grace_period_end=subscription.grace_period_end,
            has_pending_change=subscription.has_pending_change,
            pending_vendor_assignee_id=subscription.pending_vendor_assignee_id,
            pending_vendor_effective_at=subscription.pending_vendor_effective_at,
            pending_pack_id=subscription.pending_pack_id,
            pending_change_type=subscription.pending_change_type,
            pending_pack_effective_at=subscription.pending_pack_effective_at,
            unsubscribe_effective_at=subscription.unsubscribe_effective_at,
            total_units_included=subscription.total_units_included,
            total_units_used=subscription.total_units_used,
            remaining_units=remaining_units(subscription),
        )


class SubscriptionListResponse(BaseModel):
    subscriptions: List[SubscriptionRow]

    model_config = ConfigDict(populate_by_name=True)


class AssignVendorRequest(BaseModel):
    subscription_ids: List[str] = Field(alias="subscriptionIds", min_length=1)
    vendor_id: str = Field(alias="vendorId", min_length=1)
    assignment_type: AssignmentType = Field(alias="assignmentType")

    model_config = ConfigDict(populate_by_name=True)


class AssignmentResultItem(BaseModel):
    subscription_id: str = Field(alias="subscriptionId")
    success: bool
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class AssignVendorResponse(BaseModel):
    results: List[AssignmentResultItem]
    success_count: int = Field(alias="successCount")
    fail_count: int = Field(alias="failCount")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: BulkAssignmentResult) -> "AssignVendorResponse":
        return cls(
            results=[
                AssignmentResultItem(subscription_id=item.subscription_id, success=item.success, error=item.error)
                for item in result.results
            ],
            success_count=result.success_count,
            fail_count=result.fail_count,
        )


class PackChangeRequest(BaseModel):
    pack_id: Optional[str] = Field(alias="packId", default=None)
    change_type: PendingChangeType = Field(alias="changeType")
    effective_at: Optional[datetime] = Field(alias="effectiveAt", default=None)

    model_config = ConfigDict(populate_by_name=True)


class UsageRequest(BaseModel):
    units: int = Field(ge=1)

    model_config = ConfigDict(populate_by_name=True)


class UsageResponse(BaseModel):
    subscription_id: str = Field(alias="subscriptionId")
    total_units_used: int = Field(alias="totalUnitsUsed")
    total_units_included: int = Field(alias="totalUnitsIncluded")
    over_limit: bool = Field(alias="overLimit")

    model_config = ConfigDict(populate_by_name=True)


class OutcomeItem(BaseModel):
    subscription_id: str = Field(alias="subscriptionId")
    status: OutcomeStatus
    amount: Optional[Decimal] = None
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class RunSummaryResponse(BaseModel):
    run_type: str = Field(alias="runType")
    started_at: datetime = Field(alias="startedAt")
    completed_at: Optional[datetime] = Field(alias="completedAt", default=None)
    success_count: int = Field(alias="successCount")
    failed_count: int = Field(alias="failedCount")
    skipped_count: int = Field(alias="skippedCount")
    outcomes: List[OutcomeItem]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: BillingRunSummary) -> "RunSummaryResponse":
        return cls(
            run_type=summary.run_type.value,
            started_at=summary.started_at,
            completed_at=summary.completed_at,
            success_count=summary.success_count,
            failed_count=summary.failed_count,
            skipped_count=summary.skipped_count,
            outcomes=[
                OutcomeItem(
                    subscription_id=outcome.subscription_id,
                    status=outcome.status,
                    amount=outcome.amount,
                    reason=outcome.reason,
                )
                for outcome in summary.outcomes
            ],
        )


class MonthlyRunResponse(BaseModel):
    renewal: RunSummaryResponse
    pack_exceeded: RunSummaryResponse = Field(alias="packExceeded")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: MonthlyBillingResult) -> "MonthlyRunResponse":
        return cls(
            renewal=RunSummaryResponse.from_summary(result.renewal),
            pack_exceeded=RunSummaryResponse.from_summary(result.pack_exceeded),
        )


class RetryRunResponse(BaseModel):
    started_at: datetime = Field(alias="startedAt")
    completed_at: Optional[datetime] = Field(alias="completedAt", default=None)
    processed: int
    succeeded: int
    failed: int
    expired: int

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: RetryRunSummary) -> "RetryRunResponse":
        return cls(
            started_at=summary.started_at,
            completed_at=summary.completed_at,
            processed=summary.processed,
            succeeded=summary.succeeded,
            failed=summary.failed,
            expired=summary.expired,
        )


class SchedulerMetricsResponse(BaseModel):
    running: bool
    triggers: Dict[str, Dict[str, object]]

    model_config = ConfigDict(populate_by_name=True)
