"""Admin API routes for subscriptions and billing runs."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, status

from ... import app_context
from ..schemas.billing import (
    AssignVendorRequest,
    AssignVendorResponse,
    MonthlyRunResponse,
    PackChangeRequest,
    RetryRunResponse,
    RunSummaryResponse,
    SchedulerMetricsResponse,
    SubscriptionListResponse,
    SubscriptionRow,
    UsageRequest,
    UsageResponse,
)
from ..services.billing import (
    get_billing_scheduler,
    get_billing_service,
    get_subscription_store,
    get_usage_tracker,
    get_vendor_resolver,
)
from ..subscriptions import (
    ConcurrentModification,
    InvalidStateTransition,
    SubscriptionError,
    SubscriptionNotFound,
    VendorNotFound,
    is_over_limit,
)

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_admin(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_admin(session_token=session_token)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (SubscriptionNotFound, VendorNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidStateTransition, ConcurrentModification)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


router = APIRouter(prefix="/api/admin/subscriptions", tags=["subscriptions"])


@router.get("/", response_model=SubscriptionListResponse)
def list_subscriptions(*, current_admin=Depends(_get_current_admin)) -> SubscriptionListResponse:
    subscriptions = get_subscription_store().list_subscriptions()
    return SubscriptionListResponse(subscriptions=[SubscriptionRow.from_subscription(sub) for sub in subscriptions])


@router.get("/billing-runs/metrics", response_model=SchedulerMetricsResponse)
def get_billing_run_metrics(*, current_admin=Depends(_get_current_admin)) -> SchedulerMetricsResponse:
    scheduler = get_billing_scheduler()
    return SchedulerMetricsResponse(running=scheduler.running, triggers=scheduler.get_metrics())


@router.post("/billing-runs/monthly", response_model=MonthlyRunResponse)
def trigger_monthly_run(*, current_admin=Depends(_get_current_admin)) -> MonthlyRunResponse:
    result = get_billing_scheduler().run_monthly()
    return MonthlyRunResponse.from_result(result)


@router.post("/billing-runs/retry", response_model=RetryRunResponse)
def trigger_retry_run(*, current_admin=Depends(_get_current_admin)) -> RetryRunResponse:
    summary = get_billing_scheduler().run_retry()
    return RetryRunResponse.from_summary(summary)


@router.post("/billing-runs/pack-exceeded", response_model=RunSummaryResponse)
def trigger_pack_exceeded_run(*, current_admin=Depends(_get_current_admin)) -> RunSummaryResponse:
    summary = get_billing_service().run_pack_exceeded_billing()
    return RunSummaryResponse.from_summary(summary)


@router.post("/assign-vendor", response_model=AssignVendorResponse)
def assign_vendor(
    payload: AssignVendorRequest,
    *,
    current_admin=Depends(_get_current_admin),
) -> AssignVendorResponse:
    result = get_vendor_resolver().assign_vendor(
        payload.subscription_ids,
        payload.vendor_id,
        payload.assignment_type,
    )
    return AssignVendorResponse.from_result(result)


@router.get("/{subscription_id}", response_model=SubscriptionRow)
def get_subscription(subscription_id: str, *, current_admin=Depends(_get_current_admin)) -> SubscriptionRow:
    try:
        subscription = get_subscription_store().get(subscription_id)
    except SubscriptionNotFound as exc:
        raise _http_error(exc) from exc
    return SubscriptionRow.from_subscription(subscription)


@router.post("/{subscription_id}/cancel-pending-vendor-change", response_model=SubscriptionRow)
def cancel_pending_vendor_change(
    subscription_id: str,
    *,
    current_admin=Depends(_get_current_admin),
) -> SubscriptionRow:
    try:
        subscription = get_vendor_resolver().cancel_pending_vendor_change(subscription_id)
    except SubscriptionError as exc:
        raise _http_error(exc) from exc
    return SubscriptionRow.from_subscription(subscription)


@router.post("/{subscription_id}/cancel-pending-pack-change", response_model=SubscriptionRow)
def cancel_pending_pack_change(
    subscription_id: str,
    *,
    current_admin=Depends(_get_current_admin),
) -> SubscriptionRow:
    try:
        subscription = get_subscription_store().cancel_pending_pack_change(subscription_id)
    except SubscriptionError as exc:
        raise _http_error(exc) from exc
    return SubscriptionRow.from_subscription(subscription)


@router.post("/{subscription_id}/pack-change", response_model=SubscriptionRow)
def schedule_pack_change(
    subscription_id: str,
    payload: PackChangeRequest,
    *,
    current_admin=Depends(_get_current_admin),
) -> SubscriptionRow:
    service = get_billing_service()
    if payload.pack_id is not None and service.catalog.get_pack(payload.pack_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown pack: {payload.pack_id}")
    try:
        subscription = get_subscription_store().schedule_pack_change(
            subscription_id,
            payload.change_type,
            pack_id=payload.pack_id,
            effective_at=payload.effective_at,
        )
    except SubscriptionError as exc:
        raise _http_error(exc) from exc
    return SubscriptionRow.from_subscription(subscription)


@router.post("/{subscription_id}/unsubscribe", response_model=SubscriptionRow)
def unsubscribe(subscription_id: str, *, current_admin=Depends(_get_current_admin)) -> SubscriptionRow:
    try:
        subscription = get_subscription_store().unsubscribe(subscription_id)
    except SubscriptionError as exc:
        raise _http_error(exc) from exc
    return SubscriptionRow.from_subscription(subscription)


@router.post("/{subscription_id}/usage", response_model=UsageResponse)
def record_usage(
    subscription_id: str,
    payload: UsageRequest,
    *,
    current_admin=Depends(_get_current_admin),
) -> UsageResponse:
    try:
        get_usage_tracker().record_usage(subscription_id, payload.units)
        subscription = get_subscription_store().get(subscription_id)
    except (SubscriptionError, ValueError) as exc:
        raise _http_error(exc) from exc
    return UsageResponse(
        subscription_id=subscription.subscription_id,
        total_units_used=subscription.total_units_used,
        total_units_included=subscription.total_units_included,
        over_limit=is_over_limit(subscription),
    )


@router.post("/{subscription_id}/sync-status", response_model=SubscriptionRow)
def sync_external_status(subscription_id: str, *, current_admin=Depends(_get_current_admin)) -> SubscriptionRow:
    try:
        subscription = get_billing_service().sync_external_status(subscription_id)
    except SubscriptionError as exc:
        raise _http_error(exc) from exc
    return SubscriptionRow.from_subscription(subscription)
