"""Pure state transitions over :class:`Subscription` records.

Each function returns a new record and never performs I/O; the lifecycle
store applies them under optimistic concurrency. ``model_copy`` skips
validation, so every function here clears or sets a pending slot as a whole.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from .exceptions import InvalidStateTransition
from .models import ExternalPaymentStatus, PendingChangeType, Subscription
from .periods import add_months

UnitsForPack = Callable[[str], Optional[int]]

_CLEARED_VENDOR_SLOT: Dict[str, object] = {
    "pending_vendor_assignee_id": None,
    "pending_vendor_effective_at": None,
}

_CLEARED_PACK_SLOT: Dict[str, object] = {
    "pending_pack_id": None,
    "pending_change_type": None,
    "pending_pack_effective_at": None,
}


def _copy(subscription: Subscription, now: datetime, **update: object) -> Subscription:
    return subscription.model_copy(update={**update, "updated_at": now})


def _require_active(subscription: Subscription, action: str) -> None:
    if not subscription.is_active:
        raise InvalidStateTransition(
            f"Cannot {action}: subscription {subscription.subscription_id} is canceled"
        )


def mark_payment_failed(subscription: Subscription, now: datetime, *, grace_period_days: int) -> Subscription:
    """Active -> PastDue -> GracePeriod in one step.

    A subscription already in arrears keeps its original failure time and
    grace window.
    """

    _require_active(subscription, "record a payment failure")
    return _copy(
        subscription,
        now,
        payment_failed_at=subscription.payment_failed_at or now,
        grace_period_end=subscription.grace_period_end or now + timedelta(days=grace_period_days),
        external_payment_status=ExternalPaymentStatus.PAST_DUE,
        payment_retry_count=subscription.payment_retry_count + 1,
    )


def mark_payment_recovered(subscription: Subscription, now: datetime) -> Subscription:
    """GracePeriod -> Active after a successful charge."""

    _require_active(subscription, "record a payment recovery")
    return _copy(
        subscription,
        now,
        payment_failed_at=None,
        grace_period_end=None,
        payment_retry_count=0,
        external_payment_status=ExternalPaymentStatus.ACTIVE,
    )


def expire_grace_period(subscription: Subscription, now: datetime) -> Subscription:
    """GracePeriod -> Canceled once the window has elapsed without payment."""

    if subscription.grace_period_end is None:
        raise InvalidStateTransition(
            f"Subscription {subscription.subscription_id} is not in a grace period"
        )
    if subscription.grace_period_end > now:
        raise InvalidStateTransition(
            f"Grace period for {subscription.subscription_id} has not elapsed"
        )
    _require_active(subscription, "expire the grace period")
    return _copy(
        subscription,
        now,
        is_active=False,
        end_date=now,
        grace_period_end=None,
        external_payment_status=ExternalPaymentStatus.CANCELED,
    )


def assign_vendor_now(subscription: Subscription, vendor_id: str, now: datetime) -> Subscription:
    _require_active(subscription, "assign a vendor")
    return _copy(subscription, now, vendor_assignee_id=vendor_id)


def schedule_vendor_change(
    subscription: Subscription,
    vendor_id: str,
    now: datetime,
    *,
    effective_at: Optional[datetime] = None,
) -> Subscription:
    """Write the pending vendor slot; defaults to the next period start."""

    _require_active(subscription, "schedule a vendor change")
    return _copy(
        subscription,
        now,
        pending_vendor_assignee_id=vendor_id,
        pending_vendor_effective_at=effective_at or subscription.current_period_end,
    )


def cancel_pending_vendor_change(subscription: Subscription, now: datetime) -> Subscription:
    if not subscription.has_pending_vendor_change:
        raise InvalidStateTransition(
            f"Subscription {subscription.subscription_id} has no pending vendor change"
        )
    return _copy(subscription, now, **_CLEARED_VENDOR_SLOT)


def schedule_pack_change(
    subscription: Subscription,
    change_type: PendingChangeType,
    now: datetime,
    *,
    pack_id: Optional[str] = None,
    effective_at: Optional[datetime] = None,
) -> Subscription:
    _require_active(subscription, "schedule a pack change")
    if change_type is PendingChangeType.CANCEL:
        if pack_id is not None:
            raise InvalidStateTransition("A cancel change cannot target a pack")
    elif not pack_id:
        raise InvalidStateTransition(f"A {change_type.value} change requires a target pack")
    return _copy(
        subscription,
        now,
        pending_pack_id=pack_id,
        pending_change_type=change_type,
        pending_pack_effective_at=effective_at or subscription.current_period_end,
    )


def cancel_pending_pack_change(subscription: Subscription, now: datetime) -> Subscription:
    if not subscription.has_pending_pack_change:
        raise InvalidStateTransition(
            f"Subscription {subscription.subscription_id} has no pending pack change"
        )
    return _copy(subscription, now, **_CLEARED_PACK_SLOT)


def _apply_due_changes(
    subscription: Subscription,
    now: datetime,
    units_for_pack: Optional[UnitsForPack],
) -> Subscription:
    update: Dict[str, object] = {}
    effective_vendor = subscription.pending_vendor_effective_at
    if effective_vendor is not None and effective_vendor <= now:
        update["vendor_assignee_id"] = subscription.pending_vendor_assignee_id
        update.update(_CLEARED_VENDOR_SLOT)

    effective_pack = subscription.pending_pack_effective_at
    if effective_pack is not None and effective_pack <= now:
        if subscription.pending_change_type is PendingChangeType.CANCEL:
            update["is_active"] = False
            update["end_date"] = now
            update["external_payment_status"] = ExternalPaymentStatus.CANCELED
        else:
            new_pack_id = subscription.pending_pack_id
            update["pack_id"] = new_pack_id
            included = units_for_pack(new_pack_id) if units_for_pack and new_pack_id else None
            if included is not None:
                update["total_units_included"] = included
        update.update(_CLEARED_PACK_SLOT)

    if not update:
        return subscription
    return _copy(subscription, now, **update)


def apply_pending_changes(
    subscription: Subscription,
    now: datetime,
    *,
    units_for_pack: Optional[UnitsForPack] = None,
) -> Subscription:
    """PendingChange -> Active for every pending slot whose date has passed."""

    if not subscription.has_pending_change:
        raise InvalidStateTransition(
            f"Subscription {subscription.subscription_id} has no pending change to apply"
        )
    applied = _apply_due_changes(subscription, now, units_for_pack)
    if applied is subscription:
        raise InvalidStateTransition(
            f"Pending changes for {subscription.subscription_id} are not yet effective"
        )
    return applied


def unsubscribe(subscription: Subscription, now: datetime) -> Subscription:
    """Any active state -> Canceling; service continues until the period ends."""

    _require_active(subscription, "unsubscribe")
    if subscription.unsubscribed_at is not None:
        raise InvalidStateTransition(
            f"Subscription {subscription.subscription_id} is already canceling"
        )
    return _copy(
        subscription,
        now,
        unsubscribed_at=now,
        unsubscribe_effective_at=subscription.current_period_end,
    )


def complete_cancellation(subscription: Subscription, now: datetime) -> Subscription:
    """Canceling -> Canceled once the paid period is over."""

    effective = subscription.unsubscribe_effective_at
    if effective is None:
        raise InvalidStateTransition(
            f"Subscription {subscription.subscription_id} is not canceling"
        )
    if effective > now:
        raise InvalidStateTransition(
            f"Cancellation of {subscription.subscription_id} is not yet effective"
        )
    _require_active(subscription, "complete the cancellation")
    return _copy(
        subscription,
        now,
        is_active=False,
        end_date=effective,
        external_payment_status=ExternalPaymentStatus.CANCELED,
    )


def renew(
    subscription: Subscription,
    now: datetime,
    *,
    units_for_pack: Optional[UnitsForPack] = None,
) -> Subscription:
    """Close the elapsed period and open the next one.

    Completes a due cancellation, applies due pending changes, carries any
    usage beyond the quota into ``overage_units_pending`` and resets usage.
    The returned record is inactive when the renewal ended the subscription;
    the closing period's overage is still carried on it.
    """

    _require_active(subscription, "renew")
    if subscription.current_period_end > now:
        raise InvalidStateTransition(
            f"Current period of {subscription.subscription_id} has not elapsed"
        )

    overage = max(subscription.total_units_used - subscription.total_units_included, 0)
    carried = subscription.overage_units_pending + overage

    effective = subscription.unsubscribe_effective_at
    if effective is not None and effective <= now:
        return _copy(complete_cancellation(subscription, now), now, overage_units_pending=carried)

    renewed = _apply_due_changes(subscription, now, units_for_pack)
    if not renewed.is_active:
        return _copy(renewed, now, overage_units_pending=carried)

    period_start = subscription.current_period_end
    return _copy(
        renewed,
        now,
        current_period_start=period_start,
        current_period_end=add_months(period_start, 1, anchor_day=subscription.start_date.day),
        total_units_used=0,
        overage_units_pending=carried,
    )


def record_usage(subscription: Subscription, units: int, now: datetime) -> Subscription:
    _require_active(subscription, "record usage")
    return _copy(subscription, now, total_units_used=subscription.total_units_used + units)


def clear_pending_overage(subscription: Subscription, now: datetime) -> Subscription:
    if subscription.overage_units_pending == 0:
        return subscription
    return _copy(subscription, now, overage_units_pending=0)
