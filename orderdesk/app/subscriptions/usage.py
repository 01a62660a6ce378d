"""Per-period unit consumption for pack subscriptions."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from .models import Subscription
from .store import SubscriptionLifecycleStore

logger = logging.getLogger(__name__)


def is_over_limit(subscription: Subscription) -> bool:
    return subscription.total_units_used > subscription.total_units_included


def remaining_units(subscription: Subscription) -> int:
    return max(subscription.total_units_included - subscription.total_units_used, 0)


class SubscriptionUsageTracker:
    """Counts consumed against included units.

    Usage is never clamped to the quota; callers detect overage with
    :func:`is_over_limit`. Counters reset when the period renews.
    """

    def __init__(self, store: SubscriptionLifecycleStore) -> None:
        self._store = store

    def record_usage(self, subscription_id: str, units: int, *, now: Optional[datetime] = None) -> int:
        """Add ``units`` to the current period and return the new total."""

        if units <= 0:
            raise ValueError("units must be >= 1")
        updated = self._store.record_usage(subscription_id, units, now=now)
        if is_over_limit(updated):
            logger.info(
                "Subscription usage exceeds pack quota",
                extra={
                    "subscription_id": subscription_id,
                    "units_used": updated.total_units_used,
                    "units_included": updated.total_units_included,
                },
            )
        return updated.total_units_used

    def is_over_limit(self, subscription: Subscription) -> bool:
        return is_over_limit(subscription)
