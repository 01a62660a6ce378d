from datetime import datetime, timezone
from decimal import Decimal

import pytest

from orderdesk.app.pricing import Pack, PricedEntity
from orderdesk.app.subscriptions import (
    InMemorySubscriptionRepository,
    InvalidStateTransition,
    SubscriptionLifecycleStore,
    SubscriptionNotFound,
    SubscriptionUsageTracker,
    is_over_limit,
    remaining_units,
)


START = datetime(2024, 5, 10, 9, tzinfo=timezone.utc)


@pytest.fixture
def tracker_components():
    store = SubscriptionLifecycleStore(repository=InMemorySubscriptionRepository())
    store.create_subscription(
        client_id="client-7",
        pack=Pack(pack_id="pack-10", price=PricedEntity(entity_id="pack-10", base_price=Decimal("20")), included_units=10),
        start_date=START,
        subscription_id="sub-7",
    )
    return store, SubscriptionUsageTracker(store)


def test_record_usage_returns_running_total(tracker_components):
    store, tracker = tracker_components

    assert tracker.record_usage("sub-7", 4, now=START) == 4
    assert tracker.record_usage("sub-7", 3, now=START) == 7
    assert remaining_units(store.get("sub-7")) == 3


def test_usage_is_not_clamped_to_quota(tracker_components):
    store, tracker = tracker_components

    total = tracker.record_usage("sub-7", 15, now=START)
    subscription = store.get("sub-7")

    assert total == 15
    assert tracker.is_over_limit(subscription) is True
    assert remaining_units(subscription) == 0


def test_is_over_limit_only_when_strictly_above_quota(tracker_components):
    store, tracker = tracker_components

    tracker.record_usage("sub-7", 10, now=START)

    assert is_over_limit(store.get("sub-7")) is False
    tracker.record_usage("sub-7", 1, now=START)
    assert is_over_limit(store.get("sub-7")) is True


@pytest.mark.parametrize("units", [0, -2])
def test_record_usage_rejects_non_positive_units(tracker_components, units):
    store, tracker = tracker_components

    with pytest.raises(ValueError):
        tracker.record_usage("sub-7", units, now=START)
    assert store.get("sub-7").total_units_used == 0


def test_record_usage_unknown_subscription(tracker_components):
    _, tracker = tracker_components

    with pytest.raises(SubscriptionNotFound):
        tracker.record_usage("sub-missing", 1)


def test_record_usage_on_canceled_subscription_is_rejected(tracker_components):
    store, tracker = tracker_components
    store.unsubscribe("sub-7", now=START)
    store.complete_cancellation("sub-7", now=store.get("sub-7").current_period_end)

    with pytest.raises(InvalidStateTransition):
        tracker.record_usage("sub-7", 1)
