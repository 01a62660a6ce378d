"""Subscription records, lifecycle transitions and usage tracking."""

from .exceptions import (
    ConcurrentModification,
    InvalidStateTransition,
    SubscriptionError,
    SubscriptionNotFound,
    VendorNotFound,
)
from .models import (
    AssignmentType,
    ExternalPaymentStatus,
    PendingChangeType,
    Subscription,
    SubscriptionState,
)
from .periods import add_months, billing_period_key
from .repository import InMemorySubscriptionRepository, PostgresSubscriptionRepository
from .store import SubscriptionLifecycleStore, SubscriptionRepository
from .usage import SubscriptionUsageTracker, is_over_limit, remaining_units

__all__ = [
    "AssignmentType",
    "ConcurrentModification",
    "ExternalPaymentStatus",
    "InMemorySubscriptionRepository",
    "InvalidStateTransition",
    "PendingChangeType",
    "PostgresSubscriptionRepository",
    "Subscription",
    "SubscriptionError",
    "SubscriptionLifecycleStore",
    "SubscriptionNotFound",
    "SubscriptionRepository",
    "SubscriptionState",
    "SubscriptionUsageTracker",
    "VendorNotFound",
    "add_months",
    "billing_period_key",
    "is_over_limit",
    "remaining_units",
]
