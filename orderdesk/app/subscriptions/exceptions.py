"""Errors raised by the subscription lifecycle store."""
from __future__ import annotations


class SubscriptionError(Exception):
    """Base class for subscription lifecycle failures."""


class SubscriptionNotFound(SubscriptionError, LookupError):
    """No subscription exists for the given identifier."""

    def __init__(self, subscription_id: str) -> None:
        super().__init__(f"Subscription not found: {subscription_id}")
        self.subscription_id = subscription_id


class VendorNotFound(SubscriptionError, LookupError):
    """The requested vendor does not exist."""

    def __init__(self, vendor_id: str) -> None:
        super().__init__(f"Vendor not found: {vendor_id}")
        self.vendor_id = vendor_id


class InvalidStateTransition(SubscriptionError):
    """The requested transition is not allowed from the current state."""


class ConcurrentModification(SubscriptionError):
    """The record changed between read and write."""

    def __init__(self, subscription_id: str, expected_version: int) -> None:
        super().__init__(
            f"Subscription {subscription_id} was modified concurrently (expected version {expected_version})"
        )
        self.subscription_id = subscription_id
        self.expected_version = expected_version
