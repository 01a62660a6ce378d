"""Subscription lifecycle store: the single writer of subscription state."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence
from uuid import uuid4

from ..pricing.models import Pack
from . import transitions
from .exceptions import ConcurrentModification, SubscriptionNotFound
from .models import ExternalPaymentStatus, PendingChangeType, Subscription
from .periods import add_months, ensure_aware

logger = logging.getLogger(__name__)

Mutation = Callable[[Subscription], Subscription]


class SubscriptionRepository(Protocol):
    """Persistence operations required by the lifecycle store."""

    def get(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def list_all(self) -> Sequence[Subscription]:
        ...

    def list_due_for_renewal(self, now: datetime) -> Sequence[Subscription]:
        ...

    def list_in_arrears(self) -> Sequence[Subscription]:
        ...

    def list_with_pending_overage(self) -> Sequence[Subscription]:
        ...

    def insert(self, subscription: Subscription) -> Subscription:
        ...

    def save(self, subscription: Subscription, *, expected_version: int) -> Subscription:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SubscriptionLifecycleStore:
    """Loads subscriptions, applies transitions and writes them back.

    Every write is a read-modify-write guarded by the record version. On a
    conflict the mutation is re-applied to the fresh record, up to
    ``write_attempts`` times.
    """

    repository: SubscriptionRepository
    grace_period_days: int = 7
    write_attempts: int = 3
    clock: Callable[[], datetime] = field(default=_utcnow)

    def _now(self, now: Optional[datetime] = None) -> datetime:
        return ensure_aware(now) if now is not None else self.clock()

    def get(self, subscription_id: str) -> Subscription:
        subscription = self.repository.get(subscription_id)
        if subscription is None:
            raise SubscriptionNotFound(subscription_id)
        return subscription

    def list_subscriptions(self) -> List[Subscription]:
        return list(self.repository.list_all())

    def list_due_for_renewal(self, now: Optional[datetime] = None) -> List[Subscription]:
        """Active subscriptions, not in arrears, whose current period has elapsed."""
        return list(self.repository.list_due_for_renewal(self._now(now)))

    def list_in_arrears(self) -> List[Subscription]:
        return list(self.repository.list_in_arrears())

    def list_with_pending_overage(self) -> List[Subscription]:
        return list(self.repository.list_with_pending_overage())

    def create_subscription(
        self,
        *,
        client_id: str,
        pack: Pack,
        start_date: Optional[datetime] = None,
        vendor_assignee_id: Optional[str] = None,
        external_payment_reference: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> Subscription:
        start = self._now(start_date)
        subscription = Subscription(
            subscription_id=subscription_id or f"sub_{uuid4().hex}",
            client_id=client_id,
            pack_id=pack.pack_id,
            start_date=start,
            current_period_start=start,
            current_period_end=add_months(start, 1),
            vendor_assignee_id=vendor_assignee_id,
            external_payment_reference=external_payment_reference,
            external_payment_status=ExternalPaymentStatus.ACTIVE,
            total_units_included=pack.included_units,
            created_at=start,
            updated_at=start,
        )
        stored = self.repository.insert(subscription)
        logger.info(
            "Subscription created",
            extra={"subscription_id": stored.subscription_id, "pack_id": pack.pack_id},
        )
        return stored

    def update(self, subscription_id: str, mutate: Mutation) -> Subscription:
        """Apply ``mutate`` to the latest record and persist it."""

        attempts = max(1, self.write_attempts)
        for attempt in range(1, attempts + 1):
            current = self.get(subscription_id)
            updated = mutate(current)
            if updated is current:
                return current
            try:
                return self.repository.save(updated, expected_version=current.version)
            except ConcurrentModification:
                logger.warning(
                    "Concurrent subscription update, retrying",
                    extra={"subscription_id": subscription_id, "attempt": attempt},
                )
                if attempt == attempts:
                    raise
        raise ConcurrentModification(subscription_id, -1)  # pragma: no cover

    def record_usage(self, subscription_id: str, units: int, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(subscription_id, lambda sub: transitions.record_usage(sub, units, current))

    def record_payment_failure(self, subscription_id: str, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(
            subscription_id,
            lambda sub: transitions.mark_payment_failed(
                sub, current, grace_period_days=self.grace_period_days
            ),
        )

    def record_payment_success(self, subscription_id: str, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(subscription_id, lambda sub: transitions.mark_payment_recovered(sub, current))

    def expire_grace_period(self, subscription_id: str, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(subscription_id, lambda sub: transitions.expire_grace_period(sub, current))

    def assign_vendor_now(self, subscription_id: str, vendor_id: str, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(subscription_id, lambda sub: transitions.assign_vendor_now(sub, vendor_id, current))

    def schedule_vendor_change(
        self,
        subscription_id: str,
        vendor_id: str,
        *,
        effective_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        current = self._now(now)
        return self.update(
            subscription_id,
            lambda sub: transitions.schedule_vendor_change(sub, vendor_id, current, effective_at=effective_at),
        )

    def cancel_pending_vendor_change(self, subscription_id: str, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(subscription_id, lambda sub: transitions.cancel_pending_vendor_change(sub, current))

    def schedule_pack_change(
        self,
        subscription_id: str,
        change_type: PendingChangeType,
        *,
        pack_id: Optional[str] = None,
        effective_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        current = self._now(now)
        return self.update(
            subscription_id,
            lambda sub: transitions.schedule_pack_change(
                sub, change_type, current, pack_id=pack_id, effective_at=effective_at
            ),
        )

    def cancel_pending_pack_change(self, subscription_id: str, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(subscription_id, lambda sub: transitions.cancel_pending_pack_change(sub, current))

    def apply_pending_changes(
        self,
        subscription_id: str,
        *,
        units_for_pack: Optional[transitions.UnitsForPack] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        current = self._now(now)
        return self.update(
            subscription_id,
            lambda sub: transitions.apply_pending_changes(sub, current, units_for_pack=units_for_pack),
        )

    def unsubscribe(self, subscription_id: str, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(subscription_id, lambda sub: transitions.unsubscribe(sub, current))

    def complete_cancellation(self, subscription_id: str, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(subscription_id, lambda sub: transitions.complete_cancellation(sub, current))

    def clear_pending_overage(self, subscription_id: str, now: Optional[datetime] = None) -> Subscription:
        current = self._now(now)
        return self.update(subscription_id, lambda sub: transitions.clear_pending_overage(sub, current))
