"""Persistence for subscription records with optimistic concurrency."""
from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Dict, List, Optional, Sequence

from psycopg2.extensions import connection as PgConnection

from ..db import dict_cursor
from .exceptions import ConcurrentModification, SubscriptionNotFound
from .models import ExternalPaymentStatus, PendingChangeType, Subscription

_COLUMNS = (
    "subscription_id",
    "client_id",
    "pack_id",
    "is_active",
    "start_date",
    "end_date",
    "current_period_start",
    "current_period_end",
    "external_payment_reference",
    "external_payment_status",
    "grace_period_end",
    "payment_failed_at",
    "payment_retry_count",
    "vendor_assignee_id",
    "pending_vendor_assignee_id",
    "pending_vendor_effective_at",
    "pending_pack_id",
    "pending_change_type",
    "pending_pack_effective_at",
    "unsubscribed_at",
    "unsubscribe_effective_at",
    "total_units_included",
    "total_units_used",
    "overage_units_pending",
)


def _row_to_subscription(row: dict) -> Subscription:
    status = row.get("external_payment_status")
    change_type = row.get("pending_change_type")
    return Subscription(
        subscription_id=row["subscription_id"],
        client_id=row["client_id"],
        pack_id=row["pack_id"],
        is_active=bool(row["is_active"]),
        start_date=row["start_date"],
        end_date=row.get("end_date"),
        current_period_start=row["current_period_start"],
        current_period_end=row["current_period_end"],
        external_payment_reference=row.get("external_payment_reference"),
        external_payment_status=ExternalPaymentStatus(status) if status else None,
        grace_period_end=row.get("grace_period_end"),
        payment_failed_at=row.get("payment_failed_at"),
        payment_retry_count=int(row.get("payment_retry_count") or 0),
        vendor_assignee_id=row.get("vendor_assignee_id"),
        pending_vendor_assignee_id=row.get("pending_vendor_assignee_id"),
        pending_vendor_effective_at=row.get("pending_vendor_effective_at"),
        pending_pack_id=row.get("pending_pack_id"),
        pending_change_type=PendingChangeType(change_type) if change_type else None,
        pending_pack_effective_at=row.get("pending_pack_effective_at"),
        unsubscribed_at=row.get("unsubscribed_at"),
        unsubscribe_effective_at=row.get("unsubscribe_effective_at"),
        total_units_included=int(row["total_units_included"]),
        total_units_used=int(row["total_units_used"]),
        overage_units_pending=int(row.get("overage_units_pending") or 0),
        version=int(row["version"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _subscription_params(subscription: Subscription) -> dict:
    params = {column: getattr(subscription, column) for column in _COLUMNS}
    if subscription.external_payment_status is not None:
        params["external_payment_status"] = subscription.external_payment_status.value
    if subscription.pending_change_type is not None:
        params["pending_change_type"] = subscription.pending_change_type.value
    return params


class PostgresSubscriptionRepository:
    """Concrete repository persisting subscriptions in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def get(self, subscription_id: str) -> Optional[Subscription]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT *
                FROM pack_subscriptions
                WHERE subscription_id = %s
                LIMIT 1
                """,
                (subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def list_all(self) -> List[Subscription]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute("SELECT * FROM pack_subscriptions ORDER BY created_at")
            return [_row_to_subscription(row) for row in cursor.fetchall() or []]

    def list_due_for_renewal(self, now: datetime) -> List[Subscription]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT *
                FROM pack_subscriptions
                WHERE is_active
                  AND payment_failed_at IS NULL
                  AND current_period_end <= %s
                ORDER BY current_period_end
                """,
                (now,),
            )
            return [_row_to_subscription(row) for row in cursor.fetchall() or []]

    def list_in_arrears(self) -> List[Subscription]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT *
                FROM pack_subscriptions
                WHERE is_active AND payment_failed_at IS NOT NULL
                ORDER BY payment_failed_at
                """
            )
            return [_row_to_subscription(row) for row in cursor.fetchall() or []]

    def list_with_pending_overage(self) -> List[Subscription]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT *
                FROM pack_subscriptions
                WHERE overage_units_pending > 0
                ORDER BY subscription_id
                """
            )
            return [_row_to_subscription(row) for row in cursor.fetchall() or []]

    def insert(self, subscription: Subscription) -> Subscription:
        params = _subscription_params(subscription)
        columns = ", ".join(_COLUMNS)
        placeholders = ", ".join(f"%({column})s" for column in _COLUMNS)
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                f"""
                INSERT INTO pack_subscriptions ({columns}, version)
                VALUES ({placeholders}, 0)
                RETURNING *
                """,
                params,
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def save(self, subscription: Subscription, *, expected_version: int) -> Subscription:
        params = _subscription_params(subscription)
        params["expected_version"] = expected_version
        assignments = ",\n                    ".join(
            f"{column} = %({column})s" for column in _COLUMNS if column != "subscription_id"
        )
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                f"""
                UPDATE pack_subscriptions
                SET {assignments},
                    version = version + 1,
                    updated_at = NOW()
                WHERE subscription_id = %(subscription_id)s
                  AND version = %(expected_version)s
                RETURNING *
                """,
                params,
            )
            row = cursor.fetchone()
            if row:
                return _row_to_subscription(row)
            cursor.execute(
                "SELECT 1 FROM pack_subscriptions WHERE subscription_id = %s",
                (subscription.subscription_id,),
            )
            if cursor.fetchone() is None:
                raise SubscriptionNotFound(subscription.subscription_id)
            raise ConcurrentModification(subscription.subscription_id, expected_version)


class InMemorySubscriptionRepository:
    """Thread-safe in-memory repository for local development and tests."""

    def __init__(self, subscriptions: Sequence[Subscription] = ()) -> None:
        self._lock = Lock()
        self._records: Dict[str, Subscription] = {
            subscription.subscription_id: subscription for subscription in subscriptions
        }

    def get(self, subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            return self._records.get(subscription_id)

    def list_all(self) -> List[Subscription]:
        with self._lock:
            return sorted(self._records.values(), key=lambda sub: sub.created_at)

    def list_due_for_renewal(self, now: datetime) -> List[Subscription]:
        return [
            sub
            for sub in self.list_all()
            if sub.is_active and sub.payment_failed_at is None and sub.current_period_end <= now
        ]

    def list_in_arrears(self) -> List[Subscription]:
        return [sub for sub in self.list_all() if sub.is_in_arrears]

    def list_with_pending_overage(self) -> List[Subscription]:
        return [sub for sub in self.list_all() if sub.overage_units_pending > 0]

    def insert(self, subscription: Subscription) -> Subscription:
        with self._lock:
            if subscription.subscription_id in self._records:
                raise ValueError(f"Subscription {subscription.subscription_id} already exists")
            stored = subscription.model_copy(update={"version": 0})
            self._records[subscription.subscription_id] = stored
            return stored

    def save(self, subscription: Subscription, *, expected_version: int) -> Subscription:
        with self._lock:
            current = self._records.get(subscription.subscription_id)
            if current is None:
                raise SubscriptionNotFound(subscription.subscription_id)
            if current.version != expected_version:
                raise ConcurrentModification(subscription.subscription_id, expected_version)
            stored = subscription.model_copy(update={"version": expected_version + 1})
            self._records[subscription.subscription_id] = stored
            return stored
