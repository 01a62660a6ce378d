"""Persistence for the billing ledger."""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from threading import Lock
from typing import Dict, List, Optional, Tuple

from psycopg2.extensions import connection as PgConnection

from ..db import dict_cursor
from .models import BillingRecord, BillingRecordStatus, BillingRecordType

_LedgerKey = Tuple[str, str, BillingRecordType]


def _row_to_record(row: dict) -> BillingRecord:
    return BillingRecord(
        record_id=row["record_id"],
        subscription_id=row["subscription_id"],
        billing_period=row["billing_period"],
        record_type=BillingRecordType(row["record_type"]),
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        status=BillingRecordStatus(row["status"]),
        retry_count=int(row.get("retry_count") or 0),
        last_attempt_at=row.get("last_attempt_at"),
        failure_reason=row.get("failure_reason"),
        external_charge_id=row.get("external_charge_id"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresBillingLedger:
    """Ledger backed by ``billing_records`` with a unique (subscription, period, type) key."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def get_record(
        self,
        subscription_id: str,
        billing_period: str,
        record_type: BillingRecordType,
    ) -> Optional[BillingRecord]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_records
                WHERE subscription_id = %s AND billing_period = %s AND record_type = %s
                LIMIT 1
                """,
                (subscription_id, billing_period, record_type.value),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def create_record(self, record: BillingRecord) -> bool:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                INSERT INTO billing_records (
                    record_id,
                    subscription_id,
                    billing_period,
                    record_type,
                    amount,
                    currency,
                    status,
                    retry_count,
                    last_attempt_at,
                    failure_reason,
                    external_charge_id
                )
                VALUES (%(record_id)s, %(subscription_id)s, %(billing_period)s, %(record_type)s,
                        %(amount)s, %(currency)s, %(status)s, %(retry_count)s,
                        %(last_attempt_at)s, %(failure_reason)s, %(external_charge_id)s)
                ON CONFLICT (subscription_id, billing_period, record_type) DO NOTHING
                """,
                {
                    "record_id": record.record_id,
                    "subscription_id": record.subscription_id,
                    "billing_period": record.billing_period,
                    "record_type": record.record_type.value,
                    "amount": record.amount,
                    "currency": record.currency,
                    "status": record.status.value,
                    "retry_count": record.retry_count,
                    "last_attempt_at": record.last_attempt_at,
                    "failure_reason": record.failure_reason,
                    "external_charge_id": record.external_charge_id,
                },
            )
            return cursor.rowcount > 0

    def update_record(self, record: BillingRecord) -> BillingRecord:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                UPDATE billing_records
                SET status = %(status)s,
                    retry_count = %(retry_count)s,
                    last_attempt_at = %(last_attempt_at)s,
                    failure_reason = %(failure_reason)s,
                    external_charge_id = %(external_charge_id)s,
                    updated_at = NOW()
                WHERE record_id = %(record_id)s
                RETURNING *
                """,
                {
                    "record_id": record.record_id,
                    "status": record.status.value,
                    "retry_count": record.retry_count,
                    "last_attempt_at": record.last_attempt_at,
                    "failure_reason": record.failure_reason,
                    "external_charge_id": record.external_charge_id,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise LookupError(f"Billing record not found: {record.record_id}")
            return _row_to_record(row)

    def list_retryable(
        self,
        now: datetime,
        *,
        max_attempts: int,
        retry_interval: timedelta,
    ) -> List[BillingRecord]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_records
                WHERE status = %s
                  AND retry_count < %s
                  AND (last_attempt_at IS NULL OR last_attempt_at <= %s)
                ORDER BY created_at
                """,
                (BillingRecordStatus.PENDING.value, max_attempts, now - retry_interval),
            )
            return [_row_to_record(row) for row in cursor.fetchall() or []]

    def list_open_records(self, subscription_id: str) -> List[BillingRecord]:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_records
                WHERE subscription_id = %s AND status = %s
                ORDER BY created_at
                """,
                (subscription_id, BillingRecordStatus.PENDING.value),
            )
            return [_row_to_record(row) for row in cursor.fetchall() or []]


class InMemoryBillingLedger:
    """Thread-safe ledger for local development and tests."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._records: Dict[str, BillingRecord] = {}
        self._index: Dict[_LedgerKey, str] = {}

    def get_record(
        self,
        subscription_id: str,
        billing_period: str,
        record_type: BillingRecordType,
    ) -> Optional[BillingRecord]:
        with self._lock:
            record_id = self._index.get((subscription_id, billing_period, record_type))
            return self._records.get(record_id) if record_id else None

    def create_record(self, record: BillingRecord) -> bool:
        with self._lock:
            if record.key in self._index:
                return False
            self._index[record.key] = record.record_id
            self._records[record.record_id] = record
            return True

    def update_record(self, record: BillingRecord) -> BillingRecord:
        with self._lock:
            if record.record_id not in self._records:
                raise LookupError(f"Billing record not found: {record.record_id}")
            self._records[record.record_id] = record
            return record

    def list_retryable(
        self,
        now: datetime,
        *,
        max_attempts: int,
        retry_interval: timedelta,
    ) -> List[BillingRecord]:
        with self._lock:
            records = sorted(self._records.values(), key=lambda rec: rec.created_at)
        return [
            record
            for record in records
            if record.status == BillingRecordStatus.PENDING
            and record.retry_count < max_attempts
            and (record.last_attempt_at is None or record.last_attempt_at + retry_interval <= now)
        ]

    def list_open_records(self, subscription_id: str) -> List[BillingRecord]:
        with self._lock:
            return [
                record
                for record in self._records.values()
                if record.subscription_id == subscription_id and record.status == BillingRecordStatus.PENDING
            ]

    def all_records(self) -> List[BillingRecord]:
        with self._lock:
            return list(self._records.values())
