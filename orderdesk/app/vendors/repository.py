"""Vendor lookups backed by PostgreSQL."""
from __future__ import annotations

from typing import Optional

from psycopg2.extensions import connection as PgConnection

from ..db import dict_cursor


class PostgresVendorDirectory:
    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def vendor_exists(self, vendor_id: str) -> bool:
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                "SELECT 1 AS present FROM vendors WHERE vendor_id = %s AND is_active LIMIT 1",
                (vendor_id,),
            )
            return cursor.fetchone() is not None


__all__ = ["PostgresVendorDirectory"]
