"""Monthly billing period arithmetic."""
from __future__ import annotations

import calendar
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def ensure_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def add_months(value: datetime, months: int, *, anchor_day: Optional[int] = None) -> datetime:
    """Shift ``value`` by whole months, clamping to the last day of short months.

    ``anchor_day`` keeps a subscription on its original billing day after a
    clamped month (Jan 31 -> Feb 28 -> Mar 31).
    """

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = anchor_day or value.day
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(day, last_day))


def billing_period_key(value: datetime, tz_name: str = "UTC") -> str:
    """Return the ``YYYY-MM`` period containing ``value`` in ``tz_name``."""

    local = ensure_aware(value).astimezone(ZoneInfo(tz_name))
    return f"{local.year:04d}-{local.month:02d}"
