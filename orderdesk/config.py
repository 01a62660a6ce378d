"""Billing configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import os


@dataclass(frozen=True)
class BillingConfig:
    """Policy values for recurring billing and the scheduler."""

    grace_period_days: int = 7
    max_charge_attempts: int = 3
    retry_interval_hours: float = 24.0
    charge_timeout_seconds: float = 30.0
    max_workers: int = 8
    billing_timezone: str = "America/Chicago"
    currency: str = "USD"
    store_write_attempts: int = 3
    retry_every_hours: int = 6
    scheduler_enabled: bool = True


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _to_timezone(value: Optional[str], *, default: str) -> str:
    name = (value or "").strip() or default
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone {name!r}") from exc
    return name


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env
    defaults = BillingConfig()

    grace_period_days = max(0, _to_int(env_mapping.get("BILLING_GRACE_PERIOD_DAYS"), default=defaults.grace_period_days))
    max_charge_attempts = max(1, _to_int(env_mapping.get("BILLING_MAX_CHARGE_ATTEMPTS"), default=defaults.max_charge_attempts))
    retry_interval_hours = max(
        0.0, _to_float(env_mapping.get("BILLING_RETRY_INTERVAL_HOURS"), default=defaults.retry_interval_hours)
    )
    charge_timeout_seconds = max(
        0.1, _to_float(env_mapping.get("BILLING_CHARGE_TIMEOUT_SECONDS"), default=defaults.charge_timeout_seconds)
    )
    max_workers = max(1, _to_int(env_mapping.get("BILLING_MAX_WORKERS"), default=defaults.max_workers))
    billing_timezone = _to_timezone(env_mapping.get("BILLING_TIMEZONE"), default=defaults.billing_timezone)
    currency = (env_mapping.get("BILLING_CURRENCY") or defaults.currency).strip().upper()
    store_write_attempts = max(
        1, _to_int(env_mapping.get("BILLING_STORE_WRITE_ATTEMPTS"), default=defaults.store_write_attempts)
    )
    retry_every_hours = max(1, _to_int(env_mapping.get("BILLING_RETRY_EVERY_HOURS"), default=defaults.retry_every_hours))
    scheduler_enabled = _to_bool(env_mapping.get("BILLING_SCHEDULER_ENABLED"), default=defaults.scheduler_enabled)

    return BillingConfig(
        grace_period_days=grace_period_days,
        max_charge_attempts=max_charge_attempts,
        retry_interval_hours=retry_interval_hours,
        charge_timeout_seconds=charge_timeout_seconds,
        max_workers=max_workers,
        billing_timezone=billing_timezone,
        currency=currency,
        store_write_attempts=store_write_attempts,
        retry_every_hours=retry_every_hours,
        scheduler_enabled=scheduler_enabled,
    )


__all__ = ["BillingConfig", "load_billing_config"]
