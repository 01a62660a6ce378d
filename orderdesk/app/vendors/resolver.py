"""Bulk vendor reassignment for subscriptions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from ..subscriptions import (
    AssignmentType,
    SubscriptionError,
    SubscriptionLifecycleStore,
    VendorNotFound,
)
from ..subscriptions.models import Subscription

logger = logging.getLogger(__name__)


class VendorDirectory(Protocol):
    """Lookup of vendors that may be assigned to subscriptions."""

    def vendor_exists(self, vendor_id: str) -> bool:
        ...


class AssignmentOutcome(BaseModel):
    subscription_id: str
    success: bool
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class BulkAssignmentResult(BaseModel):
    """Per-id results of a bulk assignment."""

    results: List[AssignmentOutcome]

    model_config = ConfigDict(frozen=True)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def fail_count(self) -> int:
        return sum(1 for result in self.results if not result.success)


@dataclass
class VendorAssignmentResolver:
    """Applies immediate or scheduled vendor changes through the lifecycle store."""

    store: SubscriptionLifecycleStore
    vendors: VendorDirectory

    def assign_vendor(
        self,
        subscription_ids: Iterable[str],
        vendor_id: str,
        assignment_type: AssignmentType,
        *,
        now: Optional[datetime] = None,
    ) -> BulkAssignmentResult:
        """Assign ``vendor_id`` to each subscription independently.

        ``immediate`` writes the live assignee; ``scheduled`` fills the
        pending slot effective at the next period start. A failure on one
        id never stops the others.
        """

        ids = list(dict.fromkeys(subscription_ids))
        if not self.vendors.vendor_exists(vendor_id):
            error = str(VendorNotFound(vendor_id))
            logger.warning("Vendor assignment rejected", extra={"vendor_id": vendor_id})
            return BulkAssignmentResult(
                results=[AssignmentOutcome(subscription_id=sub_id, success=False, error=error) for sub_id in ids]
            )

        results = [self._assign_one(sub_id, vendor_id, assignment_type, now) for sub_id in ids]
        outcome = BulkAssignmentResult(results=results)
        logger.info(
            "Vendor assignment completed",
            extra={
                "vendor_id": vendor_id,
                "assignment_type": assignment_type.value,
                "success_count": outcome.success_count,
                "fail_count": outcome.fail_count,
            },
        )
        return outcome

    def _assign_one(
        self,
        subscription_id: str,
        vendor_id: str,
        assignment_type: AssignmentType,
        now: Optional[datetime],
    ) -> AssignmentOutcome:
        try:
            if assignment_type is AssignmentType.IMMEDIATE:
                self.store.assign_vendor_now(subscription_id, vendor_id, now=now)
            else:
                self.store.schedule_vendor_change(subscription_id, vendor_id, now=now)
        except SubscriptionError as exc:
            logger.warning(
                "Vendor assignment failed",
                extra={"subscription_id": subscription_id, "vendor_id": vendor_id, "error": str(exc)},
            )
            return AssignmentOutcome(subscription_id=subscription_id, success=False, error=str(exc))
        except Exception as exc:
            logger.exception(
                "Unexpected vendor assignment failure",
                extra={"subscription_id": subscription_id, "vendor_id": vendor_id},
            )
            return AssignmentOutcome(
                subscription_id=subscription_id, success=False, error=f"{type(exc).__name__}: {exc}"
            )
        return AssignmentOutcome(subscription_id=subscription_id, success=True)

    def cancel_pending_vendor_change(self, subscription_id: str, *, now: Optional[datetime] = None) -> Subscription:
        return self.store.cancel_pending_vendor_change(subscription_id, now=now)


class StaticVendorDirectory:
    """Vendor directory over a fixed set of ids."""

    def __init__(self, vendor_ids: Iterable[str] = ()) -> None:
        self._vendor_ids = set(vendor_ids)

    def add(self, vendor_id: str) -> None:
        self._vendor_ids.add(vendor_id)

    def vendor_exists(self, vendor_id: str) -> bool:
        return vendor_id in self._vendor_ids


__all__ = [
    "AssignmentOutcome",
    "BulkAssignmentResult",
    "StaticVendorDirectory",
    "VendorAssignmentResolver",
    "VendorDirectory",
]
