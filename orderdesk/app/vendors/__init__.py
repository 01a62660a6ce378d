"""Vendor assignment for subscriptions."""

from .repository import PostgresVendorDirectory
from .resolver import (
    AssignmentOutcome,
    BulkAssignmentResult,
    StaticVendorDirectory,
    VendorAssignmentResolver,
    VendorDirectory,
)

__all__ = [
    "AssignmentOutcome",
    "BulkAssignmentResult",
    "PostgresVendorDirectory",
    "StaticVendorDirectory",
    "VendorAssignmentResolver",
    "VendorDirectory",
]
