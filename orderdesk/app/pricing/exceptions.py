"""Configuration errors raised while resolving prices."""
from __future__ import annotations

from typing import Optional


class PricingError(Exception):
    """Base class for pricing configuration and input errors."""

    def __init__(self, message: str, *, entity_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class MissingBasePrice(PricingError):
    """A single-priced entity has no base price."""


class NoTiersConfigured(PricingError):
    """A tiered entity has no tiers."""


class UnknownTier(PricingError):
    """No tier matches the requested label or the label cannot be parsed."""


class QuantityOutOfRange(PricingError):
    """Quantity-tiered pricing was asked to price a non-positive quantity."""


class MissingPricingInput(PricingError):
    """The pricing context lacks the input the pricing structure needs."""
