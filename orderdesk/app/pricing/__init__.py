"""Pricing resolution for services, bundles and packs."""

from .catalog import InMemoryPackCatalog, PostgresPackCatalog
from .engine import (
    aggregate_line_items,
    overage_amount,
    parse_quantity_range,
    pricing_context_from_fields,
    renewal_amount,
    resolve_price,
    round_amount,
    select_quantity_tier,
)
from .exceptions import (
    MissingBasePrice,
    MissingPricingInput,
    NoTiersConfigured,
    PricingError,
    QuantityOutOfRange,
    UnknownTier,
)
from .models import (
    CheckboxFieldValue,
    ChipsFieldValue,
    DropdownFieldValue,
    FieldValue,
    FileReferenceFieldValue,
    FormValues,
    NumberFieldValue,
    Pack,
    PricedEntity,
    PricedEntityKind,
    PricedLine,
    PricingContext,
    PricingStructure,
    PricingTier,
    TextFieldValue,
)

__all__ = [
    "InMemoryPackCatalog",
    "PostgresPackCatalog",
    "CheckboxFieldValue",
    "ChipsFieldValue",
    "DropdownFieldValue",
    "FieldValue",
    "FileReferenceFieldValue",
    "FormValues",
    "MissingBasePrice",
    "MissingPricingInput",
    "NoTiersConfigured",
    "NumberFieldValue",
    "Pack",
    "PricedEntity",
    "PricedEntityKind",
    "PricedLine",
    "PricingContext",
    "PricingError",
    "PricingStructure",
    "PricingTier",
    "QuantityOutOfRange",
    "TextFieldValue",
    "UnknownTier",
    "aggregate_line_items",
    "overage_amount",
    "parse_quantity_range",
    "pricing_context_from_fields",
    "renewal_amount",
    "resolve_price",
    "round_amount",
    "select_quantity_tier",
]
