"""Pure price resolution over catalog entities."""
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, List, Optional, Sequence, Tuple

from .exceptions import (
    MissingBasePrice,
    MissingPricingInput,
    NoTiersConfigured,
    QuantityOutOfRange,
    UnknownTier,
)
from .models import (
    ChipsFieldValue,
    DropdownFieldValue,
    FieldValue,
    NumberFieldValue,
    Pack,
    PricedEntity,
    PricedLine,
    PricingContext,
    PricingStructure,
    PricingTier,
    TextFieldValue,
)

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")

_RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*[-–—]\s*(\d+)\s*$")
_OPEN_PATTERN = re.compile(r"^\s*(\d+)\s*\+\s*$")
_SINGLE_PATTERN = re.compile(r"^\s*(\d+)\s*$")


def round_amount(value: Decimal) -> Decimal:
    """Round a monetary amount to cents, half up."""

    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def parse_quantity_range(label: str) -> Tuple[int, Optional[int]]:
    """Parse a quantity tier label such as ``"1-50"`` or ``"101+"``."""

    match = _RANGE_PATTERN.match(label)
    if match:
        lower, upper = int(match.group(1)), int(match.group(2))
        if upper < lower:
            raise ValueError(f"Tier range {label!r} has upper bound below lower bound")
        return lower, upper
    match = _OPEN_PATTERN.match(label)
    if match:
        return int(match.group(1)), None
    match = _SINGLE_PATTERN.match(label)
    if match:
        value = int(match.group(1))
        return value, value
    raise ValueError(f"Unrecognized quantity tier label {label!r}")


def _normalize_label(label: str) -> str:
    return " ".join(label.split()).casefold()


def _require_tiers(entity: PricedEntity) -> Sequence[PricingTier]:
    if not entity.tiers:
        raise NoTiersConfigured(
            f"{entity.pricing_structure.value} pricing has no tiers configured",
            entity_id=entity.entity_id,
        )
    return entity.tiers


def _resolve_complexity(entity: PricedEntity, context: PricingContext) -> Decimal:
    tiers = _require_tiers(entity)
    if not context.complexity_label:
        raise MissingPricingInput("complexity label is required", entity_id=entity.entity_id)
    wanted = _normalize_label(context.complexity_label)
    for tier in tiers:
        if _normalize_label(tier.label) == wanted:
            return tier.price
    raise UnknownTier(
        f"No tier labeled {context.complexity_label!r}",
        entity_id=entity.entity_id,
    )


def select_quantity_tier(entity: PricedEntity, quantity: int) -> PricingTier:
    """Return the tier whose range contains ``quantity``.

    Tiers are ordered by lower bound and the last one is open-ended. A
    quantity that falls between declared ranges is priced by the nearest
    tier below it.
    """

    tiers = _require_tiers(entity)
    if quantity <= 0:
        raise QuantityOutOfRange(
            f"quantity must be positive, got {quantity}",
            entity_id=entity.entity_id,
        )

    bounded: List[Tuple[int, int, PricingTier]] = []
    for tier in tiers:
        try:
            lower, _ = parse_quantity_range(tier.label)
        except ValueError as exc:
            raise UnknownTier(str(exc), entity_id=entity.entity_id) from exc
        bounded.append((lower, tier.sort_order, tier))
    bounded.sort(key=lambda item: (item[0], item[1]))

    selected = bounded[0][2]
    for lower, _, tier in bounded:
        if lower <= quantity:
            selected = tier
        else:
            break
    return selected


def _resolve_quantity(entity: PricedEntity, context: PricingContext) -> Decimal:
    if context.quantity is None:
        _require_tiers(entity)
        raise MissingPricingInput("quantity is required", entity_id=entity.entity_id)
    tier = select_quantity_tier(entity, context.quantity)
    if tier.flat:
        return tier.price
    return tier.price * context.quantity


def _resolve_unrounded(entity: PricedEntity, context: PricingContext) -> Decimal:
    structure = entity.pricing_structure
    if structure is PricingStructure.SINGLE:
        if entity.base_price is None:
            raise MissingBasePrice("base price is not set", entity_id=entity.entity_id)
        return entity.base_price
    if structure is PricingStructure.COMPLEXITY:
        return _resolve_complexity(entity, context)
    if structure is PricingStructure.QUANTITY:
        return _resolve_quantity(entity, context)
    raise ValueError(f"Unsupported pricing structure: {structure}")  # pragma: no cover


def resolve_price(entity: PricedEntity, context: Optional[PricingContext] = None) -> Decimal:
    """Return the amount due for ``entity`` under ``context``, rounded to cents."""

    return round_amount(_resolve_unrounded(entity, context or PricingContext()))


def aggregate_line_items(
    lines: Iterable[PricedLine],
    *,
    discount_percent: Decimal = Decimal("0"),
) -> Decimal:
    """Sum priced lines, apply a percentage discount, and round once."""

    discount = Decimal(discount_percent)
    if discount < 0 or discount > _HUNDRED:
        raise ValueError("discount_percent must be between 0 and 100")

    subtotal = Decimal("0")
    for line in lines:
        subtotal += _resolve_unrounded(line.entity, line.context) * line.quantity
    return round_amount(subtotal * (_HUNDRED - discount) / _HUNDRED)


def renewal_amount(pack: Pack) -> Decimal:
    """Amount charged at the start of each pack period."""

    return resolve_price(pack.price, PricingContext(quantity=max(pack.included_units, 1)))


def overage_amount(pack: Pack, units: int) -> Decimal:
    """Amount charged for ``units`` consumed beyond the pack quota."""

    if units <= 0:
        return round_amount(Decimal("0"))
    if pack.overage is None:
        raise MissingBasePrice("pack has no overage pricing", entity_id=pack.pack_id)
    if pack.overage.pricing_structure is PricingStructure.QUANTITY:
        return resolve_price(pack.overage, PricingContext(quantity=units))
    return aggregate_line_items([PricedLine(entity=pack.overage, quantity=units)])


def _coerce_quantity(value: object) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return None


def pricing_context_from_fields(
    values: Iterable[FieldValue],
    *,
    quantity_field: str = "amount_of_products",
    complexity_field: str = "complexity",
) -> PricingContext:
    """Build a pricing context from submitted form field values."""

    quantity: Optional[int] = None
    complexity: Optional[str] = None
    for field in values:
        if field.field_key == quantity_field:
            if isinstance(field, NumberFieldValue):
                quantity = _coerce_quantity(field.value)
            elif isinstance(field, TextFieldValue):
                quantity = _coerce_quantity(field.value)
            elif isinstance(field, DropdownFieldValue):
                quantity = _coerce_quantity(field.selected)
        elif field.field_key == complexity_field:
            if isinstance(field, DropdownFieldValue):
                complexity = field.selected
            elif isinstance(field, TextFieldValue):
                complexity = field.value or None
            elif isinstance(field, ChipsFieldValue) and field.values:
                complexity = field.values[0]
    return PricingContext(quantity=quantity, complexity_label=complexity)


__all__ = [
    "aggregate_line_items",
    "overage_amount",
    "parse_quantity_range",
    "pricing_context_from_fields",
    "renewal_amount",
    "resolve_price",
    "round_amount",
    "select_quantity_tier",
]
