from decimal import Decimal

import pytest

from orderdesk.app.pricing import (
    ChipsFieldValue,
    DropdownFieldValue,
    FormValues,
    MissingBasePrice,
    MissingPricingInput,
    NoTiersConfigured,
    NumberFieldValue,
    Pack,
    PricedEntity,
    PricedEntityKind,
    PricedLine,
    PricingContext,
    PricingStructure,
    PricingTier,
    QuantityOutOfRange,
    TextFieldValue,
    UnknownTier,
    aggregate_line_items,
    overage_amount,
    parse_quantity_range,
    pricing_context_from_fields,
    renewal_amount,
    resolve_price,
)


def _quantity_entity(**overrides) -> PricedEntity:
    tiers = overrides.pop(
        "tiers",
        (
            PricingTier(label="1-50", price=Decimal("1.50")),
            PricingTier(label="51-75", price=Decimal("1.30")),
            PricingTier(label="76-100", price=Decimal("1.10")),
            PricingTier(label="101+", price=Decimal("1.00")),
        ),
    )
    return PricedEntity(
        entity_id=overrides.pop("entity_id", "svc-photos"),
        pricing_structure=PricingStructure.QUANTITY,
        tiers=tiers,
        **overrides,
    )


def _complexity_entity() -> PricedEntity:
    return PricedEntity(
        entity_id="svc-retouch",
        pricing_structure=PricingStructure.COMPLEXITY,
        tiers=(
            PricingTier(label="Basic", price=Decimal("40")),
            PricingTier(label="Standard", price=Decimal("60")),
            PricingTier(label="Advanced", price=Decimal("80")),
            PricingTier(label="Ultimate", price=Decimal("100")),
        ),
    )


@pytest.mark.parametrize(
    "quantity, expected",
    [
        (1, Decimal("1.50")),
        (50, Decimal("75.00")),
        (51, Decimal("66.30")),
        (75, Decimal("97.50")),
        (76, Decimal("83.60")),
        (100, Decimal("110.00")),
        (101, Decimal("101.00")),
        (100000, Decimal("100000.00")),
    ],
)
def test_quantity_tiers_select_range_containing_quantity(quantity, expected):
    assert resolve_price(_quantity_entity(), PricingContext(quantity=quantity)) == expected


def test_quantity_tiers_are_ordered_by_lower_bound_not_declaration_order():
    entity = _quantity_entity(
        tiers=(
            PricingTier(label="101+", price=Decimal("1.00")),
            PricingTier(label="1 – 50", price=Decimal("1.50")),
            PricingTier(label="51-100", price=Decimal("1.25")),
        )
    )

    assert resolve_price(entity, PricingContext(quantity=60)) == Decimal("75.00")
    assert resolve_price(entity, PricingContext(quantity=150)) == Decimal("150.00")


def test_quantity_in_gap_uses_nearest_lower_tier():
    entity = _quantity_entity(
        tiers=(
            PricingTier(label="1-10", price=Decimal("2.00")),
            PricingTier(label="20+", price=Decimal("1.00")),
        )
    )

    assert resolve_price(entity, PricingContext(quantity=15)) == Decimal("30.00")


def test_flat_tier_returns_tier_price():
    entity = _quantity_entity(
        tiers=(
            PricingTier(label="1-100", price=Decimal("150"), flat=True),
            PricingTier(label="101+", price=Decimal("1.20")),
        )
    )

    assert resolve_price(entity, PricingContext(quantity=80)) == Decimal("150.00")
    assert resolve_price(entity, PricingContext(quantity=200)) == Decimal("240.00")


@pytest.mark.parametrize("quantity", [0, -3])
def test_non_positive_quantity_is_out_of_range(quantity):
    with pytest.raises(QuantityOutOfRange) as excinfo:
        resolve_price(_quantity_entity(), PricingContext(quantity=quantity))
    assert excinfo.value.entity_id == "svc-photos"


def test_quantity_entity_requires_quantity():
    with pytest.raises(MissingPricingInput):
        resolve_price(_quantity_entity(), PricingContext())


def test_unparseable_quantity_label_is_configuration_error():
    entity = _quantity_entity(tiers=(PricingTier(label="lots", price=Decimal("1")),))

    with pytest.raises(UnknownTier):
        resolve_price(entity, PricingContext(quantity=3))


def test_complexity_lookup_is_case_insensitive():
    entity = _complexity_entity()

    assert resolve_price(entity, PricingContext(complexity_label="Standard")) == Decimal("60.00")
    assert resolve_price(entity, PricingContext(complexity_label="  ultimate ")) == Decimal("100.00")


def test_unknown_complexity_label_fails():
    with pytest.raises(UnknownTier):
        resolve_price(_complexity_entity(), PricingContext(complexity_label="Extreme"))


def test_tiered_entity_without_tiers_fails():
    entity = PricedEntity(entity_id="svc-empty", pricing_structure=PricingStructure.COMPLEXITY)

    with pytest.raises(NoTiersConfigured):
        resolve_price(entity, PricingContext(complexity_label="Basic"))


def test_single_price_requires_base_price():
    priced = PricedEntity(entity_id="svc-a", base_price=Decimal("19.999"))
    unpriced = PricedEntity(entity_id="svc-b")

    assert resolve_price(priced) == Decimal("20.00")
    with pytest.raises(MissingBasePrice):
        resolve_price(unpriced)


def test_resolve_price_is_idempotent():
    entity = _quantity_entity()
    context = PricingContext(quantity=77)

    first = resolve_price(entity, context)
    second = resolve_price(entity, context)

    assert first == second == Decimal("84.70")
    assert entity.tiers[0].price == Decimal("1.50")


def test_aggregate_rounds_once_after_discount():
    third = PricedEntity(entity_id="svc-third", base_price=Decimal("0.333"))
    lines = [PricedLine(entity=third, quantity=3), PricedLine(entity=third)]

    assert aggregate_line_items(lines) == Decimal("1.33")
    assert aggregate_line_items(lines, discount_percent=Decimal("10")) == Decimal("1.20")


def test_aggregate_mixes_structures_and_rejects_bad_discount():
    lines = [
        PricedLine(entity=_complexity_entity(), context=PricingContext(complexity_label="Basic")),
        PricedLine(entity=_quantity_entity(), context=PricingContext(quantity=10), quantity=2),
    ]

    assert aggregate_line_items(lines) == Decimal("70.00")
    with pytest.raises(ValueError):
        aggregate_line_items(lines, discount_percent=Decimal("120"))


def test_pack_renewal_and_overage_amounts():
    pack = Pack(
        pack_id="pack-100",
        name="100 photos",
        price=PricedEntity(entity_id="pack-100", kind=PricedEntityKind.PACK, base_price=Decimal("99")),
        included_units=100,
        overage=PricedEntity(entity_id="pack-100:overage", base_price=Decimal("1.25")),
    )

    assert renewal_amount(pack) == Decimal("99.00")
    assert overage_amount(pack, 12) == Decimal("15.00")
    assert overage_amount(pack, 0) == Decimal("0.00")


def test_tiered_overage_resolves_with_unit_count():
    pack = Pack(
        pack_id="pack-q",
        price=PricedEntity(entity_id="pack-q", base_price=Decimal("50")),
        included_units=10,
        overage=_quantity_entity(entity_id="pack-q:overage"),
    )

    assert overage_amount(pack, 60) == Decimal("78.00")


def test_overage_without_pricing_is_configuration_error():
    pack = Pack(pack_id="pack-x", price=PricedEntity(entity_id="pack-x", base_price=Decimal("10")))

    with pytest.raises(MissingBasePrice) as excinfo:
        overage_amount(pack, 5)
    assert excinfo.value.entity_id == "pack-x"


def test_parse_quantity_range_variants():
    assert parse_quantity_range("1-50") == (1, 50)
    assert parse_quantity_range("51 — 75") == (51, 75)
    assert parse_quantity_range("101+") == (101, None)
    assert parse_quantity_range("7") == (7, 7)
    with pytest.raises(ValueError):
        parse_quantity_range("75-51")


def test_pricing_context_from_tagged_form_values():
    form = FormValues.model_validate(
        {
            "values": [
                {"kind": "number", "field_key": "amount_of_products", "value": "42"},
                {"kind": "dropdown", "field_key": "complexity", "options": ["Basic", "Standard"], "selected": "Standard"},
                {"kind": "checkbox", "field_key": "rush", "checked": True},
                {"kind": "file", "field_key": "references", "file_ids": ["f1"]},
            ]
        }
    )

    context = pricing_context_from_fields(form.values)

    assert isinstance(form.values[0], NumberFieldValue)
    assert isinstance(form.values[1], DropdownFieldValue)
    assert context == PricingContext(quantity=42, complexity_label="Standard")


def test_pricing_context_ignores_unusable_values():
    values = [
        TextFieldValue(field_key="amount_of_products", value="several"),
        ChipsFieldValue(field_key="complexity", values=("Advanced", "Basic")),
    ]

    context = pricing_context_from_fields(values)

    assert context.quantity is None
    assert context.complexity_label == "Advanced"
