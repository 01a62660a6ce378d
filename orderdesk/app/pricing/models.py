"""Catalog-facing pricing models consumed by the pricing engine."""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PricingStructure(str, Enum):
    """How a priced entity turns a pricing context into an amount."""

    SINGLE = "single"
    COMPLEXITY = "complexity"
    QUANTITY = "quantity"


class PricedEntityKind(str, Enum):
    """Catalog entity types that carry a price."""

    SERVICE = "service"
    BUNDLE = "bundle"
    PACK = "pack"


class PricingTier(BaseModel):
    """A labeled price point belonging to a tiered entity."""

    label: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    sort_order: int = 0
    flat: bool = False

    model_config = ConfigDict(frozen=True)


class PricedEntity(BaseModel):
    """A service, bundle, or pack as exposed by the catalog."""

    entity_id: str
    kind: PricedEntityKind = PricedEntityKind.SERVICE
    name: str = ""
    pricing_structure: PricingStructure = PricingStructure.SINGLE
    base_price: Optional[Decimal] = Field(default=None, ge=0)
    tiers: Sequence[PricingTier] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)

    @field_validator("tiers")
    @classmethod
    def _freeze_tiers(cls, value: Sequence[PricingTier]) -> Sequence[PricingTier]:
        return tuple(value)


class PricingContext(BaseModel):
    """Inputs a tiered entity needs to select a tier."""

    quantity: Optional[int] = None
    complexity_label: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class PricedLine(BaseModel):
    """One priced reference inside a bundle or pack aggregation."""

    entity: PricedEntity
    context: PricingContext = Field(default_factory=PricingContext)
    quantity: int = Field(default=1, ge=1)

    model_config = ConfigDict(frozen=True)


class Pack(BaseModel):
    """A recurring pack product with a monthly unit quota."""

    pack_id: str
    name: str = ""
    price: PricedEntity
    included_units: int = Field(default=0, ge=0)
    overage: Optional[PricedEntity] = None

    model_config = ConfigDict(frozen=True)


class _FieldValueBase(BaseModel):
    field_key: str

    model_config = ConfigDict(frozen=True)


class TextFieldValue(_FieldValueBase):
    kind: Literal["text"] = "text"
    value: str = ""


class NumberFieldValue(_FieldValueBase):
    kind: Literal["number"] = "number"
    value: Optional[Decimal] = None


class DropdownFieldValue(_FieldValueBase):
    kind: Literal["dropdown"] = "dropdown"
    options: Sequence[str] = Field(default_factory=tuple)
    selected: Optional[str] = None


class CheckboxFieldValue(_FieldValueBase):
    kind: Literal["checkbox"] = "checkbox"
    checked: bool = False


class ChipsFieldValue(_FieldValueBase):
    kind: Literal["chips"] = "chips"
    values: Sequence[str] = Field(default_factory=tuple)


class FileReferenceFieldValue(_FieldValueBase):
    kind: Literal["file"] = "file"
    file_ids: Sequence[str] = Field(default_factory=tuple)


FieldValue = Annotated[
    Union[
        TextFieldValue,
        NumberFieldValue,
        DropdownFieldValue,
        CheckboxFieldValue,
        ChipsFieldValue,
        FileReferenceFieldValue,
    ],
    Field(discriminator="kind"),
]


class FormValues(BaseModel):
    """Container used to validate raw form payloads into tagged field values."""

    values: List[FieldValue] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)
