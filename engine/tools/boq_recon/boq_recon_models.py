"""
Pydantic models for the BOQ reconciliation pipeline.

Every entity is produced per run and never mutated after construction;
the engines return new objects instead of editing their inputs.

    ExtractedItem      one line item read from a drawing or a BOQ
    ComparisonRow      a drawing/BOQ pairing with a match outcome
    PriceMapping       one candidate price-list row for one item
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


PriceListRow = dict[str, Union[str, int, float]]


class ExtractedItem(BaseModel):
    """
    A line item derived from a document.

    All attributes are optional strings; absence means "not observed", not
    zero. Pricing fields are only filled in after price mapping.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    section_code: Optional[str] = None
    section_name: Optional[str] = None
    item_no: Optional[str] = None
    item_number: Optional[str] = None
    item_type: Optional[str] = Field(
        default=None, description="Category tag, e.g. BALL_VALVE or STORAGE_TANK"
    )
    description: Optional[str] = None
    full_description: Optional[str] = None
    capacity: Optional[str] = None
    size: Optional[str] = None
    dimensions: Optional[str] = None
    dimensions_reason: Optional[str] = Field(
        default=None, description="Short justification of how the dimensions were derived"
    )
    quantity: Optional[str] = None
    unit: Optional[str] = None
    finishes: Optional[str] = None
    location: Optional[str] = None
    remarks: Optional[str] = None

    unit_price: Optional[str] = None
    total_price: Optional[str] = None
    unit_manhour: Optional[str] = None
    total_manhour: Optional[str] = None

    def best_description(self) -> str:
        return (self.description or self.full_description or "").strip()

    def has_description(self) -> bool:
        return bool(self.best_description())

    def label(self, index: int) -> str:
        """Display label used as the attribute-map key."""
        return self.item_number or self.item_no or self.description or f"Item {index + 1}"


class ComparisonStatus(str, Enum):
    """Closed set of match outcomes; declaration order is outcome priority."""

    MATCH_EXACT = "match_exact"
    MATCH_QUANTITY_DIFF = "match_quantity_diff"
    MATCH_UNIT_DIFF = "match_unit_diff"
    MISSING_IN_BOQ = "missing_in_boq"
    MISSING_IN_DRAWING = "missing_in_drawing"
    NO_MATCH = "no_match"

    @property
    def is_match(self) -> bool:
        return self.value.startswith("match_")

    @classmethod
    def parse(cls, value: Any) -> Optional["ComparisonStatus"]:
        """Status for a raw value, or None if it is not one of the six."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


class ComparisonRow(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    drawing_item: Optional[ExtractedItem] = None
    boq_item: Optional[ExtractedItem] = None
    drawing_index: Optional[int] = None
    boq_index: Optional[int] = None
    status: ComparisonStatus = ComparisonStatus.NO_MATCH
    note: str = ""

    @model_validator(mode="after")
    def _at_least_one_side(self) -> "ComparisonRow":
        if self.drawing_item is None and self.boq_item is None:
            raise ValueError("ComparisonRow needs a drawing_item or a boq_item")
        return self


class PriceMapping(BaseModel):
    """
    One candidate price-list row for one item.

    Several mappings may share an `item_index`; they are ranked candidates
    in the order the matcher returned them.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    item_index: int
    price_list_index: int
    unit_price: Optional[Union[str, float, int]] = None
    unit_manhour: Optional[Union[str, float, int]] = None
    price_row: PriceListRow = Field(default_factory=dict)
    match_reason: Optional[str] = None
    note: Optional[str] = None


class ExtractionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[ExtractedItem] = Field(default_factory=list)
    per_category_raw: dict[str, str] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    failed_categories: list[str] = Field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        """True when at least one category ran and none of them succeeded."""
        return bool(self.per_category_raw) and len(self.failed_categories) == len(
            self.per_category_raw
        )


class ComparisonResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rows: list[ComparisonRow] = Field(default_factory=list)
    raw: str = ""
    skipped_drawing: list[int] = Field(default_factory=list)
    skipped_boq: list[int] = Field(default_factory=list)


class PriceMappingResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mappings: list[PriceMapping] = Field(default_factory=list)
    raw: str = ""
    rejected: int = 0
