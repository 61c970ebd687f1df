"""
Size normalisation and item categorisation for MEP line items.

Both functions are pure and synchronous. `normalize_size` converts nominal
pipe sizes written in inches (3", Ø3", DN3, 3 inch, 3in) to millimetres so
that drawing, BOQ and price-list sizes can be compared on one scale.
`categorize` assigns one tag from a fixed taxonomy using keyword rules that
are evaluated strictly in table order: the first rule that matches wins,
which is what keeps "check valve" from being read as a generic valve.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tools.boq_recon.boq_recon_models import ExtractedItem


# Nominal pipe size (inches) -> DN millimetres
INCH_TO_MM: dict[str, int] = {
    "0.5": 15, "1/2": 15,
    "0.75": 20, "3/4": 20,
    "1": 25,
    "1.25": 32, "1-1/4": 32,
    "1.5": 40, "1-1/2": 40,
    "2": 50,
    "2.5": 65, "2-1/2": 65,
    "3": 80,
    "4": 100,
    "5": 125,
    "6": 150,
    "8": 200,
    "10": 250,
    "12": 300,
}

_MM_RE = re.compile(r"(\d+(?:\.\d+)?)\s*mm", re.IGNORECASE)
_INCH_PATTERNS = (
    # 3"  Ø3"  3''  3 inch  3in  1-1/2"  1 1/2"  3/4"
    re.compile(
        r"(?:ø|dn)?\s*(\d+(?:(?:[.-]|\s+)\d+/\d+)?|\d+/\d+|\d+(?:\.\d+)?)\s*(?:\"|''|inch(?:es)?\b|in\b)",
        re.IGNORECASE,
    ),
    # Ø3  DN3
    re.compile(r"(?:ø|dn)\s*(\d+(?:\.\d+)?)\b", re.IGNORECASE),
)
_BARE_NUMBER_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*$")
_UNICODE_FRACTIONS = {"½": "1/2", "¼": "1/4", "¾": "3/4"}


def _inch_to_mm(value: str) -> Optional[int]:
    # "1 1/2" and "1-1/2" are the same mixed fraction
    value = re.sub(r"\s+", "-", value.strip())
    for key in (value, value.replace("-", ".")):
        if key in INCH_TO_MM:
            return INCH_TO_MM[key]
    try:
        # "3.0" and "0.50" are the same nominal sizes as "3" and "0.5"
        return INCH_TO_MM.get(format(float(value), "g"))
    except ValueError:
        return None


def _expand_unicode_fractions(text: str) -> str:
    for glyph, frac in _UNICODE_FRACTIONS.items():
        text = re.sub(rf"(\d)\s*{glyph}", rf"\1-{frac}", text)
        text = text.replace(glyph, frac)
    return text


def normalize_size(raw: Optional[str]) -> str:
    """
    Canonical millimetre form of a size expression ("80mm").

    Expressions that are already in mm are canonicalised; inch-marked and
    bare numeric sizes are resolved through `INCH_TO_MM`. Anything else is
    returned unchanged, so the function is total and idempotent.
    """
    if not raw:
        return ""

    lower = raw.lower().strip()

    mm_match = _MM_RE.search(lower)
    if mm_match:
        return f"{mm_match.group(1)}mm"

    lower = _expand_unicode_fractions(lower)
    for pattern in _INCH_PATTERNS:
        match = pattern.search(lower)
        if match:
            mm = _inch_to_mm(match.group(1))
            if mm:
                return f"{mm}mm"

    num_match = _BARE_NUMBER_RE.match(lower)
    if num_match:
        mm = _inch_to_mm(num_match.group(1))
        if mm:
            return f"{mm}mm"

    return raw


class ItemCategory(str, Enum):
    STORAGE_TANK = "STORAGE_TANK"
    DAY_TANK = "DAY_TANK"
    PUMP = "PUMP"
    FILLING_POINT = "FILLING_POINT"
    BALL_VALVE = "BALL_VALVE"
    CHECK_VALVE = "CHECK_VALVE"
    GATE_VALVE = "GATE_VALVE"
    STRAINER = "STRAINER"
    PIPE = "PIPE"
    FLEXIBLE_HOSE = "FLEXIBLE_HOSE"
    VENT = "VENT"
    SENSOR = "SENSOR"
    LEVEL_DEVICE = "LEVEL_DEVICE"
    CONTROL_PANEL = "CONTROL_PANEL"
    ELECTRICAL = "ELECTRICAL"
    OTHER = "OTHER"


@dataclass(frozen=True)
class CategoryRule:
    """
    Keyword rule for one category.

    A rule matches when every `requires` keyword is in the description and
    then any `any_of` keyword or `patterns` regex hits. With
    `match_item_type` the `any_of` keywords are also tried on the item type.
    """

    category: ItemCategory
    any_of: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    match_item_type: bool = False

    def matches(self, desc: str, item_type: str) -> bool:
        if self.requires and not all(k in desc for k in self.requires):
            return False
        if any(k in desc for k in self.any_of):
            return True
        if any(re.search(p, desc) for p in self.patterns):
            return True
        return self.match_item_type and any(k in item_type for k in self.any_of)


# Order is significant: first match wins.
CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(ItemCategory.STORAGE_TANK, any_of=("storage tank",), match_item_type=True),
    CategoryRule(ItemCategory.DAY_TANK, any_of=("day tank",), match_item_type=True),
    CategoryRule(ItemCategory.PUMP, any_of=("pump",), match_item_type=True),
    CategoryRule(ItemCategory.FILLING_POINT, any_of=("filling point", "fill point")),
    CategoryRule(ItemCategory.BALL_VALVE, any_of=("ball valve",), patterns=(r"\bbv\b",)),
    CategoryRule(ItemCategory.CHECK_VALVE, any_of=("check valve",), patterns=(r"\bcv\b",)),
    CategoryRule(ItemCategory.GATE_VALVE, any_of=("gate valve",)),
    CategoryRule(ItemCategory.STRAINER, any_of=("strainer",)),
    CategoryRule(ItemCategory.PIPE, any_of=("pipe", "piping")),
    CategoryRule(ItemCategory.FLEXIBLE_HOSE, any_of=("flexible", "hose")),
    CategoryRule(ItemCategory.VENT, any_of=("vent",)),
    CategoryRule(ItemCategory.SENSOR, any_of=("leak", "sensor")),
    CategoryRule(
        ItemCategory.LEVEL_DEVICE, requires=("level",), any_of=("probe", "switch", "indicator")
    ),
    CategoryRule(ItemCategory.CONTROL_PANEL, any_of=("control panel", "mcp")),
    CategoryRule(ItemCategory.ELECTRICAL, any_of=("conduit", "wiring", "cable")),
)


def categorize(item: ExtractedItem) -> ItemCategory:
    desc = item.best_description().lower()
    # tags such as STORAGE_TANK read the same as "storage tank"
    item_type = (item.item_type or "").lower().replace("_", " ")
    for rule in CATEGORY_RULES:
        if rule.matches(desc, item_type):
            return rule.category
    return ItemCategory.OTHER
