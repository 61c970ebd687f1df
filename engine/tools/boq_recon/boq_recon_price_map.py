"""
Price-list mapping.

Items are categorised and their sizes normalised to mm, the price list is
cut down to its relevant columns, and both go to the matching service in
one request. The service may return several candidate rows per item; every
candidate is bounds-checked against the loaded list before it is returned,
and the matched row's own price and man-hour values are copied onto it.

Usage:
    from tools.boq_recon.boq_recon_price_map import map_to_price_list, group_by_item

    result = await map_to_price_list(oracle, items, price_list)
    candidates = group_by_item(result.mappings)
"""

from __future__ import annotations

import math
import re
from typing import Any, Mapping, Optional, Sequence, Union

from tools.boq_recon.boq_recon_models import (
    ExtractedItem,
    PriceListRow,
    PriceMapping,
    PriceMappingResult,
)
from tools.boq_recon.boq_recon_price_list import load_price_list
from tools.boq_recon.boq_recon_units import INCH_TO_MM, categorize, normalize_size
from tools.boq_recon.prompts_boq_recon import PRICE_MAP_SYSTEM_PROMPT, build_price_prompt
from utils.core.errors import MalformedResponseError
from utils.core.jsonval import parse_json_from_message
from utils.core.log import get_logger
from utils.llm.LLM import OracleRequest, StructuredOracle, ensure_complete


PRICE_MAP_MAX_OUTPUT_TOKENS = 16_000

RELEVANT_COLUMN_MARKERS = (
    "description",
    "item",
    "size",
    "capacity",
    "price",
    "manhour",
    "man hour",
    "unit",
)

# Most specific first; the first column that matches and has a value wins.
PRICE_COLUMN_PATTERNS = (re.compile(r"unit\s*price", re.I), re.compile(r"price", re.I))
MANHOUR_COLUMN_PATTERNS = (
    re.compile(r"unit\s*man\s*-?\s*hours?", re.I),
    re.compile(r"man\s*-?\s*hours?", re.I),
    re.compile(r"mh", re.I),
)

Scalar = Union[str, int, float]


def simplify_items(items: Sequence[ExtractedItem]) -> list[dict[str, Any]]:
    simplified = []
    for idx, item in enumerate(items):
        simplified.append(
            {
                "idx": idx,
                "category": categorize(item).value,
                "description": item.best_description(),
                "size": normalize_size(item.size) or item.size or "",
                "capacity": item.capacity or "",
                "quantity": item.quantity or "",
            }
        )
    return simplified


def simplify_price_list(price_list: Sequence[PriceListRow]) -> list[dict[str, Any]]:
    simplified = []
    for idx, row in enumerate(price_list):
        slim: dict[str, Any] = {"idx": idx}
        for key, value in row.items():
            lower = key.lower()
            if any(marker in lower for marker in RELEVANT_COLUMN_MARKERS):
                slim[key] = value
        simplified.append(slim)
    return simplified


def pick_field_from_row(row: Mapping[str, Any], patterns: Sequence[re.Pattern]) -> Optional[Scalar]:
    for pattern in patterns:
        for key, value in row.items():
            if pattern.search(key) and value not in (None, ""):
                return value
    return None


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _scalar(value: Any) -> Optional[Scalar]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        return value
    return str(value)


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def read_mappings_envelope(parsed: Any) -> Optional[list]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict) and isinstance(parsed.get("mappings"), list):
        return parsed["mappings"]
    return None


def validate_mappings(
    entries: Sequence[Any],
    item_count: int,
    price_list: Sequence[PriceListRow],
) -> tuple[list[PriceMapping], int]:
    """
    Keep only entries whose indices address a real item and a real row.

    Rejected entries are dropped, never clamped. A repeated
    (item_index, price_list_index) pair keeps its first occurrence.
    Returns the accepted mappings and the number rejected.
    """
    logger = get_logger()
    mappings: list[PriceMapping] = []
    seen: set[tuple[int, int]] = set()
    rejected = 0

    for entry in entries:
        if not isinstance(entry, dict):
            rejected += 1
            continue
        item_index = entry.get("item_index")
        row_index = entry.get("price_list_index")
        if not (_is_index(item_index) and item_index < item_count):
            logger.warning(f"[price-map] invalid item_index {item_index!r}, max is {item_count - 1}")
            rejected += 1
            continue
        if not (_is_index(row_index) and row_index < len(price_list)):
            logger.warning(
                f"[price-map] invalid price_list_index {row_index!r}, max is {len(price_list) - 1}"
            )
            rejected += 1
            continue
        if (item_index, row_index) in seen:
            continue
        seen.add((item_index, row_index))

        row = price_list[row_index]
        unit_price = pick_field_from_row(row, PRICE_COLUMN_PATTERNS)
        unit_manhour = pick_field_from_row(row, MANHOUR_COLUMN_PATTERNS)
        mappings.append(
            PriceMapping(
                item_index=item_index,
                price_list_index=row_index,
                unit_price=unit_price if unit_price is not None else _scalar(entry.get("unit_price")),
                unit_manhour=(
                    unit_manhour if unit_manhour is not None else _scalar(entry.get("unit_manhour"))
                ),
                price_row=dict(row),
                match_reason=_optional_text(entry.get("match_reason")),
                note=_optional_text(entry.get("note")),
            )
        )

    return mappings, rejected


async def map_to_price_list(
    oracle: StructuredOracle,
    items: Sequence[ExtractedItem],
    price_list: Optional[Sequence[PriceListRow]] = None,
    *,
    price_list_path: Optional[str] = None,
    max_output_tokens: int = PRICE_MAP_MAX_OUTPUT_TOKENS,
) -> PriceMappingResult:
    """
    Ranked price-list candidates for each item.

    The price list is loaded from `price_list_path` (or the configured
    default) when not passed in. An unreadable answer yields no mappings
    with the raw text kept; service failures and truncated answers raise.
    """
    logger = get_logger()
    if not items:
        logger.info("[price-map] no items to price")
        return PriceMappingResult()

    if price_list is None:
        price_list = load_price_list(price_list_path)
    if not price_list:
        logger.warning("[price-map] price list is empty")
        return PriceMappingResult()

    prompt = build_price_prompt(simplify_items(items), simplify_price_list(price_list), INCH_TO_MM)
    logger.debug(f"[price-map] items={len(items)} rows={len(price_list)} prompt={len(prompt)} chars")

    response = await oracle.generate(
        OracleRequest(
            user_prompt=prompt,
            system_instruction=PRICE_MAP_SYSTEM_PROMPT,
            max_output_tokens=max_output_tokens,
            caller="price_map",
        )
    )
    text = ensure_complete(response, "Price mapping")
    result = PriceMappingResult(raw=text)

    try:
        entries = read_mappings_envelope(parse_json_from_message(text, label="price_map"))
        if entries is None:
            raise MalformedResponseError("Response JSON has no mappings array")
    except MalformedResponseError as e:
        logger.error(f"[price-map] unusable matcher response: {e}")
        return result

    result.mappings, result.rejected = validate_mappings(entries, len(items), price_list)
    logger.info(
        f"[price-map] {len(result.mappings)} mappings for "
        f"{len(group_by_item(result.mappings))}/{len(items)} items, {result.rejected} rejected"
    )
    return result


def group_by_item(mappings: Sequence[PriceMapping]) -> dict[int, list[PriceMapping]]:
    """Candidates per item index, rank order preserved."""
    grouped: dict[int, list[PriceMapping]] = {}
    for mapping in mappings:
        grouped.setdefault(mapping.item_index, []).append(mapping)
    return grouped


def parse_numeric(value: Any) -> Optional[float]:
    """Float value of a number or numeric string ("1,250.5"), else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace(",", "").strip()
        if not value:
            return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def round_price(value: Any) -> str:
    if value is None:
        return ""
    num = parse_numeric(value)
    return f"{num:.2f}" if num is not None else str(value)


def compute_total(unit_value: Any, quantity: Any) -> str:
    unit_num, qty = parse_numeric(unit_value), parse_numeric(quantity)
    if unit_num is None or qty is None:
        return ""
    return f"{unit_num * qty:.2f}"


def apply_price_mapping(item: ExtractedItem, mapping: PriceMapping) -> ExtractedItem:
    """A new item carrying the mapping's unit values and the derived totals."""
    unit_price = round_price(mapping.unit_price) if mapping.unit_price is not None else item.unit_price
    unit_manhour = str(mapping.unit_manhour) if mapping.unit_manhour is not None else item.unit_manhour
    return item.model_copy(
        update={
            "unit_price": unit_price,
            "unit_manhour": unit_manhour,
            "total_price": compute_total(unit_price, item.quantity),
            "total_manhour": compute_total(unit_manhour, item.quantity),
        }
    )


def apply_selections(
    items: Sequence[ExtractedItem],
    mappings: Sequence[PriceMapping],
    selections: Optional[Mapping[int, int]] = None,
) -> list[ExtractedItem]:
    """
    Priced copies of `items`.

    `selections` maps item index to the chosen price_list_index; items
    without a selection take their first-ranked candidate, and items with no
    candidate are returned unchanged.
    """
    grouped = group_by_item(mappings)
    selections = selections or {}
    priced = []
    for idx, item in enumerate(items):
        candidates = grouped.get(idx, [])
        chosen = None
        if idx in selections:
            chosen = next((m for m in candidates if m.price_list_index == selections[idx]), None)
        elif candidates:
            chosen = candidates[0]
        priced.append(apply_price_mapping(item, chosen) if chosen else item)
    return priced


def estimate_totals(items: Sequence[ExtractedItem]) -> dict[str, float]:
    total_price = 0.0
    total_manhour = 0.0
    for item in items:
        price = item.total_price or compute_total(item.unit_price, item.quantity)
        manhour = item.total_manhour or compute_total(item.unit_manhour, item.quantity)
        total_price += parse_numeric(price) or 0.0
        total_manhour += parse_numeric(manhour) or 0.0
    return {"total_price": round(total_price, 2), "total_manhour": round(total_manhour, 2)}
