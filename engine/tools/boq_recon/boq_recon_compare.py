"""
Drawing vs BOQ comparison.

Both item lists are reduced to small position-indexed projections, sent to
the matching service in one request, and the returned index pairs are
resolved back to the original items here. The service is only trusted for
the pairing and the status: every index is bounds-checked, each item may be
consumed by one row only, and a malformed answer yields zero rows plus the
raw text instead of an exception.

Usage:
    from tools.boq_recon.boq_recon_compare import compare_items

    result = await compare_items(oracle, drawing_items, boq_items)
    for row in result.rows:
        print(row.status, row.note)
"""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

from tools.boq_recon.boq_recon_models import (
    ComparisonResult,
    ComparisonRow,
    ComparisonStatus,
    ExtractedItem,
)
from tools.boq_recon.prompts_boq_recon import JSON_ONLY_SYSTEM_PROMPT, build_comparison_prompt
from utils.core.errors import MalformedResponseError, ReconError
from utils.core.jsonval import parse_json_from_message
from utils.core.log import get_logger
from utils.llm.LLM import OracleRequest, StructuredOracle, ensure_complete


COMPARE_MAX_OUTPUT_TOKENS = 8192

_ENVELOPE_KEYS = ("comparisons", "matches", "result")
_DRAWING_INDEX_KEYS = ("drawing_idx", "drawing_index")
_BOQ_INDEX_KEYS = ("boq_idx", "boq_index")

DEFAULT_NOTES = {
    ComparisonStatus.MATCH_QUANTITY_DIFF: "Quantities differ between drawing and BOQ.",
    ComparisonStatus.MATCH_UNIT_DIFF: "Units differ between drawing and BOQ.",
    ComparisonStatus.MISSING_IN_BOQ: "Item found in drawings but not in the BOQ.",
    ComparisonStatus.MISSING_IN_DRAWING: "Item found in the BOQ but not in the drawings.",
    ComparisonStatus.NO_MATCH: "No confident match found.",
}


def simplify_items(items: Sequence[ExtractedItem]) -> tuple[list[dict[str, Any]], list[int]]:
    """
    Position-indexed projection sent to the matcher, plus skipped positions.

    Items with neither a description nor a full description cannot be
    matched on meaning; they are left out and reported back to the caller.
    """
    simplified, skipped = [], []
    for idx, item in enumerate(items):
        if not item.has_description():
            skipped.append(idx)
            continue
        simplified.append(
            {
                "idx": idx,
                "desc": item.best_description(),
                "qty": item.quantity or "",
                "unit": item.unit or "",
                "size": item.size or "",
                "capacity": item.capacity or "",
            }
        )
    return simplified, skipped


def read_comparison_envelope(parsed: Any) -> Optional[list]:
    """The list of raw comparison entries, or None if the shape is not recognised."""
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in _ENVELOPE_KEYS:
            if isinstance(parsed.get(key), list):
                return parsed[key]
    return None


def _raw_index(entry: dict, keys: Sequence[str]) -> Any:
    for key in keys:
        if entry.get(key) is not None:
            return entry[key]
    return None


def _valid_index(value: Any, allowed: set[int]) -> bool:
    # bool is an int subclass; True must not address item 1
    return isinstance(value, int) and not isinstance(value, bool) and value in allowed


def _reconcile_status(
    status: ComparisonStatus, has_drawing: bool, has_boq: bool
) -> ComparisonStatus:
    """A one-sided row keeps no_match or its own missing_* status; anything else is re-derived."""
    if has_drawing and not has_boq:
        if status.is_match or status is ComparisonStatus.MISSING_IN_DRAWING:
            return ComparisonStatus.MISSING_IN_BOQ
    elif has_boq and not has_drawing:
        if status.is_match or status is ComparisonStatus.MISSING_IN_BOQ:
            return ComparisonStatus.MISSING_IN_DRAWING
    return status


def resolve_rows(
    entries: Sequence[Any],
    drawing_items: Sequence[ExtractedItem],
    boq_items: Sequence[ExtractedItem],
    *,
    drawing_allowed: Optional[set[int]] = None,
    boq_allowed: Optional[set[int]] = None,
) -> tuple[list[ComparisonRow], int]:
    """
    Map raw index pairs back to the original items.

    An entry is dropped when it is not an object, has neither index, has an
    index outside the allowed positions, or re-uses an index an earlier row
    already consumed. Returns the rows and the number of dropped entries.
    """
    logger = get_logger()
    if drawing_allowed is None:
        drawing_allowed = set(range(len(drawing_items)))
    if boq_allowed is None:
        boq_allowed = set(range(len(boq_items)))

    rows: list[ComparisonRow] = []
    used_drawing: set[int] = set()
    used_boq: set[int] = set()
    dropped = 0

    for pos, entry in enumerate(entries):
        if not isinstance(entry, dict):
            dropped += 1
            continue

        d_idx = _raw_index(entry, _DRAWING_INDEX_KEYS)
        b_idx = _raw_index(entry, _BOQ_INDEX_KEYS)

        if d_idx is None and b_idx is None:
            dropped += 1
            continue
        if (d_idx is not None and not _valid_index(d_idx, drawing_allowed)) or (
            b_idx is not None and not _valid_index(b_idx, boq_allowed)
        ):
            logger.warning(f"[compare] entry {pos} has invalid index drawing={d_idx!r} boq={b_idx!r}; dropped")
            dropped += 1
            continue
        if d_idx in used_drawing or b_idx in used_boq:
            logger.warning(f"[compare] entry {pos} re-uses drawing={d_idx} boq={b_idx}; dropped")
            dropped += 1
            continue

        if d_idx is not None:
            used_drawing.add(d_idx)
        if b_idx is not None:
            used_boq.add(b_idx)

        status = ComparisonStatus.parse(entry.get("status")) or ComparisonStatus.NO_MATCH
        status = _reconcile_status(status, d_idx is not None, b_idx is not None)

        note = str(entry.get("note") or "").strip()
        if status is not ComparisonStatus.MATCH_EXACT and not note:
            note = DEFAULT_NOTES[status]

        rows.append(
            ComparisonRow(
                drawing_item=drawing_items[d_idx] if d_idx is not None else None,
                boq_item=boq_items[b_idx] if b_idx is not None else None,
                drawing_index=d_idx,
                boq_index=b_idx,
                status=status,
                note=note,
            )
        )

    return rows, dropped


def unclassified_rows(
    rows: Sequence[ComparisonRow],
    drawing_items: Sequence[ExtractedItem],
    boq_items: Sequence[ExtractedItem],
    drawing_allowed: set[int],
    boq_allowed: set[int],
) -> list[ComparisonRow]:
    """`no_match` rows for every sent item that no returned row consumed."""
    used_drawing = {r.drawing_index for r in rows if r.drawing_index is not None}
    used_boq = {r.boq_index for r in rows if r.boq_index is not None}
    note = "Not classified by the matcher."

    extra = [
        ComparisonRow(boq_item=boq_items[i], boq_index=i, status=ComparisonStatus.NO_MATCH, note=note)
        for i in sorted(boq_allowed - used_boq)
    ]
    extra += [
        ComparisonRow(
            drawing_item=drawing_items[i], drawing_index=i, status=ComparisonStatus.NO_MATCH, note=note
        )
        for i in sorted(drawing_allowed - used_drawing)
    ]
    return extra


def summarize_statuses(rows: Sequence[ComparisonRow]) -> dict[str, int]:
    counts = {status.value: 0 for status in ComparisonStatus}
    for row in rows:
        counts[row.status.value] += 1
    return counts


async def compare_items(
    oracle: StructuredOracle,
    drawing_items: Sequence[ExtractedItem],
    boq_items: Sequence[ExtractedItem],
    *,
    fill_unclassified: bool = True,
    max_output_tokens: int = COMPARE_MAX_OUTPUT_TOKENS,
) -> ComparisonResult:
    """
    Pair drawing items with BOQ items under the six-status taxonomy.

    Service failures and unreadable answers return zero rows with the raw
    text (or an error description) in `raw`; this function does not raise
    for them. With `fill_unclassified`, sent items the matcher left out of
    an otherwise valid answer are reported as `no_match` rows.
    """
    logger = get_logger()
    simplified_drawing, skipped_drawing = simplify_items(drawing_items)
    simplified_boq, skipped_boq = simplify_items(boq_items)
    result = ComparisonResult(skipped_drawing=skipped_drawing, skipped_boq=skipped_boq)

    if skipped_drawing or skipped_boq:
        logger.warning(
            f"[compare] skipped items without description: "
            f"drawing={skipped_drawing} boq={skipped_boq}"
        )
    if not simplified_drawing and not simplified_boq:
        logger.info("[compare] nothing to compare")
        return result

    prompt = build_comparison_prompt(simplified_drawing, simplified_boq)
    logger.debug(
        f"[compare] drawing={len(simplified_drawing)} boq={len(simplified_boq)} "
        f"prompt={len(prompt)} chars"
    )
    request = OracleRequest(
        user_prompt=prompt,
        system_instruction=JSON_ONLY_SYSTEM_PROMPT,
        max_output_tokens=max_output_tokens,
        caller="compare",
    )

    try:
        response = await oracle.generate(request)
    except Exception as e:
        logger.exception(f"[compare] matching call failed: {e}")
        result.raw = json.dumps({"error": str(e), "type": type(e).__name__}, indent=2)
        return result

    result.raw = response.text or ""
    try:
        text = ensure_complete(response, "Comparison")
        entries = read_comparison_envelope(parse_json_from_message(text, label="compare"))
        if entries is None:
            raise MalformedResponseError("Response JSON has no comparisons array")
    except ReconError as e:
        logger.error(f"[compare] unusable matcher response: {e}")
        return result

    drawing_allowed = {d["idx"] for d in simplified_drawing}
    boq_allowed = {b["idx"] for b in simplified_boq}
    rows, dropped = resolve_rows(
        entries,
        drawing_items,
        boq_items,
        drawing_allowed=drawing_allowed,
        boq_allowed=boq_allowed,
    )
    if fill_unclassified:
        rows += unclassified_rows(rows, drawing_items, boq_items, drawing_allowed, boq_allowed)

    result.rows = rows
    logger.info(
        f"[compare] {len(rows)} rows ({dropped} entries dropped) {summarize_statuses(rows)}"
    )
    return result
