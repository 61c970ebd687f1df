"""
BOQ reconciliation entrypoint.

`boq_recon_main(action, **payload)` runs one stage of the pipeline and
wraps the outcome in the standard envelope:

    extract   drawing or BOQ document -> items (+ attribute map)
    compare   drawing items vs BOQ items -> comparison rows
    price     items -> ranked price-list candidates (+ priced items, totals)

Successful runs return {"status": "done", "result": {...}}; failures return
the error payload from `_make_error_payload`.

Local run:
    python -m tools.boq_recon.boq_recon extract drawings.pdf
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time
import uuid
from typing import Any, Dict, Optional, Sequence

from tools.boq_recon.boq_recon_compare import compare_items, summarize_statuses
from tools.boq_recon.boq_recon_models import ExtractedItem
from tools.boq_recon.boq_recon_parse import parse_boq_document, parse_document
from tools.boq_recon.boq_recon_price_map import (
    apply_selections,
    estimate_totals,
    group_by_item,
    map_to_price_list,
)
from tools.boq_recon.prompts_boq_recon import DRAWING_CATEGORIES, MEP_CATEGORIES
from utils.core.errors import NoAttributesExtractedError, ReconError, _make_error_payload
from utils.core.log import get_logger, run_logger, set_logger, setup_logging
from utils.core.warnings_config import configure_warning_filters
from utils.llm.LLM import GeminiOracle, StructuredOracle
from utils.vault import secrets


CATEGORY_SETS = {s.name: s for s in (DRAWING_CATEGORIES, MEP_CATEGORIES)}
ACTIONS = ("extract", "compare", "price")


def _items(raw: Optional[Sequence[Any]]) -> list[ExtractedItem]:
    return [i if isinstance(i, ExtractedItem) else ExtractedItem.model_validate(i) for i in raw or []]


async def _do_extract(
    oracle: StructuredOracle,
    *,
    path: str,
    side: str = "drawing",
    category_set: str = "drawing",
    prompt_overrides: Optional[Dict[str, str]] = None,
    include_raw: bool = False,
    max_concurrent: Optional[int] = None,
) -> Dict[str, Any]:
    if side == "boq":
        parsed = await parse_boq_document(path, oracle, include_raw=include_raw)
    elif side == "drawing":
        if category_set not in CATEGORY_SETS:
            raise ValueError(
                f"Unsupported category_set: {category_set}. Allowed: {', '.join(CATEGORY_SETS)}"
            )
        parsed = await parse_document(
            path,
            oracle,
            categories=CATEGORY_SETS[category_set],
            prompt_overrides=prompt_overrides,
            include_raw=include_raw,
            max_concurrent=max_concurrent,
        )
    else:
        raise ValueError(f"Unsupported side: {side}. Allowed: drawing, boq")
    return {"analysisType": "extract", "side": side, **parsed.to_dict()}


async def _do_compare(
    oracle: StructuredOracle,
    *,
    drawing_items: Sequence[Any] = (),
    boq_items: Sequence[Any] = (),
) -> Dict[str, Any]:
    result = await compare_items(oracle, _items(drawing_items), _items(boq_items))
    return {
        "analysisType": "compare",
        "rows": [row.model_dump(mode="json") for row in result.rows],
        "summary": summarize_statuses(result.rows),
        "skipped_drawing": result.skipped_drawing,
        "skipped_boq": result.skipped_boq,
        "raw": result.raw,
    }


async def _do_price(
    oracle: StructuredOracle,
    *,
    items: Sequence[Any] = (),
    price_list_path: Optional[str] = None,
    selections: Optional[Dict[int, int]] = None,
) -> Dict[str, Any]:
    parsed_items = _items(items)
    result = await map_to_price_list(oracle, parsed_items, price_list_path=price_list_path)
    priced = apply_selections(
        parsed_items,
        result.mappings,
        {int(k): int(v) for k, v in (selections or {}).items()},
    )
    return {
        "analysisType": "price",
        "mappings": [m.model_dump(mode="json") for m in result.mappings],
        "candidates_per_item": {
            str(idx): len(group) for idx, group in group_by_item(result.mappings).items()
        },
        "rejected": result.rejected,
        "priced_items": [i.model_dump(exclude_none=True) for i in priced],
        "totals": estimate_totals(priced),
        "raw": result.raw,
    }


async def boq_recon_main(
    action: str,
    *,
    oracle: Optional[StructuredOracle] = None,
    run_id: Optional[str] = None,
    user_name: Optional[str] = None,
    **payload: Any,
) -> Dict[str, Any]:
    run_id = run_id or uuid.uuid4().hex[:12]
    normalized = (action or "").strip().lower()
    base_logger = run_logger(run_id, "boq_recon", secrets.get("BOQ_RECON_LOG_DIR", "") or None)
    set_logger(
        base_logger,
        tool_name=f"boq_recon_{normalized or 'unknown'}",
        run_id=run_id,
        request_type=normalized.upper() or "N/A",
        user_name=user_name or "Anonymous",
    )
    logger = get_logger()

    if normalized not in ACTIONS:
        return _make_error_payload(
            "dispatch", f"Unsupported action: {action}. Allowed: {', '.join(ACTIONS)}"
        )

    start_t = time.perf_counter()
    logger.info(f"Process started: {normalized}")
    try:
        oracle = oracle or GeminiOracle()
        if normalized == "extract":
            result = await _do_extract(oracle, **payload)
        elif normalized == "compare":
            result = await _do_compare(oracle, **payload)
        else:
            result = await _do_price(oracle, **payload)
    except NoAttributesExtractedError as e:
        logger.error(f"{normalized} failed: {e}")
        return _make_error_payload(normalized, e, {"errors": e.errors, "run_id": run_id})
    except (ReconError, ValueError, FileNotFoundError, TypeError) as e:
        logger.error(f"{normalized} failed: {e}")
        return _make_error_payload(normalized, e, {"run_id": run_id})
    except Exception as e:
        logger.exception(f"{normalized} crashed")
        return _make_error_payload(normalized, e, {"run_id": run_id})

    logger.info(f"Process finished: {normalized} in {time.perf_counter() - start_t:.1f}s")
    return {"status": "done", "run_id": run_id, "result": result}


def _load_items(path: str) -> list:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return data.get("items", data) if isinstance(data, dict) else data


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="BOQ reconciliation engine")
    sub = parser.add_subparsers(dest="action", required=True)

    p_extract = sub.add_parser("extract", help="Extract items from a drawing or BOQ file")
    p_extract.add_argument("path")
    p_extract.add_argument("--side", choices=("drawing", "boq"), default="drawing")
    p_extract.add_argument("--category-set", choices=tuple(CATEGORY_SETS), default="drawing")
    p_extract.add_argument("--max-concurrent", type=int, default=None)
    p_extract.add_argument("--raw", action="store_true", help="Include raw responses")

    p_compare = sub.add_parser("compare", help="Compare two JSON item lists")
    p_compare.add_argument("drawing_json")
    p_compare.add_argument("boq_json")

    p_price = sub.add_parser("price", help="Map a JSON item list to the price list")
    p_price.add_argument("items_json")
    p_price.add_argument("--price-list", default=None)

    args = parser.parse_args(argv)
    configure_warning_filters()
    setup_logging()

    if args.action == "extract":
        payload = {
            "path": args.path,
            "side": args.side,
            "category_set": args.category_set,
            "max_concurrent": args.max_concurrent,
            "include_raw": args.raw,
        }
    elif args.action == "compare":
        payload = {
            "drawing_items": _load_items(args.drawing_json),
            "boq_items": _load_items(args.boq_json),
        }
    else:
        payload = {"items": _load_items(args.items_json), "price_list_path": args.price_list}

    response = asyncio.run(boq_recon_main(args.action, **payload))
    print(json.dumps(response, indent=2, ensure_ascii=False))
    return 0 if response.get("status") == "done" else 1


if __name__ == "__main__":
    raise SystemExit(main())
