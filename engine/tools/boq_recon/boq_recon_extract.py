"""
Category-parallel structured extraction.

One request per category is sent to the extraction service; all requests run
concurrently and are settled together, so a failing category (service
error, non-JSON answer, truncated answer) becomes one entry in `errors`
without affecting its siblings. Items are concatenated in category
declaration order regardless of which request finished first.

Usage:
    from tools.boq_recon.boq_recon_extract import extract_structured

    result = await extract_structured(oracle, document)
    result.items, result.errors
"""

from __future__ import annotations

import json
import math
import asyncio
import time
from typing import Any, Mapping, Optional, Sequence, Union

from tools.boq_recon.boq_recon_models import ExtractedItem, ExtractionResult
from tools.boq_recon.prompts_boq_recon import (
    BOQ_CATEGORY,
    DRAWING_CATEGORIES,
    DRAWING_SYSTEM_PROMPT,
    JSON_ONLY_SYSTEM_PROMPT,
    CategorySet,
    ExtractionCategory,
    build_boq_prompt,
    build_category_prompt,
    resolve_prompts,
)
from utils.core.errors import MalformedResponseError
from utils.core.jsonval import parse_json_from_message
from utils.core.log import get_logger
from utils.document.doc import DocumentPayload
from utils.llm.LLM import InlinePart, OracleRequest, StructuredOracle, ensure_complete


CATEGORY_MAX_OUTPUT_TOKENS = 8192

# Accepted spellings per field, first non-blank wins.
_FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "section_code": ("section_code", "sectionCode", "section"),
    "section_name": ("section_name", "sectionName"),
    "item_no": ("item_no", "itemNo", "item_number"),
    "item_type": ("item_type",),
    "description": ("description",),
    "capacity": ("capacity",),
    "dimensions": ("dimensions", "size"),
    "dimensions_reason": (
        "dimensions_reason",
        "dimensionsReason",
        "dimension_reason",
        "dimensionReasoning",
        "dimension_reasoning",
        "remarks",
    ),
    "quantity": ("quantity",),
    "finishes": ("finishes", "finish"),
    "unit": ("unit", "uom"),
    "remarks": ("remarks",),
    "unit_price": ("unit_price",),
    "total_price": ("total_price",),
    "location": ("location",),
    "unit_manhour": ("unit_manhour",),
    "total_manhour": ("total_manhour",),
}

_ITEM_ENVELOPE_KEYS = ("items", "parsed_boq")


def _to_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        if isinstance(value, float):
            if not math.isfinite(value):
                return None
            if value.is_integer():
                return str(int(value))
        return str(value)
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _first(record: Mapping[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = _to_optional_str(record.get(key))
        if value is not None:
            return value
    return None


def coerce_item(record: Mapping[str, Any]) -> ExtractedItem:
    """Build an `ExtractedItem` from one loosely-shaped JSON record."""
    fields = {name: _first(record, keys) for name, keys in _FIELD_SYNONYMS.items()}
    fields["item_number"] = fields["item_no"]
    fields["size"] = fields["dimensions"]
    fields["full_description"] = _first(record, ("full_description",)) or fields["finishes"]
    return ExtractedItem(**fields)


def coerce_items(payload: Any) -> list[ExtractedItem]:
    """
    Items carried by a parsed response.

    Accepts a bare array or an object with an `items` (or `parsed_boq`)
    array. Array elements that are not plain objects are discarded.

    Raises:
        MalformedResponseError: for any other shape.
    """
    records = payload
    if isinstance(payload, dict):
        records = next(
            (payload[k] for k in _ITEM_ENVELOPE_KEYS if isinstance(payload.get(k), list)),
            None,
        )
    if not isinstance(records, list):
        raise MalformedResponseError(
            f"Response JSON is not an item array: {type(payload).__name__}"
        )
    return [coerce_item(record) for record in records if isinstance(record, dict)]


def items_to_attribute_map(items: Sequence[ExtractedItem]) -> dict[str, str]:
    """Human-readable `label -> summary` map used by the document collaborator."""
    attributes: dict[str, str] = {}
    for index, item in enumerate(items):
        size = item.dimensions or item.size
        parts = []
        if item.section_code:
            parts.append(f"Section {item.section_code}")
        if item.item_type:
            parts.append(f"[{item.item_type}]")
        if item.description:
            parts.append(item.description)
        if item.capacity:
            parts.append(f"Capacity: {item.capacity}")
        if size:
            parts.append(f"Size: {size}")
        if item.quantity or item.unit:
            qty = item.quantity or ""
            parts.append(f"Qty: {qty}{f' {item.unit}' if item.unit else ''}".strip())
        if item.finishes:
            parts.append(f"Finishes: {item.finishes}")
        if item.full_description:
            parts.append(item.full_description)

        attributes[item.label(index)] = " | ".join(p for p in parts if p) or "—"
    return attributes


def raw_report(result: ExtractionResult) -> str:
    return json.dumps(
        {"categories": result.per_category_raw, "errors": result.errors},
        indent=2,
        ensure_ascii=False,
    )


async def _bounded(coro, semaphore: Optional[asyncio.Semaphore]):
    if semaphore is None:
        return await coro
    async with semaphore:
        return await coro


async def _run_category(
    oracle: StructuredOracle,
    category: ExtractionCategory,
    request: OracleRequest,
) -> tuple[list[ExtractedItem], str]:
    logger = get_logger()
    t0 = time.perf_counter()

    response = await oracle.generate(request)
    text = ensure_complete(response, f"Category {category.label}")
    parsed = parse_json_from_message(text, label=category.key)
    items = coerce_items(parsed)

    logger.debug(
        f"[{category.key}] {len(items)} items in {time.perf_counter() - t0:.1f}s "
        f"(raw {len(text)} chars)"
    )
    return items, text


async def run_categories(
    oracle: StructuredOracle,
    requests: Sequence[tuple[ExtractionCategory, OracleRequest]],
    *,
    max_concurrent: Optional[int] = None,
) -> ExtractionResult:
    """
    Issue one request per category, settle all, and aggregate in table order.

    Never raises for a category-scoped failure; those land in `errors` as
    "<label>: <message>".
    """
    logger = get_logger()
    semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None

    tasks = [
        _bounded(_run_category(oracle, category, request), semaphore)
        for category, request in requests
    ]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    out = ExtractionResult()
    for (category, _), result in zip(requests, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.error(f"[{category.key}] extraction failed: {result}")
            out.errors.append(f"{category.label}: {result}")
            out.failed_categories.append(category.key)
            out.per_category_raw[category.key] = ""
            continue
        items, raw = result
        out.items.extend(items)
        out.per_category_raw[category.key] = raw

    logger.info(
        f"Extraction finished: {len(out.items)} items, "
        f"{len(out.failed_categories)}/{len(requests)} categories failed"
    )
    return out


async def extract_structured(
    oracle: StructuredOracle,
    document: DocumentPayload,
    *,
    categories: Union[CategorySet, Sequence[ExtractionCategory]] = DRAWING_CATEGORIES,
    prompt_overrides: Optional[Mapping[str, str]] = None,
    system_prompt: Optional[str] = None,
    max_concurrent: Optional[int] = None,
    max_output_tokens: int = CATEGORY_MAX_OUTPUT_TOKENS,
) -> ExtractionResult:
    """
    Extract items from one document, one request per category.

    Text documents are sent as whitespace-collapsed text; binary documents
    (PDF drawings) go as an inline attachment with the multimodal prompt.
    """
    base_prompt, rules = resolve_prompts(categories, prompt_overrides)
    multimodal = document.is_binary
    inline = [InlinePart(document.data, document.mime_type)] if multimodal else []

    requests = [
        (
            category,
            OracleRequest(
                user_prompt=build_category_prompt(
                    base_prompt,
                    category,
                    rules[category.key],
                    document.name,
                    text=document.text,
                    multimodal=multimodal,
                ),
                system_instruction=system_prompt or DRAWING_SYSTEM_PROMPT,
                inline_parts=inline,
                max_output_tokens=max_output_tokens,
                caller=f"extract:{category.key}",
            ),
        )
        for category in categories
    ]

    get_logger().info(
        f"Extracting {document.name} across {len(requests)} categories "
        f"({'multimodal' if multimodal else 'text'})"
    )
    return await run_categories(oracle, requests, max_concurrent=max_concurrent)


def _attachment_mime(ext: str) -> str:
    ext = ext.lower().lstrip(".")
    if ext == "pdf":
        return "application/pdf"
    return "image/jpeg" if ext == "jpg" else f"image/{ext}"


async def extract_boq_items(
    oracle: StructuredOracle,
    *,
    text: Optional[str] = None,
    image: Optional[bytes] = None,
    image_ext: Optional[str] = None,
    max_output_tokens: int = CATEGORY_MAX_OUTPUT_TOKENS,
) -> ExtractionResult:
    """
    BOQ-side extraction: a single-category run over BOQ text or a BOQ image
    (a scanned PDF is passed the same way with image_ext="pdf").

    Text is cut to the first 32 000 characters of the composed prompt.
    """
    has_image = image is not None and bool(image_ext)
    mime = _attachment_mime(image_ext) if has_image else None
    request = OracleRequest(
        user_prompt=build_boq_prompt(
            text,
            has_image=has_image,
            attachment_kind="document" if mime == "application/pdf" else "image",
        ),
        system_instruction=JSON_ONLY_SYSTEM_PROMPT,
        inline_parts=[InlinePart(image, mime)] if has_image else [],
        max_output_tokens=max_output_tokens,
        caller="extract:boq",
    )
    return await run_categories(oracle, [(BOQ_CATEGORY, request)])
