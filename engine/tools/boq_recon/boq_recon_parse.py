"""
Document parsing: turn a file on disk into extracted items.

Drawings (PDF) go to the extraction service as inline attachments with the
multimodal prompt; Word, text and other files are read as text first. BOQ
documents run the single-category BOQ extraction instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from tools.boq_recon.boq_recon_extract import (
    extract_boq_items,
    extract_structured,
    items_to_attribute_map,
    raw_report,
)
from tools.boq_recon.boq_recon_models import ExtractedItem, ExtractionResult
from tools.boq_recon.prompts_boq_recon import (
    DRAWING_CATEGORIES,
    CategorySet,
    ExtractionCategory,
)
from utils.core.errors import NoAttributesExtractedError
from utils.core.log import get_logger
from utils.document.doc import load_document
from utils.llm.LLM import StructuredOracle


@dataclass
class ParsedDocument:
    file_name: str
    attributes: dict[str, str] = field(default_factory=dict)
    items: list[ExtractedItem] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    failed_categories: int = 0
    raw_content: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "attributes": self.attributes,
            "items": [item.model_dump(exclude_none=True) for item in self.items],
            "errors": self.errors,
            "failed_categories": self.failed_categories,
            "raw_content": self.raw_content,
        }


def _finish(file_name: str, result: ExtractionResult, include_raw: bool) -> ParsedDocument:
    logger = get_logger()
    if result.all_failed:
        raise NoAttributesExtractedError(
            f"Failed to extract attributes from {file_name}", errors=result.errors
        )
    if result.failed_categories:
        logger.warning(
            f"{file_name}: {len(result.failed_categories)} categories failed, "
            f"{len(result.items)} items extracted"
        )
    return ParsedDocument(
        file_name=file_name,
        attributes=items_to_attribute_map(result.items),
        items=list(result.items),
        errors=list(result.errors),
        failed_categories=len(result.failed_categories),
        raw_content=raw_report(result) if include_raw else None,
    )


async def parse_document(
    path: str,
    oracle: StructuredOracle,
    *,
    categories: Union[CategorySet, Sequence[ExtractionCategory]] = DRAWING_CATEGORIES,
    prompt_overrides: Optional[Mapping[str, str]] = None,
    include_raw: bool = False,
    max_concurrent: Optional[int] = None,
) -> ParsedDocument:
    """
    Extract drawing-side items from one document.

    Partial extraction is a success with the failed-category count set.

    Raises:
        NoAttributesExtractedError: if every category failed.
        FileNotFoundError: if the path does not exist.
    """
    document = load_document(path, inline_pdf=True)
    result = await extract_structured(
        oracle,
        document,
        categories=categories,
        prompt_overrides=prompt_overrides,
        max_concurrent=max_concurrent,
    )
    return _finish(document.name, result, include_raw)


async def parse_boq_document(
    path: str, oracle: StructuredOracle, *, include_raw: bool = False
) -> ParsedDocument:
    """
    Extract BOQ-side items from a BOQ file.

    Images are sent as attachments; PDFs use their text layer and fall back
    to an attachment when the file is a scan with no text.
    """
    logger = get_logger()
    document = load_document(path, inline_pdf=False)

    if document.is_binary:
        ext = Path(document.name).suffix
        result = await extract_boq_items(oracle, image=document.data, image_ext=ext)
    elif not (document.text or "").strip() and Path(path).suffix.lower() == ".pdf":
        logger.info(f"{document.name} has no text layer; sending the PDF itself")
        result = await extract_boq_items(
            oracle, image=Path(path).read_bytes(), image_ext="pdf"
        )
    else:
        result = await extract_boq_items(oracle, text=document.text)

    return _finish(document.name, result, include_raw)
