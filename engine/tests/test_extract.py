"""
Unit tests for category-parallel extraction.

Tests:
- coerce_item() / coerce_items() field mapping
- run_categories() failure isolation and ordering
- extract_structured() prompts for text and binary documents
- extract_boq_items() request shape
"""

import asyncio

import pytest

from tools.boq_recon.boq_recon_extract import (
    coerce_item,
    coerce_items,
    extract_boq_items,
    extract_structured,
    items_to_attribute_map,
)
from tools.boq_recon.boq_recon_models import ExtractedItem
from tools.boq_recon.prompts_boq_recon import (
    BASE_PROMPT_OVERRIDE_KEY,
    DRAWING_CATEGORIES,
    DRAWING_EXTRACTION_PROMPT,
    MEP_CATEGORIES,
    MEP_EXTRACTION_PROMPT,
    PDF_SCHEMA_ENFORCEMENT,
)
from utils.core.errors import MalformedResponseError, OracleError
from utils.document.doc import DocumentPayload
from utils.llm.LLM import OracleResponse


def _text_doc(text="Booth plan: carpet 20 sqm"):
    return DocumentPayload(name="booth.txt", text=text)


class TestCoerceItem:
    """Tests for coerce_item() / coerce_items()."""

    def test_synonyms_and_aliases(self):
        item = coerce_item(
            {
                "itemNo": "A-1",
                "description": "Carpet",
                "size": "5m x 4m",
                "quantity": 20,
                "uom": "SQM",
                "finish": "Grey",
                "dimensionReasoning": "callout",
            }
        )
        assert item.item_no == item.item_number == "A-1"
        assert item.dimensions == item.size == "5m x 4m"
        assert item.quantity == "20"
        assert item.unit == "SQM"
        assert item.finishes == item.full_description == "Grey"
        assert item.dimensions_reason == "callout"

    def test_blank_and_non_finite_values(self):
        item = coerce_item({"description": "  ", "quantity": float("nan"), "capacity": 2.5})
        assert item.description is None
        assert item.quantity is None
        assert item.capacity == "2.5"

    def test_envelopes(self):
        """Bare arrays, {"items": [...]} and {"parsed_boq": [...]} are all accepted."""
        assert len(coerce_items([{"description": "A"}])) == 1
        assert len(coerce_items({"items": [{"description": "A"}, {"description": "B"}]})) == 2
        assert len(coerce_items({"parsed_boq": [{"description": "A"}]})) == 1

    def test_non_objects_dropped(self):
        assert coerce_items([{"description": "A"}, "junk", 3, None]) == [ExtractedItem(description="A")]

    @pytest.mark.parametrize("payload", [{"rows": []}, {"description": "Carpet"}, "text", 3])
    def test_unrecognised_shape(self, payload):
        with pytest.raises(MalformedResponseError):
            coerce_items(payload)


class TestAttributeMap:
    """Tests for items_to_attribute_map()."""

    def test_labels_and_summary(self):
        items = [
            ExtractedItem(item_number="F-1", description="Carpet", quantity="20", unit="SQM"),
            ExtractedItem(capacity="1000L"),
        ]
        attributes = items_to_attribute_map(items)
        assert attributes["F-1"] == "Carpet | Qty: 20 SQM"
        assert attributes["Item 2"] == "Capacity: 1000L"


class TestExtractStructured:
    """Tests for extract_structured() and run_categories()."""

    async def test_all_categories_succeed_in_order(self, fake_oracle):
        oracle = fake_oracle(
            {
                "extract:flooring": [{"description": "Carpet"}],
                "extract:av": [{"description": "TV"}],
                "extract:graphics": {"items": [{"description": "Logo"}]},
            }
        )
        result = await extract_structured(oracle, _text_doc())

        assert len(oracle.requests) == len(DRAWING_CATEGORIES)
        assert [i.description for i in result.items] == ["Carpet", "Logo", "TV"]
        assert result.errors == []
        assert not result.all_failed

    async def test_partial_failure_is_isolated(self, fake_oracle):
        """Four failing categories give four errors; the other two still count."""
        oracle = fake_oracle(
            {
                "extract:flooring": [{"description": "Carpet"}],
                "extract:walls_and_ceiling": OracleError("quota exceeded"),
                "extract:custom_items": "not json at all",
                "extract:graphics": OracleResponse(text='[{"description": "Lo', finish_reason="MAX_TOKENS"),
                "extract:furniture": OracleError("timeout"),
                "extract:av": [{"description": "TV"}],
            }
        )
        result = await extract_structured(oracle, _text_doc())

        assert [i.description for i in result.items] == ["Carpet", "TV"]
        assert len(result.errors) == 4
        assert result.failed_categories == ["walls_and_ceiling", "custom_items", "graphics", "furniture"]
        assert result.errors[0] == "Wall Structure & Ceiling: quota exceeded"
        assert "truncated" in result.errors[2]
        assert result.per_category_raw["walls_and_ceiling"] == ""
        assert not result.all_failed

    async def test_all_failed(self, fake_oracle):
        oracle = fake_oracle(default=OracleError("down"))
        result = await extract_structured(oracle, _text_doc())
        assert result.all_failed
        assert result.items == []

    async def test_empty_result_is_not_failure(self, fake_oracle):
        oracle = fake_oracle(default="[]")
        result = await extract_structured(oracle, _text_doc())
        assert result.items == []
        assert not result.all_failed

    async def test_cut_off_answer_fails_its_category(self, fake_oracle):
        """Prose around a half-written array is an error even with a clean finish."""
        oracle = fake_oracle(
            {
                "extract:flooring": 'Here: [{"description": "Carpet", "tags": ["a"]}, {"description": "Wa',
                "extract:av": {"answer": "none found"},
            }
        )
        result = await extract_structured(oracle, _text_doc())

        assert result.items == []
        assert result.failed_categories == ["flooring", "av"]
        assert len(result.errors) == 2
        assert result.errors[0].startswith("Flooring: ")

    async def test_order_independent_of_completion(self):
        """Items follow category order even when early categories answer last."""
        delays = {key: 0.01 * (len(DRAWING_CATEGORIES) - i) for i, key in enumerate(c.key for c in DRAWING_CATEGORIES)}

        class SlowFirst:
            async def generate(self, request):
                key = request.caller.split(":", 1)[1]
                await asyncio.sleep(delays[key])
                return OracleResponse(text=f'[{{"description": "{key}"}}]', finish_reason="STOP")

        result = await extract_structured(SlowFirst(), _text_doc(), max_concurrent=2)
        assert [i.description for i in result.items] == [c.key for c in DRAWING_CATEGORIES]

    async def test_text_prompt_and_overrides(self, fake_oracle):
        oracle = fake_oracle()
        await extract_structured(
            oracle,
            _text_doc("Booth\n\n  plan   text"),
            prompt_overrides={BASE_PROMPT_OVERRIDE_KEY: "BASE", "drawing-av-extraction": "AV RULES"},
        )
        av = next(r for r in oracle.requests if r.caller == "extract:av")
        assert av.user_prompt.startswith("BASE")
        assert "Category-specific rules:\nAV RULES" in av.user_prompt
        assert av.user_prompt.endswith("Booth plan text")
        assert av.inline_parts == []

    async def test_mep_set_uses_its_own_base_prompt(self, fake_oracle):
        oracle = fake_oracle()
        await extract_structured(oracle, _text_doc("Fuel plan"), categories=MEP_CATEGORIES)

        (request,) = oracle.requests
        assert request.user_prompt.startswith(MEP_EXTRACTION_PROMPT)
        assert DRAWING_EXTRACTION_PROMPT not in request.user_prompt

    async def test_mep_base_override_key(self, fake_oracle):
        oracle = fake_oracle()
        await extract_structured(
            oracle,
            _text_doc("Fuel plan"),
            categories=MEP_CATEGORIES,
            prompt_overrides={BASE_PROMPT_OVERRIDE_KEY: "DRAWING BASE", "mep-extraction": "MEP BASE"},
        )
        assert oracle.requests[0].user_prompt.startswith("MEP BASE")

    async def test_binary_document_goes_inline(self, fake_oracle):
        oracle = fake_oracle()
        doc = DocumentPayload(name="plan.pdf", data=b"%PDF-1.7", mime_type="application/pdf")
        await extract_structured(oracle, doc)

        request = oracle.requests[0]
        assert request.inline_parts[0].mime_type == "application/pdf"
        assert PDF_SCHEMA_ENFORCEMENT in request.user_prompt


class TestExtractBoqItems:
    """Tests for extract_boq_items()."""

    async def test_text_boq(self, fake_oracle):
        oracle = fake_oracle({"extract:boq": {"items": [{"item_number": "1.1", "description": "Pump"}]}})
        result = await extract_boq_items(oracle, text="1.1 Pump 2 NOS")

        assert result.items[0].item_number == "1.1"
        assert oracle.requests[0].inline_parts == []
        assert "BOQ content:\n1.1 Pump 2 NOS" in oracle.requests[0].user_prompt

    async def test_long_text_is_cut(self, fake_oracle):
        oracle = fake_oracle()
        await extract_boq_items(oracle, text="x" * 50_000)
        assert len(oracle.requests[0].user_prompt) == 32_000

    @pytest.mark.parametrize(
        "ext, mime, kind",
        [("jpg", "image/jpeg", "image"), (".png", "image/png", "image"), ("pdf", "application/pdf", "document")],
    )
    async def test_attachments(self, fake_oracle, ext, mime, kind):
        oracle = fake_oracle()
        await extract_boq_items(oracle, image=b"bytes", image_ext=ext)
        request = oracle.requests[0]
        assert request.inline_parts[0].mime_type == mime
        assert request.user_prompt.endswith(f"Use this BOQ {kind}.")
