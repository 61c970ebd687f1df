"""
Unit tests for size normalisation and item categorisation.

Tests:
- normalize_size() inch, mm, DN and unparseable inputs
- categorize() rule order and item-type fallbacks
"""

import pytest

from tools.boq_recon.boq_recon_models import ExtractedItem
from tools.boq_recon.boq_recon_units import (
    CATEGORY_RULES,
    INCH_TO_MM,
    ItemCategory,
    categorize,
    normalize_size,
)


class TestNormalizeSize:
    """Tests for normalize_size()."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ('3"', "80mm"),
            ("Ø3", "80mm"),
            ("DN3", "80mm"),
            ("3 inch", "80mm"),
            ("3in", "80mm"),
            ("3''", "80mm"),
            ('1-1/2"', "40mm"),
            ('1 1/2"', "40mm"),
            ("2 1/2 inch", "65mm"),
            ('3/4"', "20mm"),
            ('1.5"', "40mm"),
            ("2", "50mm"),
            ("1½\"", "40mm"),
        ],
    )
    def test_inch_forms(self, raw, expected):
        """Inch-marked and bare nominal sizes convert through the table."""
        assert normalize_size(raw) == expected

    def test_mm_is_canonicalised(self):
        """Sizes already in mm keep their number and lose the spacing."""
        assert normalize_size("80 MM") == "80mm"
        assert normalize_size("DN 50mm") == "50mm"

    def test_empty_input(self):
        """None and empty strings normalise to the empty string."""
        assert normalize_size(None) == ""
        assert normalize_size("") == ""

    def test_unparseable_returned_unchanged(self):
        """Text with no recognisable size comes back untouched."""
        assert normalize_size("as per drawing") == "as per drawing"
        assert normalize_size("7") == "7"

    def test_idempotent(self):
        """Normalising an already normalised value changes nothing."""
        for raw in ('3"', "DN3", "as per drawing", "25mm"):
            once = normalize_size(raw)
            assert normalize_size(once) == once

    def test_table_values(self):
        """Both spellings of a fractional size map to the same mm."""
        assert INCH_TO_MM["1/2"] == INCH_TO_MM["0.5"] == 15
        assert INCH_TO_MM["2-1/2"] == INCH_TO_MM["2.5"] == 65


class TestCategorize:
    """Tests for categorize()."""

    @pytest.mark.parametrize(
        "description, expected",
        [
            ("Diesel storage tank 10000L", ItemCategory.STORAGE_TANK),
            ("Day tank 1000L", ItemCategory.DAY_TANK),
            ("Fuel transfer pump", ItemCategory.PUMP),
            ("Fuel filling point cabinet", ItemCategory.FILLING_POINT),
            ("Ball valve", ItemCategory.BALL_VALVE),
            ('BV 3"', ItemCategory.BALL_VALVE),
            ("Check valve", ItemCategory.CHECK_VALVE),
            ("CV 2 inch", ItemCategory.CHECK_VALVE),
            ("Gate valve", ItemCategory.GATE_VALVE),
            ("Y-strainer", ItemCategory.STRAINER),
            ("Black steel piping", ItemCategory.PIPE),
            ("Flexible connector", ItemCategory.FLEXIBLE_HOSE),
            ("Vent cap", ItemCategory.VENT),
            ("Leak detection", ItemCategory.SENSOR),
            ("Level switch", ItemCategory.LEVEL_DEVICE),
            ("Main control panel", ItemCategory.CONTROL_PANEL),
            ("Cable tray", ItemCategory.ELECTRICAL),
            ("Signage", ItemCategory.OTHER),
        ],
    )
    def test_descriptions(self, description, expected):
        assert categorize(ExtractedItem(description=description)) == expected

    def test_first_rule_wins(self):
        """A pump set described with its pipework is still a pump."""
        item = ExtractedItem(description="Pump with suction pipe")
        assert categorize(item) == ItemCategory.PUMP

    def test_item_type_fallback(self):
        """Tank and pump tags are honoured when the description is vague."""
        assert categorize(ExtractedItem(description="Unit A", item_type="STORAGE_TANK")) == (
            ItemCategory.STORAGE_TANK
        )
        assert categorize(ExtractedItem(description="Unit B", item_type="Pump")) == ItemCategory.PUMP

    def test_level_requires_level(self):
        """'switch' alone is not a level device."""
        assert categorize(ExtractedItem(description="Isolator switch")) == ItemCategory.OTHER

    def test_uses_full_description_when_missing(self):
        item = ExtractedItem(full_description="Gate valve, flanged")
        assert categorize(item) == ItemCategory.GATE_VALVE

    def test_rule_table_covers_every_category(self):
        """Every tag except OTHER has exactly one rule."""
        ruled = [r.category for r in CATEGORY_RULES]
        assert len(ruled) == len(set(ruled))
        assert set(ruled) | {ItemCategory.OTHER} == set(ItemCategory)

    def test_overlapping_keywords_follow_rule_order(self):
        """Ball valve is declared before check valve, so it wins when both appear."""
        item = ExtractedItem(description="Check valve and ball valve assembly")
        assert categorize(item) == ItemCategory.BALL_VALVE
        assert categorize(item) == categorize(item)
