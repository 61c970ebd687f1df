"""
BOQ reconciliation module - drawing/BOQ extraction, comparison, and price mapping.

Submodules:
- boq_recon: Entrypoint dispatching extract / compare / price runs
- boq_recon_extract: Category-parallel structured extraction
- boq_recon_parse: File -> extracted items (drawings and BOQs)
- boq_recon_compare: Drawing vs BOQ matching under the six-status taxonomy
- boq_recon_price_map: Price-list candidate mapping and totals
- boq_recon_price_list: Reference price list loader (Excel/CSV)
- boq_recon_units: Size normalisation and item categorisation
- boq_recon_models: Pydantic data models
- prompts_boq_recon: Prompt templates and category tables
"""

from tools.boq_recon.boq_recon import boq_recon_main
from tools.boq_recon.boq_recon_compare import compare_items
from tools.boq_recon.boq_recon_extract import extract_structured
from tools.boq_recon.boq_recon_parse import parse_boq_document, parse_document
from tools.boq_recon.boq_recon_price_map import map_to_price_list
from tools.boq_recon.boq_recon_units import categorize, normalize_size

__all__ = [
    "boq_recon_main",
    "compare_items",
    "extract_structured",
    "parse_boq_document",
    "parse_document",
    "map_to_price_list",
    "categorize",
    "normalize_size",
]
