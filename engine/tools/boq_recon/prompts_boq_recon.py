import json
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional, Sequence, Union


@dataclass(frozen=True)
class ExtractionCategory:
    """One row of a category table: a key, a display label and its rules prompt."""

    key: str
    label: str
    prompt: str = ""

    @property
    def override_key(self) -> str:
        return f"drawing-{self.key}-extraction"


BASE_PROMPT_OVERRIDE_KEY = "drawing-extraction"


@dataclass(frozen=True)
class CategorySet:
    """
    A named category table together with the base prompt its categories share.

    Iterates like a tuple of `ExtractionCategory`; `base_override_key` is the
    prompt-override key that replaces `base_prompt` for this set.
    """

    name: str
    base_prompt: str
    categories: tuple[ExtractionCategory, ...]
    base_override_key: str = BASE_PROMPT_OVERRIDE_KEY

    def __iter__(self) -> Iterator[ExtractionCategory]:
        return iter(self.categories)

    def __len__(self) -> int:
        return len(self.categories)

    def __getitem__(self, index: int) -> ExtractionCategory:
        return self.categories[index]


DRAWING_SYSTEM_PROMPT = (
    "You are a rules-aware parser. Always return JSON, and never add explanatory prose "
    "outside the JSON."
)

JSON_ONLY_SYSTEM_PROMPT = "Return only JSON and follow the specified schema."

DRAWING_EXTRACTION_PROMPT = """
You are a Senior Estimation Engineer for an exhibition stand contractor.
Your task is to analyze architectural inputs (Drawings, Renders, Scope of Work) and generate a Bill of Quantities (BOQ) as a JSON Array.

**The BOQ consists of 6 specific categories:**
A. Flooring
B. Wall Structure & Ceiling
C. Custom-made Items (Joinery/Fabrication)
D. Graphics (Branding/Logos)
E. Furniture (Rental loose items)
F. AV (Audio Visual Rental)

**Output Format:**
Return ONLY a valid JSON Array of Objects. No markdown, no conversational text.

**JSON Key Definitions:**
*   "section_code": String ("A", "B", "C", "D", "E", or "F").
*   "item_no": String (e.g., "A.1", "B.1").
*   "description": String (The Item Name and specific feature).
*   "dimensions": String (Format: "Lm L x Wm W x Hm H" or "Lm L x Hm H" or "Lm L x Dm D x Hm H" for walls or "Lm L x Wm W" for ceilings. If N/A, use empty string).
*   "dimensions_reason": String (Briefly explain how you derived the dimensions. Reference drawing annotations if present; otherwise explain the visual estimate and any assumptions/standards used. Do NOT output chain-of-thought; give a short professional justification).
*   "finishes": String (Material specifications, paint type, lighting).
*   "quantity": Number (Float or Integer).
*   "uom": String ("SQM", "LM", "UNIT", "NOS").

**General Estimation Rules:**
1.  **Dimensions:** Extract carefully from drawings, don't make estimations.
2.  **Language:** Use professional construction terminology (e.g., "MDF", "Spray paint", "Tempered glass").
3.  **Extraction:** You will be instructed to extract ONLY ONE category at a time. You must strictly ignore all items belonging to other categories.
""".strip()

_FLOORING_RULES = """
**TASK: Extract SECTION A: FLOORING only.**

**Instructions:**
Ignore all walls, furniture, AV, and graphics. Focus only on the ground surface and platform.

**Methodology & Mandatory Items:**
1.  **Total Area:** Calculate the floor under the booth area (Length x Width) from the exact dimensions in the drawings.
2.  **Item A.1 (Mandatory):** Always include the raised floor.
    *   Description: "Raised platform - Rental"
    *   Quantity: L x W, rounded up to whole metres ("198 cm = 2 m")
    *   Dimensions: Total Area L x W x 0.10m H
    *   Finishes: "Wooden structure, MDF, Plywood framing"
    *   UOM: SQM
3.  **Item A.2 (Floor Finish):** Identify the visible finish from the render.
    *   Quantity and Dimensions are same as Item A.1
    *   If Wood/Glossy: Description "Floor finish", Finish "Glossy finish laminate".
    *   If Fabric: Description "Floor finish", Finish "Galaxy grade Carpet".
    *   If specified PVC: Description "Floor finish", Finish "PVC Flooring".
    *   UOM: SQM (Matches total area).
4.  **Item A.3 (Skirting):** The edge of the platform.
    *   Quantity: Perimeter of open sides (Total Perimeter minus Wall lengths).
    *   Finishes: "MDF, Spray paint finish".
    *   UOM: LM (Linear Meter).
5.  **Item A.4 (Ramp):** If the booth has a raised floor, include 1 ramp.
    *   Finishes: "Wooden structure, MDF".
    *   UOM: UNIT.
6.  **Item A.5 (Mandatory):** Floor protection.
    *   Description: "Plastic protection"
    *   Finishes: "Consumables"
    *   UOM: SQM (Matches total area).
""".strip()

_WALLS_RULES = """
**TASK: Extract SECTION B: WALL STRUCTURE & CEILING only.**

**Instructions:**
Ignore flooring, loose furniture, counters, and logos. Focus on the architectural build.
Take the exact dimensions from the drawings.

**Methodology:**
1.  **Decomposition:** Do not group all walls. Break them down by orientation (e.g., "Back wall", "Left wall system", "Right wall system", "Meeting room wall", "Partition wall", "Offset panels").
2.  **Dimensions:** Extract L x D x H.
    *   Standard Depth (D) is 0.10m to 0.20m if not specified.
    *   Height and Length come from the drawings.
3.  **Finishes:**
    *   Standard: "Wooden structure, MDF, Roller paint". (Specify "Bothside" or "Oneside").
    *   Premium features: If the wall is high-gloss or complex, use "Spray paint finish".
    *   Lighting: If the wall has glowing lines/coves, add "with LED strip light incorporated".
    *   Glass Walls/Doors: Description "Glass door - Single/Double". Finish "10mm thick tempered glass with frosted sticker".
4.  **Ceiling:** Extract overhead elements (Rigging, Beams, Slats).
    *   Description: "Ceiling beams" or "Wooden slats".
    *   Finishes: "Wooden structure, MDF, Roller paint finish" (plus "LED strip" if visible).
""".strip()

_CUSTOM_ITEMS_RULES = """
**TASK: Extract SECTION C: CUSTOM-MADE ITEMS only.**

**Instructions:**
Ignore structural walls (Section B) and rental chairs/tables (Section E). Focus on FABRICATED/JOINERY furniture.
Take the exact dimensions from the drawings.

**Items to Include:**
Reception Desks, Display Podiums, Totems, Kiosks, Bar Counters (if built-in), Meeting Tables (only if custom/heavy joinery).

**Methodology:**
1.  **Description:** Use the specific name from the drawing (e.g., "Reception Table", "Display counter 1").
2.  **Finishes:**
    *   Standard Spec: "Wooden structure, MDF, Spray paint finish".
    *   Branding: If a logo is on the furniture, add ", with vinyl sticker logo on front".
    *   Lighting: If under-lit or toe-kick lighting is visible, add ", with LED strip light".
    *   Texture: If slats are visible, add ", with MDF slats".
3.  **Dimensions:** Format L x W x H. (e.g., "2.50m L x 0.60m W x 0.90m H").
4.  **UOM:** Always "UNIT".
""".strip()

_GRAPHICS_RULES = """
**TASK: Extract SECTION D: GRAPHICS only.**

**Instructions:**
Ignore the wall or desk the logo is attached to. Extract ONLY the branding elements.

**Methodology:**
1.  **Identify:** Scan ceiling bulkheads, wall headers, and main walls for logos/text.
2.  **Description:** Be specific about location (e.g., "Main Logo on ceiling", "Logo on Bulkhead (LHS)", "Logo on back wall").
3.  **Dimensions:** number of letters * Hm H (example: 7 Letters - 0.10m H).
4.  **Finishes (Rules):**
    *   **Glowing/Light Emitting:** Finish = "Acrylic Front lit Logo".
    *   **3D but Non-Glowing:** Finish = "MDF spray paint nonlit Logo".
    *   **Flat/Painted/Sticker:** Finish = "Vinyl sticker".
    *   **Canvas Prints:** Finish = "Printed graphics with frame".
5.  **UOM:** "UNIT".
""".strip()

_FURNITURE_RULES = """
**TASK: Extract SECTION E: FURNITURE only.**

**Instructions:**
Ignore built-in custom counters (Section C). Focus on LOOSE / RENTAL items.

**Methodology:**
1.  **Description:** Always append " - Rental" to the item name. (e.g., "Bar Stool - Rental", "Fridge - Rental").
2.  **Finishes:** Do not invent materials for rental items. Use this exact phrase: "Selected from the standard range and subject to availability".
3.  **Dimensions:** Usually empty string "" unless capacity is known (e.g. "200L" for fridge).
4.  **Quantity:** Count carefully from the render or text list.
5.  **UOM:** "NOS" (Numbers) or "UNIT".
""".strip()

_AV_RULES = """
**TASK: Extract SECTION F: AV (AUDIO VISUAL) only.**

**Instructions:**
Ignore static graphics and lighting fixtures. Focus on digital screens.
Count all the AV in the booth.

**Items to Include:**
LED Video Walls, LCD TVs, Screens.

**Methodology:**
1.  **Description:** Item Name + " - Rental".
2.  **LED Walls:**
    *   Description: "LED Wall - Rental" (or "LED on wall").
    *   Dimensions: Extract specific L x H (e.g., "3.50m L x 2.00m H").
    *   Finishes: "P 2.6 LED" or "P 2.9mm P".
3.  **TVs:**
    *   Description: "TV (Screen)".
    *   Finishes: Spec the size (e.g., "65 inch", "55 inch", "24 inch").
4.  **UOM:** "UNIT" or "NOS".
""".strip()

DRAWING_CATEGORIES = CategorySet(
    "drawing",
    DRAWING_EXTRACTION_PROMPT,
    (
        ExtractionCategory("flooring", "Flooring", _FLOORING_RULES),
        ExtractionCategory("walls_and_ceiling", "Wall Structure & Ceiling", _WALLS_RULES),
        ExtractionCategory("custom_items", "Custom-made Items", _CUSTOM_ITEMS_RULES),
        ExtractionCategory("graphics", "Graphics", _GRAPHICS_RULES),
        ExtractionCategory("furniture", "Furniture", _FURNITURE_RULES),
        ExtractionCategory("av", "AV", _AV_RULES),
    ),
)

MEP_EXTRACTION_PROMPT = """
You are a senior MEP estimation engineer for fuel and plumbing systems.
Extract every measurable line item shown on the drawings or listed in the schedules.

Return ONLY a valid JSON Array of Objects with these keys:
*   "item_number": String (tag or schedule reference, empty string if none).
*   "item_type": String (e.g., "Storage Tank", "Day Tank", "Pump", "Ball Valve").
*   "description": String (item name with its distinguishing feature).
*   "size": String (nominal size exactly as written, e.g. 3", DN50, 80mm).
*   "capacity": String (tank volume or pump rating, e.g. "10000L", "25 GPM @ 50 PSI").
*   "quantity": Number.
*   "unit": String ("NOS", "LM", "SET", "LOT").
*   "remarks": String (material, rating or anything needed to price the item).
""".strip()

_MEP_RULES = """
1.  Count valves, strainers, hoses and vents per size; one row per distinct size.
2.  Pipe runs are measured in LM per size and material.
3.  Tanks and pumps are one row each with their capacity or duty point.
4.  Level probes, leak sensors and control panels are separate rows.
5.  Do not invent items that are not shown.
""".strip()

MEP_CATEGORIES = CategorySet(
    "mep",
    MEP_EXTRACTION_PROMPT,
    (ExtractionCategory("mep", "MEP Systems", _MEP_RULES),),
    base_override_key="mep-extraction",
)

BOQ_EXTRACTION_PROMPT = """
You are a senior MEP estimation engineer. Extract BOQ items from the provided content.
Return JSON only with shape: { "items": [ { "item_number": "", "description": "", "quantity": "", "unit": "", "size": "", "capacity": "", "full_description": "" } ] }
Use only data from the BOQ.
""".strip()

BOQ_CATEGORY = ExtractionCategory("boq", "BOQ")

PDF_SCHEMA_ENFORCEMENT = "\n".join(
    [
        "IMPORTANT JSON SCHEMA REQUIREMENTS (must follow even if other prompts disagree):",
        "- Your response MUST be a JSON Array of Objects (no wrapper object, no markdown).",
        '- For EVERY item object you output, you MUST include a non-empty string field: "dimensions_reason".',
        '- "dimensions_reason" must briefly justify how you derived the dimensions (e.g., drawing callout reference, scale-based estimate, standard booth assumptions).',
        "- Do NOT provide chain-of-thought. Keep it short, professional, and directly tied to the chosen dimension values.",
        '- If the drawing has no explicit dimension, still set a best estimate and explain the assumption in "dimensions_reason".',
    ]
)


def resolve_prompts(
    categories: Union[CategorySet, Sequence[ExtractionCategory]],
    overrides: Optional[Mapping[str, str]] = None,
    base_prompt: Optional[str] = None,
) -> tuple[str, dict[str, str]]:
    """
    Base prompt and per-category rules with any non-blank overrides applied.

    The base prompt is, in order: `base_prompt`, the set's own prompt, then
    the exhibition-stand drawing prompt for a bare sequence of categories.
    Override keys are the set's `base_override_key` ("drawing-extraction",
    "mep-extraction") for the base prompt and "drawing-<key>-extraction" for
    each category.
    """
    overrides = overrides or {}

    def _pick(key: str, default: str) -> str:
        value = (overrides.get(key) or "").strip()
        return value or default

    if isinstance(categories, CategorySet):
        default_base, base_key = categories.base_prompt, categories.base_override_key
    else:
        default_base, base_key = DRAWING_EXTRACTION_PROMPT, BASE_PROMPT_OVERRIDE_KEY
    base = _pick(base_key, base_prompt or default_base)
    rules = {c.key: _pick(c.override_key, c.prompt) for c in categories}
    return base, rules


def build_category_prompt(
    base_prompt: str,
    category: ExtractionCategory,
    category_rules: str,
    file_name: str,
    *,
    text: Optional[str] = None,
    multimodal: bool = False,
) -> str:
    """Compose the user prompt for one category; empty blocks are left out."""
    if multimodal:
        blocks = [
            base_prompt,
            PDF_SCHEMA_ENFORCEMENT,
            f"Category focus: {category.label}",
            "Only include items for this category; ignore all other categories.",
            f"Category-specific rules:\n{category_rules}" if category_rules else None,
            f"Build document name: {file_name}",
            "Analyze the attached PDF drawings/renders as the source of truth.",
            "Return ONLY a JSON Array of Objects (no markdown, no extra text).",
        ]
    else:
        blocks = [
            base_prompt,
            f"Category focus: {category.label}",
            "Only include items for this category; ignore all other categories.",
            f"Category-specific rules:\n{category_rules}" if category_rules else None,
            f"Build document name: {file_name}",
            " ".join((text or "").split()),
        ]
    return "\n\n".join(b for b in blocks if b)


def build_boq_prompt(
    text: Optional[str] = None,
    *,
    has_image: bool = False,
    attachment_kind: str = "image",
    limit: int = 32_000,
) -> str:
    if has_image:
        return f"{BOQ_EXTRACTION_PROMPT}\n\nUse this BOQ {attachment_kind}."
    return f"{BOQ_EXTRACTION_PROMPT}\n\nBOQ content:\n{text or ''}"[:limit]


def build_comparison_prompt(
    drawing: Sequence[Mapping[str, Any]], boq: Sequence[Mapping[str, Any]]
) -> str:
    return f"""
Compare Drawing vs BOQ items. Match by description/size/capacity.
Each item from each list should appear only one time.
Only match the exact items.
Start from BOQ items and find the matches from drawings (if any).

Status codes:
- match_exact: same item, qty & unit match (for size, 1 inch = 1" = Ø1")
- match_quantity_diff: item matches, qty differs
- match_unit_diff: item matches, unit differs
- missing_in_boq: exist in drawing, not in BOQ
- missing_in_drawing: exist in BOQ, not in drawing
- no_match: no confident classification

Add a short note for any status other than match_exact.

Return JSON: {{"comparisons": [{{"drawing_idx": 0, "boq_idx": 0, "status": "match_exact", "note": ""}}]}}
Leave drawing_idx or boq_idx as null when that side has no counterpart.

Drawing (idx, desc, qty, unit, size, capacity):
{json.dumps(list(drawing), ensure_ascii=False)}

BOQ (idx, desc, qty, unit, size, capacity):
{json.dumps(list(boq), ensure_ascii=False)}

Return complete comparison for all items.
""".strip()


PRICE_MAP_SYSTEM_PROMPT = """
You are an expert MEP (Mechanical, Electrical, Plumbing) estimator with deep knowledge of fuel systems, piping, valves, tanks, and pumps.

Your task is to accurately match estimate items to the correct price list entries.

Key expertise:
- Understand that pipe sizes are often in inches (1", 2", 3", etc.) and must be converted to mm
- Know that BV = Ball Valve, CV = Check Valve
- Recognize tank capacities in Liters, Gallons, or cubic meters
- Match pumps by flow rate (GPM/LPM) and pressure (PSI/bar)

Be thorough: check EVERY price list row for potential matches.
Be precise: only return confident matches with exact price values.
Return valid JSON only.
""".strip()


def _size_table(inch_to_mm: Mapping[str, int]) -> str:
    # one row per size, fractional spelling preferred
    labels: dict[int, str] = {}
    for inch, mm in inch_to_mm.items():
        if mm not in labels or "/" in inch:
            labels[mm] = inch
    rows = ["| Inch | mm |", "|------|-----|"]
    rows += [f'| {inch}" | {mm}mm |' for mm, inch in labels.items()]
    return "\n".join(rows)


def build_price_prompt(
    items: Sequence[Mapping[str, Any]],
    price_list: Sequence[Mapping[str, Any]],
    inch_to_mm: Mapping[str, int],
) -> str:
    return f"""
You are a senior MEP estimator specializing in fuel systems. Your task is to map estimate items to the correct rows in a price list.

## SIZE CONVERSION REFERENCE
Standard inch to mm conversions (CRITICAL - use these exact values):
{_size_table(inch_to_mm)}

## MATCHING RULES BY CATEGORY

**STORAGE_TANK / DAY_TANK:**
- Match by EXACT capacity (e.g., 10000L, 500 Gal)
- Match by type of tank (day/storage).
- Return ALL price list rows for that tank type with matching capacity

**PUMP:**
- Match by GPM or LPM rating from description/capacity
- Also consider PSI if specified
- Return ALL matching pump entries

**BALL_VALVE (BV) / CHECK_VALVE (CV) / GATE_VALVE:**
- Match by SIZE (in mm after conversion)
- Return ALL valves of that type with matching size

**PIPE:**
- Match by SIZE (in mm) and material type if specified
- Return ALL matching pipe entries for that size

**STRAINER / FLEXIBLE_HOSE / VENT:**
- Match by SIZE (in mm)
- For emergency vents return ALL emergency vents with the same size

**LEVEL_DEVICE:**
- If the tank type is provided, return all level indicators for that tank type; otherwise return all level indicators.

**OTHER items:**
- Match by semantic similarity in description
- Consider size/capacity if present

## INPUT DATA

Items to price:
{json.dumps(list(items), indent=1, ensure_ascii=False)}

Price list (idx is zero-based):
{json.dumps(list(price_list), indent=1, ensure_ascii=False)}

## OUTPUT FORMAT

Return ONLY valid JSON in this exact structure:
{{
  "mappings": [
    {{
      "item_index": <zero-based index from items>,
      "price_list_index": <zero-based index from price list>,
      "unit_price": <exact value from price list row>,
      "unit_manhour": <exact value from price list row>,
      "match_reason": "<brief explanation>"
    }}
  ]
}}

## IMPORTANT RULES
1. Return MULTIPLE mappings per item if multiple price list rows match. Check every price list row for each item.
2. Copy unit_price and unit_manhour EXACTLY as they appear in the price list row.
3. Only include confident matches; omit items with no good match.
4. Use zero-based indices.
5. Do NOT include any text outside the JSON.
""".strip()
