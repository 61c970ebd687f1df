"""
Reference price list loader.

Rows come back as plain dicts in sheet order; column names are whatever the
workbook uses, the price mapper only sniffs them by pattern.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd

from tools.boq_recon.boq_recon_models import PriceListRow
from utils.core.log import get_logger
from utils.core.warnings_config import configure_warning_filters
from utils.vault import secrets


EXCEL_EXTS = {".xlsx", ".xlsm", ".xls"}


def default_price_list_path() -> str:
    try:
        return secrets.get("PRICE_LIST_PATH")
    except KeyError:
        raise FileNotFoundError(
            "No price list path given and PRICE_LIST_PATH is not configured"
        ) from None


def _clean_value(value: Any) -> Optional[Union[str, int, float]]:
    if value is None:
        return None
    if hasattr(value, "item") and not isinstance(value, (str, pd.Timestamp)):
        value = value.item()  # numpy scalar -> python
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    if pd.isna(value):
        return None
    # datetimes and other cell types are passed on as text
    return str(value)


def _read_frame(path: Path, sheet: Optional[Union[str, int]]) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path)
    if suffix in EXCEL_EXTS:
        configure_warning_filters()
        engine = "openpyxl" if suffix in (".xlsx", ".xlsm") else None
        return pd.read_excel(path, sheet_name=0 if sheet is None else sheet, engine=engine)
    raise ValueError(f"Unsupported price list format: {path.name}")


def load_price_list(
    path: Optional[str] = None,
    *,
    sheet: Optional[Union[str, int]] = None,
    clean_headers: bool = False,
) -> list[PriceListRow]:
    """
    Load the reference price list as an ordered list of row dicts.

    Empty cells are omitted from each row and fully empty rows are dropped,
    so a row's position is its `price_list_index`. With `clean_headers`,
    runs of whitespace in column names collapse to single spaces.

    Raises:
        FileNotFoundError: if the file does not exist or no path is configured.
        ValueError: for an unsupported file extension.
    """
    logger = get_logger()
    resolved = Path(path or default_price_list_path()).expanduser()
    if not resolved.is_file():
        raise FileNotFoundError(f"Price list not found: {resolved}")

    df = _read_frame(resolved, sheet)
    df = df.dropna(how="all").dropna(how="all", axis=1)

    headers = [" ".join(str(c).split()) if clean_headers else str(c) for c in df.columns]

    rows: list[PriceListRow] = []
    for record in df.itertuples(index=False, name=None):
        row: PriceListRow = {}
        for header, value in zip(headers, record):
            cleaned = _clean_value(value)
            if cleaned is not None:
                row[header] = cleaned
        if row:
            rows.append(row)

    logger.info(f"Loaded price list {resolved.name}: {len(rows)} rows, {len(headers)} columns")
    return rows
