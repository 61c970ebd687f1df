"""
Warning filters for the document and price-list readers.

Price lists arrive as supplier workbooks full of data validation, conditional
formatting and odd print settings; openpyxl warns about each of them on every
load. None of it affects the cell values we read.
"""

import warnings

# (message regex, module regex)
READER_WARNINGS = (
    (r"style lookup by style_id is deprecated", r"docx\.styles\.styles"),
    (r"Cannot parse header or footer", r"openpyxl\.worksheet\.header_footer"),
    (r".*extension is not supported and will be removed", r"openpyxl\.worksheet\._reader"),
    (r"Workbook contains no default style", r"openpyxl\.styles\.stylesheet"),
    (r"Conditional Formatting extension is not supported", r"openpyxl\.reader\.excel"),
    (r"Print area cannot be set to Defined name", r"openpyxl\.reader\.workbook"),
)


def configure_warning_filters() -> None:
    """Silence known reader noise. Safe to call more than once."""
    for message, module in READER_WARNINGS:
        warnings.filterwarnings("ignore", message=message, module=module)
