import io
import os
import fitz
import docx
import pandas as pd
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from utils.core.log import get_logger


PDF_MIME = "application/pdf"
IMAGE_MIMES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}
SPREADSHEET_EXTS = {".xlsx", ".xlsm", ".xls", ".csv"}


@dataclass
class DocumentPayload:
    """
    A source document, ready to hand to the extraction service.

    Exactly one of `text` / `data` is normally set: text for documents we can
    read ourselves, raw bytes (with their mime type) for PDFs and images that
    go to the model as inline attachments.
    """

    name: str
    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @property
    def is_binary(self) -> bool:
        return self.data is not None


def extract_text_from_docx(filepath: str) -> str:
    doc = docx.Document(filepath)
    text = []

    # Paragraphs
    for p in doc.paragraphs:
        if p.text.strip():
            text.append(p.text)

    # Tables
    for table in doc.tables:
        for row in table.rows:
            row_text = []
            for cell in row.cells:
                cell_text = cell.text.strip()
                if cell_text:
                    row_text.append(cell_text)
            if row_text:
                text.append(" | ".join(row_text))

    return "\n".join(text)


def extract_text_from_txt(filepath: str) -> str:
    """Extracts text from a TXT file."""
    with open(filepath, "r", encoding="utf-8", errors="replace") as file:
        return file.read()


def extract_text_from_pdf(filepath: str) -> str:
    """Text layer of every page, pages separated by blank lines. Scans yield ''."""
    pages = []
    with fitz.open(filepath) as pdf:
        for page in pdf:
            page_text = page.get_text("text").strip()
            if page_text:
                pages.append(page_text)
    return "\n\n".join(pages)


def pdf_page_count(data: bytes) -> int:
    with fitz.open(stream=data, filetype="pdf") as pdf:
        return pdf.page_count


def extract_text_from_sheet(filepath: str, *, max_rows_per_sheet: int = 1000, sheet_cap: int = 30) -> str:
    """Readable CSV-like text from every sheet of a workbook (or a CSV file)."""
    logger = get_logger()
    suffix = Path(filepath).suffix.lower()

    if suffix == ".csv":
        frames = {Path(filepath).stem: pd.read_csv(filepath, dtype=str, keep_default_na=False)}
    else:
        engine = "openpyxl" if suffix in (".xlsx", ".xlsm") else None
        xls = pd.ExcelFile(filepath, engine=engine)
        frames = {}
        for sheet in (xls.sheet_names or [])[:sheet_cap]:
            try:
                frames[sheet] = xls.parse(sheet_name=sheet, dtype=str, keep_default_na=False)
            except ValueError as e:
                logger.debug(f"parse(sheet={sheet}) failed: {e}")

    out_chunks = []
    for sheet, df in frames.items():
        df = df.astype(str).replace({"None": "", "nan": "", "NaN": ""})
        nonempty_rows = df.map(lambda s: s.strip() != "").any(axis=1)
        df = df.loc[nonempty_rows, :].iloc[:max_rows_per_sheet]
        if df.empty:
            continue
        buf = io.StringIO()
        df.to_csv(buf, index=False)
        text_block = buf.getvalue().strip()
        if text_block:
            out_chunks.append(f"<sheet name='{sheet}'>\n{text_block}\n</sheet>")

    return "\n\n".join(out_chunks)


def load_document(filepath: str, *, inline_pdf: bool = True) -> DocumentPayload:
    """
    Read a document from disk into a `DocumentPayload`.

    PDFs travel as inline bytes when `inline_pdf` is set (the model reads the
    drawings themselves); otherwise their text layer is used. Images always
    travel as bytes. Word files, spreadsheets and everything else are read
    as text.

    Raises:
        FileNotFoundError: if the path does not exist.
    """
    logger = get_logger()
    path = Path(filepath)
    if not path.is_file():
        raise FileNotFoundError(f"Document not found: {filepath}")

    name = path.name
    suffix = path.suffix.lower()

    if suffix == ".pdf":
        if inline_pdf:
            data = path.read_bytes()
            logger.debug(f"Loaded PDF {name} ({len(data)} bytes, {pdf_page_count(data)} pages)")
            return DocumentPayload(name=name, data=data, mime_type=PDF_MIME)
        return DocumentPayload(name=name, text=extract_text_from_pdf(str(path)))

    if suffix in IMAGE_MIMES:
        return DocumentPayload(name=name, data=path.read_bytes(), mime_type=IMAGE_MIMES[suffix])

    if suffix == ".docx":
        text = extract_text_from_docx(str(path))
    elif suffix in SPREADSHEET_EXTS:
        text = extract_text_from_sheet(str(path))
    else:
        text = extract_text_from_txt(str(path))

    logger.debug(f"Loaded {name} as text ({len(text)} chars, {os.path.getsize(path)} bytes on disk)")
    return DocumentPayload(name=name, text=text)
