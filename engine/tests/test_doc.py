"""
Unit tests for document loading.
"""

import docx
import fitz
import pytest

from utils.document.doc import PDF_MIME, load_document


def _pdf(path, text=None):
    with fitz.open() as pdf:
        page = pdf.new_page()
        if text:
            page.insert_text((72, 72), text)
        pdf.save(str(path))


class TestLoadDocument:
    """Tests for load_document()."""

    def test_txt(self, tmp_path):
        path = tmp_path / "boq.txt"
        path.write_text("1.1 Ball valve 3\" 4 NOS", encoding="utf-8")
        doc = load_document(str(path))
        assert doc.name == "boq.txt"
        assert doc.text.startswith("1.1 Ball valve")
        assert not doc.is_binary

    def test_pdf_inline(self, tmp_path):
        path = tmp_path / "plan.pdf"
        _pdf(path, "Booth A")
        doc = load_document(str(path))
        assert doc.is_binary
        assert doc.mime_type == PDF_MIME
        assert doc.data.startswith(b"%PDF")

    def test_pdf_text_layer(self, tmp_path):
        path = tmp_path / "boq.pdf"
        _pdf(path, "Day tank 1000L")
        doc = load_document(str(path), inline_pdf=False)
        assert "Day tank 1000L" in doc.text

    def test_scanned_pdf_has_no_text(self, tmp_path):
        path = tmp_path / "scan.pdf"
        _pdf(path)
        assert load_document(str(path), inline_pdf=False).text == ""

    def test_image(self, tmp_path):
        path = tmp_path / "boq.JPG"
        path.write_bytes(b"\xff\xd8\xff")
        doc = load_document(str(path))
        assert doc.mime_type == "image/jpeg"
        assert doc.data == b"\xff\xd8\xff"

    def test_docx_paragraphs_and_tables(self, tmp_path):
        path = tmp_path / "schedule.docx"
        document = docx.Document()
        document.add_paragraph("Fuel system schedule")
        table = document.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = "Pump"
        table.rows[0].cells[1].text = "2 NOS"
        document.save(str(path))

        text = load_document(str(path)).text
        assert "Fuel system schedule" in text
        assert "Pump | 2 NOS" in text

    def test_csv_as_sheet_text(self, tmp_path):
        path = tmp_path / "boq.csv"
        path.write_text("Item,Qty\nPump,2\n,\n", encoding="utf-8")
        text = load_document(str(path)).text
        assert text == "<sheet name='boq'>\nItem,Qty\nPump,2\n</sheet>"

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_document(str(tmp_path / "missing.pdf"))
