import asyncio
from pathlib import Path

import pytest

from extraction.document_extractor import (
    MultiFormatExtractor,
    PdfTextExtractor,
    PlainTextExtractor,
)
from syllabus_sync.errors import ErrorCategory, ExtractionError
from syllabus_sync.models import DocumentReference


def test_plain_text_extractor_normalizes(tmp_path):
    p = tmp_path / "syllabus.txt"
    p.write_text("CS 101   Intro\n\n\n\nMidterm  Oct 10\n", encoding="utf-8")
    text = asyncio.run(PlainTextExtractor().extract(DocumentReference.from_path(p)))
    assert text == "CS 101 Intro\n\nMidterm Oct 10"


def test_unsupported_type_is_a_validation_error(tmp_path):
    p = tmp_path / "scan.png"
    p.write_bytes(b"\x89PNG")
    doc = DocumentReference.from_path(p)
    with pytest.raises(ExtractionError) as exc:
        asyncio.run(MultiFormatExtractor().extract(doc))
    assert exc.value.category == ErrorCategory.VALIDATION


def test_missing_pdf_is_a_validation_error(tmp_path):
    doc = DocumentReference(path=tmp_path / "missing.pdf", content_type="application/pdf")
    with pytest.raises(ExtractionError) as exc:
        asyncio.run(PdfTextExtractor().extract(doc))
    assert exc.value.category == ErrorCategory.VALIDATION


def test_garbage_pdf_is_rejected(tmp_path):
    p = tmp_path / "broken.pdf"
    p.write_bytes(b"this is not a pdf at all")
    with pytest.raises(ExtractionError):
        asyncio.run(PdfTextExtractor().extract(DocumentReference.from_path(p)))


def test_pdf_pages_are_cleaned_and_joined(monkeypatch):
    pages = [
        ["ENGG*3990 Course Outline", "Lectures Tue/Thu 10:30", "Page 1 of 2"],
        ["ENGG*3990 Course Outline", "Final exam Dec 12", "Page 2 of 2"],
    ]
    extractor = PdfTextExtractor()
    monkeypatch.setattr(extractor, "_read_pages", lambda path: pages)

    doc = DocumentReference(path=Path("outline.pdf"), content_type="application/pdf")
    text = asyncio.run(extractor.extract(doc))
    assert "Course Outline" not in text
    assert text.splitlines()[0] == "Lectures Tue/Thu 10:30"
    assert "Final exam Dec 12" in text


def test_multi_format_dispatches_by_content_type(tmp_path):
    p = tmp_path / "notes.txt"
    p.write_text("Quiz 1 Sept 20", encoding="utf-8")
    assert asyncio.run(MultiFormatExtractor().extract(DocumentReference.from_path(p))) == "Quiz 1 Sept 20"
