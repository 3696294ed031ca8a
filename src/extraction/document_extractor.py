from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from extraction.preprocess import normalize_text, strip_repeated_lines
from syllabus_sync.errors import ErrorCategory, ExtractionError
from syllabus_sync.models import DocumentReference

logger = logging.getLogger(__name__)


class DocumentExtractor(ABC):
    @abstractmethod
    async def extract(self, document: DocumentReference) -> str:
        """
        Must return the document's plain text. Raise ExtractionError when the
        document cannot be read.
        """
        raise NotImplementedError


class PdfTextExtractor(DocumentExtractor):
    """Text layer extraction with pypdf.

    Running headers/footers and page numbers repeated across pages are dropped
    before the pages are joined.
    """

    def __init__(self, edge_lines: int = 2):
        self.edge_lines = edge_lines

    def _read_pages(self, path: Path) -> List[List[str]]:
        try:
            reader = PdfReader(str(path))
            pages = []
            for page in reader.pages:
                text = page.extract_text() or ""
                pages.append(text.splitlines())
            return pages
        except FileNotFoundError as e:
            raise ExtractionError(f"Document not found: {path}", ErrorCategory.VALIDATION) from e
        except PdfReadError as e:
            raise ExtractionError(f"Unreadable PDF: {e}", ErrorCategory.VALIDATION) from e
        except OSError as e:
            raise ExtractionError(f"Could not read {path}: {e}", ErrorCategory.UNKNOWN) from e

    async def extract(self, document: DocumentReference) -> str:
        pages = await asyncio.to_thread(self._read_pages, document.path)
        logger.info(f"Extracted {len(pages)} page(s) from {document.path.name}")
        cleaned = strip_repeated_lines(pages, edge_lines=self.edge_lines)
        blocks = ["\n".join(lines) for lines in cleaned if lines]
        return normalize_text("\n\n".join(blocks))


class PlainTextExtractor(DocumentExtractor):
    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def _read(self, path: Path) -> str:
        try:
            return path.read_text(encoding=self.encoding, errors="replace")
        except FileNotFoundError as e:
            raise ExtractionError(f"Document not found: {path}", ErrorCategory.VALIDATION) from e
        except OSError as e:
            raise ExtractionError(f"Could not read {path}: {e}", ErrorCategory.UNKNOWN) from e

    async def extract(self, document: DocumentReference) -> str:
        text = await asyncio.to_thread(self._read, document.path)
        return normalize_text(text)


class MultiFormatExtractor(DocumentExtractor):
    """Dispatches to an extractor by content type."""

    def __init__(self, extractors: Optional[Dict[str, DocumentExtractor]] = None):
        self.extractors = extractors or {
            "application/pdf": PdfTextExtractor(),
            "text/plain": PlainTextExtractor(),
        }

    async def extract(self, document: DocumentReference) -> str:
        extractor = self.extractors.get(document.content_type)
        if extractor is None:
            raise ExtractionError(
                f"Unsupported document type: {document.content_type}",
                ErrorCategory.VALIDATION,
            )
        return await extractor.extract(document)
