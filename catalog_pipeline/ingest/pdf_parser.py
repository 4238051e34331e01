"""PDF text extraction with pypdf."""

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from catalog_pipeline.errors import ExtractionError

logger = logging.getLogger(__name__)


@dataclass
class ParsedPdf:
    """Text content of a PDF, page by page."""

    pages: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def text(self) -> str:
        return "\n".join(page for page in self.pages if page)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


def _metadata(reader: PdfReader) -> Dict[str, Any]:
    info = reader.metadata
    if info is None:
        return {}
    values = {"title": info.title, "author": info.author, "creator": info.creator}
    return {key: str(value) for key, value in values.items() if value}


def parse_pdf(data: bytes) -> ParsedPdf:
    """
    Extract per-page text and document metadata.

    Args:
        data: Raw PDF bytes

    Returns:
        ParsedPdf; pages with no extractable text are kept as empty strings
        so page numbers stay aligned

    Raises:
        ExtractionError: The bytes are not a readable PDF
    """
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
        metadata = _metadata(reader)
    except (PdfReadError, ValueError, KeyError) as e:
        raise ExtractionError(f"Unreadable PDF: {e}") from e

    logger.debug(f"Parsed PDF: {len(pages)} pages")
    return ParsedPdf(pages=pages, metadata=metadata)
