"""Structure-aware chunker for knowledge-base documents.

Pages are split on section headers and table boundaries. Blocks describing
a fire test configuration are kept whole regardless of size so a test
record is never cut in half for retrieval.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern

from catalog_pipeline.config import settings

SECTION_HEADER_PATTERNS = [
    re.compile(r"^\d+(\.\d+)*\s+[A-Z]"),  # "1.2 Fire Test Results"
    re.compile(r"^(Section|Part|Chapter|Appendix)\s+", re.IGNORECASE),
    re.compile(r"^[A-Z][A-Z\s]{4,}$"),  # ALL CAPS LINE
    re.compile(r"^(Table|Figure)\s+\d+", re.IGNORECASE),
]

FIRE_TEST_PATTERNS = [
    re.compile(r"fire\s+test", re.IGNORECASE),
    re.compile(r"test\s+report", re.IGNORECASE),
    re.compile(r"fire\s+resistance", re.IGNORECASE),
    re.compile(r"integrity.*insulation", re.IGNORECASE),
    re.compile(r"BS\s*476", re.IGNORECASE),
    re.compile(r"EN\s*1366", re.IGNORECASE),
    re.compile(r"EN\s*1634", re.IGNORECASE),
]

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")
_LINE_BOUNDARY = re.compile(r"\n")


def estimate_tokens(text: str) -> int:
    """Rough token estimate: about four characters per token."""
    return math.ceil(len(text) / 4)


def is_table_line(line: str) -> bool:
    return line.count("|") >= 3 or line.count("\t") >= 2


def is_section_header(line: str) -> bool:
    trimmed = line.strip()
    if len(trimmed) < 3:
        return False
    return any(pattern.search(trimmed) for pattern in SECTION_HEADER_PATTERNS)


def is_fire_test_line(line: str) -> bool:
    return any(pattern.search(line) for pattern in FIRE_TEST_PATTERNS)


def split_at(text: str, boundary: Pattern[str], max_tokens: int) -> List[str]:
    """
    Split ``text`` at ``boundary`` matches into pieces of at most ``max_tokens``.

    A piece grows one segment at a time; the segment that would overflow it
    starts the next piece. A single segment larger than the limit is kept
    whole. Pieces are slices of the input, so only whitespace at the cut
    points is lost.
    """
    segments = []
    position = 0
    for match in boundary.finditer(text):
        segments.append((position, match.start()))
        position = match.end()
    segments.append((position, len(text)))

    pieces = []
    start, end = segments[0]
    for segment_start, segment_end in segments[1:]:
        if estimate_tokens(text[start:segment_end]) > max_tokens:
            pieces.append(text[start:end])
            start = segment_start
        end = segment_end
    pieces.append(text[start:end])
    return [piece.strip() for piece in pieces if piece.strip()]


@dataclass
class PageText:
    page_number: int
    text: str


@dataclass
class Chunk:
    """One retrieval chunk."""

    text: str
    chunk_type: str  # text, table
    page_number: int
    chunk_index: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_fire_test_block(self) -> bool:
        return bool(self.metadata.get("fire_test_block"))

    def to_record(self) -> Dict[str, Any]:
        return {
            "chunk_index": self.chunk_index,
            "chunk_type": self.chunk_type,
            "page_number": self.page_number,
            "text": self.text,
            "metadata_json": dict(self.metadata),
        }


class DocumentChunker:
    """
    Line-oriented block chunker.

    Per page, lines accumulate into a block of type ``text`` or ``table``.
    Table lines, section headers and the size ceiling close the current
    block. A text block below the minimum size is not emitted on its own:
    its lines are carried into the next text block of the page (along with a
    fire-test flag) or emitted as-is ahead of a table, and the last block of
    a page is always emitted, so no line is ever dropped. Table blocks are
    emitted at any size so table rows never end up inside a text chunk.
    """

    def __init__(self, max_tokens: Optional[int] = None, min_tokens: Optional[int] = None):
        self.max_tokens = max_tokens or settings.chunk_max_tokens
        self.min_tokens = min_tokens or settings.chunk_min_tokens

    def chunk_pages(self, pages: Iterable[PageText]) -> List[Chunk]:
        chunks: List[Chunk] = []
        for page in pages:
            chunks.extend(self._chunk_page(page, start_index=len(chunks)))
        return chunks

    def _emit(
        self, text: str, chunk_type: str, fire_test: bool, page_number: int, start_index: int
    ) -> List[Chunk]:
        if fire_test:
            pieces = [text]
        elif estimate_tokens(text) > self.max_tokens:
            boundary = _LINE_BOUNDARY if chunk_type == "table" else _SENTENCE_BOUNDARY
            pieces = split_at(text, boundary, self.max_tokens)
        else:
            pieces = [text]

        metadata = {"fire_test_block": True} if fire_test else {}
        return [
            Chunk(
                text=piece,
                chunk_type=chunk_type,
                page_number=page_number,
                chunk_index=start_index + offset,
                metadata=dict(metadata),
            )
            for offset, piece in enumerate(pieces)
        ]

    def _chunk_page(self, page: PageText, start_index: int) -> List[Chunk]:
        chunks: List[Chunk] = []
        block: List[str] = []
        block_type = "text"
        in_fire_test = False
        carried: List[str] = []
        carried_fire_test = False

        def emit_carried() -> None:
            nonlocal carried, carried_fire_test
            text = "\n".join(carried).strip()
            if text:
                chunks.extend(
                    self._emit(text, "text", carried_fire_test, page.page_number, start_index + len(chunks))
                )
            carried, carried_fire_test = [], False

        def flush(final: bool = False) -> None:
            nonlocal block, block_type, in_fire_test, carried, carried_fire_test
            lines, chunk_type, fire_test = block, block_type, in_fire_test
            block, block_type, in_fire_test = [], "text", False

            if chunk_type == "table":
                # Carried text goes out on its own, ahead of the table
                emit_carried()
            else:
                lines = carried + lines
                fire_test = fire_test or carried_fire_test
                carried, carried_fire_test = [], False

            text = "\n".join(lines).strip()
            if not text:
                return
            if chunk_type == "text" and not final and estimate_tokens(text) < self.min_tokens:
                carried, carried_fire_test = lines, fire_test
                return
            chunks.extend(
                self._emit(text, chunk_type, fire_test, page.page_number, start_index + len(chunks))
            )

        for line in page.text.split("\n"):
            if is_table_line(line):
                if block_type != "table" and block:
                    flush()
                block_type = "table"
                block.append(line)
                continue

            if block_type == "table" and block:
                flush()
            elif is_section_header(line) and block:
                flush()

            if is_fire_test_line(line):
                in_fire_test = True

            block.append(line)

            if not in_fire_test and estimate_tokens("\n".join(block)) > self.max_tokens:
                flush()

        flush(final=True)
        return chunks


def chunk_pages(pages: Iterable[PageText]) -> List[Chunk]:
    """Chunk pages with the configured size limits."""
    return DocumentChunker().chunk_pages(pages)
