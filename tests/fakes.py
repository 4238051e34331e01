"""Test doubles for the fetcher, sitemap, extraction and embedding services."""

from typing import Any, Callable, Dict, List, Optional

import httpx

from catalog_pipeline.ai.prompts import FieldExtraction, PageAnalysis
from catalog_pipeline.errors import ExtractionError
from catalog_pipeline.ingest.base import FetchResult, PageFetcher, StructuredProduct
from catalog_pipeline.ingest.sitemap_scanner import SitemapScanner


async def no_sleep(seconds: float) -> None:
    return None


class FakeFetcher(PageFetcher):
    """Serves canned markup; unknown URLs fail like an unreachable page."""

    def __init__(self, pages: Optional[Dict[str, str]] = None):
        self.pages = dict(pages or {})
        self.requested: List[str] = []
        self.closed = False

    async def fetch(self, urls: List[str], concurrency: int, timeout_ms: int) -> List[FetchResult]:
        self.requested.extend(urls)
        results = []
        for url in urls:
            html = self.pages.get(url)
            results.append(FetchResult(url=url, html=html, error=None if html else "not found"))
        return results

    async def close(self) -> None:
        self.closed = True


class ScriptedExtraction:
    """
    Stand-in for ExtractionService.

    ``products`` maps page URL to the candidate returned for it (None means
    "not a product page"; an exception instance is raised). ``analyses``
    maps page URL to a PageAnalysis. ``fields`` computes a FieldExtraction
    from the raw text.
    """

    def __init__(
        self,
        products: Optional[Dict[str, Any]] = None,
        analyses: Optional[Dict[str, PageAnalysis]] = None,
        fields: Optional[Callable[[str], FieldExtraction]] = None,
    ):
        self.products = dict(products or {})
        self.analyses = dict(analyses or {})
        self.fields = fields or (lambda raw_text: FieldExtraction(confidence=80.0))
        self.product_calls: List[str] = []
        self.analysis_calls: List[str] = []
        self.field_calls: List[str] = []

    async def extract_product(
        self, html: str, url: str, manufacturer_name: str
    ) -> Optional[StructuredProduct]:
        self.product_calls.append(url)
        result = self.products.get(url)
        if isinstance(result, Exception):
            raise result
        return result

    async def analyze_page(self, html: str, url: str, manufacturer_name: str, goal: str) -> PageAnalysis:
        self.analysis_calls.append(url)
        return self.analyses.get(url, PageAnalysis())

    async def extract_fields(
        self,
        raw_text: str,
        display_name: str,
        field_definitions: Dict[str, Dict[str, Any]],
        required_fields: List[str],
    ) -> FieldExtraction:
        self.field_calls.append(raw_text)
        return self.fields(raw_text)


class FakeEmbedding:
    """Deterministic vectors; any text containing ``fail_marker`` raises."""

    def __init__(self, fail_marker: Optional[str] = None):
        self.fail_marker = fail_marker
        self.texts: List[str] = []

    def _vector(self, text: str) -> List[float]:
        if self.fail_marker and self.fail_marker in text:
            raise ExtractionError(f"Embedding call failed for {text[:20]!r}")
        return [float(len(text)), 1.0, 0.0]

    async def embed(self, text: str) -> List[float]:
        self.texts.append(text)
        return self._vector(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.texts.extend(texts)
        return [self._vector(text) for text in texts]


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def make_pdf(pages: List[str]) -> bytes:
    """
    Build a minimal PDF with one Helvetica text line per input line.

    An empty string produces a page with no text.
    """
    page_ids = [4 + 2 * index for index in range(len(pages))]
    kids = " ".join(f"{page_id} 0 R" for page_id in page_ids)
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {len(pages)} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for page_id, text in zip(page_ids, pages):
        lines = text.split("\n") if text else []
        stream = b""
        if lines:
            ops = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
            ops.extend(f"({_escape(line)}) Tj T*" for line in lines)
            ops.append("ET")
            stream = "\n".join(ops).encode("latin-1")
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_id + 1} 0 R >>"
            ).encode()
        )
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref}\n%%EOF\n".encode()
    return bytes(out)


def urlset(site: str, *paths: str) -> str:
    """Sitemap XML listing ``site + path`` for each path."""
    entries = "".join(f"<url><loc>{site}{path}</loc></url>" for path in paths)
    return f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'


def mock_sitemap_scanner(routes: Dict[str, str]) -> SitemapScanner:
    """SitemapScanner whose HTTP client serves ``routes`` by path and 404s everything else."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, text=body)

    return SitemapScanner(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
