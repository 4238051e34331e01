"""Idempotent catalog upsert keyed by (manufacturer, product code)."""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from catalog_pipeline.config import settings
from catalog_pipeline.db.models import Manufacturer
from catalog_pipeline.db.store import PDF_MIME_TYPE, CatalogStore
from catalog_pipeline.ingest.base import BatchReport, StructuredProduct
from catalog_pipeline.metrics import products_upserted_total

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

# Checked in order; first match wins
FILE_CATEGORY_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("declaration_of_performance", ("declaration-of-performance", "declaration_of_performance", "dop")),
    ("safety_data_sheet", ("safety-data-sheet", "safety_data_sheet", "sds", "msds")),
    ("installation_guide", ("install", "fitting", "fixing")),
    ("test_report", ("test-report", "test_report", "testreport", "fire-test", "assessment")),
    ("certificate", ("certificate", "certification", "certifire", "bm-trada", "ukca", "cert")),
    ("datasheet", ("datasheet", "data-sheet", "data_sheet", "technical", "spec", "tds")),
    ("brochure", ("brochure", "catalogue", "catalog", "leaflet")),
]


def derive_product_code(product: StructuredProduct, max_length: Optional[int] = None) -> str:
    """
    Stable per-manufacturer dedup key for a candidate.

    The explicit code wins; otherwise the name is lower-cased, whitespace
    runs become "-", and the result is cut to ``max_length``.
    """
    max_length = max_length or settings.product_code_max_length
    if product.product_code and product.product_code.strip():
        return product.product_code.strip()
    slug = _WHITESPACE_RE.sub("-", product.product_name.strip().lower())
    return slug[:max_length]


def _tokens(text: str) -> List[str]:
    return [t for t in re.split(r"[^a-z0-9]+", text) if t]


def categorize_file(url: str) -> Tuple[str, str]:
    """
    Guess a linked file's category and a readable name from its URL.

    Returns:
        (file_type, file_name)
    """
    path = unquote(urlparse(url).path)
    filename = path.rstrip("/").rsplit("/", 1)[-1] or "document.pdf"
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    haystack = path.lower()
    tokens = set(_tokens(haystack))

    file_type = "other"
    for category, keywords in FILE_CATEGORY_KEYWORDS:
        # Short keywords must match a whole token, longer ones any substring
        if any((kw in tokens) if len(kw) <= 4 else (kw in haystack) for kw in keywords):
            file_type = category
            break

    name = re.sub(r"[-_]+", " ", stem).strip() or filename
    return file_type, name


@dataclass
class UpsertReport(BatchReport):
    """Per-candidate outcomes plus the number of file rows written."""

    files_created: int = 0

    @property
    def created(self) -> int:
        return self.count("created")

    @property
    def updated(self) -> int:
        return self.count("updated")


@dataclass
class UpsertContext:
    manufacturer_id: int
    organization_id: int
    default_pillar: str = field(default_factory=lambda: settings.default_pillar)
    # Merged into scraped_data, e.g. {"source": "csv_import", "filename": ...}
    source_info: Optional[dict] = None

    @classmethod
    def for_manufacturer(cls, manufacturer: Manufacturer) -> "UpsertContext":
        config = manufacturer.scraper_config or {}
        pillar = config.get("default_pillar") or manufacturer.default_pillar or settings.default_pillar
        return cls(
            manufacturer_id=manufacturer.id,
            organization_id=manufacturer.organization_id,
            default_pillar=pillar,
        )


class CatalogUpserter:
    """
    Create or update products from extracted candidates.

    Safe to re-run on the same candidates: the second pass finds every row
    by code and reports it as updated.
    """

    def __init__(self, store: CatalogStore):
        self.store = store

    async def upsert(
        self,
        candidates: Iterable[StructuredProduct],
        context: UpsertContext,
    ) -> UpsertReport:
        report = UpsertReport()
        for candidate in candidates:
            code = derive_product_code(candidate)
            if not code:
                report.add(candidate.source_url or "?", "failed", "Candidate has no name or code")
                products_upserted_total.labels(outcome="failed").inc()
                continue
            try:
                outcome, files = await self.upsert_one(candidate, code, context)
            except Exception as e:
                logger.error(f"Upsert failed for {code}: {e}")
                report.add(code, "failed", str(e))
                products_upserted_total.labels(outcome="failed").inc()
                continue
            report.add(code, outcome)
            report.files_created += files
            products_upserted_total.labels(outcome=outcome).inc()

        logger.info(
            f"Upserted manufacturer {context.manufacturer_id}: {report.created} created, "
            f"{report.updated} updated, {len(report.failures)} failed, "
            f"{report.files_created} files"
        )
        return report

    async def upsert_one(
        self,
        candidate: StructuredProduct,
        code: str,
        context: UpsertContext,
    ) -> Tuple[str, int]:
        """
        Upsert a single candidate.

        Returns:
            ("created" | "updated", number of file rows written)
        """
        existing = await self.store.find_product(context.manufacturer_id, code)
        scraped = {**candidate.to_dict(), **(context.source_info or {})}

        if existing:
            await self.store.update_product(
                existing.id,
                product_name=candidate.product_name,
                description=candidate.description,
                specifications=candidate.specifications or {},
                scraped_data=scraped,
                needs_review=True,
            )
            product_id = existing.id
            outcome = "updated"
        else:
            product = await self.store.insert_product(
                manufacturer_id=context.manufacturer_id,
                organization_id=context.organization_id,
                pillar=candidate.pillar or context.default_pillar,
                product_code=code,
                product_name=candidate.product_name,
                description=candidate.description,
                specifications=candidate.specifications or {},
                scraped_data=scraped,
                needs_review=True,
                status="draft",
            )
            product_id = product.id
            outcome = "created"

        files = 0
        pdf_urls = list(dict.fromkeys(u for u in candidate.pdf_urls if u))
        if pdf_urls:
            rows = []
            for url in pdf_urls:
                file_type, file_name = categorize_file(url)
                rows.append(
                    {
                        "file_url": url,
                        "file_name": file_name,
                        "file_type": file_type,
                        "mime_type": PDF_MIME_TYPE,
                    }
                )
            files = await self.store.replace_auto_files(product_id, rows)

        return outcome, files
