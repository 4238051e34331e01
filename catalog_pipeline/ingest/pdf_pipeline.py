"""PDF enrichment batch.

Linked PDFs that have not been parsed yet are downloaded, parsed, and their
text is attached to the file record and appended to the owning product's
description. Enriched products lose ``normalized_at`` so the normalization
batch picks them up again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from catalog_pipeline.config import settings
from catalog_pipeline.db.store import CatalogStore, Scope
from catalog_pipeline.errors import FetchError, PipelineError
from catalog_pipeline.ingest.base import BatchCursor, BatchReport
from catalog_pipeline.ingest.file_archive import FileArchive, LocalFileArchive
from catalog_pipeline.ingest.pdf_parser import ParsedPdf, parse_pdf
from catalog_pipeline.metrics import pdf_downloads_total
from catalog_pipeline.worker.steps import StepContext, run_step

logger = logging.getLogger(__name__)


def append_excerpt(description: Optional[str], file_name: str, excerpt: str) -> str:
    """Append a PDF excerpt to a product description under a source marker."""
    if not description:
        return excerpt
    return f"{description}\n\n--- Extracted from {file_name} ---\n{excerpt}"


def _snapshot(file) -> Dict[str, Any]:
    return {
        "id": file.id,
        "product_id": file.product_id,
        "file_url": file.file_url,
        "file_name": file.file_name,
    }


@dataclass
class PdfReport(BatchReport):
    """BatchReport that also tracks which products were enriched."""

    enriched_product_ids: list[int] = field(default_factory=list)

    @property
    def enriched(self) -> bool:
        return bool(self.enriched_product_ids)


class PdfEnricher:
    """Download, parse and attach linked PDFs in bounded batches."""

    def __init__(
        self,
        store: CatalogStore,
        archive: Optional[FileArchive] = None,
        client: Optional[httpx.AsyncClient] = None,
        batch_size: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        file_excerpt_chars: Optional[int] = None,
        description_excerpt_chars: Optional[int] = None,
    ):
        self.store = store
        self.archive = archive or LocalFileArchive()
        self._http_client = client
        self._owns_client = client is None
        self.batch_size = batch_size or settings.pdf_batch_size
        self.timeout_seconds = timeout_seconds or settings.pdf_download_timeout_seconds
        self.file_excerpt_chars = file_excerpt_chars or settings.pdf_file_excerpt_chars
        self.description_excerpt_chars = (
            description_excerpt_chars or settings.pdf_description_excerpt_chars
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": settings.http_user_agent},
            )
        return self._http_client

    async def close(self):
        """Close the HTTP client if this enricher created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def download(self, url: str) -> bytes:
        """
        Download a file.

        Raises:
            FetchError: Malformed URL, timeout, transport error or non-2xx response
        """
        client = await self._get_client()
        try:
            response = await client.get(url, timeout=self.timeout_seconds)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            pdf_downloads_total.labels(status="failed").inc()
            raise FetchError(url, str(e) or type(e).__name__) from e

        if not response.is_success:
            pdf_downloads_total.labels(status="failed").inc()
            raise FetchError(url, f"HTTP {response.status_code}")

        pdf_downloads_total.labels(status="ok").inc()
        return response.content

    async def _attach(self, file: Dict[str, Any], parsed: ParsedPdf) -> None:
        text = parsed.text
        product = await self.store.get_product(file["product_id"])
        if product is None:
            logger.warning(f"File {file['id']} points at missing product {file['product_id']}")
        else:
            await self.store.update_product(
                product.id,
                description=append_excerpt(
                    product.description, file["file_name"], text[: self.description_excerpt_chars]
                ),
                normalized_at=None,
                needs_review=True,
            )

        # Written last: a file with parsed_data is never picked up again
        await self.store.update_file(
            file["id"],
            parsed_data={
                "text": text[: self.file_excerpt_chars],
                "pages": parsed.page_count,
                "metadata": parsed.metadata,
                "parsed_at": datetime.utcnow().isoformat(),
            },
        )

    async def _archive(self, file: Dict[str, Any], data: bytes) -> None:
        """Keep a durable copy. The source URL stays authoritative, so failures only log."""
        try:
            path = await self.archive.store(file["product_id"], file["file_name"], data)
            await self.store.update_file(file["id"], file_path=path)
        except (OSError, PipelineError) as e:
            logger.warning(f"Archival failed for file {file['id']}: {e}")

    async def process_file(self, file: Dict[str, Any]) -> Dict[str, Any]:
        """
        Enrich from one file record.

        Returns:
            {"status": "processed" | "skipped" | "failed", "reason": str | None}
        """
        try:
            data = await self.download(file["file_url"])
            parsed = parse_pdf(data)
        except PipelineError as e:
            logger.warning(f"PDF {file['file_name']} ({file['id']}) failed: {e}")
            return {"status": "failed", "reason": str(e)}

        if parsed.is_empty:
            pdf_downloads_total.labels(status="empty").inc()
            await self.store.update_file(
                file["id"],
                parsed_data={"text": "", "pages": parsed.page_count, "empty": True},
            )
            return {"status": "skipped", "reason": "no extractable text"}

        await self._attach(file, parsed)
        await self._archive(file, data)
        return {"status": "processed", "reason": None}

    async def run_batch(
        self,
        scope: Scope,
        cursor: Optional[BatchCursor] = None,
        step: Optional[StepContext] = None,
    ) -> PdfReport:
        """
        Process one batch of unparsed PDF files.

        Args:
            scope: Manufacturer and/or organization filter
            cursor: Resume after this file id; None starts from the oldest file
            step: Optional StepContext; each file becomes a durable step

        Returns:
            PdfReport with a continuation when unparsed files remain past the batch
        """
        after_id = cursor.after_id if cursor else 0
        report = PdfReport()

        async def load():
            rows = await self.store.list_unparsed_pdf_files(scope, after_id, self.batch_size)
            return [_snapshot(row) for row in rows]

        files = await run_step(step, "get-unprocessed-files", load)
        if not files:
            logger.info(f"No unprocessed PDF files in scope {scope.to_dict()}")
            return report

        for file in files:

            async def process(file=file):
                try:
                    return await self.process_file(file)
                except Exception as e:
                    logger.error(f"Error processing {file['file_name']}: {e}")
                    return {"status": "failed", "reason": str(e)}

            result = await run_step(step, f"process-pdf-{file['id']}", process)
            report.add(file["id"], result["status"], result.get("reason"))
            if result["status"] == "processed" and file["product_id"] not in report.enriched_product_ids:
                report.enriched_product_ids.append(file["product_id"])

        last_id = files[-1]["id"]

        async def check_remaining():
            return await self.store.count_unparsed_pdf_files(scope, after_id=last_id)

        remaining = await run_step(step, "check-remaining", check_remaining)
        if remaining > 0:
            report.continuation = BatchCursor(after_id=last_id, remaining=remaining)

        logger.info(
            f"PDF batch: {report.count('processed')} processed, {report.count('skipped')} empty, "
            f"{report.count('failed')} failed, {remaining} remaining"
        )
        return report
