"""Fetch-and-extract driver.

Pages are fetched in fixed-size batches through the headless fetcher, then
every page that came back is sent to the extraction service one at a time
with a fixed pause between calls. Each batch is one durable step when a
StepContext is supplied, so a redelivered scrape resumes at the first batch
that had not finished.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from catalog_pipeline.ai.extraction_service import ExtractionService, extraction_service
from catalog_pipeline.config import settings
from catalog_pipeline.errors import ExtractionError
from catalog_pipeline.ingest.base import FetchResult, PageFetcher, StructuredProduct
from catalog_pipeline.worker.steps import StepContext, run_step

logger = logging.getLogger(__name__)

# (stage, current, total, found)
ProgressCallback = Callable[[str, int, int, int], Awaitable[None]]


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


@dataclass
class ExtractionRun:
    """Products plus aggregate stats for one fetch-and-extract pass."""

    products: List[StructuredProduct] = field(default_factory=list)
    urls_discovered: int = 0
    pages_fetched: int = 0
    pages_failed: int = 0
    extraction_failed: List[str] = field(default_factory=list)
    not_products: List[str] = field(default_factory=list)

    @property
    def products_extracted(self) -> int:
        return len(self.products)

    def stats(self) -> Dict[str, int]:
        return {
            "urlsDiscovered": self.urls_discovered,
            "pagesFetched": self.pages_fetched,
            "pagesFailed": self.pages_failed,
            "productsExtracted": self.products_extracted,
            "extractionFailed": len(self.extraction_failed),
        }


class FetchAndExtract:
    """Drive the fetcher and the extraction service over a URL list."""

    def __init__(
        self,
        fetcher: PageFetcher,
        extraction: Optional[ExtractionService] = None,
        fetch_batch_size: Optional[int] = None,
        extract_batch_size: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        concurrency: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.extraction = extraction or extraction_service
        self.fetch_batch_size = fetch_batch_size or settings.fetch_batch_size
        self.extract_batch_size = extract_batch_size or settings.extract_batch_size
        self.delay_seconds = (
            delay_seconds if delay_seconds is not None else settings.extraction_delay_seconds
        )
        self.concurrency = concurrency or settings.fetch_concurrency
        self.timeout_ms = timeout_ms or settings.fetch_timeout_ms
        self._sleep = sleep

    async def fetch_page(self, url: str) -> Optional[str]:
        """Fetch a single page; used as the discovery page callback."""
        results = await self.fetcher.fetch([url], concurrency=1, timeout_ms=self.timeout_ms)
        return results[0].html if results else None

    async def fetch_batch(self, urls: List[str]) -> List[FetchResult]:
        results = await self.fetcher.fetch(urls, concurrency=self.concurrency, timeout_ms=self.timeout_ms)
        by_url = {result.url: result for result in results}
        # One result per input URL, even if the fetcher dropped one
        return [by_url.get(url) or FetchResult(url=url, html=None, error="missing") for url in urls]

    async def extract_batch(
        self,
        pages: List[FetchResult],
        manufacturer_name: str,
        on_page: Optional[Callable[[int], Awaitable[None]]] = None,
        follows_previous: bool = False,
    ) -> Dict[str, List[Any]]:
        """
        Extract products from fetched pages, sequentially with a fixed delay.

        The delay goes between calls; pass follows_previous when an earlier
        batch already made a call, so the first page here waits too.

        Returns:
            {"products": [dict], "not_products": [url], "failed": [url]}
        """
        products: List[Dict[str, Any]] = []
        not_products: List[str] = []
        failed: List[str] = []

        for index, page in enumerate(pages):
            if (index > 0 or follows_previous) and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)
            if on_page:
                await on_page(index)
            try:
                product = await self.extraction.extract_product(page.html, page.url, manufacturer_name)
            except ExtractionError as e:
                logger.warning(f"Extraction failed for {page.url}: {e}")
                failed.append(page.url)
            else:
                if product is None:
                    not_products.append(page.url)
                else:
                    products.append(product.to_dict())

        return {"products": products, "not_products": not_products, "failed": failed}

    async def run(
        self,
        urls: List[str],
        manufacturer_name: str,
        step: Optional[StepContext] = None,
        on_progress: Optional[ProgressCallback] = None,
        stage_prefix: str = "",
    ) -> ExtractionRun:
        """
        Fetch and extract every URL.

        Args:
            urls: Ordered candidate product URLs
            manufacturer_name: Context for the extraction prompt
            step: Optional StepContext; each batch becomes a durable step
            on_progress: Receives (stage, current, total, found)
            stage_prefix: Prepended to progress stage labels

        Returns:
            ExtractionRun with the extracted candidates and counts
        """
        run = ExtractionRun(urls_discovered=len(urls))

        async def progress(stage: str, current: int, total: int, found: int) -> None:
            if on_progress:
                await on_progress(f"{stage_prefix}{stage}", current, total, found)

        fetched: List[FetchResult] = []
        fetch_batches = chunked(urls, self.fetch_batch_size)
        for batch_index, batch_urls in enumerate(fetch_batches):

            async def fetch_step(batch_index=batch_index, batch_urls=batch_urls):
                await progress(
                    f"Fetching pages (batch {batch_index + 1}/{len(fetch_batches)})",
                    batch_index * self.fetch_batch_size,
                    len(urls),
                    0,
                )
                results = await self.fetch_batch(batch_urls)
                return [{"url": r.url, "html": r.html, "error": r.error} for r in results]

            for item in await run_step(step, f"fetch-batch-{batch_index}", fetch_step):
                fetched.append(FetchResult(**item))

        pages = [result for result in fetched if result.ok]
        run.pages_fetched = len(pages)
        run.pages_failed = len(fetched) - len(pages)

        for batch_index, batch in enumerate(chunked(pages, self.extract_batch_size)):
            offset = batch_index * self.extract_batch_size

            async def extract_step(batch=batch, offset=offset, batch_index=batch_index):
                async def on_page(index: int) -> None:
                    await progress(
                        f"Extracting products ({offset + index + 1}/{len(pages)})",
                        offset + index,
                        len(pages),
                        len(run.products),
                    )

                return await self.extract_batch(
                    batch, manufacturer_name, on_page=on_page, follows_previous=batch_index > 0
                )

            outcome = await run_step(step, f"extract-batch-{batch_index}", extract_step)
            run.products.extend(StructuredProduct.from_dict(p) for p in outcome["products"])
            run.not_products.extend(outcome["not_products"])
            run.extraction_failed.extend(outcome["failed"])

        logger.info(
            f"Fetch-and-extract for {manufacturer_name}: {run.pages_fetched} fetched, "
            f"{run.pages_failed} failed, {run.products_extracted} products"
        )
        return run
