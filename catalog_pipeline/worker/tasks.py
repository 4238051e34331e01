"""Event handlers for the catalog ingestion pipeline.

Every handler takes ``(event, step, deps)``: the delivered event, the
durable step runner for this delivery, and the pipeline components. Side
effects that must not repeat on redelivery (job transitions, emitted events)
go through ``step``.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from catalog_pipeline.ai.embedding_service import EmbeddingService, embedding_service
from catalog_pipeline.ai.extraction_service import ExtractionService, extraction_service
from catalog_pipeline.ai.product_embeddings import ProductEmbedder
from catalog_pipeline.config import settings
from catalog_pipeline.db.store import CatalogStore, Scope
from catalog_pipeline.errors import ConfigurationError
from catalog_pipeline.ingest.base import BatchCursor, BatchReport, PageFetcher
from catalog_pipeline.ingest.catalog_upsert import CatalogUpserter, UpsertContext
from catalog_pipeline.ingest.discovery import ProductDiscovery
from catalog_pipeline.ingest.fetch_pipeline import ExtractionRun, FetchAndExtract
from catalog_pipeline.ingest.file_archive import FileArchive
from catalog_pipeline.ingest.pdf_pipeline import PdfEnricher
from catalog_pipeline.ingest.structured_scraper import ScraperConfig, StructuredScraper
from catalog_pipeline.knowledge.ingestor import KnowledgeIngestor, load_source
from catalog_pipeline.logging_config import get_logger
from catalog_pipeline.metrics import scrape_jobs_total
from catalog_pipeline.normalize.processor import ProductNormalizer
from catalog_pipeline.worker.bus import InProcessEventBus
from catalog_pipeline.worker.events import (
    EMBEDDINGS_REQUESTED,
    KNOWLEDGE_INGEST_REQUESTED,
    NORMALIZE_REQUESTED,
    PDF_PARSE_REQUESTED,
    SCRAPE_AI_REQUESTED,
    SCRAPE_REQUESTED,
    Event,
    KnowledgeIngestPayload,
    ScopePayload,
    ScrapePayload,
    scope_event,
)
from catalog_pipeline.worker.steps import StepContext, StepStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineDeps:
    """Components shared by every handler."""

    store: CatalogStore
    pipeline: FetchAndExtract
    discovery: ProductDiscovery
    upserter: CatalogUpserter
    normalizer: ProductNormalizer
    pdf_enricher: PdfEnricher
    embedder: ProductEmbedder
    knowledge: KnowledgeIngestor

    @classmethod
    def create(
        cls,
        store: CatalogStore,
        fetcher: Optional[PageFetcher] = None,
        extraction: Optional[ExtractionService] = None,
        embedding: Optional[EmbeddingService] = None,
        archive: Optional[FileArchive] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "PipelineDeps":
        """Wire the default components around a store."""
        if fetcher is None:
            from catalog_pipeline.ingest.fetchers.headless import HeadlessPageFetcher

            fetcher = HeadlessPageFetcher()
        extraction = extraction or extraction_service
        embedding = embedding or embedding_service

        return cls(
            store=store,
            pipeline=FetchAndExtract(fetcher, extraction=extraction, sleep=sleep),
            discovery=ProductDiscovery(extraction=extraction),
            upserter=CatalogUpserter(store),
            normalizer=ProductNormalizer(store, extraction=extraction, sleep=sleep),
            pdf_enricher=PdfEnricher(store, archive=archive),
            embedder=ProductEmbedder(store, embedding=embedding),
            knowledge=KnowledgeIngestor(store, embedding=embedding),
        )

    async def close(self):
        """Release browser, HTTP and AI client resources."""
        from catalog_pipeline.ai.llm_service import llm_service

        await self.pipeline.fetcher.close()
        await self.discovery.sitemap_scanner.close()
        await self.pdf_enricher.close()
        await llm_service.close()
        await embedding_service.close()


# ---------------------------------------------------------------------------
# Scrape jobs
# ---------------------------------------------------------------------------


class JobTracker:
    """Writes scrape job state and progress."""

    def __init__(self, store: CatalogStore, job_id: int):
        self.store = store
        self.job_id = job_id
        self.log = get_logger(__name__, job_id=job_id)

    async def progress(
        self,
        stage: str,
        current: int = 0,
        total: int = 0,
        found: int = 0,
        **extra: Any,
    ) -> None:
        await self.store.update_job(
            self.job_id,
            progress={"stage": stage, "current": current, "total": total, "found": found, **extra},
        )

    async def start(self, stage: str) -> None:
        self.log.info(f"Scrape job {self.job_id} running: {stage}")
        await self.store.update_job(
            self.job_id,
            status="running",
            started_at=datetime.utcnow(),
            progress={"stage": stage, "current": 0, "total": 0, "found": 0},
        )

    async def fail(self, message: str) -> None:
        self.log.warning(f"Scrape job {self.job_id} failed: {message}")
        await self.store.update_job(
            self.job_id,
            status="failed",
            error_log=message,
            completed_at=datetime.utcnow(),
        )

    async def complete(
        self,
        created: int,
        updated: int,
        progress: Dict[str, Any],
        errors: Optional[List[str]] = None,
    ) -> None:
        fields: Dict[str, Any] = {
            "status": "completed",
            "products_created": created,
            "products_updated": updated,
            "completed_at": datetime.utcnow(),
            "progress": progress,
        }
        if errors:
            fields["error_log"] = "\n".join(errors)
        self.log.info(
            f"Scrape job {self.job_id} completed: {created} created, {updated} updated, "
            f"{len(errors or [])} errors"
        )
        await self.store.update_job(self.job_id, **fields)


def require_website(manufacturer: Dict[str, Any]) -> str:
    """
    Raises:
        ConfigurationError: The manufacturer has no website URL
    """
    if not manufacturer.get("website_url"):
        raise ConfigurationError("No website URL configured")
    return manufacturer["website_url"]


async def _load_scrape_target(
    payload: ScrapePayload,
    step: StepContext,
    deps: PipelineDeps,
) -> Optional[Dict[str, Any]]:
    async def load():
        job = await deps.store.get_job(payload.job_id)
        manufacturer = await deps.store.get_manufacturer(payload.manufacturer_id)
        snapshot = None
        if manufacturer is not None:
            snapshot = {
                "id": manufacturer.id,
                "organization_id": manufacturer.organization_id,
                "name": manufacturer.name,
                "website_url": manufacturer.website_url,
                "scraper_config": manufacturer.scraper_config,
                "default_pillar": UpsertContext.for_manufacturer(manufacturer).default_pillar,
            }
        return {"job_status": job.status if job else None, "manufacturer": snapshot}

    return await step.run("get-manufacturer", load)


async def _finish_scrape(
    step: StepContext,
    deps: PipelineDeps,
    job: JobTracker,
    manufacturer: Dict[str, Any],
    run: ExtractionRun,
    method: str,
) -> Dict[str, Any]:
    context = UpsertContext(
        manufacturer_id=manufacturer["id"],
        organization_id=manufacturer["organization_id"],
        default_pillar=manufacturer["default_pillar"],
    )

    async def upsert():
        report = await deps.upserter.upsert(run.products, context)
        return {
            "created": report.created,
            "updated": report.updated,
            "files_created": report.files_created,
            "errors": report.error_lines(),
        }

    upserted = await step.run("upsert-products", upsert)

    async def mark_complete():
        extracted = run.products_extracted
        stats = {**run.stats(), "method": method, "filesCreated": upserted["files_created"]}
        await job.complete(
            upserted["created"],
            upserted["updated"],
            {
                "stage": "Complete",
                "current": extracted,
                "total": extracted,
                "found": extracted,
                "stats": stats,
            },
            errors=upserted["errors"],
        )
        await deps.store.mark_manufacturer_scraped(manufacturer["id"])
        return stats

    stats = await step.run("mark-complete", mark_complete)
    scrape_jobs_total.labels(method=method, status="completed").inc()

    scope = {"manufacturer_id": manufacturer["id"], "organization_id": manufacturer["organization_id"]}
    await step.send_event("trigger-embeddings", scope_event(EMBEDDINGS_REQUESTED, **scope))
    await step.send_event("trigger-normalize", scope_event(NORMALIZE_REQUESTED, **scope))
    await step.send_event("trigger-pdf-parse", scope_event(PDF_PARSE_REQUESTED, **scope))

    return {"created": upserted["created"], "updated": upserted["updated"], **stats}


async def _run_scrape(
    event: Event,
    step: StepContext,
    deps: PipelineDeps,
    method_label: str,
    body: Callable[[JobTracker, Dict[str, Any]], Awaitable[Dict[str, Any]]],
) -> Dict[str, Any]:
    payload = ScrapePayload(**event.data)
    job = JobTracker(deps.store, payload.job_id)

    target = await _load_scrape_target(payload, step, deps)
    if target["job_status"] is None:
        logger.warning(f"Scrape job {payload.job_id} not found; ignoring {event.name}")
        return {"error": "Job not found"}
    if target["job_status"] in ("completed", "failed"):
        logger.info(f"Scrape job {payload.job_id} already {target['job_status']}; skipping")
        return {"skipped": True}

    manufacturer = target["manufacturer"]
    try:
        if manufacturer is None:
            raise ConfigurationError(f"Manufacturer {payload.manufacturer_id} not found")
        return await body(job, manufacturer)
    except ConfigurationError as e:
        logger.warning(f"Scrape job {payload.job_id} failed: {e}")
        await step.run("mark-failed", lambda: job.fail(str(e)))
        scrape_jobs_total.labels(method=method_label, status="failed").inc()
        return {"error": str(e)}
    except Exception as e:
        if event.attempt >= settings.event_max_deliveries:
            await job.fail(f"{type(e).__name__}: {e}")
            scrape_jobs_total.labels(method=method_label, status="failed").inc()
        raise


async def handle_scrape_ai(event: Event, step: StepContext, deps: PipelineDeps) -> Dict[str, Any]:
    """Discover product URLs with sitemaps and AI navigation, then fetch, extract and upsert."""

    async def body(job: JobTracker, manufacturer: Dict[str, Any]) -> Dict[str, Any]:
        website_url = require_website(manufacturer)
        await step.run("mark-running", lambda: job.start("AI: Discovering product URLs"))

        async def discover():
            async def on_progress(stage: str, detail: str) -> None:
                await job.progress(f"AI: {stage}", detail=detail)

            result = await deps.discovery.discover(
                website_url, manufacturer["name"], deps.pipeline.fetch_page, on_progress
            )
            return result.to_dict()

        discovery = await step.run("discover-urls", discover)
        urls, method = discovery["product_urls"], discovery["method"]

        if not urls:

            async def mark_no_products():
                await job.complete(
                    0,
                    0,
                    {
                        "stage": "AI: No product URLs discovered",
                        "current": 0,
                        "total": 0,
                        "found": 0,
                        "stats": {"method": method, "urlsFound": 0},
                    },
                )

            await step.run("mark-no-products", mark_no_products)
            scrape_jobs_total.labels(method=method, status="completed").inc()
            return {"created": 0, "updated": 0, "total": 0, "method": method}

        await step.run(
            "update-progress-discovery",
            lambda: job.progress(f"AI: Found {len(urls)} product URLs ({method})", total=len(urls)),
        )

        async def on_progress(stage: str, current: int, total: int, found: int) -> None:
            await job.progress(stage, current, total, found)

        run = await deps.pipeline.run(
            urls, manufacturer["name"], step=step, on_progress=on_progress, stage_prefix="AI: "
        )
        return await _finish_scrape(step, deps, job, manufacturer, run, method)

    return await _run_scrape(event, step, deps, "ai", body)


async def handle_scrape_structured(event: Event, step: StepContext, deps: PipelineDeps) -> Dict[str, Any]:
    """Walk a configured product list with CSS selectors, then upsert."""

    async def body(job: JobTracker, manufacturer: Dict[str, Any]) -> Dict[str, Any]:
        config = ScraperConfig.from_dict(manufacturer["scraper_config"])
        await step.run("mark-running", lambda: job.start("Collecting product links"))

        async def on_progress(stage: str, current: int, total: int, found: int) -> None:
            await job.progress(stage, current, total, found)

        run = await StructuredScraper(deps.pipeline).run(config, step=step, on_progress=on_progress)
        return await _finish_scrape(step, deps, job, manufacturer, run, "structured")

    return await _run_scrape(event, step, deps, "structured", body)


# ---------------------------------------------------------------------------
# Backlog batches
# ---------------------------------------------------------------------------


def _scope_and_cursor(event: Event):
    payload = ScopePayload(**event.data)
    scope = Scope(manufacturer_id=payload.manufacturer_id, organization_id=payload.organization_id)
    cursor = BatchCursor(**payload.cursor.model_dump()) if payload.cursor else None
    return scope, cursor


async def handle_normalize(event: Event, step: StepContext, deps: PipelineDeps) -> Dict[str, Any]:
    """Normalize one batch and queue the next when products remain."""
    scope, cursor = _scope_and_cursor(event)
    report = await deps.normalizer.run_batch(scope, cursor, step=step)

    if report.continuation:
        await step.send_event(
            "queue-next-batch",
            scope_event(NORMALIZE_REQUESTED, cursor=report.continuation, **scope.to_dict()),
        )
    return report.summary()


async def handle_pdf_parse(event: Event, step: StepContext, deps: PipelineDeps) -> Dict[str, Any]:
    """Enrich one batch of PDFs; queue the next batch and re-normalization as needed."""
    scope, cursor = _scope_and_cursor(event)
    report = await deps.pdf_enricher.run_batch(scope, cursor, step=step)

    if report.continuation:
        await step.send_event(
            "queue-next-batch",
            scope_event(PDF_PARSE_REQUESTED, cursor=report.continuation, **scope.to_dict()),
        )
    if report.enriched:
        await step.send_event("trigger-normalize", scope_event(NORMALIZE_REQUESTED, **scope.to_dict()))
    return report.summary()


async def handle_embeddings(event: Event, step: StepContext, deps: PipelineDeps) -> Dict[str, Any]:
    """Embed one batch of products in scope. Does not queue itself again."""
    scope, _ = _scope_and_cursor(event)
    report = await deps.embedder.run_batch(scope, step=step)
    return report.summary()


async def handle_knowledge_ingest(event: Event, step: StepContext, deps: PipelineDeps) -> Dict[str, Any]:
    payload = KnowledgeIngestPayload(**event.data)
    data = await load_source(payload.source_file)
    return await deps.knowledge.ingest(
        payload.organization_id, payload.source_file, data, pillar=payload.pillar, step=step
    )


HANDLERS: Dict[str, Callable[[Event, StepContext, PipelineDeps], Awaitable[Any]]] = {
    SCRAPE_REQUESTED: handle_scrape_structured,
    SCRAPE_AI_REQUESTED: handle_scrape_ai,
    NORMALIZE_REQUESTED: handle_normalize,
    PDF_PARSE_REQUESTED: handle_pdf_parse,
    EMBEDDINGS_REQUESTED: handle_embeddings,
    KNOWLEDGE_INGEST_REQUESTED: handle_knowledge_ingest,
}


def build_bus(
    deps: PipelineDeps,
    step_store: Optional[StepStore] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> InProcessEventBus:
    """Create a bus with every handler registered at its configured concurrency."""
    bus = InProcessEventBus(step_store=step_store, sleep=sleep)
    for name, handler in HANDLERS.items():
        bus.register(name, partial(handler, deps=deps), concurrency=settings.event_concurrency.get(name, 1))
    return bus


async def drain(
    run_batch: Callable[[Scope, Optional[BatchCursor]], Awaitable[BatchReport]],
    scope: Scope,
    max_batches: Optional[int] = None,
) -> List[BatchReport]:
    """
    Run a self-continuing batch component until it hands back no continuation.

    Args:
        run_batch: e.g. ``normalizer.run_batch`` or ``pdf_enricher.run_batch``
        scope: Scope passed to every batch
        max_batches: Optional safety ceiling

    Returns:
        One report per invocation, in order
    """
    reports: List[BatchReport] = []
    cursor: Optional[BatchCursor] = None
    while True:
        report = await run_batch(scope, cursor)
        reports.append(report)
        cursor = report.continuation
        if cursor is None:
            break
        if max_batches and len(reports) >= max_batches:
            logger.warning(f"Stopped draining after {max_batches} batches; {cursor.remaining} remaining")
            break
    return reports


def scrape_event_for(manufacturer, job_id: int) -> Event:
    """Structured scrape when a product list is configured, AI scrape otherwise."""
    config = manufacturer.scraper_config or {}
    name = SCRAPE_REQUESTED if config.get("product_list_url") else SCRAPE_AI_REQUESTED
    return Event(name=name, data=ScrapePayload(manufacturer_id=manufacturer.id, job_id=job_id).model_dump())
