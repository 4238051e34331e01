"""Tests for the scrape event handlers and job lifecycle."""

from typing import Dict, List, Optional

import pytest

from catalog_pipeline.config import settings
from catalog_pipeline.db.store import Scope
from catalog_pipeline.ingest.base import FetchResult, StructuredProduct
from catalog_pipeline.ingest.discovery import ProductDiscovery
from catalog_pipeline.worker.events import (
    EMBEDDINGS_REQUESTED,
    NORMALIZE_REQUESTED,
    PDF_PARSE_REQUESTED,
    SCRAPE_AI_REQUESTED,
    SCRAPE_REQUESTED,
)
from catalog_pipeline.worker.steps import MemoryStepStore, StepContext
from catalog_pipeline.worker.tasks import (
    PipelineDeps,
    handle_scrape_ai,
    handle_scrape_structured,
    scrape_event_for,
)
from tests.fakes import (
    FakeEmbedding,
    FakeFetcher,
    ScriptedExtraction,
    mock_sitemap_scanner,
    no_sleep,
    urlset,
)

SITE = "https://quelfire.example"
COLLAR = f"{SITE}/products/collar"
MAGMA = f"{SITE}/products/magma"
BROKEN = f"{SITE}/products/broken"
RANGE = f"{SITE}/products/range-overview"


def _deps(
    store,
    pages: Dict[str, str],
    extraction: ScriptedExtraction,
    sitemap_paths: Optional[List[str]] = None,
    fetcher: Optional[FakeFetcher] = None,
) -> PipelineDeps:
    routes = {"/sitemap.xml": urlset(SITE, *sitemap_paths)} if sitemap_paths else {}
    deps = PipelineDeps.create(
        store,
        fetcher=fetcher or FakeFetcher(pages),
        extraction=extraction,
        embedding=FakeEmbedding(),
        sleep=no_sleep,
    )
    deps.discovery = ProductDiscovery(
        sitemap_scanner=mock_sitemap_scanner(routes), extraction=extraction, min_sitemap_urls=1
    )
    return deps


def _catalogue_site():
    pages = {COLLAR: "<html>collar</html>", MAGMA: "<html>magma</html>", RANGE: "<html>range</html>"}
    extraction = ScriptedExtraction(
        products={
            COLLAR: StructuredProduct(
                product_name="QuelStop Collar",
                product_code="QS-110",
                source_url=COLLAR,
                pdf_urls=[f"{SITE}/docs/qs-110-datasheet.pdf"],
            ),
            MAGMA: StructuredProduct(product_name="QuelCoat Magma", source_url=MAGMA),
            RANGE: None,
        }
    )
    paths = ["/products/collar", "/products/magma", "/products/broken", "/products/range-overview"]
    return pages, extraction, paths


@pytest.mark.asyncio
async def test_ai_scrape_creates_products_and_triggers_follow_ups(
    store, step, recording_bus, make_manufacturer
):
    manufacturer = await make_manufacturer()
    job = await store.create_job(manufacturer.id)
    pages, extraction, paths = _catalogue_site()
    deps = _deps(store, pages, extraction, paths)

    event = scrape_event_for(manufacturer, job.id)
    assert event.name == SCRAPE_AI_REQUESTED
    result = await handle_scrape_ai(event, step, deps)

    assert (result["created"], result["updated"]) == (2, 0)

    job = await store.get_job(job.id)
    assert job.status == "completed"
    assert job.started_at is not None and job.completed_at is not None
    assert job.products_created == 2
    assert job.progress["stage"] == "Complete"
    assert job.progress["stats"] == {
        "urlsDiscovered": 4,
        "pagesFetched": 3,
        "pagesFailed": 1,
        "productsExtracted": 2,
        "extractionFailed": 0,
        "method": "sitemap",
        "filesCreated": 1,
    }
    assert (await store.get_manufacturer(manufacturer.id)).last_scraped_at is not None

    collar = await store.find_product(manufacturer.id, "QS-110")
    (datasheet,) = await store.list_files(collar.id)
    assert datasheet.file_type == "datasheet"

    assert recording_bus.names() == [EMBEDDINGS_REQUESTED, NORMALIZE_REQUESTED, PDF_PARSE_REQUESTED]
    scope = {"manufacturer_id": manufacturer.id, "organization_id": manufacturer.organization_id}
    assert all(event.data == scope for event in recording_bus.sent)


@pytest.mark.asyncio
async def test_redelivered_scrape_replays_completed_steps(store, recording_bus, make_manufacturer):
    manufacturer = await make_manufacturer()
    job = await store.create_job(manufacturer.id)
    pages, extraction, paths = _catalogue_site()
    deps = _deps(store, pages, extraction, paths)
    step_store = MemoryStepStore()
    event = scrape_event_for(manufacturer, job.id)

    await handle_scrape_ai(event, StepContext("evt-1", step_store, recording_bus, sleep=no_sleep), deps)
    fetched = list(deps.pipeline.fetcher.requested)
    extracted = list(extraction.product_calls)

    replay = StepContext("evt-1", step_store, recording_bus, sleep=no_sleep)
    result = await handle_scrape_ai(event, replay, deps)

    assert result["created"] == 2
    assert replay.executed == []
    assert deps.pipeline.fetcher.requested == fetched
    assert extraction.product_calls == extracted
    assert len(recording_bus.sent) == 3
    assert await store.count_products_missing_embedding(Scope(manufacturer_id=manufacturer.id)) == 2


@pytest.mark.asyncio
async def test_missing_website_fails_the_job(store, step, recording_bus, make_manufacturer):
    manufacturer = await make_manufacturer(website_url=None)
    job = await store.create_job(manufacturer.id)
    deps = _deps(store, {}, ScriptedExtraction())

    result = await handle_scrape_ai(scrape_event_for(manufacturer, job.id), step, deps)

    assert result == {"error": "No website URL configured"}
    job = await store.get_job(job.id)
    assert job.status == "failed"
    assert job.error_log == "No website URL configured"
    assert job.completed_at is not None
    assert await store.count_unnormalized_products(Scope(manufacturer_id=manufacturer.id)) == 0
    assert recording_bus.sent == []


@pytest.mark.asyncio
async def test_no_discovered_urls_completes_with_nothing(store, step, recording_bus, make_manufacturer):
    manufacturer = await make_manufacturer()
    job = await store.create_job(manufacturer.id)
    deps = _deps(store, {}, ScriptedExtraction())

    result = await handle_scrape_ai(scrape_event_for(manufacturer, job.id), step, deps)

    assert result == {"created": 0, "updated": 0, "total": 0, "method": "ai-navigation"}
    job = await store.get_job(job.id)
    assert job.status == "completed"
    assert job.progress["stage"] == "AI: No product URLs discovered"
    assert recording_bus.sent == []


@pytest.mark.asyncio
async def test_pages_without_products_complete_with_zero_created(store, step, make_manufacturer):
    manufacturer = await make_manufacturer()
    job = await store.create_job(manufacturer.id)
    pages, _, paths = _catalogue_site()
    extraction = ScriptedExtraction(products={})
    deps = _deps(store, pages, extraction, paths)

    result = await handle_scrape_ai(scrape_event_for(manufacturer, job.id), step, deps)

    assert result["created"] == 0
    job = await store.get_job(job.id)
    assert job.status == "completed"
    assert job.products_created == 0
    assert job.progress["stats"]["productsExtracted"] == 0


@pytest.mark.asyncio
async def test_terminal_and_unknown_jobs_are_skipped(store, step, make_manufacturer):
    manufacturer = await make_manufacturer()
    job = await store.create_job(manufacturer.id)
    await store.update_job(job.id, status="completed")
    deps = _deps(store, {}, ScriptedExtraction())

    assert await handle_scrape_ai(scrape_event_for(manufacturer, job.id), step, deps) == {"skipped": True}

    other_step = StepContext("run-2", MemoryStepStore(), step.bus, sleep=no_sleep)
    result = await handle_scrape_ai(scrape_event_for(manufacturer, 9999), other_step, deps)
    assert result == {"error": "Job not found"}


class CrashingFetcher(FakeFetcher):
    async def fetch(self, urls: List[str], concurrency: int, timeout_ms: int) -> List[FetchResult]:
        raise RuntimeError("browser crashed")


@pytest.mark.asyncio
async def test_unexpected_error_fails_the_job_only_on_last_delivery(store, step, make_manufacturer):
    manufacturer = await make_manufacturer()
    job = await store.create_job(manufacturer.id)
    _, extraction, paths = _catalogue_site()
    deps = _deps(store, {}, extraction, paths, fetcher=CrashingFetcher())
    event = scrape_event_for(manufacturer, job.id)

    with pytest.raises(RuntimeError):
        await handle_scrape_ai(event, step, deps)
    assert (await store.get_job(job.id)).status == "running"

    last = event.model_copy(update={"attempt": settings.event_max_deliveries})
    with pytest.raises(RuntimeError):
        await handle_scrape_ai(last, step, deps)

    job = await store.get_job(job.id)
    assert job.status == "failed"
    assert job.error_log == "RuntimeError: browser crashed"


STRUCTURED_CONFIG = {
    "product_list_url": f"{SITE}/range",
    "product_list_selector": ".card",
    "product_name_selector": "h3",
    "product_link_selector": "a",
    "product_detail_selectors": {
        "description": ".desc",
        "specs": "table.specs tr",
        "price": ".price",
        "pdf_link": "a.pdf",
    },
    "pagination": {"type": "next_button", "selector": "a.next"},
}


def _card(name: str, href: str) -> str:
    return f'<div class="card"><h3>{name}</h3><a href="{href}">View</a></div>'


def _detail(description: str, rating: str, price: str, pdf: str) -> str:
    return (
        f'<html><h1>Detail</h1><p class="desc">{description}</p>'
        f'<table class="specs"><tr><td>Fire rating</td><td>{rating}</td></tr></table>'
        f'<span class="price">{price}</span><a class="pdf" href="{pdf}">Datasheet</a></html>'
    )


@pytest.mark.asyncio
async def test_structured_scrape_walks_listing_pages(store, step, recording_bus, make_manufacturer):
    manufacturer = await make_manufacturer(scraper_config=STRUCTURED_CONFIG)
    job = await store.create_job(manufacturer.id)
    pages = {
        f"{SITE}/range": (
            _card("QuelStop Collar", "/products/collar")
            + _card("QuelCoat Magma", "/products/magma")
            + '<a class="next" href="/range?page=2">Next</a>'
        ),
        f"{SITE}/range?page=2": (
            _card("QuelStop Collar", "/products/collar") + _card("Batt", "/products/batt")
        ),
        COLLAR: _detail("Pipe collar", "120 minutes", "£24.50", "/docs/collar-datasheet.pdf"),
        MAGMA: _detail("Ablative coating", "240 minutes", "£99", "/docs/magma-certificate.pdf"),
        f"{SITE}/products/batt": _detail("Coated batt", "60 minutes", "£45", "/docs/batt-dop.pdf"),
    }
    extraction = ScriptedExtraction()
    deps = _deps(store, pages, extraction)

    event = scrape_event_for(manufacturer, job.id)
    assert event.name == SCRAPE_REQUESTED
    result = await handle_scrape_structured(event, step, deps)

    assert result["created"] == 3
    assert extraction.product_calls == []

    job = await store.get_job(job.id)
    assert job.status == "completed"
    assert job.progress["stats"]["method"] == "structured"
    assert job.progress["stats"]["filesCreated"] == 3

    collar = await store.find_product(manufacturer.id, "quelstop-collar")
    assert collar.description == "Pipe collar"
    assert collar.specifications == {"Fire rating": "120 minutes"}
    assert collar.scraped_data["price_text"] == "£24.50"
    assert collar.scraped_data["source_url"] == COLLAR
    assert len(recording_bus.sent) == 3


@pytest.mark.asyncio
async def test_structured_scrape_with_incomplete_config_fails(store, step, make_manufacturer):
    config = {key: value for key, value in STRUCTURED_CONFIG.items() if key != "product_name_selector"}
    manufacturer = await make_manufacturer(scraper_config=config)
    job = await store.create_job(manufacturer.id)
    deps = _deps(store, {}, ScriptedExtraction())

    result = await handle_scrape_structured(scrape_event_for(manufacturer, job.id), step, deps)

    assert result == {"error": "Scraper config missing product_name_selector"}
    assert (await store.get_job(job.id)).status == "failed"
