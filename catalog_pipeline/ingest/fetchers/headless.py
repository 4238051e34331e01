"""Headless browser fetcher for JavaScript-rendered manufacturer pages."""

import asyncio
import logging
from typing import List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from catalog_pipeline.config import settings
from catalog_pipeline.ingest.base import FetchResult, PageFetcher
from catalog_pipeline.metrics import pages_fetched_total

logger = logging.getLogger(__name__)

# Resources that never carry product content
BLOCKED_RESOURCE_TYPES = {"image", "media", "font"}


class HeadlessPageFetcher(PageFetcher):
    """
    Fetch rendered page markup with Playwright.

    One browser and one context are shared across calls; each URL gets its
    own page. Concurrency is bounded per call with a semaphore.
    """

    def __init__(self, user_agent: Optional[str] = None):
        self.user_agent = user_agent or settings.fetch_user_agent
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._init_lock = asyncio.Lock()

    async def _ensure_browser(self) -> BrowserContext:
        """Ensure browser and context are initialized."""
        async with self._init_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

            if self._browser is None:
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=[
                        "--disable-blink-features=AutomationControlled",
                        "--disable-dev-shm-usage",
                        "--no-sandbox",
                    ],
                )

            if self._context is None:
                self._context = await self._browser.new_context(
                    user_agent=self.user_agent,
                    viewport={"width": 1366, "height": 900},
                    locale="en-GB",
                )
                await self._context.route("**/*", self._route_filter)

            return self._context

    @staticmethod
    async def _route_filter(route: Route) -> None:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()

    async def _fetch_one(self, context: BrowserContext, url: str, timeout_ms: int) -> FetchResult:
        page = await context.new_page()
        try:
            response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if response is not None and response.status >= 400:
                pages_fetched_total.labels(status="failed").inc()
                return FetchResult(url=url, html=None, error=f"HTTP {response.status}")

            try:
                await page.wait_for_load_state("networkidle", timeout=min(timeout_ms, 5000))
            except PlaywrightTimeoutError:
                pass  # Long-polling pages never go idle; the DOM is already there

            html = await page.content()
            pages_fetched_total.labels(status="ok").inc()
            return FetchResult(url=url, html=html)

        except PlaywrightTimeoutError:
            logger.warning(f"Timed out loading {url} after {timeout_ms}ms")
            pages_fetched_total.labels(status="failed").inc()
            return FetchResult(url=url, html=None, error="timeout")
        except Exception as e:
            logger.warning(f"Failed to load {url}: {e}")
            pages_fetched_total.labels(status="failed").inc()
            return FetchResult(url=url, html=None, error=str(e))
        finally:
            await page.close()

    async def fetch(
        self,
        urls: List[str],
        concurrency: int,
        timeout_ms: int,
    ) -> List[FetchResult]:
        if not urls:
            return []

        context = await self._ensure_browser()
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def bounded(url: str) -> FetchResult:
            async with semaphore:
                return await self._fetch_one(context, url, timeout_ms)

        results = await asyncio.gather(*(bounded(url) for url in urls))
        ok = sum(1 for result in results if result.ok)
        logger.info(f"Fetched {ok}/{len(urls)} pages (concurrency={concurrency})")
        return list(results)

    async def close(self):
        """Close browser and cleanup."""
        if self._context:
            await self._context.close()
            self._context = None

        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
