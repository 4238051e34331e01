"""Product URL discovery: sitemap first, AI-guided navigation as fallback."""

import logging
from typing import Awaitable, Callable, List, Optional

from catalog_pipeline.ai.extraction_service import ExtractionService, extraction_service
from catalog_pipeline.config import settings
from catalog_pipeline.ingest.base import DiscoveryResult
from catalog_pipeline.ingest.sitemap_scanner import SitemapScanner

logger = logging.getLogger(__name__)

PageFetch = Callable[[str], Awaitable[Optional[str]]]
ProgressCallback = Callable[[str, str], Awaitable[None]]

HOMEPAGE_GOAL = "Find the products/catalogue section of this fire protection manufacturer website"
CATALOGUE_GOAL = "Extract all product page URLs from this product listing or catalogue page"
LISTING_GOAL = "Extract all product page URLs from this product listing page"


class ProductDiscovery:
    """
    Produce candidate product-page URLs for a manufacturer site.

    Sitemaps are tried first because they cost no extraction calls. When
    they list fewer than ``sitemap_min_urls`` product pages, the homepage is
    analysed and its catalogue link and pagination are followed until a page
    adds no new links or the page budget is spent.
    """

    def __init__(
        self,
        sitemap_scanner: Optional[SitemapScanner] = None,
        extraction: Optional[ExtractionService] = None,
        page_budget: Optional[int] = None,
        min_sitemap_urls: Optional[int] = None,
        max_urls: Optional[int] = None,
    ):
        self.sitemap_scanner = sitemap_scanner or SitemapScanner()
        self.extraction = extraction or extraction_service
        self.page_budget = page_budget if page_budget is not None else settings.discovery_page_budget
        self.min_sitemap_urls = min_sitemap_urls or settings.sitemap_min_urls
        self.max_urls = max_urls or settings.discovery_max_urls

    async def discover(
        self,
        website_url: str,
        manufacturer_name: str,
        fetch_page: PageFetch,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DiscoveryResult:
        """
        Discover product URLs.

        Args:
            website_url: Manufacturer website root
            manufacturer_name: Display name used as extraction context
            fetch_page: Returns page markup for a URL, or None on failure
            on_progress: Receives (stage, detail) progress updates

        Returns:
            DiscoveryResult; an empty URL list is a valid outcome
        """

        async def progress(stage: str, detail: str) -> None:
            if on_progress:
                await on_progress(stage, detail)

        await progress("Checking sitemap", website_url)
        sitemap_urls = await self.sitemap_scanner.scan(website_url)
        if len(sitemap_urls) >= self.min_sitemap_urls:
            await progress("Sitemap found", f"{len(sitemap_urls)} product URLs")
            return DiscoveryResult(product_urls=sitemap_urls[: self.max_urls], method="sitemap")

        method = "both" if sitemap_urls else "ai-navigation"
        found: List[str] = list(sitemap_urls)

        await progress("AI navigation", "Analyzing homepage")
        homepage_html = await fetch_page(website_url)
        if not homepage_html:
            logger.info(f"Homepage fetch failed for {website_url}; keeping {len(found)} sitemap URLs")
            return DiscoveryResult(product_urls=self._finalize(found), method=method)

        home = await self.extraction.analyze_page(
            homepage_html, website_url, manufacturer_name, HOMEPAGE_GOAL
        )
        found.extend(home.product_urls)

        if home.page_type == "product_listing" and home.next_page_url:
            await self._follow_pagination(
                home.next_page_url, manufacturer_name, fetch_page, found, progress, {website_url}
            )
        elif home.catalogue_link:
            await progress("AI navigation", f"Following catalogue: {home.catalogue_link}")
            catalogue_html = await fetch_page(home.catalogue_link)
            if catalogue_html:
                catalogue = await self.extraction.analyze_page(
                    catalogue_html, home.catalogue_link, manufacturer_name, CATALOGUE_GOAL
                )
                found.extend(catalogue.product_urls)
                if catalogue.next_page_url:
                    await self._follow_pagination(
                        catalogue.next_page_url,
                        manufacturer_name,
                        fetch_page,
                        found,
                        progress,
                        {website_url, home.catalogue_link},
                    )

        urls = self._finalize(found)
        logger.info(f"Discovery for {manufacturer_name}: {len(urls)} URLs via {method}")
        return DiscoveryResult(product_urls=urls, method=method)

    async def _follow_pagination(
        self,
        next_url: Optional[str],
        manufacturer_name: str,
        fetch_page: PageFetch,
        found: List[str],
        progress: ProgressCallback,
        visited: set,
    ) -> None:
        pages = 0
        while next_url and next_url not in visited and pages < self.page_budget:
            visited.add(next_url)
            pages += 1
            await progress("AI navigation", f"Page {pages + 1}: {next_url}")

            html = await fetch_page(next_url)
            if not html:
                break

            analysis = await self.extraction.analyze_page(
                html, next_url, manufacturer_name, LISTING_GOAL
            )
            known = set(found)
            new_urls = [url for url in analysis.product_urls if url not in known]
            if not new_urls:
                break
            found.extend(new_urls)
            next_url = analysis.next_page_url

    def _finalize(self, urls: List[str]) -> List[str]:
        return list(dict.fromkeys(url for url in urls if url))[: self.max_urls]
