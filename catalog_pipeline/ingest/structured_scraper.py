"""Selector-driven scraper for manufacturers with a configured product list."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from catalog_pipeline.errors import ConfigurationError
from catalog_pipeline.ingest.base import FetchResult, StructuredProduct
from catalog_pipeline.ingest.fetch_pipeline import ExtractionRun, FetchAndExtract, ProgressCallback, chunked
from catalog_pipeline.worker.steps import StepContext, run_step

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 50


@dataclass
class ScraperConfig:
    """Manufacturer scraper_config for the structured path."""

    product_list_url: str
    product_list_selector: str
    product_name_selector: str
    product_link_selector: str
    product_detail_selectors: Dict[str, str] = field(default_factory=dict)
    pagination_type: str = "none"  # next_button, none
    pagination_selector: Optional[str] = None
    max_pages: int = DEFAULT_MAX_PAGES

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "ScraperConfig":
        """
        Build from the stored JSON config.

        Raises:
            ConfigurationError: No product list URL, or list selectors missing
        """
        config = config or {}
        if not config.get("product_list_url"):
            raise ConfigurationError("No scraper config or product_list_url set")

        missing = [
            key
            for key in ("product_list_selector", "product_name_selector", "product_link_selector")
            if not config.get(key)
        ]
        if missing:
            raise ConfigurationError(f"Scraper config missing {', '.join(missing)}")

        pagination = config.get("pagination") or {}
        return cls(
            product_list_url=config["product_list_url"],
            product_list_selector=config["product_list_selector"],
            product_name_selector=config["product_name_selector"],
            product_link_selector=config["product_link_selector"],
            product_detail_selectors=config.get("product_detail_selectors") or {},
            pagination_type=pagination.get("type", "none"),
            pagination_selector=pagination.get("selector"),
            max_pages=pagination.get("max_pages") or DEFAULT_MAX_PAGES,
        )


def _text(node: Optional[Node]) -> str:
    return node.text(strip=True) if node is not None else ""


def parse_listing(html: str, page_url: str, config: ScraperConfig) -> List[Dict[str, str]]:
    """Return [{"name", "url"}] for every product card on a listing page."""
    parser = HTMLParser(html)
    links = []
    for card in parser.css(config.product_list_selector):
        name = _text(card.css_first(config.product_name_selector))
        link = card.css_first(config.product_link_selector)
        href = link.attributes.get("href") if link is not None else None
        if not href:
            continue
        links.append({"name": name, "url": urljoin(page_url, href)})
    return links


def next_page_url(html: str, page_url: str, config: ScraperConfig) -> Optional[str]:
    if config.pagination_type != "next_button" or not config.pagination_selector:
        return None
    parser = HTMLParser(html)
    node = parser.css_first(config.pagination_selector)
    href = node.attributes.get("href") if node is not None else None
    return urljoin(page_url, href) if href else None


def parse_detail(html: str, url: str, name: str, config: ScraperConfig) -> StructuredProduct:
    """Read description, spec rows, price and PDF links from a detail page."""
    parser = HTMLParser(html)
    selectors = config.product_detail_selectors

    description = _text(parser.css_first(selectors["description"])) if selectors.get("description") else ""

    specifications: Dict[str, str] = {}
    if selectors.get("specs"):
        for row in parser.css(selectors["specs"]):
            cells = row.css("td, th")
            if len(cells) >= 2:
                key, value = _text(cells[0]), _text(cells[1])
                if key and value:
                    specifications[key] = value

    price_text = _text(parser.css_first(selectors["price"])) if selectors.get("price") else ""

    pdf_urls: List[str] = []
    if selectors.get("pdf_link"):
        for link in parser.css(selectors["pdf_link"]):
            href = link.attributes.get("href")
            if href:
                pdf_urls.append(urljoin(url, href))

    if not name:
        name = _text(parser.css_first("h1"))

    return StructuredProduct(
        product_name=name,
        source_url=url,
        description=description or None,
        specifications=specifications,
        price_text=price_text or None,
        pdf_urls=list(dict.fromkeys(pdf_urls)),
    )


class StructuredScraper:
    """
    Walk a configured product list and parse every detail page.

    Pages come from the same headless fetcher and batch sizes as the AI
    path; parsing is selector-based, so no extraction calls are made.
    """

    def __init__(self, pipeline: FetchAndExtract):
        self.pipeline = pipeline

    async def collect_links(self, config: ScraperConfig) -> List[Dict[str, str]]:
        links: List[Dict[str, str]] = []
        seen_pages = set()
        url: Optional[str] = config.product_list_url

        while url and url not in seen_pages and len(seen_pages) < config.max_pages:
            seen_pages.add(url)
            html = await self.pipeline.fetch_page(url)
            if not html:
                logger.warning(f"Listing page failed to load: {url}")
                break
            links.extend(parse_listing(html, url, config))
            url = next_page_url(html, url, config)

        unique: Dict[str, Dict[str, str]] = {}
        for link in links:
            unique.setdefault(link["url"], link)
        logger.info(f"Collected {len(unique)} product links from {len(seen_pages)} listing pages")
        return list(unique.values())

    async def run(
        self,
        config: ScraperConfig,
        step: Optional[StepContext] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExtractionRun:
        links = await run_step(step, "collect-links", lambda: self.collect_links(config))
        names = {link["url"]: link["name"] for link in links}
        urls = [link["url"] for link in links]

        run = ExtractionRun(urls_discovered=len(urls))
        batches = chunked(urls, self.pipeline.fetch_batch_size)

        for batch_index, batch_urls in enumerate(batches):

            async def detail_step(batch_index=batch_index, batch_urls=batch_urls):
                if on_progress:
                    await on_progress(
                        f"Scraping product pages (batch {batch_index + 1}/{len(batches)})",
                        batch_index * self.pipeline.fetch_batch_size,
                        len(urls),
                        len(run.products),
                    )
                results: List[FetchResult] = await self.pipeline.fetch_batch(batch_urls)
                fetched, failed, products = 0, 0, []
                for result in results:
                    if not result.ok:
                        failed += 1
                        continue
                    fetched += 1
                    product = parse_detail(result.html, result.url, names.get(result.url, ""), config)
                    if product.product_name:
                        products.append(product.to_dict())
                return {"fetched": fetched, "failed": failed, "products": products}

            outcome = await run_step(step, f"detail-batch-{batch_index}", detail_step)
            run.pages_fetched += outcome["fetched"]
            run.pages_failed += outcome["failed"]
            run.products.extend(StructuredProduct.from_dict(p) for p in outcome["products"])

        return run
