"""Sitemap scanner for product URL discovery.

Sitemaps are plain XML served over HTTP, so no browser is needed. Product
pages are picked out of the listed URLs by path segment.
"""

import logging
import re
from typing import List, Optional
from urllib.parse import urlparse
from xml.etree import ElementTree as ET

import httpx

from catalog_pipeline.config import settings

logger = logging.getLogger(__name__)

PRODUCT_URL_PATTERN = re.compile(
    r"/(product|products|shop|item|catalogue|catalog|range|systems?|solutions?)/",
    re.IGNORECASE,
)


def is_product_url(url: str) -> bool:
    """Return True if the URL path looks like a product or range page."""
    return bool(PRODUCT_URL_PATTERN.search(url))


def is_child_sitemap(url: str) -> bool:
    """Return True if a <loc> entry points at another sitemap."""
    return "sitemap" in url.lower() and url.lower().endswith(".xml")


def extract_locs(xml_text: str) -> List[str]:
    """
    Pull every <loc> value out of a sitemap or sitemap index.

    Namespaced and bare documents are both accepted. Unparseable XML yields
    an empty list.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        logger.debug(f"Unparseable sitemap XML: {e}")
        return []

    locs = []
    for elem in root.iter():
        if elem.tag.rsplit("}", 1)[-1] == "loc" and elem.text and elem.text.strip():
            locs.append(elem.text.strip())
    return locs


class SitemapScanner:
    """
    Scans XML sitemaps to discover product URLs.

    Features:
    - Checks /sitemap.xml, /sitemap_index.xml and robots.txt Sitemap lines
    - Follows child sitemaps listed in an index
    - Filters to product-like paths, dedupes and caps the result
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_children: Optional[int] = None,
        max_urls: Optional[int] = None,
    ):
        self._http_client = client
        self._owns_client = client is None
        self.max_children = max_children or settings.sitemap_max_children
        self.max_urls = max_urls or settings.discovery_max_urls

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=settings.sitemap_timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": settings.http_user_agent},
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    async def _get_text(self, url: str) -> Optional[str]:
        client = await self._get_client()
        try:
            response = await client.get(url, timeout=settings.sitemap_timeout_seconds)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Error fetching {url}: {e}")
            return None
        if response.status_code != 200:
            return None
        return response.text

    async def discover_sitemaps(self, base_url: str) -> List[str]:
        """
        List candidate sitemap URLs for a site.

        Args:
            base_url: Any URL on the site

        Returns:
            /sitemap.xml and /sitemap_index.xml, followed by any robots.txt
            Sitemap entries not already listed
        """
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            return []
        origin = f"{parsed.scheme}://{parsed.netloc}"

        candidates = [f"{origin}/sitemap.xml", f"{origin}/sitemap_index.xml"]

        robots = await self._get_text(f"{origin}/robots.txt")
        if robots:
            for line in robots.splitlines():
                if line.lower().startswith("sitemap:"):
                    sitemap_url = line.split(":", 1)[1].strip()
                    if sitemap_url and sitemap_url not in candidates:
                        candidates.append(sitemap_url)

        return candidates

    async def scan(self, base_url: str) -> List[str]:
        """
        Discover product URLs from a site's sitemaps.

        Args:
            base_url: Manufacturer website root

        Returns:
            Deduplicated product-like URLs in sitemap order, capped at max_urls
        """
        candidates = await self.discover_sitemaps(base_url)
        if not candidates:
            return []

        all_urls: List[str] = []
        child_sitemaps: List[str] = []

        for sitemap_url in candidates:
            xml_text = await self._get_text(sitemap_url)
            if not xml_text:
                continue
            for loc in extract_locs(xml_text):
                if is_child_sitemap(loc):
                    child_sitemaps.append(loc)
                else:
                    all_urls.append(loc)

        for child in child_sitemaps[: self.max_children]:
            xml_text = await self._get_text(child)
            if xml_text:
                all_urls.extend(extract_locs(xml_text))

        product_urls = list(dict.fromkeys(url for url in all_urls if is_product_url(url)))
        logger.info(
            f"Sitemap scan of {base_url}: {len(all_urls)} URLs listed, "
            f"{len(product_urls)} product-like"
        )
        return product_urls[: self.max_urls]
