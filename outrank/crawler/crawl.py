"""
Site Crawler

Discovers up to a bounded number of pages for a domain and extracts their
content and structured data.

Discovery order:
1. Sitemap (sitemap.xml, sitemap_index.xml, www.)
2. Breadth-first link discovery from the homepage
3. Homepage URLs as a last resort

Pages that fail to fetch are dropped; a partial crawl is a normal result.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import httpx

from .fetch import create_crawler_client, fetch_text, url_exists
from .pages import CrawledPage, parse_page
from .sitemap import fetch_sitemap

logger = logging.getLogger(__name__)

MAX_CRAWL_PAGES = 15
MAX_DISCOVERY_PAGES = 15
DISCOVERY_DELAY = 0.2
CRAWL_DELAY = 0.1

LINK_PATTERN = re.compile(r"<a[^>]+href=[\"']([^\"']+)[\"']", re.IGNORECASE)
DISCOVERY_ASSET_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|pdf|css|js|ico|svg|woff|woff2|ttf)$")
SKIPPED_LINK_PREFIXES = ("#", "javascript:", "mailto:", "tel:")
SKIPPED_PATH_PREFIXES = ("/api/", "/admin/", "/_")


@dataclass
class CrawlResult:
    """Pages plus site-level signals harvested during the crawl."""
    domain: str
    pages: List[CrawledPage] = field(default_factory=list)
    has_sitemap: bool = False
    has_robots_txt: bool = False
    schema_types: List[str] = field(default_factory=list)
    extracted_locations: List[str] = field(default_factory=list)
    extracted_services: List[str] = field(default_factory=list)
    extracted_products: List[str] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return len(self.pages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "pages": [p.to_dict() for p in self.pages],
            "has_sitemap": self.has_sitemap,
            "has_robots_txt": self.has_robots_txt,
            "schema_types": self.schema_types,
            "extracted_locations": self.extracted_locations,
            "extracted_services": self.extracted_services,
            "extracted_products": self.extracted_products,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlResult":
        data = dict(data)
        data["pages"] = [CrawledPage.from_dict(p) for p in data.get("pages", [])]
        return cls(**data)


def _unique(values: List[str]) -> List[str]:
    """Deduplicate while keeping first-seen order."""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def aggregate_schema_signals(result: CrawlResult) -> None:
    """Fill schema types, locations, services and products from page JSON-LD."""
    schemas = [schema for page in result.pages for schema in page.schema_data]

    locations: List[str] = []
    services: List[str] = []
    products: List[str] = []

    for schema in schemas:
        locations.extend(schema.locations)
        locations.extend(schema.area_served)
        locations.extend(schema.service_area)
        if schema.address and schema.address.get("locality"):
            loc = schema.address["locality"]
            if schema.address.get("country"):
                loc += f", {schema.address['country']}"
            locations.append(loc)

        services.extend(schema.services)
        services.extend(offer["name"] for offer in schema.offers)
        if schema.type == "Service" and schema.name:
            services.append(schema.name)

        products.extend(schema.products)
        if schema.type == "Product" and schema.name:
            products.append(schema.name)

    result.schema_types = _unique([schema.type for schema in schemas])
    result.extracted_locations = _unique(locations)
    result.extracted_services = _unique(services)
    result.extracted_products = _unique(products)


class SiteCrawler:
    """
    Crawls a website without executing JavaScript.

    Usage:
        crawler = SiteCrawler()
        result = await crawler.crawl("example.com")
        await crawler.close()
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_pages: int = MAX_CRAWL_PAGES,
        max_sitemap_urls: int = 20,
        sitemap_timeout: float = 8.0,
        robots_timeout: float = 5.0,
        page_timeout: float = 15.0,
        discovery_delay: float = DISCOVERY_DELAY,
        crawl_delay: float = CRAWL_DELAY,
    ):
        self._client = client or create_crawler_client()
        self.max_pages = max_pages
        self.max_sitemap_urls = max_sitemap_urls
        self.sitemap_timeout = sitemap_timeout
        self.robots_timeout = robots_timeout
        self.page_timeout = page_timeout
        self.discovery_delay = discovery_delay
        self.crawl_delay = crawl_delay

    async def crawl(self, domain: str) -> CrawlResult:
        logger.info(f"Starting crawl for {domain}")
        start = time.monotonic()

        sitemap, has_robots_txt = await asyncio.gather(
            fetch_sitemap(self._client, domain, self.sitemap_timeout, self.max_sitemap_urls),
            url_exists(self._client, f"https://{domain}/robots.txt", self.robots_timeout),
        )
        logger.info(
            f"Sitemap found: {sitemap.found} ({len(sitemap.urls)} URLs), robots.txt: {has_robots_txt}"
        )

        urls = sitemap.urls
        if not urls:
            logger.info("No sitemap URLs, falling back to discovery")
            urls = await self.discover_pages(domain, MAX_DISCOVERY_PAGES)

        if not urls:
            logger.warning("No URLs found, using homepage fallback")
            urls = [f"https://{domain}", f"https://www.{domain}"]

        pages = []
        for url in urls[:self.max_pages]:
            page = await self.extract_page(url)
            if page:
                pages.append(page)
            await asyncio.sleep(self.crawl_delay)

        result = CrawlResult(
            domain=domain,
            pages=pages,
            has_sitemap=sitemap.found,
            has_robots_txt=has_robots_txt,
        )
        aggregate_schema_signals(result)

        logger.info(f"Crawl complete: {len(pages)} pages in {time.monotonic() - start:.1f}s")
        return result

    async def extract_page(self, url: str) -> Optional[CrawledPage]:
        html = await fetch_text(self._client, url, self.page_timeout)
        if html is None:
            logger.warning(f"Extract failed: {url}")
            return None

        try:
            return parse_page(url, html)
        except Exception as e:
            logger.warning(f"Could not parse {url}: {e}")
            return None

    async def discover_pages(self, domain: str, max_pages: int = MAX_DISCOVERY_PAGES) -> List[str]:
        """Breadth-first discovery of internal pages starting at the homepage."""
        internal_hosts = {domain, f"www.{domain}"}
        discovered: List[str] = []
        to_visit = [f"https://{domain}", f"https://www.{domain}"]

        while to_visit and len(discovered) < max_pages:
            url = to_visit.pop(0)
            normalized = url.rstrip("/")
            if normalized in discovered:
                continue

            html = await fetch_text(self._client, url, self.page_timeout)
            if html is None:
                continue

            discovered.append(normalized)
            logger.debug(f"Discovered {len(discovered)}/{max_pages}: {normalized}")

            for href in LINK_PATTERN.findall(html):
                link = self._internal_link(url, href, internal_hosts)
                if link and link not in discovered and link not in to_visit:
                    to_visit.append(link)

            await asyncio.sleep(self.discovery_delay)

        logger.info(f"Discovery complete: {len(discovered)} pages found")
        return discovered

    @staticmethod
    def _internal_link(base_url: str, href: str, internal_hosts: set) -> Optional[str]:
        if href.startswith(SKIPPED_LINK_PREFIXES):
            return None

        try:
            absolute = urlparse(urljoin(base_url, href))
        except ValueError:
            return None

        if absolute.scheme not in ("http", "https") or absolute.hostname not in internal_hosts:
            return None

        path = absolute.path.lower()
        if DISCOVERY_ASSET_PATTERN.search(path) or path.startswith(SKIPPED_PATH_PREFIXES):
            return None

        return f"{absolute.scheme}://{absolute.netloc}{absolute.path}".rstrip("/")

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


async def crawl_site(domain: str, **kwargs) -> CrawlResult:
    """
    Convenience function to crawl a site with a throwaway client.

    Args:
        domain: Domain to crawl (e.g., "example.com")
    """
    crawler = SiteCrawler(**kwargs)
    try:
        return await crawler.crawl(domain)
    finally:
        await crawler.close()


def combine_crawled_content(result: CrawlResult) -> str:
    """Flatten a crawl into the text corpus handed to the content analyzer."""
    sections = [
        f"Domain: {result.domain}",
        f"Pages crawled: {result.total_pages}",
        f"Has sitemap: {'Yes' if result.has_sitemap else 'No'}",
        f"Has robots.txt: {'Yes' if result.has_robots_txt else 'No'}",
    ]

    if result.extracted_locations:
        sections.append(f"\nLOCATIONS FROM SCHEMA MARKUP: {', '.join(result.extracted_locations)}")
    if result.extracted_services:
        sections.append(f"SERVICES FROM SCHEMA MARKUP: {', '.join(result.extracted_services)}")
    if result.extracted_products:
        sections.append(f"PRODUCTS FROM SCHEMA MARKUP: {', '.join(result.extracted_products)}")
    if result.schema_types:
        sections.append(f"SCHEMA TYPES FOUND: {', '.join(result.schema_types)}")

    sections.append("")

    for page in result.pages:
        sections.append(f"--- Page: {page.path} ---")
        if page.title:
            sections.append(f"Title: {page.title}")
        if page.description:
            sections.append(f"Description: {page.description}")
        if page.h1:
            sections.append(f"H1: {page.h1}")
        if page.headings:
            sections.append(f"Headings: {' | '.join(page.headings)}")
        sections.append(f"Content: {page.body_text[:1500]}")
        sections.append("")

    return "\n".join(sections)
