"""
Sitemap Discovery

Finds page URLs from the conventional sitemap locations.

Supports:
- Standard sitemap.xml
- Sitemap index files (Yoast-style page-sitemap.xml, post-sitemap.xml, ...)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List

import httpx

from .fetch import fetch_text

logger = logging.getLogger(__name__)

ASSET_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|pdf|css|js|ico|svg|woff|woff2)$", re.IGNORECASE)
LOC_PATTERN = re.compile(r"<loc>(.*?)</loc>", re.DOTALL)

MAX_CHILD_SITEMAPS = 5

# Lower sorts first; tag, category and author sitemaps fall to the end
CHILD_SITEMAP_PRIORITY = [
    ("page-sitemap", 0),
    ("post-sitemap", 1),
    ("product-sitemap", 2),
    ("service-sitemap", 3),
]


@dataclass
class SitemapResult:
    """Result of sitemap discovery."""
    urls: List[str] = field(default_factory=list)
    found: bool = False


def sitemap_candidates(domain: str) -> List[str]:
    return [
        f"https://{domain}/sitemap.xml",
        f"https://{domain}/sitemap_index.xml",
        f"https://www.{domain}/sitemap.xml",
    ]


def parse_sitemap_urls(xml: str) -> List[str]:
    """Pull every <loc> value out of a sitemap document."""
    return [match.strip() for match in LOC_PATTERN.findall(xml)]


def is_child_sitemap(url: str) -> bool:
    return url.endswith(".xml") or "sitemap" in url


def is_asset_url(url: str) -> bool:
    return bool(ASSET_PATTERN.search(url))


def child_sitemap_priority(url: str) -> int:
    for marker, priority in CHILD_SITEMAP_PRIORITY:
        if marker in url:
            return priority
    return 10


async def fetch_sitemap(
    client: httpx.AsyncClient,
    domain: str,
    timeout: float = 8.0,
    max_urls: int = 20,
) -> SitemapResult:
    """
    Try the conventional sitemap URLs in order.

    A sitemap whose child-sitemap entries are at least as many as its page
    entries is treated as an index: up to 5 children are fetched in
    priority order until max_urls page URLs are collected.
    """
    for sitemap_url in sitemap_candidates(domain):
        xml = await fetch_text(client, sitemap_url, timeout)
        if not xml:
            continue

        all_urls = parse_sitemap_urls(xml)
        if not all_urls:
            continue

        child_sitemaps = [u for u in all_urls if is_child_sitemap(u)]
        page_urls = [u for u in all_urls if not is_child_sitemap(u)]

        if child_sitemaps and len(child_sitemaps) >= len(page_urls):
            collected = list(page_urls)
            # sorted() is stable, so equal priorities keep document order
            prioritized = sorted(child_sitemaps, key=child_sitemap_priority)

            for child_url in prioritized[:MAX_CHILD_SITEMAPS]:
                child_xml = await fetch_text(client, child_url, timeout)
                if child_xml:
                    for loc in parse_sitemap_urls(child_xml):
                        if not loc.endswith(".xml") and not is_asset_url(loc):
                            collected.append(loc)
                if len(collected) >= max_urls:
                    break

            if collected:
                logger.info(f"Sitemap index {sitemap_url}: {len(collected)} page URLs")
                return SitemapResult(urls=collected[:max_urls], found=True)

        html_urls = [u for u in all_urls if not is_asset_url(u) and not u.lower().endswith(".xml")]
        if html_urls:
            logger.info(f"Sitemap {sitemap_url}: {len(html_urls)} page URLs")
            return SitemapResult(urls=html_urls[:max_urls], found=True)

    return SitemapResult()
