"""Site crawler: sitemap or link discovery, page extraction, JSON-LD signals."""

from .crawl import SiteCrawler, CrawlResult, crawl_site, combine_crawled_content
from .pages import CrawledPage, SchemaData, parse_page, extract_schema_data
from .sitemap import fetch_sitemap, SitemapResult

__all__ = [
    "SiteCrawler",
    "CrawlResult",
    "crawl_site",
    "combine_crawled_content",
    "CrawledPage",
    "SchemaData",
    "parse_page",
    "extract_schema_data",
    "fetch_sitemap",
    "SitemapResult",
]
