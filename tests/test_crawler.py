"""
Test Suite: Site Crawler

Tests:
- Sitemap index prioritisation and child limits
- Plain sitemaps and candidate fallback
- Page metadata, body text and JSON-LD extraction
- Full crawl with link discovery, served through httpx.MockTransport
"""

import json
from typing import Dict, List, Tuple

import httpx
import pytest

from conftest import build_crawl_result
from outrank.crawler import (
    SiteCrawler,
    combine_crawled_content,
    extract_schema_data,
    fetch_sitemap,
    parse_page,
)
from outrank.crawler.fetch import create_crawler_client

SITE = "acme.test"


def urlset(urls: List[str]) -> str:
    locs = "".join(f"<url><loc>{u}</loc></url>" for u in urls)
    return f'<?xml version="1.0"?><urlset>{locs}</urlset>'


def sitemap_index(urls: List[str]) -> str:
    locs = "".join(f"<sitemap><loc>{u}</loc></sitemap>" for u in urls)
    return f'<?xml version="1.0"?><sitemapindex>{locs}</sitemapindex>'


class FakeSite:
    """Serves a fixed url -> body map and records every request."""

    def __init__(self, routes: Dict[str, Tuple[int, str]]):
        self.routes = routes
        self.requested: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        status, body = self.routes.get(url, (404, "not found"))
        return httpx.Response(status, text=body)

    def client(self) -> httpx.AsyncClient:
        return create_crawler_client(httpx.MockTransport(self.handler))


HOME_HTML = """<html>
<head>
  <title> Acme Plumbing | Sydney </title>
  <meta name="description" content="Licensed plumbers for all of Sydney and surrounds">
  <script type="application/ld+json">
  {"@context": "https://schema.org", "@graph": [
    {"@type": "LocalBusiness", "name": "Acme Plumbing",
     "address": {"addressLocality": "Sydney", "addressRegion": "NSW", "addressCountry": "AU"},
     "areaServed": [{"name": "North Shore"}, "Inner West"]},
    {"@type": "WebSite", "name": "Acme"}
  ]}
  </script>
</head>
<body>
  <nav>Home About Contact</nav>
  <h1>Sydney <em>Plumbers</em></h1>
  <h2>Blocked drains</h2>
  <h3>Hot water</h3>
  <p>We fix pipes fast.</p>
  <a href="/about">About</a>
  <a href="/services#top">Services</a>
  <a href="mailto:hi@acme.test">Email</a>
  <a href="https://elsewhere.test/page">Partner</a>
  <a href="/logo.png">Logo</a>
  <a href="/api/data">API</a>
  <footer>Copyright</footer>
</body>
</html>"""


# ============================================================================
# SITEMAP TESTS
# ============================================================================

class TestSitemap:
    """Test sitemap discovery."""

    @pytest.mark.asyncio
    async def test_index_children_fetched_in_priority_order(self):
        children = [
            f"https://{SITE}/tag-sitemap.xml",
            f"https://{SITE}/post-sitemap.xml",
            f"https://{SITE}/page-sitemap.xml",
            f"https://{SITE}/product-sitemap.xml",
            f"https://{SITE}/service-sitemap.xml",
            f"https://{SITE}/author-sitemap.xml",
        ]
        page_urls = [f"https://{SITE}/page-{i}" for i in range(12)]
        post_urls = [f"https://{SITE}/post-{i}" for i in range(12)]
        site = FakeSite({
            f"https://{SITE}/sitemap.xml": (200, sitemap_index(children)),
            f"https://{SITE}/page-sitemap.xml": (200, urlset(page_urls)),
            f"https://{SITE}/post-sitemap.xml": (200, urlset(post_urls)),
        })

        async with site.client() as client:
            result = await fetch_sitemap(client, SITE, max_urls=20)

        assert result.found is True
        assert len(result.urls) == 20
        assert result.urls[:12] == page_urls
        assert result.urls[12:] == post_urls[:8]
        # Stops once enough URLs are collected
        assert f"https://{SITE}/product-sitemap.xml" not in site.requested

    @pytest.mark.asyncio
    async def test_plain_sitemap_skips_assets(self):
        site = FakeSite({
            f"https://{SITE}/sitemap.xml": (200, urlset([
                f"https://{SITE}/",
                f"https://{SITE}/about",
                f"https://{SITE}/logo.png",
            ])),
        })

        async with site.client() as client:
            result = await fetch_sitemap(client, SITE)

        assert result.urls == [f"https://{SITE}/", f"https://{SITE}/about"]

    @pytest.mark.asyncio
    async def test_falls_back_to_sitemap_index_location(self):
        site = FakeSite({
            f"https://{SITE}/sitemap_index.xml": (200, urlset([f"https://{SITE}/contact"])),
        })

        async with site.client() as client:
            result = await fetch_sitemap(client, SITE)

        assert result.urls == [f"https://{SITE}/contact"]
        assert site.requested[:2] == [
            f"https://{SITE}/sitemap.xml",
            f"https://{SITE}/sitemap_index.xml",
        ]

    @pytest.mark.asyncio
    async def test_no_sitemap(self):
        site = FakeSite({})

        async with site.client() as client:
            result = await fetch_sitemap(client, SITE)

        assert result.found is False
        assert result.urls == []
        assert f"https://www.{SITE}/sitemap.xml" in site.requested


# ============================================================================
# PAGE EXTRACTION TESTS
# ============================================================================

class TestPageExtraction:
    """Test metadata and structured data extraction."""

    def test_parse_page(self):
        page = parse_page(f"https://{SITE}/", HOME_HTML)

        assert page.path == "/"
        assert page.title == "Acme Plumbing | Sydney"
        assert page.description == "Licensed plumbers for all of Sydney and surrounds"
        assert page.has_meta_description is True
        assert page.h1 == "Sydney Plumbers"
        assert page.headings == ["Blocked drains", "Hot water"]
        assert "We fix pipes fast." in page.body_text
        assert "Copyright" not in page.body_text
        assert "Home About Contact" not in page.body_text

    def test_graph_items_and_locations(self):
        schemas = extract_schema_data(HOME_HTML)

        assert [s.type for s in schemas] == ["LocalBusiness", "WebSite"]
        business = schemas[0]
        assert business.address["locality"] == "Sydney"
        assert business.address["country"] == "AU"
        assert business.area_served == ["North Shore", "Inner West"]
        assert business.locations == ["Sydney, NSW, AU"]

    def test_offer_catalog_and_invalid_blocks(self):
        item = {
            "@type": ["Plumber", "LocalBusiness"],
            "hasOfferCatalog": {"itemListElement": [{"name": "Drain clearing"}, {"price": 5}]},
            "makesOffer": [{"name": "Gas fitting", "description": "Licensed"}],
        }
        html = (
            '<script type="application/ld+json">not json</script>'
            f'<script type="application/ld+json">{json.dumps(item)}</script>'
            '<script type="application/ld+json">{"name": "no type"}</script>'
        )

        schemas = extract_schema_data(html)

        assert len(schemas) == 1
        assert schemas[0].type == "Plumber"
        assert schemas[0].services == ["Drain clearing"]
        assert schemas[0].offers == [{"name": "Gas fitting", "description": "Licensed"}]

    def test_short_description_is_not_counted(self):
        page = parse_page(f"https://{SITE}/x", '<meta name="description" content="Short"><body>hi</body>')

        assert page.description == "Short"
        assert page.has_meta_description is False


# ============================================================================
# CRAWL TESTS
# ============================================================================

class TestSiteCrawler:
    """Test end-to-end crawling."""

    @pytest.mark.asyncio
    async def test_crawl_from_sitemap(self):
        site = FakeSite({
            f"https://{SITE}/sitemap.xml": (200, urlset([f"https://{SITE}/", f"https://{SITE}/broken"])),
            f"https://{SITE}/robots.txt": (200, "User-agent: *"),
            f"https://{SITE}/": (200, HOME_HTML),
            f"https://{SITE}/broken": (500, "error"),
        })

        async with SiteCrawler(client=site.client(), crawl_delay=0, discovery_delay=0) as crawler:
            result = await crawler.crawl(SITE)

        assert result.has_sitemap is True
        assert result.has_robots_txt is True
        # Failed pages are dropped
        assert [p.url for p in result.pages] == [f"https://{SITE}/"]
        assert result.schema_types == ["LocalBusiness", "WebSite"]
        assert "Sydney, NSW, AU" in result.extracted_locations
        assert "North Shore" in result.extracted_locations

    @pytest.mark.asyncio
    async def test_crawl_discovers_internal_links(self):
        site = FakeSite({
            f"https://{SITE}/": (200, HOME_HTML),
            f"https://{SITE}/about": (200, "<html><body><h1>About us</h1></body></html>"),
            f"https://{SITE}/services": (200, "<html><body><h1>Services</h1></body></html>"),
        })

        async with SiteCrawler(client=site.client(), crawl_delay=0, discovery_delay=0) as crawler:
            result = await crawler.crawl(SITE)

        assert result.has_sitemap is False
        assert result.has_robots_txt is False
        assert [p.path for p in result.pages] == ["/", "/about", "/services"]
        assert not any("elsewhere.test" in url for url in site.requested)
        assert not any(url.endswith("/api/data") or url.endswith("logo.png") for url in site.requested)

    @pytest.mark.asyncio
    async def test_unreachable_site_gives_empty_result(self):
        site = FakeSite({})

        async with SiteCrawler(client=site.client(), crawl_delay=0, discovery_delay=0) as crawler:
            result = await crawler.crawl(SITE)

        assert result.pages == []
        assert result.total_pages == 0


class TestCombinedContent:
    """Test the analysis corpus."""

    def test_schema_signals_lead_the_corpus(self):
        corpus = combine_crawled_content(build_crawl_result())

        assert corpus.startswith("Domain: acmeplumbing.com.au")
        assert "LOCATIONS FROM SCHEMA MARKUP: Sydney, Australia" in corpus
        assert "SCHEMA TYPES FOUND: Plumber" in corpus
        assert corpus.index("LOCATIONS FROM SCHEMA MARKUP") < corpus.index("--- Page: / ---")
        assert "--- Page: /services ---" in corpus
