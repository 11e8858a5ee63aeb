"""
HTTP fetch helpers for the crawler.

Every fetch carries its own short timeout, independent of any step or
workflow budget. Failures are reported as None / False, never raised.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "outrankllm-crawler/1.0"


def create_crawler_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Shared client for one crawl. Tests pass an httpx.MockTransport."""
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
        transport=transport,
    )


async def fetch_text(client: httpx.AsyncClient, url: str, timeout: float) -> Optional[str]:
    """GET a URL and return its body, or None on any non-2xx or network error."""
    try:
        response = await client.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        logger.debug(f"Fetch failed for {url}: {e}")
        return None

    if not response.is_success:
        logger.debug(f"Fetch returned {response.status_code} for {url}")
        return None

    return response.text


async def url_exists(client: httpx.AsyncClient, url: str, timeout: float) -> bool:
    try:
        response = await client.get(url, timeout=timeout)
    except httpx.HTTPError:
        return False
    return response.is_success
