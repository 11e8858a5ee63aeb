"""
Perplexity API Client

Perplexity answers with live web search and returns the URLs it cited,
which makes it the closest stand-in for what a customer sees in the
Perplexity app.

API: https://docs.perplexity.ai/
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .base import BaseAIProvider, LocationContext, ProviderError, SearchAnswer

logger = logging.getLogger(__name__)

MAX_EMPTY_RETRIES = 2


class PerplexityError(ProviderError):
    """Custom exception for Perplexity API errors."""

    def __init__(self, message: str, status_code: int = None, response: dict = None):
        super().__init__(message, provider="perplexity", status_code=status_code)
        self.response = response


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


@dataclass
class PerplexityResult:
    """Result from a Perplexity query."""

    answer: str
    citations: List[str] = field(default_factory=list)
    query: str = ""
    model: str = ""
    tokens_used: int = 0


class PerplexityClient(BaseAIProvider):
    """
    Async client for Perplexity API.

    Usage:
        client = PerplexityClient(api_key="your_api_key")

        result = await client.query("Best plumbers in Sydney?")
        # result.answer = "Here are some highly rated..."
        # result.citations = ["https://...", ...]

        await client.close()
    """

    platform = "perplexity"
    BASE_URL = "https://api.perplexity.ai"

    def __init__(
        self,
        api_key: str,
        retry_config: Optional[RetryConfig] = None,
        default_model: str = "sonar-pro",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Perplexity client.

        Args:
            api_key: Perplexity API key
            retry_config: Retry configuration (optional)
            default_model: Default model to use (sonar, sonar-pro)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        super().__init__(api_key, default_model)
        self.retry_config = retry_config or RetryConfig()
        self.default_model = default_model

        self._client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._closed = False

    async def query(
        self,
        question: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        search_recency_filter: Optional[str] = None,
    ) -> PerplexityResult:
        """
        Query Perplexity with a question.

        Args:
            question: The question to ask
            system_prompt: Optional system prompt for context
            model: Model to use (overrides default)
            temperature: Response temperature (0-1)
            max_tokens: Maximum tokens in response
            search_recency_filter: Filter by recency (day, week, month, year)

        Returns:
            PerplexityResult with answer and citations
        """
        if self._closed:
            raise PerplexityError("Client has been closed")

        model_name = model or self.default_model

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": question})

        payload = {
            "model": model_name,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if search_recency_filter:
            payload["search_recency_filter"] = search_recency_filter

        response = await self._request_with_retry(payload)

        choices = response.get("choices", [])
        answer = ""
        if choices:
            answer = choices[0].get("message", {}).get("content", "") or ""

        citations = response.get("citations", []) or []

        usage = response.get("usage", {})
        tokens_used = usage.get("total_tokens", 0)

        return PerplexityResult(
            answer=answer,
            citations=citations,
            query=question,
            model=model_name,
            tokens_used=tokens_used,
        )

    async def generate_text(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1000,
    ) -> str:
        result = await self.query(prompt, system_prompt=system_prompt, max_tokens=max_tokens)
        return result.answer

    async def search(
        self,
        question: str,
        system_prompt: str,
        location: Optional[LocationContext] = None,
    ) -> SearchAnswer:
        prompt = question
        if location and location.location:
            prompt = f"{question}\n\n(I am located in {location.location}.)"

        for attempt in range(MAX_EMPTY_RETRIES + 1):
            result = await self.query(prompt, system_prompt=system_prompt, max_tokens=1500)
            if result.answer.strip():
                return SearchAnswer(
                    text=result.answer.strip(),
                    sources=[{"url": url, "title": ""} for url in result.citations],
                    search_enabled=True,
                    model=result.model,
                )
            if attempt < MAX_EMPTY_RETRIES:
                logger.warning(
                    f"Perplexity empty response, retrying ({attempt + 1}/{MAX_EMPTY_RETRIES}): {question[:40]}"
                )

        raise PerplexityError(f"Empty response after {MAX_EMPTY_RETRIES} retries")

    async def _request_with_retry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Make request with retry logic."""
        config = self.retry_config
        last_exception = None

        for attempt in range(config.max_retries + 1):
            try:
                response = await self._client.post("/chat/completions", json=payload)

                if response.status_code >= 400:
                    error_data = response.json() if response.content else {}

                    if response.status_code in config.retryable_status_codes:
                        last_exception = PerplexityError(
                            f"API error: {response.status_code}",
                            status_code=response.status_code,
                            response=error_data,
                        )
                    else:
                        raise PerplexityError(
                            f"API error: {error_data.get('error', {}).get('message', response.status_code)}",
                            status_code=response.status_code,
                            response=error_data,
                        )
                else:
                    return response.json()

            except httpx.TimeoutException as e:
                last_exception = PerplexityError(f"Request timed out: {e}")
            except httpx.RequestError as e:
                last_exception = PerplexityError(f"Request failed: {e}")

            if attempt < config.max_retries:
                delay = min(
                    config.initial_delay * (config.exponential_base**attempt),
                    config.max_delay,
                )
                logger.warning(
                    f"Perplexity request failed, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{config.max_retries + 1})"
                )
                await asyncio.sleep(delay)

        raise last_exception

    async def close(self):
        """Close the HTTP client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
