"""
Claude API Client

Provides the Claude platform for visibility queries (with the web search
tool) and the long-form generation used by enrichment: competitive
summaries, action plans and PRDs (optionally with extended thinking).
Tracks token usage and estimated cost per client.
"""

import os
import asyncio
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass

import anthropic

from .base import BaseAIProvider, LocationContext, ProviderError, SearchAnswer

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = {
    "type": "web_search_20250305",
    "name": "web_search",
    "max_uses": 5,
}


@dataclass
class TokenUsage:
    """Track token usage for cost calculation."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def estimated_cost(self) -> float:
        """Estimate cost based on Claude Sonnet 4 pricing."""
        # Sonnet 4 pricing: $3/1M input, $15/1M output
        input_cost = (self.input_tokens / 1_000_000) * 3.0
        output_cost = (self.output_tokens / 1_000_000) * 15.0
        return input_cost + output_cost


@dataclass
class AnalysisResponse:
    """Response from a Claude call."""
    content: str
    usage: TokenUsage
    model: str
    stop_reason: str
    success: bool = True
    error: Optional[str] = None
    sources: Optional[List[Dict[str, str]]] = None


class ClaudeClient(BaseAIProvider):
    """
    Async client for Claude.

    Features:
    - Token usage tracking
    - Retry with exponential backoff
    - Web search tool for visibility queries
    - Extended thinking for plan generation
    """

    platform = "claude"

    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    MAX_TOKENS = 8000
    TEMPERATURE = 0.3

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
    ):
        """
        Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to env var)
            model: Model to use (defaults to Sonnet 4)
        """
        api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY not provided")

        super().__init__(api_key, model or self.DEFAULT_MODEL)
        self.async_client = anthropic.AsyncAnthropic(api_key=self.api_key)

        # Track cumulative usage
        self.total_usage = TokenUsage()
        self.call_count = 0

    @property
    def model(self) -> str:
        return self.model_name

    async def analyze(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = MAX_TOKENS,
        temperature: float = TEMPERATURE,
        tools: Optional[List[Dict]] = None,
        thinking_budget: Optional[int] = None,
    ) -> AnalysisResponse:
        """
        Send a prompt to Claude.

        Args:
            prompt: User prompt
            system: System prompt
            max_tokens: Maximum output tokens
            temperature: Sampling temperature (ignored with extended thinking)
            tools: Optional tools (web_search)
            thinking_budget: Token budget for extended thinking

        Returns:
            AnalysisResponse with content and usage
        """
        try:
            kwargs = {
                "model": self.model,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            }

            if thinking_budget:
                kwargs["thinking"] = {"type": "enabled", "budget_tokens": thinking_budget}
            else:
                kwargs["temperature"] = temperature

            if system:
                kwargs["system"] = system

            if tools:
                kwargs["tools"] = tools

            response = await self.async_client.messages.create(**kwargs)

            content = ""
            sources = []
            for block in response.content:
                if getattr(block, "type", None) == "text":
                    content += block.text
                    for citation in getattr(block, "citations", None) or []:
                        url = getattr(citation, "url", None)
                        if url:
                            sources.append({"url": url, "title": getattr(citation, "title", "") or ""})

            usage = TokenUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
            self.total_usage.input_tokens += usage.input_tokens
            self.total_usage.output_tokens += usage.output_tokens
            self.call_count += 1

            logger.info(
                f"Claude call: {usage.input_tokens} in, {usage.output_tokens} out, "
                f"${usage.estimated_cost:.4f}"
            )

            return AnalysisResponse(
                content=content,
                usage=usage,
                model=self.model,
                stop_reason=response.stop_reason,
                sources=sources,
            )

        except anthropic.APIError as e:
            logger.error(f"Claude API error: {e}")
            return AnalysisResponse(
                content="",
                usage=TokenUsage(),
                model=self.model,
                stop_reason="error",
                success=False,
                error=str(e),
            )

    async def analyze_with_retry(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_retries: int = 3,
        **kwargs,
    ) -> AnalysisResponse:
        """
        Analyze with retry logic for transient failures.

        Args:
            prompt: User prompt
            system: System prompt
            max_retries: Maximum retry attempts
            **kwargs: Additional arguments for analyze()
        """
        last_error = None

        for attempt in range(max_retries):
            response = await self.analyze(prompt, system, **kwargs)

            if response.success:
                return response

            last_error = response.error
            wait_time = 2 ** attempt

            logger.warning(
                f"Claude call failed (attempt {attempt + 1}/{max_retries}), "
                f"retrying in {wait_time}s: {response.error}"
            )
            await asyncio.sleep(wait_time)

        return AnalysisResponse(
            content="",
            usage=TokenUsage(),
            model=self.model,
            stop_reason="max_retries",
            success=False,
            error=f"Max retries exceeded. Last error: {last_error}",
        )

    async def generate_text(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1000,
    ) -> str:
        response = await self.analyze(prompt, system=system_prompt, max_tokens=max_tokens)
        if not response.success:
            raise ProviderError(response.error or "Claude call failed", provider=self.platform)
        return response.content

    async def search(
        self,
        question: str,
        system_prompt: str,
        location: Optional[LocationContext] = None,
    ) -> SearchAnswer:
        prompt = question
        if location and location.location:
            prompt = f"{question}\n\n(I am located in {location.location}.)"

        response = await self.analyze(prompt, system=system_prompt, max_tokens=1500, tools=[WEB_SEARCH_TOOL])
        if not response.success:
            raise ProviderError(response.error or "Claude search failed", provider=self.platform)

        return SearchAnswer(
            text=response.content.strip(),
            sources=response.sources or [],
            search_enabled=True,
            model=self.model,
        )

    async def close(self) -> None:
        await self.async_client.close()
