"""
Builds the provider clients the pipelines need from Settings.

A platform whose API key is missing is left out; callers treat a missing
platform as "not configured" rather than failing.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..utils.config import Settings
from .anthropic_client import ClaudeClient
from .base import BaseAIProvider
from .gemini import GeminiProvider
from .openai_client import OpenAIProvider
from .perplexity import PerplexityClient

logger = logging.getLogger(__name__)


@dataclass
class ProviderSet:
    platforms: Dict[str, BaseAIProvider] = field(default_factory=dict)
    analysis: Optional[BaseAIProvider] = None
    extractor: Optional[BaseAIProvider] = None
    claude: Optional[ClaudeClient] = None

    async def close(self) -> None:
        seen = set()
        for provider in [*self.platforms.values(), self.analysis, self.extractor, self.claude]:
            if provider is None or id(provider) in seen:
                continue
            seen.add(id(provider))
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Failed to close {provider.platform} client: {e}")


def build_providers(settings: Settings) -> ProviderSet:
    providers = ProviderSet()

    if settings.OPENAI_API_KEY:
        providers.platforms["chatgpt"] = OpenAIProvider(
            settings.OPENAI_API_KEY,
            model_name=settings.OPENAI_ANALYSIS_MODEL,
            search_model=settings.CHATGPT_SEARCH_MODEL,
        )
        providers.extractor = OpenAIProvider(
            settings.OPENAI_API_KEY,
            model_name=settings.COMPETITOR_EXTRACTION_MODEL,
            settings={"temperature": 0},
        )

    if settings.ANTHROPIC_API_KEY:
        providers.claude = ClaudeClient(settings.ANTHROPIC_API_KEY, settings.CLAUDE_MODEL)
        providers.platforms["claude"] = providers.claude

    if settings.GOOGLE_API_KEY:
        providers.platforms["gemini"] = GeminiProvider(settings.GOOGLE_API_KEY, settings.GEMINI_MODEL)

    if settings.PERPLEXITY_API_KEY:
        providers.platforms["perplexity"] = PerplexityClient(
            settings.PERPLEXITY_API_KEY,
            default_model=settings.PERPLEXITY_MODEL,
        )

    providers.analysis = providers.platforms.get("chatgpt") or providers.claude

    missing = [p for p in ("chatgpt", "claude", "gemini", "perplexity") if p not in providers.platforms]
    if missing:
        logger.warning(f"AI platforms not configured: {', '.join(missing)}")

    return providers
