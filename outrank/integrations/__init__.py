"""AI platform clients."""

from .anthropic_client import AnalysisResponse, ClaudeClient, TokenUsage
from .base import BaseAIProvider, LocationContext, ProviderError, SearchAnswer
from .factory import ProviderSet, build_providers
from .gemini import GeminiProvider
from .openai_client import OpenAIProvider
from .perplexity import PerplexityClient, PerplexityError

__all__ = [
    "AnalysisResponse",
    "BaseAIProvider",
    "ClaudeClient",
    "GeminiProvider",
    "LocationContext",
    "OpenAIProvider",
    "PerplexityClient",
    "PerplexityError",
    "ProviderError",
    "ProviderSet",
    "SearchAnswer",
    "TokenUsage",
    "build_providers",
]
