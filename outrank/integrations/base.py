"""
Abstract base class for the AI platforms the engine talks to.

Every provider can do two things:
- generate_text: plain completion, used for analysis, research and extraction
- search: answer a customer-style question the way the consumer product
  would, with web search where the platform offers it
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ProviderError(Exception):
    """Raised when an AI platform call fails or returns nothing usable."""

    def __init__(self, message: str, provider: str = "", status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


@dataclass
class LocationContext:
    """Where the business is, used to localize web search."""
    location: Optional[str] = None       # "Sydney, Australia"
    city: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None   # ISO 3166-1 alpha-2, "AU"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location,
            "city": self.city,
            "country": self.country,
            "country_code": self.country_code,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["LocationContext"]:
        if not data:
            return None
        return cls(**{k: data.get(k) for k in ("location", "city", "country", "country_code")})


@dataclass
class SearchAnswer:
    """A platform's answer to a search-style question."""
    text: str
    sources: List[Dict[str, str]] = field(default_factory=list)
    search_enabled: bool = False
    model: str = ""


class BaseAIProvider(ABC):
    """
    Standard interface for generating content via LLMs.
    """

    platform: str = ""

    def __init__(self, api_key: str, model_name: str, settings: Optional[Dict[str, Any]] = None) -> None:
        self.api_key = api_key
        self.model_name = model_name
        self.settings = settings or {}

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1000,
    ) -> str:
        """
        Generate a text response given a prompt and optional system prompt.

        Raises:
            ProviderError: the call failed
        """

    async def search(
        self,
        question: str,
        system_prompt: str,
        location: Optional[LocationContext] = None,
    ) -> SearchAnswer:
        """Answer a question; providers with native web search override this."""
        text = await self.generate_text(question, system_prompt=system_prompt, max_tokens=1500)
        return SearchAnswer(text=text, model=self.model_name)

    async def close(self) -> None:
        """Release network resources held by the provider."""
