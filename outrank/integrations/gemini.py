"""
Google Gemini provider.
"""

import logging
from typing import Any, Dict, List, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from .base import BaseAIProvider, LocationContext, ProviderError, SearchAnswer

logger = logging.getLogger(__name__)


class GeminiProvider(BaseAIProvider):
    """
    Provider for Google Gemini models.

    Search-style questions are grounded with Google Search. When the key has
    no access to grounding the question is answered by the plain model and
    the result is marked search_enabled=False.
    """

    platform = "gemini"

    SEARCH_TOOL = "google_search_retrieval"

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.0-flash",
        settings: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(api_key, model_name, settings)
        genai.configure(api_key=self.api_key)
        self.model = genai.GenerativeModel(
            model_name=self.model_name,
            generation_config={"temperature": self.settings.get("temperature", 0.7)},
        )

    def _search_model(self, system_prompt: str):
        return genai.GenerativeModel(
            model_name=self.model_name,
            system_instruction=system_prompt,
            tools=self.SEARCH_TOOL,
            generation_config={"temperature": self.settings.get("temperature", 0.7)},
        )

    async def generate_text(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1000,
    ) -> str:
        if system_prompt:
            model = genai.GenerativeModel(
                model_name=self.model_name,
                system_instruction=system_prompt,
                generation_config={"temperature": self.settings.get("temperature", 0.7)},
            )
        else:
            model = self.model

        try:
            response = await model.generate_content_async(
                prompt,
                generation_config={"max_output_tokens": max_tokens},
            )
            text = response.text
        except (google_exceptions.GoogleAPIError, ValueError) as e:
            # ValueError: response.text on a blocked / empty candidate
            raise ProviderError(f"Gemini error: {e}", provider=self.platform) from e

        return text or ""

    async def search(
        self,
        question: str,
        system_prompt: str,
        location: Optional[LocationContext] = None,
    ) -> SearchAnswer:
        prompt = question
        if location and location.location:
            prompt = f"{question}\n\n(I am located in {location.location}.)"

        try:
            response = await self._search_model(system_prompt).generate_content_async(
                prompt,
                generation_config={"max_output_tokens": 1500},
            )
            text = response.text
        except (google_exceptions.GoogleAPIError, ValueError) as e:
            logger.warning(f"Gemini Google Search grounding failed, answering without search: {e}")
            text = await self.generate_text(prompt, system_prompt=system_prompt, max_tokens=1500)
            if not text.strip():
                raise ProviderError("Gemini returned an empty response", provider=self.platform)
            return SearchAnswer(text=text.strip(), search_enabled=False, model=self.model_name)

        if not (text or "").strip():
            raise ProviderError("Gemini returned an empty response", provider=self.platform)

        grounded, sources = _grounding_sources(response)
        return SearchAnswer(text=text.strip(), sources=sources, search_enabled=grounded, model=self.model_name)


def _grounding_sources(response) -> tuple:
    """Return (grounded, sources) from a response's grounding metadata."""
    sources: List[Dict[str, str]] = []
    grounded = False

    for candidate in getattr(response, "candidates", None) or []:
        metadata = getattr(candidate, "grounding_metadata", None)
        if not metadata:
            continue
        chunks = getattr(metadata, "grounding_chunks", None) or []
        if chunks or getattr(metadata, "search_entry_point", None):
            grounded = True
        for chunk in chunks:
            web = getattr(chunk, "web", None)
            uri = getattr(web, "uri", "") if web else ""
            if uri and all(s["url"] != uri for s in sources):
                sources.append({"url": uri, "title": getattr(web, "title", "") or ""})

    return grounded, sources
