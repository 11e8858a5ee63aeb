"""
OpenAI (ChatGPT) Provider

- Chat Completions for plain generation (analysis, competitor extraction)
- Responses API with the web search tool for ChatGPT-style answers,
  localized with an approximate user location
"""

import logging
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from .base import BaseAIProvider, LocationContext, ProviderError, SearchAnswer

logger = logging.getLogger(__name__)

MAX_EMPTY_RETRIES = 2

# Places named in a question take priority over the business location
QUERY_LOCATIONS = {
    "sydney": {"country": "AU", "city": "Sydney", "region": "New South Wales"},
    "melbourne": {"country": "AU", "city": "Melbourne", "region": "Victoria"},
    "brisbane": {"country": "AU", "city": "Brisbane", "region": "Queensland"},
    "perth": {"country": "AU", "city": "Perth", "region": "Western Australia"},
    "adelaide": {"country": "AU", "city": "Adelaide", "region": "South Australia"},
    "gold coast": {"country": "AU", "city": "Gold Coast", "region": "Queensland"},
    "canberra": {"country": "AU", "city": "Canberra", "region": "Australian Capital Territory"},
    "australia": {"country": "AU"},
    "new york": {"country": "US", "city": "New York", "region": "New York"},
    "los angeles": {"country": "US", "city": "Los Angeles", "region": "California"},
    "london": {"country": "GB", "city": "London"},
}


def build_user_location(question: str, location: Optional[LocationContext]) -> Dict[str, Any]:
    """Approximate user location for the web search tool."""
    question_lower = question.lower()
    detected = next((info for name, info in QUERY_LOCATIONS.items() if name in question_lower), None)

    if detected is None and location and location.country_code:
        detected = {"country": location.country_code, "city": location.city}

    user_location = {"type": "approximate"}
    for key in ("country", "city", "region"):
        if detected and detected.get(key):
            user_location[key] = detected[key]
    return user_location


def _extract_citations(response: Any) -> List[Dict[str, str]]:
    sources = []
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for content in getattr(item, "content", None) or []:
            for annotation in getattr(content, "annotations", None) or []:
                if getattr(annotation, "type", None) == "url_citation":
                    sources.append({
                        "url": annotation.url,
                        "title": getattr(annotation, "title", "") or "",
                    })
    return sources


class OpenAIProvider(BaseAIProvider):
    """
    Provider for OpenAI models.
    """

    platform = "chatgpt"

    def __init__(
        self,
        api_key: str,
        model_name: str = "gpt-4o",
        search_model: str = "o4-mini",
        settings: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(api_key, model_name, settings)
        self.search_model = search_model
        self.client = AsyncOpenAI(api_key=self.api_key)

    async def generate_text(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1000,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                max_tokens=max_tokens,
                temperature=self.settings.get("temperature", 0.7),
            )
        except openai.APIError as e:
            raise ProviderError(f"OpenAI error: {e}", provider=self.platform,
                                status_code=getattr(e, "status_code", None)) from e

        return response.choices[0].message.content or ""

    async def search(
        self,
        question: str,
        system_prompt: str,
        location: Optional[LocationContext] = None,
    ) -> SearchAnswer:
        tool = {
            "type": "web_search_preview",
            "search_context_size": "high",
            "user_location": build_user_location(question, location),
        }

        for attempt in range(MAX_EMPTY_RETRIES + 1):
            try:
                response = await self.client.responses.create(
                    model=self.search_model,
                    instructions=system_prompt,
                    input=question,
                    tools=[tool],
                    max_output_tokens=4000,
                )
            except openai.APIError as e:
                raise ProviderError(f"OpenAI search error: {e}", provider=self.platform,
                                    status_code=getattr(e, "status_code", None)) from e

            text = (response.output_text or "").strip()
            if text:
                return SearchAnswer(
                    text=text,
                    sources=_extract_citations(response),
                    search_enabled=True,
                    model=self.search_model,
                )

            if attempt < MAX_EMPTY_RETRIES:
                logger.warning(
                    f"ChatGPT empty response, retrying ({attempt + 1}/{MAX_EMPTY_RETRIES}): {question[:40]}"
                )

        raise ProviderError(
            f"ChatGPT returned an empty response after {MAX_EMPTY_RETRIES} retries",
            provider=self.platform,
        )

    async def close(self) -> None:
        await self.client.close()
