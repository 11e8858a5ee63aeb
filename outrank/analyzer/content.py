"""
Content Analyzer

Turns the crawled corpus into a structured business profile with one model
call. Structured data found during the crawl (schema.org locations,
services, products) is placed at the top of the corpus and the model is
told to prefer it.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..integrations.base import BaseAIProvider, ProviderError
from ..utils.parsing import extract_json_object, string_list

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 8000
MAX_LIST_ITEMS = 10


class AnalysisError(Exception):
    """Raised when the business profile cannot be produced."""


@dataclass
class BusinessAnalysis:
    """What the business is, who it serves and where."""
    business_name: Optional[str] = None
    business_type: str = "Unknown business type"
    services: List[str] = field(default_factory=list)
    products: List[str] = field(default_factory=list)
    location: Optional[str] = None
    locations: List[str] = field(default_factory=list)
    target_audience: Optional[str] = None
    key_phrases: List[str] = field(default_factory=list)
    industry: str = "General"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusinessAnalysis":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


ANALYSIS_PROMPT = """You are a business analyst. Analyze the following website content and extract key information about what this business does.

IMPORTANT: Pay special attention to any "LOCATIONS FROM SCHEMA MARKUP", "SERVICES FROM SCHEMA MARKUP", or "PRODUCTS FROM SCHEMA MARKUP" data at the top - this is structured data extracted from the website and should be prioritized.

Website Content:
{content}

{tld_hint}
---

Respond with a JSON object containing:
- businessName: The name of the business (or null if not clear)
- businessType: A short description of what kind of business this is (e.g., "SEO consultancy", "plumbing services", "SaaS platform", "e-commerce store")
- services: An array of specific services offered (max 10)
- products: An array of specific products offered (max 10). Use empty array if none.
- location: The PRIMARY geographic location (e.g., "Sydney, Australia") or null
- locations: An array of ALL locations/service areas mentioned. Use empty array if only one location.
- targetAudience: Who the business serves (e.g., "small businesses", "homeowners")
- keyPhrases: Important phrases that describe what they do (max 10)
- industry: The broader industry category (e.g., "Marketing", "Home Services", "Technology")

Return ONLY valid JSON, no other text."""


def build_tld_hint(tld_country: Optional[str]) -> str:
    if not tld_country:
        return ""
    return (
        f"Note: The website domain uses a {tld_country} country code TLD, suggesting this "
        f"business may be located in or primarily serve {tld_country}. Look for location "
        f"hints that confirm or clarify this."
    )


def parse_analysis(text: str) -> BusinessAnalysis:
    """
    Parse model output into a BusinessAnalysis.

    Raises:
        AnalysisError: no JSON object in the output
    """
    data = extract_json_object(text)
    if data is None:
        raise AnalysisError("No JSON found in analysis response")

    return BusinessAnalysis(
        business_name=data.get("businessName") or None,
        business_type=data.get("businessType") or "Unknown business type",
        services=string_list(data.get("services"), MAX_LIST_ITEMS),
        products=string_list(data.get("products"), MAX_LIST_ITEMS),
        location=data.get("location") or None,
        locations=string_list(data.get("locations"), MAX_LIST_ITEMS),
        target_audience=data.get("targetAudience") or None,
        key_phrases=string_list(data.get("keyPhrases"), MAX_LIST_ITEMS),
        industry=data.get("industry") or "General",
    )


class ContentAnalyzer:
    """
    Builds a BusinessAnalysis from crawled content.

    Usage:
        analyzer = ContentAnalyzer(provider)
        analysis = await analyzer.analyze(corpus, tld_country="Australia")
    """

    def __init__(self, provider: BaseAIProvider, max_tokens: int = 1000):
        self.provider = provider
        self.max_tokens = max_tokens

    async def analyze(self, corpus: str, tld_country: Optional[str] = None) -> BusinessAnalysis:
        prompt = ANALYSIS_PROMPT.format(
            content=corpus[:MAX_CONTENT_CHARS],
            tld_hint=build_tld_hint(tld_country),
        )

        try:
            text = await self.provider.generate_text(prompt, max_tokens=self.max_tokens)
        except ProviderError as e:
            raise AnalysisError(f"Analysis call failed: {e}") from e

        analysis = parse_analysis(text)
        logger.info(
            f"Analyzed business: {analysis.business_name or 'unnamed'} "
            f"({analysis.business_type}, {len(analysis.services)} services)"
        )
        return analysis
