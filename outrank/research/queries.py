"""
Query Research

Asks each research platform which questions real customers type when they
look for a business like this one, then merges the suggestions into a
small, category-diverse prompt set.

Dedupe and ranking are platform-agnostic and deterministic:
- similar queries (word Jaccard >= 0.5) collapse into one group
- each group scores 10 per distinct suggesting platform + 5 per key phrase
- no category takes more than ceil(limit / 3) slots until the rest run out
"""

import asyncio
import logging
import math
import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..analyzer.content import BusinessAnalysis
from ..integrations.base import BaseAIProvider, ProviderError
from ..utils.parsing import extract_json_array

logger = logging.getLogger(__name__)

RESEARCH_PLATFORMS = ["chatgpt", "claude", "gemini"]

VALID_CATEGORIES = [
    "finding_provider",
    "product_specific",
    "service",
    "comparison",
    "review",
    "how_to",
    "other",
    # Legacy categories kept for existing rows
    "general",
    "custom",
]

SIMILARITY_THRESHOLD = 0.5
DEFAULT_QUERY_LIMIT = 7


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class RawQuerySuggestion:
    """One query as proposed by one platform."""
    query: str
    category: str
    platform: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawQuerySuggestion":
        return cls(query=data["query"], category=data["category"], platform=data["platform"])


@dataclass
class ResearchedQuery:
    """A deduplicated query with the platforms that suggested it."""
    query: str
    category: str
    suggested_by: List[str] = field(default_factory=list)
    relevance_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# PROMPTS
# =============================================================================

SERVICE_RESEARCH_PROMPT = """You're a customer who needs to HIRE from: {business_type}

Location: {location}
They offer these services: {services}
Key terms: {key_phrases}

Generate 10 search queries that would lead to THIS SPECIFIC TYPE OF BUSINESS being RECOMMENDED.
Every query MUST be relevant to "{business_type}".

Focus on queries where an AI would name specific companies/providers
("best X near me", "who can help me with X", "hire X in [location]").
Avoid queries that only get generic advice ("how to do X myself", "what is X").

Use casual language, include the location when relevant, and use the services and key terms above.

Categories:
- finding_provider: Looking for a business/provider
- service: Need a specific service done
- comparison: Comparing providers (with intent to hire)
- review: Reviews of businesses/providers

Return ONLY a JSON array:
[{{"query": "example query", "category": "finding_provider"}}, ...]"""

RETAIL_RESEARCH_PROMPT = """You're a customer who wants to BUY from: {business_type}

Location: {location}
They sell: {products}
Product categories: {key_phrases}

Generate 10 search queries that would lead to THIS SPECIFIC TYPE OF STORE being RECOMMENDED.
Every query MUST be about buying products this store sells.

Focus on WHERE to buy, not WHAT to buy ("where to buy X", "best X store online",
"X store reviews"). Avoid buying guides and product advice.
Include the location when relevant.

Categories:
- finding_provider: Looking for a store/retailer
- product_specific: Where to buy a specific product category
- comparison: Comparing stores/retailers
- review: Reviews of stores/retailers

Return ONLY a JSON array:
[{{"query": "example query", "category": "finding_provider"}}, ...]"""

SAAS_KEYWORDS = [
    "saas", "software", "platform", "app", "tool", "solution", "crm", "erp",
    "cloud", "subscription", "b2b", "enterprise", "startup", "tech",
]

RETAILER_KEYWORDS = [
    "store", "shop", "retailer", "e-commerce", "ecommerce", "online store",
    "marketplace", "seller", "merchant", "outlet", "warehouse", "furniture",
    "homewares", "clothing", "apparel", "electronics", "goods", "retail",
]

PHYSICAL_PRODUCT_TERMS = [
    "furniture", "decor", "outdoor", "bedroom", "living", "kitchen",
    "clothing", "shoes", "jewelry", "home",
]


# =============================================================================
# HELPERS
# =============================================================================

def is_retailer_business(business_type: str, key_phrases: List[str]) -> bool:
    """
    Retail vs service classification for the research prompt.

    Software businesses are always service-style. Otherwise a retail keyword
    in the business type, or two physical-product key phrases, means retail.
    """
    business_type_lower = (business_type or "").lower()

    if any(kw in business_type_lower for kw in SAAS_KEYWORDS):
        return False

    if any(kw in business_type_lower for kw in RETAILER_KEYWORDS):
        return True

    physical = [
        kp for kp in key_phrases
        if any(term in kp.lower() for term in RETAILER_KEYWORDS + PHYSICAL_PRODUCT_TERMS)
    ]
    return len(physical) >= 2


def validate_category(category: Any) -> str:
    normalized = re.sub(r"[^a-z_]", "", str(category or "").lower())
    return normalized if normalized in VALID_CATEGORIES else "other"


def query_similarity(query1: str, query2: str) -> float:
    """Jaccard overlap of the words longer than two characters."""
    words1 = {w for w in query1.lower().split() if len(w) > 2}
    words2 = {w for w in query2.lower().split() if len(w) > 2}

    if not words1 or not words2:
        return 0.0

    return len(words1 & words2) / len(words1 | words2)


def group_similar_queries(suggestions: List[RawQuerySuggestion]) -> List[List[RawQuerySuggestion]]:
    """Greedy grouping against each group's first query, in input order."""
    groups: List[List[RawQuerySuggestion]] = []

    for suggestion in suggestions:
        for group in groups:
            if query_similarity(suggestion.query, group[0].query) >= SIMILARITY_THRESHOLD:
                group.append(suggestion)
                break
        else:
            groups.append([suggestion])

    return groups


def _length_score(query: str) -> int:
    return 1 if 20 <= len(query) <= 60 else 0


def dedupe_and_rank_queries(
    suggestions: List[RawQuerySuggestion],
    limit: int = DEFAULT_QUERY_LIMIT,
    key_phrases: Optional[List[str]] = None,
) -> List[ResearchedQuery]:
    """
    Collapse similar suggestions and pick the top `limit` queries.

    Queries suggested by more platforms rank higher; key phrase matches add
    a bonus. Category diversity is enforced before filling the remainder.
    """
    key_phrases = key_phrases or []
    ranked: List[ResearchedQuery] = []

    for group in group_similar_queries(suggestions):
        best = group[0]
        for current in group[1:]:
            if _length_score(current.query) > _length_score(best.query):
                best = current

        platforms = list(dict.fromkeys(s.platform for s in group))

        # most_common keeps first-seen order for ties
        category = Counter(s.category for s in group).most_common(1)[0][0]

        score = len(platforms) * 10
        query_lower = best.query.lower()
        for phrase in key_phrases:
            if phrase and phrase.lower() in query_lower:
                score += 5

        ranked.append(ResearchedQuery(
            query=best.query,
            category=category,
            suggested_by=platforms,
            relevance_score=score,
        ))

    # Stable sort keeps group order for equal scores
    ranked.sort(key=lambda q: q.relevance_score, reverse=True)

    selected: List[ResearchedQuery] = []
    category_counts: Counter = Counter()
    max_per_category = math.ceil(limit / 3)

    for query in ranked:
        if len(selected) >= limit:
            break
        if category_counts[query.category] < max_per_category:
            selected.append(query)
            category_counts[query.category] += 1

    for query in ranked:
        if len(selected) >= limit:
            break
        if not any(q is query for q in selected):
            selected.append(query)

    return selected


def generate_fallback_queries(analysis: BusinessAnalysis) -> List[ResearchedQuery]:
    """Deterministic template queries for when research produced nothing."""
    location = analysis.location or "my area"
    business_type = analysis.business_type

    queries = [
        ResearchedQuery(f"best {business_type} near me", "finding_provider", [], 5),
        ResearchedQuery(f"{business_type} in {location}", "finding_provider", [], 5),
    ]

    for service in analysis.services[:2]:
        queries.append(ResearchedQuery(f"who offers {service} in {location}", "service", [], 3))

    for product in analysis.products[:2]:
        queries.append(ResearchedQuery(f"where to buy {product}", "product_specific", [], 3))

    queries.append(ResearchedQuery(f"best rated {business_type} {location}", "review", [], 4))

    return queries[:DEFAULT_QUERY_LIMIT]


# =============================================================================
# RESEARCHER
# =============================================================================

class QueryResearcher:
    """
    Collects query suggestions from one platform at a time.

    Usage:
        researcher = QueryResearcher(providers)
        suggestions = await researcher.research(analysis, "claude", key_phrases)
    """

    def __init__(self, providers: Dict[str, BaseAIProvider], max_tokens: int = 800, timeout: float = 90):
        self.providers = providers
        self.max_tokens = max_tokens
        self.timeout = timeout

    def build_prompt(self, analysis: BusinessAnalysis, key_phrases: List[str]) -> str:
        retailer = is_retailer_business(analysis.business_type, key_phrases)

        services = list(analysis.services)
        products = list(analysis.products)
        # Key phrases stand in for empty service / product lists
        if retailer and not products:
            products = key_phrases[:5]
        if not retailer and not services:
            services = key_phrases[:5]

        template = RETAIL_RESEARCH_PROMPT if retailer else SERVICE_RESEARCH_PROMPT
        return template.format(
            business_type=analysis.business_type,
            services=", ".join(services[:5]) or "Not specified",
            products=", ".join(products[:5]) or "Not specified",
            location=analysis.location or "Not specified",
            key_phrases=", ".join(key_phrases[:8]) or "Not specified",
        )

    async def research(
        self,
        analysis: BusinessAnalysis,
        platform: str,
        key_phrases: Optional[List[str]] = None,
    ) -> List[RawQuerySuggestion]:
        """
        Ask one platform for query suggestions.

        Returns an empty list when the platform is unavailable, errors, times
        out or answers without a JSON array.
        """
        provider = self.providers.get(platform)
        if provider is None:
            logger.warning(f"No provider configured for research on {platform}")
            return []

        phrases = key_phrases if key_phrases else analysis.key_phrases
        prompt = self.build_prompt(analysis, phrases)

        try:
            text = await asyncio.wait_for(
                provider.generate_text(prompt, max_tokens=self.max_tokens),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Query research on {platform} timed out after {self.timeout}s")
            return []
        except ProviderError as e:
            logger.error(f"Query research failed for {platform}: {e}")
            return []

        items = extract_json_array(text)
        if items is None:
            logger.error(f"No JSON array found in {platform} research response")
            return []

        suggestions = []
        for item in items:
            if not isinstance(item, dict) or not str(item.get("query") or "").strip():
                continue
            suggestions.append(RawQuerySuggestion(
                query=str(item["query"]).lower().strip(),
                category=validate_category(item.get("category")),
                platform=platform,
            ))

        logger.info(f"Research on {platform}: {len(suggestions)} suggestions")
        return suggestions
