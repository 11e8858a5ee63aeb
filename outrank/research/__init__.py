"""Customer query research and prompt selection."""

from .queries import (
    RESEARCH_PLATFORMS,
    QueryResearcher,
    RawQuerySuggestion,
    ResearchedQuery,
    dedupe_and_rank_queries,
    generate_fallback_queries,
    is_retailer_business,
    validate_category,
)

__all__ = [
    "RESEARCH_PLATFORMS",
    "QueryResearcher",
    "RawQuerySuggestion",
    "ResearchedQuery",
    "dedupe_and_rank_queries",
    "generate_fallback_queries",
    "is_retailer_business",
    "validate_category",
]
