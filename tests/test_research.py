"""
Test Suite: Query Research

Tests:
- Similar-query grouping and platform-count ranking
- Key phrase bonus and category diversity cap
- Template fallback queries
- Retail vs service classification
- Researcher behaviour on bad or missing platforms
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ANALYSIS, FakeProvider
from outrank.analyzer.content import parse_analysis
from outrank.integrations import ProviderError
from outrank.research import (
    QueryResearcher,
    RawQuerySuggestion,
    dedupe_and_rank_queries,
    generate_fallback_queries,
    is_retailer_business,
    validate_category,
)
from outrank.research.queries import query_similarity


def suggestion(query: str, platform: str, category: str = "finding_provider") -> RawQuerySuggestion:
    return RawQuerySuggestion(query=query, category=category, platform=platform)


@pytest.fixture
def analysis():
    return parse_analysis(json.dumps(ANALYSIS))


# ============================================================================
# DEDUPE AND RANKING TESTS
# ============================================================================

class TestDedupeAndRank:
    """Test merging and ranking of platform suggestions."""

    def test_similarity_ignores_short_words(self):
        assert query_similarity("best plumber in sydney", "best plumber sydney") == 1.0
        assert query_similarity("a b", "best plumber") == 0.0

    def test_similar_queries_merge_and_count_platforms(self):
        suggestions = [
            suggestion("best plumber in sydney", "chatgpt"),
            suggestion("best plumber sydney", "claude"),
            suggestion("hot water repair sydney", "gemini", "service"),
        ]

        ranked = dedupe_and_rank_queries(suggestions)

        assert len(ranked) == 2
        assert ranked[0].query == "best plumber in sydney"
        assert ranked[0].suggested_by == ["chatgpt", "claude"]
        assert ranked[0].relevance_score == 20
        assert ranked[1].category == "service"
        assert ranked[1].relevance_score == 10

    def test_key_phrase_bonus(self):
        suggestions = [
            suggestion("who installs solar panels", "chatgpt"),
            suggestion("plumber sydney emergency", "claude"),
        ]

        ranked = dedupe_and_rank_queries(suggestions, key_phrases=["plumber sydney"])

        assert ranked[0].query == "plumber sydney emergency"
        assert ranked[0].relevance_score == 15

    def test_category_cap_then_fill(self):
        finding = [
            "emergency plumber tonight",
            "blocked drain specialist",
            "gas fitter recommendations",
            "bathroom renovation company",
            "leak detection experts",
            "roof gutter cleaners",
        ]
        reviews = ["plumber reviews sydney", "trusted tradie ratings"]
        suggestions = [suggestion(q, "chatgpt") for q in finding]
        suggestions += [suggestion(q, "chatgpt", "review") for q in reviews]

        selected = dedupe_and_rank_queries(suggestions, limit=7)

        assert len(selected) == 7
        # ceil(7 / 3) = 3 per category before the remainder is filled
        assert [q.category for q in selected[:5]] == ["finding_provider"] * 3 + ["review"] * 2
        assert [q.query for q in selected[5:]] == finding[3:5]

    def test_fewer_suggestions_than_limit(self):
        selected = dedupe_and_rank_queries([suggestion("best plumber sydney", "claude")], limit=7)

        assert len(selected) == 1

    def test_empty_input(self):
        assert dedupe_and_rank_queries([]) == []


# ============================================================================
# FALLBACK TESTS
# ============================================================================

class TestFallbackQueries:
    """Test template queries used when research returns nothing."""

    def test_service_business_templates(self, analysis):
        queries = generate_fallback_queries(analysis)

        assert [q.query for q in queries] == [
            "best plumbing services near me",
            "plumbing services in Sydney, Australia",
            "who offers blocked drains in Sydney, Australia",
            "who offers hot water repair in Sydney, Australia",
            "best rated plumbing services Sydney, Australia",
        ]
        assert queries[-1].category == "review"

    def test_missing_location_uses_my_area(self, analysis):
        analysis.location = None

        queries = generate_fallback_queries(analysis)

        assert queries[1].query == "plumbing services in my area"

    def test_capped_at_seven(self, analysis):
        analysis.services = ["a", "b", "c"]
        analysis.products = ["sofa", "armchair", "rug"]

        queries = generate_fallback_queries(analysis)

        assert len(queries) == 7
        assert sum(1 for q in queries if q.category == "product_specific") == 2


# ============================================================================
# CLASSIFICATION TESTS
# ============================================================================

class TestClassification:
    """Test category validation and business classification."""

    def test_validate_category(self):
        assert validate_category("Finding_Provider") == "finding_provider"
        assert validate_category("  REVIEW ") == "review"
        assert validate_category("shopping") == "other"
        assert validate_category(None) == "other"

    def test_retail_keyword_in_business_type(self):
        assert is_retailer_business("furniture store", []) is True

    def test_software_is_never_retail(self):
        assert is_retailer_business("SaaS platform for retail stores", []) is False

    def test_physical_product_phrases(self):
        assert is_retailer_business("interiors", ["outdoor furniture", "bedroom decor"]) is True
        assert is_retailer_business("plumbing services", ["plumber sydney"]) is False


# ============================================================================
# RESEARCHER TESTS
# ============================================================================

class TestQueryResearcher:
    """Test collecting suggestions from a platform."""

    @pytest.mark.asyncio
    async def test_suggestions_are_lowercased(self, analysis):
        researcher = QueryResearcher({"chatgpt": FakeProvider("chatgpt")})

        suggestions = await researcher.research(analysis, "chatgpt")

        assert suggestions[0].query == "best plumber in sydney"
        assert suggestions[0].platform == "chatgpt"
        assert len(suggestions) == 8

    @pytest.mark.asyncio
    async def test_prompt_uses_service_template(self, analysis):
        provider = FakeProvider("claude")
        researcher = QueryResearcher({"claude": provider})

        await researcher.research(analysis, "claude")

        assert "HIRE from: plumbing services" in provider.prompts[0]
        assert "blocked drains, hot water repair" in provider.prompts[0]

    @pytest.mark.asyncio
    async def test_unconfigured_platform(self, analysis):
        researcher = QueryResearcher({"chatgpt": FakeProvider("chatgpt")})

        assert await researcher.research(analysis, "gemini") == []

    @pytest.mark.asyncio
    async def test_response_without_json(self, analysis):
        researcher = QueryResearcher({"gemini": FakeProvider("gemini", research="no json here")})

        assert await researcher.research(analysis, "gemini") == []

    @pytest.mark.asyncio
    async def test_provider_error(self, analysis):
        provider = MagicMock()
        provider.generate_text = AsyncMock(side_effect=ProviderError("rate limited", provider="claude"))
        researcher = QueryResearcher({"claude": provider})

        assert await researcher.research(analysis, "claude") == []

    @pytest.mark.asyncio
    async def test_hung_provider_times_out(self, analysis):
        async def never_answers(prompt, system_prompt=None, max_tokens=1000):
            await asyncio.sleep(30)
            return "[]"

        provider = MagicMock()
        provider.generate_text = never_answers
        researcher = QueryResearcher({"gemini": provider}, timeout=0.01)

        assert await researcher.research(analysis, "gemini") == []

    @pytest.mark.asyncio
    async def test_invalid_items_skipped(self, analysis):
        research = [{"query": "  "}, "plain string", {"query": "Plumber Near Me", "category": "weird"}]
        researcher = QueryResearcher({"chatgpt": FakeProvider("chatgpt", research=research)})

        suggestions = await researcher.research(analysis, "chatgpt")

        assert len(suggestions) == 1
        assert suggestions[0].query == "plumber near me"
        assert suggestions[0].category == "other"
