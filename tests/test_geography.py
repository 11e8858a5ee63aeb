"""
Test Suite: Geography Resolution

Tests:
- Country-code TLD detection
- Content signals (cities, countries, phone prefixes)
- Analyzer location parsing
- Multi-source resolution and confidence
"""

from outrank.analyzer import (
    GeoConfidence,
    GeoResult,
    country_to_iso_code,
    detect_geography,
    detect_location_from_content,
    extract_tld_country,
)
from outrank.analyzer.geography import parse_ai_location


# ============================================================================
# SIGNAL TESTS
# ============================================================================

class TestTldCountry:
    """Test country-code TLD mapping."""

    def test_second_level_suffixes(self):
        assert extract_tld_country("acmeplumbing.com.au") == "Australia"
        assert extract_tld_country("acme.co.uk") == "United Kingdom"

    def test_single_suffix(self):
        assert extract_tld_country("acme.de") == "Germany"

    def test_generic_tld(self):
        assert extract_tld_country("acme.com") is None
        assert extract_tld_country("") is None


class TestIsoCodes:
    def test_names_and_aliases(self):
        assert country_to_iso_code("Australia") == "AU"
        assert country_to_iso_code("UK") == "GB"
        assert country_to_iso_code("usa") == "US"

    def test_unknown(self):
        assert country_to_iso_code("Narnia") is None
        assert country_to_iso_code(None) is None


class TestContentLocation:
    """Test location signals found in page text."""

    def test_city_and_phone_prefix(self):
        content = "Plumbers across Sydney. Sydney homeowners call +61 2 9000 0000."

        location = detect_location_from_content(content)

        assert location.city == "Sydney"
        assert location.country == "Australia"
        assert "phone:+61" in location.signals

    def test_single_mention_is_ignored(self):
        location = detect_location_from_content("We once did a job in London.")

        assert location.city is None
        assert location.country is None

    def test_city_from_other_country_dropped(self):
        content = "London, London. Proudly Australia owned, serving all of Australia. Australia wide."

        location = detect_location_from_content(content)

        assert location.country == "Australia"
        assert location.city is None

    def test_empty_content(self):
        assert detect_location_from_content("").signals == []


class TestAiLocation:
    def test_city_and_country(self):
        assert parse_ai_location("Sydney, Australia") == ("Sydney", "Australia")

    def test_known_city_only(self):
        assert parse_ai_location("Melbourne") == ("Melbourne", "Australia")

    def test_country_only(self):
        assert parse_ai_location("Australia") == (None, "Australia")

    def test_missing(self):
        assert parse_ai_location(None) == (None, None)


# ============================================================================
# RESOLUTION TESTS
# ============================================================================

class TestDetectGeography:
    """Test combining signals."""

    def test_ai_and_tld_agree(self):
        result = detect_geography("acmeplumbing.com.au", "", "Sydney, Australia")

        assert result.confidence == GeoConfidence.HIGH
        assert result.location == "Sydney, Australia"
        assert result.city == "Sydney"
        assert result.country_code == "AU"
        assert result.tld_country == "Australia"

    def test_tld_only_is_low(self):
        result = detect_geography("acme.co.uk", "", None)

        assert result.confidence == GeoConfidence.LOW
        assert result.location == "United Kingdom"

    def test_ai_only_is_medium(self):
        result = detect_geography("acme.com", "", "Toronto, Canada")

        assert result.confidence == GeoConfidence.MEDIUM
        assert result.location == "Toronto, Canada"

    def test_nothing_known(self):
        result = detect_geography("acme.com", "", None)

        assert result.location is None
        assert result.confidence == GeoConfidence.LOW

    def test_majority_overrules_ai(self):
        content = "Sydney plumbers for Sydney homes. Call +61 2 9000 0000."

        result = detect_geography("acmeplumbing.com.au", content, "Auckland, New Zealand")

        assert result.country == "Australia"
        assert result.confidence == GeoConfidence.HIGH
        # The AI city belongs to the losing country, so the content city is used
        assert result.location == "Sydney, Australia"

    def test_tie_prefers_ai(self):
        result = detect_geography("acme.co.uk", "", "Berlin, Germany")

        assert result.country == "Germany"
        assert result.confidence == GeoConfidence.MEDIUM

    def test_dict_round_trip(self):
        result = detect_geography("acmeplumbing.com.au", "", "Sydney, Australia")

        data = result.to_dict()
        restored = GeoResult.from_dict(data)

        assert data["confidence"] == "high"
        assert data["country_code"] == "AU"
        assert restored == result
