"""
Geography Resolver

Merges three independent location signals into one best guess:

1. Country-code TLD (.com.au, .co.uk, .de, ...)
2. On-site content (city / country names, phone country codes)
3. The location the content analyzer extracted

Confidence comes from agreement: two or more sources naming the same
country is high, a single content or AI signal is medium, a TLD alone
(or nothing) is low.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# REFERENCE DATA
# =============================================================================

# Longest suffixes first so .com.au wins over .au
TLD_COUNTRIES: List[Tuple[str, str]] = [
    (".com.au", "Australia"),
    (".net.au", "Australia"),
    (".org.au", "Australia"),
    (".co.uk", "United Kingdom"),
    (".org.uk", "United Kingdom"),
    (".co.nz", "New Zealand"),
    (".co.za", "South Africa"),
    (".com.sg", "Singapore"),
    (".co.in", "India"),
    (".au", "Australia"),
    (".uk", "United Kingdom"),
    (".nz", "New Zealand"),
    (".ca", "Canada"),
    (".ie", "Ireland"),
    (".us", "United States"),
    (".de", "Germany"),
    (".fr", "France"),
    (".se", "Sweden"),
    (".no", "Norway"),
    (".dk", "Denmark"),
    (".fi", "Finland"),
    (".nl", "Netherlands"),
    (".es", "Spain"),
    (".it", "Italy"),
    (".sg", "Singapore"),
    (".in", "India"),
    (".za", "South Africa"),
]

COUNTRY_ISO_CODES: Dict[str, str] = {
    "australia": "AU",
    "united kingdom": "GB",
    "new zealand": "NZ",
    "united states": "US",
    "canada": "CA",
    "ireland": "IE",
    "germany": "DE",
    "france": "FR",
    "sweden": "SE",
    "norway": "NO",
    "denmark": "DK",
    "finland": "FI",
    "netherlands": "NL",
    "spain": "ES",
    "italy": "IT",
    "singapore": "SG",
    "india": "IN",
    "south africa": "ZA",
}

COUNTRY_ALIASES: Dict[str, str] = {
    "uk": "United Kingdom",
    "england": "United Kingdom",
    "scotland": "United Kingdom",
    "wales": "United Kingdom",
    "great britain": "United Kingdom",
    "usa": "United States",
    "us": "United States",
    "u.s.": "United States",
    "united states of america": "United States",
    "america": "United States",
    "nz": "New Zealand",
    "aus": "Australia",
}

CITY_COUNTRIES: Dict[str, str] = {
    "sydney": "Australia",
    "melbourne": "Australia",
    "brisbane": "Australia",
    "perth": "Australia",
    "adelaide": "Australia",
    "gold coast": "Australia",
    "canberra": "Australia",
    "hobart": "Australia",
    "darwin": "Australia",
    "newcastle": "Australia",
    "auckland": "New Zealand",
    "wellington": "New Zealand",
    "christchurch": "New Zealand",
    "london": "United Kingdom",
    "manchester": "United Kingdom",
    "birmingham": "United Kingdom",
    "edinburgh": "United Kingdom",
    "glasgow": "United Kingdom",
    "dublin": "Ireland",
    "toronto": "Canada",
    "vancouver": "Canada",
    "montreal": "Canada",
    "new york": "United States",
    "los angeles": "United States",
    "san francisco": "United States",
    "chicago": "United States",
    "austin": "United States",
    "seattle": "United States",
    "boston": "United States",
    "miami": "United States",
    "berlin": "Germany",
    "munich": "Germany",
    "paris": "France",
    "stockholm": "Sweden",
    "amsterdam": "Netherlands",
    "singapore": "Singapore",
    "mumbai": "India",
    "bangalore": "India",
    "cape town": "South Africa",
    "johannesburg": "South Africa",
}

PHONE_PREFIXES: Dict[str, str] = {
    "+61": "Australia",
    "+64": "New Zealand",
    "+44": "United Kingdom",
    "+353": "Ireland",
    "+49": "Germany",
    "+33": "France",
    "+46": "Sweden",
    "+31": "Netherlands",
    "+65": "Singapore",
    "+91": "India",
    "+27": "South Africa",
}

# Minimum content mentions before a city or country counts as a signal
MIN_CONTENT_MENTIONS = 2


class GeoConfidence(str, Enum):
    """Confidence level in the resolved location."""
    HIGH = "high"        # Two or more sources agree
    MEDIUM = "medium"    # One content or AI signal
    LOW = "low"          # TLD only, or nothing


@dataclass
class ContentLocation:
    """Location signals found in site content."""
    city: Optional[str] = None
    country: Optional[str] = None
    signals: List[str] = field(default_factory=list)


@dataclass
class GeoResult:
    """Best-guess business location."""
    location: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    tld_country: Optional[str] = None
    confidence: GeoConfidence = GeoConfidence.LOW
    signals: List[str] = field(default_factory=list)

    @property
    def country_code(self) -> Optional[str]:
        return country_to_iso_code(self.country)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location,
            "city": self.city,
            "country": self.country,
            "country_code": self.country_code,
            "tld_country": self.tld_country,
            "confidence": self.confidence.value,
            "signals": self.signals,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeoResult":
        return cls(
            location=data.get("location"),
            city=data.get("city"),
            country=data.get("country"),
            tld_country=data.get("tld_country"),
            confidence=GeoConfidence(data.get("confidence", "low")),
            signals=list(data.get("signals") or []),
        )


# =============================================================================
# SIGNAL EXTRACTION
# =============================================================================

def normalize_country(name: Optional[str]) -> Optional[str]:
    """Map a country name or alias to its canonical name."""
    if not name:
        return None
    key = name.strip().lower().rstrip(".")
    if key in COUNTRY_ALIASES:
        return COUNTRY_ALIASES[key]
    if key in COUNTRY_ISO_CODES:
        return key.title()
    return None


def country_to_iso_code(country: Optional[str]) -> Optional[str]:
    """ISO 3166-1 alpha-2 code for a country name, or None."""
    canonical = normalize_country(country)
    if not canonical:
        return None
    return COUNTRY_ISO_CODES.get(canonical.lower())


def extract_tld_country(domain: str) -> Optional[str]:
    """Country implied by a country-code TLD. Generic TLDs return None."""
    host = (domain or "").lower().strip().rstrip("/")
    for suffix, country in TLD_COUNTRIES:
        if host.endswith(suffix):
            return country
    return None


def _count_mentions(text: str, name: str) -> int:
    return len(re.findall(rf"\b{re.escape(name)}\b", text))


def detect_location_from_content(content: str) -> ContentLocation:
    """Find the most mentioned city and country in site content."""
    text = (content or "").lower()
    result = ContentLocation()
    if not text:
        return result

    city_counts = Counter()
    for city in CITY_COUNTRIES:
        count = _count_mentions(text, city)
        if count >= MIN_CONTENT_MENTIONS:
            city_counts[city] = count

    country_counts = Counter()
    for country in COUNTRY_ISO_CODES:
        count = _count_mentions(text, country)
        if count:
            country_counts[country.title()] += count

    for prefix, country in PHONE_PREFIXES.items():
        if prefix in text:
            country_counts[country] += MIN_CONTENT_MENTIONS
            result.signals.append(f"phone:{prefix}")

    if city_counts:
        city, count = city_counts.most_common(1)[0]
        result.city = city.title()
        country_counts[CITY_COUNTRIES[city]] += count
        result.signals.append(f"city:{result.city} ({count})")

    if country_counts:
        country, count = country_counts.most_common(1)[0]
        if count >= MIN_CONTENT_MENTIONS:
            result.country = country
            result.signals.append(f"country:{country} ({count})")

    # A city from another country than the winner is noise
    if result.city and result.country and CITY_COUNTRIES[result.city.lower()] != result.country:
        result.city = None

    return result


def parse_ai_location(ai_location: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split "Sydney, Australia" style strings into (city, country)."""
    if not ai_location:
        return None, None

    parts = [p.strip() for p in ai_location.split(",") if p.strip()]
    if not parts:
        return None, None

    country = normalize_country(parts[-1])
    city = parts[0] if len(parts) > 1 or country is None else None

    if country is None and city and city.lower() in CITY_COUNTRIES:
        country = CITY_COUNTRIES[city.lower()]
    return city, country


# =============================================================================
# RESOLUTION
# =============================================================================

def detect_geography(domain: str, content: str, ai_location: Optional[str] = None) -> GeoResult:
    """
    Resolve the business location from TLD, content and AI output.

    Args:
        domain: Business domain
        content: Combined crawled content
        ai_location: Location string from the content analyzer

    Returns:
        GeoResult with location, country and confidence
    """
    tld_country = extract_tld_country(domain)
    content_loc = detect_location_from_content(content)
    ai_city, ai_country = parse_ai_location(ai_location)

    signals: List[str] = []
    votes: List[Tuple[str, str]] = []
    if ai_country:
        votes.append(("ai", ai_country))
        signals.append(f"ai:{ai_location}")
    if content_loc.country:
        votes.append(("content", content_loc.country))
        signals.extend(f"content:{s}" for s in content_loc.signals)
    if tld_country:
        votes.append(("tld", tld_country))
        signals.append(f"tld:{tld_country}")

    if not votes:
        return GeoResult(
            location=ai_location or None,
            city=ai_city,
            tld_country=tld_country,
            confidence=GeoConfidence.LOW,
            signals=signals,
        )

    tally = Counter(country for _, country in votes)
    best_count = max(tally.values())
    # Ties resolve in vote order: AI, then content, then TLD
    country = next(c for _, c in votes if tally[c] == best_count)
    sources = {source for source, c in votes if c == country}

    if best_count >= 2:
        confidence = GeoConfidence.HIGH
    elif sources & {"ai", "content"}:
        confidence = GeoConfidence.MEDIUM
    else:
        confidence = GeoConfidence.LOW

    city = None
    if ai_city and ai_country == country:
        city = ai_city
    elif content_loc.city and content_loc.country == country:
        city = content_loc.city

    location = f"{city}, {country}" if city else country

    result = GeoResult(
        location=location,
        city=city,
        country=country,
        tld_country=tld_country,
        confidence=confidence,
        signals=signals,
    )
    logger.debug(f"Geography for {domain}: {location} ({confidence.value}) from {sorted(sources)}")
    return result
