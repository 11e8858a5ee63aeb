"""Business profile extraction and geography resolution."""

from .content import AnalysisError, BusinessAnalysis, ContentAnalyzer
from .geography import (
    GeoConfidence,
    GeoResult,
    country_to_iso_code,
    detect_geography,
    detect_location_from_content,
    extract_tld_country,
)

__all__ = [
    "AnalysisError",
    "BusinessAnalysis",
    "ContentAnalyzer",
    "GeoConfidence",
    "GeoResult",
    "country_to_iso_code",
    "detect_geography",
    "detect_location_from_content",
    "extract_tld_country",
]
