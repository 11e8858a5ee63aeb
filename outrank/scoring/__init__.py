"""Visibility scoring and competitor ranking."""

from .competitors import (
    describe_score,
    extract_top_competitors,
    generate_summary,
    normalize_competitor_name,
)
from .visibility import (
    PLATFORM_ORDER,
    REACH_WEIGHTS,
    PlatformScore,
    VisibilityScore,
    calculate_visibility_score,
    round_half_up,
)

__all__ = [
    "PLATFORM_ORDER",
    "REACH_WEIGHTS",
    "PlatformScore",
    "VisibilityScore",
    "calculate_visibility_score",
    "describe_score",
    "extract_top_competitors",
    "generate_summary",
    "normalize_competitor_name",
    "round_half_up",
]
