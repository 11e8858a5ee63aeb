"""Customer-style queries against AI platforms."""

from .engine import (
    PLATFORMS,
    SYSTEM_PROMPT,
    PlatformQueryEngine,
    PlatformResult,
    check_domain_mention,
    extract_competitors,
    filter_competitor_names,
    generate_spaced_versions,
)

__all__ = [
    "PLATFORMS",
    "SYSTEM_PROMPT",
    "PlatformQueryEngine",
    "PlatformResult",
    "check_domain_mention",
    "extract_competitors",
    "filter_competitor_names",
    "generate_spaced_versions",
]
