"""
Visibility Scoring

Turns mention counts into a 0-100 score per platform and a reach-weighted
overall score. Pure and deterministic: the same responses always produce
the same numbers.

    platform score = round(mentioned / total * 100)
    overall        = round(sum(score / 100 * weight) / sum(weight) * 100)

Error-flagged responses are counted separately and left out of the mention
rate. A platform with no answered queries scores 0 with has_data=False so the
report can show "no data" instead of a bad score.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

PLATFORM_ORDER = ["chatgpt", "claude", "gemini", "perplexity"]

# Estimated share of real-world AI assistant usage
REACH_WEIGHTS: Dict[str, float] = {
    "chatgpt": 10,
    "perplexity": 4,
    "gemini": 2,
    "claude": 1,
}


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class PlatformScore:
    """Mention rate for one platform."""
    score: int = 0
    mentioned: int = 0
    total: int = 0  # answered queries
    errors: int = 0

    @property
    def has_data(self) -> bool:
        return self.total > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "mentioned": self.mentioned,
            "total": self.total,
            "errors": self.errors,
            "has_data": self.has_data,
        }


@dataclass
class VisibilityScore:
    """Overall and per-platform visibility."""
    overall: int
    by_platform: Dict[str, PlatformScore]

    @property
    def total_mentions(self) -> int:
        return sum(p.mentioned for p in self.by_platform.values())

    @property
    def total_queries(self) -> int:
        return sum(p.total for p in self.by_platform.values())

    @property
    def query_coverage(self) -> float:
        """Percentage of all queries that mentioned the domain."""
        if not self.total_queries:
            return 0.0
        return self.total_mentions / self.total_queries * 100

    @property
    def total_errors(self) -> int:
        return sum(p.errors for p in self.by_platform.values())

    @property
    def platform_scores(self) -> Dict[str, Optional[int]]:
        """Score per platform, None where the platform has no data."""
        return {name: p.score if p.has_data else None for name, p in self.by_platform.items()}

    @property
    def platform_mentions(self) -> Dict[str, int]:
        return {name: p.mentioned for name, p in self.by_platform.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall,
            "by_platform": {name: p.to_dict() for name, p in self.by_platform.items()},
            "total_mentions": self.total_mentions,
            "total_queries": self.total_queries,
            "total_errors": self.total_errors,
        }


# ============================================================================
# SCORING
# ============================================================================

def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values."""
    return int(value + 0.5)


def _field(response: Any, name: str) -> Any:
    if isinstance(response, Mapping):
        return response.get(name)
    return getattr(response, name, None)


def calculate_visibility_score(
    responses: Iterable[Any],
    weights: Optional[Mapping[str, float]] = None,
) -> VisibilityScore:
    """
    Score a run's platform responses.

    Args:
        responses: Platform responses (dicts or objects with `platform`,
            `domain_mentioned` and optionally `error` / `error_message`).
            Error-flagged responses only add to the platform's error count.
        weights: Reach weight per platform (defaults to REACH_WEIGHTS)

    Returns:
        VisibilityScore with every weighted platform present
    """
    weights = dict(weights if weights is not None else REACH_WEIGHTS)

    stats: Dict[str, PlatformScore] = {}
    for platform in PLATFORM_ORDER:
        if platform in weights:
            stats[platform] = PlatformScore()
    for platform in weights:
        stats.setdefault(platform, PlatformScore())

    for response in responses:
        platform = _field(response, "platform")
        if platform is None:
            continue
        entry = stats.setdefault(platform, PlatformScore())
        if _field(response, "error") or _field(response, "error_message"):
            entry.errors += 1
            continue
        entry.total += 1
        if _field(response, "domain_mentioned"):
            entry.mentioned += 1

    for entry in stats.values():
        entry.score = round_half_up(entry.mentioned / entry.total * 100) if entry.total else 0

    max_reach = sum(weights.values())
    if max_reach <= 0:
        overall = 0
    else:
        weighted = sum(stats[p].score / 100 * w for p, w in weights.items())
        overall = round_half_up(weighted / max_reach * 100)

    return VisibilityScore(overall=overall, by_platform=stats)
