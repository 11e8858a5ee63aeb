"""
Competitor ranking and the report summary sentence.
"""

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .visibility import VisibilityScore

PLATFORM_NAMES = {
    "chatgpt": "ChatGPT",
    "claude": "Claude",
    "gemini": "Gemini",
    "perplexity": "Perplexity",
}


def normalize_competitor_name(name: str) -> str:
    """Case and whitespace-insensitive key for a competitor name."""
    return re.sub(r"\s+", " ", name).strip().lower()


def _competitor_names(response: Any) -> List[str]:
    if isinstance(response, Mapping):
        items = response.get("competitors_mentioned", response.get("competitors"))
    else:
        items = getattr(response, "competitors_mentioned", None)
        if items is None:
            items = getattr(response, "competitors", None)

    names = []
    for item in items or []:
        name = item.get("name") if isinstance(item, Mapping) else item
        if isinstance(name, str) and name.strip():
            names.append(name)
    return names


def extract_top_competitors(responses: Iterable[Any], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Rank competitors by how many responses named them.

    Names are merged case and whitespace-insensitively; the first spelling
    seen is the one reported. Equal counts keep first-seen order.

    Returns:
        [{"name": str, "count": int}, ...] most frequent first
    """
    counts: Dict[str, int] = {}
    display: Dict[str, str] = {}

    for response in responses:
        for name in _competitor_names(response):
            key = normalize_competitor_name(name)
            if key not in counts:
                counts[key] = 0
                display[key] = re.sub(r"\s+", " ", name).strip()
            counts[key] += 1

    # dicts keep insertion order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    result = [{"name": display[key], "count": count} for key, count in ranked]
    return result[:limit] if limit is not None else result


def describe_score(score: int) -> str:
    if score >= 70:
        return "strong"
    if score >= 40:
        return "moderate"
    if score >= 20:
        return "low"
    return "very low"


def _join_names(names: List[str]) -> str:
    if len(names) <= 1:
        return "".join(names)
    if len(names) == 2:
        return f"{names[0]} and {names[1]}"
    return f"{', '.join(names[:-1])}, and {names[-1]}"


def generate_summary(
    business_name: Optional[str],
    domain: str,
    scores: VisibilityScore,
    top_competitors: List[Dict[str, Any]],
) -> str:
    """Human-readable one-paragraph summary for the report."""
    name = business_name or domain

    platforms = [
        PLATFORM_NAMES.get(platform, platform)
        for platform, entry in scores.by_platform.items()
        if entry.has_data
    ]

    summary = (
        f"{name} has {describe_score(scores.overall)} AI visibility with an overall "
        f"score of {scores.overall}%. "
    )
    summary += f"The site was mentioned in {scores.total_mentions} out of {scores.total_queries} AI queries"
    summary += f" across {_join_names(platforms)}. " if platforms else ". "

    if top_competitors:
        top_three = [c["name"] for c in top_competitors[:3]]
        summary += f"Top competitors mentioned by AI include: {', '.join(top_three)}. "

    if scores.overall < 50:
        summary += (
            "There is significant opportunity to improve AI visibility through content "
            "optimization and structured data."
        )

    return summary.strip()
