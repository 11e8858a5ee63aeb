"""
Title normalization shared by the generator exclusion lists and the
post-generation filter for action items and PRD tasks.
"""

import re
from typing import Any, Callable, Iterable, List, TypeVar

T = TypeVar("T")

NON_ALNUM = re.compile(r"[^a-z0-9]")
MAX_KEY_LENGTH = 50


def normalize_title(title: str) -> str:
    """"Add FAQ schema to homepage!" -> "addfaqschematohomepage"."""
    return NON_ALNUM.sub("", (title or "").lower())[:MAX_KEY_LENGTH]


def filter_completed(
    items: Iterable[T],
    completed_titles: Iterable[str],
    title_of: Callable[[T], str] = lambda item: item.title,
) -> List[T]:
    """Drop items whose normalized title matches a completed one, and repeats."""
    seen = {normalize_title(t) for t in completed_titles}
    kept = []
    for item in items:
        key = normalize_title(title_of(item))
        if key in seen:
            continue
        seen.add(key)
        kept.append(item)
    return kept


def dedupe_titles(titles: Iterable[Any]) -> List[str]:
    """Unique non-empty titles, first spelling kept."""
    seen = set()
    unique = []
    for title in titles:
        if not title:
            continue
        key = normalize_title(str(title))
        if key in seen:
            continue
        seen.add(key)
        unique.append(str(title))
    return unique
