"""
Helpers for pulling JSON out of free-form model output.
"""

import json
import re
from typing import Any, Dict, List, Optional

OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the outermost {...} block parsed as a dict, or None."""
    match = OBJECT_PATTERN.search(text or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_array(text: str) -> Optional[List[Any]]:
    """Return the outermost [...] block parsed as a list, or None."""
    match = ARRAY_PATTERN.search(text or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, list) else None


def string_list(value: Any, limit: Optional[int] = None) -> List[str]:
    """Coerce a model-provided list to a list of non-empty strings."""
    if not isinstance(value, list):
        return []
    items = [str(v).strip() for v in value if v is not None and str(v).strip()]
    return items[:limit] if limit is not None else items


FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
TRAILING_COMMA_PATTERN = re.compile(r",\s*([}\]])")
STRING_LITERAL_PATTERN = re.compile(r'"([^"\\]*(\\.[^"\\]*)*)"')


def parse_model_json(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse a JSON object from long model output.

    Handles markdown fences, prose around the object, trailing commas and
    raw newlines inside string values. Returns None when nothing parses.
    """
    candidate = (text or "").strip()

    fenced = FENCE_PATTERN.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    first, last = candidate.find("{"), candidate.rfind("}")
    if first == -1 or last <= first:
        return None
    candidate = TRAILING_COMMA_PATTERN.sub(r"\1", candidate[first:last + 1])

    def relaxed(raw: str) -> str:
        return STRING_LITERAL_PATTERN.sub(
            lambda m: m.group(0).replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t"),
            raw,
        )

    for attempt in (candidate, relaxed(candidate)):
        try:
            parsed = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None
