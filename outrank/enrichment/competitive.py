"""
Competitive intelligence summary from competitor-comparison probes.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..utils.parsing import parse_model_json, string_list
from .brand_awareness import BrandAwarenessResult

logger = logging.getLogger(__name__)

SUMMARY_MAX_TOKENS = 1000


@dataclass
class CompetitiveSummary:
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    opportunities: List[str] = field(default_factory=list)
    overall_position: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["CompetitiveSummary"]:
        if not data:
            return None
        return cls(
            strengths=string_list(data.get("strengths")),
            weaknesses=string_list(data.get("weaknesses")),
            opportunities=string_list(data.get("opportunities")),
            overall_position=str(data.get("overall_position") or data.get("overallPosition") or ""),
        )


def build_summary_prompt(results: List[BrandAwarenessResult], brand_name: str) -> Optional[str]:
    """None when there are no competitor comparisons to summarize."""
    comparisons = [r for r in results if r.query_type == "competitor_compare"]
    if not comparisons:
        return None

    by_competitor: Dict[str, List[BrandAwarenessResult]] = {}
    for result in comparisons:
        by_competitor.setdefault(result.compared_to or "Unknown", []).append(result)

    sections = []
    for competitor, responses in by_competitor.items():
        answers = "\n\n".join(f"### {r.platform.upper()}\n{r.response_text}" for r in responses)
        sections.append(f"## vs. {competitor}\n{answers}")

    joined = "\n\n---\n\n".join(sections)
    return f"""You are analyzing competitive intelligence for "{brand_name}".

Below are AI assistant responses comparing {brand_name} to various competitors. Your task is to synthesize these into a clear competitive summary.

{joined}

---

Based on ALL the above comparisons across ALL platforms, provide a competitive intelligence summary in the following JSON format:

{{
  "strengths": ["What {brand_name} does well", "Another perceived advantage"],
  "weaknesses": ["Area where competitors have an advantage"],
  "opportunities": ["Actionable way to improve positioning"],
  "overallPosition": "A 1-2 sentence summary of {brand_name}'s overall competitive position in the AI landscape"
}}

Important:
- Base your analysis ONLY on what the AI responses actually say
- Be specific and actionable
- Include 2-4 items per category
- Focus on perception, not reality (what AI thinks, not what's true)
- Respond ONLY with the JSON, no additional text"""


async def generate_competitive_summary(
    client,
    results: List[BrandAwarenessResult],
    brand_name: str,
) -> Optional[CompetitiveSummary]:
    """
    Synthesize strengths, weaknesses and opportunities with Claude.

    Args:
        client: ClaudeClient (anything with an async analyze())
        results: brand awareness results for the run
        brand_name: business name, or the domain when unknown

    Returns:
        CompetitiveSummary, or None when there is nothing to compare or the
        call fails
    """
    prompt = build_summary_prompt(results, brand_name)
    if prompt is None:
        return None

    response = await client.analyze(prompt, max_tokens=SUMMARY_MAX_TOKENS)
    if not response.success:
        logger.error(f"Competitive summary failed: {response.error}")
        return None

    parsed = parse_model_json(response.content)
    if parsed is None:
        logger.error("Competitive summary response was not valid JSON")
        return None

    return CompetitiveSummary.from_dict(parsed)
