"""
Action Plan Generator

Turns everything a scan and its enrichment learned about a site into a
prioritized, page-specific improvement plan using Claude with extended
thinking.

Input:  business profile, crawled pages, platform responses, scores,
        brand awareness results, competitive summary, completed titles
Output: executive summary, priority actions, page edits, content
        priorities, keyword map, key takeaways
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..analyzer.content import BusinessAnalysis
from ..scoring.visibility import PLATFORM_ORDER
from ..utils.parsing import parse_model_json, string_list
from .brand_awareness import BrandAwarenessResult
from .competitive import CompetitiveSummary
from .titles import filter_completed

logger = logging.getLogger(__name__)

VALID_EFFORTS = ("low", "medium", "high")
VALID_CATEGORIES = ("content", "technical", "schema", "citations", "local")

THIN_CONTENT_WORDS = 300
MAX_MISSED_QUERIES = 10


class ActionPlanError(Exception):
    """Raised when the plan could not be generated."""


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class PriorityAction:
    rank: int
    title: str
    description: str = ""
    rationale: str = ""
    effort: str = "medium"
    impact: int = 2            # 1-3 stars
    consensus: List[str] = field(default_factory=list)
    target_page: Optional[str] = None
    category: str = "content"
    implementation_steps: List[str] = field(default_factory=list)
    expected_outcome: str = ""
    target_keywords: List[str] = field(default_factory=list)

    @property
    def priority(self) -> str:
        if self.effort == "low" and self.impact >= 2:
            return "quick_win"
        if self.effort == "high":
            return "backlog"
        return "strategic"

    @property
    def estimated_impact(self) -> str:
        return {3: "high", 2: "medium"}.get(self.impact, "low")

    def to_item_row(self) -> Dict[str, Any]:
        """Column values for an action_items row."""
        return {
            "title": self.title,
            "description": self.description,
            "rationale": self.rationale,
            "priority": self.priority,
            "category": self.category,
            "estimated_impact": self.estimated_impact,
            "estimated_effort": self.effort,
            "target_page": self.target_page,
            "target_keywords": self.target_keywords,
            "consensus": self.consensus,
            "implementation_steps": self.implementation_steps,
            "expected_outcome": self.expected_outcome,
            "status": "pending",
        }


@dataclass
class GeneratedActionPlan:
    executive_summary: str
    priority_actions: List[PriorityAction] = field(default_factory=list)
    page_edits: List[Dict[str, Any]] = field(default_factory=list)
    content_priorities: List[Dict[str, Any]] = field(default_factory=list)
    keyword_map: List[Dict[str, Any]] = field(default_factory=list)
    key_takeaways: List[str] = field(default_factory=list)

    def plan_row(self, actions: Optional[List[PriorityAction]] = None) -> Dict[str, Any]:
        """Column values for the action_plans row, counted over the kept actions."""
        actions = self.priority_actions if actions is None else actions
        return {
            "executive_summary": self.executive_summary,
            "page_edits": self.page_edits,
            "content_priorities": self.content_priorities,
            "keyword_map": self.keyword_map,
            "key_takeaways": self.key_takeaways,
            "total_actions": len(actions),
            "quick_wins_count": sum(1 for a in actions if a.priority == "quick_win"),
            "strategic_count": sum(1 for a in actions if a.priority == "strategic"),
            "backlog_count": sum(1 for a in actions if a.priority == "backlog"),
        }

    def actions_excluding(self, completed_titles: List[str]) -> List[PriorityAction]:
        """Priority actions minus anything matching a previously completed title."""
        return filter_completed(self.priority_actions, completed_titles)


@dataclass
class ActionPlanInput:
    analysis: BusinessAnalysis
    domain: str
    crawled_pages: List[Dict[str, Any]] = field(default_factory=list)
    crawl_data: Dict[str, Any] = field(default_factory=dict)
    responses: List[Dict[str, Any]] = field(default_factory=list)
    brand_awareness: List[BrandAwarenessResult] = field(default_factory=list)
    competitive_summary: Optional[CompetitiveSummary] = None
    overall_score: int = 0
    platform_scores: Dict[str, Dict[str, int]] = field(default_factory=dict)
    completed_action_titles: List[str] = field(default_factory=list)


# =============================================================================
# PROMPT CONSTRUCTION
# =============================================================================

SYSTEM_PROMPT = """You are an expert AI Search Optimization (GEO) consultant with deep expertise in helping businesses improve their visibility in AI assistants like ChatGPT, Claude, Perplexity, and Gemini.

Your task is to analyze a website's scan data and generate a comprehensive, actionable improvement plan.

CRITICAL RULES:
1. ONLY recommend actions for DETECTED issues - never hypothetical problems
2. Every action must reference SPECIFIC pages, elements, or findings from the data
3. Actions must be immediately implementable - include exact copy, code snippets, or clear instructions
4. Prioritize by IMPACT (what will move the needle most) then EFFORT (quick wins first)
5. "consensus" = which AI platforms' data supports this recommendation
6. Format output as valid JSON matching the schema exactly

IMPACT SCORING:
- 3: High impact - directly addresses visibility gaps, affects multiple platforms
- 2: Medium impact - improves discoverability for specific queries
- 1: Lower impact - nice to have, improves overall quality

EFFORT SCORING:
- low: Can be done in < 30 minutes (meta tags, small content additions)
- medium: 1-4 hours of work (new content sections, schema implementation)
- high: Full day or more (new pages, major restructuring)

CATEGORY DEFINITIONS:
- content: Text content additions or improvements
- technical: Technical SEO (sitemap, robots.txt, page speed)
- schema: Structured data / JSON-LD markup
- citations: Getting mentioned in authoritative sources
- local: Geographic/location-based optimizations"""

RESPONSE_SCHEMA = """{
  "executiveSummary": "2-3 sentence summary of current state and top opportunity",
  "priorityActions": [
    {
      "rank": 1,
      "title": "Specific action title",
      "description": "Detailed description of what to do",
      "rationale": "Why this matters - reference specific data",
      "effort": "low|medium|high",
      "impact": 1,
      "consensus": ["chatgpt", "claude"],
      "targetPage": "/specific-page or null",
      "category": "content|technical|schema|citations|local",
      "implementationSteps": ["Step 1", "Step 2"],
      "expectedOutcome": "What improvement this will drive",
      "targetKeywords": ["keyword1", "keyword2"]
    }
  ],
  "pageEdits": [
    {"page": "/page-path", "metaTitle": "or null", "metaDescription": "or null", "h1Change": "keep or new H1 text", "contentToAdd": "or null"}
  ],
  "contentPriorities": [
    {"title": "New content piece", "effort": "low|medium|high", "targetQuestion": "The AI query this addresses", "suggestedUrl": "/path", "keySections": ["Section 1"]}
  ],
  "keywordMap": [
    {"keyword": "keyword phrase", "bestPage": "/page-path", "whereToAdd": "e.g. H2 heading", "priority": "high|medium|low"}
  ],
  "keyTakeaways": ["Takeaway with data point"]
}"""


def _competitor_names(items: Any) -> List[str]:
    names = []
    for item in items or []:
        name = item.get("name") if isinstance(item, dict) else item
        if name:
            names.append(str(name))
    return names


def build_page_analysis(pages: List[Dict[str, Any]]) -> str:
    if not pages:
        return "No pages crawled."

    blocks = []
    for page in pages:
        issues = []
        if not page.get("title"):
            issues.append("MISSING TITLE")
        if not page.get("h1"):
            issues.append("MISSING H1")
        if not page.get("has_meta_description"):
            issues.append("MISSING META DESCRIPTION")
        word_count = page.get("word_count") or 0
        if word_count < THIN_CONTENT_WORDS:
            issues.append(f"THIN CONTENT ({word_count} words)")
        schema_types = page.get("schema_types") or []
        if not schema_types:
            issues.append("NO SCHEMA MARKUP")

        issue_str = f" [ISSUES: {', '.join(issues)}]" if issues else ""
        meta = page.get("meta_description") or ""
        meta_str = (meta[:100] + ("..." if len(meta) > 100 else "")) if meta else "(missing)"
        headings = page.get("headings") or []
        heading_str = " | ".join(headings[:5]) or "none"
        if len(headings) > 5:
            heading_str += f" (+{len(headings) - 5} more)"

        blocks.append(
            f"PAGE: {page.get('path') or page.get('url')}{issue_str}\n"
            f"  Title: {page.get('title') or '(missing)'}\n"
            f"  H1: {page.get('h1') or '(missing)'}\n"
            f"  Meta: {meta_str}\n"
            f"  Words: {word_count}\n"
            f"  Schema: {', '.join(schema_types) if schema_types else 'none'}\n"
            f"  Headings: {heading_str}"
        )
    return "\n\n".join(blocks)


def build_visibility_analysis(
    responses: List[Dict[str, Any]],
    overall_score: int,
    platform_scores: Dict[str, Dict[str, int]],
) -> str:
    lines = [f"OVERALL SCORE: {overall_score}%", ""]

    for platform in PLATFORM_ORDER:
        entry = platform_scores.get(platform)
        if not entry:
            continue
        total = entry.get("total", 0)
        mentioned = entry.get("mentioned", 0)
        pct = int(mentioned / total * 100 + 0.5) if total else 0
        lines.append(f"{platform.upper()}: {pct}% ({mentioned}/{total} queries)")

    missed = [r for r in responses if not r.get("domain_mentioned") and not r.get("error")]
    if missed:
        lines.append("")
        lines.append("MISSED QUERIES:")
        for response in missed[:MAX_MISSED_QUERIES]:
            competitors = ", ".join(_competitor_names(response.get("competitors_mentioned"))[:3])
            suffix = f" - competitors: {competitors}" if competitors else ""
            lines.append(f'- "{response.get("prompt_text", "")}" ({response.get("platform")}){suffix}')

    return "\n".join(lines)


def build_competitive_analysis(
    brand_awareness: List[BrandAwarenessResult],
    summary: Optional[CompetitiveSummary],
) -> str:
    parts = []

    if summary:
        parts.append(
            "COMPETITIVE POSITION:\n"
            f"Overall: {summary.overall_position}\n\n"
            f"Strengths: {'; '.join(summary.strengths)}\n"
            f"Weaknesses: {'; '.join(summary.weaknesses)}\n"
            f"Opportunities: {'; '.join(summary.opportunities)}"
        )

    unrecognized = [
        r.platform for r in brand_awareness
        if r.query_type == "brand_recall" and not r.entity_recognized
    ]
    if unrecognized:
        parts.append(f"BRAND NOT RECOGNIZED BY: {', '.join(unrecognized)}")

    unknown_services = [
        f'"{r.tested_attribute}" (unknown to {r.platform})'
        for r in brand_awareness
        if r.query_type == "service_check" and r.tested_attribute and not r.attribute_mentioned
    ]
    if unknown_services:
        parts.append("SERVICE KNOWLEDGE GAPS:\n" + "\n".join(unknown_services))

    return "\n\n".join(parts) or "No brand awareness data."


def build_user_prompt(data: ActionPlanInput) -> str:
    analysis = data.analysis
    crawl = data.crawl_data
    business_name = analysis.business_name or data.domain
    schema_types = crawl.get("schema_types") or []

    completed_section = ""
    if data.completed_action_titles:
        titles = "\n".join(f"- {t}" for t in data.completed_action_titles)
        completed_section = (
            "\n## PREVIOUSLY COMPLETED ACTIONS\n\n"
            "The user has already completed these actions from previous scans. "
            f"DO NOT suggest similar actions again:\n{titles}\n"
        )

    return f"""## BUSINESS PROFILE

Name: {business_name}
Domain: {data.domain}
Type: {analysis.business_type}
Industry: {analysis.industry}
Location: {analysis.location or 'Not specified'}
Services: {', '.join(analysis.services) or 'None detected'}
Key Phrases: {', '.join(analysis.key_phrases) or 'None detected'}

## TECHNICAL READINESS

- Sitemap: {'Present' if crawl.get('has_sitemap') else 'MISSING'}
- Robots.txt: {'Present' if crawl.get('has_robots_txt') else 'MISSING'}
- Pages Crawled: {crawl.get('pages_crawled', len(data.crawled_pages))}
- Meta Descriptions: {'Some present' if crawl.get('has_meta_descriptions') else 'MISSING on all pages'}
- Schema Types Found: {', '.join(schema_types) if schema_types else 'NONE'}

## PAGE-BY-PAGE ANALYSIS

{build_page_analysis(data.crawled_pages)}

## AI VISIBILITY DATA

{build_visibility_analysis(data.responses, data.overall_score, data.platform_scores)}

## COMPETITIVE INTELLIGENCE

{build_competitive_analysis(data.brand_awareness, data.competitive_summary)}
{completed_section}
---

Based on the above data, generate a comprehensive action plan. You MUST respond with ONLY valid JSON matching this exact structure:

{RESPONSE_SCHEMA}

Generate 10-15 priority actions, 3-5 page edits, 3-5 content priorities, 8-12 keyword map entries, and 3-5 key takeaways."""


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def normalize_effort(value: Any) -> str:
    return value if value in VALID_EFFORTS else "medium"


def normalize_impact(value: Any) -> int:
    if isinstance(value, bool):
        return 2
    if isinstance(value, (int, float)):
        return min(3, max(1, int(value + 0.5)))
    return 2


def normalize_category(value: Any) -> str:
    return value if value in VALID_CATEGORIES else "content"


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []


def parse_action_plan(text: str) -> GeneratedActionPlan:
    """
    Parse Claude's JSON into a GeneratedActionPlan.

    Raises:
        ActionPlanError: no JSON object could be recovered
    """
    parsed = parse_model_json(text)
    if parsed is None:
        raise ActionPlanError("Action plan response was not valid JSON")

    actions = []
    for index, raw in enumerate(_dict_list(parsed.get("priorityActions"))):
        actions.append(PriorityAction(
            rank=raw.get("rank") if isinstance(raw.get("rank"), int) else index + 1,
            title=str(raw.get("title") or "Untitled Action"),
            description=str(raw.get("description") or ""),
            rationale=str(raw.get("rationale") or ""),
            effort=normalize_effort(raw.get("effort")),
            impact=normalize_impact(raw.get("impact")),
            consensus=string_list(raw.get("consensus")),
            target_page=raw.get("targetPage") or None,
            category=normalize_category(raw.get("category")),
            implementation_steps=string_list(raw.get("implementationSteps")),
            expected_outcome=str(raw.get("expectedOutcome") or ""),
            target_keywords=string_list(raw.get("targetKeywords")),
        ))

    return GeneratedActionPlan(
        executive_summary=str(
            parsed.get("executiveSummary") or "Action plan generated - see priority actions below."
        ),
        priority_actions=actions,
        page_edits=_dict_list(parsed.get("pageEdits")),
        content_priorities=_dict_list(parsed.get("contentPriorities")),
        keyword_map=_dict_list(parsed.get("keywordMap")),
        key_takeaways=string_list(parsed.get("keyTakeaways")),
    )


# =============================================================================
# GENERATOR
# =============================================================================

class ActionPlanGenerator:
    """Claude-backed action plan generation."""

    def __init__(self, client, max_tokens: int = 16000, thinking_budget: Optional[int] = 10000):
        self.client = client
        self.max_tokens = max_tokens
        self.thinking_budget = thinking_budget

    async def generate(self, data: ActionPlanInput) -> GeneratedActionPlan:
        """
        Raises:
            ActionPlanError: the Claude call failed or returned unusable output
        """
        prompt = build_user_prompt(data)
        if data.completed_action_titles:
            logger.info(f"Excluding {len(data.completed_action_titles)} previously completed actions")
        logger.info(f"Action plan prompt: ~{len(prompt) // 4} tokens input")

        start = time.monotonic()
        response = await self.client.analyze(
            prompt,
            system=SYSTEM_PROMPT,
            max_tokens=self.max_tokens,
            thinking_budget=self.thinking_budget,
        )
        if not response.success:
            raise ActionPlanError(response.error or "Action plan generation failed")

        plan = parse_action_plan(response.content)
        logger.info(
            f"Action plan generated in {time.monotonic() - start:.1f}s: "
            f"{len(plan.priority_actions)} actions, {len(plan.page_edits)} page edits"
        )
        return plan
