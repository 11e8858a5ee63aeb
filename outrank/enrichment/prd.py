"""
PRD Generator

Converts an action plan into a developer-facing PRD: self-contained tasks
with acceptance criteria, file paths, code snippets and, where copy has to
be written first, content prompts. Tasks are grouped into quick_wins,
strategic and backlog sections.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..utils.parsing import parse_model_json, string_list
from .titles import filter_completed

logger = logging.getLogger(__name__)

VALID_SECTIONS = ("quick_wins", "strategic", "backlog")
DEFAULT_TECH_STACK = ["Next.js", "React", "TypeScript"]
DEFAULT_GOALS = ["Improve AI visibility", "Implement structured data", "Optimize content for AI discovery"]


class PrdError(Exception):
    """Raised when the PRD could not be generated."""


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class SiteContext:
    domain: str
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    services: List[str] = field(default_factory=list)
    tech_stack: Optional[List[str]] = None


@dataclass
class PrdTaskSpec:
    title: str
    description: str = ""
    acceptance_criteria: List[str] = field(default_factory=list)
    section: str = "strategic"
    category: str = "technical"
    priority: int = 0
    estimated_hours: Optional[float] = None
    file_paths: List[str] = field(default_factory=list)
    code_snippets: Dict[str, str] = field(default_factory=dict)
    prompt_context: Optional[str] = None
    implementation_notes: Optional[str] = None
    requires_content: bool = False
    content_prompts: List[Dict[str, Any]] = field(default_factory=list)

    def to_row(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "acceptance_criteria": self.acceptance_criteria,
            "section": self.section,
            "category": self.category,
            "priority": self.priority,
            "estimated_hours": self.estimated_hours,
            "file_paths": self.file_paths,
            "code_snippets": self.code_snippets,
            "prompt_context": self.prompt_context,
            "implementation_notes": self.implementation_notes,
            "requires_content": self.requires_content,
            "content_prompts": self.content_prompts,
            "status": "pending",
        }


@dataclass
class GeneratedPrd:
    title: str
    overview: str
    goals: List[str] = field(default_factory=list)
    tech_stack: List[str] = field(default_factory=list)
    target_platforms: List[str] = field(default_factory=list)
    tasks: List[PrdTaskSpec] = field(default_factory=list)

    def document_row(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "overview": self.overview,
            "goals": self.goals,
            "tech_stack": self.tech_stack,
            "target_platforms": self.target_platforms,
        }

    def tasks_excluding(self, completed_titles: List[str]) -> List[PrdTaskSpec]:
        """Tasks minus completed titles and duplicate titles."""
        return filter_completed(self.tasks, completed_titles)


# =============================================================================
# PROMPT CONSTRUCTION
# =============================================================================

SYSTEM_PROMPT = """You are a senior technical product manager creating a Product Requirements Document (PRD) for AI coding assistants.

Your task is to transform action plan items into detailed, implementable PRD tasks that developers can paste directly into their AI coding tools.

CRITICAL RULES:
1. Each task must be SELF-CONTAINED - include all context needed for implementation
2. Write in imperative voice: "Add schema markup to..." not "Should add..."
3. Include SPECIFIC file paths based on common framework conventions
4. Provide CODE SNIPPETS where applicable (JSON-LD, meta tags, component examples)
5. Acceptance criteria must be TESTABLE with clear pass/fail conditions
6. Format output as valid JSON matching the schema exactly
7. SEPARATE CODE FROM CONTENT: when a task needs copy that a human must write (case studies, testimonials, FAQ answers, long service descriptions), set "requiresContent": true and add "contentPrompts" with type, prompt, usedIn and wordCount

TASK SECTIONS:
- quick_wins: Low effort (1-4 hours), high impact tasks
- strategic: Medium effort (4-16 hours), significant impact tasks
- backlog: Higher effort (16+ hours) or lower priority tasks

CODE SNIPPETS:
- Use descriptive filenames as keys
- NEVER truncate code; split long snippets into several files instead
- Use clear placeholder comments for content areas

For service-based businesses, include an FAQ schema task (quick_wins, requires content for the answers) and, when the business has a physical location, a LocalBusiness schema task, unless the action plan shows they already exist."""


def _action_block(index: int, action: Dict[str, Any]) -> str:
    lines = [f"{index}. [{str(action.get('priority') or 'strategic').upper()}] {action.get('title')}"]
    lines.append(f"   Description: {action.get('description') or ''}")
    if action.get("target_page"):
        lines.append(f"   Target page: {action['target_page']}")
    if action.get("implementation_steps"):
        lines.append(f"   Steps: {' -> '.join(action['implementation_steps'])}")
    if action.get("expected_outcome"):
        lines.append(f"   Expected outcome: {action['expected_outcome']}")
    if action.get("consensus"):
        lines.append(f"   (Supported by: {', '.join(action['consensus'])})")
    return "\n".join(lines)


def build_user_prompt(
    plan: Dict[str, Any],
    actions: List[Dict[str, Any]],
    site: SiteContext,
    completed_titles: Optional[List[str]] = None,
) -> str:
    business_name = site.business_name or site.domain
    actions_summary = "\n\n".join(_action_block(i, a) for i, a in enumerate(actions, start=1))

    page_edits = ""
    if plan.get("page_edits"):
        edits = []
        for edit in plan["page_edits"]:
            parts = [f"- {edit.get('page')}:"]
            if edit.get("metaTitle"):
                parts.append(f'  Title: "{edit["metaTitle"]}"')
            if edit.get("metaDescription"):
                parts.append(f'  Description: "{edit["metaDescription"]}"')
            if edit.get("h1Change") and edit.get("h1Change") != "keep":
                parts.append(f'  H1: "{edit["h1Change"]}"')
            if edit.get("contentToAdd"):
                parts.append(f"  Add content: {str(edit['contentToAdd'])[:200]}...")
            edits.append("\n".join(parts))
        page_edits = "\n\n## SUGGESTED PAGE EDITS\n" + "\n".join(edits)

    keywords = ""
    if plan.get("keyword_map"):
        entries = [
            f'- "{k.get("keyword")}" -> {k.get("bestPage")} ({k.get("whereToAdd")})'
            for k in plan["keyword_map"][:10]
        ]
        keywords = "\n\n## KEYWORD TARGETS\n" + "\n".join(entries)

    completed = ""
    if completed_titles:
        completed = (
            "\n\n## PREVIOUSLY COMPLETED TASKS - DO NOT REGENERATE\n"
            "The following tasks have already been completed by the user in previous scans. "
            "Do NOT generate tasks that are similar to these:\n"
            + "\n".join(f"- {t}" for t in completed_titles)
        )

    tech_stack = ", ".join(site.tech_stack or DEFAULT_TECH_STACK)
    services = ", ".join(site.services) or "Various services"
    summary = plan.get("executive_summary") or "Improve AI visibility through technical and content optimizations."

    return f"""## BUSINESS CONTEXT
Business: {business_name}
Domain: {site.domain}
Type: {site.business_type or 'Website'}
Tech Stack: {tech_stack}
Services: {services}

## EXECUTIVE SUMMARY
{summary}

## ACTION ITEMS TO CONVERT TO PRD TASKS
{actions_summary}
{page_edits}
{keywords}
{completed}

---

Based on the above action plan, generate a comprehensive PRD document. You MUST respond with ONLY valid JSON matching this exact structure:

{{
  "title": "AI Visibility PRD: {business_name}",
  "overview": "2-3 sentence summary of what this PRD accomplishes",
  "goals": ["Goal 1 with measurable outcome", "Goal 2"],
  "techStack": ["Next.js", "React", "TypeScript"],
  "targetPlatforms": ["Web"],
  "tasks": [
    {{
      "title": "Specific task title",
      "description": "What to implement, explaining the problem and solution.",
      "acceptanceCriteria": ["Testable criterion 1", "Testable criterion 2"],
      "section": "quick_wins|strategic|backlog",
      "category": "technical|content|schema|seo",
      "priority": 1,
      "estimatedHours": 2,
      "filePaths": ["src/components/SEO.tsx"],
      "codeSnippets": {{"schema.tsx": "complete code"}},
      "promptContext": "Instruction for an AI coding assistant",
      "implementationNotes": "Key considerations",
      "requiresContent": false,
      "contentPrompts": null
    }}
  ]
}}

Generate 8-15 tasks total, covering the most impactful items from the action plan. Prioritize quick wins first, then strategic items."""


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def normalize_section(value: Any) -> str:
    return value if value in VALID_SECTIONS else "strategic"


def parse_prd(text: str, site: SiteContext) -> GeneratedPrd:
    """
    Raises:
        PrdError: no JSON object could be recovered
    """
    parsed = parse_model_json(text)
    if parsed is None:
        logger.error(f"PRD response was not valid JSON ({len(text or '')} chars): {(text or '')[:500]}")
        raise PrdError("PRD JSON parsing failed")

    business_name = site.business_name or site.domain
    tasks = []
    raw_tasks = parsed.get("tasks") if isinstance(parsed.get("tasks"), list) else []
    for index, raw in enumerate(t for t in raw_tasks if isinstance(t, dict)):
        hours = raw.get("estimatedHours")
        snippets = raw.get("codeSnippets")
        prompts = raw.get("contentPrompts")
        tasks.append(PrdTaskSpec(
            title=str(raw.get("title") or "Untitled Task"),
            description=str(raw.get("description") or ""),
            acceptance_criteria=string_list(raw.get("acceptanceCriteria")),
            section=normalize_section(raw.get("section")),
            category=str(raw.get("category") or "technical"),
            priority=raw["priority"] if isinstance(raw.get("priority"), int) else index + 1,
            estimated_hours=float(hours) if isinstance(hours, (int, float)) and not isinstance(hours, bool) else None,
            file_paths=string_list(raw.get("filePaths")),
            code_snippets={str(k): str(v) for k, v in snippets.items()} if isinstance(snippets, dict) else {},
            prompt_context=raw.get("promptContext") or None,
            implementation_notes=raw.get("implementationNotes") or None,
            requires_content=raw.get("requiresContent") is True,
            content_prompts=[p for p in prompts if isinstance(p, dict)] if isinstance(prompts, list) else [],
        ))

    return GeneratedPrd(
        title=str(parsed.get("title") or f"AI Visibility PRD: {business_name}"),
        overview=str(parsed.get("overview") or "Technical implementation plan to improve AI assistant visibility."),
        goals=string_list(parsed.get("goals")) if isinstance(parsed.get("goals"), list) else list(DEFAULT_GOALS),
        tech_stack=(
            string_list(parsed.get("techStack"))
            if isinstance(parsed.get("techStack"), list)
            else list(site.tech_stack or DEFAULT_TECH_STACK)
        ),
        target_platforms=string_list(parsed.get("targetPlatforms")) or ["Web"],
        tasks=tasks,
    )


# =============================================================================
# GENERATOR
# =============================================================================

class PrdGenerator:
    """Claude-backed PRD generation."""

    def __init__(self, client, max_tokens: int = 24000, thinking_budget: Optional[int] = 10000):
        self.client = client
        self.max_tokens = max_tokens
        self.thinking_budget = thinking_budget

    async def generate(
        self,
        plan: Dict[str, Any],
        actions: List[Dict[str, Any]],
        site: SiteContext,
        completed_titles: Optional[List[str]] = None,
    ) -> GeneratedPrd:
        """
        Args:
            plan: action plan columns (executive_summary, page_edits, keyword_map)
            actions: action item rows
            site: site context for the prompt
            completed_titles: previously completed PRD task titles

        Raises:
            PrdError: the call failed, or produced no parseable document
        """
        prompt = build_user_prompt(plan, actions, site, completed_titles)
        if completed_titles:
            logger.info(f"Excluding {len(completed_titles)} previously completed tasks from PRD generation")
        logger.info(f"PRD prompt: ~{len(prompt) // 4} tokens input")

        start = time.monotonic()
        response = await self.client.analyze(
            prompt,
            system=SYSTEM_PROMPT,
            max_tokens=self.max_tokens,
            thinking_budget=self.thinking_budget,
        )
        if not response.success:
            raise PrdError(response.error or "PRD generation failed")

        prd = parse_prd(response.content, site)
        logger.info(f"PRD generated in {time.monotonic() - start:.1f}s: {len(prd.tasks)} tasks")
        return prd
