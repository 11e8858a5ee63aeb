"""Paying-tier report enrichment: brand awareness, competitive summary, action plans, PRDs."""

from .actions import ActionPlanError, ActionPlanGenerator, ActionPlanInput, GeneratedActionPlan, PriorityAction
from .brand_awareness import (
    BrandAwarenessProber,
    BrandAwarenessQuery,
    BrandAwarenessResult,
    analyze_brand_awareness,
    generate_brand_awareness_queries,
)
from .competitive import CompetitiveSummary, generate_competitive_summary
from .prd import GeneratedPrd, PrdError, PrdGenerator, PrdTaskSpec, SiteContext
from .titles import filter_completed, normalize_title

__all__ = [
    "ActionPlanError",
    "ActionPlanGenerator",
    "ActionPlanInput",
    "BrandAwarenessProber",
    "BrandAwarenessQuery",
    "BrandAwarenessResult",
    "CompetitiveSummary",
    "GeneratedActionPlan",
    "GeneratedPrd",
    "PrdError",
    "PrdGenerator",
    "PrdTaskSpec",
    "PriorityAction",
    "SiteContext",
    "analyze_brand_awareness",
    "filter_completed",
    "generate_brand_awareness_queries",
    "generate_competitive_summary",
    "normalize_title",
]
