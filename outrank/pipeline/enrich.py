"""
Enrichment Orchestrator

Paying-tier deep analysis for an existing scan run, as its own durable
step chain:

1. setup-enrichment       resolve domain, wait for the site analysis, pick competitors
2. brand-awareness-{p}    direct "what do you know about X" probes, one step per platform
3. competitive-summary    strengths / weaknesses from the comparison probes
4. generate-action-plan   supplementary: failures are reported, not raised
5. generate-prd           supplementary and tier gated
6. finalize-enrichment    mark enrichment complete

Steps 2-3 persist before 4-5 run, so a failed action plan or PRD never
takes the brand awareness data down with it.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..analyzer import BusinessAnalysis
from ..database import repository
from ..database.models import EnrichmentStatus, SiteAnalysis
from ..database.session import get_db_context
from ..enrichment import (
    ActionPlanGenerator,
    ActionPlanInput,
    BrandAwarenessProber,
    BrandAwarenessResult,
    CompetitiveSummary,
    PrdGenerator,
    SiteContext,
    analyze_brand_awareness,
    generate_brand_awareness_queries,
    generate_competitive_summary,
)
from ..enrichment.titles import dedupe_titles
from ..features import get_feature_flags, get_user_tier
from ..integrations import ProviderSet
from ..scoring import PLATFORM_ORDER, calculate_visibility_score
from ..utils.config import Settings, get_settings
from ..workflow import (
    FatalWorkflowError,
    StepRunner,
    WorkflowCancelledError,
    WorkflowContext,
    WorkflowEngine,
    wait_until,
)

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "enrich-subscriber"
FALLBACK_COMPETITOR_COUNT = 3


@dataclass
class EnrichmentRequest:
    """Identity of the scan to enrich."""
    run_id: str
    lead_id: str
    domain_subscription_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def enrichment_business_key(run_id) -> str:
    return f"enrich:{run_id}"


# =============================================================================
# ROW SERIALIZATION
# =============================================================================

def site_analysis_payload(row: SiteAnalysis) -> Dict[str, Any]:
    """Business profile plus crawl signals, as plain data."""
    analysis = BusinessAnalysis(
        business_name=row.business_name,
        business_type=row.business_type or "Unknown business type",
        services=list(row.services or []),
        products=list(row.products or []),
        location=row.location,
        locations=list(row.locations or []),
        target_audience=row.target_audience,
        key_phrases=list(row.key_phrases or []),
        industry=row.industry or "General",
    )
    return {
        "analysis": analysis.to_dict(),
        "crawl_data": {
            "has_sitemap": bool(row.has_sitemap),
            "has_robots_txt": bool(row.has_robots_txt),
            "pages_crawled": row.pages_crawled or 0,
            "schema_types": list(row.schema_types or []),
            "has_meta_descriptions": bool(row.has_meta_descriptions),
        },
    }


def _crawled_page_dicts(db, run_id) -> List[Dict[str, Any]]:
    return [
        {
            "url": page.url,
            "path": page.path,
            "title": page.title,
            "meta_description": page.meta_description,
            "h1": page.h1,
            "headings": list(page.headings or []),
            "word_count": page.word_count or 0,
            "has_meta_description": bool(page.has_meta_description),
            "schema_types": list(page.schema_types or []),
        }
        for page in repository.get_crawled_pages(db, run_id)
    ]


def _response_dicts(db, run_id) -> List[Dict[str, Any]]:
    return [
        {
            "prompt_text": response.prompt.prompt_text if response.prompt else "",
            "platform": response.platform,
            "domain_mentioned": bool(response.domain_mentioned),
            "competitors_mentioned": list(response.competitors_mentioned or []),
            "error": response.error_message,
        }
        for response in repository.get_platform_responses(db, run_id)
    ]


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class EnrichmentOrchestrator:
    """
    Runs the enrichment workflow for one scan run.

    Usage:
        orchestrator = EnrichmentOrchestrator(engine, providers)
        result = await orchestrator.run(EnrichmentRequest(run_id, lead_id))
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        providers: ProviderSet,
        settings: Optional[Settings] = None,
        prober: Optional[BrandAwarenessProber] = None,
        action_generator: Optional[ActionPlanGenerator] = None,
        prd_generator: Optional[PrdGenerator] = None,
    ):
        self.engine = engine
        self.providers = providers
        self.settings = settings or get_settings()

        self.prober = prober or BrandAwarenessProber(
            providers.platforms, timeout=self.settings.PLATFORM_QUERY_TIMEOUT
        )

        claude = providers.claude
        if action_generator is None and claude is not None:
            action_generator = ActionPlanGenerator(
                claude,
                max_tokens=self.settings.ACTION_PLAN_MAX_TOKENS,
                thinking_budget=self.settings.THINKING_BUDGET_TOKENS,
            )
        if prd_generator is None and claude is not None:
            prd_generator = PrdGenerator(
                claude,
                max_tokens=self.settings.PRD_MAX_TOKENS,
                thinking_budget=self.settings.THINKING_BUDGET_TOKENS,
            )
        self.action_generator = action_generator
        self.prd_generator = prd_generator

    @property
    def brand_platforms(self) -> List[str]:
        return [p for p in PLATFORM_ORDER if p in self.providers.platforms]

    async def run(self, request: EnrichmentRequest, execution_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Execute (or resume) enrichment under the enrichment time budget.

        A failure marks the run's enrichment failed and re-raises; being
        superseded by a newer trigger leaves the status to that trigger.
        """
        execution_id = execution_id or f"enrich-{uuid4().hex}"

        async def handler(ctx: WorkflowContext, step: StepRunner) -> Dict[str, Any]:
            ctx.bind_run(request.run_id)
            return await self._enrich(ctx, step, request)

        try:
            return await self.engine.execute(
                WORKFLOW_NAME,
                handler,
                payload=request.to_dict(),
                execution_id=execution_id,
                business_key=enrichment_business_key(request.run_id),
                timeout=self.settings.ENRICHMENT_TIMEOUT_SECONDS,
            )
        except WorkflowCancelledError:
            raise
        except Exception as e:
            logger.error(f"[{request.run_id}] Enrichment failed: {e}")
            with get_db_context(self.engine.session_factory) as db:
                repository.update_enrichment_status(db, request.run_id, EnrichmentStatus.FAILED, error=str(e))
            raise

    async def _enrich(self, ctx: WorkflowContext, step: StepRunner, request: EnrichmentRequest) -> Dict[str, Any]:
        setup = await step.run("setup-enrichment", lambda: self.setup(ctx, request))

        queries = generate_brand_awareness_queries(
            BusinessAnalysis.from_dict(setup["analysis"]),
            setup["domain"],
            setup["competitors"],
        )
        platforms = self.brand_platforms
        ctx.log.info(f"Running {len(queries)} brand awareness queries on {len(platforms)} platforms")

        await step.run("clear-brand-awareness", lambda: self.clear_brand_awareness(ctx))

        def brand_step(platform: str):
            return step.run(
                f"brand-awareness-{platform}",
                lambda: self.brand_awareness_for_platform(ctx, queries, platform),
            )

        per_platform = await asyncio.gather(*(brand_step(p) for p in platforms))
        brand_results = [result for batch in per_platform for result in batch]

        competitive = await step.run(
            "competitive-summary",
            lambda: self.competitive_summary(ctx, setup, brand_results),
        )
        action_plan = await step.run(
            "generate-action-plan",
            lambda: self.generate_action_plan(ctx, request, setup, brand_results, competitive),
        )
        prd = await step.run("generate-prd", lambda: self.generate_prd(ctx, request, setup))

        return await step.run(
            "finalize-enrichment",
            lambda: self.finalize(ctx, brand_results, competitive, action_plan, prd),
        )

    # =========================================================================
    # STEPS
    # =========================================================================

    async def setup(self, ctx: WorkflowContext, request: EnrichmentRequest) -> Dict[str, Any]:
        with get_db_context(ctx.session_factory) as db:
            run = repository.get_scan_run(db, request.run_id)
            if run is None:
                raise FatalWorkflowError(f"Scan run not found: {request.run_id}", ctx.execution_id)
            lead = repository.get_lead(db, request.lead_id)
            if lead is None:
                raise FatalWorkflowError(f"Lead not found: {request.lead_id}", ctx.execution_id)

            subscription_id = request.domain_subscription_id or run.domain_subscription_id
            subscription = repository.get_domain_subscription(db, subscription_id)

            # Multi-domain accounts keep the domain on the subscription; older runs and
            # single-domain leads only have it on the run or the lead
            if subscription is not None and subscription.domain:
                domain, source = subscription.domain, "domain_subscription"
            elif run.domain:
                domain, source = run.domain, "scan_run"
            else:
                domain, source = lead.domain, "lead"
            if not domain:
                raise FatalWorkflowError(
                    f"Could not resolve a domain for scan {request.run_id}", ctx.execution_id
                )
            ctx.log.info(f"Enriching {domain} (domain from {source})")

            repository.update_enrichment_status(db, request.run_id, EnrichmentStatus.PROCESSING)

        def load_site_analysis() -> Optional[Dict[str, Any]]:
            with get_db_context(ctx.session_factory) as db:
                row = repository.get_site_analysis(db, request.run_id)
                return site_analysis_payload(row) if row else None

        # The scan's analyze step may have only just committed
        site = await wait_until(
            load_site_analysis,
            attempts=self.settings.SITE_ANALYSIS_WAIT_ATTEMPTS,
            delay=self.settings.SITE_ANALYSIS_WAIT_DELAY,
            description=f"site analysis of scan {request.run_id}",
            backoff=1.5,
            log=ctx.log,
        )

        with get_db_context(ctx.session_factory) as db:
            competitors = repository.get_tracked_competitors(db, request.lead_id, subscription_id, limit=5)
            if competitors:
                ctx.log.info(f"Using {len(competitors)} tracked competitors: {', '.join(competitors)}")
            else:
                report = repository.get_report(db, request.run_id)
                top = (report.top_competitors or []) if report else []
                competitors = [c["name"] for c in top[:FALLBACK_COMPETITOR_COUNT] if c.get("name")]
                if competitors:
                    ctx.log.info(f"Using {len(competitors)} report competitors: {', '.join(competitors)}")

        return {
            "domain": domain,
            "domain_subscription_id": str(subscription_id) if subscription_id else None,
            "analysis": site["analysis"],
            "crawl_data": site["crawl_data"],
            "competitors": competitors,
        }

    async def clear_brand_awareness(self, ctx: WorkflowContext) -> int:
        with get_db_context(ctx.session_factory) as db:
            deleted = repository.delete_brand_awareness(db, ctx.run_id)
        if deleted:
            ctx.log.info(f"Deleted {deleted} stale brand awareness results")
        return deleted

    async def brand_awareness_for_platform(self, ctx: WorkflowContext, queries, platform: str) -> List[Dict[str, Any]]:
        results = await self.prober.run_for_platform(queries, platform)
        rows = [r.to_dict() for r in results]

        with get_db_context(ctx.session_factory) as db:
            repository.delete_brand_awareness_for_platform(db, ctx.run_id, platform)
            repository.store_brand_awareness(db, ctx.run_id, rows)
        return rows

    async def competitive_summary(self, ctx: WorkflowContext, setup: Dict[str, Any], brand_rows) -> Dict[str, Any]:
        results = [BrandAwarenessResult.from_dict(r) for r in brand_rows]
        if not any(r.query_type == "competitor_compare" for r in results):
            ctx.log.info("No competitor comparisons, skipping competitive summary")
            return {"generated": False, "summary": None}
        if self.providers.claude is None:
            ctx.log.warning("Claude not configured, skipping competitive summary")
            return {"generated": False, "summary": None}

        brand_name = setup["analysis"].get("business_name") or setup["domain"]
        summary = await generate_competitive_summary(self.providers.claude, results, brand_name)
        if summary is None:
            return {"generated": False, "summary": None}

        with get_db_context(ctx.session_factory) as db:
            saved = repository.save_competitive_summary(db, ctx.run_id, summary.to_dict())
        if not saved:
            ctx.log.warning("No report for this run, competitive summary not persisted")
        return {"generated": True, "summary": summary.to_dict()}

    async def generate_action_plan(
        self,
        ctx: WorkflowContext,
        request: EnrichmentRequest,
        setup: Dict[str, Any],
        brand_rows: List[Dict[str, Any]],
        competitive: Dict[str, Any],
    ) -> Dict[str, Any]:
        if self.action_generator is None:
            return {"success": False, "error": "Claude client not configured"}

        subscription_id = setup["domain_subscription_id"]
        try:
            with get_db_context(ctx.session_factory) as db:
                pages = _crawled_page_dicts(db, ctx.run_id)
                responses = _response_dicts(db, ctx.run_id)

                completed = repository.get_completed_action_titles(db, request.lead_id, subscription_id)
                current = repository.get_action_plan(db, request.lead_id, subscription_id)
                if current is not None:
                    completed += [i.title for i in current.items if i.status in ("completed", "dismissed")]
                completed = dedupe_titles(completed)

            scores = calculate_visibility_score(responses, self.settings.REACH_WEIGHTS)
            data = ActionPlanInput(
                analysis=BusinessAnalysis.from_dict(setup["analysis"]),
                domain=setup["domain"],
                crawled_pages=pages,
                crawl_data=setup["crawl_data"],
                responses=responses,
                brand_awareness=[BrandAwarenessResult.from_dict(r) for r in brand_rows],
                competitive_summary=CompetitiveSummary.from_dict(competitive.get("summary")),
                overall_score=scores.overall,
                platform_scores={
                    name: {"mentioned": entry.mentioned, "total": entry.total}
                    for name, entry in scores.by_platform.items()
                },
                completed_action_titles=completed,
            )

            plan = await self.action_generator.generate(data)

            actions = plan.actions_excluding(completed)
            skipped = len(plan.priority_actions) - len(actions)
            if skipped:
                ctx.log.info(f"Filtered {skipped} actions matching previously completed titles")

            with get_db_context(ctx.session_factory) as db:
                archived = repository.archive_finished_actions(db, request.lead_id, subscription_id, ctx.run_id)
                repository.replace_action_plan(
                    db,
                    request.lead_id,
                    subscription_id,
                    ctx.run_id,
                    plan.plan_row(actions),
                    [action.to_item_row() for action in actions],
                )
            if archived:
                ctx.log.info(f"Archived {archived} finished actions to history")

        except Exception as e:
            ctx.log.error(f"Action plan generation failed: {e}")
            return {"success": False, "error": str(e) or e.__class__.__name__}

        ctx.log.info(f"Action plan saved with {len(actions)} actions")
        return {"success": True, "actions_generated": len(actions), "actions_skipped": skipped}

    async def generate_prd(self, ctx: WorkflowContext, request: EnrichmentRequest, setup: Dict[str, Any]) -> Dict[str, Any]:
        subscription_id = setup["domain_subscription_id"]

        with get_db_context(ctx.session_factory) as db:
            flags = get_feature_flags(get_user_tier(db, request.lead_id))
        if not flags.show_prd_tasks:
            ctx.log.info(f"PRD skipped for tier {flags.tier.value}")
            return {"success": True, "skipped": True, "reason": "tier_not_eligible"}

        if self.prd_generator is None:
            return {"success": False, "error": "Claude client not configured"}

        try:
            with get_db_context(ctx.session_factory) as db:
                repository.archive_completed_prd_tasks(db, request.lead_id, subscription_id, ctx.run_id)
                repository.delete_prd_for_run(db, ctx.run_id)

                plan = repository.get_action_plan(db, request.lead_id, subscription_id)
                if plan is None:
                    return {"success": True, "skipped": True, "reason": "no_action_plan"}
                items = [
                    {
                        "title": item.title,
                        "description": item.description,
                        "priority": item.priority,
                        "category": item.category,
                        "target_page": item.target_page,
                        "implementation_steps": list(item.implementation_steps or []),
                        "expected_outcome": item.expected_outcome,
                        "consensus": list(item.consensus or []),
                    }
                    for item in plan.items
                ]
                if not items:
                    return {"success": True, "skipped": True, "reason": "no_action_items"}
                plan_data = {
                    "executive_summary": plan.executive_summary,
                    "page_edits": plan.page_edits or [],
                    "keyword_map": plan.keyword_map or [],
                }
                completed = dedupe_titles(
                    repository.get_completed_prd_titles(db, request.lead_id, subscription_id)
                )

            analysis = setup["analysis"]
            site = SiteContext(
                domain=setup["domain"],
                business_name=analysis.get("business_name"),
                business_type=analysis.get("business_type"),
                services=analysis.get("services") or [],
            )
            prd = await self.prd_generator.generate(plan_data, items, site, completed)

            tasks = prd.tasks_excluding(completed)
            skipped = len(prd.tasks) - len(tasks)
            with get_db_context(ctx.session_factory) as db:
                repository.create_prd(
                    db,
                    request.lead_id,
                    subscription_id,
                    ctx.run_id,
                    prd.document_row(),
                    [task.to_row() for task in tasks],
                )

        except Exception as e:
            ctx.log.error(f"PRD generation failed: {e}")
            return {"success": False, "error": str(e) or e.__class__.__name__}

        ctx.log.info(f"PRD saved with {len(tasks)} tasks ({skipped} filtered)")
        return {"success": True, "tasks_generated": len(tasks), "tasks_skipped": skipped}

    async def finalize(
        self,
        ctx: WorkflowContext,
        brand_rows: List[Dict[str, Any]],
        competitive: Dict[str, Any],
        action_plan: Dict[str, Any],
        prd: Dict[str, Any],
    ) -> Dict[str, Any]:
        with get_db_context(ctx.session_factory) as db:
            repository.update_enrichment_status(db, ctx.run_id, EnrichmentStatus.COMPLETE)

        awareness = analyze_brand_awareness([BrandAwarenessResult.from_dict(r) for r in brand_rows])
        ctx.log.info(
            f"Enrichment complete: {len(brand_rows)} brand results, "
            f"action plan success={action_plan.get('success')}, prd={prd}"
        )
        return {
            "success": True,
            "brand_awareness_results": len(brand_rows),
            "brand_awareness": awareness.to_dict(),
            "competitive_summary": competitive.get("generated", False),
            "action_plan": action_plan,
            "prd": prd,
        }
