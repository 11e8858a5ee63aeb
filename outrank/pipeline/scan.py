"""
Scan Orchestrator

Drives one scan run from "requested" to "report ready" as a chain of
memoized, retryable steps:

 1. setup-scan                      resolve the lead, create or reset the run
 2. crawl-site                      crawl and store pages
 3. analyze-content                 business profile, geography, site analysis
 4. check-subscriber-questions      paying tiers reuse their question library
 5. research-queries-{platform}     parallel, skipped when step 4 found questions
 6. save-prompts                    dedupe and rank (or template fallback), seed library
 7. query-{platform}-{n} /
    query-platform-{platform}       platforms in parallel, each answer persisted at once
 8. finalize-report                 scores, competitors, report and score history
 9. trigger-enrichment /
    mark-enrichment-not-applicable  paying tiers await the enrichment workflow
10. send-email                      scan complete or verification email

Steps 1-8 run under the scan budget; enrichment carries its own.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from ..analyzer import BusinessAnalysis, ContentAnalyzer, detect_geography, extract_tld_country
from ..crawler import CrawlResult, SiteCrawler, combine_crawled_content
from ..database import repository
from ..database.models import EnrichmentStatus, PromptSource, ScanStatus
from ..database.session import get_db_context
from ..delivery import EmailDelivery
from ..features import get_feature_flags, get_user_tier
from ..integrations import LocationContext, ProviderSet
from ..platforms import PLATFORMS, PlatformQueryEngine
from ..research import (
    RESEARCH_PLATFORMS,
    QueryResearcher,
    RawQuerySuggestion,
    dedupe_and_rank_queries,
    generate_fallback_queries,
)
from ..scoring import calculate_visibility_score, extract_top_competitors, generate_summary
from ..utils.config import Settings, get_settings
from ..workflow import (
    FatalWorkflowError,
    StepRunner,
    WorkflowCancelledError,
    WorkflowContext,
    WorkflowEngine,
    WorkflowTimeoutError,
)
from .enrich import EnrichmentOrchestrator, EnrichmentRequest

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "process-scan"
MAX_RAW_CONTENT_CHARS = 50000
TOP_COMPETITOR_LIMIT = 10

# Progress checkpoints shown while the scan runs
PROGRESS_CRAWLED = 20
PROGRESS_ANALYZED = 35
PROGRESS_PROMPTS_SAVED = 50
PROGRESS_QUERIED = 90
PROGRESS_COMPLETE = 100


@dataclass
class ScanRequest:
    """An inbound "start scan" trigger."""
    domain: str
    email: Optional[str] = None
    lead_id: Optional[str] = None
    scan_id: Optional[str] = None
    verification_token: Optional[str] = None
    domain_subscription_id: Optional[str] = None
    skip_email: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def scan_business_key(scan_id) -> str:
    return f"scan:{scan_id}"


class ScanOrchestrator:
    """
    Runs the scan workflow.

    Usage:
        orchestrator = ScanOrchestrator(engine, providers)
        result = await orchestrator.run(ScanRequest(domain="acme.com", email="a@acme.com"))
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        providers: ProviderSet,
        settings: Optional[Settings] = None,
        crawler_factory: Optional[Callable[[], SiteCrawler]] = None,
        enrichment: Optional[EnrichmentOrchestrator] = None,
        email: Optional[EmailDelivery] = None,
    ):
        self.engine = engine
        self.providers = providers
        self.settings = settings or get_settings()

        self.crawler_factory = crawler_factory or self._default_crawler
        self.analyzer = ContentAnalyzer(providers.analysis) if providers.analysis else None
        self.researcher = QueryResearcher(providers.platforms, timeout=self.settings.PLATFORM_QUERY_TIMEOUT)
        self.query_engine = PlatformQueryEngine(
            providers.platforms,
            extractor=providers.extractor,
            timeout=self.settings.PLATFORM_QUERY_TIMEOUT,
        )
        self.enrichment = enrichment or EnrichmentOrchestrator(engine, providers, self.settings)
        self.email = email or EmailDelivery(
            api_key=self.settings.RESEND_API_KEY,
            from_email=self.settings.FROM_EMAIL,
            app_url=self.settings.APP_URL,
        )

    def _default_crawler(self) -> SiteCrawler:
        return SiteCrawler(
            max_pages=self.settings.MAX_CRAWL_PAGES,
            max_sitemap_urls=self.settings.MAX_SITEMAP_URLS,
            sitemap_timeout=self.settings.SITEMAP_TIMEOUT,
            robots_timeout=self.settings.ROBOTS_TIMEOUT,
            page_timeout=self.settings.PAGE_TIMEOUT,
        )

    async def run(self, request: ScanRequest, execution_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Execute (or, given an earlier execution_id, resume) a scan.

        A newer trigger for the same scan id cancels this one. Any other
        failure marks the run failed with the error message and re-raises.
        """
        if not request.scan_id:
            request.scan_id = str(uuid4())
        execution_id = execution_id or f"scan-{uuid4().hex}"

        async def handler(ctx: WorkflowContext, step: StepRunner) -> Dict[str, Any]:
            ctx.bind_run(request.scan_id)
            return await self._process(ctx, step, request)

        try:
            return await self.engine.execute(
                WORKFLOW_NAME,
                handler,
                payload=request.to_dict(),
                execution_id=execution_id,
                business_key=scan_business_key(request.scan_id),
            )
        except WorkflowCancelledError:
            logger.info(f"[{request.scan_id}] Scan superseded by a newer trigger")
            raise
        except Exception as e:
            logger.error(f"[{request.scan_id}] Scan failed: {e}")
            with get_db_context(self.engine.session_factory) as db:
                repository.update_scan_status(db, request.scan_id, ScanStatus.FAILED, error_message=str(e))
            raise

    async def _process(self, ctx: WorkflowContext, step: StepRunner, request: ScanRequest) -> Dict[str, Any]:
        start = datetime.utcnow()
        budget = self.settings.SCAN_TIMEOUT_SECONDS

        try:
            setup, report = await asyncio.wait_for(self._build_report(ctx, step, request), timeout=budget)
        except asyncio.TimeoutError:
            raise WorkflowTimeoutError(WORKFLOW_NAME, budget, execution_id=ctx.execution_id) from None

        if setup["is_subscriber"]:
            enrichment = await step.run(
                "trigger-enrichment",
                lambda: self.trigger_enrichment(ctx, setup),
                retries=0,
            )
        else:
            enrichment = await step.run(
                "mark-enrichment-not-applicable",
                lambda: self.mark_enrichment_not_applicable(ctx),
            )

        email = await step.run("send-email", lambda: self.send_email(ctx, request, setup, report))

        elapsed = (datetime.utcnow() - start).total_seconds()
        ctx.log.info(f"Scan complete for {setup['domain']}: score {report['visibility_score']} in {elapsed:.0f}s")
        return {
            "scan_id": setup["run_id"],
            "url_token": report["url_token"],
            "visibility_score": report["visibility_score"],
            "scores": report["scores"],
            "enrichment": enrichment,
            "email": email,
        }

    async def _build_report(self, ctx: WorkflowContext, step: StepRunner, request: ScanRequest):
        setup = await step.run("setup-scan", lambda: self.setup(ctx, request))
        domain = setup["domain"]

        crawl = await step.run("crawl-site", lambda: self.crawl(ctx, domain))
        analyzed = await step.run("analyze-content", lambda: self.analyze(ctx, domain, crawl))
        analysis = BusinessAnalysis.from_dict(analyzed["analysis"])

        library = await step.run("check-subscriber-questions", lambda: self.check_subscriber_questions(ctx, setup))

        if library["has_questions"]:
            ctx.log.info(f"Using {len(library['prompts'])} subscriber questions, skipping research")
            prompts = library["prompts"]
        else:
            def research_step(platform: str):
                return step.run(
                    f"research-queries-{platform}",
                    lambda: self.research(ctx, analysis, platform),
                )

            research = await asyncio.gather(*(research_step(p) for p in RESEARCH_PLATFORMS))
            saved = await step.run("save-prompts", lambda: self.save_prompts(ctx, setup, analysis, research))
            prompts = saved["prompts"]

        location = LocationContext.from_dict(analyzed["geo"])
        platform_summaries = await asyncio.gather(
            *(self._query_platform(ctx, step, platform, prompts, domain, location) for platform in PLATFORMS)
        )
        for summary in platform_summaries:
            ctx.log.info(
                f"{summary['platform']}: {summary['mentioned']}/{summary['queries']} mentioned, "
                f"{summary['errors']} errors"
            )

        await step.run("update-query-progress", lambda: self.update_query_progress(ctx))

        report = await step.run("finalize-report", lambda: self.finalize_report(ctx, setup, analysis))
        return setup, report

    async def _query_platform(
        self,
        ctx: WorkflowContext,
        step: StepRunner,
        platform: str,
        prompts: List[Dict[str, Any]],
        domain: str,
        location: Optional[LocationContext],
    ) -> Dict[str, Any]:
        """Fan-in for one platform; per-query steps where the platform is configured for them."""
        if platform in self.settings.PER_QUERY_STEP_PLATFORMS:
            results = []
            for index, prompt in enumerate(prompts):
                result = await step.run(
                    f"query-{platform}-{index}",
                    lambda prompt=prompt: self.query_prompt(ctx, platform, prompt, domain, location),
                )
                results.append(result)
        else:
            results = await step.run(
                f"query-platform-{platform}",
                lambda: self.query_prompts(ctx, platform, prompts, domain, location),
            )

        return {
            "platform": platform,
            "queries": len(results),
            "mentioned": sum(1 for r in results if r["domain_mentioned"]),
            "errors": sum(1 for r in results if r["error"]),
        }

    # =========================================================================
    # STEPS
    # =========================================================================

    async def setup(self, ctx: WorkflowContext, request: ScanRequest) -> Dict[str, Any]:
        with get_db_context(ctx.session_factory) as db:
            lead = None
            if request.lead_id:
                lead = repository.get_lead(db, request.lead_id)
            elif request.email:
                lead = repository.find_lead_by_email(db, request.email)
            if lead is None:
                raise FatalWorkflowError(
                    "Could not resolve lead from request lead id or email lookup", ctx.execution_id
                )

            run = repository.create_or_reset_scan_run(
                db,
                lead.id,
                request.domain,
                run_id=request.scan_id,
                domain_subscription_id=request.domain_subscription_id,
            )
            tier = get_user_tier(db, lead.id)
            flags = get_feature_flags(tier)

            ctx.log.info(f"Scan started for {request.domain} (lead {lead.id}, tier {tier.value})")
            return {
                "run_id": str(run.id),
                "lead_id": str(lead.id),
                "email": request.email or lead.email,
                "domain": request.domain,
                "domain_subscription_id": request.domain_subscription_id,
                "tier": tier.value,
                "is_subscriber": flags.is_subscriber,
            }

    async def crawl(self, ctx: WorkflowContext, domain: str) -> Dict[str, Any]:
        crawler = self.crawler_factory()
        try:
            result = await crawler.crawl(domain)
        finally:
            await crawler.close()

        with get_db_context(ctx.session_factory) as db:
            repository.delete_crawled_pages(db, ctx.run_id)
            repository.store_crawled_pages(db, ctx.run_id, [page.to_dict() for page in result.pages])
            repository.update_scan_status(db, ctx.run_id, ScanStatus.ANALYZING, progress=PROGRESS_CRAWLED)

        ctx.log.info(f"Crawled {result.total_pages} pages (sitemap: {result.has_sitemap})")
        return result.to_dict()

    async def analyze(self, ctx: WorkflowContext, domain: str, crawl_data: Dict[str, Any]) -> Dict[str, Any]:
        if self.analyzer is None:
            raise FatalWorkflowError("No AI provider configured for content analysis", ctx.execution_id)

        crawl = CrawlResult.from_dict(crawl_data)
        corpus = combine_crawled_content(crawl)
        tld_country = extract_tld_country(domain)

        analysis = await self.analyzer.analyze(corpus, tld_country)
        geo = detect_geography(domain, corpus, analysis.location)
        if geo.location:
            analysis.location = geo.location
        ctx.log.info(f"Location: {geo.location or 'unknown'} ({geo.confidence.value} confidence)")

        with get_db_context(ctx.session_factory) as db:
            repository.upsert_site_analysis(db, ctx.run_id, {
                "business_name": analysis.business_name,
                "business_type": analysis.business_type,
                "industry": analysis.industry,
                "services": analysis.services,
                "products": analysis.products,
                "target_audience": analysis.target_audience,
                "key_phrases": analysis.key_phrases,
                "location": analysis.location,
                "locations": analysis.locations,
                "city": geo.city,
                "country": geo.country,
                "country_code": geo.country_code,
                "tld_country": geo.tld_country,
                "location_confidence": geo.confidence.value,
                "location_signals": geo.signals,
                "pages_crawled": crawl.total_pages,
                "has_sitemap": crawl.has_sitemap,
                "has_robots_txt": crawl.has_robots_txt,
                "schema_types": crawl.schema_types,
                "extracted_locations": crawl.extracted_locations,
                "extracted_services": crawl.extracted_services,
                "extracted_products": crawl.extracted_products,
                "has_meta_descriptions": any(p.has_meta_description for p in crawl.pages),
                "raw_content": corpus[:MAX_RAW_CONTENT_CHARS],
            })
            repository.update_scan_status(db, ctx.run_id, ScanStatus.RESEARCHING, progress=PROGRESS_ANALYZED)

        return {"analysis": analysis.to_dict(), "geo": geo.to_dict()}

    async def check_subscriber_questions(self, ctx: WorkflowContext, setup: Dict[str, Any]) -> Dict[str, Any]:
        if not setup["is_subscriber"]:
            return {"has_questions": False, "prompts": []}

        with get_db_context(ctx.session_factory) as db:
            questions = repository.get_active_subscriber_questions(
                db, setup["lead_id"], setup["domain_subscription_id"]
            )
            if not questions:
                return {"has_questions": False, "prompts": []}

            prompts = repository.replace_scan_prompts(
                db,
                ctx.run_id,
                [{"prompt_text": q.prompt_text, "category": q.category} for q in questions],
                PromptSource.SUBSCRIBER,
            )
            repository.update_scan_status(db, ctx.run_id, ScanStatus.QUERYING, progress=PROGRESS_PROMPTS_SAVED)

        return {"has_questions": True, "prompts": prompts}

    async def research(self, ctx: WorkflowContext, analysis: BusinessAnalysis, platform: str) -> List[Dict[str, Any]]:
        suggestions = await self.researcher.research(analysis, platform, analysis.key_phrases)
        ctx.log.info(f"{platform} suggested {len(suggestions)} queries")
        return [s.to_dict() for s in suggestions]

    async def save_prompts(
        self,
        ctx: WorkflowContext,
        setup: Dict[str, Any],
        analysis: BusinessAnalysis,
        research: List[List[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        suggestions = [RawQuerySuggestion.from_dict(s) for batch in research for s in batch]
        chosen = dedupe_and_rank_queries(suggestions, self.settings.PROMPT_LIMIT, analysis.key_phrases)

        fallback = not chosen
        if fallback:
            ctx.log.warning("Research produced no usable queries, using template fallback")
            chosen = generate_fallback_queries(analysis)

        selected = {q.query.lower() for q in chosen}
        research_rows = [
            {
                "platform": s.platform,
                "query": s.query,
                "category": s.category,
                "selected_for_scan": s.query.lower() in selected,
            }
            for s in suggestions
        ]

        with get_db_context(ctx.session_factory) as db:
            repository.update_scan_status(db, ctx.run_id, ScanStatus.GENERATING)
            repository.replace_research_results(db, ctx.run_id, research_rows)
            prompts = repository.replace_scan_prompts(
                db,
                ctx.run_id,
                [{"prompt_text": q.query, "category": q.category} for q in chosen],
                PromptSource.RESEARCHED,
            )

            # A paying lead's first scan becomes their editable question library
            seeded = 0
            if setup["is_subscriber"] and not repository.count_subscriber_questions(
                db, setup["lead_id"], setup["domain_subscription_id"]
            ):
                seeded = repository.seed_subscriber_questions(
                    db, setup["lead_id"], setup["domain_subscription_id"], ctx.run_id, prompts
                )
                ctx.log.info(f"Seeded {seeded} subscriber questions")

            repository.update_scan_status(db, ctx.run_id, ScanStatus.QUERYING, progress=PROGRESS_PROMPTS_SAVED)

        ctx.log.info(f"Saved {len(prompts)} prompts from {len(suggestions)} suggestions")
        return {"prompts": prompts, "fallback": fallback, "seeded_questions": seeded}

    async def query_prompt(
        self,
        ctx: WorkflowContext,
        platform: str,
        prompt: Dict[str, Any],
        domain: str,
        location: Optional[LocationContext],
    ) -> Dict[str, Any]:
        """Ask one platform one prompt and persist the answer (or the error) at once."""
        result = await self.query_engine.query(platform, prompt["prompt_text"], domain, location)
        row = result.to_dict()
        with get_db_context(ctx.session_factory) as db:
            repository.upsert_platform_response(db, ctx.run_id, prompt["id"], platform, row)
        return {
            "prompt_id": prompt["id"],
            "platform": platform,
            "domain_mentioned": row["domain_mentioned"],
            "error": row["error"],
        }

    async def query_prompts(
        self,
        ctx: WorkflowContext,
        platform: str,
        prompts: List[Dict[str, Any]],
        domain: str,
        location: Optional[LocationContext],
    ) -> List[Dict[str, Any]]:
        # Sequential within a platform to stay under its rate limits
        results = []
        for prompt in prompts:
            results.append(await self.query_prompt(ctx, platform, prompt, domain, location))
        return results

    async def update_query_progress(self, ctx: WorkflowContext) -> None:
        with get_db_context(ctx.session_factory) as db:
            repository.update_scan_status(db, ctx.run_id, ScanStatus.QUERYING, progress=PROGRESS_QUERIED)

    async def finalize_report(self, ctx: WorkflowContext, setup: Dict[str, Any], analysis: BusinessAnalysis) -> Dict[str, Any]:
        with get_db_context(ctx.session_factory) as db:
            responses = [
                {
                    "platform": r.platform,
                    "domain_mentioned": bool(r.domain_mentioned),
                    "competitors": list(r.competitors_mentioned or []),
                    "error": r.error_message,
                }
                for r in repository.get_platform_responses(db, ctx.run_id)
            ]

        scores = calculate_visibility_score(responses, self.settings.REACH_WEIGHTS)
        top_competitors = extract_top_competitors(responses, limit=TOP_COMPETITOR_LIMIT)
        summary = generate_summary(analysis.business_name, setup["domain"], scores, top_competitors)

        free = not setup["is_subscriber"]
        expires_at = datetime.utcnow() + timedelta(days=self.settings.FREE_REPORT_EXPIRY_DAYS) if free else None

        with get_db_context(ctx.session_factory) as db:
            report = repository.upsert_report(
                db,
                ctx.run_id,
                {
                    "visibility_score": scores.overall,
                    "platform_scores": scores.platform_scores,
                    "platform_mentions": scores.platform_mentions,
                    "top_competitors": top_competitors,
                    "summary": summary,
                },
                expires_at=expires_at,
                requires_verification=free,
            )
            repository.upsert_score_history(
                db,
                ctx.run_id,
                setup["lead_id"],
                setup["domain_subscription_id"],
                {
                    "visibility_score": scores.overall,
                    **{f"{p}_score": scores.platform_scores.get(p) for p in PLATFORMS},
                    **{f"{p}_mentions": scores.platform_mentions.get(p, 0) for p in PLATFORMS},
                    "query_coverage": scores.query_coverage,
                    "total_queries": scores.total_queries,
                    "total_mentions": scores.total_mentions,
                },
            )
            repository.update_scan_status(db, ctx.run_id, ScanStatus.COMPLETE, progress=PROGRESS_COMPLETE)
            url_token = report.url_token

        ctx.log.info(
            f"Report ready: score {scores.overall} "
            f"({scores.total_mentions}/{scores.total_queries} mentions, {scores.total_errors} errors), "
            f"{len(top_competitors)} competitors"
        )
        return {
            "url_token": url_token,
            "visibility_score": scores.overall,
            "scores": scores.to_dict(),
            "top_competitors": top_competitors,
        }

    async def trigger_enrichment(self, ctx: WorkflowContext, setup: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run enrichment and wait for it.

        Enrichment failures are recorded on the run's enrichment status and
        do not fail the scan: the report is already complete.
        """
        with get_db_context(ctx.session_factory) as db:
            repository.update_enrichment_status(db, ctx.run_id, EnrichmentStatus.PENDING)

        request = EnrichmentRequest(
            run_id=setup["run_id"],
            lead_id=setup["lead_id"],
            domain_subscription_id=setup["domain_subscription_id"],
        )
        try:
            result = await self.enrichment.run(request, execution_id=f"{ctx.execution_id}:enrich")
        except WorkflowCancelledError:
            ctx.log.info("Enrichment superseded by a newer trigger")
            return {"triggered": True, "status": "superseded"}
        except Exception as e:
            ctx.log.error(f"Enrichment failed: {e}")
            return {"triggered": True, "status": EnrichmentStatus.FAILED.value, "error": str(e)}

        return {"triggered": True, "status": EnrichmentStatus.COMPLETE.value, "result": result}

    async def mark_enrichment_not_applicable(self, ctx: WorkflowContext) -> Dict[str, Any]:
        with get_db_context(ctx.session_factory) as db:
            repository.update_enrichment_status(db, ctx.run_id, EnrichmentStatus.NOT_APPLICABLE)
        return {"triggered": False, "status": EnrichmentStatus.NOT_APPLICABLE.value}

    async def send_email(
        self,
        ctx: WorkflowContext,
        request: ScanRequest,
        setup: Dict[str, Any],
        report: Dict[str, Any],
    ) -> Dict[str, Any]:
        if request.skip_email:
            ctx.log.info("Skipping email (admin rescan)")
            return {"skipped": True}

        email = setup["email"]
        if not email:
            ctx.log.warning("No email address for this lead, skipping email")
            return {"skipped": True}

        if setup["is_subscriber"]:
            with get_db_context(ctx.session_factory) as db:
                previous = repository.get_previous_score(
                    db, setup["lead_id"], ctx.run_id, setup["domain_subscription_id"]
                )
            ctx.log.info(f"Sending scan complete email (previous score: {previous if previous is not None else 'none'})")
            email_type = "scan_complete"
            result = await self.email.send_scan_complete_email(
                email, report["url_token"], setup["domain"], report["visibility_score"], previous
            )
        else:
            token = request.verification_token
            if not token:
                with get_db_context(ctx.session_factory) as db:
                    token = repository.create_verification_token(
                        db, setup["lead_id"], ctx.run_id, email, hours=self.settings.VERIFICATION_TOKEN_HOURS
                    )
            email_type = "verification"
            result = await self.email.send_verification_email(email, token, setup["domain"])

        if result.success:
            with get_db_context(ctx.session_factory) as db:
                repository.log_email(db, setup["lead_id"], ctx.run_id, email_type, email, result.message_id)
        else:
            ctx.log.error(f"Failed to send {email_type} email: {result.error}")

        return {"type": email_type, **result.to_dict()}
