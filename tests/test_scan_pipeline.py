"""
Test Suite: Scan Workflow

End-to-end runs of the scan orchestrator against the in-memory database,
scripted platforms and a canned crawler.

Tests:
- Free lead: researched prompts, report, verification email
- Paying lead: subscriber questions, enrichment, scan complete email
- Re-triggers and replays stay idempotent
- Platform failures (whole platform or a single answer), research and analysis failures
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from uuid import UUID

import pytest

from outrank.database import (
    ActionPlan,
    EmailLog,
    EmailVerificationToken,
    EnrichmentStatus,
    PlatformResponse,
    PrdDocument,
    PromptSource,
    QueryResearchResult,
    Report,
    ScanPrompt,
    ScanRun,
    ScanStatus,
    ScoreHistory,
    SiteAnalysis,
    SubscriberQuestion,
    WorkflowStep,
)
from outrank.integrations import ProviderError
from outrank.pipeline import ScanOrchestrator, ScanRequest
from outrank.workflow import FatalWorkflowError, StepFailedError

from conftest import BUSINESS_NAME, DOMAIN, MENTION_ANSWER


@pytest.fixture
def orchestrator(workflow_engine, providers, settings, crawler, email_delivery):
    return ScanOrchestrator(
        workflow_engine,
        providers,
        settings,
        crawler_factory=lambda: crawler,
        email=email_delivery,
    )


def load_run(session_factory, scan_id) -> ScanRun:
    with session_factory() as session:
        return session.get(ScanRun, UUID(str(scan_id)))


def count(session_factory, model, **filters) -> int:
    with session_factory() as session:
        return session.query(model).filter_by(**filters).count()


def add_questions(db, lead, subscription, texts):
    for index, text in enumerate(texts):
        db.add(SubscriberQuestion(
            lead_id=lead.id,
            domain_subscription_id=subscription.id,
            prompt_text=text,
            category="finding_provider",
            sort_order=index,
        ))
    db.commit()


# ============================================================================
# FREE TIER
# ============================================================================

class TestFreeScan:
    """A free lead's scan from trigger to verification email."""

    @pytest.mark.asyncio
    async def test_full_run(self, orchestrator, session_factory, free_lead, platforms, crawler, email_delivery):
        request = ScanRequest(domain=DOMAIN, email=free_lead.email)

        result = await orchestrator.run(request)

        scan_id = result["scan_id"]
        assert scan_id == request.scan_id
        # ChatGPT (reach 10) mentions the business every time, the others never
        assert result["visibility_score"] == 59
        assert crawler.calls == 1
        assert crawler.closed == 1

        run = load_run(session_factory, scan_id)
        assert run.status == ScanStatus.COMPLETE
        assert run.progress == 100
        assert run.completed_at is not None
        assert run.enrichment_status == EnrichmentStatus.NOT_APPLICABLE

        with session_factory() as session:
            analysis = session.query(SiteAnalysis).filter_by(run_id=run.id).one()
            assert analysis.business_name == BUSINESS_NAME
            assert analysis.country_code == "AU"
            assert analysis.location_confidence == "high"

            prompts = session.query(ScanPrompt).filter_by(run_id=run.id).all()
            assert len(prompts) == 7
            assert {p.source for p in prompts} == {PromptSource.RESEARCHED}
            assert session.query(QueryResearchResult).filter_by(run_id=run.id, selected_for_scan=True).count() > 0

            responses = session.query(PlatformResponse).filter_by(run_id=run.id).all()
            assert len(responses) == 28
            chatgpt = [r for r in responses if r.platform == "chatgpt"]
            assert all(r.domain_mentioned for r in chatgpt)
            assert not any(r.domain_mentioned for r in responses if r.platform != "chatgpt")

            report = session.query(Report).filter_by(run_id=run.id).one()
            assert report.visibility_score == 59
            assert report.url_token == result["url_token"]
            assert report.requires_verification is True
            remaining = report.expires_at - datetime.utcnow()
            assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)
            assert {c["name"] for c in report.top_competitors} == {"Rival Plumbing", "Pipe Pros"}

            history = session.query(ScoreHistory).filter_by(run_id=run.id).one()
            assert history.chatgpt_score == 100
            assert history.claude_score == 0

        # Research ran once per research platform
        assert platforms["chatgpt"].research_calls == 1
        assert platforms["perplexity"].research_calls == 0

        email_delivery.send_verification_email.assert_awaited_once()
        to, token, domain = email_delivery.send_verification_email.await_args.args
        assert (to, domain) == (free_lead.email, DOMAIN)
        email_delivery.send_scan_complete_email.assert_not_awaited()
        assert count(session_factory, EmailVerificationToken, token=token) == 1
        assert count(session_factory, EmailLog, email_type="verification", resend_id="msg-verify") == 1
        assert result["email"]["type"] == "verification"

    @pytest.mark.asyncio
    async def test_supplied_verification_token(self, orchestrator, session_factory, free_lead, email_delivery):
        request = ScanRequest(domain=DOMAIN, email=free_lead.email, verification_token="tok-from-signup")

        await orchestrator.run(request)

        assert email_delivery.send_verification_email.await_args.args[1] == "tok-from-signup"
        assert count(session_factory, EmailVerificationToken) == 0

    @pytest.mark.asyncio
    async def test_skip_email(self, orchestrator, free_lead, email_delivery):
        result = await orchestrator.run(ScanRequest(domain=DOMAIN, lead_id=str(free_lead.id), skip_email=True))

        assert result["email"] == {"skipped": True}
        email_delivery.send_verification_email.assert_not_awaited()


# ============================================================================
# PAYING TIERS
# ============================================================================

class TestSubscriberScan:
    """A pro lead with a question library."""

    @pytest.mark.asyncio
    async def test_questions_enrichment_and_email(
        self, orchestrator, session_factory, db, pro_lead, platforms, email_delivery
    ):
        lead, subscription = pro_lead
        add_questions(db, lead, subscription, [
            "best plumber in sydney",
            "who fixes blocked drains",
            "emergency hot water repair sydney",
        ])

        result = await orchestrator.run(ScanRequest(
            domain=DOMAIN,
            lead_id=str(lead.id),
            domain_subscription_id=str(subscription.id),
        ))

        run = load_run(session_factory, result["scan_id"])
        assert run.status == ScanStatus.COMPLETE
        assert run.domain_subscription_id == subscription.id
        assert run.enrichment_status == EnrichmentStatus.COMPLETE

        with session_factory() as session:
            prompts = session.query(ScanPrompt).filter_by(run_id=run.id).order_by(ScanPrompt.sort_order).all()
            assert [p.prompt_text for p in prompts][0] == "best plumber in sydney"
            assert {p.source for p in prompts} == {PromptSource.SUBSCRIBER}
            assert session.query(PlatformResponse).filter_by(run_id=run.id).count() == 12

            report = session.query(Report).filter_by(run_id=run.id).one()
            assert report.requires_verification is False
            assert report.expires_at is None
            assert report.competitive_summary["overall_position"].startswith("Acme Plumbing")

            assert session.query(ActionPlan).filter_by(lead_id=lead.id).count() == 1
            assert session.query(PrdDocument).filter_by(run_id=run.id).count() == 1

        # Library questions replace research
        assert all(p.research_calls == 0 for p in platforms.values())

        assert result["enrichment"]["status"] == "complete"
        email_delivery.send_verification_email.assert_not_awaited()
        email_delivery.send_scan_complete_email.assert_awaited_once_with(
            lead.email, result["url_token"], DOMAIN, result["visibility_score"], None
        )
        assert count(session_factory, EmailLog, email_type="scan_complete") == 1

    @pytest.mark.asyncio
    async def test_first_scan_seeds_library(self, orchestrator, session_factory, pro_lead):
        lead, subscription = pro_lead

        await orchestrator.run(ScanRequest(
            domain=DOMAIN,
            lead_id=str(lead.id),
            domain_subscription_id=str(subscription.id),
        ))

        assert count(session_factory, SubscriberQuestion, lead_id=lead.id) == 7

    @pytest.mark.asyncio
    async def test_enrichment_failure_keeps_scan_complete(self, orchestrator, session_factory, pro_lead):
        lead, subscription = pro_lead
        orchestrator.enrichment.prober.run_for_platform = AsyncMock(side_effect=RuntimeError("probe failed"))

        result = await orchestrator.run(ScanRequest(
            domain=DOMAIN,
            lead_id=str(lead.id),
            domain_subscription_id=str(subscription.id),
        ))

        run = load_run(session_factory, result["scan_id"])
        assert run.status == ScanStatus.COMPLETE
        assert run.enrichment_status == EnrichmentStatus.FAILED
        assert "probe failed" in run.enrichment_error
        assert result["enrichment"]["status"] == "failed"


# ============================================================================
# IDEMPOTENCY
# ============================================================================

class TestIdempotency:
    """Re-triggers and replays must not duplicate work or rows."""

    @pytest.mark.asyncio
    async def test_retrigger_same_scan(self, orchestrator, session_factory, free_lead):
        scan_id = "5d2f1c8e-1b0a-4c52-9a3e-7f1d2b6c4e90"

        first = await orchestrator.run(ScanRequest(domain=DOMAIN, email=free_lead.email, scan_id=scan_id))
        second = await orchestrator.run(ScanRequest(domain=DOMAIN, email=free_lead.email, scan_id=scan_id))

        assert second["scan_id"] == scan_id
        assert second["url_token"] == first["url_token"]
        assert count(session_factory, Report) == 1
        assert count(session_factory, SiteAnalysis) == 1
        assert count(session_factory, ScoreHistory) == 1
        assert count(session_factory, ScanPrompt) == 7
        assert count(session_factory, PlatformResponse) == 28

    @pytest.mark.asyncio
    async def test_replay_skips_completed_steps(self, orchestrator, free_lead, crawler, email_delivery):
        request = ScanRequest(domain=DOMAIN, email=free_lead.email)

        first = await orchestrator.run(request, execution_id="exec-replay")
        second = await orchestrator.run(request, execution_id="exec-replay")

        assert second["url_token"] == first["url_token"]
        assert crawler.calls == 1
        email_delivery.send_verification_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_query_step_retried_after_write(self, orchestrator, session_factory, free_lead, monkeypatch):
        """A ChatGPT step that dies after persisting its answer is retried without a second row."""
        query_prompt = orchestrator.query_prompt
        calls = {"chatgpt": 0}

        async def crash_after_first_write(ctx, platform, prompt, domain, location):
            result = await query_prompt(ctx, platform, prompt, domain, location)
            if platform == "chatgpt":
                calls["chatgpt"] += 1
                if calls["chatgpt"] == 1:
                    raise ProviderError("connection reset after write", provider="chatgpt")
            return result

        monkeypatch.setattr(orchestrator, "query_prompt", crash_after_first_write)

        result = await orchestrator.run(ScanRequest(domain=DOMAIN, email=free_lead.email))

        assert calls["chatgpt"] == 8
        assert result["visibility_score"] == 59
        assert result["scores"]["by_platform"]["chatgpt"] == {
            "score": 100, "mentioned": 7, "total": 7, "errors": 0, "has_data": True,
        }
        assert count(session_factory, PlatformResponse, platform="chatgpt") == 7
        assert count(session_factory, PlatformResponse) == 28
        with session_factory() as session:
            step = session.query(WorkflowStep).filter_by(step_name="query-chatgpt-0").one()
            assert step.attempts == 2


# ============================================================================
# FAILURES
# ============================================================================

class TestFailures:
    """Degraded platforms and fatal conditions."""

    @pytest.mark.asyncio
    async def test_platform_errors_are_recorded(self, orchestrator, session_factory, free_lead, platforms):
        platforms["perplexity"].fail_search = True

        result = await orchestrator.run(ScanRequest(domain=DOMAIN, email=free_lead.email))

        assert result["visibility_score"] == 59
        perplexity = result["scores"]["by_platform"]["perplexity"]
        assert perplexity["has_data"] is False
        assert perplexity["errors"] == 7
        with session_factory() as session:
            rows = session.query(PlatformResponse).filter_by(platform="perplexity").all()
            assert len(rows) == 7
            assert all(r.error_message for r in rows)
            assert not any(r.domain_mentioned for r in rows)

            # No data is stored as null, a real zero stays zero
            report = session.query(Report).one()
            assert report.platform_scores["perplexity"] is None
            assert report.platform_scores["claude"] == 0
            history = session.query(ScoreHistory).one()
            assert history.perplexity_score is None
            assert history.gemini_score == 0
        assert load_run(session_factory, result["scan_id"]).status == ScanStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_one_platform_fails_for_one_prompt(self, orchestrator, session_factory, free_lead, platforms):
        """Claude fails on its first question and names the site on the rest."""
        failed = []

        def claude_answer(question):
            if not failed:
                failed.append(question)
                raise ProviderError("claude is overloaded", provider="claude", status_code=529)
            return MENTION_ANSWER

        platforms["claude"].answer = claude_answer

        result = await orchestrator.run(ScanRequest(domain=DOMAIN, email=free_lead.email))

        by_platform = result["scores"]["by_platform"]
        assert by_platform["claude"] == {"score": 100, "mentioned": 6, "total": 6, "errors": 1, "has_data": True}
        assert by_platform["chatgpt"]["has_data"] is True
        assert by_platform["gemini"] == {"score": 0, "mentioned": 0, "total": 7, "errors": 0, "has_data": True}
        assert by_platform["perplexity"]["has_data"] is True
        # (1.0 * 10 + 1.0 * 1) / 17
        assert result["visibility_score"] == 65

        assert count(session_factory, PlatformResponse) == 28
        assert count(session_factory, PlatformResponse, platform="claude") == 7
        with session_factory() as session:
            errored = session.query(PlatformResponse).filter(PlatformResponse.error_message.isnot(None)).all()
            assert [(r.platform, r.prompt.prompt_text) for r in errored] == [("claude", failed[0])]
            assert "overloaded" in errored[0].error_message

            # Other platforms still answered the prompt Claude failed on
            prompt_id = errored[0].prompt_id
            siblings = session.query(PlatformResponse).filter_by(prompt_id=prompt_id).all()
            assert {r.platform for r in siblings} == {"chatgpt", "claude", "gemini", "perplexity"}
            assert [r.platform for r in siblings if r.domain_mentioned] == ["chatgpt"]

            assert session.query(Report).one().platform_scores["claude"] == 100

    @pytest.mark.asyncio
    async def test_research_fallback(self, orchestrator, session_factory, free_lead, platforms):
        for provider in platforms.values():
            provider.research = "Sorry, I can't suggest queries right now."

        result = await orchestrator.run(ScanRequest(domain=DOMAIN, email=free_lead.email))

        with session_factory() as session:
            prompts = session.query(ScanPrompt).order_by(ScanPrompt.sort_order).all()
            assert len(prompts) == 5
            assert prompts[0].prompt_text == "best plumbing services near me"
            assert session.query(QueryResearchResult).count() == 0
        assert count(session_factory, PlatformResponse) == 20
        assert load_run(session_factory, result["scan_id"]).status == ScanStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_analysis_failure_fails_run(self, orchestrator, session_factory, free_lead, platforms, email_delivery):
        platforms["chatgpt"].generate_text = AsyncMock(return_value="I can't analyze that website.")
        scan_id = "9a7c3e21-6f4b-4d8a-b1c2-3e5f7a9b0c1d"

        with pytest.raises(StepFailedError) as exc_info:
            await orchestrator.run(ScanRequest(domain=DOMAIN, email=free_lead.email, scan_id=scan_id))

        assert exc_info.value.step_name == "analyze-content"
        run = load_run(session_factory, scan_id)
        assert run.status == ScanStatus.FAILED
        assert "No JSON" in run.error_message
        email_delivery.send_verification_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_lead(self, orchestrator, crawler):
        with pytest.raises(FatalWorkflowError):
            await orchestrator.run(ScanRequest(domain=DOMAIN, email="nobody@example.com"))

        assert crawler.calls == 0
