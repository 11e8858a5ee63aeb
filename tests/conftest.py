"""
Pytest Configuration and Shared Fixtures

Provides the in-memory database, scripted AI platforms, a canned crawler
and seeded accounts shared by the test modules.
"""

import json
import secrets
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.pool import StaticPool

from outrank.crawler import CrawlResult, CrawledPage, SchemaData
from outrank.database import (
    DomainSubscription,
    Lead,
    PlatformResponse,
    PromptSource,
    Report,
    ScanPrompt,
    ScanRun,
    ScanStatus,
    SiteAnalysis,
    create_db_engine,
    create_session_factory,
    init_db,
)
from outrank.delivery import EmailResult
from outrank.integrations import (
    AnalysisResponse,
    BaseAIProvider,
    ProviderError,
    ProviderSet,
    SearchAnswer,
    TokenUsage,
)
from outrank.utils.config import Settings
from outrank.workflow import WorkflowEngine


# ============================================================================
# Canned Data
# ============================================================================

DOMAIN = "acmeplumbing.com.au"
BUSINESS_NAME = "Acme Plumbing"

ANALYSIS = {
    "businessName": BUSINESS_NAME,
    "businessType": "plumbing services",
    "services": ["blocked drains", "hot water repair"],
    "products": [],
    "location": "Sydney, Australia",
    "locations": [],
    "targetAudience": "homeowners",
    "keyPhrases": ["plumber sydney"],
    "industry": "Home Services",
}

RESEARCH_QUERIES = [
    {"query": "Best plumber in Sydney", "category": "finding_provider"},
    {"query": "emergency hot water repair", "category": "service"},
    {"query": "who fixes blocked drains fast", "category": "finding_provider"},
    {"query": "licensed gas fitter recommendations", "category": "finding_provider"},
    {"query": "bathroom renovation plumbing company", "category": "finding_provider"},
    {"query": "compare local plumbing services", "category": "comparison"},
    {"query": "affordable leak detection specialists", "category": "service"},
    {"query": "top rated plumbers north shore", "category": "review"},
]

COMPETITORS = ["Rival Plumbing", "Pipe Pros"]

MENTION_ANSWER = (
    "For blocked drains and hot water in Sydney, Acme Plumbing (acmeplumbing.com.au) "
    "is a popular choice with strong reviews. Rival Plumbing and Pipe Pros also offer "
    "same-day call-outs across the city."
)
NO_MENTION_ANSWER = (
    "Rival Plumbing and Pipe Pros are both well reviewed plumbers in Sydney. Both offer "
    "emergency call-outs, upfront pricing and licensed tradespeople."
)

COMPETITIVE_SUMMARY = {
    "strengths": ["Known for fast blocked drain call-outs"],
    "weaknesses": ["Rarely mentioned outside ChatGPT"],
    "opportunities": ["Publish hot water repair guides"],
    "overallPosition": "Acme Plumbing is recognized but trails Rival Plumbing.",
}

ACTION_PLAN = {
    "executiveSummary": "Acme Plumbing is visible on ChatGPT only.",
    "priorityActions": [
        {
            "rank": 1,
            "title": "Add FAQ Schema to Homepage!",
            "description": "Mark up the existing homepage FAQs with FAQPage JSON-LD.",
            "effort": "low",
            "impact": 3,
            "consensus": ["chatgpt", "claude"],
            "targetPage": "/",
            "category": "schema",
            "implementationSteps": ["Collect the FAQs", "Add the JSON-LD block"],
            "expectedOutcome": "FAQ answers quoted by assistants",
            "targetKeywords": ["blocked drains sydney"],
        },
        {
            "rank": 2,
            "title": "Create a hot water repair service page",
            "effort": "medium",
            "impact": 2,
            "category": "content",
        },
        {
            "rank": 3,
            "title": "Get listed on local trade directories",
            "effort": "high",
            "impact": 2,
            "category": "citations",
        },
    ],
    "pageEdits": [{"page": "/", "metaTitle": "Sydney Plumbers | Acme Plumbing"}],
    "keywordMap": [{"keyword": "plumber sydney", "bestPage": "/", "whereToAdd": "H1", "priority": "high"}],
    "keyTakeaways": ["ChatGPT mentions Acme Plumbing in every answer"],
}

PRD = {
    "title": "AI Visibility PRD: Acme Plumbing",
    "overview": "Structured data and content work for acmeplumbing.com.au.",
    "goals": ["Raise assistant mentions"],
    "techStack": ["WordPress"],
    "targetPlatforms": ["Web"],
    "tasks": [
        {
            "title": "Add FAQPage JSON-LD to the homepage",
            "section": "quick_wins",
            "acceptanceCriteria": ["Passes the Rich Results Test"],
            "estimatedHours": 2,
            "filePaths": ["functions.php"],
            "codeSnippets": {"faq-schema.json": "{}"},
            "requiresContent": True,
            "contentPrompts": [{"type": "faq", "prompt": "Write five FAQs", "usedIn": "homepage", "wordCount": 300}],
        },
        {
            "title": "Build the hot water repair page",
            "section": "strategic",
            "estimatedHours": 6,
        },
    ],
}


# ============================================================================
# Fake Platforms
# ============================================================================

class FakeProvider(BaseAIProvider):
    """
    Scripted stand-in for an AI platform.

    generate_text is routed on the prompt: business analysis, query research
    or competitor extraction. search returns `answer` (a string, or a
    callable taking the question).
    """

    def __init__(
        self,
        platform: str,
        answer: Union[str, Callable[[str], str]] = NO_MENTION_ANSWER,
        research: Optional[Union[str, List[Dict[str, str]]]] = None,
        analysis: Optional[Dict[str, Any]] = None,
        fail_search: bool = False,
    ):
        super().__init__("test-key", f"{platform}-test")
        self.platform = platform
        self.answer = answer
        self.research = RESEARCH_QUERIES if research is None else research
        self.analysis = ANALYSIS if analysis is None else analysis
        self.fail_search = fail_search
        self.prompts: List[str] = []
        self.questions: List[str] = []

    async def generate_text(self, prompt: str, system_prompt: Optional[str] = None, max_tokens: int = 1000) -> str:
        self.prompts.append(prompt)
        if "Analyze the following website content" in prompt:
            return json.dumps(self.analysis)
        if "Generate 10 search queries" in prompt:
            return self.research if isinstance(self.research, str) else json.dumps(self.research)
        if "Extract company/business names" in prompt:
            return json.dumps(COMPETITORS)
        return ""

    async def search(self, question, system_prompt, location=None) -> SearchAnswer:
        self.questions.append(question)
        if self.fail_search:
            raise ProviderError(f"{self.platform} is unavailable", provider=self.platform, status_code=503)
        text = self.answer(question) if callable(self.answer) else self.answer
        return SearchAnswer(text=text, search_enabled=True, model=self.model_name)

    @property
    def research_calls(self) -> int:
        return sum(1 for p in self.prompts if "Generate 10 search queries" in p)


def claude_response(content: str, success: bool = True, error: Optional[str] = None) -> AnalysisResponse:
    return AnalysisResponse(
        content=content,
        usage=TokenUsage(input_tokens=1200, output_tokens=800),
        model="claude-test",
        stop_reason="end_turn",
        success=success,
        error=error,
    )


class ScriptedClaude:
    """Answers competitive summary, action plan and PRD prompts with canned JSON."""

    def __init__(self):
        self.competitive = dict(COMPETITIVE_SUMMARY)
        self.action_plan = json.loads(json.dumps(ACTION_PLAN))
        self.prd = json.loads(json.dumps(PRD))
        self.analyze = AsyncMock(side_effect=self._analyze)
        self.close = AsyncMock()
        self.platform = "claude"

    async def _analyze(self, prompt: str, system: Optional[str] = None, **kwargs) -> AnalysisResponse:
        if "comprehensive PRD document" in prompt:
            return claude_response(json.dumps(self.prd))
        if "comprehensive action plan" in prompt:
            return claude_response(json.dumps(self.action_plan))
        if "competitive intelligence summary" in prompt:
            return claude_response(json.dumps(self.competitive))
        return claude_response("", success=False, error="unexpected prompt")

    def prompts_containing(self, marker: str) -> List[str]:
        return [c.args[0] for c in self.analyze.call_args_list if marker in c.args[0]]


class FakeCrawler:
    """Crawler stand-in returning a fixed result and counting calls."""

    def __init__(self, result: CrawlResult):
        self.result = result
        self.calls = 0
        self.closed = 0

    async def crawl(self, domain: str) -> CrawlResult:
        self.calls += 1
        return self.result

    async def close(self) -> None:
        self.closed += 1


def build_crawl_result(domain: str = DOMAIN) -> CrawlResult:
    pages = [
        CrawledPage(
            url=f"https://{domain}/",
            path="/",
            title="Acme Plumbing | Sydney Plumbers",
            description="Licensed Sydney plumbers for blocked drains and hot water repair.",
            h1="Sydney's friendly local plumbers",
            headings=["Blocked drains", "Hot water repair"],
            body_text=(
                "Acme Plumbing has served Sydney homeowners since 1998. Call +61 2 9000 0000 "
                "for blocked drains and hot water repair anywhere in Sydney."
            ),
            word_count=28,
            schema_data=[
                SchemaData(
                    type="Plumber",
                    name=BUSINESS_NAME,
                    address={"locality": "Sydney", "region": "NSW", "country": "Australia", "street_address": None},
                )
            ],
            has_meta_description=True,
        ),
        CrawledPage(
            url=f"https://{domain}/services",
            path="/services",
            title="Services | Acme Plumbing",
            h1="Our services",
            body_text="Blocked drains, hot water repair and leak detection.",
            word_count=8,
        ),
    ]
    return CrawlResult(
        domain=domain,
        pages=pages,
        has_sitemap=True,
        has_robots_txt=True,
        schema_types=["Plumber"],
        extracted_locations=["Sydney, Australia"],
    )


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    db_engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(engine=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        STEP_MAX_RETRIES=1,
        STEP_RETRY_DELAY=0,
        SITE_ANALYSIS_WAIT_ATTEMPTS=2,
        SITE_ANALYSIS_WAIT_DELAY=0,
        PLATFORM_QUERY_TIMEOUT=5,
        RESEND_API_KEY=None,
    )


@pytest.fixture
def workflow_engine(session_factory, settings) -> WorkflowEngine:
    return WorkflowEngine(
        session_factory,
        max_retries=settings.STEP_MAX_RETRIES,
        retry_delay=settings.STEP_RETRY_DELAY,
    )


# ============================================================================
# Provider Fixtures
# ============================================================================

@pytest.fixture
def platforms() -> Dict[str, FakeProvider]:
    """ChatGPT names the business; the other three only name competitors."""
    return {
        "chatgpt": FakeProvider("chatgpt", answer=MENTION_ANSWER),
        "claude": FakeProvider("claude"),
        "gemini": FakeProvider("gemini"),
        "perplexity": FakeProvider("perplexity"),
    }


@pytest.fixture
def claude() -> ScriptedClaude:
    return ScriptedClaude()


@pytest.fixture
def providers(platforms, claude) -> ProviderSet:
    return ProviderSet(
        platforms=platforms,
        analysis=platforms["chatgpt"],
        extractor=FakeProvider("extractor"),
        claude=claude,
    )


@pytest.fixture
def crawler() -> FakeCrawler:
    return FakeCrawler(build_crawl_result())


@pytest.fixture
def email_delivery():
    """Email service double; both sends succeed."""
    email = MagicMock()
    email.send_verification_email = AsyncMock(return_value=EmailResult(success=True, message_id="msg-verify"))
    email.send_scan_complete_email = AsyncMock(return_value=EmailResult(success=True, message_id="msg-complete"))
    return email


# ============================================================================
# Account Fixtures
# ============================================================================

@pytest.fixture
def free_lead(db) -> Lead:
    lead = Lead(email="owner@acmeplumbing.com.au", domain=DOMAIN, tier="free")
    db.add(lead)
    db.commit()
    return lead


@pytest.fixture
def pro_lead(db):
    """A lead with an active pro subscription for the domain: (lead, subscription)."""
    lead = Lead(email="pro@acmeplumbing.com.au", domain=DOMAIN, tier="free")
    db.add(lead)
    db.flush()
    subscription = DomainSubscription(lead_id=lead.id, domain=DOMAIN, tier="pro", status="active")
    db.add(subscription)
    db.commit()
    return lead, subscription


def seed_completed_scan(
    db,
    lead_id,
    domain_subscription_id=None,
    domain: Optional[str] = DOMAIN,
    with_analysis: bool = True,
    top_competitors: Optional[List[Dict[str, Any]]] = None,
) -> str:
    """A finished scan run with prompts, responses and a report. Returns the run id."""
    run = ScanRun(
        lead_id=lead_id,
        domain_subscription_id=domain_subscription_id,
        domain=domain,
        status=ScanStatus.COMPLETE,
        progress=100,
    )
    db.add(run)
    db.flush()

    if with_analysis:
        db.add(SiteAnalysis(
            run_id=run.id,
            business_name=BUSINESS_NAME,
            business_type="plumbing services",
            industry="Home Services",
            services=["blocked drains", "hot water repair"],
            key_phrases=["plumber sydney"],
            location="Sydney, Australia",
            pages_crawled=2,
            has_sitemap=True,
            has_robots_txt=True,
            schema_types=["Plumber"],
            has_meta_descriptions=True,
        ))

    prompt = ScanPrompt(
        run_id=run.id,
        prompt_text="best plumber in sydney",
        category="finding_provider",
        source=PromptSource.RESEARCHED,
    )
    db.add(prompt)
    db.flush()
    for platform in ("chatgpt", "claude"):
        db.add(PlatformResponse(
            run_id=run.id,
            prompt_id=prompt.id,
            platform=platform,
            response_text=MENTION_ANSWER if platform == "chatgpt" else NO_MENTION_ANSWER,
            domain_mentioned=platform == "chatgpt",
            competitors_mentioned=[{"name": name, "context": ""} for name in COMPETITORS],
        ))

    if top_competitors is None:
        top_competitors = [{"name": name, "count": 2} for name in COMPETITORS]
    db.add(Report(
        run_id=run.id,
        url_token=secrets.token_hex(8),
        visibility_score=59,
        top_competitors=top_competitors,
    ))
    db.commit()
    return str(run.id)


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
