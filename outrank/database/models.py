"""
SQLAlchemy Models for the Outrank Visibility Engine

Design Principles:
1. One row per (run, thing) for every aggregate - retries upsert, never duplicate
2. Run-scoped collections are replaced wholesale when a run is re-processed
3. Workflow bookkeeping lives next to the business data it protects
4. Portable types so the same models run on PostgreSQL and SQLite
"""

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Enum, Index, UniqueConstraint, JSON, Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# ENUMS
# =============================================================================

class ScanStatus(enum.Enum):
    """Status of a scan run"""
    CRAWLING = "crawling"
    ANALYZING = "analyzing"
    RESEARCHING = "researching"
    GENERATING = "generating"
    QUERYING = "querying"
    COMPLETE = "complete"
    FAILED = "failed"


class EnrichmentStatus(enum.Enum):
    """Status of the paying-tier enrichment attached to a scan run"""
    NOT_APPLICABLE = "not_applicable"  # Free tier
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


class PromptSource(enum.Enum):
    """Where a scan prompt came from"""
    SUBSCRIBER = "subscriber"    # Materialized from the question library
    RESEARCHED = "researched"    # Chosen by query research


class WorkflowStatus(enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# ACCOUNTS
# =============================================================================

class Lead(Base):
    """A person who requested a scan (free or paying)"""
    __tablename__ = "leads"

    id = Column(Uuid, primary_key=True, default=uuid4)
    email = Column(String(255), unique=True, nullable=False)

    # Legacy single-domain accounts keep their domain here
    domain = Column(String(255))
    tier = Column(String(20), default="free")
    email_verified = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    scan_runs = relationship("ScanRun", back_populates="lead")
    domain_subscriptions = relationship("DomainSubscription", back_populates="lead")


class DomainSubscription(Base):
    """A paid subscription for one domain (multi-domain accounts have several)"""
    __tablename__ = "domain_subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    domain = Column(String(255), nullable=False)
    tier = Column(String(20), nullable=False, default="starter")
    status = Column(String(20), nullable=False, default="active")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    lead = relationship("Lead", back_populates="domain_subscriptions")

    __table_args__ = (
        Index("idx_domain_subscription_lead", "lead_id", "status"),
    )


# =============================================================================
# SCAN RUNS
# =============================================================================

class ScanRun(Base):
    """One end-to-end attempt to measure a domain's AI visibility"""
    __tablename__ = "scan_runs"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    domain_subscription_id = Column(Uuid, ForeignKey("domain_subscriptions.id", ondelete="SET NULL"))

    # Stamped on the run so multi-domain accounts are unambiguous
    domain = Column(String(255))

    status = Column(Enum(ScanStatus), default=ScanStatus.CRAWLING, nullable=False)
    progress = Column(Integer, default=0)
    error_message = Column(Text)

    enrichment_status = Column(Enum(EnrichmentStatus), default=EnrichmentStatus.PENDING)
    enrichment_started_at = Column(DateTime)
    enrichment_completed_at = Column(DateTime)
    enrichment_error = Column(Text)

    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    lead = relationship("Lead", back_populates="scan_runs")

    __table_args__ = (
        Index("idx_scan_run_lead_time", "lead_id", "created_at"),
        Index("idx_scan_run_status", "status"),
    )


class CrawledPage(Base):
    """A page fetched by the crawler"""
    __tablename__ = "crawled_pages"

    id = Column(Uuid, primary_key=True, default=uuid4)
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"), nullable=False)

    url = Column(Text, nullable=False)
    url_hash = Column(String(64), nullable=False)
    path = Column(Text)
    title = Column(Text)
    meta_description = Column(Text)
    h1 = Column(Text)
    headings = Column(JSONType, default=list)
    word_count = Column(Integer, default=0)
    has_meta_description = Column(Boolean, default=False)
    schema_types = Column(JSONType, default=list)
    schema_data = Column(JSONType, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("run_id", "url_hash", name="uq_crawled_page_url"),
    )


class SiteAnalysis(Base):
    """Business profile extracted from the crawl (one per run)"""
    __tablename__ = "site_analyses"

    id = Column(Uuid, primary_key=True, default=uuid4)
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"), nullable=False, unique=True)

    business_name = Column(String(255))
    business_type = Column(String(255))
    industry = Column(String(255))
    services = Column(JSONType, default=list)
    products = Column(JSONType, default=list)
    target_audience = Column(Text)
    key_phrases = Column(JSONType, default=list)

    # Geography
    location = Column(String(255))
    locations = Column(JSONType, default=list)
    city = Column(String(255))
    country = Column(String(255))
    country_code = Column(String(8))
    tld_country = Column(String(255))
    location_confidence = Column(String(10))
    location_signals = Column(JSONType, default=list)

    # Crawl signals
    pages_crawled = Column(Integer, default=0)
    has_sitemap = Column(Boolean, default=False)
    has_robots_txt = Column(Boolean, default=False)
    schema_types = Column(JSONType, default=list)
    extracted_locations = Column(JSONType, default=list)
    extracted_services = Column(JSONType, default=list)
    extracted_products = Column(JSONType, default=list)
    has_meta_descriptions = Column(Boolean, default=False)

    raw_content = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class QueryResearchResult(Base):
    """Every raw suggestion returned by query research"""
    __tablename__ = "query_research_results"

    id = Column(Uuid, primary_key=True, default=uuid4)
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"), nullable=False)
    platform = Column(String(20), nullable=False)
    suggested_query = Column(Text, nullable=False)
    category = Column(String(50))
    selected_for_scan = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_query_research_run", "run_id"),
    )


class ScanPrompt(Base):
    """A question asked of every platform during one run"""
    __tablename__ = "scan_prompts"

    id = Column(Uuid, primary_key=True, default=uuid4)
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"), nullable=False)
    prompt_text = Column(Text, nullable=False)
    category = Column(String(50), default="general")
    source = Column(Enum(PromptSource), default=PromptSource.RESEARCHED)
    sort_order = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    responses = relationship("PlatformResponse", back_populates="prompt", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_scan_prompt_run", "run_id", "sort_order"),
    )


class PlatformResponse(Base):
    """One AI platform's answer to one prompt"""
    __tablename__ = "llm_responses"

    id = Column(Uuid, primary_key=True, default=uuid4)
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"), nullable=False)
    prompt_id = Column(Uuid, ForeignKey("scan_prompts.id", ondelete="CASCADE"), nullable=False)
    platform = Column(String(20), nullable=False)

    response_text = Column(Text, default="")
    domain_mentioned = Column(Boolean, default=False)
    mention_position = Column(Integer)  # 1 = first third, 2 = middle, 3 = last third
    competitors_mentioned = Column(JSONType, default=list)  # [{"name", "context"}]
    sources = Column(JSONType, default=list)
    search_enabled = Column(Boolean, default=False)
    response_time_ms = Column(Integer, default=0)
    error_message = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)

    prompt = relationship("ScanPrompt", back_populates="responses")

    __table_args__ = (
        UniqueConstraint("run_id", "prompt_id", "platform", name="uq_response_prompt_platform"),
        Index("idx_response_run_platform", "run_id", "platform"),
    )


class Report(Base):
    """The public visibility report for a run"""
    __tablename__ = "reports"

    id = Column(Uuid, primary_key=True, default=uuid4)
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"), nullable=False, unique=True)

    url_token = Column(String(64), nullable=False, unique=True)
    visibility_score = Column(Integer, default=0)
    platform_scores = Column(JSONType, default=dict)
    platform_mentions = Column(JSONType, default=dict)
    top_competitors = Column(JSONType, default=list)
    summary = Column(Text)
    competitive_summary = Column(JSONType)

    requires_verification = Column(Boolean, default=False)
    expires_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ScoreHistory(Base):
    """Score snapshot per run, for trend charts and score deltas"""
    __tablename__ = "score_history"

    id = Column(Uuid, primary_key=True, default=uuid4)
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"), nullable=False, unique=True)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    domain_subscription_id = Column(Uuid, ForeignKey("domain_subscriptions.id", ondelete="SET NULL"))

    visibility_score = Column(Integer, default=0)
    chatgpt_score = Column(Integer)
    claude_score = Column(Integer)
    gemini_score = Column(Integer)
    perplexity_score = Column(Integer)
    chatgpt_mentions = Column(Integer, default=0)
    claude_mentions = Column(Integer, default=0)
    gemini_mentions = Column(Integer, default=0)
    perplexity_mentions = Column(Integer, default=0)
    query_coverage = Column(Float, default=0.0)
    total_queries = Column(Integer, default=0)
    total_mentions = Column(Integer, default=0)

    recorded_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_score_history_lead_time", "lead_id", "recorded_at"),
    )


# =============================================================================
# SUBSCRIBER LIBRARY
# =============================================================================

class SubscriberQuestion(Base):
    """A question in a paying lead's personal library"""
    __tablename__ = "subscriber_questions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    domain_subscription_id = Column(Uuid, ForeignKey("domain_subscriptions.id", ondelete="CASCADE"))

    prompt_text = Column(Text, nullable=False)
    category = Column(String(50), default="general")
    source = Column(String(20), default="ai_generated")  # ai_generated, user_created
    is_active = Column(Boolean, default=True)
    is_archived = Column(Boolean, default=False)
    sort_order = Column(Integer, default=0)
    version = Column(Integer, default=1)

    original_prompt_id = Column(Uuid)
    source_run_id = Column(Uuid)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    archived_at = Column(DateTime)

    history = relationship("SubscriberQuestionHistory", back_populates="question", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_subscriber_question_lead", "lead_id", "is_active", "is_archived"),
    )


class SubscriberQuestionHistory(Base):
    """Prior versions of an edited subscriber question"""
    __tablename__ = "subscriber_question_history"

    id = Column(Uuid, primary_key=True, default=uuid4)
    question_id = Column(Uuid, ForeignKey("subscriber_questions.id", ondelete="CASCADE"), nullable=False)
    version = Column(Integer, nullable=False)
    prompt_text = Column(Text, nullable=False)
    category = Column(String(50))
    changed_at = Column(DateTime, default=datetime.utcnow)

    question = relationship("SubscriberQuestion", back_populates="history")


class SubscriberCompetitor(Base):
    """A competitor a paying lead chose to track"""
    __tablename__ = "subscriber_competitors"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    domain_subscription_id = Column(Uuid, ForeignKey("domain_subscriptions.id", ondelete="CASCADE"))
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# ENRICHMENT
# =============================================================================

class BrandAwarenessResult(Base):
    """Outcome of one direct brand probe against one platform"""
    __tablename__ = "brand_awareness_results"

    id = Column(Uuid, primary_key=True, default=uuid4)
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"), nullable=False)
    platform = Column(String(20), nullable=False)
    query_type = Column(String(30), nullable=False)  # brand_recall, service_check, competitor_compare

    tested_entity = Column(String(255))
    tested_attribute = Column(String(255))
    entity_recognized = Column(Boolean, default=False)
    attribute_mentioned = Column(Boolean, default=False)
    response_text = Column(Text)
    confidence_score = Column(Integer, default=0)

    compared_to = Column(String(255))
    positioning = Column(String(20))  # stronger, weaker, equal, not_compared

    response_time_ms = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_brand_awareness_run", "run_id", "query_type"),
    )


class ActionPlan(Base):
    """Current action plan for a lead / domain subscription"""
    __tablename__ = "action_plans"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    domain_subscription_id = Column(Uuid, ForeignKey("domain_subscriptions.id", ondelete="CASCADE"))
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="SET NULL"))

    executive_summary = Column(Text)
    page_edits = Column(JSONType, default=list)
    content_priorities = Column(JSONType, default=list)
    keyword_map = Column(JSONType, default=list)
    key_takeaways = Column(JSONType, default=list)

    total_actions = Column(Integer, default=0)
    quick_wins_count = Column(Integer, default=0)
    strategic_count = Column(Integer, default=0)
    backlog_count = Column(Integer, default=0)

    generated_at = Column(DateTime, default=datetime.utcnow)

    items = relationship(
        "ActionItem", back_populates="plan", cascade="all, delete-orphan", order_by="ActionItem.sort_order"
    )


class ActionItem(Base):
    __tablename__ = "action_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    plan_id = Column(Uuid, ForeignKey("action_plans.id", ondelete="CASCADE"), nullable=False)

    title = Column(Text, nullable=False)
    description = Column(Text)
    rationale = Column(Text)
    priority = Column(String(20))  # quick_win, strategic, backlog
    category = Column(String(20))
    estimated_impact = Column(String(10))
    estimated_effort = Column(String(10))
    target_page = Column(Text)
    target_keywords = Column(JSONType, default=list)
    consensus = Column(JSONType, default=list)
    implementation_steps = Column(JSONType, default=list)
    expected_outcome = Column(Text)
    sort_order = Column(Integer, default=0)

    status = Column(String(20), default="pending")  # pending, completed, dismissed
    completed_at = Column(DateTime)

    plan = relationship("ActionPlan", back_populates="items")


class ActionItemHistory(Base):
    """Completed or dismissed actions that survive plan regeneration"""
    __tablename__ = "action_items_history"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    domain_subscription_id = Column(Uuid, ForeignKey("domain_subscriptions.id", ondelete="CASCADE"))
    original_action_id = Column(Uuid)
    scan_run_id = Column(Uuid)

    title = Column(Text, nullable=False)
    description = Column(Text)
    category = Column(String(20))
    status = Column(String(20))
    completed_at = Column(DateTime)
    archived_at = Column(DateTime, default=datetime.utcnow)


class PrdDocument(Base):
    """Developer-facing requirements document generated from the action plan"""
    __tablename__ = "prd_documents"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    domain_subscription_id = Column(Uuid, ForeignKey("domain_subscriptions.id", ondelete="CASCADE"))
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"), nullable=False, unique=True)

    title = Column(Text)
    overview = Column(Text)
    goals = Column(JSONType, default=list)
    tech_stack = Column(JSONType, default=list)
    target_platforms = Column(JSONType, default=list)

    generated_at = Column(DateTime, default=datetime.utcnow)

    tasks = relationship(
        "PrdTask", back_populates="prd", cascade="all, delete-orphan", order_by="PrdTask.sort_order"
    )


class PrdTask(Base):
    __tablename__ = "prd_tasks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    prd_id = Column(Uuid, ForeignKey("prd_documents.id", ondelete="CASCADE"), nullable=False)

    title = Column(Text, nullable=False)
    description = Column(Text)
    acceptance_criteria = Column(JSONType, default=list)
    section = Column(String(20))  # quick_wins, strategic, backlog
    category = Column(String(30))
    priority = Column(Integer, default=0)
    estimated_hours = Column(Float)
    file_paths = Column(JSONType, default=list)
    code_snippets = Column(JSONType, default=dict)
    prompt_context = Column(Text)
    implementation_notes = Column(Text)
    requires_content = Column(Boolean, default=False)
    content_prompts = Column(JSONType, default=list)
    sort_order = Column(Integer, default=0)

    status = Column(String(20), default="pending")
    completed_at = Column(DateTime)

    prd = relationship("PrdDocument", back_populates="tasks")


class PrdTaskHistory(Base):
    """Completed PRD tasks that survive PRD regeneration"""
    __tablename__ = "prd_tasks_history"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    domain_subscription_id = Column(Uuid, ForeignKey("domain_subscriptions.id", ondelete="CASCADE"))
    original_task_id = Column(Uuid)
    scan_run_id = Column(Uuid)

    title = Column(Text, nullable=False)
    description = Column(Text)
    section = Column(String(20))
    category = Column(String(30))
    completed_at = Column(DateTime)
    archived_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# EMAIL
# =============================================================================

class EmailLog(Base):
    __tablename__ = "email_logs"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"))
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="SET NULL"))
    email_type = Column(String(30), nullable=False)  # verification, scan_complete
    recipient = Column(String(255), nullable=False)
    resend_id = Column(String(100))
    status = Column(String(20), default="sent")
    sent_at = Column(DateTime, default=datetime.utcnow)


class EmailVerificationToken(Base):
    __tablename__ = "email_verification_tokens"

    id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    run_id = Column(Uuid, ForeignKey("scan_runs.id", ondelete="CASCADE"))
    token = Column(String(128), nullable=False, unique=True)
    email = Column(String(255), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# WORKFLOW BOOKKEEPING
# =============================================================================

class WorkflowRun(Base):
    """One execution of a workflow (scan or enrichment)"""
    __tablename__ = "workflow_runs"

    id = Column(String(100), primary_key=True)
    workflow_name = Column(String(50), nullable=False)
    # Business identity used for cancellation, e.g. "scan:<scan id>"
    business_key = Column(String(150))

    status = Column(Enum(WorkflowStatus), default=WorkflowStatus.RUNNING, nullable=False)
    payload = Column(JSONType, default=dict)
    result = Column(JSONType)
    error = Column(Text)

    started_at = Column(DateTime, default=datetime.utcnow)
    finished_at = Column(DateTime)

    steps = relationship("WorkflowStep", back_populates="workflow_run", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_workflow_run_key", "business_key", "status"),
    )


class WorkflowStep(Base):
    """Memoized result of one named step inside a workflow execution"""
    __tablename__ = "workflow_steps"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workflow_run_id = Column(String(100), ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False)
    step_name = Column(String(150), nullable=False)

    status = Column(Enum(StepStatus), default=StepStatus.RUNNING, nullable=False)
    attempts = Column(Integer, default=0)
    result = Column(JSONType)
    error = Column(Text)

    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)

    workflow_run = relationship("WorkflowRun", back_populates="steps")

    __table_args__ = (
        UniqueConstraint("workflow_run_id", "step_name", name="uq_workflow_step"),
    )
