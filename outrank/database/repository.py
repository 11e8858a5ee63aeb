"""
Repository Layer - Clean Interface for Data Operations

Provides simple functions to store and retrieve data. Every function takes
the session explicitly; callers own the transaction (normally through
get_db_context with the workflow's session factory).

Aggregates that retried steps may write concurrently (site analysis,
report, score history, crawled pages, platform responses) go through
INSERT ... ON CONFLICT DO UPDATE so a retry replaces instead of duplicating.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Dict, Any, Iterable, Optional
from uuid import UUID

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .models import (
    Lead, DomainSubscription, ScanRun, CrawledPage, SiteAnalysis,
    QueryResearchResult, ScanPrompt, PlatformResponse, Report, ScoreHistory,
    SubscriberQuestion, SubscriberQuestionHistory, SubscriberCompetitor,
    BrandAwarenessResult, ActionPlan, ActionItem, ActionItemHistory,
    PrdDocument, PrdTask, PrdTaskHistory, EmailLog, EmailVerificationToken,
    ScanStatus, EnrichmentStatus, PromptSource,
)

logger = logging.getLogger(__name__)

PLATFORMS = ("chatgpt", "claude", "gemini", "perplexity")


# =============================================================================
# HELPERS
# =============================================================================

def _as_uuid(value) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def _upsert(db: Session, model, values: Dict[str, Any], conflict_columns: List[str],
            preserve: Iterable[str] = ()) -> None:
    """
    INSERT ... ON CONFLICT DO UPDATE for PostgreSQL and SQLite.

    Columns in conflict_columns and preserve keep their stored value on update.
    """
    dialect = db.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

    stmt = insert(model.__table__).values(**values)
    keep = set(conflict_columns) | set(preserve) | {"id", "created_at"}
    update_cols = {key: stmt.excluded[key] for key in values if key not in keep}

    if update_cols:
        stmt = stmt.on_conflict_do_update(index_elements=conflict_columns, set_=update_cols)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)

    db.execute(stmt)


def hash_url(url: str) -> str:
    """Stable key for a crawled URL within a run."""
    return hashlib.sha256(url.rstrip("/").lower().encode("utf-8")).hexdigest()


def _subscription_scope(query, model, lead_id, domain_subscription_id):
    """Narrow a query to one lead, and to one domain subscription when given."""
    query = query.filter(model.lead_id == _as_uuid(lead_id))
    if domain_subscription_id:
        query = query.filter(model.domain_subscription_id == _as_uuid(domain_subscription_id))
    return query


# =============================================================================
# LEADS AND SUBSCRIPTIONS
# =============================================================================

def get_lead(db: Session, lead_id) -> Optional[Lead]:
    return db.get(Lead, _as_uuid(lead_id))


def find_lead_by_email(db: Session, email: str) -> Optional[Lead]:
    return db.query(Lead).filter(Lead.email == email.strip().lower()).first()


def get_or_create_lead(db: Session, email: str, domain: Optional[str] = None) -> Lead:
    """Find a lead by email, creating a free-tier lead if none exists."""
    lead = find_lead_by_email(db, email)
    if lead:
        if domain and not lead.domain:
            lead.domain = domain
        return lead

    lead = Lead(email=email.strip().lower(), domain=domain, tier="free")
    db.add(lead)
    db.flush()
    logger.info(f"Created lead {lead.id} for {lead.email}")
    return lead


def get_domain_subscription(db: Session, subscription_id) -> Optional[DomainSubscription]:
    if not subscription_id:
        return None
    return db.get(DomainSubscription, _as_uuid(subscription_id))


def get_active_subscription_tiers(db: Session, lead_id) -> List[str]:
    rows = (
        db.query(DomainSubscription.tier)
        .filter(
            DomainSubscription.lead_id == _as_uuid(lead_id),
            DomainSubscription.status == "active",
        )
        .all()
    )
    return [row[0] for row in rows]


# =============================================================================
# SCAN RUN MANAGEMENT
# =============================================================================

def get_scan_run(db: Session, run_id) -> Optional[ScanRun]:
    return db.get(ScanRun, _as_uuid(run_id))


def create_or_reset_scan_run(
    db: Session,
    lead_id,
    domain: str,
    run_id=None,
    domain_subscription_id=None,
) -> ScanRun:
    """
    Create the run row, or reset an existing one to the start of the pipeline.

    Re-triggering a run keeps its id so downstream aggregates are updated
    in place rather than duplicated.
    """
    run = get_scan_run(db, run_id) if run_id else None

    if run is None:
        run = ScanRun(lead_id=_as_uuid(lead_id))
        if run_id:
            run.id = _as_uuid(run_id)
        db.add(run)

    run.lead_id = _as_uuid(lead_id)
    run.domain = domain
    run.domain_subscription_id = _as_uuid(domain_subscription_id)
    run.status = ScanStatus.CRAWLING
    run.progress = 5
    run.error_message = None
    run.started_at = datetime.utcnow()
    run.completed_at = None
    db.flush()
    return run


def update_scan_status(
    db: Session,
    run_id,
    status: ScanStatus,
    progress: Optional[int] = None,
    error_message: Optional[str] = None,
) -> None:
    run = get_scan_run(db, run_id)
    if run is None:
        logger.warning(f"Scan run {run_id} not found for status update")
        return

    run.status = status
    if progress is not None:
        run.progress = progress
    if error_message is not None:
        run.error_message = error_message[:2000]
    if status in (ScanStatus.COMPLETE, ScanStatus.FAILED):
        run.completed_at = datetime.utcnow()


def update_enrichment_status(
    db: Session,
    run_id,
    status: EnrichmentStatus,
    error: Optional[str] = None,
) -> None:
    run = get_scan_run(db, run_id)
    if run is None:
        logger.warning(f"Scan run {run_id} not found for enrichment update")
        return

    run.enrichment_status = status
    if status == EnrichmentStatus.PROCESSING:
        run.enrichment_started_at = datetime.utcnow()
        run.enrichment_error = None
    elif status in (EnrichmentStatus.COMPLETE, EnrichmentStatus.FAILED):
        run.enrichment_completed_at = datetime.utcnow()
    if error is not None:
        run.enrichment_error = error[:2000]


# =============================================================================
# CRAWL AND ANALYSIS
# =============================================================================

def store_crawled_pages(db: Session, run_id, pages: List[Dict[str, Any]]) -> int:
    """Upsert crawled pages keyed by (run, url hash)."""
    for page in pages:
        _upsert(
            db,
            CrawledPage,
            {
                "run_id": _as_uuid(run_id),
                "url": page["url"],
                "url_hash": hash_url(page["url"]),
                "path": page.get("path"),
                "title": page.get("title"),
                "meta_description": page.get("description"),
                "h1": page.get("h1"),
                "headings": page.get("headings", []),
                "word_count": page.get("word_count", 0),
                "has_meta_description": page.get("has_meta_description", False),
                "schema_types": [s.get("type") for s in page.get("schema_data", []) if s.get("type")],
                "schema_data": page.get("schema_data", []),
                "created_at": datetime.utcnow(),
            },
            conflict_columns=["run_id", "url_hash"],
        )
    return len(pages)


def delete_crawled_pages(db: Session, run_id) -> int:
    return db.query(CrawledPage).filter(CrawledPage.run_id == _as_uuid(run_id)).delete()


def get_crawled_pages(db: Session, run_id) -> List[CrawledPage]:
    return (
        db.query(CrawledPage)
        .filter(CrawledPage.run_id == _as_uuid(run_id))
        .order_by(CrawledPage.created_at)
        .all()
    )


def upsert_site_analysis(db: Session, run_id, values: Dict[str, Any]) -> None:
    now = datetime.utcnow()
    row = dict(values)
    row.update({"run_id": _as_uuid(run_id), "created_at": now, "updated_at": now})
    _upsert(db, SiteAnalysis, row, conflict_columns=["run_id"])


def get_site_analysis(db: Session, run_id) -> Optional[SiteAnalysis]:
    return db.query(SiteAnalysis).filter(SiteAnalysis.run_id == _as_uuid(run_id)).first()


# =============================================================================
# PROMPTS AND RESEARCH
# =============================================================================

def replace_research_results(db: Session, run_id, results: List[Dict[str, Any]]) -> None:
    db.query(QueryResearchResult).filter(QueryResearchResult.run_id == _as_uuid(run_id)).delete()
    for result in results:
        db.add(QueryResearchResult(
            run_id=_as_uuid(run_id),
            platform=result["platform"],
            suggested_query=result["query"],
            category=result.get("category"),
            selected_for_scan=result.get("selected_for_scan", False),
        ))


def replace_scan_prompts(
    db: Session,
    run_id,
    prompts: List[Dict[str, Any]],
    source: PromptSource,
) -> List[Dict[str, Any]]:
    """
    Replace the run's prompt set.

    Responses to the previous prompt set are removed with it, so a
    re-processed run never mixes answers to two different question sets.
    """
    run_uuid = _as_uuid(run_id)
    db.query(PlatformResponse).filter(PlatformResponse.run_id == run_uuid).delete()
    db.query(ScanPrompt).filter(ScanPrompt.run_id == run_uuid).delete()

    rows = []
    for index, prompt in enumerate(prompts):
        row = ScanPrompt(
            run_id=run_uuid,
            prompt_text=prompt["prompt_text"],
            category=prompt.get("category") or "general",
            source=source,
            sort_order=index,
        )
        db.add(row)
        rows.append(row)
    db.flush()

    return [
        {
            "id": str(row.id),
            "prompt_text": row.prompt_text,
            "category": row.category,
            "sort_order": row.sort_order,
        }
        for row in rows
    ]


def upsert_platform_response(db: Session, run_id, prompt_id, platform: str, result: Dict[str, Any]) -> None:
    """One response per (run, prompt, platform); retries overwrite."""
    _upsert(
        db,
        PlatformResponse,
        {
            "run_id": _as_uuid(run_id),
            "prompt_id": _as_uuid(prompt_id),
            "platform": platform,
            "response_text": result.get("response", ""),
            "domain_mentioned": bool(result.get("domain_mentioned")),
            "mention_position": result.get("mention_position"),
            "competitors_mentioned": result.get("competitors", []),
            "sources": result.get("sources", []),
            "search_enabled": bool(result.get("search_enabled")),
            "response_time_ms": result.get("response_time_ms", 0),
            "error_message": result.get("error"),
            "created_at": datetime.utcnow(),
        },
        conflict_columns=["run_id", "prompt_id", "platform"],
    )


def get_platform_responses(db: Session, run_id, platform: Optional[str] = None) -> List[PlatformResponse]:
    query = db.query(PlatformResponse).filter(PlatformResponse.run_id == _as_uuid(run_id))
    if platform:
        query = query.filter(PlatformResponse.platform == platform)
    return query.order_by(PlatformResponse.created_at).all()


# =============================================================================
# REPORTS AND SCORE HISTORY
# =============================================================================

def get_report(db: Session, run_id) -> Optional[Report]:
    return db.query(Report).filter(Report.run_id == _as_uuid(run_id)).first()


def upsert_report(
    db: Session,
    run_id,
    values: Dict[str, Any],
    expires_at: Optional[datetime] = None,
    requires_verification: bool = False,
) -> Report:
    """
    Create the run's report or update its scores in place.

    An existing report keeps its url_token and expiry.
    """
    now = datetime.utcnow()
    row = dict(values)
    row.update({
        "run_id": _as_uuid(run_id),
        "url_token": secrets.token_hex(8),
        "expires_at": expires_at,
        "requires_verification": requires_verification,
        "created_at": now,
        "updated_at": now,
    })
    _upsert(db, Report, row, conflict_columns=["run_id"], preserve=("url_token", "expires_at"))
    db.flush()

    report = get_report(db, run_id)
    db.refresh(report)
    return report


def save_competitive_summary(db: Session, run_id, summary: Optional[Dict[str, Any]]) -> bool:
    report = get_report(db, run_id)
    if report is None:
        return False
    report.competitive_summary = summary
    return True


def upsert_score_history(db: Session, run_id, lead_id, domain_subscription_id, values: Dict[str, Any]) -> None:
    row = dict(values)
    row.update({
        "run_id": _as_uuid(run_id),
        "lead_id": _as_uuid(lead_id),
        "domain_subscription_id": _as_uuid(domain_subscription_id),
        "recorded_at": datetime.utcnow(),
    })
    _upsert(db, ScoreHistory, row, conflict_columns=["run_id"])


def get_previous_score(db: Session, lead_id, exclude_run_id, domain_subscription_id=None) -> Optional[int]:
    """Most recent visibility score for the lead, ignoring the current run."""
    query = _subscription_scope(db.query(ScoreHistory), ScoreHistory, lead_id, domain_subscription_id)
    row = (
        query.filter(ScoreHistory.run_id != _as_uuid(exclude_run_id))
        .order_by(ScoreHistory.recorded_at.desc())
        .first()
    )
    return row.visibility_score if row else None


# =============================================================================
# SUBSCRIBER QUESTIONS AND COMPETITORS
# =============================================================================

def get_active_subscriber_questions(db: Session, lead_id, domain_subscription_id=None) -> List[SubscriberQuestion]:
    query = _subscription_scope(db.query(SubscriberQuestion), SubscriberQuestion, lead_id, domain_subscription_id)
    return (
        query.filter(SubscriberQuestion.is_active.is_(True), SubscriberQuestion.is_archived.is_(False))
        .order_by(SubscriberQuestion.sort_order)
        .all()
    )


def count_subscriber_questions(db: Session, lead_id, domain_subscription_id=None) -> int:
    query = _subscription_scope(db.query(SubscriberQuestion), SubscriberQuestion, lead_id, domain_subscription_id)
    return query.count()


def seed_subscriber_questions(
    db: Session,
    lead_id,
    domain_subscription_id,
    run_id,
    prompts: List[Dict[str, Any]],
) -> int:
    """Copy a first scan's prompts into the lead's question library."""
    for index, prompt in enumerate(prompts):
        db.add(SubscriberQuestion(
            lead_id=_as_uuid(lead_id),
            domain_subscription_id=_as_uuid(domain_subscription_id),
            prompt_text=prompt["prompt_text"],
            category=prompt.get("category") or "general",
            source="ai_generated",
            sort_order=index,
            original_prompt_id=_as_uuid(prompt.get("id")),
            source_run_id=_as_uuid(run_id),
        ))
    return len(prompts)


def update_subscriber_question(
    db: Session,
    question_id,
    prompt_text: str,
    category: Optional[str] = None,
) -> Optional[SubscriberQuestion]:
    """Edit a question, keeping the previous wording as a history entry."""
    question = db.get(SubscriberQuestion, _as_uuid(question_id))
    if question is None:
        return None

    db.add(SubscriberQuestionHistory(
        question_id=question.id,
        version=question.version or 1,
        prompt_text=question.prompt_text,
        category=question.category,
    ))
    question.prompt_text = prompt_text
    if category:
        question.category = category
    question.version = (question.version or 1) + 1
    question.source = "user_created"
    return question


def set_subscriber_question_archived(db: Session, question_id, archived: bool) -> Optional[SubscriberQuestion]:
    question = db.get(SubscriberQuestion, _as_uuid(question_id))
    if question is None:
        return None
    question.is_archived = archived
    question.archived_at = datetime.utcnow() if archived else None
    return question


def get_tracked_competitors(db: Session, lead_id, domain_subscription_id=None, limit: int = 5) -> List[str]:
    query = _subscription_scope(db.query(SubscriberCompetitor), SubscriberCompetitor, lead_id, domain_subscription_id)
    rows = (
        query.filter(SubscriberCompetitor.is_active.is_(True))
        .order_by(SubscriberCompetitor.created_at)
        .limit(limit)
        .all()
    )
    return [row.name for row in rows]


# =============================================================================
# BRAND AWARENESS
# =============================================================================

def delete_brand_awareness(db: Session, run_id) -> int:
    return db.query(BrandAwarenessResult).filter(BrandAwarenessResult.run_id == _as_uuid(run_id)).delete()


def delete_brand_awareness_for_platform(db: Session, run_id, platform: str) -> int:
    return (
        db.query(BrandAwarenessResult)
        .filter(BrandAwarenessResult.run_id == _as_uuid(run_id), BrandAwarenessResult.platform == platform)
        .delete()
    )


def store_brand_awareness(db: Session, run_id, results: List[Dict[str, Any]]) -> int:
    for result in results:
        db.add(BrandAwarenessResult(
            run_id=_as_uuid(run_id),
            platform=result["platform"],
            query_type=result["query_type"],
            tested_entity=result.get("tested_entity"),
            tested_attribute=result.get("tested_attribute"),
            entity_recognized=result.get("entity_recognized", False),
            attribute_mentioned=result.get("attribute_mentioned", False),
            response_text=result.get("response_text"),
            confidence_score=result.get("confidence_score", 0),
            compared_to=result.get("compared_to"),
            positioning=result.get("positioning"),
            response_time_ms=result.get("response_time_ms", 0),
        ))
    return len(results)


# =============================================================================
# ACTION PLANS
# =============================================================================

def get_action_plan(db: Session, lead_id, domain_subscription_id=None) -> Optional[ActionPlan]:
    query = _subscription_scope(db.query(ActionPlan), ActionPlan, lead_id, domain_subscription_id)
    return query.order_by(ActionPlan.generated_at.desc()).first()


def get_completed_action_titles(db: Session, lead_id, domain_subscription_id=None) -> List[str]:
    query = _subscription_scope(db.query(ActionItemHistory), ActionItemHistory, lead_id, domain_subscription_id)
    return [row.title for row in query.all()]


def archive_finished_actions(db: Session, lead_id, domain_subscription_id, run_id) -> int:
    """Move completed and dismissed items of the current plan into history."""
    plan = get_action_plan(db, lead_id, domain_subscription_id)
    if plan is None:
        return 0

    archived = 0
    for item in plan.items:
        if item.status not in ("completed", "dismissed"):
            continue
        db.add(ActionItemHistory(
            lead_id=_as_uuid(lead_id),
            domain_subscription_id=_as_uuid(domain_subscription_id),
            original_action_id=item.id,
            scan_run_id=_as_uuid(run_id),
            title=item.title,
            description=item.description,
            category=item.category,
            status=item.status,
            completed_at=item.completed_at,
        ))
        archived += 1
    return archived


def replace_action_plan(
    db: Session,
    lead_id,
    domain_subscription_id,
    run_id,
    plan_values: Dict[str, Any],
    items: List[Dict[str, Any]],
) -> ActionPlan:
    query = _subscription_scope(db.query(ActionPlan), ActionPlan, lead_id, domain_subscription_id)
    for old_plan in query.all():
        db.delete(old_plan)
    db.flush()

    plan = ActionPlan(
        lead_id=_as_uuid(lead_id),
        domain_subscription_id=_as_uuid(domain_subscription_id),
        run_id=_as_uuid(run_id),
        **plan_values,
    )
    for index, item in enumerate(items):
        plan.items.append(ActionItem(sort_order=index, **item))
    db.add(plan)
    db.flush()
    return plan


# =============================================================================
# PRD DOCUMENTS
# =============================================================================

def archive_completed_prd_tasks(db: Session, lead_id, domain_subscription_id, run_id) -> int:
    """Copy completed tasks into history, once per task."""
    query = _subscription_scope(db.query(PrdDocument), PrdDocument, lead_id, domain_subscription_id)
    already = {
        row[0]
        for row in _subscription_scope(
            db.query(PrdTaskHistory.original_task_id), PrdTaskHistory, lead_id, domain_subscription_id
        ).all()
    }
    archived = 0
    for prd in query.all():
        for task in prd.tasks:
            if task.status != "completed" or task.id in already:
                continue
            db.add(PrdTaskHistory(
                lead_id=_as_uuid(lead_id),
                domain_subscription_id=_as_uuid(domain_subscription_id),
                original_task_id=task.id,
                scan_run_id=_as_uuid(run_id),
                title=task.title,
                description=task.description,
                section=task.section,
                category=task.category,
                completed_at=task.completed_at,
            ))
            archived += 1
    return archived


def delete_prd_for_run(db: Session, run_id) -> int:
    prds = db.query(PrdDocument).filter(PrdDocument.run_id == _as_uuid(run_id)).all()
    for prd in prds:
        db.delete(prd)
    db.flush()
    return len(prds)


def get_completed_prd_titles(db: Session, lead_id, domain_subscription_id=None) -> List[str]:
    query = _subscription_scope(db.query(PrdTaskHistory), PrdTaskHistory, lead_id, domain_subscription_id)
    return [row.title for row in query.all()]


def create_prd(
    db: Session,
    lead_id,
    domain_subscription_id,
    run_id,
    document: Dict[str, Any],
    tasks: List[Dict[str, Any]],
) -> PrdDocument:
    prd = PrdDocument(
        lead_id=_as_uuid(lead_id),
        domain_subscription_id=_as_uuid(domain_subscription_id),
        run_id=_as_uuid(run_id),
        **document,
    )
    for index, task in enumerate(tasks):
        prd.tasks.append(PrdTask(sort_order=index, **task))
    db.add(prd)
    db.flush()
    return prd


# =============================================================================
# EMAIL
# =============================================================================

def create_verification_token(db: Session, lead_id, run_id, email: str, hours: int = 24) -> str:
    token = secrets.token_hex(32)
    db.add(EmailVerificationToken(
        lead_id=_as_uuid(lead_id),
        run_id=_as_uuid(run_id),
        token=token,
        email=email,
        expires_at=datetime.utcnow() + timedelta(hours=hours),
    ))
    return token


def log_email(db: Session, lead_id, run_id, email_type: str, recipient: str, resend_id: Optional[str]) -> None:
    db.add(EmailLog(
        lead_id=_as_uuid(lead_id),
        run_id=_as_uuid(run_id),
        email_type=email_type,
        recipient=recipient,
        resend_id=resend_id,
    ))
