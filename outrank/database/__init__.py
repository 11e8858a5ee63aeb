"""
Outrank Database Layer

Usage:
    from outrank.database import init_db, get_db_context, ScanRun

    init_db()
    with get_db_context() as db:
        run = db.get(ScanRun, run_id)
"""

from .models import (
    Base,
    Lead, DomainSubscription, ScanRun, CrawledPage, SiteAnalysis,
    QueryResearchResult, ScanPrompt, PlatformResponse, Report, ScoreHistory,
    SubscriberQuestion, SubscriberQuestionHistory, SubscriberCompetitor,
    BrandAwarenessResult, ActionPlan, ActionItem, ActionItemHistory,
    PrdDocument, PrdTask, PrdTaskHistory, EmailLog, EmailVerificationToken,
    WorkflowRun, WorkflowStep,
    ScanStatus, EnrichmentStatus, PromptSource, WorkflowStatus, StepStatus,
)
from .session import (
    get_database_url, create_db_engine, get_engine,
    create_session_factory, get_session_factory,
    get_db, get_db_context, init_db, check_db_connection,
)

__all__ = [
    "Base",
    "Lead", "DomainSubscription", "ScanRun", "CrawledPage", "SiteAnalysis",
    "QueryResearchResult", "ScanPrompt", "PlatformResponse", "Report", "ScoreHistory",
    "SubscriberQuestion", "SubscriberQuestionHistory", "SubscriberCompetitor",
    "BrandAwarenessResult", "ActionPlan", "ActionItem", "ActionItemHistory",
    "PrdDocument", "PrdTask", "PrdTaskHistory", "EmailLog", "EmailVerificationToken",
    "WorkflowRun", "WorkflowStep",
    "ScanStatus", "EnrichmentStatus", "PromptSource", "WorkflowStatus", "StepStatus",
    "get_database_url", "create_db_engine", "get_engine",
    "create_session_factory", "get_session_factory",
    "get_db", "get_db_context", "init_db", "check_db_connection",
]
