"""
API Endpoints for AI Visibility Scans

FastAPI app that:
1. Accepts scan requests and runs the scan workflow in the background
2. Re-runs enrichment for an existing scan (e.g. right after checkout)
3. Reports scan and enrichment progress for polling clients
"""

import logging
import sys
from datetime import datetime
from functools import lru_cache
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from outrank.database import (
    EnrichmentStatus,
    ScanStatus,
    check_db_connection,
    get_db,
    get_session_factory,
    init_db,
)
from outrank.database import repository
from outrank.features import Tier, get_user_tier
from outrank.integrations import ProviderSet, build_providers
from outrank.pipeline import (
    EnrichmentOrchestrator,
    EnrichmentRequest,
    ScanOrchestrator,
    ScanRequest,
)
from outrank.utils.config import get_settings
from outrank.workflow import WorkflowCancelledError, WorkflowEngine

# Configure logging to stdout (Railway treats stderr as errors)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(
    title="Outrank AI Visibility Engine",
    description="Crawls a site, asks AI assistants about it and scores how often it is mentioned",
    version="0.3.0",
)


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    logger.info("Initializing database...")
    try:
        init_db()
        if check_db_connection():
            logger.info("Database connection verified")
        else:
            logger.warning("Database connection check failed - continuing anyway")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    if get_providers.cache_info().currsize:
        await get_providers().close()


# ============================================================================
# DEPENDENCIES
# ============================================================================

@lru_cache
def get_providers() -> ProviderSet:
    return build_providers(get_settings())


@lru_cache
def get_scan_orchestrator() -> ScanOrchestrator:
    settings = get_settings()
    engine = WorkflowEngine(
        get_session_factory(),
        max_retries=settings.STEP_MAX_RETRIES,
        retry_delay=settings.STEP_RETRY_DELAY,
    )
    return ScanOrchestrator(engine, get_providers(), settings)


def get_enrichment_orchestrator() -> EnrichmentOrchestrator:
    # Shares the scan engine so both workflows see the same cancellation registry
    return get_scan_orchestrator().enrichment


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class ScanStartRequest(BaseModel):
    """
    Request to start a scan.

    Either email or lead_id identifies who the scan is for. scan_id re-runs
    an existing scan in place (same report token).
    """
    domain: str
    email: Optional[EmailStr] = None
    lead_id: Optional[str] = None
    scan_id: Optional[str] = None
    verification_token: Optional[str] = None
    domain_subscription_id: Optional[str] = None
    skip_email: bool = Field(default=False, description="Admin rescans skip the notification email")


class ScanStartResponse(BaseModel):
    scan_id: str
    domain: str
    status: str
    message: str


class EnrichRequest(BaseModel):
    run_id: str
    domain_subscription_id: Optional[str] = None


class EnrichmentStatusResponse(BaseModel):
    run_id: str
    enrichment_status: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class ScanStatusResponse(BaseModel):
    scan_id: str
    domain: Optional[str] = None
    status: str
    progress: int
    error: Optional[str] = None
    enrichment_status: Optional[str] = None
    report_token: Optional[str] = None


def normalize_domain(value: str) -> str:
    domain = value.lower().strip()
    domain = domain.replace("https://", "").replace("http://", "")
    if domain.startswith("www."):
        domain = domain[4:]
    return domain.split("/")[0]


def _load_run(db: Session, run_id: str):
    try:
        run = repository.get_scan_run(db, run_id)
    except ValueError:
        run = None
    if run is None:
        raise HTTPException(status_code=404, detail="Scan not found")
    return run


# ============================================================================
# BACKGROUND PROCESSING
# ============================================================================

async def run_scan(orchestrator: ScanOrchestrator, request: ScanRequest) -> None:
    try:
        await orchestrator.run(request)
    except WorkflowCancelledError:
        logger.info(f"[{request.scan_id}] Scan superseded")
    except Exception as e:
        # Already recorded on the run as failed
        logger.error(f"[{request.scan_id}] Scan workflow ended with error: {e}")


async def run_enrichment(orchestrator: EnrichmentOrchestrator, request: EnrichmentRequest) -> None:
    try:
        await orchestrator.run(request)
    except WorkflowCancelledError:
        logger.info(f"[{request.run_id}] Enrichment superseded")
    except Exception as e:
        logger.error(f"[{request.run_id}] Enrichment workflow ended with error: {e}")


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.get("/health")
async def health():
    """Health check including database status."""
    try:
        db_connected = check_db_connection()
    except Exception:
        db_connected = False

    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": "0.3.0",
        "database": "connected" if db_connected else "disconnected",
    }


@app.post("/api/scan", response_model=ScanStartResponse)
async def start_scan(
    request: ScanStartRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator),
):
    """
    Start (or restart) a scan.

    Resolves or creates the lead, creates the scan run so it can be polled
    right away, and runs the workflow in the background.
    """
    domain = normalize_domain(request.domain)
    if not domain:
        raise HTTPException(status_code=400, detail="Domain is required")

    if request.lead_id:
        try:
            lead = repository.get_lead(db, request.lead_id)
        except ValueError:
            lead = None
        if lead is None:
            raise HTTPException(status_code=404, detail="Lead not found")
    elif request.email:
        lead = repository.get_or_create_lead(db, request.email, domain)
    else:
        raise HTTPException(status_code=400, detail="Either email or lead_id is required")

    run = repository.create_or_reset_scan_run(
        db,
        lead.id,
        domain,
        run_id=request.scan_id,
        domain_subscription_id=request.domain_subscription_id,
    )
    db.commit()
    scan_id = str(run.id)

    logger.info(f"Scan requested: {domain} -> {lead.email} (scan: {scan_id})")

    background_tasks.add_task(
        run_scan,
        orchestrator,
        ScanRequest(
            domain=domain,
            email=request.email or lead.email,
            lead_id=str(lead.id),
            scan_id=scan_id,
            verification_token=request.verification_token,
            domain_subscription_id=request.domain_subscription_id,
            skip_email=request.skip_email,
        ),
    )

    return ScanStartResponse(
        scan_id=scan_id,
        domain=domain,
        status=ScanStatus.CRAWLING.value,
        message="Scan started",
    )


@app.post("/api/enrich")
async def start_enrichment(
    request: EnrichRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: EnrichmentOrchestrator = Depends(get_enrichment_orchestrator),
):
    """Re-run enrichment for an existing scan, e.g. right after checkout."""
    run = _load_run(db, request.run_id)

    if get_user_tier(db, run.lead_id) == Tier.FREE:
        raise HTTPException(status_code=403, detail="Enrichment requires a paid subscription")

    repository.update_enrichment_status(db, run.id, EnrichmentStatus.PENDING)
    db.commit()

    subscription_id = request.domain_subscription_id or run.domain_subscription_id
    background_tasks.add_task(
        run_enrichment,
        orchestrator,
        EnrichmentRequest(
            run_id=str(run.id),
            lead_id=str(run.lead_id),
            domain_subscription_id=str(subscription_id) if subscription_id else None,
        ),
    )
    logger.info(f"Enrichment requested for scan {run.id}")
    return {"run_id": str(run.id), "status": EnrichmentStatus.PENDING.value}


@app.get("/api/scan/enrichment-status", response_model=EnrichmentStatusResponse)
async def get_enrichment_status(run_id: str = Query(...), db: Session = Depends(get_db)):
    run = _load_run(db, run_id)
    status = run.enrichment_status or EnrichmentStatus.PENDING
    return EnrichmentStatusResponse(
        run_id=str(run.id),
        enrichment_status=status.value,
        started_at=run.enrichment_started_at,
        completed_at=run.enrichment_completed_at,
        error=run.enrichment_error,
    )


@app.get("/api/scan/{run_id}", response_model=ScanStatusResponse)
async def get_scan_status(run_id: str, db: Session = Depends(get_db)):
    """Status and progress; the report token once the scan is complete."""
    run = _load_run(db, run_id)

    report_token = None
    if run.status == ScanStatus.COMPLETE:
        report = repository.get_report(db, run.id)
        report_token = report.url_token if report else None

    return ScanStatusResponse(
        scan_id=str(run.id),
        domain=run.domain,
        status=run.status.value,
        progress=run.progress or 0,
        error=run.error_message,
        enrichment_status=run.enrichment_status.value if run.enrichment_status else None,
        report_token=report_token,
    )


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.scan:app",
        host="0.0.0.0",
        port=8000,
    )
