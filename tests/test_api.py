"""
Test Suite: HTTP API

Exercises the FastAPI endpoints with the in-memory database and mocked
orchestrators; background workflow runs are only checked for their inputs.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

import api.scan as scan_api
from outrank.database import EnrichmentStatus, ScanStatus, get_db
from outrank.database.repository import find_lead_by_email, get_scan_run
from outrank.pipeline import EnrichmentRequest, ScanRequest

from conftest import DOMAIN, seed_completed_scan


@pytest.fixture
def scan_orchestrator():
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(return_value={})
    return orchestrator


@pytest.fixture
def enrichment_orchestrator():
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(return_value={})
    return orchestrator


@pytest.fixture
def client(session_factory, scan_orchestrator, enrichment_orchestrator):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    scan_api.app.dependency_overrides[get_db] = override_db
    scan_api.app.dependency_overrides[scan_api.get_scan_orchestrator] = lambda: scan_orchestrator
    scan_api.app.dependency_overrides[scan_api.get_enrichment_orchestrator] = lambda: enrichment_orchestrator
    yield TestClient(scan_api.app)
    scan_api.app.dependency_overrides.clear()


# ============================================================================
# START SCAN
# ============================================================================

class TestStartScan:
    """Test POST /api/scan."""

    def test_new_lead(self, client, session_factory, scan_orchestrator):
        response = client.post("/api/scan", json={
            "domain": "https://www.AcmePlumbing.com.au/services",
            "email": "owner@acmeplumbing.com.au",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["domain"] == DOMAIN
        assert data["status"] == "crawling"

        with session_factory() as session:
            lead = find_lead_by_email(session, "owner@acmeplumbing.com.au")
            assert lead is not None
            assert lead.domain == DOMAIN
            run = get_scan_run(session, data["scan_id"])
            assert run.status == ScanStatus.CRAWLING
            assert run.progress == 5

        scan_orchestrator.run.assert_awaited_once()
        request = scan_orchestrator.run.await_args.args[0]
        assert isinstance(request, ScanRequest)
        assert request.scan_id == data["scan_id"]
        assert request.lead_id == str(lead.id)
        assert request.domain == DOMAIN

    def test_existing_lead_by_id(self, client, free_lead, scan_orchestrator):
        response = client.post("/api/scan", json={"domain": DOMAIN, "lead_id": str(free_lead.id), "skip_email": True})

        assert response.status_code == 200
        request = scan_orchestrator.run.await_args.args[0]
        assert request.email == free_lead.email
        assert request.skip_email is True

    def test_rescan_keeps_scan_id(self, client, db, free_lead):
        scan_id = seed_completed_scan(db, free_lead.id)

        response = client.post("/api/scan", json={"domain": DOMAIN, "lead_id": str(free_lead.id), "scan_id": scan_id})

        assert response.json()["scan_id"] == scan_id

    def test_requires_email_or_lead(self, client, scan_orchestrator):
        response = client.post("/api/scan", json={"domain": DOMAIN})

        assert response.status_code == 400
        scan_orchestrator.run.assert_not_awaited()

    def test_requires_domain(self, client):
        response = client.post("/api/scan", json={"domain": "https://", "email": "owner@acmeplumbing.com.au"})

        assert response.status_code == 400

    def test_unknown_lead(self, client):
        assert client.post("/api/scan", json={"domain": DOMAIN, "lead_id": "not-a-uuid"}).status_code == 404
        assert client.post(
            "/api/scan", json={"domain": DOMAIN, "lead_id": "0b0c7f5e-4a8e-4b1f-9d67-2a8f4c1e9b10"}
        ).status_code == 404

    def test_invalid_email(self, client):
        response = client.post("/api/scan", json={"domain": DOMAIN, "email": "not-an-email"})

        assert response.status_code == 422


# ============================================================================
# STATUS
# ============================================================================

class TestStatus:
    """Test polling endpoints."""

    def test_completed_scan(self, client, db, free_lead):
        scan_id = seed_completed_scan(db, free_lead.id)

        response = client.get(f"/api/scan/{scan_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "complete"
        assert data["progress"] == 100
        assert len(data["report_token"]) == 16

    def test_in_progress_has_no_token(self, client, free_lead):
        started = client.post("/api/scan", json={"domain": DOMAIN, "lead_id": str(free_lead.id)}).json()

        data = client.get(f"/api/scan/{started['scan_id']}").json()

        assert data["status"] == "crawling"
        assert data["report_token"] is None

    def test_unknown_scan(self, client):
        assert client.get("/api/scan/not-a-uuid").status_code == 404
        assert client.get("/api/scan/0b0c7f5e-4a8e-4b1f-9d67-2a8f4c1e9b10").status_code == 404

    def test_enrichment_status(self, client, db, free_lead):
        scan_id = seed_completed_scan(db, free_lead.id)

        data = client.get("/api/scan/enrichment-status", params={"run_id": scan_id}).json()

        assert data["run_id"] == scan_id
        assert data["enrichment_status"] == "pending"

    def test_health(self, client, monkeypatch):
        monkeypatch.setattr(scan_api, "check_db_connection", lambda: True)

        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["database"] == "connected"


# ============================================================================
# ENRICHMENT
# ============================================================================

class TestEnrich:
    """Test POST /api/enrich."""

    def test_paid_tier(self, client, db, session_factory, pro_lead, enrichment_orchestrator):
        lead, subscription = pro_lead
        scan_id = seed_completed_scan(db, lead.id, subscription.id)

        response = client.post("/api/enrich", json={"run_id": scan_id})

        assert response.status_code == 200
        assert response.json() == {"run_id": scan_id, "status": "pending"}
        enrichment_orchestrator.run.assert_awaited_once_with(EnrichmentRequest(
            run_id=scan_id,
            lead_id=str(lead.id),
            domain_subscription_id=str(subscription.id),
        ))
        with session_factory() as session:
            assert get_scan_run(session, scan_id).enrichment_status == EnrichmentStatus.PENDING

    def test_free_tier_forbidden(self, client, db, free_lead, enrichment_orchestrator):
        scan_id = seed_completed_scan(db, free_lead.id)

        response = client.post("/api/enrich", json={"run_id": scan_id})

        assert response.status_code == 403
        enrichment_orchestrator.run.assert_not_awaited()

    def test_unknown_run(self, client):
        assert client.post("/api/enrich", json={"run_id": "not-a-uuid"}).status_code == 404
