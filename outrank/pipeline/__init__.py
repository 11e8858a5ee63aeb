"""Scan and enrichment workflows."""

from .enrich import EnrichmentOrchestrator, EnrichmentRequest, enrichment_business_key
from .scan import ScanOrchestrator, ScanRequest, scan_business_key

__all__ = [
    "EnrichmentOrchestrator",
    "EnrichmentRequest",
    "ScanOrchestrator",
    "ScanRequest",
    "enrichment_business_key",
    "scan_business_key",
]
