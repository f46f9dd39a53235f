"""Orchestration services: audit/heal sweeps, manual refresh and search ingestion."""

from wholesale.services.audit_service import (
    AuditHealService,
    HealOutcome,
    ListingState,
    PlatformAuditStats,
    SweepReport,
)
from wholesale.services.ingest_service import IngestResult, IngestService, SearchJob
from wholesale.services.refresh_service import RefreshResult, RefreshService

__all__ = [
    "AuditHealService",
    "HealOutcome",
    "IngestResult",
    "IngestService",
    "ListingState",
    "PlatformAuditStats",
    "RefreshResult",
    "RefreshService",
    "SearchJob",
    "SweepReport",
]
