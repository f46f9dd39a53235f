"""Search ingestion: run a marketplace search and save the stubs."""

from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from wholesale.scrapers.factory import AdapterFactory
from wholesale.store.base import ListingStore, StoredListing

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SearchJob:
    platform: str
    query: str
    limit: int = 50
    headless: Optional[bool] = None

    def __post_init__(self):
        if not self.platform:
            raise ValueError("platform is required")
        if not self.query or not self.query.strip():
            raise ValueError("query is required")
        if self.limit <= 0:
            raise ValueError("limit must be positive")


@dataclass
class IngestResult:
    job: SearchJob
    found: int = 0
    listings: List[StoredListing] = field(default_factory=list)


class IngestService:
    def __init__(self, adapter_factory: AdapterFactory, store: ListingStore):
        self.adapter_factory = adapter_factory
        self.store = store
        self.logger = logger.bind(service="ingest")

    async def run(self, job: SearchJob) -> IngestResult:
        """Search one platform and persist new listings.

        Raises:
            ValueError: If no adapter is registered for the job's platform
        """
        adapter = self.adapter_factory.get_adapter(job.platform)
        if adapter is None:
            raise ValueError(f"No adapter registered for platform: {job.platform}")

        stubs = await adapter.search_listings(job.query, job.limit, headless=job.headless)
        result = IngestResult(job=job, found=len(stubs))
        if stubs:
            result.listings = await self.store.save_stubs(stubs)

        self.logger.info(
            "ingest_completed",
            platform=job.platform,
            query=job.query,
            found=result.found,
            saved=len(result.listings),
        )
        return result
