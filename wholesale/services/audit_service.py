"""Audit sweep that re-fetches weak detail records and heals them.

A sweep pages through the listing store in ascending id order, fans each
batch out under a bounded semaphore and writes a fresh record back only
when it does not regress the stored one. Per-listing failures are logged
and counted; they never abort the batch or the sweep.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from wholesale.detail.contract import classify, normalize, should_replace
from wholesale.detail.models import QualityClass, QualityThresholds
from wholesale.images.cache import ImageCache
from wholesale.scrapers.base import BaseAdapter
from wholesale.scrapers.factory import AdapterFactory
from wholesale.scrapers.strategy import FailureKind
from wholesale.store.base import ListingStore, StoredListing

logger = structlog.get_logger(__name__)


class ListingState(str, Enum):
    """Per-listing state during one sweep."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    HEALED = "healed"
    STILL_WEAK = "still_weak"
    FAILED = "failed"


@dataclass
class HealOutcome:
    listing_id: int
    platform: str
    state: ListingState = ListingState.PENDING
    quality_before: QualityClass = QualityClass.WEAK
    quality_after: QualityClass = QualityClass.WEAK
    failure_kind: Optional[FailureKind] = None
    attempts: int = 0
    error: Optional[str] = None


@dataclass
class PlatformAuditStats:
    """Per-platform counters for one sweep.

    ``weak_before``/``weak_after`` count the visited listings classified
    weak before and after the sweep touched them.
    """

    total: int = 0
    weak_before: int = 0
    weak_after: int = 0
    healed: int = 0
    still_weak: int = 0
    failed: int = 0
    cursor: int = 0

    def record(self, outcome: HealOutcome) -> None:
        if outcome.quality_before == QualityClass.WEAK:
            self.weak_before += 1
            if outcome.quality_after == QualityClass.WEAK:
                self.weak_after += 1
        if outcome.state == ListingState.HEALED:
            self.healed += 1
        elif outcome.state == ListingState.STILL_WEAK:
            self.still_weak += 1
        elif outcome.state == ListingState.FAILED:
            self.failed += 1

    def as_dict(self) -> Dict[str, int]:
        return {"total": self.total, "weakBefore": self.weak_before, "weakAfter": self.weak_after}


@dataclass
class SweepReport:
    platforms: Dict[str, PlatformAuditStats] = field(default_factory=dict)
    outcomes: List[HealOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def cursors(self) -> Dict[str, int]:
        """Last listing id visited per platform, for resuming an interrupted sweep."""
        return {platform: stats.cursor for platform, stats in self.platforms.items()}

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        """``{platform: {"total", "weakBefore", "weakAfter"}}``."""
        return {platform: stats.as_dict() for platform, stats in self.platforms.items()}


class AuditHealService:
    """Finds weak records and re-fetches them without ever regressing one."""

    def __init__(
        self,
        adapter_factory: AdapterFactory,
        store: ListingStore,
        thresholds: Optional[QualityThresholds] = None,
        concurrency: int = 4,
        batch_size: int = 20,
        include_acceptable: bool = False,
        headless: bool = True,
        max_consecutive_blocks: int = 5,
        block_cooldown_seconds: float = 300.0,
        image_cache: Optional[ImageCache] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.adapter_factory = adapter_factory
        self.store = store
        self.thresholds = thresholds or store.thresholds
        self.batch_size = batch_size
        self.include_acceptable = include_acceptable
        self.headless = headless
        self.max_consecutive_blocks = max_consecutive_blocks
        self.block_cooldown_seconds = block_cooldown_seconds
        self.image_cache = image_cache
        self.sleep = sleep
        self._semaphore = asyncio.Semaphore(concurrency)
        self.logger = logger.bind(service="audit_heal")

    async def sweep(
        self,
        platforms: List[str],
        max_listings: Optional[int] = None,
        cursors: Optional[Dict[str, int]] = None,
    ) -> SweepReport:
        """Run one audit sweep over ``platforms``.

        Platforms are swept concurrently; each shares the heal semaphore.

        Args:
            platforms: Platform identifiers to sweep
            max_listings: Cap on listings visited per platform (None for no cap)
            cursors: Per-platform id to resume after

        Returns:
            SweepReport with per-platform counts
        """
        cursors = cursors or {}
        report = SweepReport()
        self.logger.info("audit_sweep_started", platforms=platforms, max_listings=max_listings)

        results = await asyncio.gather(
            *(self._sweep_platform(platform, max_listings, cursors.get(platform, 0)) for platform in platforms)
        )
        for platform, (stats, outcomes) in zip(platforms, results):
            report.platforms[platform] = stats
            report.outcomes.extend(outcomes)

        report.finished_at = datetime.now(timezone.utc)
        self.logger.info(
            "audit_sweep_completed",
            report=report.as_dict(),
            duration_seconds=round((report.finished_at - report.started_at).total_seconds(), 2),
        )
        return report

    async def heal_listing(self, listing_id: int) -> Optional[HealOutcome]:
        """Heal one stored listing regardless of its current class.

        Returns:
            The outcome, or None if the listing does not exist
        """
        listing = await self.store.get(listing_id)
        if listing is None:
            self.logger.warning("heal_listing_not_found", listing_id=listing_id)
            return None
        adapter = self.adapter_factory.get_adapter(listing.platform)
        if adapter is None:
            self.logger.error("heal_adapter_missing", platform=listing.platform)
            return HealOutcome(
                listing_id=listing.id,
                platform=listing.platform,
                state=ListingState.FAILED,
                quality_before=classify(listing.detail, self.thresholds),
                quality_after=classify(listing.detail, self.thresholds),
                error=f"no adapter registered for {listing.platform}",
            )
        return await self._heal_guarded(adapter, listing)

    async def _sweep_platform(self, platform: str, max_listings: Optional[int], cursor: int):
        log = self.logger.bind(platform=platform)
        stats = PlatformAuditStats(total=await self.store.count(platform), cursor=cursor)
        outcomes: List[HealOutcome] = []

        adapter = self.adapter_factory.get_adapter(platform)
        if adapter is None:
            log.error("audit_adapter_missing")
            return stats, outcomes

        consecutive_blocks = 0
        while True:
            limit = self.batch_size
            if max_listings is not None:
                limit = min(limit, max_listings - len(outcomes))
            if limit <= 0:
                break

            batch = await self.store.find_weak(
                platform,
                cursor=stats.cursor,
                limit=limit,
                include_acceptable=self.include_acceptable,
            )
            if not batch:
                break

            log.info("audit_batch_started", size=len(batch), after_id=stats.cursor)
            batch_outcomes = await asyncio.gather(*(self._heal_guarded(adapter, listing) for listing in batch))
            stats.cursor = batch[-1].id

            for outcome in batch_outcomes:
                stats.record(outcome)
                outcomes.append(outcome)
                if outcome.failure_kind == FailureKind.ESCALATE:
                    consecutive_blocks += 1
                elif outcome.state != ListingState.FAILED:
                    consecutive_blocks = 0

            if len(batch) < limit:
                break

            if self.max_consecutive_blocks and consecutive_blocks >= self.max_consecutive_blocks:
                log.warning(
                    "audit_block_cooldown",
                    consecutive_blocks=consecutive_blocks,
                    cooldown_seconds=self.block_cooldown_seconds,
                )
                await self.sleep(self.block_cooldown_seconds)
                consecutive_blocks = 0

        log.info(
            "audit_platform_completed",
            healed=stats.healed,
            still_weak=stats.still_weak,
            failed=stats.failed,
            **stats.as_dict(),
        )
        return stats, outcomes

    async def _heal_guarded(self, adapter: BaseAdapter, listing: StoredListing) -> HealOutcome:
        """Heal one listing; any unexpected error becomes a FAILED outcome."""
        try:
            return await self._heal(adapter, listing)
        except Exception as e:
            self.logger.error(
                "heal_listing_failed",
                listing_id=listing.id,
                platform=listing.platform,
                error=str(e),
                exc_info=True,
            )
            quality = classify(listing.detail, self.thresholds)
            return HealOutcome(
                listing_id=listing.id,
                platform=listing.platform,
                state=ListingState.FAILED,
                quality_before=quality,
                quality_after=quality,
                error=str(e),
            )

    async def _heal(self, adapter: BaseAdapter, listing: StoredListing) -> HealOutcome:
        outcome = HealOutcome(
            listing_id=listing.id,
            platform=listing.platform,
            quality_before=classify(listing.detail, self.thresholds),
        )
        outcome.quality_after = outcome.quality_before

        async with self._semaphore:
            outcome.state = ListingState.IN_FLIGHT
            result = await adapter.fetch_detail_result(listing.url, force=True, headless=self.headless)
            outcome.attempts = len(result.attempts)

            if not result.ok:
                outcome.state = ListingState.FAILED
                outcome.failure_kind = result.failure_kind
                self.logger.info(
                    "heal_fetch_failed",
                    listing_id=listing.id,
                    failure_kind=result.failure_kind.value if result.failure_kind else None,
                )
                return outcome

            record = normalize(result.raw, listing.stub, self.thresholds)
            if self.image_cache is not None:
                record = await self.image_cache.localize(record, listing.url)

            if not should_replace(record, listing.detail, self.thresholds):
                outcome.state = ListingState.STILL_WEAK
                self.logger.info(
                    "heal_not_improved",
                    listing_id=listing.id,
                    fresh_quality=classify(record, self.thresholds).value,
                    stored_quality=outcome.quality_before.value,
                )
                return outcome

            await self.store.upsert_detail(listing.id, record, datetime.now(timezone.utc))

        outcome.state = ListingState.HEALED
        outcome.quality_after = classify(record, self.thresholds)
        self.logger.info(
            "listing_healed",
            listing_id=listing.id,
            quality_before=outcome.quality_before.value,
            quality_after=outcome.quality_after.value,
            attributes=len(record.attributes),
            price_tiers=len(record.price_tiers),
        )
        return outcome
