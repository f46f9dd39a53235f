"""Manual re-scrape of a single stored listing."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog

from wholesale.detail.contract import classify, normalize, should_replace
from wholesale.detail.models import QualityClass, QualityThresholds
from wholesale.images.cache import ImageCache
from wholesale.scrapers.factory import AdapterFactory
from wholesale.scrapers.strategy import FailureKind
from wholesale.store.base import ListingStore

logger = structlog.get_logger(__name__)

STATUS_UPDATED = "updated"
STATUS_UNCHANGED = "unchanged"
STATUS_FAILED = "failed"
STATUS_NOT_FOUND = "not_found"


@dataclass
class RefreshResult:
    """What a refresh did, in terms a caller can show to a user."""

    status: str
    listing_id: Optional[int] = None
    quality: Optional[QualityClass] = None
    failure_kind: Optional[FailureKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (STATUS_UPDATED, STATUS_UNCHANGED)

    def as_dict(self) -> dict:
        return {
            "status": self.status,
            "listingId": self.listing_id,
            "quality": self.quality.value if self.quality else None,
            "failureKind": self.failure_kind.value if self.failure_kind else None,
            "message": self.message,
        }


class RefreshService:
    def __init__(
        self,
        adapter_factory: AdapterFactory,
        store: ListingStore,
        thresholds: Optional[QualityThresholds] = None,
        image_cache: Optional[ImageCache] = None,
        headless: Optional[bool] = None,
    ):
        self.adapter_factory = adapter_factory
        self.store = store
        self.thresholds = thresholds or store.thresholds
        self.image_cache = image_cache
        self.headless = headless
        self.logger = logger.bind(service="refresh")

    async def refresh(
        self,
        listing_id: Optional[int] = None,
        url: Optional[str] = None,
        force: bool = True,
    ) -> RefreshResult:
        """Re-fetch one listing and store the result if it is an improvement.

        The listing is looked up by id, or by URL when no id is given. A
        supplied ``url`` overrides the stored one for the fetch itself.
        At most one ``upsert_detail`` call is made.
        """
        if listing_id is not None:
            listing = await self.store.get(listing_id)
        elif url:
            listing = await self.store.get_by_url(url)
        else:
            raise ValueError("listing_id or url is required")

        if listing is None:
            return RefreshResult(
                status=STATUS_NOT_FOUND,
                listing_id=listing_id,
                message="listing not found",
            )

        stored_quality = classify(listing.detail, self.thresholds)
        adapter = self.adapter_factory.get_adapter(listing.platform)
        if adapter is None:
            return RefreshResult(
                status=STATUS_FAILED,
                listing_id=listing.id,
                quality=stored_quality,
                message=f"no adapter registered for {listing.platform}",
            )

        fetch_url = url or listing.url
        result = await adapter.fetch_detail_result(fetch_url, force=force, headless=self.headless)
        if not result.ok:
            kind = result.failure_kind or FailureKind.PERMANENT
            self.logger.warning("refresh_failed", listing_id=listing.id, failure_kind=kind.value)
            return RefreshResult(
                status=STATUS_FAILED,
                listing_id=listing.id,
                quality=stored_quality,
                failure_kind=kind,
                message=f"upstream fetch failed: {kind.value}",
            )

        record = normalize(result.raw, listing.stub, self.thresholds)
        if self.image_cache is not None:
            record = await self.image_cache.localize(record, fetch_url)

        if not should_replace(record, listing.detail, self.thresholds):
            self.logger.info("refresh_unchanged", listing_id=listing.id, quality=stored_quality.value)
            return RefreshResult(
                status=STATUS_UNCHANGED,
                listing_id=listing.id,
                quality=stored_quality,
                message="fresh record is not an improvement; stored record kept",
            )

        await self.store.upsert_detail(listing.id, record, datetime.now(timezone.utc))
        quality = classify(record, self.thresholds)
        self.logger.info("refresh_updated", listing_id=listing.id, quality=quality.value)
        return RefreshResult(
            status=STATUS_UPDATED,
            listing_id=listing.id,
            quality=quality,
            message=f"detail updated ({quality.value})",
        )
