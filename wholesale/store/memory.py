"""In-memory listing store for tests and one-off CLI runs."""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from wholesale.detail.models import DetailRecord, ListingStub, QualityThresholds
from wholesale.scrapers.utils.normalizer import canonical_url
from wholesale.store.base import ListingStore, StoredListing


class InMemoryListingStore(ListingStore):
    def __init__(self, thresholds: Optional[QualityThresholds] = None):
        super().__init__(thresholds)
        self._listings: Dict[int, StoredListing] = {}
        self._by_url: Dict[str, int] = {}
        self._next_id = 1
        self.writes = 0

    def add(
        self,
        platform: str,
        url: str,
        detail: Optional[DetailRecord] = None,
        stub: Optional[ListingStub] = None,
    ) -> StoredListing:
        """Insert a listing directly (fixtures and imports)."""
        listing = StoredListing(
            id=self._next_id,
            platform=platform,
            url=url,
            stub=stub,
            detail=detail,
            detail_updated_at=datetime.now(timezone.utc) if detail else None,
        )
        self._listings[listing.id] = listing
        self._by_url[canonical_url(url)] = listing.id
        self._next_id += 1
        return listing

    async def find_weak(
        self,
        platform: Optional[str] = None,
        cursor: int = 0,
        limit: int = 50,
        include_acceptable: bool = False,
    ) -> List[StoredListing]:
        found = []
        for listing_id in sorted(self._listings):
            if listing_id <= cursor:
                continue
            listing = self._listings[listing_id]
            if platform and listing.platform != platform:
                continue
            if self.needs_healing(listing, include_acceptable):
                found.append(replace(listing))
                if len(found) >= limit:
                    break
        return found

    async def count(self, platform: Optional[str] = None) -> int:
        return sum(1 for listing in self._listings.values() if not platform or listing.platform == platform)

    async def get(self, listing_id: int) -> Optional[StoredListing]:
        listing = self._listings.get(listing_id)
        return replace(listing) if listing else None

    async def get_by_url(self, url: str) -> Optional[StoredListing]:
        listing_id = self._by_url.get(canonical_url(url))
        return await self.get(listing_id) if listing_id is not None else None

    async def upsert_detail(
        self,
        listing_id: int,
        record: DetailRecord,
        updated_at: Optional[datetime] = None,
    ) -> bool:
        listing = self._listings.get(listing_id)
        if listing is None:
            return False
        listing.detail = record
        listing.detail_updated_at = updated_at or datetime.now(timezone.utc)
        self.writes += 1
        return True

    async def save_stubs(self, stubs: Sequence[ListingStub]) -> List[StoredListing]:
        saved = []
        for stub in stubs:
            listing_id = self._by_url.get(canonical_url(stub.source_url))
            if listing_id is None:
                listing = self.add(stub.platform, stub.source_url, stub=stub)
            else:
                listing = self._listings[listing_id]
            saved.append(replace(listing))
        return saved
