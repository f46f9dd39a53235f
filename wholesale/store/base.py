"""Listing store interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from wholesale.detail.contract import classify
from wholesale.detail.models import DetailRecord, ListingStub, QualityClass, QualityThresholds


@dataclass
class StoredListing:
    """A persisted listing and its latest detail record."""

    id: int
    platform: str
    url: str
    stub: Optional[ListingStub] = None
    detail: Optional[DetailRecord] = None
    detail_updated_at: Optional[datetime] = None


class ListingStore(ABC):
    """Persistence seam for listings and their detail records.

    Weakness is evaluated with the store's ``thresholds`` so that the
    audit sweep and the store agree on what "weak" means.
    """

    def __init__(self, thresholds: Optional[QualityThresholds] = None):
        self.thresholds = thresholds or QualityThresholds()

    def needs_healing(self, listing: StoredListing, include_acceptable: bool = False) -> bool:
        quality = classify(listing.detail, self.thresholds)
        if quality == QualityClass.WEAK:
            return True
        return include_acceptable and quality == QualityClass.ACCEPTABLE

    @abstractmethod
    async def find_weak(
        self,
        platform: Optional[str] = None,
        cursor: int = 0,
        limit: int = 50,
        include_acceptable: bool = False,
    ) -> List[StoredListing]:
        """Listings with ``id > cursor`` that need healing, in ascending id order."""

    @abstractmethod
    async def count(self, platform: Optional[str] = None) -> int:
        """Number of stored listings, optionally for one platform."""

    @abstractmethod
    async def get(self, listing_id: int) -> Optional[StoredListing]:
        """Fetch one listing by id."""

    @abstractmethod
    async def get_by_url(self, url: str) -> Optional[StoredListing]:
        """Fetch one listing by (canonicalized) source URL."""

    @abstractmethod
    async def upsert_detail(
        self,
        listing_id: int,
        record: DetailRecord,
        updated_at: Optional[datetime] = None,
    ) -> bool:
        """Store ``record`` as the listing's detail. Returns False if the listing is unknown."""

    @abstractmethod
    async def save_stubs(self, stubs: Sequence[ListingStub]) -> List[StoredListing]:
        """Insert stubs not yet stored (deduplicated by canonical URL).

        Returns:
            The stored listing for every input stub, in input order
        """
