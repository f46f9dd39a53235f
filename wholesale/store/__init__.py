"""Listing persistence."""

from wholesale.store.base import ListingStore, StoredListing
from wholesale.store.memory import InMemoryListingStore
from wholesale.store.sql import SqlListingStore

__all__ = ["InMemoryListingStore", "ListingStore", "SqlListingStore", "StoredListing"]
