"""Marketplace scraping: adapters, fetch strategy and factory.

This package provides:
- Base adapter classes for building marketplace-specific scrapers
- The fetch strategy selector (escalation and transient retries)
- Factory for creating and managing adapter instances
- Scheduler for periodic audit sweeps
"""

from .base import BaseAdapter, BaseScraperAdapter
from .factory import AdapterFactory
from .strategy import (
    FailureKind,
    FetchAttempt,
    FetchResult,
    FetchStrategy,
    FetchStrategySelector,
    classify_failure,
    looks_intercepted,
)

__all__ = [
    # Base classes
    "BaseAdapter",
    "BaseScraperAdapter",
    # Factory
    "AdapterFactory",
    # Fetch strategy
    "FailureKind",
    "FetchAttempt",
    "FetchResult",
    "FetchStrategy",
    "FetchStrategySelector",
    "classify_failure",
    "looks_intercepted",
]
