"""Wholesale marketplace listing ingestion, detail healing and image caching."""

__version__ = "0.1.0"
