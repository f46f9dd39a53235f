"""Scraper utilities for rate limiting, retries, browser control and text normalization."""

from .browser_manager import BrowserManager
from .normalizer import (
    PriceNormalizer,
    canonical_url,
    clean_text,
    is_junky_title,
    is_likely_bad_image_url,
    normalize_image_url,
    resolve_title,
    sanitize_title,
    title_from_url,
    upgrade_thumbnail_url,
)
from .rate_limiter import RateLimiterRegistry, TokenBucket
from .retry import transient_retrying
from .user_agents import USER_AGENTS, default_headers, get_random_user_agent


__all__ = [
    # Rate limiting
    "RateLimiterRegistry",
    "TokenBucket",
    # Retry policy
    "transient_retrying",
    # Browser
    "BrowserManager",
    # User agents
    "USER_AGENTS",
    "default_headers",
    "get_random_user_agent",
    # Normalization
    "PriceNormalizer",
    "canonical_url",
    "clean_text",
    "is_junky_title",
    "is_likely_bad_image_url",
    "normalize_image_url",
    "resolve_title",
    "sanitize_title",
    "title_from_url",
    "upgrade_thumbnail_url",
]
