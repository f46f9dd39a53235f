"""Exception taxonomy for ingestion, healing and image caching."""

from typing import Optional


class WholesaleError(Exception):
    """Base exception for all wholesale ingestion errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(WholesaleError):
    """Raised at startup when a required setting is missing or invalid."""

    def __init__(self, setting: str, reason: str = "is required"):
        self.setting = setting
        super().__init__(f"Configuration error: {setting} {reason}")


class FetchError(WholesaleError):
    """Base class for upstream fetch failures."""

    kind = "Fetch"

    def __init__(self, url: str, message: str = "", status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message or f"{self.kind} failure fetching {url}")


class TransientFetchError(FetchError):
    """Timeout, 5xx or connection reset. Retryable with backoff."""

    kind = "Transient"


class PermanentFetchError(FetchError):
    """404, DNS failure or malformed URL. Never retried."""

    kind = "Permanent"


class BotInterceptionDetected(FetchError):
    """An anti-bot page or a missing required anchor. Triggers headless escalation."""

    kind = "Escalate"


class RateLimited(WholesaleError):
    """A local token bucket is exhausted. Callers back off for ``wait_ms``."""

    def __init__(self, bucket: str, wait_ms: float):
        self.bucket = bucket
        self.wait_ms = wait_ms
        super().__init__(f"Rate bucket '{bucket}' exhausted, retry in {wait_ms:.0f}ms")


class BadImageAsset(WholesaleError):
    """Deny-listed, oversized or otherwise unusable image. Never cached."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Bad image asset {url}: {reason}")
