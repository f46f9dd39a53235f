"""Fetch outcome classification, escalation and retry.

Every fetch failure falls into one of three kinds:

- Escalate: anti-bot page, HTTP 403 or a missing required DOM anchor.
  Retried once through headless rendering when that is enabled.
- Transient: timeout, 5xx, 429 or connection reset. Retried on the same
  strategy with a short backoff.
- Permanent: 404/410 and other 4xx, DNS failure, malformed URL. Never retried.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import httpx
import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from wholesale.core.exceptions import (
    BotInterceptionDetected,
    FetchError,
    PermanentFetchError,
    TransientFetchError,
)
from wholesale.scrapers.utils.retry import DEFAULT_TRANSIENT_BACKOFF, transient_retrying

logger = structlog.get_logger(__name__)


class FetchStrategy(str, Enum):
    STATIC = "static"
    HEADLESS = "headless"


class FailureKind(str, Enum):
    ESCALATE = "Escalate"
    TRANSIENT = "Transient"
    PERMANENT = "Permanent"


@dataclass
class FetchAttempt:
    """Telemetry for one fetch try."""

    url: str
    strategy: FetchStrategy
    success: bool
    latency_ms: float
    failure_kind: Optional[FailureKind] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class FetchResult:
    """Parsed value of a fetch (``raw``) plus every attempt made to get it."""

    url: str
    raw: Any = None
    attempts: List[FetchAttempt] = field(default_factory=list)
    from_memo: bool = False

    @property
    def ok(self) -> bool:
        return self.raw is not None

    @property
    def failure_kind(self) -> Optional[FailureKind]:
        """Kind of the last failed attempt, or None on success."""
        if self.ok:
            return None
        for attempt in reversed(self.attempts):
            if attempt.failure_kind:
                return attempt.failure_kind
        return None


# Lower-cased substrings of known interception pages
INTERCEPTION_MARKERS = (
    "slide to verify",
    "please slide to verify",
    "unusual traffic",
    "verify you are human",
    "are you a robot",
    "security verification",
    "captcha",
    "punish?x5secdata",
    "_____tmd_____",
    "baxia-dialog",
    "验证码",
    "access denied",
    "pardon our interruption",
)


def looks_intercepted(html: Optional[str]) -> bool:
    """True if ``html`` looks like an anti-bot interstitial instead of content."""
    if not html:
        return False
    # Interstitials are short; only inspect the head of large documents
    head = html[:20000].lower()
    return any(marker in head for marker in INTERCEPTION_MARKERS)


_KIND_BY_ERROR = {
    BotInterceptionDetected: FailureKind.ESCALATE,
    TransientFetchError: FailureKind.TRANSIENT,
    PermanentFetchError: FailureKind.PERMANENT,
}

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "err_name_not_resolved",
    "no address associated",
)


def status_failure(status_code: int) -> Optional[FailureKind]:
    """Failure kind for an HTTP status, or None for success codes."""
    if status_code < 400:
        return None
    if status_code == 403:
        return FailureKind.ESCALATE
    if status_code == 429 or status_code >= 500:
        return FailureKind.TRANSIENT
    return FailureKind.PERMANENT


def classify_failure(exc: BaseException) -> FailureKind:
    """Map any fetch exception to its FailureKind."""
    for error_type, kind in _KIND_BY_ERROR.items():
        if isinstance(exc, error_type):
            return kind

    if isinstance(exc, httpx.HTTPStatusError):
        return status_failure(exc.response.status_code) or FailureKind.PERMANENT
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return FailureKind.PERMANENT
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, PlaywrightTimeoutError)):
        return FailureKind.TRANSIENT

    message = str(exc).lower()
    if isinstance(exc, (httpx.ConnectError, PlaywrightError)):
        if any(marker in message for marker in _DNS_MARKERS):
            return FailureKind.PERMANENT
        if "err_invalid_url" in message:
            return FailureKind.PERMANENT
        return FailureKind.TRANSIENT
    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError, ConnectionError)):
        return FailureKind.TRANSIENT
    return FailureKind.PERMANENT


_ERROR_BY_KIND = {
    FailureKind.ESCALATE: BotInterceptionDetected,
    FailureKind.TRANSIENT: TransientFetchError,
    FailureKind.PERMANENT: PermanentFetchError,
}


def to_fetch_error(exc: BaseException, url: str) -> FetchError:
    """Wrap ``exc`` in the typed FetchError matching its kind."""
    if isinstance(exc, FetchError):
        return exc
    status_code = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
    error_class = _ERROR_BY_KIND[classify_failure(exc)]
    return error_class(url, f"{type(exc).__name__}: {exc}", status_code=status_code)


FetchCallable = Callable[[], Awaitable[Any]]


class FetchStrategySelector:
    """Drives static -> headless escalation and transient retries.

    The selector never raises a fetch error: exhaustion is reported as a
    FetchResult with ``raw=None`` and the attempts that were made.
    """

    def __init__(
        self,
        backoff: Sequence[float] = DEFAULT_TRANSIENT_BACKOFF,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backoff = tuple(backoff)
        self._sleep = sleep

    async def run(
        self,
        url: str,
        static: FetchCallable,
        headless: Optional[FetchCallable] = None,
        result: Optional[FetchResult] = None,
    ) -> FetchResult:
        """Fetch ``url`` statically, escalating once to ``headless`` if needed.

        Args:
            url: Target URL (used for telemetry)
            static: Plain HTTP fetch-and-parse
            headless: Browser fetch-and-parse, or None when headless is disabled
            result: Existing result to record attempts into
        """
        result = result or FetchResult(url=url)
        plan = [(FetchStrategy.STATIC, static)]
        if headless is not None:
            plan.append((FetchStrategy.HEADLESS, headless))

        for strategy, fetch in plan:
            kind = await self._run_strategy(url, strategy, fetch, result)
            if result.ok:
                return result
            if kind != FailureKind.ESCALATE:
                break
            if strategy == FetchStrategy.STATIC and headless is not None:
                logger.info("fetch_escalating_to_headless", url=url)

        logger.warning(
            "fetch_exhausted",
            url=url,
            attempts=len(result.attempts),
            failure_kind=result.failure_kind.value if result.failure_kind else None,
        )
        return result

    async def _run_strategy(
        self,
        url: str,
        strategy: FetchStrategy,
        fetch: FetchCallable,
        result: FetchResult,
    ) -> Optional[FailureKind]:
        try:
            async for attempt in transient_retrying(self.backoff, sleep=self._sleep):
                with attempt:
                    result.raw = await self._attempt(url, strategy, fetch, result)
        except FetchError as e:
            return classify_failure(e)
        return None

    async def _attempt(
        self,
        url: str,
        strategy: FetchStrategy,
        fetch: FetchCallable,
        result: FetchResult,
    ) -> Any:
        started = time.monotonic()
        try:
            value = await fetch()
        except Exception as e:
            error = to_fetch_error(e, url)
            result.attempts.append(
                FetchAttempt(
                    url=url,
                    strategy=strategy,
                    success=False,
                    latency_ms=(time.monotonic() - started) * 1000.0,
                    failure_kind=classify_failure(error),
                    status_code=error.status_code,
                    error=str(e),
                )
            )
            logger.debug("fetch_attempt_failed", url=url, strategy=strategy.value, error=str(e))
            if error is e:
                raise
            raise error from e

        result.attempts.append(
            FetchAttempt(
                url=url,
                strategy=strategy,
                success=True,
                latency_ms=(time.monotonic() - started) * 1000.0,
            )
        )
        return value


def status_error(url: str, status_code: int) -> Optional[FetchError]:
    """Typed FetchError for an HTTP error status, or None for success codes."""
    kind = status_failure(status_code)
    if kind is None:
        return None
    return _ERROR_BY_KIND[kind](url, f"HTTP {status_code}", status_code=status_code)
