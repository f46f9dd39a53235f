"""Base marketplace adapter interface.

All platform-specific adapters inherit from BaseAdapter. HTML-scraping
marketplaces inherit from BaseScraperAdapter, which implements search
pagination, detail fetching with static -> headless escalation, a short
detail memo and JSON-LD gap filling; subclasses only supply URLs and
parsers.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import httpx
import structlog
from bs4 import BeautifulSoup

from wholesale.core.exceptions import BotInterceptionDetected, PermanentFetchError
from wholesale.detail.models import ListingStub, RawDetail
from wholesale.scrapers.strategy import (
    FailureKind,
    FetchAttempt,
    FetchResult,
    FetchStrategy,
    FetchStrategySelector,
    looks_intercepted,
    status_error,
)
from wholesale.scrapers.utils.browser_manager import BrowserManager
from wholesale.scrapers.utils.normalizer import PriceNormalizer, canonical_url, clean_text
from wholesale.scrapers.utils.rate_limiter import RateLimiterRegistry
from wholesale.scrapers.utils.user_agents import default_headers

logger = structlog.get_logger(__name__)


class BaseAdapter(ABC):
    """Abstract base class for all marketplace adapters.

    Shared services are injected by the AdapterFactory after construction.
    """

    platform: str = ""  # Must be overridden in subclass (e.g., "alibaba")
    platform_name: str = ""  # Display name (e.g., "Alibaba.com")
    required_settings: Tuple[str, ...] = ()  # Settings that must be non-empty when enabled

    def __init__(self):
        """Initialize the adapter with dependency injection points."""
        self.rate_limiter: Optional[RateLimiterRegistry] = None  # Injected by factory
        self.http_client: Optional[httpx.AsyncClient] = None  # Injected by factory
        self.browser_manager: Optional[BrowserManager] = None  # Injected by factory
        self.strategy_selector = FetchStrategySelector()
        self.config: Dict[str, Any] = {}  # Values of required_settings
        self.headless_default = True
        self.fetch_timeout = 45.0
        self.search_page_cap = 5
        self.memo_ttl = 600.0
        self.clock: Callable[[], float] = time.monotonic
        self.logger = logger.bind(adapter=self.platform)

    @abstractmethod
    async def search_listings(
        self, query: str, limit: int, headless: Optional[bool] = None
    ) -> List[ListingStub]:
        """Search the marketplace.

        Args:
            query: Free-text search query
            limit: Maximum number of listings to return
            headless: Allow headless escalation (None = adapter default)

        Returns:
            At most ``limit`` stubs with unique canonical URLs. A failed
            page ends pagination; nothing is raised.
        """

    @abstractmethod
    async def fetch_detail_result(
        self,
        url: str,
        force: bool = False,
        headless: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        """Fetch and parse one detail page, returning every attempt made."""

    async def fetch_detail(
        self,
        url: str,
        force: bool = False,
        headless: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> Optional[RawDetail]:
        """Fetch and parse one detail page.

        Returns:
            RawDetail, or None on irrecoverable failure. Fetch errors never
            cross this boundary.
        """
        result = await self.fetch_detail_result(url, force=force, headless=headless, timeout=timeout)
        return result.raw

    async def health_check(self) -> bool:
        """Check if this adapter can reach its marketplace.

        Returns:
            True if a one-result search succeeds, False otherwise
        """
        try:
            listings = await self.search_listings("bag", 1, headless=False)
            return len(listings) > 0
        except Exception as e:
            self.logger.error("health_check_failed", error=str(e))
            return False


class BaseScraperAdapter(BaseAdapter):
    """Base class for HTML-scraping adapters.

    Subclasses implement ``search_url``, ``parse_search`` and
    ``parse_detail``. ``detail_anchor`` is a CSS selector that every
    genuine detail page contains; its absence means the page was
    intercepted or degraded and triggers escalation.
    """

    base_url: str = ""
    detail_anchor: Optional[str] = "h1"
    search_wait_selector: Optional[str] = None

    def __init__(self):
        super().__init__()
        self._memo: Dict[str, Tuple[float, RawDetail]] = {}

    @abstractmethod
    def search_url(self, query: str, page: int) -> str:
        """URL of result page ``page`` (1-based) for ``query``."""

    @abstractmethod
    def parse_search(self, html: str) -> List[ListingStub]:
        """Extract listing stubs from a search result page."""

    @abstractmethod
    def parse_detail(self, soup: BeautifulSoup, url: str) -> RawDetail:
        """Extract raw detail fields from a parsed detail page."""

    def request_headers(self) -> Dict[str, str]:
        """Headers for static requests. Override to add cookies."""
        return default_headers(referer=self.base_url or None)

    def absolute_url(self, href: Optional[str]) -> Optional[str]:
        href = clean_text(href)
        if not href or href.startswith(("javascript:", "#", "mailto:")):
            return None
        if href.startswith("//"):
            return f"https:{href}"
        return urljoin(self.base_url or "https://", href)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search_listings(
        self, query: str, limit: int, headless: Optional[bool] = None
    ) -> List[ListingStub]:
        query = clean_text(query)
        if not query or limit <= 0:
            return []
        use_headless = self.headless_default if headless is None else headless

        listings: List[ListingStub] = []
        seen = set()
        for page in range(1, self.search_page_cap + 1):
            url = self.search_url(query, page)
            result = await self.strategy_selector.run(
                url,
                static=lambda url=url: self._static_search(url),
                headless=(lambda url=url: self._headless_search(url)) if use_headless else None,
            )
            if not result.ok:
                self.logger.warning(
                    "search_page_failed",
                    query=query,
                    page=page,
                    failure_kind=result.failure_kind.value if result.failure_kind else None,
                )
                break

            added = 0
            for stub in result.raw:
                key = canonical_url(stub.source_url)
                if key in seen:
                    continue
                seen.add(key)
                listings.append(stub)
                added += 1
                if len(listings) >= limit:
                    self.logger.info("search_complete", query=query, pages=page, count=len(listings))
                    return listings
            if added == 0:
                break

        self.logger.info("search_complete", query=query, count=len(listings))
        return listings

    async def _static_search(self, url: str) -> List[ListingStub]:
        html = await self._fetch_static(url, f"{self.platform}-search")
        return self.parse_search(html)

    async def _headless_search(self, url: str) -> List[ListingStub]:
        html = await self._fetch_headless(url, f"{self.platform}-search", self.search_wait_selector)
        return self.parse_search(html)

    # ------------------------------------------------------------------
    # Detail
    # ------------------------------------------------------------------

    async def fetch_detail_result(
        self,
        url: str,
        force: bool = False,
        headless: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        if not force:
            cached = self._memo_get(url)
            if cached is not None:
                self.logger.debug("detail_memo_hit", url=url)
                return FetchResult(url=url, raw=cached, from_memo=True)

        use_headless = self.headless_default if headless is None else headless
        result = FetchResult(url=url)
        try:
            await asyncio.wait_for(
                self.strategy_selector.run(
                    url,
                    static=lambda: self._static_detail(url),
                    headless=(lambda: self._headless_detail(url)) if use_headless else None,
                    result=result,
                ),
                timeout=timeout or self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            result.raw = None
            result.attempts.append(
                FetchAttempt(
                    url=url,
                    strategy=FetchStrategy.HEADLESS if use_headless else FetchStrategy.STATIC,
                    success=False,
                    latency_ms=(timeout or self.fetch_timeout) * 1000.0,
                    failure_kind=FailureKind.TRANSIENT,
                    error="fetch timed out",
                )
            )
            self.logger.warning("detail_fetch_timeout", url=url)

        if force:
            # Forced fetches bypass the memo entirely; drop any older entry
            self._memo.pop(url, None)
        elif result.ok:
            self._memo_put(url, result.raw)
        if result.ok:
            self.logger.info("detail_fetched", url=url, attempts=len(result.attempts))
        return result

    def _memo_put(self, url: str, raw: RawDetail) -> None:
        now = self.clock()
        expired = [key for key, (stored_at, _) in self._memo.items() if now - stored_at > self.memo_ttl]
        for key in expired:
            del self._memo[key]
        self._memo[url] = (now, raw)

    def _memo_get(self, url: str) -> Optional[RawDetail]:
        entry = self._memo.get(url)
        if entry is None:
            return None
        stored_at, raw = entry
        if self.clock() - stored_at > self.memo_ttl:
            del self._memo[url]
            return None
        return raw

    async def _static_detail(self, url: str) -> RawDetail:
        html = await self._fetch_static(url, f"{self.platform}-detail")
        return self._parse_detail_page(html, url, FetchStrategy.STATIC)

    async def _headless_detail(self, url: str) -> RawDetail:
        html = await self._fetch_headless(url, f"{self.platform}-detail", self.detail_anchor)
        return self._parse_detail_page(html, url, FetchStrategy.HEADLESS)

    def _parse_detail_page(self, html: str, url: str, strategy: FetchStrategy) -> RawDetail:
        soup = BeautifulSoup(html, "html.parser")
        if self.detail_anchor and soup.select_one(self.detail_anchor) is None:
            raise BotInterceptionDetected(url, f"detail anchor {self.detail_anchor!r} missing")
        raw = self.parse_detail(soup, url)
        fill_from_json_ld(raw, parse_json_ld(soup))
        raw.debug_source = strategy.value
        return raw

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _throttle(self, bucket: str) -> None:
        if self.rate_limiter:
            await self.rate_limiter.acquire(bucket)

    async def _fetch_static(self, url: str, bucket: str) -> str:
        if not url.startswith(("http://", "https://")):
            raise PermanentFetchError(url, "malformed URL")
        if self.http_client is None:
            raise PermanentFetchError(url, "no HTTP client configured")

        await self._throttle(bucket)
        response = await self.http_client.get(url, headers=self.request_headers(), follow_redirects=True)
        error = status_error(url, response.status_code)
        if error:
            raise error

        html = response.text
        if looks_intercepted(html):
            raise BotInterceptionDetected(url, "anti-bot page served", status_code=response.status_code)
        return html

    async def _fetch_headless(self, url: str, bucket: str, wait_selector: Optional[str]) -> str:
        if self.browser_manager is None:
            raise PermanentFetchError(url, "headless rendering unavailable")

        await self._throttle(bucket)
        html = await self.browser_manager.render(
            url,
            wait_selector=wait_selector,
            timeout_ms=int(self.fetch_timeout * 1000),
        )
        if looks_intercepted(html):
            raise BotInterceptionDetected(url, "anti-bot page rendered")
        return html


def parse_json_ld(soup: BeautifulSoup) -> Dict[str, Any]:
    """Merge every Product/Offer/Organization JSON-LD block on the page."""
    out: Dict[str, Any] = {}
    for tag in soup.find_all("script", type=lambda t: t and "ld+json" in t):
        try:
            data = json.loads(tag.string or "{}")
        except ValueError:
            continue
        if isinstance(data, dict):
            data = data.get("@graph", [data])
        if not isinstance(data, list):
            continue
        for block in data:
            if isinstance(block, dict) and block.get("@type") in ("Product", "Offer", "Organization"):
                out.update(block)
    return out


def fill_from_json_ld(raw: RawDetail, ld: Dict[str, Any]) -> None:
    """Fill fields the platform selectors left empty from JSON-LD data."""
    if not ld:
        return
    if not clean_text(raw.title):
        raw.title = ld.get("name")

    if not raw.hero_image:
        image = ld.get("image")
        if isinstance(image, list) and image:
            image = image[0]
        if isinstance(image, dict):
            image = image.get("url")
        raw.hero_image = image if isinstance(image, str) else None

    offers = ld.get("offers") or {}
    if isinstance(offers, list):
        offers = offers[0] if offers and isinstance(offers[0], dict) else {}

    if not clean_text(raw.price_text):
        low = offers.get("lowPrice") or offers.get("price")
        if low is not None:
            high = offers.get("highPrice")
            raw.price_text = PriceNormalizer.format_range(
                PriceNormalizer.clean_price_string(str(low)),
                PriceNormalizer.clean_price_string(str(high)) if high is not None else None,
                offers.get("priceCurrency"),
            )

    supplier = raw.supplier if isinstance(raw.supplier, dict) else {"name": raw.supplier}
    if not clean_text(supplier.get("name")):
        seller = offers.get("seller") or ld.get("manufacturer")
        if isinstance(seller, dict):
            seller = seller.get("name")
        if isinstance(seller, str) and seller.strip():
            raw.supplier = {**supplier, "name": seller}
