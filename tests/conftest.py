"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Dict, List, Optional

import httpx
import pytest

from wholesale.detail.contract import normalize
from wholesale.detail.models import DetailRecord, ListingStub, RawDetail
from wholesale.scrapers.base import BaseAdapter
from wholesale.scrapers.strategy import FailureKind, FetchAttempt, FetchResult, FetchStrategy
from wholesale.store.memory import InMemoryListingStore


JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 2000

# ============================================================================
# FAKES
# ============================================================================

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep that returns immediately and remembers the delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ScriptedAdapter(BaseAdapter):
    """Adapter whose detail fetches return pre-scripted results.

    ``details`` maps URL -> RawDetail, ``failures`` maps URL -> FailureKind
    and ``errors`` maps URL -> exception raised from the fetch itself.
    """

    platform = "fake"
    platform_name = "Fake Marketplace"

    def __init__(
        self,
        details: Optional[Dict[str, RawDetail]] = None,
        failures: Optional[Dict[str, FailureKind]] = None,
        errors: Optional[Dict[str, Exception]] = None,
        stubs: Optional[List[ListingStub]] = None,
    ):
        super().__init__()
        self.details = details or {}
        self.failures = failures or {}
        self.errors = errors or {}
        self.stubs = stubs or []
        self.calls: List[dict] = []
        self.active = 0
        self.max_active = 0

    async def search_listings(self, query: str, limit: int, headless: Optional[bool] = None) -> List[ListingStub]:
        self.calls.append({"search": query, "limit": limit, "headless": headless})
        return self.stubs[:limit]

    async def fetch_detail_result(
        self,
        url: str,
        force: bool = False,
        headless: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        self.calls.append({"url": url, "force": force, "headless": headless})
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
        finally:
            self.active -= 1

        if url in self.errors:
            raise self.errors[url]
        if url in self.failures:
            kind = self.failures[url]
            return FetchResult(
                url=url,
                attempts=[FetchAttempt(url, FetchStrategy.STATIC, False, 1.0, failure_kind=kind)],
            )
        return FetchResult(
            url=url,
            raw=self.details.get(url, RawDetail()),
            attempts=[FetchAttempt(url, FetchStrategy.STATIC, True, 1.0)],
        )


class FakeFactory:
    """Stands in for AdapterFactory.get_adapter in service tests."""

    def __init__(self, adapters: Dict[str, BaseAdapter]):
        self.adapters = adapters

    def get_adapter(self, platform: str) -> Optional[BaseAdapter]:
        return self.adapters.get(platform)


class ImageServer:
    """MockTransport handler serving canned image bodies and counting requests."""

    def __init__(self, body: bytes = JPEG, content_type: str = "image/jpeg", status: int = 200):
        self.body = body
        self.content_type = content_type
        self.status = status
        self.requests = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        await asyncio.sleep(0)
        return httpx.Response(self.status, content=self.body, headers={"content-type": self.content_type})


# ============================================================================
# BUILDERS
# ============================================================================

def make_raw(
    attributes: int = 0,
    tiers: int = 0,
    hero: bool = False,
    supplier: bool = False,
    title: str = "Cotton Crew Socks",
) -> RawDetail:
    """RawDetail with the requested number of attributes and tiers."""
    return RawDetail(
        title=title,
        attributes=[[f"Spec {i}", f"Value {i}"] for i in range(attributes)],
        price_tiers=[
            {"min": 10 ** i, "max": None, "price": f"US${2 - i * 0.1:.2f}"}
            for i in range(tiers)
        ],
        hero_image="https://s.alicdn.com/kf/hero_960x960.jpg" if hero else None,
        supplier={"name": "Yiwu Socks Co., Ltd."} if supplier else None,
    )


def make_record(**kwargs) -> DetailRecord:
    return normalize(make_raw(**kwargs))


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def store() -> InMemoryListingStore:
    return InMemoryListingStore()


@pytest.fixture
def stub() -> ListingStub:
    return ListingStub(
        platform="fake",
        source_url="https://www.alibaba.com/product-detail/Cotton-Socks_1600000001.html",
        title="Cotton Socks",
        price_raw="$5-10",
    )
