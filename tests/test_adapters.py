"""Tests for the marketplace adapters over a mocked HTTP transport."""

import asyncio
from typing import List

import httpx
from bs4 import BeautifulSoup

from wholesale.config import Settings
from wholesale.detail.contract import classify, normalize
from wholesale.detail.models import QualityClass, RawDetail
from wholesale.scrapers.adapters import AlibabaAdapter, IndiaMartAdapter, MadeInChinaAdapter
from wholesale.scrapers.adapters.indiamart import canonicalize_indiamart_url
from wholesale.scrapers.base import fill_from_json_ld, parse_json_ld
from wholesale.scrapers.factory import AdapterFactory
from wholesale.scrapers.strategy import FailureKind, FetchStrategy, FetchStrategySelector
from wholesale.scrapers.utils.normalizer import canonical_url

from .conftest import FakeClock, RecordingSleep

ALIBABA_DETAIL_URL = "https://www.alibaba.com/product-detail/Cotton-Socks_1600000001.html"
MIC_DETAIL_URL = "https://www.made-in-china.com/product/Nylon-Socks-1.html"

ALIBABA_DETAIL_HTML = """
<html><head>
<meta property="og:image" content="//s.alicdn.com/kf/hero_960x960.jpg">
<script type="application/ld+json">
{"@type": "Product", "name": "LD name",
 "offers": {"@type": "AggregateOffer", "lowPrice": "0.45", "highPrice": "1.2",
            "priceCurrency": "USD", "seller": {"name": "LD Seller"}}}
</script>
</head><body>
<h1 class="product-title">Men's Cotton Crew Socks_1600000001</h1>
<div data-testid="ladder-price">
  <div class="price-item"><div class="quality">2 - 99 pairs</div><div class="price">US$1.20</div></div>
  <div class="price-item"><div class="quality">100 - 999 pairs</div><div class="price">US$0.80</div></div>
  <div class="price-item"><div class="quality">≥1000 pairs</div><div class="price">US$0.45</div></div>
</div>
<div class="module_attribute"><table>
  <tr><td>Material</td><td>Cotton</td></tr>
  <tr><td>Size</td><td>Free size</td></tr>
  <tr><td>Color</td><td>Black, White</td></tr>
  <tr><td>Feature</td><td>Breathable</td></tr>
  <tr><td>Place of Origin</td><td>Zhejiang, China</td></tr>
  <tr><td>Packaging Details</td><td>1 pair/polybag</td></tr>
</table></div>
<div class="company-name"><a>Yiwu Socks Co., Ltd.</a></div>
<div class="image-list">
  <img src="//s.alicdn.com/kf/g1_960x960.jpg">
  <img data-src="//s.alicdn.com/kf/g2_960x960.jpg" src="data:image/gif;base64,R0lGOD">
</div>
<span>12,345 sold</span>
</body></html>
"""

MIC_DETAIL_HTML = """
<html><body>
<h1 class="sr-proMainInfo-baseInfoH1">Nylon Ankle Socks for Women</h1>
<div class="swiper-slide-div">
  <div class="swiper-money-container">US$0.30</div><div class="swiper-unit-container">500-999 Pairs</div>
</div>
<div class="swiper-slide-div">
  <div class="swiper-money-container">US$0.25</div><div class="swiper-unit-container">1,000+ Pairs</div>
</div>
<div class="sr-proMainInfo-baseInfo-propertyAttr"><table>
  <tr><th>Min. Order:</th><td>500 Pairs</td></tr>
  <tr><th>Material:</th><td>Nylon</td></tr>
  <tr><th>Packing:</th><td>Carton</td></tr>
</table></div>
<div class="sr-comInfo-title"><a>Zhejiang Hosiery Co.</a></div>
<ul class="sr-proMainInfo-slide-pageUl">
  <li class="J-pic-dot"><img data-original="//image.made-in-china.com/2f0j00abc/Nylon-Socks.jpg"
       src="//www.micstatic.com/common/img/space.png"></li>
</ul>
</body></html>
"""

CAPTCHA_HTML = "<html><body><div id='nc_1_wrapper'>Please slide to verify</div></body></html>"


def alibaba_search_page(ids: List[int]) -> str:
    cards = "".join(
        f'<div class="fy23-search-card">'
        f'<a href="//www.alibaba.com/product-detail/Cotton-Socks_{1600000000 + i}.html?spm=a2700.{i}">'
        f'<h2 class="search-card-e-title">Cotton Socks {i}</h2></a>'
        f'<div class="search-card-e-price-main">US$0.50-1.20</div>'
        f'<img src="//s.alicdn.com/kf/sock{i}_350x350.jpg"></div>'
        for i in ids
    )
    return f"<html><body>{cards}</body></html>"


class FakeBrowserManager:
    """Returns canned HTML instead of rendering with Playwright."""

    def __init__(self, html: str):
        self.html = html
        self.renders = []

    async def render(self, url, wait_selector=None, timeout_ms=30000, scroll=True):
        self.renders.append((url, wait_selector))
        return self.html


def make_adapter(adapter_class, handler, browser_html=None, clock=None):
    adapter = adapter_class()
    adapter.http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    adapter.strategy_selector = FetchStrategySelector(sleep=RecordingSleep())
    adapter.headless_default = browser_html is not None
    if browser_html is not None:
        adapter.browser_manager = FakeBrowserManager(browser_html)
    if clock is not None:
        adapter.clock = clock
    return adapter


# ============================================================================
# TESTS: SEARCH
# ============================================================================

class TestSearchListings:
    """Tests for paginated search."""

    async def test_search_is_bounded_and_deduplicated(self):
        """Overlapping result pages never yield more than the limit or a repeated URL."""
        requested_pages = []

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            requested_pages.append(page)
            start = (page - 1) * 10
            return httpx.Response(200, text=alibaba_search_page(list(range(start, start + 20))))

        adapter = make_adapter(AlibabaAdapter, handler)

        first = await adapter.search_listings("socks", 50)
        second = await adapter.search_listings("socks", 50)

        for results in (first, second):
            keys = [canonical_url(stub.source_url) for stub in results]
            assert len(results) <= 50
            assert len(keys) == len(set(keys))
        assert len(first) == 50
        assert [s.source_url for s in first] == [s.source_url for s in second]
        assert requested_pages == [1, 2, 3, 4, 1, 2, 3, 4]

    async def test_search_card_fields(self):
        adapter = make_adapter(AlibabaAdapter, lambda request: httpx.Response(200, text=alibaba_search_page([7])))

        [stub] = await adapter.search_listings("socks", 5)

        assert stub.platform == "alibaba"
        assert stub.source_url == "https://www.alibaba.com/product-detail/Cotton-Socks_1600000007.html"
        assert stub.title == "Cotton Socks 7"
        assert stub.price_raw == "US$0.50-1.20"
        assert stub.currency == "USD"
        assert str(stub.price_min) == "0.50"
        assert stub.image == "//s.alicdn.com/kf/sock7_350x350.jpg"

    async def test_search_stops_on_empty_page(self):
        pages = []

        def handler(request):
            pages.append(int(request.url.params["page"]))
            return httpx.Response(200, text=alibaba_search_page([1, 2]))

        adapter = make_adapter(AlibabaAdapter, handler)
        results = await adapter.search_listings("socks", 50)

        assert len(results) == 2
        assert pages == [1, 2]

    async def test_search_failure_returns_what_was_collected(self):
        def handler(request):
            if request.url.params["page"] == "1":
                return httpx.Response(200, text=alibaba_search_page([1, 2, 3]))
            return httpx.Response(404)

        adapter = make_adapter(AlibabaAdapter, handler)
        assert len(await adapter.search_listings("socks", 50)) == 3

    async def test_blank_query_or_limit(self):
        adapter = make_adapter(AlibabaAdapter, lambda request: httpx.Response(500))
        assert await adapter.search_listings("   ", 10) == []
        assert await adapter.search_listings("socks", 0) == []

    async def test_health_check(self):
        healthy = make_adapter(AlibabaAdapter, lambda request: httpx.Response(200, text=alibaba_search_page([1])))
        down = make_adapter(AlibabaAdapter, lambda request: httpx.Response(503))

        assert await healthy.health_check()
        assert not await down.health_check()


# ============================================================================
# TESTS: DETAIL
# ============================================================================

class TestAlibabaDetail:
    """Tests for Alibaba detail fetching and parsing."""

    async def test_static_detail_parsed(self):
        adapter = make_adapter(AlibabaAdapter, lambda request: httpx.Response(200, text=ALIBABA_DETAIL_HTML))

        result = await adapter.fetch_detail_result(ALIBABA_DETAIL_URL)
        assert result.ok
        assert [a.strategy for a in result.attempts] == [FetchStrategy.STATIC]

        raw = result.raw
        assert raw.debug_source == "static"
        assert raw.title == "Men's Cotton Crew Socks_1600000001"
        assert raw.price_text == "US$0.45 - US$1.20"
        assert raw.supplier["name"] == "Yiwu Socks Co., Ltd."

        record = normalize(raw)
        assert record.title == "Men's Cotton Crew Socks"
        assert [(t.min_qty, t.max_qty) for t in record.price_tiers] == [(2, 99), (100, 999), (1000, None)]
        assert record.moq == 2
        assert [a.label for a in record.attributes] == ["Material", "Size", "Color", "Feature", "Place of Origin"]
        assert record.packaging == ["Packaging Details: 1 pair/polybag"]
        assert record.hero_image == "https://s.alicdn.com/kf/hero_960x960.jpg"
        assert record.gallery == ["https://s.alicdn.com/kf/g1_960x960.jpg", "https://s.alicdn.com/kf/g2_960x960.jpg"]
        assert record.sold_count == 12345
        assert classify(record) == QualityClass.CORRECT

    async def test_captcha_escalates_to_headless(self):
        adapter = make_adapter(
            AlibabaAdapter,
            lambda request: httpx.Response(200, text=CAPTCHA_HTML),
            browser_html=ALIBABA_DETAIL_HTML,
        )

        result = await adapter.fetch_detail_result(ALIBABA_DETAIL_URL)

        assert result.ok
        assert result.raw.debug_source == "headless"
        assert [a.failure_kind for a in result.attempts] == [FailureKind.ESCALATE, None]
        assert adapter.browser_manager.renders == [(ALIBABA_DETAIL_URL, "h1")]

    async def test_captcha_without_headless_fails(self):
        adapter = make_adapter(AlibabaAdapter, lambda request: httpx.Response(200, text=CAPTCHA_HTML))

        assert await adapter.fetch_detail(ALIBABA_DETAIL_URL) is None
        result = await adapter.fetch_detail_result(ALIBABA_DETAIL_URL)
        assert result.failure_kind == FailureKind.ESCALATE

    async def test_not_found_is_permanent(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(404)

        adapter = make_adapter(AlibabaAdapter, handler, browser_html=ALIBABA_DETAIL_HTML)
        result = await adapter.fetch_detail_result(ALIBABA_DETAIL_URL)

        assert result.failure_kind == FailureKind.PERMANENT
        assert len(calls) == 1
        assert adapter.browser_manager.renders == []

    async def test_malformed_url_is_permanent(self):
        adapter = make_adapter(AlibabaAdapter, lambda request: httpx.Response(200))
        result = await adapter.fetch_detail_result("not a url")
        assert result.failure_kind == FailureKind.PERMANENT

    async def test_timeout_is_transient(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, text=ALIBABA_DETAIL_HTML)

        adapter = make_adapter(AlibabaAdapter, handler)
        result = await adapter.fetch_detail_result(ALIBABA_DETAIL_URL, timeout=0.05)

        assert not result.ok
        assert result.failure_kind == FailureKind.TRANSIENT
        assert result.attempts[-1].error == "fetch timed out"

    async def test_detail_memo(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(200, text=ALIBABA_DETAIL_HTML)

        clock = FakeClock()
        adapter = make_adapter(AlibabaAdapter, handler, clock=clock)

        await adapter.fetch_detail_result(ALIBABA_DETAIL_URL)
        memo = await adapter.fetch_detail_result(ALIBABA_DETAIL_URL)
        assert memo.from_memo
        assert len(calls) == 1

        await adapter.fetch_detail_result(ALIBABA_DETAIL_URL, force=True)
        assert len(calls) == 2

        clock.advance(adapter.memo_ttl + 1)
        fresh = await adapter.fetch_detail_result(ALIBABA_DETAIL_URL)
        assert not fresh.from_memo
        assert len(calls) == 3

    async def test_forced_fetches_do_not_grow_memo(self):
        adapter = make_adapter(
            AlibabaAdapter, lambda request: httpx.Response(200, text=ALIBABA_DETAIL_HTML)
        )

        for i in range(50):
            result = await adapter.fetch_detail_result(
                f"https://www.alibaba.com/product-detail/Socks_{1600000100 + i}.html", force=True
            )
            assert result.ok

        assert adapter._memo == {}

    async def test_memo_write_prunes_expired_entries(self):
        clock = FakeClock()
        adapter = make_adapter(
            AlibabaAdapter, lambda request: httpx.Response(200, text=ALIBABA_DETAIL_HTML), clock=clock
        )

        for i in range(5):
            await adapter.fetch_detail_result(f"https://www.alibaba.com/product-detail/Socks_{1600000200 + i}.html")
        assert len(adapter._memo) == 5

        clock.advance(adapter.memo_ttl + 1)
        await adapter.fetch_detail_result(ALIBABA_DETAIL_URL)

        assert list(adapter._memo) == [ALIBABA_DETAIL_URL]


class TestMadeInChinaDetail:
    """Tests for Made-in-China detail parsing."""

    async def test_swiper_tiers_and_moq(self):
        adapter = make_adapter(MadeInChinaAdapter, lambda request: httpx.Response(200, text=MIC_DETAIL_HTML))

        raw = await adapter.fetch_detail(MIC_DETAIL_URL)
        record = normalize(raw)

        assert record.title == "Nylon Ankle Socks for Women"
        assert [(t.min_qty, t.max_qty, t.price_text) for t in record.price_tiers] == [
            (500, 999, "US$0.30"),
            (1000, None, "US$0.25"),
        ]
        assert record.moq_text == "500 Pairs"
        assert record.moq == 500
        assert record.attributes[0].label == "Material"
        assert record.packaging == ["Packing: Carton"]
        assert record.supplier.name == "Zhejiang Hosiery Co."
        assert record.hero_image == "https://image.made-in-china.com/2f0j00abc/Nylon-Socks.jpg"

    async def test_missing_anchor_escalates(self):
        adapter = make_adapter(
            MadeInChinaAdapter,
            lambda request: httpx.Response(200, text="<html><body><p>degraded</p></body></html>"),
        )
        result = await adapter.fetch_detail_result(MIC_DETAIL_URL)
        assert result.failure_kind == FailureKind.ESCALATE


class TestIndiaMart:
    """Tests for the IndiaMART adapter."""

    def test_canonicalize_url(self):
        url = "https://www.indiamart.com/proddetail/cotton-socks-2345.html?pos=3&kwd=socks&id=99"
        assert canonicalize_indiamart_url(url) == "https://www.indiamart.com/proddetail/cotton-socks-2345.html?id=99"

    async def test_session_cookie_sent(self):
        seen_cookies = []

        def handler(request):
            seen_cookies.append(request.headers.get("cookie"))
            html = (
                '<div class="prod_box"><a href="https://www.indiamart.com/proddetail/socks-1.html?pos=1&id=7">'
                '<span class="prd-name">Cotton Socks</span></a><span class="price">₹ 45 / Pair</span></div>'
            )
            return httpx.Response(200, text=html)

        settings = Settings(_env_file=None, INDIAMART_SESSION_COOKIE="sid=abc", HEADLESS_DEFAULT=False)
        factory = AdapterFactory(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            settings=settings,
        )
        factory.register_adapter("indiamart", IndiaMartAdapter)
        adapter = factory.get_adapter("indiamart")

        [stub] = await adapter.search_listings("socks", 1)

        assert seen_cookies == ["sid=abc"]
        assert stub.source_url == "https://www.indiamart.com/proddetail/socks-1.html?id=7"
        assert stub.currency == "INR"
        assert stub.title == "Cotton Socks"


# ============================================================================
# TESTS: JSON-LD
# ============================================================================

class TestJsonLd:
    """Tests for JSON-LD gap filling."""

    def test_fills_only_missing_fields(self):
        soup = BeautifulSoup(ALIBABA_DETAIL_HTML, "html.parser")
        raw = RawDetail(title="Kept", supplier={"name": None, "logo": "//s.alicdn.com/logo.png"})
        fill_from_json_ld(raw, parse_json_ld(soup))

        assert raw.title == "Kept"
        assert raw.hero_image is None
        assert raw.price_text == "US$0.45 - US$1.20"
        assert raw.supplier == {"name": "LD Seller", "logo": "//s.alicdn.com/logo.png"}

    def test_invalid_json_ignored(self):
        soup = BeautifulSoup('<script type="application/ld+json">{not json</script>', "html.parser")
        assert parse_json_ld(soup) == {}

