"""Alibaba.com scraper adapter.

Search results are server-rendered cards linking to ``/product-detail/``
pages. Detail pages change layout often, so every field is read through
an ordered list of selectors covering the current and legacy templates.
Static fetches are frequently answered with a slider captcha; those are
escalated to a headless render by the base class.
"""

from typing import List, Optional
from urllib.parse import quote_plus

import structlog
from bs4 import BeautifulSoup

from wholesale.detail.models import ListingStub, RawDetail
from wholesale.scrapers.base import BaseScraperAdapter
from wholesale.scrapers.utils.html import (
    find_text_matching,
    image_sources,
    labelled_pairs,
    meta_content,
    select_text,
    split_packaging,
    table_pairs,
)
from wholesale.scrapers.utils.normalizer import PriceNormalizer, clean_text, sanitize_title

logger = structlog.get_logger(__name__)

_RESULT_LINK = "a[href*='/product-detail/']"

_CARD_SELECTORS = [
    ".fy23-search-card",
    ".search-card-info__wrapper",
    ".organic-list-offer-outter",
    ".J-offer-wrapper",
    "[data-content='productItem']",
]

_TITLE_SELECTORS = [
    "h1.product-title",
    "[data-testid='product-title']",
    ".product-title-container h1",
    "h1",
]

_TIER_ROW_SELECTORS = [
    "[data-testid='ladder-price'] .price-item",
    ".module_price .price-item",
    ".price-list .price-item",
]

_ATTRIBUTE_ROW_SELECTORS = [
    ".module_attribute table tr",
    ".do-entry-list dl",
    ".product-attributes table tr",
    ".attribute-table tr",
]

_GALLERY_SELECTORS = [
    "[data-testid='media-image'] img",
    ".image-list img",
    ".main-image img",
    ".detail-main-img img",
    "[class*='slider'] img",
]


class AlibabaAdapter(BaseScraperAdapter):
    """Alibaba.com search and detail scraper."""

    platform = "alibaba"
    platform_name = "Alibaba.com"
    base_url = "https://www.alibaba.com"
    detail_anchor = "h1"
    search_wait_selector = _RESULT_LINK

    def __init__(self):
        super().__init__()
        self.logger = logger.bind(adapter=self.platform)

    def search_url(self, query: str, page: int) -> str:
        return f"{self.base_url}/trade/search?SearchText={quote_plus(query)}&page={page}"

    def parse_search(self, html: str) -> List[ListingStub]:
        """Parse result cards; fall back to bare product links when no card matches."""
        soup = BeautifulSoup(html, "html.parser")
        containers = soup.select(", ".join(_CARD_SELECTORS))
        if not containers:
            containers = [link.find_parent(["div", "li"]) or link for link in soup.select(_RESULT_LINK)]

        stubs: List[ListingStub] = []
        seen = set()
        for container in containers:
            stub = self._parse_card(container)
            if stub and stub.source_url not in seen:
                seen.add(stub.source_url)
                stubs.append(stub)

        self.logger.debug("alibaba_search_parsed", cards=len(containers), listings=len(stubs))
        return stubs

    def _parse_card(self, card) -> Optional[ListingStub]:
        link = card if card.name == "a" else card.select_one(_RESULT_LINK)
        if link is None:
            return None
        url = self.absolute_url(link.get("href"))
        if not url:
            return None

        title = select_text(card, [".search-card-e-title", "h2", ".elements-title-normal"])
        if not title:
            title = clean_text(link.get("title") or link.get_text(" ", strip=True))

        price_raw = select_text(
            card,
            [".search-card-e-price-main", ".elements-offer-price-normal__price", "[class*='price']"],
        )
        price_min, price_max = PriceNormalizer.parse_price_range(price_raw)
        images = image_sources(card, ["img"])

        return ListingStub(
            platform=self.platform,
            source_url=url.split("?")[0],
            title=sanitize_title(title),
            price_raw=price_raw,
            price_min=price_min,
            price_max=price_max,
            currency=PriceNormalizer.detect_currency(price_raw, "USD"),
            image=images[0] if images else None,
            orders_raw=find_text_matching(card, r"[\d,.]+\+?\s*(?:sold|orders?)"),
        )

    def parse_detail(self, soup: BeautifulSoup, url: str) -> RawDetail:
        pairs = table_pairs(soup, _ATTRIBUTE_ROW_SELECTORS)
        pairs += labelled_pairs(soup, ".attribute-list .attribute-item", ".left", ".right")
        attributes, packaging = split_packaging(pairs)
        packaging += labelled_pairs(soup, ".module_packaging .item, .packaging-item", ".name, .left", ".value, .right")

        return RawDetail(
            title=select_text(soup, _TITLE_SELECTORS) or meta_content(soup, "og:title"),
            price_text=select_text(
                soup,
                [
                    "[data-testid='range-price']",
                    "[data-testid='product-price']",
                    ".product-price .price",
                    ".module_price .price",
                ],
            ),
            price_tiers=self._parse_tiers(soup),
            moq_text=select_text(soup, [".moq", ".min-order", "[data-testid='min-order']"])
            or find_text_matching(soup, r"min(?:imum)?\.?\s*order[^\d]{0,20}[\d,]+\s*\w*"),
            attributes=[list(pair) for pair in attributes],
            packaging=[list(pair) for pair in packaging],
            protections=[
                text
                for text in (
                    clean_text(node.get_text(" ", strip=True))
                    for node in soup.select(".module_ta_plus h4, [data-widget='tradeAssurance'] h3")
                )
                if text
            ],
            supplier={
                "name": select_text(
                    soup,
                    [".company-name a", ".company-name", "[data-testid='company-name']", ".supplier-name"],
                ),
                "logo": next(iter(image_sources(soup, [".company-logo img", ".supplier-logo img"])), None),
            },
            hero_image=meta_content(soup, "og:image", "twitter:image"),
            gallery=image_sources(soup, _GALLERY_SELECTORS),
            sold_count=find_text_matching(soup, r"[\d,.]+\+?\s*(?:sold|orders?)"),
        )

    def _parse_tiers(self, soup: BeautifulSoup) -> List[dict]:
        tiers = []
        for selector in _TIER_ROW_SELECTORS:
            for row in soup.select(selector):
                quantity = select_text(row, [".quality", ".quantity", ".price-item-quantity", "div:first-child"])
                price = select_text(row, [".price", ".price-item-price", "span"])
                if quantity and price:
                    tiers.append({"range": quantity, "price": price})
            if tiers:
                break
        return tiers
