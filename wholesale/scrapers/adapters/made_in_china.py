"""Made-in-China.com scraper adapter.

Made-in-China serves complete HTML to plain requests most of the time,
so the static path usually succeeds. Gallery images live in a
lazy-loaded slider whose real URLs sit in ``data-original``.
"""

import re
from typing import List, Optional
from urllib.parse import quote_plus

import structlog
from bs4 import BeautifulSoup

from wholesale.detail.models import ListingStub, RawDetail
from wholesale.scrapers.base import BaseScraperAdapter
from wholesale.scrapers.utils.html import (
    image_sources,
    meta_content,
    select_text,
    split_packaging,
    table_pairs,
)
from wholesale.scrapers.utils.normalizer import PriceNormalizer, clean_text, sanitize_title

logger = structlog.get_logger(__name__)

_CARD_SELECTORS = [
    ".products-item",
    ".prd-list",
    ".product-item",
    ".prd-item",
    ".list-item",
    ".result-item",
    ".pro-item",
    "li[data-title]",
]

_GALLERY_SELECTORS = [
    "ul.sr-proMainInfo-slide-pageUl li.J-pic-dot img",
    ".sr-proMainInfo-slide-pageInside img",
    ".J-proSlide-content img",
]


class MadeInChinaAdapter(BaseScraperAdapter):
    """Made-in-China.com search and detail scraper."""

    platform = "made_in_china"
    platform_name = "Made-in-China.com"
    base_url = "https://www.made-in-china.com"
    detail_anchor = ".sr-proMainInfo-baseInfoH1, h1"

    def __init__(self):
        super().__init__()
        self.logger = logger.bind(adapter=self.platform)

    def search_url(self, query: str, page: int) -> str:
        return f"{self.base_url}/productdirectory.do?word={quote_plus(query)}&page={page}"

    def parse_search(self, html: str) -> List[ListingStub]:
        soup = BeautifulSoup(html, "html.parser")
        stubs: List[ListingStub] = []
        seen = set()
        for card in soup.select(", ".join(_CARD_SELECTORS)):
            stub = self._parse_card(card)
            if stub and stub.source_url not in seen:
                seen.add(stub.source_url)
                stubs.append(stub)
        return stubs

    def _parse_card(self, card) -> Optional[ListingStub]:
        link = next((a for a in card.select("a[href]") if "/product/" in a.get("href", "")), None)
        if link is None:
            return None
        url = self.absolute_url(link.get("href"))
        if not url:
            return None

        title = clean_text(card.get("data-title")) or select_text(card, [".product-name", "h2", ".title"])
        if not title:
            title = clean_text(link.get("title") or link.get_text(" ", strip=True))

        price_raw = select_text(card, [".price", ".prd-price", "[class*='price']"])
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
        )

    def parse_detail(self, soup: BeautifulSoup, url: str) -> RawDetail:
        pairs = table_pairs(
            soup,
            [
                ".sr-proMainInfo-baseInfo-propertyAttr table tr",
                ".sr-attribute tr",
                ".basic-info-list tr",
            ],
        )
        attributes, packaging = split_packaging(
            [(label, value) for label, value in pairs if not re.match(r"min\.?\s*order", label, re.IGNORECASE)]
        )
        moq_text = next(
            (value for label, value in pairs if re.match(r"min\.?\s*order", label, re.IGNORECASE)),
            None,
        )

        return RawDetail(
            title=select_text(soup, [".sr-proMainInfo-baseInfoH1", "h1"]),
            price_text=select_text(
                soup,
                [".only-one-priceNum", ".sr-proMainInfo-baseInfo-propertyPrice .price", ".price"],
            ),
            price_tiers=self._parse_tiers(soup),
            moq_text=moq_text or select_text(soup, [".sr-proMainInfo-baseInfo-propertyAttr .moq", ".min-order"]),
            attributes=[list(pair) for pair in attributes],
            packaging=[list(pair) for pair in packaging],
            protections=[
                text
                for text in (clean_text(node.get_text(" ", strip=True)) for node in soup.select(".sign-item, .verified-item"))
                if text
            ],
            supplier={
                "name": select_text(soup, [".sr-comInfo-title .title-txt a", ".sr-comInfo-title a", ".company-name"]),
                "logo": next(iter(image_sources(soup, [".sr-comInfo-logo img", ".company-logo img"])), None),
            },
            hero_image=meta_content(soup, "og:image", "twitter:image"),
            gallery=image_sources(soup, _GALLERY_SELECTORS),
        )

    def _parse_tiers(self, soup: BeautifulSoup) -> List[dict]:
        tiers = []
        for slide in soup.select(".swiper-slide-div, .price-item"):
            price = select_text(slide, [".swiper-money-container", ".price"])
            quantity = select_text(slide, [".swiper-unit-container", ".unit"])
            if price and quantity:
                tiers.append({"range": quantity, "price": price})
        if tiers:
            return tiers

        # Legacy two-row table: prices in the first row, quantities in the second
        rows = soup.select(".sr-proMainInfo-baseInfo-propertyPrice tr")
        if len(rows) >= 2:
            prices = [clean_text(td.get_text(" ", strip=True)) for td in rows[0].find_all("td")]
            quantities = [clean_text(td.get_text(" ", strip=True)) for td in rows[1].find_all("td")]
            for price, quantity in zip(prices, quantities):
                if price and quantity and PriceNormalizer.clean_price_string(price) is not None:
                    tiers.append({"range": quantity, "price": price})
        return tiers
