"""IndiaMART scraper adapter.

IndiaMART only serves full listings to a logged-in session, so the
adapter requires ``INDIAMART_SESSION_COOKIE`` and sends it with every
static request. Prices are quoted in INR per unit; the unit text
("/ Piece") is kept in the price string.
"""

import re
from typing import Dict, List, Optional
from urllib.parse import parse_qsl, quote_plus, urlencode, urlsplit, urlunsplit

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
from wholesale.scrapers.utils.user_agents import default_headers

logger = structlog.get_logger(__name__)

_CARD_SELECTORS = [
    ".prod_box",
    ".prod-card",
    ".lst-product",
    ".product-card",
    ".card.prd",
    ".p_card",
]

_PRODUCT_HREF = re.compile(r"proddetail|/products?/|detail", re.IGNORECASE)

# Search links carry position and keyword tracking; only the product id matters
_KEEP_PARAMS = {"id"}


def canonicalize_indiamart_url(url: str) -> str:
    """Drop IndiaMART search tracking parameters, keeping the product id."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k in _KEEP_PARAMS]
    return urlunsplit((parts.scheme or "https", parts.netloc, parts.path, urlencode(query), ""))


class IndiaMartAdapter(BaseScraperAdapter):
    """IndiaMART directory search and product detail scraper."""

    platform = "indiamart"
    platform_name = "IndiaMART"
    base_url = "https://dir.indiamart.com"
    detail_anchor = "h1"
    required_settings = ("INDIAMART_SESSION_COOKIE",)

    def __init__(self):
        super().__init__()
        self.logger = logger.bind(adapter=self.platform)

    def request_headers(self) -> Dict[str, str]:
        headers = default_headers(referer=f"{self.base_url}/", accept_language="en-IN,en;q=0.9")
        cookie = self.config.get("INDIAMART_SESSION_COOKIE")
        if cookie:
            headers["Cookie"] = cookie
        return headers

    def search_url(self, query: str, page: int) -> str:
        return f"{self.base_url}/search.mp?ss={quote_plus(query)}&pg={page}"

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
        link = next((a for a in card.select("a[href]") if _PRODUCT_HREF.search(a.get("href", ""))), None)
        if link is None:
            return None
        url = self.absolute_url(link.get("href"))
        if not url:
            return None

        title = select_text(card, [".prd-name", ".producttitle", "h2", "h3"])
        if not title:
            title = clean_text(link.get("title") or link.get_text(" ", strip=True))

        price_raw = select_text(card, [".price", ".prc", "[class*='price']"])
        price_min, price_max = PriceNormalizer.parse_price_range(price_raw)
        images = image_sources(card, ["img"])

        return ListingStub(
            platform=self.platform,
            source_url=canonicalize_indiamart_url(url),
            title=sanitize_title(title),
            price_raw=price_raw,
            price_min=price_min,
            price_max=price_max,
            currency=PriceNormalizer.detect_currency(price_raw, "INR"),
            image=images[0] if images else None,
        )

    def parse_detail(self, soup: BeautifulSoup, url: str) -> RawDetail:
        pairs = table_pairs(soup, [".dtlsec1 table tr", ".prd_tbl tr", ".pdp-spec table tr", "table.spec tr"])
        moq_text = next(
            (value for label, value in pairs if "minimum order" in label.lower()),
            None,
        )
        attributes, packaging = split_packaging(
            [(label, value) for label, value in pairs if "minimum order" not in label.lower()]
        )

        hero = None
        zoom = soup.select_one("#prdimgdiv")
        if zoom is not None:
            hero = zoom.get("data-zoom") or zoom.get("src")

        return RawDetail(
            title=select_text(soup, ["h1.bo", "h1"]),
            price_text=select_text(soup, [".price-unit", ".bo.price-unit", "#askprice_pg-1", ".prc"]),
            moq_text=moq_text,
            attributes=[list(pair) for pair in attributes],
            packaging=[list(pair) for pair in packaging],
            supplier={
                "name": select_text(soup, [".cmp-nm", "#supp_nm", ".company-name", ".lcname"]),
                "logo": next(iter(image_sources(soup, [".cmp-logo img", ".company-logo img"])), None),
            },
            hero_image=hero or meta_content(soup, "og:image", "twitter:image"),
            gallery=image_sources(soup, [".prd_img img", ".thumb-img img", ".pdp-gallery img"]),
        )
