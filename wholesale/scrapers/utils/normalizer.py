"""Pure text, URL and price helpers shared by adapters and the detail contract."""

import html
import re
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple
from urllib.parse import parse_qsl, unquote, urlencode, urljoin, urlsplit, urlunsplit


# Query parameters that only carry tracking state and never change the page
TRACKING_PARAMS = {
    "spm",
    "scm",
    "pvid",
    "tracelog",
    "traceid",
    "from",
    "ref",
    "source",
    "abtest",
    "algo_pvid",
    "algo_expid",
    "btn_id",
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
    "_ga",
}
TRACKING_PREFIXES = ("utm_", "aff_", "ali_")

_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp", "gif", "avif", "bmp", "svg")


def clean_text(value) -> Optional[str]:
    """Collapse whitespace and strip. Empty results become None."""
    if value is None:
        return None
    text = html.unescape(str(value))
    text = re.sub(r"\s+", " ", text).strip()
    return text or None


def canonical_url(url: str) -> str:
    """Canonical form used to deduplicate listings.

    Host and path are lower-cased, tracking parameters and the fragment
    are dropped, remaining query parameters are sorted, and a trailing
    slash is removed.
    """
    if not url:
        return url
    url = url.strip()
    if url.startswith("//"):
        url = f"https:{url}"

    parts = urlsplit(url)
    scheme = (parts.scheme or "https").lower()
    if scheme == "http":
        scheme = "https"
    host = parts.netloc.lower()
    path = parts.path.lower().rstrip("/") or "/"

    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k.lower() not in TRACKING_PARAMS and not k.lower().startswith(TRACKING_PREFIXES)
    ]
    query.sort()
    return urlunsplit((scheme, host, path, urlencode(query), ""))


def normalize_image_url(value, base_url: Optional[str] = None) -> Optional[str]:
    """Return an absolute image URL, or None if ``value`` is not usable.

    Protocol-relative URLs get ``https:``; relative paths are joined to
    ``base_url`` when one is given. A bare extension such as ``"jpg"`` is
    a data-entry defect, not an image, and is rejected.
    """
    text = clean_text(value)
    if not text:
        return None
    if text.lower().lstrip(".") in _IMAGE_EXTENSIONS:
        return None
    if text.startswith("//"):
        return f"https:{text}"
    if text.startswith(("http://", "https://")):
        return text
    if base_url and not text.startswith("data:"):
        joined = urljoin(base_url, text)
        if joined.startswith(("http://", "https://")):
            return joined
    if text.startswith("/") and "." in text.rsplit("/", 1)[-1]:
        # Already a local cache reference ("/cache/<sha1>.jpg")
        return text
    return None


# CDN host suffix -> replacement for a small "_WxH" rendition suffix.
# Alibaba serves a 350px rendition of every gallery image; Made-in-China
# serves the original when the suffix is removed.
THUMBNAIL_UPGRADES = {
    "alicdn.com": "_350x350",
    "made-in-china.com": "",
}
_RENDITION = re.compile(r"_(\d{1,4})x(\d{1,4})(?=q\d+|[._])")


def upgrade_thumbnail_url(url: Optional[str]) -> Optional[str]:
    """Swap a marketplace thumbnail rendition (``_80x80``) for a full-size one.

    Only renditions under 200px on marketplace CDNs are rewritten; any
    other URL is returned unchanged.
    """
    if not url or not url.startswith(("http://", "https://")):
        return url
    host = urlsplit(url).netloc.lower()
    replacement = next(
        (value for suffix, value in THUMBNAIL_UPGRADES.items() if host == suffix or host.endswith("." + suffix)),
        None,
    )
    if replacement is None:
        return url

    def _swap(match):
        if min(int(match.group(1)), int(match.group(2))) < 200:
            return replacement
        return match.group(0)

    return _RENDITION.sub(_swap, url)


def is_likely_bad_image_url(url: Optional[str]) -> bool:
    """Heuristic for icons, sprites and banners that marketplaces mix into galleries."""
    if not url:
        return False
    lowered = url.lower()

    size = re.search(r"[_-](\d{1,3})x(\d{1,3})[._-]", lowered)
    if size and (int(size.group(1)) < 200 or int(size.group(2)) < 200):
        return True
    if re.search(r"sprite|favicon|badge|watermark|/icons?/|[_-]icon[._-]|loading\.gif|blank\.gif", lowered):
        return True
    # Alibaba "tps-W-H" banner assets
    if re.search(r"\d{4,6}-\d-tps-\d{2,4}-\d{2,4}\.(png|jpe?g)", lowered):
        return True
    return False


# Trailing marketplace IDs: "Cotton-Socks_1600123456789.html"
_TRAILING_ID = re.compile(
    r"[_-]\d{6,}(?:\.(?:html?|" + "|".join(_IMAGE_EXTENSIONS) + r"))?$",
    re.IGNORECASE,
)
_FILE_EXTENSION = re.compile(r"\.(?:html?|php|aspx?)$", re.IGNORECASE)
_REPEATED_SEPARATORS = re.compile(r"\s*([|/,;:\-])\s*(?:[|/,;:\-]\s*)+")
_JUNK = re.compile(r"[\d\s/.,:;|()\[\]#*+\-_xX×]*")
_GENERIC_SEGMENTS = {"product-detail", "proddetail", "prod", "product", "products", "item", "detail", "details"}


def sanitize_title(value) -> Optional[str]:
    """Strip marketplace IDs and collapse separator runs in a title."""
    text = clean_text(value)
    if not text:
        return None
    text = _TRAILING_ID.sub("", text)
    text = _FILE_EXTENSION.sub("", text)
    text = text.replace("_", " ")
    text = _REPEATED_SEPARATORS.sub(lambda m: f" {m.group(1)} ", text)
    text = re.sub(r"\s+", " ", text)
    text = text.strip(" |/,;:-")
    return text or None


def is_junky_title(value: Optional[str]) -> bool:
    """True for empty titles and fragments made only of digits and punctuation ("1/ 6")."""
    if not value:
        return True
    text = value.strip()
    if len(text) < 3:
        return True
    return bool(_JUNK.fullmatch(text))


def title_from_url(url: Optional[str]) -> Optional[str]:
    """Derive a readable title from a product URL slug.

    ``.../product-detail/Wholesale-Cotton-Socks_1600123456789.html``
    becomes ``"Wholesale Cotton Socks"``.
    """
    if not url:
        return None
    path = urlsplit(url if not url.startswith("//") else f"https:{url}").path
    segments = [s for s in path.split("/") if s and s.lower() not in _GENERIC_SEGMENTS]
    for segment in reversed(segments):
        slug = unquote(segment)
        slug = _TRAILING_ID.sub("", slug)
        slug = _FILE_EXTENSION.sub("", slug)
        slug = re.sub(r"[-_+]+", " ", slug).strip()
        if not is_junky_title(slug):
            title = sanitize_title(slug)
            if title and not is_junky_title(title):
                return title[0].upper() + title[1:]
    return None


def resolve_title(*candidates, url: Optional[str] = None, supplier: Optional[str] = None) -> Optional[str]:
    """First usable title among ``candidates``, then the URL slug, then the supplier."""
    for candidate in candidates:
        title = sanitize_title(candidate)
        if title and not is_junky_title(title):
            return title
    title = title_from_url(url)
    if title:
        return title
    supplier_name = clean_text(supplier)
    if supplier_name:
        return f"{supplier_name} product"
    return None


class PriceNormalizer:
    """Price and quantity parsing for marketplace text."""

    CURRENCY_SYMBOLS = {
        "USD": "US$",
        "CNY": "¥",
        "RMB": "¥",
        "INR": "₹",
        "EUR": "€",
        "GBP": "£",
    }

    @staticmethod
    def clean_price_string(raw: Optional[str]) -> Optional[Decimal]:
        """Extract the first numeric price from strings like "US$1,234.50"."""
        if not raw:
            return None
        match = re.search(r"\d[\d,]*(?:\.\d+)?", str(raw))
        if not match:
            return None
        try:
            return Decimal(match.group().replace(",", ""))
        except InvalidOperation:
            return None

    @staticmethod
    def parse_price_range(raw: Optional[str]) -> Tuple[Optional[Decimal], Optional[Decimal]]:
        """Parse "US$1.20 - 3.50" into (1.20, 3.50); a single price gives (p, p)."""
        if not raw:
            return None, None
        amounts = []
        for match in re.findall(r"\d[\d,]*(?:\.\d+)?", str(raw))[:2]:
            try:
                amounts.append(Decimal(match.replace(",", "")))
            except InvalidOperation:
                continue
        if not amounts:
            return None, None
        return min(amounts), max(amounts)

    @staticmethod
    def detect_currency(raw: Optional[str], default: Optional[str] = None) -> Optional[str]:
        """Currency code implied by the symbol or code in a price string."""
        if not raw:
            return default
        text = str(raw)
        for marker, code in (("US$", "USD"), ("USD", "USD"), ("₹", "INR"), ("INR", "INR"), ("Rs", "INR"),
                             ("¥", "CNY"), ("CNY", "CNY"), ("€", "EUR"), ("£", "GBP"), ("$", "USD")):
            if marker in text:
                return code
        return default

    @classmethod
    def currency_symbol(cls, currency: Optional[str]) -> str:
        if not currency:
            return "US$"
        return cls.CURRENCY_SYMBOLS.get(currency.upper(), currency.upper())

    @staticmethod
    def _format_amount(value) -> Optional[str]:
        if value is None:
            return None
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
        if not amount.is_finite():
            return None
        if amount == amount.to_integral_value():
            return f"{int(amount):,}"
        return f"{amount:,.2f}"

    @classmethod
    def format_range(cls, low, high, currency: Optional[str] = None) -> Optional[str]:
        """Format ``low``/``high`` as "US$1.20 - US$3.50" (or a single price)."""
        symbol = cls.currency_symbol(currency)
        lo = cls._format_amount(low)
        hi = cls._format_amount(high)
        if lo and hi and lo != hi:
            return f"{symbol}{lo} - {symbol}{hi}"
        if lo:
            return f"{symbol}{lo}"
        if hi:
            return f"{symbol}{hi}"
        return None

    @staticmethod
    def parse_orders(text: Optional[str]) -> Optional[int]:
        """Parse "1,234 sold" / "56 orders" into an int."""
        if not text:
            return None
        match = re.search(r"(\d[\d,.]*)\s*\+?\s*(?:sold|orders?)", str(text), re.IGNORECASE)
        if not match:
            return None
        return int(re.sub(r"[,.]", "", match.group(1)))

    @staticmethod
    def parse_moq(text: Optional[str]) -> Optional[int]:
        """Parse the minimum order quantity out of "≥ 100 pieces" / "Min. order: 2 sets"."""
        if not text:
            return None
        match = re.search(r"[≥>]?\s*(\d[\d,]*)", str(text))
        if not match:
            return None
        value = int(match.group(1).replace(",", ""))
        return value if value > 0 else None

    @staticmethod
    def parse_quantity_range(text: Optional[str]) -> Optional[Tuple[int, Optional[int]]]:
        """Parse a tier quantity range.

        "2 - 99 pieces" -> (2, 99); ">= 100 pieces", "100+", "≥100" -> (100, None).
        """
        if not text:
            return None
        value = str(text).replace(",", "")
        bounded = re.search(r"(\d+)\s*(?:-|~|–|to)\s*(\d+)", value)
        if bounded:
            return int(bounded.group(1)), int(bounded.group(2))
        open_ended = re.search(r"(?:≥|>=|>)\s*(\d+)|(\d+)\s*(?:\+|or more|and above)", value, re.IGNORECASE)
        if open_ended:
            return int(open_ended.group(1) or open_ended.group(2)), None
        single = re.search(r"(\d+)", value)
        if single:
            return int(single.group(1)), None
        return None
