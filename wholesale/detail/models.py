"""Data structures for listing stubs, raw scrape output and canonical detail records."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ListingStub:
    """Search-phase listing. Its fields are fallbacks during normalization."""

    platform: str
    source_url: str
    title: Optional[str] = None
    price_raw: Optional[str] = None
    price_min: Optional[Decimal] = None
    price_max: Optional[Decimal] = None
    currency: Optional[str] = None
    image: Optional[str] = None
    orders_raw: Optional[str] = None

    def __post_init__(self):
        if not self.platform:
            raise ValueError("platform is required")
        if not self.source_url:
            raise ValueError("source_url is required")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "source_url": self.source_url,
            "title": self.title,
            "price_raw": self.price_raw,
            "price_min": str(self.price_min) if self.price_min is not None else None,
            "price_max": str(self.price_max) if self.price_max is not None else None,
            "currency": self.currency,
            "image": self.image,
            "orders_raw": self.orders_raw,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListingStub":
        def _decimal(value):
            return Decimal(str(value)) if value not in (None, "") else None

        return cls(
            platform=data["platform"],
            source_url=data["source_url"],
            title=data.get("title"),
            price_raw=data.get("price_raw"),
            price_min=_decimal(data.get("price_min")),
            price_max=_decimal(data.get("price_max")),
            currency=data.get("currency"),
            image=data.get("image"),
            orders_raw=data.get("orders_raw"),
        )


@dataclass
class RawDetail:
    """Unnormalized detail-page output of one adapter. Never persisted.

    Collections are loosely typed on purpose: attributes may be
    ``{"label", "value"}`` mappings or ``[label, value]`` pairs, and
    tiers may carry numeric bounds or a free-text ``range``.
    """

    title: Optional[str] = None
    price_text: Optional[str] = None
    price_tiers: List[Any] = field(default_factory=list)
    moq_text: Optional[str] = None
    attributes: List[Any] = field(default_factory=list)
    packaging: List[Any] = field(default_factory=list)
    protections: List[Any] = field(default_factory=list)
    supplier: Any = None
    hero_image: Optional[str] = None
    gallery: List[Any] = field(default_factory=list)
    sold_count: Any = None
    debug_source: Optional[str] = None

    # camelCase keys written by older scrapers
    _ALIASES = {
        "priceText": "price_text",
        "priceTiers": "price_tiers",
        "moqText": "moq_text",
        "heroImage": "hero_image",
        "soldCount": "sold_count",
        "debugSource": "debug_source",
    }

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "RawDetail":
        """Build from a stored or scraped dict, accepting snake_case or camelCase keys."""
        values: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = cls._ALIASES.get(key, key)
            if name in cls.__dataclass_fields__ and value is not None:
                values[name] = value
        return cls(**values)


@dataclass(frozen=True)
class PriceTier:
    """Quantity-break price. ``max_qty=None`` means open-ended."""

    min_qty: int
    max_qty: Optional[int]
    price_text: str
    price: Optional[Decimal] = None

    def __post_init__(self):
        if self.min_qty < 1:
            raise ValueError("min_qty must be >= 1")
        if self.max_qty is not None and self.max_qty < self.min_qty:
            raise ValueError("max_qty must be >= min_qty")
        if not self.price_text or not self.price_text.strip():
            raise ValueError("price_text is required")

    def to_dict(self) -> Dict[str, Any]:
        return {"min": self.min_qty, "max": self.max_qty, "price": self.price_text}


@dataclass(frozen=True)
class Attribute:
    label: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"label": self.label, "value": self.value}


@dataclass(frozen=True)
class Supplier:
    name: Optional[str] = None
    logo: Optional[str] = None


@dataclass
class DetailRecord:
    """Canonical product detail ("detail contract").

    Every optional string is either a trimmed non-empty value or None.
    Tiers are sorted ascending by ``min_qty`` and only the last one may
    be open-ended.
    """

    title: Optional[str] = None
    price_text: Optional[str] = None
    price_tiers: List[PriceTier] = field(default_factory=list)
    moq_text: Optional[str] = None
    moq: Optional[int] = None
    attributes: List[Attribute] = field(default_factory=list)
    packaging: List[str] = field(default_factory=list)
    protections: List[str] = field(default_factory=list)
    supplier: Supplier = field(default_factory=Supplier)
    hero_image: Optional[str] = None
    gallery: List[str] = field(default_factory=list)
    sold_count: Optional[int] = None

    def __post_init__(self):
        mins = [tier.min_qty for tier in self.price_tiers]
        if mins != sorted(mins):
            raise ValueError("price_tiers must be sorted by min_qty")
        open_ended = [i for i, tier in enumerate(self.price_tiers) if tier.max_qty is None]
        if len(open_ended) > 1 or (open_ended and open_ended[0] != len(self.price_tiers) - 1):
            raise ValueError("only the last price tier may be open-ended")

    @property
    def has_hero_image(self) -> bool:
        return self.hero_image is not None

    @property
    def has_supplier(self) -> bool:
        return self.supplier.name is not None

    def image_urls(self) -> List[str]:
        """Every image reference in the record, hero first, without duplicates."""
        urls: List[str] = []
        for url in [self.hero_image, *self.gallery, self.supplier.logo]:
            if url and url not in urls:
                urls.append(url)
        return urls

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "price_text": self.price_text,
            "price_tiers": [tier.to_dict() for tier in self.price_tiers],
            "moq_text": self.moq_text,
            "moq": self.moq,
            "attributes": [attr.to_dict() for attr in self.attributes],
            "packaging": list(self.packaging),
            "protections": list(self.protections),
            "supplier": {"name": self.supplier.name, "logo": self.supplier.logo},
            "hero_image": self.hero_image,
            "gallery": list(self.gallery),
            "sold_count": self.sold_count,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["DetailRecord"]:
        """Load a stored record, cleaning legacy defects through the normalizer."""
        if not data:
            return None
        from wholesale.detail.contract import normalize

        return normalize(RawDetail.from_mapping(data), None)


class QualityClass(str, Enum):
    """Completeness of a DetailRecord. Data, never an error."""

    WEAK = "weak"
    ACCEPTABLE = "acceptable"
    CORRECT = "correct"

    @property
    def rank(self) -> int:
        return _QUALITY_RANK[self]


_QUALITY_RANK = {
    QualityClass.WEAK: 0,
    QualityClass.ACCEPTABLE: 1,
    QualityClass.CORRECT: 2,
}

KNOWN_SIGNALS = ("attributes", "price_tiers", "hero_image", "supplier", "gallery", "packaging")


@dataclass(frozen=True)
class QualityThresholds:
    """Tunable classification rule.

    Attributes:
        min_attributes_for_correct: Attribute count needed for "correct"
        require_tier_for_correct: Whether "correct" also needs a price tier
        weak_signals: A record lacking every one of these signals is "weak"
    """

    min_attributes_for_correct: int = 5
    require_tier_for_correct: bool = True
    weak_signals: Tuple[str, ...] = ("attributes", "price_tiers", "hero_image", "supplier")

    def __post_init__(self):
        if self.min_attributes_for_correct < 0:
            raise ValueError("min_attributes_for_correct must be >= 0")
        if not self.weak_signals:
            raise ValueError("weak_signals must not be empty")
        unknown = set(self.weak_signals) - set(KNOWN_SIGNALS)
        if unknown:
            raise ValueError(f"Unknown weak signals: {sorted(unknown)}")

    @classmethod
    def from_settings(cls, settings) -> "QualityThresholds":
        return cls(
            min_attributes_for_correct=settings.MIN_ATTRIBUTES_FOR_CORRECT,
            require_tier_for_correct=settings.REQUIRE_TIER_FOR_CORRECT,
            weak_signals=settings.get_weak_signals(),
        )
