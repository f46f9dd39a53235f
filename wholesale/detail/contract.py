"""Detail contract: raw scrape output -> canonical DetailRecord.

Everything here is pure. ``normalize`` is idempotent: feeding a record's
``to_dict()`` back through it yields the same record.
"""

from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from wholesale.detail.models import (
    Attribute,
    DetailRecord,
    ListingStub,
    PriceTier,
    QualityClass,
    QualityThresholds,
    RawDetail,
    Supplier,
)
from wholesale.scrapers.utils.normalizer import (
    PriceNormalizer,
    clean_text,
    is_likely_bad_image_url,
    normalize_image_url,
    resolve_title,
    upgrade_thumbnail_url,
)

DEFAULT_THRESHOLDS = QualityThresholds()


def normalize(
    raw: Optional[RawDetail],
    stub: Optional[ListingStub] = None,
    thresholds: Optional[QualityThresholds] = None,
) -> DetailRecord:
    """Map raw adapter output to a DetailRecord.

    Merge precedence for every field: non-empty raw value, then the
    listing stub's fallback, then absent.

    Args:
        raw: Adapter output (may be None or entirely empty)
        stub: Search-phase listing used for fallbacks
        thresholds: Accepted for signature symmetry with ``classify``;
            normalization itself does not depend on it
    """
    raw = raw or RawDetail()
    base_url = stub.source_url if stub else None

    supplier = _parse_supplier(raw.supplier, base_url)
    price_tiers = _parse_tiers(raw.price_tiers)
    moq_text = clean_text(raw.moq_text)

    moq = PriceNormalizer.parse_moq(moq_text)
    if moq is None and price_tiers:
        moq = price_tiers[0].min_qty

    gallery = _parse_gallery(raw.gallery, base_url)
    hero = _pick_hero(raw.hero_image, gallery, stub, base_url)

    return DetailRecord(
        title=resolve_title(
            raw.title,
            stub.title if stub else None,
            url=base_url,
            supplier=supplier.name,
        ),
        price_text=_price_text(raw.price_text, stub),
        price_tiers=price_tiers,
        moq_text=moq_text,
        moq=moq,
        attributes=_parse_attributes(raw.attributes),
        packaging=_parse_text_list(raw.packaging),
        protections=_parse_text_list(raw.protections),
        supplier=supplier,
        hero_image=hero,
        gallery=gallery,
        sold_count=_sold_count(raw.sold_count, stub),
    )


def classify(record: Optional[DetailRecord], thresholds: Optional[QualityThresholds] = None) -> QualityClass:
    """Classify a record's completeness.

    weak: every configured weak signal is absent.
    correct: enough attributes, plus a price tier when required.
    acceptable: anything in between.
    """
    thresholds = thresholds or DEFAULT_THRESHOLDS
    if record is None:
        return QualityClass.WEAK

    signals = _signals(record)
    if not any(signals[name] for name in thresholds.weak_signals):
        return QualityClass.WEAK

    enough_attributes = len(record.attributes) >= thresholds.min_attributes_for_correct
    has_tier = bool(record.price_tiers) or not thresholds.require_tier_for_correct
    if enough_attributes and has_tier:
        return QualityClass.CORRECT
    return QualityClass.ACCEPTABLE


def is_weak(record: Optional[DetailRecord], thresholds: Optional[QualityThresholds] = None) -> bool:
    return classify(record, thresholds) == QualityClass.WEAK


def should_replace(
    new: Optional[DetailRecord],
    old: Optional[DetailRecord],
    thresholds: Optional[QualityThresholds] = None,
) -> bool:
    """True if ``new`` may overwrite ``old``.

    A fresh record always wins over no record. Otherwise ``new`` must not
    be worse on any axis and must be strictly better on at least one.
    """
    if new is None:
        return False
    if old is None:
        return True

    new_axes = _quality_axes(new, thresholds)
    old_axes = _quality_axes(old, thresholds)
    if any(n < o for n, o in zip(new_axes, old_axes)):
        return False
    return any(n > o for n, o in zip(new_axes, old_axes))


def _signals(record: DetailRecord) -> Dict[str, bool]:
    return {
        "attributes": bool(record.attributes),
        "price_tiers": bool(record.price_tiers),
        "hero_image": record.has_hero_image,
        "supplier": record.has_supplier,
        "gallery": bool(record.gallery),
        "packaging": bool(record.packaging),
    }


def _quality_axes(record: DetailRecord, thresholds: Optional[QualityThresholds]) -> Tuple[int, ...]:
    return (
        len(record.attributes),
        len(record.price_tiers),
        int(record.has_hero_image),
        int(record.has_supplier),
        classify(record, thresholds).rank,
    )


def _price_text(raw_price: Any, stub: Optional[ListingStub]) -> Optional[str]:
    text = clean_text(raw_price)
    if text:
        return text
    if not stub:
        return None
    text = clean_text(stub.price_raw)
    if text:
        return text
    return PriceNormalizer.format_range(stub.price_min, stub.price_max, stub.currency)


def _sold_count(raw_value: Any, stub: Optional[ListingStub]) -> Optional[int]:
    if isinstance(raw_value, bool):
        raw_value = None
    if isinstance(raw_value, int):
        return raw_value if raw_value >= 0 else None
    if isinstance(raw_value, str):
        parsed = PriceNormalizer.parse_orders(raw_value)
        if parsed is not None:
            return parsed
        digits = raw_value.replace(",", "").strip()
        if digits.isdigit():
            return int(digits)
    if stub:
        return PriceNormalizer.parse_orders(stub.orders_raw)
    return None


def _pair(item: Any, label_keys: Iterable[str]) -> Tuple[Optional[str], Optional[str]]:
    """Extract (label, value) from a mapping, a 2-sequence or an Attribute."""
    if isinstance(item, Attribute):
        return clean_text(item.label), clean_text(item.value)
    if isinstance(item, dict):
        label = next((item[k] for k in label_keys if item.get(k) is not None), None)
        return clean_text(label), clean_text(item.get("value"))
    if isinstance(item, (list, tuple)) and len(item) == 2:
        return clean_text(item[0]), clean_text(item[1])
    if isinstance(item, str) and ":" in item:
        label, _, value = item.partition(":")
        return clean_text(label), clean_text(value)
    return None, None


def _parse_attributes(items: Iterable[Any]) -> List[Attribute]:
    merged: Dict[str, Attribute] = {}
    for item in items or []:
        label, value = _pair(item, ("label", "name", "key"))
        if not label or not value:
            continue
        key = label.casefold()
        # Last occurrence wins, and takes the last position
        merged.pop(key, None)
        merged[key] = Attribute(label=label, value=value)
    return list(merged.values())


def _parse_text_list(items: Iterable[Any]) -> List[str]:
    result: List[str] = []
    for item in items or []:
        if isinstance(item, str):
            text = clean_text(item)
        else:
            label, value = _pair(item, ("label", "name", "key"))
            text = f"{label}: {value}" if label and value else (label or value)
        if text and text not in result:
            result.append(text)
    return result


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(Decimal(str(value).replace(",", "").strip()))
    except (InvalidOperation, ValueError):
        return None


def _parse_tier(item: Any) -> Optional[PriceTier]:
    if isinstance(item, PriceTier):
        return item

    min_qty: Optional[int] = None
    max_qty: Optional[int] = None
    price_value: Any = None

    if isinstance(item, dict):
        price_value = item.get("price_text", item.get("priceText", item.get("price")))
        min_raw = next((item[k] for k in ("min_qty", "minQty", "min") if item.get(k) is not None), None)
        if min_raw is not None:
            min_qty = _to_int(min_raw)
            max_qty = _to_int(next((item[k] for k in ("max_qty", "maxQty", "max") if item.get(k) is not None), None))
        else:
            parsed = PriceNormalizer.parse_quantity_range(item.get("range") or item.get("quantity"))
            if parsed:
                min_qty, max_qty = parsed
    elif isinstance(item, (list, tuple)) and len(item) == 2:
        parsed = PriceNormalizer.parse_quantity_range(item[0])
        if parsed:
            min_qty, max_qty = parsed
        price_value = item[1]
    else:
        return None

    if isinstance(price_value, (int, float, Decimal)) and not isinstance(price_value, bool):
        price_text = PriceNormalizer.format_range(price_value, None)
    else:
        price_text = clean_text(price_value)

    if min_qty is None or min_qty < 1 or not price_text:
        return None
    if max_qty is not None and max_qty < min_qty:
        return None
    return PriceTier(
        min_qty=min_qty,
        max_qty=max_qty,
        price_text=price_text,
        price=PriceNormalizer.clean_price_string(price_text),
    )


def _parse_tiers(items: Iterable[Any]) -> List[PriceTier]:
    by_min: Dict[int, PriceTier] = {}
    for item in items or []:
        tier = _parse_tier(item)
        if tier:
            by_min[tier.min_qty] = tier

    ordered = sorted(by_min.values(), key=lambda t: t.min_qty)
    tiers: List[PriceTier] = []
    for i, tier in enumerate(ordered):
        if i < len(ordered) - 1:
            next_min = ordered[i + 1].min_qty
            if tier.max_qty is None or tier.max_qty >= next_min:
                tier = replace(tier, max_qty=next_min - 1)
        tiers.append(tier)
    return tiers


def _parse_supplier(value: Any, base_url: Optional[str]) -> Supplier:
    if isinstance(value, Supplier):
        return Supplier(name=clean_text(value.name), logo=normalize_image_url(value.logo, base_url))
    if isinstance(value, dict):
        return Supplier(
            name=clean_text(value.get("name")),
            logo=normalize_image_url(value.get("logo"), base_url),
        )
    if isinstance(value, str):
        return Supplier(name=clean_text(value))
    return Supplier()


def _usable_image(value: Any, base_url: Optional[str]) -> Optional[str]:
    url = upgrade_thumbnail_url(normalize_image_url(value, base_url))
    if url and not is_likely_bad_image_url(url):
        return url
    return None


def _parse_gallery(items: Iterable[Any], base_url: Optional[str]) -> List[str]:
    gallery: List[str] = []
    for item in items or []:
        url = _usable_image(item, base_url)
        if url and url not in gallery:
            gallery.append(url)
    return gallery


def _pick_hero(
    raw_hero: Any,
    gallery: List[str],
    stub: Optional[ListingStub],
    base_url: Optional[str],
) -> Optional[str]:
    hero = _usable_image(raw_hero, base_url)
    if hero:
        return hero
    if gallery:
        # Prefer the full-size rendition when the CDN exposes one
        large = [url for url in gallery if "960x960" in url or "800x800" in url]
        return (large or gallery)[0]
    if stub:
        return _usable_image(stub.image, base_url)
    return None
