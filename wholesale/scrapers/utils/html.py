"""BeautifulSoup helpers shared by the marketplace parsers."""

import re
from typing import Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from wholesale.scrapers.utils.normalizer import clean_text


# Lazy-loading attributes in the order marketplaces prefer them
IMAGE_ATTRIBUTES = ("data-zoom", "data-original", "data-src", "data-lazy-src", "src")


def select_text(root, selectors: Iterable[str]) -> Optional[str]:
    """Cleaned text of the first non-empty match across ``selectors``."""
    for selector in selectors:
        for node in root.select(selector):
            text = clean_text(node.get("title") or node.get_text(" ", strip=True))
            if text:
                return text
    return None


def meta_content(soup: BeautifulSoup, *keys: str) -> Optional[str]:
    """Content of the first ``<meta property|name|itemprop=key>`` present."""
    for key in keys:
        for attr in ("property", "name", "itemprop"):
            node = soup.find("meta", attrs={attr: key})
            if node and clean_text(node.get("content")):
                return clean_text(node.get("content"))
    return None


def image_source(node: Tag) -> Optional[str]:
    """Best source attribute of an ``<img>``, falling back to the widest srcset entry."""
    for attr in IMAGE_ATTRIBUTES:
        value = clean_text(node.get(attr))
        if value and not value.startswith("data:"):
            return value
    srcset = clean_text(node.get("srcset"))
    if srcset:
        candidates = [part.strip().split(" ")[0] for part in srcset.split(",") if part.strip()]
        if candidates:
            return candidates[-1]
    return None


def image_sources(root, selectors: Iterable[str]) -> List[str]:
    """Image sources of every match across ``selectors``, in document order, without duplicates."""
    sources: List[str] = []
    for selector in selectors:
        for node in root.select(selector):
            img = node if node.name == "img" else node.find("img")
            if img is None:
                continue
            src = image_source(img)
            if src and src not in sources:
                sources.append(src)
    return sources


def table_pairs(root, selectors: Iterable[str]) -> List[Tuple[str, str]]:
    """(label, value) pairs from ``<tr>`` rows and ``<dl>`` lists.

    A row contributes its first th/td as the label and the next cell as
    the value.
    """
    pairs: List[Tuple[str, str]] = []
    for selector in selectors:
        for row in root.select(selector):
            if row.name == "dl":
                label, value = row.find("dt"), row.find("dd")
            else:
                cells = row.find_all(["th", "td"], recursive=False) or row.find_all(["th", "td"])
                if len(cells) < 2:
                    continue
                label, value = cells[0], cells[1]
            if label is None or value is None:
                continue
            label_text = clean_text(label.get_text(" ", strip=True))
            value_text = clean_text(value.get_text(" ", strip=True))
            if label_text and value_text:
                pairs.append((label_text.rstrip(":").strip(), value_text))
    return pairs


def labelled_pairs(root, row_selector: str, label_selector: str, value_selector: str) -> List[Tuple[str, str]]:
    """(label, value) pairs from div-based rows such as ``.attribute-item``."""
    pairs: List[Tuple[str, str]] = []
    for row in root.select(row_selector):
        label = row.select_one(label_selector)
        value = row.select_one(value_selector)
        if label is None or value is None:
            continue
        label_text = clean_text(label.get_text(" ", strip=True))
        value_text = clean_text(value.get_text(" ", strip=True))
        if label_text and value_text:
            pairs.append((label_text.rstrip(":").strip(), value_text))
    return pairs


def find_text_matching(root, pattern: str) -> Optional[str]:
    """First text node matching the regex ``pattern`` (case-insensitive)."""
    regex = re.compile(pattern, re.IGNORECASE)
    node = root.find(string=regex)
    if node is None:
        return None
    match = regex.search(str(node))
    return clean_text(match.group(0)) if match else None


# Spec rows that describe packaging rather than the product itself
PACKAGING_LABELS = (
    "packaging",
    "package",
    "selling units",
    "single gross weight",
    "single package size",
    "packing",
    "carton",
)


def split_packaging(pairs: Iterable[Tuple[str, str]]) -> Tuple[List[Tuple[str, str]], List[Tuple[str, str]]]:
    """Partition product attribute rows into (attributes, packaging)."""
    attributes: List[Tuple[str, str]] = []
    packaging: List[Tuple[str, str]] = []
    for label, value in pairs:
        if any(marker in label.lower() for marker in PACKAGING_LABELS):
            packaging.append((label, value))
        else:
            attributes.append((label, value))
    return attributes, packaging
