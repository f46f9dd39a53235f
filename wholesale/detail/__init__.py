"""Canonical detail records and their normalization."""

from wholesale.detail.contract import classify, is_weak, normalize, should_replace
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

__all__ = [
    "Attribute",
    "DetailRecord",
    "ListingStub",
    "PriceTier",
    "QualityClass",
    "QualityThresholds",
    "RawDetail",
    "Supplier",
    "classify",
    "is_weak",
    "normalize",
    "should_replace",
]
