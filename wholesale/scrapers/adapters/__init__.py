"""Marketplace adapter implementations."""

from .alibaba import AlibabaAdapter
from .indiamart import IndiaMartAdapter
from .made_in_china import MadeInChinaAdapter

__all__ = [
    "AlibabaAdapter",
    "IndiaMartAdapter",
    "MadeInChinaAdapter",
]
