"""Register all marketplace adapters with a factory.

Called once by the composition root during startup.
"""

import structlog

from wholesale.scrapers.adapters import AlibabaAdapter, IndiaMartAdapter, MadeInChinaAdapter
from wholesale.scrapers.factory import AdapterFactory

logger = structlog.get_logger(__name__)

ADAPTERS = [
    ("alibaba", AlibabaAdapter),
    ("made_in_china", MadeInChinaAdapter),
    ("indiamart", IndiaMartAdapter),
]


def register_all_adapters(factory: AdapterFactory) -> None:
    """Register every available adapter with ``factory``."""
    for platform, adapter_class in ADAPTERS:
        factory.register_adapter(platform, adapter_class)

    logger.info(
        "all_adapters_registered",
        count=len(factory.get_registered_platforms()),
        platforms=factory.get_registered_platforms(),
    )
