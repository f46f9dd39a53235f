"""Composition root: builds the shared services from Settings.

Library classes never read the global ``settings``; everything they need
is constructed here and passed in explicitly.
"""

from dataclasses import dataclass
from typing import List, Optional

import httpx
import structlog

from wholesale.config import Settings
from wholesale.detail.models import QualityThresholds
from wholesale.images.cache import BadHashRegistry, ImageCache
from wholesale.scrapers.factory import AdapterFactory
from wholesale.scrapers.register_adapters import register_all_adapters
from wholesale.scrapers.scheduler import AuditScheduler
from wholesale.scrapers.utils.browser_manager import BrowserManager
from wholesale.scrapers.utils.rate_limiter import RateLimiterRegistry
from wholesale.services.audit_service import AuditHealService
from wholesale.services.ingest_service import IngestService
from wholesale.services.refresh_service import RefreshService
from wholesale.store.sql import SqlListingStore

logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    thresholds: QualityThresholds
    rate_limiter: RateLimiterRegistry
    http_client: httpx.AsyncClient
    browser_manager: Optional[BrowserManager]
    factory: AdapterFactory
    store: SqlListingStore
    image_cache: ImageCache
    platforms: List[str]

    async def start(self) -> None:
        await self.store.create_all()
        if self.browser_manager is not None:
            await self.browser_manager.start()
        logger.info("runtime_started", platforms=self.platforms, headless=self.browser_manager is not None)

    async def close(self) -> None:
        if self.browser_manager is not None:
            await self.browser_manager.stop()
        await self.http_client.aclose()
        await self.store.dispose()
        logger.info("runtime_closed")

    def audit_service(self) -> AuditHealService:
        return AuditHealService(
            self.factory,
            self.store,
            thresholds=self.thresholds,
            concurrency=self.settings.HEAL_CONCURRENCY,
            batch_size=self.settings.HEAL_BATCH_SIZE,
            include_acceptable=self.settings.HEAL_INCLUDE_ACCEPTABLE,
            headless=self.browser_manager is not None,
            max_consecutive_blocks=self.settings.HEAL_MAX_CONSECUTIVE_BLOCKS,
            block_cooldown_seconds=self.settings.HEAL_BLOCK_COOLDOWN_SECONDS,
            image_cache=self.image_cache,
        )

    def refresh_service(self) -> RefreshService:
        return RefreshService(self.factory, self.store, thresholds=self.thresholds, image_cache=self.image_cache)

    def ingest_service(self) -> IngestService:
        return IngestService(self.factory, self.store)

    def audit_scheduler(self, max_listings: Optional[int] = None) -> AuditScheduler:
        return AuditScheduler(
            self.audit_service(),
            interval_minutes=self.settings.HEAL_INTERVAL_MINUTES,
            max_listings=max_listings,
        )


def build_runtime(settings: Settings, headless: Optional[bool] = None) -> Runtime:
    """Construct every shared service for the enabled platforms.

    Args:
        settings: Loaded settings
        headless: Override HEADLESS_DEFAULT (False skips launching a browser)

    Raises:
        ConfigurationError: If an enabled platform is unknown or lacks a required setting
    """
    platforms = settings.get_enabled_platforms()
    thresholds = QualityThresholds.from_settings(settings)

    rate_limiter = RateLimiterRegistry(
        limits=settings.get_rate_buckets(),
        default_capacity=settings.DEFAULT_BUCKET_CAPACITY,
        default_refill_rate=settings.DEFAULT_BUCKET_REFILL_RATE,
    )
    use_headless = settings.HEADLESS_DEFAULT if headless is None else headless
    browser_manager = BrowserManager(max_contexts=settings.BROWSER_CONCURRENCY) if use_headless else None

    factory = AdapterFactory(
        rate_limiter=rate_limiter,
        browser_manager=browser_manager,
        settings=settings,
    )
    register_all_adapters(factory)
    factory.validate(platforms)

    # Opened only once the configuration is known to be valid
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.FETCH_TIMEOUT_SECONDS, connect=10.0),
        follow_redirects=True,
    )
    factory.http_client = http_client

    store = SqlListingStore.from_url(settings.DATABASE_URL, thresholds=thresholds)
    image_cache = ImageCache(
        settings.IMAGE_CACHE_DIR,
        http_client,
        bad_hashes=BadHashRegistry(settings.get_bad_image_hashes()),
        max_bytes=settings.MAX_IMAGE_BYTES,
        min_bytes=settings.MIN_IMAGE_BYTES,
    )

    return Runtime(
        settings=settings,
        thresholds=thresholds,
        rate_limiter=rate_limiter,
        http_client=http_client,
        browser_manager=browser_manager,
        factory=factory,
        store=store,
        image_cache=image_cache,
        platforms=platforms,
    )
