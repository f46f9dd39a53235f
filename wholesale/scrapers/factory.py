"""Factory for creating and managing marketplace adapter instances."""

from typing import Dict, List, Optional, Type

import httpx
import structlog

from wholesale.core.exceptions import ConfigurationError
from wholesale.scrapers.base import BaseAdapter
from wholesale.scrapers.strategy import FetchStrategySelector
from wholesale.scrapers.utils.browser_manager import BrowserManager
from wholesale.scrapers.utils.rate_limiter import RateLimiterRegistry

logger = structlog.get_logger(__name__)


class AdapterFactory:
    """Registry of adapter classes plus dependency injection.

    Adapters are looked up by platform identifier; there is no
    conditional dispatch on platform anywhere else. Shared services
    (rate limiter, HTTP client, browser manager) are injected into every
    adapter the factory creates.
    """

    def __init__(
        self,
        rate_limiter: Optional[RateLimiterRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        browser_manager: Optional[BrowserManager] = None,
        settings=None,
    ):
        """Initialize the adapter factory.

        Args:
            rate_limiter: Shared token buckets (a default registry if None)
            http_client: Shared HTTP client for static fetches
            browser_manager: Shared headless browser, or None to disable escalation
            settings: Settings object supplying required adapter settings and fetch tuning
        """
        self.rate_limiter = rate_limiter or RateLimiterRegistry()
        self.http_client = http_client
        self.browser_manager = browser_manager
        self.settings = settings

        self._adapter_registry: Dict[str, Type[BaseAdapter]] = {}
        self._instances: Dict[str, BaseAdapter] = {}

    def register_adapter(self, platform: str, adapter_class: Type[BaseAdapter]) -> None:
        """Register an adapter class for a platform.

        Args:
            platform: Platform identifier (e.g., "alibaba")
            adapter_class: Adapter class (must inherit from BaseAdapter)
        """
        if not isinstance(adapter_class, type) or not issubclass(adapter_class, BaseAdapter):
            raise ValueError(f"Adapter class must inherit from BaseAdapter: {adapter_class}")

        self._adapter_registry[platform] = adapter_class
        self._instances.pop(platform, None)
        logger.info("adapter_registered", platform=platform, adapter_class=adapter_class.__name__)

    def create_adapter(self, platform: str) -> Optional[BaseAdapter]:
        """Create and configure a new adapter instance.

        Returns:
            Configured adapter instance, or None if not registered

        Raises:
            ConfigurationError: If a setting the adapter requires is empty
        """
        adapter_class = self._adapter_registry.get(platform)
        if not adapter_class:
            logger.warning("adapter_not_found", platform=platform)
            return None

        adapter = adapter_class()
        adapter.config = self._required_config(adapter_class)

        # Inject dependencies
        adapter.rate_limiter = self.rate_limiter
        adapter.http_client = self.http_client
        adapter.browser_manager = self.browser_manager

        if self.settings is not None:
            adapter.headless_default = self.settings.HEADLESS_DEFAULT and self.browser_manager is not None
            adapter.fetch_timeout = self.settings.FETCH_TIMEOUT_SECONDS
            adapter.search_page_cap = self.settings.SEARCH_PAGE_CAP
            adapter.memo_ttl = self.settings.DETAIL_MEMO_TTL_SECONDS
            adapter.strategy_selector = FetchStrategySelector(backoff=self.settings.get_transient_backoff())
        elif self.browser_manager is None:
            adapter.headless_default = False

        logger.info("adapter_created", platform=platform, headless_default=adapter.headless_default)
        return adapter

    def get_adapter(self, platform: str) -> Optional[BaseAdapter]:
        """Get the shared adapter instance for a platform, creating it on first use."""
        adapter = self._instances.get(platform)
        if adapter is None:
            adapter = self.create_adapter(platform)
            if adapter is not None:
                self._instances[platform] = adapter
        return adapter

    def validate(self, platforms: List[str]) -> None:
        """Check that every enabled platform is registered and fully configured.

        Raises:
            ConfigurationError: On the first unknown platform or missing setting
        """
        for platform in platforms:
            adapter_class = self._adapter_registry.get(platform)
            if adapter_class is None:
                raise ConfigurationError("ENABLED_PLATFORMS", f"names unknown platform '{platform}'")
            self._required_config(adapter_class)

    def _required_config(self, adapter_class: Type[BaseAdapter]) -> Dict[str, str]:
        config: Dict[str, str] = {}
        for name in adapter_class.required_settings:
            value = getattr(self.settings, name, None) if self.settings is not None else None
            if not value:
                raise ConfigurationError(name, f"is required by the {adapter_class.platform} adapter")
            config[name] = value
        return config

    def get_registered_platforms(self) -> List[str]:
        """Get list of registered platform identifiers."""
        return list(self._adapter_registry.keys())

    def has_adapter(self, platform: str) -> bool:
        """Check if an adapter is registered for a platform."""
        return platform in self._adapter_registry
