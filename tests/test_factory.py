"""Tests for adapter registration, validation and dependency injection."""

import pytest

from wholesale.config import Settings
from wholesale.core.exceptions import ConfigurationError
from wholesale.scrapers.adapters import AlibabaAdapter, IndiaMartAdapter
from wholesale.scrapers.factory import AdapterFactory
from wholesale.scrapers.register_adapters import register_all_adapters
from wholesale.scrapers.utils.rate_limiter import RateLimiterRegistry


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


# ============================================================================
# TESTS: REGISTRATION
# ============================================================================

class TestRegistration:
    """Tests for adapter registration."""

    def test_register_all(self):
        factory = AdapterFactory()
        register_all_adapters(factory)

        assert factory.get_registered_platforms() == ["alibaba", "made_in_china", "indiamart"]
        assert factory.has_adapter("indiamart")
        assert not factory.has_adapter("ebay")

    def test_rejects_non_adapter(self):
        factory = AdapterFactory()
        with pytest.raises(ValueError, match="BaseAdapter"):
            factory.register_adapter("bogus", dict)

    def test_unknown_platform_returns_none(self):
        assert AdapterFactory().get_adapter("ebay") is None


# ============================================================================
# TESTS: VALIDATION
# ============================================================================

class TestValidation:
    """Tests for startup validation of enabled platforms."""

    def test_unknown_enabled_platform(self):
        factory = AdapterFactory(settings=make_settings())
        register_all_adapters(factory)

        with pytest.raises(ConfigurationError) as exc_info:
            factory.validate(["alibaba", "ebay"])
        assert exc_info.value.setting == "ENABLED_PLATFORMS"

    def test_missing_required_setting(self):
        factory = AdapterFactory(settings=make_settings(INDIAMART_SESSION_COOKIE=""))
        register_all_adapters(factory)

        factory.validate(["alibaba", "made_in_china"])
        with pytest.raises(ConfigurationError) as exc_info:
            factory.validate(["indiamart"])
        assert exc_info.value.setting == "INDIAMART_SESSION_COOKIE"

        with pytest.raises(ConfigurationError):
            factory.get_adapter("indiamart")

    def test_required_setting_present(self):
        factory = AdapterFactory(settings=make_settings(INDIAMART_SESSION_COOKIE="sid=abc"))
        factory.register_adapter("indiamart", IndiaMartAdapter)

        factory.validate(["indiamart"])
        adapter = factory.get_adapter("indiamart")

        assert adapter.config == {"INDIAMART_SESSION_COOKIE": "sid=abc"}


# ============================================================================
# TESTS: INJECTION
# ============================================================================

class TestInjection:
    """Tests for dependency injection into created adapters."""

    def test_shared_instance(self):
        factory = AdapterFactory()
        factory.register_adapter("alibaba", AlibabaAdapter)

        assert factory.get_adapter("alibaba") is factory.get_adapter("alibaba")
        assert factory.create_adapter("alibaba") is not factory.get_adapter("alibaba")

    def test_reregistering_drops_cached_instance(self):
        factory = AdapterFactory()
        factory.register_adapter("alibaba", AlibabaAdapter)
        first = factory.get_adapter("alibaba")

        factory.register_adapter("alibaba", AlibabaAdapter)

        assert factory.get_adapter("alibaba") is not first

    def test_dependencies_injected(self):
        limiter = RateLimiterRegistry()
        browser = object()
        settings = make_settings(
            FETCH_TIMEOUT_SECONDS=12.5,
            SEARCH_PAGE_CAP=2,
            DETAIL_MEMO_TTL_SECONDS=30,
            TRANSIENT_BACKOFF_MS="100,200,400",
        )
        factory = AdapterFactory(rate_limiter=limiter, browser_manager=browser, settings=settings)
        factory.register_adapter("alibaba", AlibabaAdapter)

        adapter = factory.get_adapter("alibaba")

        assert adapter.rate_limiter is limiter
        assert adapter.browser_manager is browser
        assert adapter.headless_default is True
        assert adapter.fetch_timeout == 12.5
        assert adapter.search_page_cap == 2
        assert adapter.memo_ttl == 30
        assert adapter.strategy_selector.backoff == (0.1, 0.2, 0.4)

    def test_headless_disabled_without_browser(self):
        factory = AdapterFactory(settings=make_settings(HEADLESS_DEFAULT=True))
        factory.register_adapter("alibaba", AlibabaAdapter)

        assert factory.get_adapter("alibaba").headless_default is False
        assert AdapterFactory().create_adapter("alibaba") is None
