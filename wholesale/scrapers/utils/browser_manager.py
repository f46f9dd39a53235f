"""Playwright browser lifecycle manager with anti-detection.

One shared Chromium process; every headless fetch gets its own
short-lived, isolated context that is closed on every exit path,
including timeouts and task cancellation. The number of open contexts
is capped by a semaphore that is independent of the generic fetch
concurrency, because each context costs far more than an HTTP request.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from wholesale.scrapers.utils.user_agents import get_random_user_agent

logger = structlog.get_logger(__name__)


class BrowserManager:
    """Manages the Playwright browser and hands out isolated contexts.

    Contexts are created with:
    - User-agent rotation per context
    - Stealth JS injection to mask automation signals
    - Resource blocking (images/fonts) for faster rendering
    """

    def __init__(
        self,
        max_contexts: int = 2,
        headless: bool = True,
        block_resources: bool = True,
        locale: str = "en-US",
    ):
        self._headless = headless
        self._block_resources = block_resources
        self._locale = locale
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(max_contexts)
        self.max_contexts = max_contexts
        self.open_contexts = 0

    async def start(self) -> None:
        """Launch the browser. Safe to call repeatedly."""
        async with self._lock:
            if self._browser:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--no-sandbox",
                ],
            )
            logger.info("browser_started", headless=self._headless, max_contexts=self.max_contexts)

    async def stop(self) -> None:
        """Close the browser and the Playwright driver."""
        async with self._lock:
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
            logger.info("browser_stopped")

    @asynccontextmanager
    async def isolated_context(self) -> AsyncIterator[BrowserContext]:
        """Open a fresh browser context, closing it on every exit path."""
        async with self._slots:
            if not self._browser:
                await self.start()

            context = await self._browser.new_context(
                user_agent=get_random_user_agent(),
                viewport={"width": 1920, "height": 1080},
                locale=self._locale,
                java_script_enabled=True,
                bypass_csp=True,
            )
            self.open_contexts += 1
            try:
                await context.add_init_script(STEALTH_JS)
                if self._block_resources:
                    await context.route(
                        "**/*.{png,jpg,jpeg,gif,webp,svg,woff,woff2,ttf,eot}",
                        lambda route: route.abort(),
                    )
                yield context
            finally:
                self.open_contexts -= 1
                try:
                    await context.close()
                except Exception as e:
                    logger.warning("browser_context_close_failed", error=str(e))

    async def render(
        self,
        url: str,
        wait_selector: Optional[str] = None,
        timeout_ms: int = 30000,
        scroll: bool = True,
    ) -> str:
        """Navigate to ``url`` in an isolated context and return the rendered HTML.

        A missing ``wait_selector`` is not an error here: the caller's
        parser decides whether the page is usable.
        """
        async with self.isolated_context() as context:
            page = await context.new_page()
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if wait_selector:
                try:
                    await page.wait_for_selector(wait_selector, timeout=min(timeout_ms, 10000))
                except PlaywrightTimeoutError as e:
                    logger.debug("wait_selector_missing", url=url, selector=wait_selector, error=str(e))
            if scroll:
                # Lazy galleries and attribute tables load on scroll
                await page.evaluate("window.scrollTo(0, document.body.scrollHeight / 2)")
                await page.wait_for_timeout(800)
            return await page.content()


# Minimal stealth JS to mask automation signals
STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = { runtime: {} };
const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) =>
  parameters.name === 'notifications'
    ? Promise.resolve({ state: Notification.permission })
    : originalQuery(parameters);
"""
