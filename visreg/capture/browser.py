"""Shared Chromium instance with per-run isolated contexts."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from visreg.models.config import ViewportConfig

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--font-render-hinting=none",
]


async def create_context(
    browser: Browser,
    viewport: ViewportConfig,
    user_agent: Optional[str] = None,
) -> BrowserContext:
    """Create a context with fixed locale and timezone so renders are repeatable."""
    return await browser.new_context(
        viewport={"width": viewport.width, "height": viewport.height},
        user_agent=user_agent or DEFAULT_USER_AGENT,
        locale="en-US",
        timezone_id="America/New_York",
        device_scale_factor=1,
        extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
    )


class BrowserManager:
    """Owns one lazily-launched browser; hands out isolated pages.

    Use ``async with manager.page(viewport) as page``; the page's context is
    always closed on exit, including when navigation fails.
    """

    def __init__(
        self,
        headless: bool = True,
        timeout_ms: int = 30000,
        user_agent: Optional[str] = None,
    ):
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()
        self._active = 0

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    @property
    def active_pages(self) -> int:
        return self._active

    async def start(self) -> Browser:
        async with self._lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless, args=LAUNCH_ARGS,
                )
                logger.info("Browser launched (headless=%s)", self.headless)
            return self._browser

    async def close(self) -> None:
        async with self._lock:
            if self._active:
                logger.warning("Closing browser with %d page(s) still checked out", self._active)
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
                logger.info("Browser closed")
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    async def restart(self) -> Browser:
        await self.close()
        return await self.start()

    @asynccontextmanager
    async def page(self, viewport: ViewportConfig) -> AsyncIterator[Page]:
        browser = await self.start()
        self._active += 1
        context: Optional[BrowserContext] = None
        try:
            context = await create_context(browser, viewport, self.user_agent)
            context.set_default_timeout(self.timeout_ms)
            page = await context.new_page()
            yield page
        finally:
            self._active -= 1
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    logger.debug("Context close failed: %s", e)

    async def __aenter__(self) -> "BrowserManager":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
