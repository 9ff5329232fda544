"""Screenshot capture with dynamic-content normalization.

Capture sequence for one URL:

    block ads -> navigate -> network idle (best effort) -> freeze animations
    -> lazy-load scroll -> wait conditions -> settle delay -> stability poll
    -> mask selectors/regions -> screenshot(s)
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from typing import Optional
from urllib.parse import urlparse

import numpy as np
from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Route
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel, Field

from visreg.capture.browser import BrowserManager
from visreg.errors import CaptureError
from visreg.models.config import (
    MAX_IMAGE_BYTES,
    DynamicContentConfig,
    Region,
    Settings,
    ViewportConfig,
)
from visreg.models.test_run import CaptureMetadata

logger = logging.getLogger(__name__)

AD_HOSTS = (
    "doubleclick.net",
    "googlesyndication.com",
    "googleadservices.com",
    "google-analytics.com",
    "googletagmanager.com",
    "googletagservices.com",
    "adservice.google.com",
    "amazon-adsystem.com",
    "adnxs.com",
    "taboola.com",
    "outbrain.com",
    "criteo.com",
    "scorecardresearch.com",
    "facebook.net",
    "hotjar.com",
)

FREEZE_ANIMATIONS_CSS = """
*, *::before, *::after {
    animation-duration: 0s !important;
    animation-delay: 0s !important;
    animation-iteration-count: 1 !important;
    transition-duration: 0s !important;
    transition-delay: 0s !important;
    caret-color: transparent !important;
    scroll-behavior: auto !important;
}
"""

MASK_COLOR = "#808080"

_LAZY_SCROLL_JS = """
async (step) => {
    const delay = (ms) => new Promise(r => setTimeout(r, ms));
    const height = () => document.documentElement.scrollHeight;
    for (let y = 0; y < height(); y += step) {
        window.scrollTo(0, y);
        await delay(100);
    }
    window.scrollTo(0, height());
    await delay(200);
    window.scrollTo(0, 0);
}
"""

_RUNNING_ANIMATIONS_JS = """
() => document.getAnimations
    ? document.getAnimations().filter(a => a.playState === 'running').length
    : 0
"""

_MASK_REGIONS_JS = """
([regions, color]) => {
    for (const r of regions) {
        const el = document.createElement('div');
        el.setAttribute('data-visreg-mask', '');
        Object.assign(el.style, {
            position: 'absolute',
            left: r.x + 'px', top: r.y + 'px',
            width: r.width + 'px', height: r.height + 'px',
            background: color,
            zIndex: '2147483647',
            pointerEvents: 'none',
        });
        document.body.appendChild(el);
    }
}
"""


def ad_host_matches(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return any(host == h or host.endswith("." + h) for h in AD_HOSTS)


def mask_selectors_css(selectors: list[str]) -> str:
    rules = []
    for selector in selectors:
        rules.append(
            f"{selector} {{ background: {MASK_COLOR} !important; color: transparent !important;"
            f" background-image: none !important; }}"
        )
        rules.append(f"{selector} * {{ visibility: hidden !important; }}")
    return "\n".join(rules)


def pick_most_stable(shots: list[bytes]) -> bytes:
    """Keep the shot that differs least from the one taken before it.

    Ties prefer the later shot. A single shot is returned as is.
    """
    if len(shots) == 1:
        return shots[0]
    arrays = [np.asarray(Image.open(io.BytesIO(s)).convert("RGB"), dtype=np.int16) for s in shots]
    best_index = len(shots) - 1
    best_score = float("inf")
    for i in range(1, len(arrays)):
        if arrays[i].shape != arrays[i - 1].shape:
            continue
        score = float(np.abs(arrays[i] - arrays[i - 1]).mean())
        if score <= best_score:
            best_score = score
            best_index = i
    logger.debug("Picked screenshot %d of %d (delta=%.4f)", best_index + 1, len(shots), best_score)
    return shots[best_index]


class CaptureOptions(BaseModel):
    wait_conditions: list[str] = Field(default_factory=list)
    full_page: bool = True
    capture_dom: bool = False
    wait_time_ms: int = 0
    mask_selectors: list[str] = Field(default_factory=list)
    mask_regions: list[Region] = Field(default_factory=list)
    dynamic_content: DynamicContentConfig = Field(default_factory=DynamicContentConfig)


class CaptureResult(BaseModel):
    screenshot: bytes
    dom_snapshot: Optional[str] = None
    metadata: CaptureMetadata


class ScreenshotCapturer:
    """Renders a URL in an isolated page and returns a normalized PNG."""

    def __init__(
        self,
        browser: BrowserManager,
        navigation_timeout_ms: int = 30000,
        network_idle_timeout_ms: int = 2000,
        stability_timeout_ms: int = 5000,
        selector_timeout_ms: int = 5000,
        screenshot_count: int = 3,
        screenshot_interval_ms: int = 1000,
        max_image_bytes: int = MAX_IMAGE_BYTES,
    ):
        self.browser = browser
        self.navigation_timeout_ms = navigation_timeout_ms
        self.network_idle_timeout_ms = network_idle_timeout_ms
        self.stability_timeout_ms = stability_timeout_ms
        self.selector_timeout_ms = selector_timeout_ms
        self.screenshot_count = screenshot_count
        self.screenshot_interval_ms = screenshot_interval_ms
        self.max_image_bytes = max_image_bytes

    @classmethod
    def from_settings(cls, browser: BrowserManager, settings: Settings) -> "ScreenshotCapturer":
        return cls(
            browser,
            navigation_timeout_ms=settings.playwright_timeout_ms,
            network_idle_timeout_ms=settings.network_idle_timeout_ms,
            stability_timeout_ms=settings.stability_check_timeout_ms,
            screenshot_count=max(2, settings.multiple_screenshots_count),
            screenshot_interval_ms=settings.multiple_screenshots_interval_ms,
            max_image_bytes=settings.max_image_bytes,
        )

    async def capture(
        self,
        url: str,
        viewport: Optional[ViewportConfig] = None,
        options: Optional[CaptureOptions] = None,
    ) -> CaptureResult:
        viewport = viewport or ViewportConfig()
        options = options or CaptureOptions()
        dynamic = options.dynamic_content
        logger.info("Capturing %s at %dx%d", url, viewport.width, viewport.height)

        async with self.browser.page(viewport) as page:
            if dynamic.block_ads:
                await page.route("**/*", self._block_ads)

            await self._navigate(page, url)

            if dynamic.disable_animations:
                await page.add_style_tag(content=FREEZE_ANIMATIONS_CSS)
            if dynamic.scroll_to_trigger_lazy_load:
                await self._trigger_lazy_load(page, viewport)

            for selector in options.wait_conditions:
                try:
                    await page.wait_for_selector(selector, timeout=self.selector_timeout_ms)
                except PlaywrightTimeoutError as e:
                    raise CaptureError(f"Wait condition {selector!r} not met on {url}") from e

            if options.wait_time_ms > 0:
                await page.wait_for_timeout(options.wait_time_ms)
            if dynamic.stability_check:
                await self._wait_for_stability(page)

            await self._apply_masks(page, options.mask_selectors + dynamic.mask_selectors, options.mask_regions)

            count = self.screenshot_count if dynamic.multiple_screenshots else 1
            shots = []
            for i in range(count):
                if i:
                    await page.wait_for_timeout(self.screenshot_interval_ms)
                shots.append(await page.screenshot(full_page=options.full_page, type="png"))
            screenshot = await asyncio.to_thread(pick_most_stable, shots) if count > 1 else shots[0]

            self._validate(screenshot, url)

            dom_snapshot = await page.content() if options.capture_dom else None
            user_agent = await page.evaluate("() => navigator.userAgent")

        logger.info("Captured %s (%d bytes)", url, len(screenshot))
        return CaptureResult(
            screenshot=screenshot,
            dom_snapshot=dom_snapshot,
            metadata=CaptureMetadata(url=url, viewport=viewport, user_agent=user_agent),
        )

    @staticmethod
    async def _block_ads(route: Route) -> None:
        if ad_host_matches(route.request.url):
            await route.abort()
        else:
            await route.continue_()

    async def _navigate(self, page: Page, url: str) -> None:
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        except PlaywrightError as e:
            raise CaptureError(f"Navigation to {url} failed: {e}") from e
        try:
            await page.wait_for_load_state("networkidle", timeout=self.network_idle_timeout_ms)
        except PlaywrightTimeoutError:
            logger.warning("Network idle not reached within %dms for %s; continuing",
                           self.network_idle_timeout_ms, url)

    async def _trigger_lazy_load(self, page: Page, viewport: ViewportConfig) -> None:
        step = max(100, viewport.height // 2)
        try:
            await page.evaluate(_LAZY_SCROLL_JS, step)
        except PlaywrightError as e:
            logger.warning("Lazy-load scroll failed: %s", e)
            return
        try:
            await page.wait_for_load_state("networkidle", timeout=self.network_idle_timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug("Network still busy after lazy-load scroll")

    async def _wait_for_stability(self, page: Page) -> None:
        deadline = time.monotonic() + self.stability_timeout_ms / 1000
        running = 0
        while time.monotonic() < deadline:
            running = await page.evaluate(_RUNNING_ANIMATIONS_JS)
            if not running:
                return
            await page.wait_for_timeout(100)
        logger.warning("Page not stable after %dms (%d animations still running)",
                       self.stability_timeout_ms, running)

    @staticmethod
    async def _apply_masks(page: Page, selectors: list[str], regions: list[Region]) -> None:
        if selectors:
            await page.add_style_tag(content=mask_selectors_css(selectors))
        if regions:
            await page.evaluate(
                _MASK_REGIONS_JS,
                [[r.model_dump() for r in regions], MASK_COLOR],
            )

    def _validate(self, screenshot: bytes, url: str) -> None:
        if not screenshot:
            raise CaptureError(f"Screenshot of {url} is empty")
        if len(screenshot) > self.max_image_bytes:
            raise CaptureError(
                f"Screenshot of {url} is {len(screenshot)} bytes (limit {self.max_image_bytes})"
            )
