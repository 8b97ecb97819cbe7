"""
Playwright-backed page renderer.

The renderer owns the browser; the caller owns the renderer. Open it with
`async with PlaywrightRenderer(...) as renderer:` and hand it to the
aggregator, which only ever calls `fetch_page`.
"""
import asyncio
import logging
import random
from typing import Optional, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from .errors import RendererError

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
SCROLL_STEP_PX = 800
MAX_SCROLL_STEPS = 60

CONSENT_SELECTORS = [
    "button:has-text('Prihvatam')",
    "button:has-text('Slažem se')",
    "button:has-text('Accept all')",
    "div[role='dialog'] button:has-text('OK')",
]


class PageRenderer(Protocol):
    async def fetch_page(
        self,
        url: str,
        wait_selector: Optional[str] = None,
        scroll_to_bottom: bool = False,
    ) -> str:
        ...


class PlaywrightRenderer:
    """Renders search pages in headless Chromium and returns their HTML."""

    def __init__(
        self,
        headless: bool = True,
        navigation_timeout_ms: int = 30_000,
        wait_timeout_ms: int = 10_000,
        user_agent: str = USER_AGENT,
    ):
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self.wait_timeout_ms = wait_timeout_ms
        self.user_agent = user_agent
        self._playwright = None
        self._browser = None
        self._context = None

    async def __aenter__(self) -> "PlaywrightRenderer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        launch_args = ["--disable-blink-features=AutomationControlled"]
        if self.headless:
            launch_args += ["--disable-dev-shm-usage", "--no-sandbox", "--disable-setuid-sandbox"]

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless, args=launch_args)
        self._context = await self._browser.new_context(
            viewport={"width": 1280, "height": 900},
            user_agent=self.user_agent,
            locale="sr-RS",
        )
        self._context.set_default_timeout(self.wait_timeout_ms)
        self._context.set_default_navigation_timeout(self.navigation_timeout_ms)
        logger.info(f">>> Browser started (headless={self.headless})")

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def _dismiss_consent(self, page) -> None:
        """Close cookie/consent banners if one is showing."""
        for sel in CONSENT_SELECTORS:
            try:
                if await page.locator(sel).first.is_visible():
                    await page.locator(sel).first.click(timeout=2000)
                    return
            except PlaywrightError:
                continue

    async def _scroll_to_bottom(self, page) -> None:
        """Scroll in steps so lazily rendered ads get attached to the DOM."""
        for _ in range(MAX_SCROLL_STEPS):
            await page.evaluate(f"window.scrollBy(0, {SCROLL_STEP_PX})")
            await asyncio.sleep(random.uniform(0.15, 0.3))
            at_bottom = await page.evaluate(
                "window.scrollY + window.innerHeight >= document.body.scrollHeight"
            )
            if at_bottom:
                break

    async def fetch_page(
        self,
        url: str,
        wait_selector: Optional[str] = None,
        scroll_to_bottom: bool = False,
    ) -> str:
        if self._context is None:
            raise RuntimeError("Renderer not started. Use 'async with PlaywrightRenderer()' or call start().")

        page = await self._context.new_page()
        try:
            logger.info(f">>> Opening: {url}")
            await page.goto(url, wait_until="networkidle")
            await self._dismiss_consent(page)

            if wait_selector:
                try:
                    await page.wait_for_selector(wait_selector, timeout=self.wait_timeout_ms)
                except PlaywrightTimeout:
                    # An empty search legitimately has no ads
                    logger.warning(f"No search results found or page structure changed: {url}")

            if scroll_to_bottom:
                await self._scroll_to_bottom(page)

            return await page.content()
        except PlaywrightTimeout as e:
            raise RendererError(f"Timed out rendering page: {e}", url=url, kind="timeout") from e
        except PlaywrightError as e:
            kind = "network" if "net::" in str(e) else "navigation"
            raise RendererError(f"Failed to render page: {e}", url=url, kind=kind) from e
        finally:
            await page.close()
