"""Playwright page fetcher for JavaScript-heavy directory and search pages.

One stealth Chromium instance and one reusable page per run.
"""

import asyncio
import random
from typing import Optional

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright_stealth import Stealth

from lib.fetcher import BROWSER_HEADERS, FetchResult

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--window-size=1920,1080",
    "--disable-blink-features=AutomationControlled",
    "--lang=en-US,en",
]

SCROLL_SCRIPT = """
async () => {
    await new Promise(resolve => {
        let y = 0;
        const max = document.body.scrollHeight;
        const step = () => {
            y += 200 + Math.random() * 300;
            window.scrollTo(0, y);
            if (y < max) setTimeout(step, 100 + Math.random() * 200); else resolve();
        };
        step();
    });
}
"""


class BrowserFetcher:
    """Renders pages in a stealth headless browser.

    Usage:
        async with BrowserFetcher(proxy=None) as browser:
            result = await browser.fetch(url, wait_selector="a[href*='/biz/']")
    """

    def __init__(
        self,
        headless: bool = True,
        proxy: Optional[str] = None,
        timeout: float = 20.0,
        user_agent: str = BROWSER_HEADERS["User-Agent"],
    ):
        self.headless = headless
        self.proxy = proxy
        self.timeout = timeout
        self.user_agent = user_agent
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "BrowserFetcher":
        self._stealth = Stealth()
        self._playwright = await async_playwright().start()
        await self._stealth.apply_stealth_async(self._playwright)

        launch_kwargs = {"headless": self.headless, "args": LAUNCH_ARGS}
        if self.proxy:
            launch_kwargs["proxy"] = {"server": self.proxy}
            logger.info(f"Browser proxy: {self.proxy.split('@')[-1]}")
        self._browser = await self._playwright.chromium.launch(**launch_kwargs)
        self._context = await self._browser.new_context(
            user_agent=self.user_agent,
            viewport={"width": 1920, "height": 1080},
            extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
        )
        self._page = await self._context.new_page()
        logger.info("Browser launched")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        await self._playwright.stop()

    async def fetch(self, url: str, wait_selector: Optional[str] = None) -> Optional[FetchResult]:
        """Navigate, wait for content, scroll, and return the rendered HTML.

        A navigation timeout still returns whatever rendered. None only when
        the page can't be read at all.
        """
        page = self._page
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.timeout * 1000)
            if wait_selector:
                try:
                    await page.wait_for_selector(wait_selector, timeout=8000)
                except PlaywrightTimeoutError:
                    pass
            await asyncio.sleep(1 + random.random())
            await page.evaluate(SCROLL_SCRIPT)
            await asyncio.sleep(0.5)
        except PlaywrightTimeoutError:
            logger.warning(f"Nav timeout: {url[:80]}")
        except PlaywrightError as e:
            logger.warning(f"Nav failed: {url[:80]}: {e}")

        try:
            html = await page.content()
        except PlaywrightError:
            return None
        return FetchResult(html=html, final_url=page.url, content_type="text/html")
