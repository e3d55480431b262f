"""Headless Chromium fetcher for sites that only serve content to real browsers.

Requires the ``browser`` extra (playwright) and ``playwright install chromium``.
"""

import asyncio
import logging
from typing import Optional, Tuple

from playwright.async_api import Browser, Error as PlaywrightError, Playwright, async_playwright

from config.settings import CrawlerSettings

from .fetcher import Fetcher, Sleep, browser_headers, looks_like_challenge

logger = logging.getLogger(__name__)


class RenderedBrowserFetcher(Fetcher):
    """Render pages in one long-lived browser, a fresh context per attempt."""

    name = "browser"
    # Navigation, context and page errors all surface as PlaywrightError.
    retryable_errors = Fetcher.retryable_errors + (PlaywrightError,)

    def __init__(self, settings: Optional[CrawlerSettings] = None, sleep: Sleep = asyncio.sleep):
        super().__init__(settings, sleep)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def start(self):
        if self._browser is None:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=True)
            logger.info("Started headless Chromium")

    async def close(self):
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def _attempt(self, url: str, user_agent: str) -> Tuple[int, str, str]:
        if self._browser is None:
            await self.start()

        headers = browser_headers(user_agent)
        headers.pop('User-Agent')
        context = await self._browser.new_context(user_agent=user_agent, extra_http_headers=headers)
        try:
            page = await context.new_page()
            timeout_ms = self.settings.request_timeout * 1000
            response = await page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")

            html = await page.content()
            if looks_like_challenge(html):
                # Give a JS challenge a bounded chance to clear in place.
                await page.wait_for_timeout(self.settings.challenge_wait * 1000)
                html = await page.content()

            status = response.status if response else 200
            return status, html, page.url
        finally:
            await context.close()
