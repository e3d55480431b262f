"""Tests for the headless browser fetcher, driven by a fake browser."""

from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from config.settings import CrawlerSettings
from indexer.base import SiteMapStore
from indexer.models import SiteMap
from pipelines.browser_fetcher import PlaywrightError, RenderedBrowserFetcher
from pipelines.fetcher import FetchError
from pipelines.frontier import CrawlFrontier

from conftest import no_sleep, page

BASE = "https://example.com"
ROOT = f"{BASE}/"


class FakeResponse:
    def __init__(self, status: int):
        self.status = status


class FakePage:
    """Serves scripted HTML; a URL mapped to None crashes ``content()``."""

    def __init__(self, browser: "FakeBrowser"):
        self.browser = browser
        self.url = ""

    async def goto(self, url, timeout=None, wait_until=None):
        self.url = url
        self.browser.visited.append(url)
        return FakeResponse(200)

    async def content(self):
        served = self.browser.pages.get(self.url)
        if isinstance(served, list):
            return served.pop(0) if len(served) > 1 else served[0]
        if served is None:
            raise PlaywrightError("Execution context was destroyed")
        return served

    async def wait_for_timeout(self, timeout_ms):
        self.browser.waits.append(timeout_ms)


class FakeContext:
    def __init__(self, browser: "FakeBrowser"):
        self.browser = browser

    async def new_page(self):
        return FakePage(self.browser)

    async def close(self):
        self.browser.closed_contexts += 1


class FakeBrowser:
    def __init__(self, pages: Dict[str, object], fail_context: bool = False):
        self.pages = pages
        self.fail_context = fail_context
        self.visited: List[str] = []
        self.waits: List[float] = []
        self.contexts = 0
        self.closed_contexts = 0

    async def new_context(self, user_agent: Optional[str] = None, extra_http_headers=None):
        self.contexts += 1
        if self.fail_context:
            raise PlaywrightError("Target page, context or browser has been closed")
        return FakeContext(self)

    async def close(self):
        return None


def browser_fetcher(browser: FakeBrowser, **overrides) -> RenderedBrowserFetcher:
    fetcher = RenderedBrowserFetcher(CrawlerSettings(**overrides), sleep=no_sleep)
    fetcher._browser = browser
    return fetcher


class TestRenderedBrowserFetcher:
    """Browser errors count as failed attempts instead of escaping."""

    @pytest.mark.asyncio
    async def test_rendered_page_is_returned(self):
        browser = FakeBrowser({ROOT: page("Home")})

        result = await browser_fetcher(browser).fetch(ROOT)

        assert "<title>Home</title>" in result.html
        assert result.final_url == ROOT
        assert browser.closed_contexts == browser.contexts == 1

    @pytest.mark.asyncio
    async def test_content_error_is_retried_then_reported(self):
        browser = FakeBrowser({ROOT: None})

        with pytest.raises(FetchError) as exc_info:
            await browser_fetcher(browser, max_retries=3).fetch(ROOT)

        assert "Execution context was destroyed" in exc_info.value.last_error
        assert browser.contexts == 3
        assert browser.closed_contexts == 3

    @pytest.mark.asyncio
    async def test_context_error_is_retried_then_reported(self):
        browser = FakeBrowser({ROOT: page("Home")}, fail_context=True)

        with pytest.raises(FetchError):
            await browser_fetcher(browser, max_retries=2).fetch(ROOT)

        assert browser.contexts == 2

    @pytest.mark.asyncio
    async def test_challenge_gets_time_to_clear(self):
        challenge = page("Just a moment...")
        browser = FakeBrowser({ROOT: [challenge, page("Home")]})

        result = await browser_fetcher(browser, challenge_wait=4.0).fetch(ROOT)

        assert "<title>Home</title>" in result.html
        assert browser.waits == [4000.0]

    @pytest.mark.asyncio
    async def test_crawl_survives_a_crashing_page(self):
        browser = FakeBrowser({
            ROOT: page("Root", ["/broken", "/ok"]),
            f"{BASE}/broken": None,
            f"{BASE}/ok": page("OK"),
        })
        store = AsyncMock(spec=SiteMapStore)
        site_map = SiteMap(campaign_id="c" * 24, website_resource_id="r" * 24, base_url=BASE)
        frontier = CrawlFrontier(browser_fetcher(browser), store,
                                 CrawlerSettings(politeness_delay=(0.0, 0.0)), sleep=no_sleep)

        result = await frontier.crawl(site_map, BASE, max_pages=5)

        assert [e.title for e in result.entries] == ["Root", "OK"]
        assert result.skipped == 1
        store.finalize_site_map.assert_awaited_once()
