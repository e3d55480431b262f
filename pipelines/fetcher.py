"""Page fetchers used by the crawl frontier.

Two strategies share one contract: a plain HTTP client (aiohttp) and a
headless browser (see browser_fetcher.py). Both retry with exponential
backoff and raise FetchError once the attempts are exhausted.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Type

import aiohttp

from config.settings import CrawlerSettings
from indexer.models import SiteCrawlError
from observability.prometheus_metrics import record_fetch_attempt

logger = logging.getLogger(__name__)

USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0',
]

# Lowercased markers of bot-protection interstitials.
CHALLENGE_MARKERS = (
    'checking your browser',
    'just a moment',
    'cf-browser-verification',
    'attention required',
)

Sleep = Callable[[float], Awaitable[None]]


class FetchError(SiteCrawlError):
    """A URL could not be fetched after all retry attempts."""

    def __init__(self, url: str, last_error: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to fetch {url}: {last_error}")
        self.url = url
        self.last_error = last_error
        self.status_code = status_code


class BotChallengeError(FetchError):
    """The site kept answering with a bot-protection interstitial."""


@dataclass
class FetchResult:
    html: str
    status_code: int
    final_url: str


def normalize_url(url: str) -> str:
    """Prefix https:// on a bare domain."""
    url = url.strip()
    if not url.startswith(('http://', 'https://')):
        url = f"https://{url}"
    return url


def looks_like_challenge(html: str) -> bool:
    # Interstitials are short pages; only inspect the head of the document.
    head = html[:5000].lower()
    return any(marker in head for marker in CHALLENGE_MARKERS)


def browser_headers(user_agent: str) -> Dict[str, str]:
    return {
        'User-Agent': user_agent,
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.9',
        'Accept-Encoding': 'gzip, deflate',
        'Cache-Control': 'no-cache',
        'Pragma': 'no-cache',
        'Referer': 'https://www.google.com/',
        'Sec-Fetch-Dest': 'document',
        'Sec-Fetch-Mode': 'navigate',
        'Sec-Fetch-Site': 'cross-site',
        'Sec-Fetch-User': '?1',
        'Upgrade-Insecure-Requests': '1',
    }


class Fetcher(ABC):
    """Fetch one URL and return its HTML.

    Subclasses implement ``_attempt``; the retry loop, backoff and
    challenge detection live here so both strategies behave the same.
    Errors listed in ``retryable_errors`` count as a failed attempt.
    """

    name = "base"
    retryable_errors: Tuple[Type[BaseException], ...] = (aiohttp.ClientError, asyncio.TimeoutError)

    def __init__(self, settings: Optional[CrawlerSettings] = None, sleep: Sleep = asyncio.sleep):
        self.settings = settings or CrawlerSettings()
        self.user_agents: List[str] = self.settings.user_agents or USER_AGENTS
        self._sleep = sleep

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Acquire long-lived resources. Optional."""

    async def close(self):
        """Release long-lived resources. Optional."""

    @abstractmethod
    async def _attempt(self, url: str, user_agent: str) -> Tuple[int, str, str]:
        """Perform one request; return (status_code, html, final_url)."""

    def backoff_delay(self, attempt: int) -> float:
        return self.settings.retry_base_delay * (2 ** attempt)

    def forbidden_delay(self, attempt: int) -> float:
        return self.settings.forbidden_base_delay * (2 ** attempt)

    async def fetch(self, url: str) -> FetchResult:
        url = normalize_url(url)
        last_error = "no attempts made"
        last_status: Optional[int] = None
        challenged = False

        for attempt in range(self.settings.max_retries):
            if attempt > 0:
                await self._sleep(self.backoff_delay(attempt))

            user_agent = self.user_agents[attempt % len(self.user_agents)]
            try:
                status, html, final_url = await self._attempt(url, user_agent)
            except self.retryable_errors as e:
                last_error = str(e) or type(e).__name__
                last_status = None
                challenged = False
                record_fetch_attempt(self.name, "error")
                logger.warning(f"Attempt {attempt + 1} for {url} failed: {last_error}")
                continue

            last_status = status
            if status == 403:
                challenged = looks_like_challenge(html)
                last_error = "HTTP 403"
                record_fetch_attempt(self.name, "forbidden")
                logger.warning(f"Attempt {attempt + 1} for {url} was forbidden")
                if attempt + 1 < self.settings.max_retries:
                    await self._sleep(self.forbidden_delay(attempt))
                continue

            if not 200 <= status < 300:
                challenged = False
                last_error = f"HTTP {status}"
                record_fetch_attempt(self.name, "http_error")
                logger.warning(f"Attempt {attempt + 1} for {url} returned {status}")
                continue

            if looks_like_challenge(html):
                challenged = True
                last_error = "bot challenge page"
                record_fetch_attempt(self.name, "challenge")
                logger.warning(f"Attempt {attempt + 1} for {url} hit a bot challenge")
                continue

            record_fetch_attempt(self.name, "success")
            return FetchResult(html=html, status_code=status, final_url=final_url or url)

        if challenged:
            raise BotChallengeError(url, last_error, last_status)
        raise FetchError(url, last_error, last_status)


class SimpleHTTPFetcher(Fetcher):
    """aiohttp client presenting browser-like headers."""

    name = "http"

    def __init__(self, settings: Optional[CrawlerSettings] = None, sleep: Sleep = asyncio.sleep):
        super().__init__(settings, sleep)
        self.session: Optional[aiohttp.ClientSession] = None

    async def start(self):
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _attempt(self, url: str, user_agent: str) -> Tuple[int, str, str]:
        if self.session is None:
            await self.start()

        async with self.session.get(
            url,
            headers=browser_headers(user_agent),
            allow_redirects=True,
            max_redirects=self.settings.max_redirects,
        ) as response:
            html = await response.text(errors='replace')
            return response.status, html, str(response.url)


def create_fetcher(settings: Optional[CrawlerSettings] = None) -> Fetcher:
    """Build the fetch strategy named by ``settings.fetcher``."""
    settings = settings or CrawlerSettings()
    if settings.fetcher == "browser":
        from .browser_fetcher import RenderedBrowserFetcher
        return RenderedBrowserFetcher(settings)
    return SimpleHTTPFetcher(settings)
