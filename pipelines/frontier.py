"""Breadth-first crawl of one site, persisted incrementally to the site map store."""

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, List, Optional, Set

from config.settings import CrawlerSettings
from indexer.base import SiteMapStore
from indexer.models import SiteMap, SiteMapEntry, SiteMapStatus
from observability.prometheus_metrics import record_page_crawled, record_page_skipped

from .extractor import canonical_url, extract, origin_of
from .fetcher import BotChallengeError, FetchError, Fetcher, normalize_url

logger = logging.getLogger(__name__)


@dataclass
class CrawlResult:
    entries: List[SiteMapEntry]
    pages_crawled: int
    visited: Set[str] = field(default_factory=set)
    skipped: int = 0


class CrawlFrontier:
    """FIFO frontier over same-origin links, bounded by a page cap.

    Entries are flushed to the store every ``flush_every`` pages and when the
    cap is reached, so an interrupted crawl keeps most of its work. Store
    errors propagate to the caller; fetch errors only skip the page.
    """

    def __init__(self, fetcher: Fetcher, store: SiteMapStore,
                 settings: Optional[CrawlerSettings] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 rng: Optional[random.Random] = None):
        self.fetcher = fetcher
        self.store = store
        self.settings = settings or CrawlerSettings()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def _politeness_pause(self):
        low, high = self.settings.politeness_delay
        await self._sleep(self._rng.uniform(low, high))

    async def crawl(self, site_map: SiteMap, seed_url: str,
                    max_pages: Optional[int] = None) -> CrawlResult:
        max_pages = max_pages or self.settings.page_limit
        seed_url = canonical_url(normalize_url(seed_url))
        base_origin = origin_of(seed_url)

        to_visit: Deque[str] = deque([seed_url])
        queued: Set[str] = {seed_url}
        visited: Set[str] = set()
        entries: List[SiteMapEntry] = []
        skipped = 0

        logger.info(f"Crawling {seed_url} (max {max_pages} pages) into site map {site_map.id}")

        while to_visit and len(entries) < max_pages:
            url = to_visit.popleft()
            if url in visited:
                continue
            visited.add(url)

            if len(visited) > 1:
                await self._politeness_pause()

            try:
                result = await self.fetcher.fetch(url)
            except BotChallengeError as e:
                skipped += 1
                record_page_skipped("challenge")
                logger.warning(f"Skipping {url}: {e.last_error}")
                continue
            except FetchError as e:
                skipped += 1
                record_page_skipped("fetch_error")
                logger.warning(f"Skipping {url}: {e.last_error}")
                continue

            page = extract(result.html, url, base_origin)
            entries.append(SiteMapEntry(
                url=url,
                title=page.title,
                description=page.description,
                keywords=page.keywords,
                content=page.content,
            ))
            record_page_crawled()
            logger.debug(f"Crawled {url} ({len(entries)}/{max_pages})")

            for link in page.links:
                if link not in visited and link not in queued:
                    queued.add(link)
                    to_visit.append(link)

            if len(entries) % self.settings.flush_every == 0 or len(entries) >= max_pages:
                await self.store.flush_site_map(site_map.id, list(entries))

        await self.store.finalize_site_map(site_map.id, list(entries), SiteMapStatus.COMPLETED)
        logger.info(
            f"Finished crawl of {seed_url}: {len(entries)} pages, "
            f"{skipped} skipped, {len(visited)} visited"
        )
        return CrawlResult(
            entries=entries,
            pages_crawled=len(entries),
            visited=visited,
            skipped=skipped,
        )
