"""Page text for retrieval: page cache, then stored entry content, then a live fetch."""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from config.settings import RetrievalSettings
from indexer.base import SiteMapStore
from indexer.models import PageCacheRecord, utcnow
from observability.logging import log_slow_call
from observability.prometheus_metrics import record_cache_lookup
from pipelines.extractor import extract_text
from pipelines.fetcher import FetchError, Fetcher

logger = logging.getLogger(__name__)


class PageContentSource:
    """Resolves the text of a page without refetching when avoidable.

    A live fetch (only possible when a fetcher is supplied) populates the
    page cache with an expiry of ``cache_ttl_hours``.
    """

    def __init__(self, store: SiteMapStore, fetcher: Optional[Fetcher] = None,
                 settings: Optional[RetrievalSettings] = None):
        self.store = store
        self.fetcher = fetcher
        self.settings = settings or RetrievalSettings()

    @log_slow_call(threshold_ms=2000.0)
    async def get(self, url: str, stored_content: Optional[str] = None) -> Optional[str]:
        cached = await self.store.get_cached_page(url)
        if cached is not None:
            record_cache_lookup("hit")
            return cached.content

        if stored_content:
            record_cache_lookup("stored")
            return stored_content

        if self.fetcher is None:
            record_cache_lookup("miss")
            return None

        record_cache_lookup("fetch")
        try:
            result = await asyncio.wait_for(self.fetcher.fetch(url), self.settings.fetch_timeout)
        except FetchError as e:
            logger.warning(f"Could not refresh {url}: {e.last_error}")
            return None
        except asyncio.TimeoutError:
            logger.warning(f"Refreshing {url} took longer than {self.settings.fetch_timeout}s")
            return None

        text = extract_text(result.html)
        now = utcnow()
        await self.store.upsert_cached_page(PageCacheRecord(
            url=url,
            content=text,
            fetched_at=now,
            expires_at=now + timedelta(hours=self.settings.cache_ttl_hours),
        ))
        logger.debug(f"Cached {len(text)} characters for {url}")
        return text
