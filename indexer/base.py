"""Storage interface shared by the SQLite and PostgreSQL adapters."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .models import (
    PageCacheRecord,
    ResourceStatus,
    SiteCrawlError,
    SiteMap,
    SiteMapEntry,
    SiteMapStatus,
    WebsiteResource,
)


class StoreError(SiteCrawlError):
    """Raised when the backing database cannot complete an operation."""


class SiteMapStore(ABC):
    """Persistence for website resources, their site maps and the page cache.

    Writes are last-writer-wins. Exactly one worker owns a resource at a
    time (the queue enforces that), so no locking happens here.
    """

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @abstractmethod
    async def initialize(self): ...

    @abstractmethod
    async def close(self): ...

    # Website resources

    @abstractmethod
    async def create_resource(self, resource: WebsiteResource) -> WebsiteResource: ...

    @abstractmethod
    async def get_resource(self, resource_id: str) -> Optional[WebsiteResource]: ...

    @abstractmethod
    async def list_resources(self, campaign_id: str) -> List[WebsiteResource]: ...

    @abstractmethod
    async def update_resource_status(
        self,
        resource_id: str,
        status: ResourceStatus,
        error: Optional[str] = None,
        pages_crawled: Optional[int] = None,
        sitemap_id: Optional[str] = None,
        last_fetched: Optional[datetime] = None,
        content: Optional[str] = None,
    ) -> Optional[WebsiteResource]: ...

    @abstractmethod
    async def delete_resource(self, resource_id: str) -> bool: ...

    @abstractmethod
    async def search_resources(self, campaign_id: str,
                               terms: Sequence[str]) -> List[WebsiteResource]: ...

    @abstractmethod
    async def list_stale_resources(self, older_than: datetime) -> List[WebsiteResource]: ...

    # Site maps

    @abstractmethod
    async def find_or_create_site_map(self, campaign_id: str, website_resource_id: str,
                                      base_url: str) -> SiteMap: ...

    @abstractmethod
    async def flush_site_map(self, site_map_id: str, entries: Sequence[SiteMapEntry]): ...

    @abstractmethod
    async def finalize_site_map(self, site_map_id: str, entries: Sequence[SiteMapEntry],
                                status: SiteMapStatus, error: Optional[str] = None): ...

    @abstractmethod
    async def mark_site_map_failed(self, website_resource_id: str, error: str): ...

    @abstractmethod
    async def get_site_map(self, site_map_id: str) -> Optional[SiteMap]: ...

    @abstractmethod
    async def get_site_map_for_resource(self, website_resource_id: str) -> Optional[SiteMap]: ...

    @abstractmethod
    async def list_completed_site_maps(self, campaign_id: str) -> List[SiteMap]: ...

    @abstractmethod
    async def delete_site_map_for_resource(self, website_resource_id: str) -> int: ...

    # Page cache

    @abstractmethod
    async def get_cached_page(self, url: str,
                              now: Optional[datetime] = None) -> Optional[PageCacheRecord]: ...

    @abstractmethod
    async def upsert_cached_page(self, record: PageCacheRecord): ...

    @abstractmethod
    async def purge_expired_pages(self, now: Optional[datetime] = None) -> int: ...
