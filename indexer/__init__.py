"""Storage layer for SiteCrawl: data model and database adapters."""

from .base import SiteMapStore, StoreError
from .models import (
    CrawlJob,
    InvalidJobError,
    InvalidStatusTransition,
    PageCacheRecord,
    ResourceStatus,
    ResourceType,
    ScoredCandidate,
    SiteCrawlError,
    SiteMap,
    SiteMapEntry,
    SiteMapStatus,
    WebsiteResource,
    MAX_CONTENT_LENGTH,
)
from .sqlite_adapter import SQLiteAdapter

__all__ = [
    'SiteMapStore',
    'StoreError',
    'SQLiteAdapter',
    'CrawlJob',
    'InvalidJobError',
    'InvalidStatusTransition',
    'PageCacheRecord',
    'ResourceStatus',
    'ResourceType',
    'ScoredCandidate',
    'SiteCrawlError',
    'SiteMap',
    'SiteMapEntry',
    'SiteMapStatus',
    'WebsiteResource',
    'MAX_CONTENT_LENGTH',
]
