"""PostgreSQL database adapter for SiteCrawl.

Production backend. Entries are stored as JSONB on the site map row so a
flush is a single-row overwrite.
"""

import json
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, Sequence

import asyncpg
from pydantic import BaseModel

from .base import SiteMapStore, StoreError
from .models import (
    MAX_CONTENT_LENGTH,
    PageCacheRecord,
    ResourceStatus,
    ResourceType,
    SiteMap,
    SiteMapEntry,
    SiteMapStatus,
    WebsiteResource,
    check_transition,
    new_object_id,
    utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS website_resources (
    id CHAR(24) PRIMARY KEY,
    campaign_id CHAR(24) NOT NULL,
    type TEXT NOT NULL DEFAULT 'url',
    url TEXT,
    title TEXT,
    content TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    error TEXT,
    pages_crawled INTEGER NOT NULL DEFAULT 0,
    sitemap_id CHAR(24),
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    last_fetched TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_resources_campaign ON website_resources(campaign_id);

CREATE TABLE IF NOT EXISTS site_maps (
    id CHAR(24) PRIMARY KEY,
    campaign_id CHAR(24) NOT NULL,
    website_resource_id CHAR(24) NOT NULL UNIQUE
        REFERENCES website_resources(id) ON DELETE CASCADE,
    base_url TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'crawling',
    pages_crawled INTEGER NOT NULL DEFAULT 0,
    entries JSONB NOT NULL DEFAULT '[]'::jsonb,
    error TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_site_maps_campaign_status ON site_maps(campaign_id, status);

CREATE TABLE IF NOT EXISTS page_cache (
    url TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    fetched_at TIMESTAMP NOT NULL,
    expires_at TIMESTAMP NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_page_cache_expires ON page_cache(expires_at);
"""


class PostgresConfig(BaseModel):
    """PostgreSQL connection configuration."""
    host: str = "localhost"
    port: int = 5432
    database: str = "sitecrawl"
    user: str = "sitecrawl"
    password: str = ""
    min_connections: int = 1
    max_connections: int = 10
    command_timeout: int = 60


def _dump_entries(entries: Sequence[SiteMapEntry]) -> str:
    return json.dumps([entry.model_dump(mode="json") for entry in entries])


class PostgresAdapter(SiteMapStore):
    """PostgreSQL database adapter backed by an asyncpg pool."""

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize connection pool and ensure schema exists."""
        try:
            self.pool = await asyncpg.create_pool(
                host=self.config.host,
                port=self.config.port,
                database=self.config.database,
                user=self.config.user,
                password=self.config.password,
                min_size=self.config.min_connections,
                max_size=self.config.max_connections,
                command_timeout=self.config.command_timeout
            )
            logger.info("PostgreSQL connection pool initialized")

            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)

        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to initialize PostgreSQL: {e}")
            raise StoreError(f"Failed to initialize PostgreSQL: {e}") from e

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed")

    async def _run(self, method: str, sql: str, *args):
        if self.pool is None:
            raise StoreError("PostgreSQL adapter not initialized. Call initialize() first.")
        try:
            async with self.pool.acquire() as conn:
                return await getattr(conn, method)(sql, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"PostgreSQL error: {e}")
            raise StoreError(str(e)) from e

    # Website resources

    @staticmethod
    def _record_to_resource(record: asyncpg.Record) -> WebsiteResource:
        return WebsiteResource(
            id=record['id'],
            campaign_id=record['campaign_id'],
            type=ResourceType(record['type']),
            url=record['url'],
            title=record['title'],
            content=record['content'],
            status=ResourceStatus(record['status']),
            error=record['error'],
            pages_crawled=record['pages_crawled'],
            sitemap_id=record['sitemap_id'],
            created_at=record['created_at'],
            updated_at=record['updated_at'],
            last_fetched=record['last_fetched'],
        )

    async def create_resource(self, resource: WebsiteResource) -> WebsiteResource:
        await self._run(
            "execute",
            """
            INSERT INTO website_resources (id, campaign_id, type, url, title, content, status,
                                           error, pages_crawled, sitemap_id, created_at,
                                           updated_at, last_fetched)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            """,
            resource.id, resource.campaign_id, resource.type.value, resource.url,
            resource.title, resource.content, resource.status.value, resource.error,
            resource.pages_crawled, resource.sitemap_id, resource.created_at,
            resource.updated_at, resource.last_fetched
        )
        return resource

    async def get_resource(self, resource_id: str) -> Optional[WebsiteResource]:
        record = await self._run(
            "fetchrow", "SELECT * FROM website_resources WHERE id = $1", resource_id
        )
        return self._record_to_resource(record) if record else None

    async def list_resources(self, campaign_id: str) -> List[WebsiteResource]:
        records = await self._run(
            "fetch",
            "SELECT * FROM website_resources WHERE campaign_id = $1 ORDER BY created_at DESC",
            campaign_id
        )
        return [self._record_to_resource(r) for r in records]

    async def update_resource_status(
        self,
        resource_id: str,
        status: ResourceStatus,
        error: Optional[str] = None,
        pages_crawled: Optional[int] = None,
        sitemap_id: Optional[str] = None,
        last_fetched: Optional[datetime] = None,
        content: Optional[str] = None,
    ) -> Optional[WebsiteResource]:
        resource = await self.get_resource(resource_id)
        if resource is None:
            return None

        stored_error = check_transition(resource.status, status, error)
        record = await self._run(
            "fetchrow",
            """
            UPDATE website_resources SET
                status = $2,
                error = $3,
                updated_at = $4,
                pages_crawled = COALESCE($5, pages_crawled),
                sitemap_id = COALESCE($6, sitemap_id),
                last_fetched = COALESCE($7, last_fetched),
                content = COALESCE($8, content)
            WHERE id = $1
            RETURNING *
            """,
            resource_id, status.value, stored_error, utcnow(), pages_crawled,
            sitemap_id, last_fetched,
            content[:MAX_CONTENT_LENGTH] if content is not None else None
        )
        return self._record_to_resource(record) if record else None

    async def delete_resource(self, resource_id: str) -> bool:
        result = await self._run(
            "execute", "DELETE FROM website_resources WHERE id = $1", resource_id
        )
        return result.endswith(" 1")

    async def search_resources(self, campaign_id: str,
                               terms: Sequence[str]) -> List[WebsiteResource]:
        if not terms:
            return []
        records = await self._run(
            "fetch",
            """
            SELECT * FROM website_resources
            WHERE campaign_id = $1 AND EXISTS (
                SELECT 1 FROM unnest($2::text[]) AS term
                WHERE strpos(lower(coalesce(content, '')), term) > 0
                   OR strpos(lower(coalesce(url, '')), term) > 0
                   OR strpos(lower(coalesce(title, '')), term) > 0
            )
            ORDER BY created_at DESC
            """,
            campaign_id, [term.lower() for term in terms]
        )
        return [self._record_to_resource(r) for r in records]

    async def list_stale_resources(self, older_than: datetime) -> List[WebsiteResource]:
        records = await self._run(
            "fetch",
            """
            SELECT * FROM website_resources
            WHERE type = 'url' AND status != 'processing'
              AND (last_fetched IS NULL OR last_fetched < $1)
            ORDER BY last_fetched NULLS FIRST
            """,
            older_than
        )
        return [self._record_to_resource(r) for r in records]

    # Site maps

    @staticmethod
    def _record_to_site_map(record: asyncpg.Record) -> SiteMap:
        raw_entries = record['entries']
        if isinstance(raw_entries, str):
            raw_entries = json.loads(raw_entries)
        return SiteMap(
            id=record['id'],
            campaign_id=record['campaign_id'],
            website_resource_id=record['website_resource_id'],
            base_url=record['base_url'],
            status=SiteMapStatus(record['status']),
            pages_crawled=record['pages_crawled'],
            entries=[SiteMapEntry(**entry) for entry in raw_entries or []],
            error=record['error'],
            created_at=record['created_at'],
            updated_at=record['updated_at'],
        )

    async def find_or_create_site_map(self, campaign_id: str, website_resource_id: str,
                                      base_url: str) -> SiteMap:
        now = utcnow()
        record = await self._run(
            "fetchrow",
            """
            INSERT INTO site_maps (id, campaign_id, website_resource_id, base_url, status,
                                   pages_crawled, entries, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, 0, '[]'::jsonb, $6, $6)
            ON CONFLICT (website_resource_id) DO UPDATE SET
                status = EXCLUDED.status,
                base_url = EXCLUDED.base_url,
                error = NULL,
                updated_at = EXCLUDED.updated_at
            RETURNING *
            """,
            new_object_id(), campaign_id, website_resource_id, base_url,
            SiteMapStatus.CRAWLING.value, now
        )
        site_map = self._record_to_site_map(record)
        logger.info(f"Using site map {site_map.id} for resource {website_resource_id}")
        return site_map

    async def flush_site_map(self, site_map_id: str, entries: Sequence[SiteMapEntry]):
        await self._run(
            "execute",
            """
            UPDATE site_maps SET entries = $2::jsonb, pages_crawled = $3, updated_at = $4
            WHERE id = $1
            """,
            site_map_id, _dump_entries(entries), len(entries), utcnow()
        )

    async def finalize_site_map(self, site_map_id: str, entries: Sequence[SiteMapEntry],
                                status: SiteMapStatus, error: Optional[str] = None):
        await self._run(
            "execute",
            """
            UPDATE site_maps SET entries = $2::jsonb, pages_crawled = $3, status = $4,
                                 error = $5, updated_at = $6
            WHERE id = $1
            """,
            site_map_id, _dump_entries(entries), len(entries), status.value, error, utcnow()
        )

    async def mark_site_map_failed(self, website_resource_id: str, error: str):
        await self._run(
            "execute",
            """
            UPDATE site_maps SET status = $2, error = $3, updated_at = $4
            WHERE website_resource_id = $1
            """,
            website_resource_id, SiteMapStatus.FAILED.value, error, utcnow()
        )

    async def get_site_map(self, site_map_id: str) -> Optional[SiteMap]:
        record = await self._run("fetchrow", "SELECT * FROM site_maps WHERE id = $1", site_map_id)
        return self._record_to_site_map(record) if record else None

    async def get_site_map_for_resource(self, website_resource_id: str) -> Optional[SiteMap]:
        record = await self._run(
            "fetchrow", "SELECT * FROM site_maps WHERE website_resource_id = $1",
            website_resource_id
        )
        return self._record_to_site_map(record) if record else None

    async def list_completed_site_maps(self, campaign_id: str) -> List[SiteMap]:
        records = await self._run(
            "fetch",
            "SELECT * FROM site_maps WHERE campaign_id = $1 AND status = $2 ORDER BY created_at",
            campaign_id, SiteMapStatus.COMPLETED.value
        )
        return [self._record_to_site_map(r) for r in records]

    async def delete_site_map_for_resource(self, website_resource_id: str) -> int:
        result = await self._run(
            "execute", "DELETE FROM site_maps WHERE website_resource_id = $1",
            website_resource_id
        )
        deleted = int(result.split()[-1])
        logger.info(f"Deleted {deleted} site maps for resource {website_resource_id}")
        return deleted

    # Page cache

    async def get_cached_page(self, url: str,
                              now: Optional[datetime] = None) -> Optional[PageCacheRecord]:
        record = await self._run(
            "fetchrow",
            "SELECT * FROM page_cache WHERE url = $1 AND expires_at > $2",
            url, now or utcnow()
        )
        if not record:
            return None
        return PageCacheRecord(
            url=record['url'],
            content=record['content'],
            fetched_at=record['fetched_at'],
            expires_at=record['expires_at'],
        )

    async def upsert_cached_page(self, record: PageCacheRecord):
        await self._run(
            "execute",
            """
            INSERT INTO page_cache (url, content, fetched_at, expires_at)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (url) DO UPDATE SET
                content = EXCLUDED.content,
                fetched_at = EXCLUDED.fetched_at,
                expires_at = EXCLUDED.expires_at
            """,
            record.url, record.content, record.fetched_at, record.expires_at
        )

    async def purge_expired_pages(self, now: Optional[datetime] = None) -> int:
        result = await self._run(
            "execute", "DELETE FROM page_cache WHERE expires_at <= $1", now or utcnow()
        )
        deleted = int(result.split()[-1])
        if deleted:
            logger.info(f"Purged {deleted} expired page cache records")
        return deleted

    async def get_database_stats(self) -> Dict[str, Any]:
        """Row counts for monitoring."""
        record = await self._run(
            "fetchrow",
            """
            SELECT
                (SELECT COUNT(*) FROM website_resources) AS resource_count,
                (SELECT COUNT(*) FROM site_maps) AS site_map_count,
                (SELECT COUNT(*) FROM page_cache) AS cached_page_count
            """
        )
        return dict(record) if record else {}
