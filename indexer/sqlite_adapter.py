"""SQLite database adapter for SiteCrawl.

Used for development, tests and single-node deployments. Implements the
same interface as the PostgreSQL adapter.
"""

import json
import sqlite3
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, Sequence
from pathlib import Path

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


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dump_entries(entries: Sequence[SiteMapEntry]) -> str:
    return json.dumps([entry.model_dump(mode="json") for entry in entries])


class SQLiteAdapter(SiteMapStore):
    """SQLite database adapter with unified interface."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    async def initialize(self):
        """Initialize SQLite connection and ensure schema exists."""
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")

            schema_path = Path(__file__).parent / "schema.sql"
            with open(schema_path, 'r', encoding='utf-8') as f:
                schema_sql = f.read()
            self.conn.executescript(schema_sql)
            self.conn.commit()

            logger.info(f"SQLite adapter initialized: {self.db_path}")

        except sqlite3.Error as e:
            logger.error(f"Failed to initialize SQLite: {e}")
            raise StoreError(f"Failed to initialize SQLite: {e}") from e

    async def close(self):
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("SQLite connection closed")

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        if self.conn is None:
            raise StoreError("SQLite adapter not initialized. Call initialize() first.")
        try:
            cursor = self.conn.execute(sql, params)
            self.conn.commit()
            return cursor
        except sqlite3.Error as e:
            self.conn.rollback()
            logger.error(f"SQLite error: {e}")
            raise StoreError(str(e)) from e

    # Website resources

    def _row_to_resource(self, row: sqlite3.Row) -> WebsiteResource:
        return WebsiteResource(
            id=row['id'],
            campaign_id=row['campaign_id'],
            type=ResourceType(row['type']),
            url=row['url'],
            title=row['title'],
            content=row['content'],
            status=ResourceStatus(row['status']),
            error=row['error'],
            pages_crawled=row['pages_crawled'],
            sitemap_id=row['sitemap_id'],
            created_at=_parse_ts(row['created_at']),
            updated_at=_parse_ts(row['updated_at']),
            last_fetched=_parse_ts(row['last_fetched']),
        )

    async def create_resource(self, resource: WebsiteResource) -> WebsiteResource:
        self._execute(
            """
            INSERT INTO website_resources (id, campaign_id, type, url, title, content, status,
                                           error, pages_crawled, sitemap_id, created_at,
                                           updated_at, last_fetched)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (resource.id, resource.campaign_id, resource.type.value, resource.url,
             resource.title, resource.content, resource.status.value, resource.error,
             resource.pages_crawled, resource.sitemap_id, _ts(resource.created_at),
             _ts(resource.updated_at), _ts(resource.last_fetched))
        )
        return resource

    async def get_resource(self, resource_id: str) -> Optional[WebsiteResource]:
        row = self._execute(
            "SELECT * FROM website_resources WHERE id = ?", (resource_id,)
        ).fetchone()
        return self._row_to_resource(row) if row else None

    async def list_resources(self, campaign_id: str) -> List[WebsiteResource]:
        rows = self._execute(
            "SELECT * FROM website_resources WHERE campaign_id = ? ORDER BY created_at DESC",
            (campaign_id,)
        ).fetchall()
        return [self._row_to_resource(row) for row in rows]

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
        assignments: Dict[str, Any] = {
            'status': status.value,
            'error': stored_error,
            'updated_at': _ts(utcnow()),
        }
        if pages_crawled is not None:
            assignments['pages_crawled'] = pages_crawled
        if sitemap_id is not None:
            assignments['sitemap_id'] = sitemap_id
        if last_fetched is not None:
            assignments['last_fetched'] = _ts(last_fetched)
        if content is not None:
            assignments['content'] = content[:MAX_CONTENT_LENGTH]

        set_clause = ", ".join(f"{column} = ?" for column in assignments)
        self._execute(
            f"UPDATE website_resources SET {set_clause} WHERE id = ?",
            (*assignments.values(), resource_id)
        )
        return await self.get_resource(resource_id)

    async def delete_resource(self, resource_id: str) -> bool:
        cursor = self._execute("DELETE FROM website_resources WHERE id = ?", (resource_id,))
        return cursor.rowcount == 1

    async def search_resources(self, campaign_id: str,
                               terms: Sequence[str]) -> List[WebsiteResource]:
        """Resources whose content, url or title contains any of the terms."""
        if not terms:
            return []

        conditions = []
        params: List[Any] = [campaign_id]
        for term in terms:
            conditions.append(
                "(instr(lower(coalesce(content, '')), ?) > 0"
                " OR instr(lower(coalesce(url, '')), ?) > 0"
                " OR instr(lower(coalesce(title, '')), ?) > 0)"
            )
            params.extend([term.lower()] * 3)

        rows = self._execute(
            f"""
            SELECT * FROM website_resources
            WHERE campaign_id = ? AND ({' OR '.join(conditions)})
            ORDER BY created_at DESC
            """,
            params
        ).fetchall()
        return [self._row_to_resource(row) for row in rows]

    async def list_stale_resources(self, older_than: datetime) -> List[WebsiteResource]:
        rows = self._execute(
            """
            SELECT * FROM website_resources
            WHERE type = 'url' AND status != 'processing'
              AND (last_fetched IS NULL OR last_fetched < ?)
            ORDER BY last_fetched
            """,
            (_ts(older_than),)
        ).fetchall()
        return [self._row_to_resource(row) for row in rows]

    # Site maps

    def _row_to_site_map(self, row: sqlite3.Row) -> SiteMap:
        entries = [SiteMapEntry(**entry) for entry in json.loads(row['entries'] or '[]')]
        return SiteMap(
            id=row['id'],
            campaign_id=row['campaign_id'],
            website_resource_id=row['website_resource_id'],
            base_url=row['base_url'],
            status=SiteMapStatus(row['status']),
            pages_crawled=row['pages_crawled'],
            entries=entries,
            error=row['error'],
            created_at=_parse_ts(row['created_at']),
            updated_at=_parse_ts(row['updated_at']),
        )

    async def find_or_create_site_map(self, campaign_id: str, website_resource_id: str,
                                      base_url: str) -> SiteMap:
        existing = await self.get_site_map_for_resource(website_resource_id)
        now = _ts(utcnow())

        if existing:
            logger.info(f"Reusing site map {existing.id} for resource {website_resource_id}")
            self._execute(
                "UPDATE site_maps SET status = ?, base_url = ?, error = NULL, updated_at = ? WHERE id = ?",
                (SiteMapStatus.CRAWLING.value, base_url, now, existing.id)
            )
            return await self.get_site_map(existing.id)

        site_map_id = new_object_id()
        self._execute(
            """
            INSERT INTO site_maps (id, campaign_id, website_resource_id, base_url, status,
                                   pages_crawled, entries, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, 0, '[]', ?, ?)
            """,
            (site_map_id, campaign_id, website_resource_id, base_url,
             SiteMapStatus.CRAWLING.value, now, now)
        )
        logger.info(f"Created site map {site_map_id} for resource {website_resource_id}")
        return await self.get_site_map(site_map_id)

    async def flush_site_map(self, site_map_id: str, entries: Sequence[SiteMapEntry]):
        self._execute(
            "UPDATE site_maps SET entries = ?, pages_crawled = ?, updated_at = ? WHERE id = ?",
            (_dump_entries(entries), len(entries), _ts(utcnow()), site_map_id)
        )

    async def finalize_site_map(self, site_map_id: str, entries: Sequence[SiteMapEntry],
                                status: SiteMapStatus, error: Optional[str] = None):
        self._execute(
            """
            UPDATE site_maps
            SET entries = ?, pages_crawled = ?, status = ?, error = ?, updated_at = ?
            WHERE id = ?
            """,
            (_dump_entries(entries), len(entries), status.value, error,
             _ts(utcnow()), site_map_id)
        )

    async def mark_site_map_failed(self, website_resource_id: str, error: str):
        self._execute(
            "UPDATE site_maps SET status = ?, error = ?, updated_at = ? WHERE website_resource_id = ?",
            (SiteMapStatus.FAILED.value, error, _ts(utcnow()), website_resource_id)
        )

    async def get_site_map(self, site_map_id: str) -> Optional[SiteMap]:
        row = self._execute("SELECT * FROM site_maps WHERE id = ?", (site_map_id,)).fetchone()
        return self._row_to_site_map(row) if row else None

    async def get_site_map_for_resource(self, website_resource_id: str) -> Optional[SiteMap]:
        row = self._execute(
            "SELECT * FROM site_maps WHERE website_resource_id = ?", (website_resource_id,)
        ).fetchone()
        return self._row_to_site_map(row) if row else None

    async def list_completed_site_maps(self, campaign_id: str) -> List[SiteMap]:
        rows = self._execute(
            "SELECT * FROM site_maps WHERE campaign_id = ? AND status = ? ORDER BY created_at",
            (campaign_id, SiteMapStatus.COMPLETED.value)
        ).fetchall()
        return [self._row_to_site_map(row) for row in rows]

    async def delete_site_map_for_resource(self, website_resource_id: str) -> int:
        cursor = self._execute(
            "DELETE FROM site_maps WHERE website_resource_id = ?", (website_resource_id,)
        )
        logger.info(f"Deleted {cursor.rowcount} site maps for resource {website_resource_id}")
        return cursor.rowcount

    # Page cache

    async def get_cached_page(self, url: str,
                              now: Optional[datetime] = None) -> Optional[PageCacheRecord]:
        row = self._execute(
            "SELECT * FROM page_cache WHERE url = ? AND expires_at > ?",
            (url, _ts(now or utcnow()))
        ).fetchone()
        if not row:
            return None
        return PageCacheRecord(
            url=row['url'],
            content=row['content'],
            fetched_at=_parse_ts(row['fetched_at']),
            expires_at=_parse_ts(row['expires_at']),
        )

    async def upsert_cached_page(self, record: PageCacheRecord):
        self._execute(
            """
            INSERT INTO page_cache (url, content, fetched_at, expires_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(url) DO UPDATE SET
                content = excluded.content,
                fetched_at = excluded.fetched_at,
                expires_at = excluded.expires_at
            """,
            (record.url, record.content, _ts(record.fetched_at), _ts(record.expires_at))
        )

    async def purge_expired_pages(self, now: Optional[datetime] = None) -> int:
        cursor = self._execute(
            "DELETE FROM page_cache WHERE expires_at <= ?", (_ts(now or utcnow()),)
        )
        if cursor.rowcount:
            logger.info(f"Purged {cursor.rowcount} expired page cache records")
        return cursor.rowcount

    async def get_database_stats(self) -> Dict[str, Any]:
        """Row counts for monitoring."""
        stats = {}
        for key, table in (('resource_count', 'website_resources'),
                           ('site_map_count', 'site_maps'),
                           ('cached_page_count', 'page_cache')):
            stats[key] = self._execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return stats
