"""Shared fixtures: temporary SQLite store, in-memory Redis, scripted fetcher."""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

sys.path.append(str(Path(__file__).parent.parent))

from config.settings import CrawlerSettings, QueueConfig, Settings
from indexer.models import ResourceType, WebsiteResource
from indexer.sqlite_adapter import SQLiteAdapter
from pipelines.fetcher import Fetcher
from server.queue import RedisJobQueue


async def no_sleep(_seconds: float):
    return None


class InMemoryRedis:
    """The subset of redis.asyncio commands RedisJobQueue uses.

    Set ``fail`` to make every command raise a connection error.
    """

    def __init__(self):
        self.lists: Dict[str, List[str]] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.keys: Dict[str, str] = {}
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def lpush(self, key, *values):
        self._check()
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def rpush(self, key, *values):
        self._check()
        items = self.lists.setdefault(key, [])
        items.extend(values)
        return len(items)

    async def lmove(self, source, destination, src="LEFT", dest="RIGHT"):
        self._check()
        items = self.lists.get(source)
        if not items:
            return None
        value = items.pop() if src == "RIGHT" else items.pop(0)
        target = self.lists.setdefault(destination, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    async def lrem(self, key, count, value):
        self._check()
        items = self.lists.get(key, [])
        removed = 0
        while value in items and (count == 0 or removed < count):
            items.remove(value)
            removed += 1
        return removed

    async def llen(self, key):
        self._check()
        return len(self.lists.get(key, []))

    async def lrange(self, key, start, end):
        self._check()
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    async def zadd(self, key, mapping):
        self._check()
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    async def zrem(self, key, *members):
        self._check()
        zset = self.zsets.get(key, {})
        removed = 0
        for member in members:
            if zset.pop(member, None) is not None:
                removed += 1
        return removed

    async def zrangebyscore(self, key, min_score, max_score):
        self._check()
        low, high = float(min_score), float(max_score)
        zset = self.zsets.get(key, {})
        return [m for m, s in sorted(zset.items(), key=lambda item: item[1]) if low <= s <= high]

    async def set(self, key, value, nx=False, ex=None):
        self._check()
        if nx and key in self.keys:
            return None
        self.keys[key] = value
        return True

    async def get(self, key):
        self._check()
        return self.keys.get(key)

    async def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self.keys.pop(key, None) is not None)

    async def aclose(self):
        self.closed = True


class ScriptedFetcher(Fetcher):
    """Serves HTML from a dict; unknown URLs answer 404."""

    name = "scripted"

    def __init__(self, pages: Dict[str, str], statuses: Optional[Dict[str, int]] = None,
                 settings: Optional[CrawlerSettings] = None):
        super().__init__(settings or CrawlerSettings(), sleep=no_sleep)
        self.pages = pages
        self.statuses = statuses or {}
        self.requested: List[str] = []

    async def _attempt(self, url: str, user_agent: str) -> Tuple[int, str, str]:
        self.requested.append(url)
        if url in self.pages:
            return self.statuses.get(url, 200), self.pages[url], url
        return 404, "Not found", url

    @property
    def fetched_urls(self) -> List[str]:
        """Distinct URLs in first-request order."""
        seen: Set[str] = set()
        ordered = []
        for url in self.requested:
            if url not in seen:
                seen.add(url)
                ordered.append(url)
        return ordered


def page(title: str, links: List[str] = (), body: str = "", extra_head: str = "") -> str:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return (
        f"<html><head><title>{title}</title>{extra_head}</head>"
        f"<body><main><p>{body}</p>{anchors}</main></body></html>"
    )


@pytest.fixture
async def store(tmp_path):
    adapter = SQLiteAdapter(str(tmp_path / "sitecrawl-test.db"))
    await adapter.initialize()
    yield adapter
    await adapter.close()


@pytest.fixture
def redis_client():
    return InMemoryRedis()


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue_config():
    return QueueConfig(queue_name="test:crawl", visibility_timeout=60, max_receives=3)


@pytest.fixture
def job_queue(redis_client, queue_config, clock):
    return RedisJobQueue(redis_client, queue_config, clock=clock, poll_interval=0)


@pytest.fixture
def settings():
    return Settings(crawler=CrawlerSettings(max_pages=10, politeness_delay=(0.0, 0.0)))


@pytest.fixture
def make_resource(store):
    async def _make(campaign_id: str = "c" * 24, url: Optional[str] = "https://example.com",
                    resource_type: ResourceType = ResourceType.URL, **fields) -> WebsiteResource:
        return await store.create_resource(WebsiteResource(
            campaign_id=campaign_id, type=resource_type, url=url, **fields
        ))
    return _make
