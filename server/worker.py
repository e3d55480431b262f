"""Crawl worker: turns queue messages into site maps.

A message is acknowledged only after a terminal outcome is durably
recorded. If even the ``failed`` write cannot be stored, the message is
left in flight and the queue redelivers it after the visibility timeout.
"""

import asyncio
import logging
import time
from typing import List, Optional

from config.settings import Settings
from indexer.base import SiteMapStore, StoreError
from indexer.models import CrawlJob, InvalidJobError, ResourceStatus, utcnow
from observability.logging import get_structured_logger
from observability.prometheus_metrics import record_crawl_job, update_queue_depth
from pipelines.extractor import origin_of
from pipelines.fetcher import Fetcher, normalize_url
from pipelines.frontier import CrawlFrontier

from .queue import QueueError, QueueMessage, RedisJobQueue

logger = logging.getLogger(__name__)
events = get_structured_logger(__name__, component="worker")

# handle_message outcomes
COMPLETED = "completed"
FAILED = "failed"
INVALID = "invalid"
MISSING = "missing"
RETRY = "retry"


class CrawlWorker:
    """Processes crawl jobs one at a time."""

    def __init__(self, store: SiteMapStore, queue: RedisJobQueue, fetcher: Fetcher,
                 settings: Optional[Settings] = None, sleep=asyncio.sleep):
        self.store = store
        self.queue = queue
        self.fetcher = fetcher
        self.settings = settings or Settings()
        self.frontier = CrawlFrontier(fetcher, store, self.settings.crawler, sleep=sleep)

    async def _acknowledge(self, message: QueueMessage):
        try:
            await self.queue.acknowledge(message)
        except QueueError as e:
            # The message will come back; reprocessing is idempotent.
            logger.error(f"Could not acknowledge message {message.id}: {e}")

    async def handle_message(self, message: QueueMessage) -> str:
        """Process one delivery and return its outcome."""
        try:
            job = CrawlJob.from_message(message.body)
        except InvalidJobError as e:
            logger.warning(f"Dropping invalid message {message.id}: {e}")
            try:
                await self.queue.dead_letter(message, str(e))
            except QueueError as queue_error:
                logger.error(f"Could not dead-letter message {message.id}: {queue_error}")
            record_crawl_job(INVALID)
            return INVALID

        log = events.bind(
            resource_id=job.website_resource_id,
            campaign_id=job.campaign_id,
            url=job.url,
            attempt=message.attempts + 1,
        )

        try:
            resource = await self.store.get_resource(job.website_resource_id)
        except StoreError as e:
            log.error("crawl_resource_unavailable", error=str(e))
            record_crawl_job(RETRY)
            return RETRY

        if resource is None:
            log.warning("crawl_resource_missing")
            await self._acknowledge(message)
            record_crawl_job(MISSING)
            return MISSING

        started = time.monotonic()
        log.info("crawl_started")
        try:
            await self.store.update_resource_status(resource.id, ResourceStatus.PROCESSING)
            seed_url = normalize_url(job.url)
            site_map = await self.store.find_or_create_site_map(
                job.campaign_id or resource.campaign_id, resource.id, origin_of(seed_url)
            )
            result = await self.frontier.crawl(site_map, seed_url)
            crawled = site_map.model_copy(update={
                "entries": result.entries,
                "pages_crawled": result.pages_crawled,
            })
            await self.store.update_resource_status(
                resource.id,
                ResourceStatus.COMPLETED,
                pages_crawled=result.pages_crawled,
                sitemap_id=site_map.id,
                last_fetched=utcnow(),
                content=crawled.summary(),
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            log.exception("crawl_failed", error=error)
            try:
                await self.store.mark_site_map_failed(resource.id, error)
                await self.store.update_resource_status(resource.id, ResourceStatus.FAILED, error=error)
            except Exception as write_error:
                log.error("crawl_failure_not_recorded", error=str(write_error))
                record_crawl_job(RETRY, time.monotonic() - started)
                return RETRY

            await self._acknowledge(message)
            record_crawl_job(FAILED, time.monotonic() - started)
            return FAILED

        await self._acknowledge(message)
        duration = time.monotonic() - started
        record_crawl_job(COMPLETED, duration, result.pages_crawled)
        log.info(
            "crawl_completed",
            pages_crawled=result.pages_crawled,
            skipped=result.skipped,
            site_map_bytes=crawled.size_bytes(),
            duration_s=round(duration, 2),
        )
        return COMPLETED

    async def process_batch(self, messages: List[QueueMessage]) -> List[str]:
        outcomes = []
        for message in messages:
            outcomes.append(await self.handle_message(message))
        return outcomes

    async def run(self, stop_event: asyncio.Event):
        """Receive and process messages until ``stop_event`` is set."""
        config = self.settings.queue
        logger.info(f"Worker listening on {self.queue.pending_key}")

        while not stop_event.is_set():
            try:
                await self.queue.requeue_expired()
                messages = await self.queue.receive(
                    max_messages=config.receive_batch_size,
                    wait_seconds=config.receive_wait_seconds,
                )
            except QueueError as e:
                logger.error(f"Queue unavailable: {e}")
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=5.0)
                except asyncio.TimeoutError:
                    pass
                continue

            if messages:
                await self.process_batch(messages)
                try:
                    update_queue_depth(await self.queue.stats())
                except QueueError as e:
                    logger.debug(f"Could not read queue depth: {e}")

        logger.info("Worker stopped")
