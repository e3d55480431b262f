"""Periodic maintenance: re-crawl stale resources and purge the page cache."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config.settings import SchedulerSettings
from indexer.base import SiteMapStore
from indexer.models import ResourceStatus, utcnow

from .producer import CrawlProducer

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "refresh_stale_resources"
PURGE_JOB_ID = "purge_page_cache"


class RefreshScheduler:
    """APScheduler wrapper driving the periodic refresh jobs."""

    def __init__(self, store: SiteMapStore, producer: CrawlProducer,
                 settings: Optional[SchedulerSettings] = None):
        self.store = store
        self.producer = producer
        self.settings = settings or SchedulerSettings()
        self.scheduler: Optional[AsyncIOScheduler] = None

    async def refresh_stale_resources(self, now: Optional[datetime] = None) -> int:
        """Re-enqueue url resources not fetched within the refresh interval."""
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.settings.refresh_interval_hours)
        stale = await self.store.list_stale_resources(cutoff)

        triggered = 0
        for resource in stale:
            if resource.status == ResourceStatus.PROCESSING:
                continue
            if await self.producer.trigger_crawl(resource.id):
                triggered += 1

        logger.info(f"Refresh: {len(stale)} stale resources, {triggered} re-enqueued")
        return triggered

    async def purge_page_cache(self, now: Optional[datetime] = None) -> int:
        purged = await self.store.purge_expired_pages(now)
        logger.info(f"Purged {purged} expired page cache records")
        return purged

    def start(self):
        minute, hour, day, month, day_of_week = self._cron_parts(self.settings.refresh_cron)

        self.scheduler = AsyncIOScheduler(
            executors={'default': AsyncIOExecutor()},
            job_defaults={'coalesce': True, 'max_instances': 1},
        )
        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)

        self.scheduler.add_job(
            self.refresh_stale_resources,
            'cron',
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            id=REFRESH_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.purge_page_cache,
            'interval',
            hours=1,
            id=PURGE_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Refresh scheduler started with cron: {self.settings.refresh_cron}")

    def shutdown(self):
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info("Refresh scheduler stopped")

    @staticmethod
    def _cron_parts(cron_expression: str):
        parts = cron_expression.split()
        if len(parts) != 5:
            raise ValueError("Cron expression must have 5 parts: minute hour day month day_of_week")
        return parts

    def _job_executed(self, event):
        logger.debug(f"Scheduled job {event.job_id} finished")

    def _job_error(self, event):
        logger.error(f"Scheduled job {event.job_id} failed: {event.exception}")
