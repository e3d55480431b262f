"""Producer side of the crawl pipeline: resource bookkeeping and job enqueueing."""

import logging
from typing import Any, Dict, Optional, Set

from indexer.base import SiteMapStore
from indexer.models import CrawlJob, ResourceType, WebsiteResource
from observability.logging import get_structured_logger
from observability.prometheus_metrics import record_enqueue_failure
from pipelines.fetcher import normalize_url

from .queue import QueueError, RedisJobQueue

logger = logging.getLogger(__name__)
events = get_structured_logger(__name__, component="producer")


class CrawlProducer:
    """Creates website resources and asks workers to crawl them.

    Enqueueing is best-effort: a queue outage never fails the caller. The
    failure is logged as ``crawl_enqueue_failed`` and counted, and the
    resource stays ``pending`` until the next trigger or scheduled refresh.
    """

    def __init__(self, store: SiteMapStore, queue: RedisJobQueue):
        self.store = store
        self.queue = queue
        self._enqueueing: Set[str] = set()

    async def trigger_crawl(self, resource_id: str) -> Optional[str]:
        """Enqueue a crawl for an existing resource; return the message id."""
        if resource_id in self._enqueueing:
            logger.debug(f"Crawl for {resource_id} is already being enqueued")
            return None

        resource = await self.store.get_resource(resource_id)
        if resource is None:
            logger.warning(f"Cannot trigger crawl, resource {resource_id} not found")
            return None
        if resource.type != ResourceType.URL or not resource.url:
            logger.info(f"Resource {resource_id} has no URL to crawl")
            return None

        job = CrawlJob(
            website_resource_id=resource.id,
            campaign_id=resource.campaign_id,
            url=resource.url,
        )

        self._enqueueing.add(resource_id)
        try:
            message_id = await self.queue.enqueue(job)
        except QueueError as e:
            record_enqueue_failure()
            events.error(
                "crawl_enqueue_failed",
                resource_id=resource.id,
                campaign_id=resource.campaign_id,
                url=resource.url,
                error=str(e),
            )
            return None
        finally:
            self._enqueueing.discard(resource_id)

        events.info(
            "crawl_enqueued",
            resource_id=resource.id,
            campaign_id=resource.campaign_id,
            message_id=message_id,
        )
        return message_id

    async def add_resource(self, campaign_id: str, url: Optional[str] = None,
                           resource_type: ResourceType = ResourceType.URL,
                           title: Optional[str] = None,
                           content: Optional[str] = None) -> WebsiteResource:
        """Create a pending resource and kick off its crawl."""
        if resource_type == ResourceType.URL:
            if not url:
                raise ValueError("A url resource needs a URL")
            url = normalize_url(url)

        resource = await self.store.create_resource(WebsiteResource(
            campaign_id=campaign_id,
            type=resource_type,
            url=url,
            title=title,
            content=content,
        ))
        logger.info(f"Created {resource_type.value} resource {resource.id} for campaign {campaign_id}")

        if resource_type == ResourceType.URL:
            await self.trigger_crawl(resource.id)
        return resource

    async def refresh_resource(self, resource_id: str) -> Optional[str]:
        """Manual re-crawl."""
        return await self.trigger_crawl(resource_id)

    async def get_status(self, resource_id: str) -> Optional[Dict[str, Any]]:
        resource = await self.store.get_resource(resource_id)
        if resource is None:
            return None
        return resource.status_view()

    async def delete_resource(self, resource_id: str) -> bool:
        """Delete a resource and its site map."""
        await self.store.delete_site_map_for_resource(resource_id)
        deleted = await self.store.delete_resource(resource_id)
        if deleted:
            logger.info(f"Deleted resource {resource_id}")
        return deleted
