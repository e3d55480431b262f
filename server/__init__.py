"""Queue bridge for SiteCrawl: producer, worker and periodic refresh."""

from .queue import QueueError, QueueMessage, RedisJobQueue
from .producer import CrawlProducer
from .worker import CrawlWorker
from .scheduler import RefreshScheduler

__all__ = [
    'QueueError',
    'QueueMessage',
    'RedisJobQueue',
    'CrawlProducer',
    'CrawlWorker',
    'RefreshScheduler',
]
