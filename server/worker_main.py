"""Crawl worker process entry point.

Runs one CrawlWorker until SIGINT/SIGTERM. Usage:

    python -m server.worker_main
"""

import asyncio
import logging
import os
import signal

from config.database import create_store
from config.settings_loader import load_settings
from observability.logging import setup_logging
from observability.prometheus_metrics import start_metrics_server
from pipelines.fetcher import create_fetcher

from .producer import CrawlProducer
from .queue import RedisJobQueue
from .scheduler import RefreshScheduler
from .worker import CrawlWorker

logger = logging.getLogger(__name__)


async def main():
    settings = load_settings()
    setup_logging(
        level=settings.logging.level,
        service_name=settings.logging.service_name,
        log_file=settings.logging.log_file,
        use_json=settings.logging.use_json,
        use_colors=settings.logging.use_colors,
    )

    metrics_port = os.getenv('SITECRAWL_METRICS_PORT')
    if metrics_port:
        start_metrics_server(int(metrics_port))

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers.
            pass

    store = create_store(settings.database)
    queue = RedisJobQueue.from_config(settings.queue)
    fetcher = create_fetcher(settings.crawler)
    scheduler = None

    await store.initialize()
    try:
        async with fetcher:
            if settings.scheduler.enabled:
                scheduler = RefreshScheduler(store, CrawlProducer(store, queue), settings.scheduler)
                scheduler.start()

            worker = CrawlWorker(store, queue, fetcher, settings)
            logger.info(f"Starting crawl worker (fetcher={settings.crawler.fetcher})")
            await worker.run(stop_event)
    finally:
        if scheduler:
            scheduler.shutdown()
        await queue.close()
        await store.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
