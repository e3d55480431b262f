"""Observability package for SiteCrawl."""

from .logging import (
    setup_logging,
    get_logger,
    get_structured_logger,
    StructuredLogger,
    log_slow_call,
)
from .prometheus_metrics import (
    record_fetch_attempt,
    record_page_crawled,
    record_page_skipped,
    record_crawl_job,
    record_enqueue_failure,
    record_retrieval,
    record_cache_lookup,
    update_queue_depth,
    get_metrics_summary,
    start_metrics_server,
    sitecrawl_registry,
)

__all__ = [
    'setup_logging',
    'get_logger',
    'get_structured_logger',
    'StructuredLogger',
    'log_slow_call',
    'record_fetch_attempt',
    'record_page_crawled',
    'record_page_skipped',
    'record_crawl_job',
    'record_enqueue_failure',
    'record_retrieval',
    'record_cache_lookup',
    'update_queue_depth',
    'get_metrics_summary',
    'start_metrics_server',
    'sitecrawl_registry',
]
