"""Prometheus metrics for the crawler workers, producer and retrieval engine."""

from prometheus_client import Counter, Histogram, Gauge, Info, start_http_server
from prometheus_client.core import CollectorRegistry
from typing import Optional, Dict, Any
import logging
import os

logger = logging.getLogger(__name__)

sitecrawl_registry = CollectorRegistry()

# Crawl metrics
pages_crawled = Counter(
    'sitecrawl_pages_crawled_total',
    'Pages fetched, extracted and added to a site map',
    registry=sitecrawl_registry
)

pages_skipped = Counter(
    'sitecrawl_pages_skipped_total',
    'Pages skipped during a crawl',
    ['reason'],
    registry=sitecrawl_registry
)

fetch_attempts = Counter(
    'sitecrawl_fetch_attempts_total',
    'HTTP fetch attempts by outcome',
    ['fetcher', 'outcome'],
    registry=sitecrawl_registry
)

crawl_jobs = Counter(
    'sitecrawl_crawl_jobs_total',
    'Crawl jobs handled by workers, by outcome',
    ['outcome'],
    registry=sitecrawl_registry
)

crawl_duration = Histogram(
    'sitecrawl_crawl_duration_seconds',
    'Wall time of one crawl job',
    buckets=[1, 5, 15, 30, 60, 120, 300, 600],
    registry=sitecrawl_registry
)

crawl_pages_per_job = Histogram(
    'sitecrawl_crawl_pages_per_job',
    'Number of pages recorded per completed crawl',
    buckets=[1, 5, 10, 25, 50, 100],
    registry=sitecrawl_registry
)

# Queue metrics
enqueue_failures = Counter(
    'sitecrawl_enqueue_failures_total',
    'Crawl jobs that could not be enqueued',
    registry=sitecrawl_registry
)

queue_depth = Gauge(
    'sitecrawl_queue_depth',
    'Messages per queue list',
    ['list'],
    registry=sitecrawl_registry
)

# Retrieval metrics
retrieval_requests = Counter(
    'sitecrawl_retrieval_requests_total',
    'Relevance queries by the path that produced the answer',
    ['outcome'],
    registry=sitecrawl_registry
)

retrieval_duration = Histogram(
    'sitecrawl_retrieval_duration_seconds',
    'Relevance query duration in seconds',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0],
    registry=sitecrawl_registry
)

page_cache_lookups = Counter(
    'sitecrawl_page_cache_lookups_total',
    'Page content lookups by source',
    ['result'],
    registry=sitecrawl_registry
)

app_info = Info(
    'sitecrawl_app_info',
    'SiteCrawl build information',
    registry=sitecrawl_registry
)


def record_fetch_attempt(fetcher: str, outcome: str) -> None:
    fetch_attempts.labels(fetcher=fetcher, outcome=outcome).inc()


def record_page_crawled() -> None:
    pages_crawled.inc()


def record_page_skipped(reason: str) -> None:
    pages_skipped.labels(reason=reason).inc()


def record_crawl_job(outcome: str, duration: Optional[float] = None,
                     page_count: Optional[int] = None) -> None:
    """Record the terminal outcome of one crawl job."""
    crawl_jobs.labels(outcome=outcome).inc()
    if duration is not None:
        crawl_duration.observe(duration)
    if outcome == "completed" and page_count is not None:
        crawl_pages_per_job.observe(page_count)


def record_enqueue_failure() -> None:
    enqueue_failures.inc()


def record_retrieval(outcome: str, duration: float) -> None:
    retrieval_requests.labels(outcome=outcome).inc()
    retrieval_duration.observe(duration)


def record_cache_lookup(result: str) -> None:
    page_cache_lookups.labels(result=result).inc()


def update_queue_depth(stats: Dict[str, int]) -> None:
    for name, depth in stats.items():
        queue_depth.labels(list=name).set(depth)


def _sample(name: str, labels: Optional[Dict[str, str]] = None) -> float:
    return sitecrawl_registry.get_sample_value(name, labels or {}) or 0.0


def get_metrics_summary() -> Dict[str, Any]:
    """Get a summary of current metrics."""
    return {
        "pages_crawled_total": _sample('sitecrawl_pages_crawled_total'),
        "crawl_jobs_completed": _sample('sitecrawl_crawl_jobs_total', {'outcome': 'completed'}),
        "crawl_jobs_failed": _sample('sitecrawl_crawl_jobs_total', {'outcome': 'failed'}),
        "enqueue_failures_total": _sample('sitecrawl_enqueue_failures_total'),
        "page_cache_hits": _sample('sitecrawl_page_cache_lookups_total', {'result': 'hit'}),
        "page_cache_misses": _sample('sitecrawl_page_cache_lookups_total', {'result': 'miss'}),
    }


def start_metrics_server(port: int) -> None:
    """Serve /metrics from a background thread in worker processes."""
    app_info.info({
        'version': os.getenv('APP_VERSION', 'unknown'),
        'environment': os.getenv('ENVIRONMENT', 'development'),
    })
    start_http_server(port, registry=sitecrawl_registry)
    logger.info(f"Prometheus metrics served on port {port}")
