"""Crawl pipeline for SiteCrawl.

Provides fetching, HTML extraction and the breadth-first crawl frontier.
"""

from .fetcher import (
    BotChallengeError,
    FetchError,
    FetchResult,
    Fetcher,
    SimpleHTTPFetcher,
    create_fetcher,
    normalize_url,
)
from .extractor import PageData, canonical_url, extract, extract_text, origin_of, should_follow
from .frontier import CrawlFrontier, CrawlResult

__all__ = [
    # Fetcher
    'BotChallengeError',
    'FetchError',
    'FetchResult',
    'Fetcher',
    'SimpleHTTPFetcher',
    'create_fetcher',
    'normalize_url',

    # Extractor
    'PageData',
    'canonical_url',
    'extract',
    'extract_text',
    'origin_of',
    'should_follow',

    # Frontier
    'CrawlFrontier',
    'CrawlResult',
]
