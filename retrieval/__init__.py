"""Relevance retrieval over crawled site maps."""

from .engine import RelevanceEngine, RelevantContent, SourceSnippet
from .keywords import STOP_WORDS, extract_keywords
from .page_source import PageContentSource
from .scoring import rank_entries, rank_resources, score_entry, score_resource
from .snippets import extract_snippet

__all__ = [
    'RelevanceEngine',
    'RelevantContent',
    'SourceSnippet',
    'STOP_WORDS',
    'extract_keywords',
    'PageContentSource',
    'rank_entries',
    'rank_resources',
    'score_entry',
    'score_resource',
    'extract_snippet',
]
