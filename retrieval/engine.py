"""Relevance retrieval over a campaign's crawled site maps.

Ranking order of preference:
  1. site-map entries scored against the query keywords
  2. website resources whose content/url/title match a keyword
  3. the first characters of every resource, unranked

Errors never escape ``get_relevant_content``; callers get ``None`` and
answer without site context.
"""

import logging
import time
from typing import List, Optional

from pydantic import BaseModel

from config.settings import RetrievalSettings
from indexer.base import SiteMapStore
from indexer.models import ScoredCandidate, SiteMapEntry, WebsiteResource
from observability.prometheus_metrics import record_retrieval

from .keywords import extract_keywords
from .page_source import PageContentSource
from .scoring import rank_entries, rank_resources
from .snippets import extract_snippet

logger = logging.getLogger(__name__)

UNKNOWN_URL = "Unknown URL"


class SourceSnippet(BaseModel):
    url: str
    snippet: str


class RelevantContent(BaseModel):
    content: str
    sources: Optional[List[SourceSnippet]] = None


class RelevanceEngine:
    """Builds bounded, cited context for a free-text query."""

    def __init__(self, store: SiteMapStore, page_source: Optional[PageContentSource] = None,
                 settings: Optional[RetrievalSettings] = None):
        self.store = store
        self.settings = settings or RetrievalSettings()
        self.page_source = page_source or PageContentSource(store, settings=self.settings)

    async def rank_site_map_entries(self, campaign_id: str, query: str,
                                    keywords: List[str]) -> List[ScoredCandidate]:
        site_maps = await self.store.list_completed_site_maps(campaign_id)
        entries: List[SiteMapEntry] = [entry for site_map in site_maps for entry in site_map.entries]
        if not entries:
            return []
        ranked = rank_entries(entries, keywords, query, self.settings.top_k)
        for candidate in ranked:
            logger.debug(f"Score for {candidate.entry.url}: {candidate.score}")
        return ranked

    async def search_resources(self, campaign_id: str, query: str,
                               keywords: List[str]) -> List[WebsiteResource]:
        if not keywords:
            return []
        matches = await self.store.search_resources(campaign_id, keywords)
        return rank_resources(matches, keywords, query)

    def _block(self, content: str, keywords: List[str], title: Optional[str],
               url: Optional[str]) -> str:
        snippet = extract_snippet(content, keywords, self.settings.body_snippet_length, self.settings)
        header = f"Page: {title}\n" if title else ""
        return f"{header}URL: {url or UNKNOWN_URL}\n{snippet}\n\n"

    def _source(self, content: str, keywords: List[str], url: Optional[str]) -> SourceSnippet:
        snippet = extract_snippet(content, keywords, self.settings.source_snippet_length, self.settings)
        return SourceSnippet(url=url or UNKNOWN_URL, snippet=snippet)

    async def _from_entries(self, ranked: List[ScoredCandidate], keywords: List[str],
                            include_source_info: bool) -> RelevantContent:
        blocks = []
        sources = []
        for candidate in ranked[:self.settings.context_pages]:
            entry = candidate.entry
            content = await self.page_source.get(entry.url, entry.content)
            if not content:
                logger.info(f"No content retrieved for {entry.url}")
                continue
            blocks.append(self._block(content, keywords, entry.title or entry.url, entry.url))
            if include_source_info:
                sources.append(self._source(content, keywords, entry.url))
        return RelevantContent(content="".join(blocks),
                               sources=sources if include_source_info else None)

    def _from_resources(self, resources: List[WebsiteResource], keywords: List[str],
                        include_source_info: bool) -> RelevantContent:
        blocks = []
        sources = []
        for resource in resources[:self.settings.context_pages]:
            if not resource.content:
                continue
            blocks.append(self._block(resource.content, keywords, resource.title, resource.url))
            if include_source_info:
                sources.append(self._source(resource.content, keywords, resource.url))
        return RelevantContent(content="".join(blocks),
                               sources=sources if include_source_info else None)

    def _sample(self, resources: List[WebsiteResource], include_source_info: bool) -> RelevantContent:
        blocks = []
        sources = []
        for resource in resources:
            if not resource.content:
                continue
            sample = resource.content[:self.settings.sample_length]
            blocks.append(f"URL: {resource.url or UNKNOWN_URL}\n{sample}\n\n")
            if include_source_info:
                sources.append(SourceSnippet(
                    url=resource.url or UNKNOWN_URL,
                    snippet=sample[:self.settings.source_snippet_length],
                ))
        return RelevantContent(content="".join(blocks),
                               sources=sources if include_source_info else None)

    async def get_relevant_content(self, campaign_id: str, query: str,
                                   include_source_info: bool = False) -> Optional[RelevantContent]:
        started = time.perf_counter()
        try:
            resources = await self.store.list_resources(campaign_id)
            if not resources:
                logger.info(f"No website resources for campaign {campaign_id}")
                record_retrieval("no_resources", time.perf_counter() - started)
                return None

            keywords = extract_keywords(query)

            ranked = await self.rank_site_map_entries(campaign_id, query, keywords)
            if ranked:
                logger.info(f"Found {len(ranked)} relevant site map entries for campaign {campaign_id}")
                result = await self._from_entries(ranked, keywords, include_source_info)
                outcome = "site_map"
            else:
                matches = await self.search_resources(campaign_id, query, keywords)
                if matches:
                    logger.info(f"Falling back to {len(matches)} matching resources")
                    result = self._from_resources(matches, keywords, include_source_info)
                    outcome = "resource_search"
                else:
                    logger.info("No relevant content found, returning resource samples")
                    result = self._sample(resources, include_source_info)
                    outcome = "sample"
        except Exception as e:
            logger.error(f"Error getting relevant content for campaign {campaign_id}: {e}", exc_info=True)
            record_retrieval("error", time.perf_counter() - started)
            return None

        record_retrieval(outcome, time.perf_counter() - started)
        return result
