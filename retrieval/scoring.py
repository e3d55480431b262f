"""Keyword relevance scoring for site-map entries and website resources.

Weights:
  +15  URL path segment that appears in the raw query
  +20  keyword equal to a path segment (+10 if only contained in one)
  +15  keyword as a whole word in title/description/url/keywords (+5 substring)
  +12  keyword in the title, +8 in the description, +6 in a page keyword

Resources (the fallback search) use the path bonuses, +15 per keyword in
the title and +2 per keyword occurrence in the content.
"""

import re
from typing import Iterable, List, Sequence
from urllib.parse import urlparse

from indexer.models import ScoredCandidate, SiteMapEntry, WebsiteResource


def path_segments(url: str) -> List[str]:
    try:
        path = urlparse(url or "").path.lower()
    except ValueError:
        return []
    return [segment for segment in path.split("/") if segment]


def _path_score(url: str, keywords: Sequence[str], query: str) -> int:
    query = (query or "").lower()
    score = 0
    for segment in path_segments(url):
        if segment in query:
            score += 15
        for keyword in keywords:
            if segment == keyword:
                score += 20
            elif keyword in segment:
                score += 10
    return score


def _word_match(keyword: str, text: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", text) is not None


def score_entry(entry: SiteMapEntry, keywords: Sequence[str], query: str) -> int:
    score = _path_score(entry.url, keywords, query)

    title = (entry.title or "").lower()
    description = (entry.description or "").lower()
    entry_keywords = [k.lower() for k in entry.keywords]
    text = " ".join([title, description, entry.url.lower(), " ".join(entry_keywords)])

    for keyword in keywords:
        if _word_match(keyword, text):
            score += 15
        elif keyword in text:
            score += 5

        if keyword in title:
            score += 12
        if keyword in description:
            score += 8
        if any(keyword in k for k in entry_keywords):
            score += 6

    return score


def rank_entries(entries: Iterable[SiteMapEntry], keywords: Sequence[str], query: str,
                 top_k: int = 5) -> List[ScoredCandidate]:
    """Non-zero scores, best first, ties in input order."""
    scored = [ScoredCandidate(entry=entry, score=score_entry(entry, keywords, query))
              for entry in entries]
    scored = [candidate for candidate in scored if candidate.score > 0]
    scored.sort(key=lambda candidate: candidate.score, reverse=True)
    return scored[:top_k]


def score_resource(resource: WebsiteResource, keywords: Sequence[str], query: str) -> int:
    score = _path_score(resource.url or "", keywords, query)

    title = (resource.title or "").lower()
    content = (resource.content or "").lower()
    for keyword in keywords:
        if keyword in title:
            score += 15
        score += content.count(keyword) * 2
    return score


def rank_resources(resources: Iterable[WebsiteResource], keywords: Sequence[str],
                   query: str) -> List[WebsiteResource]:
    scored = [(score_resource(resource, keywords, query), resource) for resource in resources]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [resource for _, resource in scored]
