"""Query-focused snippet extraction."""

from typing import List, Optional, Sequence, Tuple

from config.settings import RetrievalSettings

ELLIPSIS = "..."


def _keyword_positions(content: str, keywords: Sequence[str]) -> List[Tuple[int, str]]:
    lowered = content.lower()
    positions = []
    for keyword in keywords:
        keyword = keyword.lower()
        if not keyword:
            continue
        pos = lowered.find(keyword)
        while pos != -1:
            positions.append((pos, keyword))
            pos = lowered.find(keyword, pos + 1)
    positions.sort(key=lambda item: item[0])
    return positions


def _densest_cluster(positions: List[Tuple[int, str]], distance: int) -> List[Tuple[int, str]]:
    """Group sorted positions closer than ``distance``; the first largest group wins."""
    clusters = [[positions[0]]]
    for previous, current in zip(positions, positions[1:]):
        if current[0] - previous[0] < distance:
            clusters[-1].append(current)
        else:
            clusters.append([current])
    return max(clusters, key=len)


def _cap(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    if max_length <= len(ELLIPSIS):
        return text[:max_length]
    return text[:max_length - len(ELLIPSIS)] + ELLIPSIS


def extract_snippet(content: Optional[str], keywords: Sequence[str], max_length: int,
                    settings: Optional[RetrievalSettings] = None) -> str:
    """Window of ``content`` around its densest run of keyword matches.

    Falls back to the start of the content when nothing matches. The
    result is never longer than ``max_length``.
    """
    if not content:
        return ""
    settings = settings or RetrievalSettings()

    positions = _keyword_positions(content, keywords)
    if not positions:
        return content[:max_length]

    cluster = _densest_cluster(positions, settings.cluster_distance)
    cluster_start = cluster[0][0]
    cluster_end = cluster[-1][0] + len(cluster[-1][1])

    start = max(0, cluster_start - settings.context_window)
    end = min(len(content), cluster_end + settings.context_window)
    snippet = content[start:end]

    slack = settings.sentence_slack
    if start > 0:
        first_period = snippet.find(". ")
        if first_period != -1 and first_period < slack:
            snippet = snippet[first_period + 2:]

    last_period = snippet.rfind(". ")
    if last_period != -1 and last_period > len(snippet) - slack:
        snippet = snippet[:last_period + 1]

    return _cap(snippet, max_length)
