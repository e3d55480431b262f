"""Query keyword and phrase extraction."""

import re
from typing import List

STOP_WORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "is", "are", "was", "were", "be",
    "been", "being", "in", "on", "at", "to", "for", "with", "about",
    "against", "between", "into", "through", "during", "before", "after",
    "above", "below", "from", "up", "down", "of", "off", "over", "under",
    "again", "further", "then", "once", "here", "there", "when", "where",
    "why", "how", "all", "any", "both", "each", "few", "more", "most",
    "other", "some", "such", "no", "nor", "not", "only", "own", "same", "so",
    "than", "too", "very", "s", "t", "can", "will", "just", "don", "should",
    "now", "who", "what", "which", "whom",
})

_PUNCTUATION_RE = re.compile(r"[^\w\s-]")


def tokenize(query: str) -> List[str]:
    """Lowercase, drop punctuation except hyphens, split on whitespace."""
    return _PUNCTUATION_RE.sub("", (query or "").lower()).split()


def extract_keywords(query: str) -> List[str]:
    """Significant words of the query followed by its 2- and 3-word phrases.

    Phrases come from the full token sequence so names like "bank of
    america" survive; a phrase is dropped only when every word in it is a
    stop word. Duplicates are not removed.
    """
    words = tokenize(query)
    keywords = [w for w in words if len(w) > 1 and w not in STOP_WORDS]

    phrases = []
    for size in (2, 3):
        for i in range(len(words) - size + 1):
            window = words[i:i + size]
            if not all(w in STOP_WORDS for w in window):
                phrases.append(" ".join(window))

    return keywords + phrases
