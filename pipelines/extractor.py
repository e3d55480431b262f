"""HTML to site-map entry extraction.

Nothing here raises on bad markup: malformed input yields empty fields.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from indexer.models import MAX_CONTENT_LENGTH

logger = logging.getLogger(__name__)

NOISE_TAGS = ['script', 'style', 'nav', 'footer', 'header', 'aside', 'noscript']
SKIP_EXTENSIONS = ('.pdf', '.jpg', '.jpeg', '.png', '.gif', '.css', '.js', '.svg', '.mp4', '.webp')
SKIP_SUBSTRINGS = ('#', 'mailto:', 'tel:', 'javascript:', 'data:')

_WHITESPACE_RE = re.compile(r'\s+')


@dataclass
class PageData:
    title: str
    description: str = ""
    keywords: List[str] = field(default_factory=list)
    content: str = ""
    links: List[str] = field(default_factory=list)


DEFAULT_PORTS = {'http': 80, 'https': 443}


def origin_of(url: str) -> str:
    """Scheme and host, lowercased, without the scheme's default port."""
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    host = parsed.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parsed.port
    except ValueError:
        return f"{scheme}://{parsed.netloc.lower()}"
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"
    return f"{scheme}://{host}"


def canonical_url(url: str) -> str:
    """Normalize the origin, drop the fragment and give an empty path its root slash."""
    parsed = urlparse(url)
    origin = urlparse(origin_of(url))
    return urlunparse(parsed._replace(scheme=origin.scheme, netloc=origin.netloc,
                                      path=parsed.path or "/", fragment=""))


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(' ', text).strip()


def should_follow(url: str, base_origin: str) -> bool:
    """Same-origin, not a fragment/scheme link, not a static asset."""
    if origin_of(url) != base_origin:
        return False
    lowered = url.lower()
    if any(marker in lowered for marker in SKIP_SUBSTRINGS):
        return False
    path = urlparse(lowered).path
    return not path.endswith(SKIP_EXTENSIONS)


def _parse(html: str) -> Optional[BeautifulSoup]:
    try:
        return BeautifulSoup(html or "", 'html.parser')
    except Exception as e:
        logger.warning(f"Could not parse HTML: {e}")
        return None


def _strip_noise(soup: BeautifulSoup):
    for tag in soup(NOISE_TAGS):
        tag.decompose()


def _meta_content(soup: BeautifulSoup, name: str) -> str:
    tag = soup.find('meta', attrs={'name': re.compile(f'^{name}$', re.I)})
    if tag and tag.get('content'):
        return tag['content'].strip()
    return ""


def _keywords(soup: BeautifulSoup) -> List[str]:
    meta = _meta_content(soup, 'keywords')
    if meta:
        return [k.strip() for k in meta.split(',') if k.strip()]
    headings = (collapse_whitespace(h.get_text(' ')) for h in soup.find_all(['h1', 'h2', 'h3']))
    return [h for h in headings if h]


def _links(soup: BeautifulSoup, page_url: str, base_origin: str) -> List[str]:
    links: List[str] = []
    seen = set()
    for anchor in soup.find_all('a', href=True):
        href = anchor['href'].strip()
        if not href:
            continue
        # The raw href decides fragment/scheme skips; the resolved URL decides origin.
        if any(marker in href.lower() for marker in SKIP_SUBSTRINGS):
            continue
        try:
            absolute = urljoin(page_url, href)
        except ValueError:
            continue
        absolute = canonical_url(absolute)
        if absolute in seen or not should_follow(absolute, base_origin):
            continue
        seen.add(absolute)
        links.append(absolute)
    return links


def extract(html: str, page_url: str, base_origin: str) -> PageData:
    """Pull title, description, keywords, body text and followable links."""
    soup = _parse(html)
    if soup is None:
        return PageData(title=page_url)

    title_tag = soup.find('title')
    title = collapse_whitespace(title_tag.get_text()) if title_tag else ""
    description = _meta_content(soup, 'description')
    keywords = _keywords(soup)
    links = _links(soup, page_url, base_origin)

    _strip_noise(soup)
    body = soup.body or soup
    content = collapse_whitespace(body.get_text(' '))[:MAX_CONTENT_LENGTH]

    return PageData(
        title=title or page_url,
        description=description,
        keywords=keywords,
        content=content,
        links=links,
    )


def extract_text(html: str) -> str:
    """Main-content text for the page cache: <main>, then <article>, then <body>."""
    soup = _parse(html)
    if soup is None:
        return ""
    _strip_noise(soup)
    container = soup.find('main') or soup.find('article') or soup.body or soup
    return collapse_whitespace(container.get_text(' '))[:MAX_CONTENT_LENGTH]
