"""Data model for crawled sites.

WebsiteResource -> SiteMap -> SiteMapEntry, plus the page cache record and
the crawl job message that travels over the queue.
"""

import re
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

MAX_CONTENT_LENGTH = 10_000
PAGE_CACHE_TTL = timedelta(hours=24)

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


class SiteCrawlError(Exception):
    """Base exception for the crawler and retrieval subsystem."""


class InvalidJobError(SiteCrawlError):
    """Raised when a queue message cannot be turned into a CrawlJob."""


class InvalidStatusTransition(SiteCrawlError):
    """Raised when a resource status change is not allowed."""


def new_object_id() -> str:
    """Generate a 24-hex identifier."""
    return secrets.token_hex(12)


def is_valid_object_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_OBJECT_ID_RE.match(value))


def utcnow() -> datetime:
    """Current UTC time, naive, matching what the stores persist."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ResourceType(str, Enum):
    URL = "url"
    HTML = "html"
    SCREENSHOT = "screenshot"


class ResourceStatus(str, Enum):
    """Lifecycle of a website resource within one crawl attempt."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ResourceStatus.COMPLETED, ResourceStatus.FAILED)

    def can_transition_to(self, target: "ResourceStatus") -> bool:
        return target in _RESOURCE_TRANSITIONS[self]


# processing -> processing covers redelivery of a job whose worker died.
_RESOURCE_TRANSITIONS = {
    ResourceStatus.PENDING: {ResourceStatus.PROCESSING},
    ResourceStatus.PROCESSING: {
        ResourceStatus.PROCESSING,
        ResourceStatus.COMPLETED,
        ResourceStatus.FAILED,
    },
    ResourceStatus.COMPLETED: {ResourceStatus.PROCESSING},
    ResourceStatus.FAILED: {ResourceStatus.PROCESSING},
}


def check_transition(current: ResourceStatus, target: ResourceStatus,
                     error: Optional[str] = None) -> Optional[str]:
    """Validate a status change and return the error string to store.

    A failed resource always carries a reason; every other state clears it.
    """
    if not current.can_transition_to(target):
        raise InvalidStatusTransition(
            f"Cannot move resource from {current.value} to {target.value}"
        )
    if target == ResourceStatus.FAILED:
        return error or "Unknown error"
    return None


class SiteMapStatus(str, Enum):
    CRAWLING = "crawling"
    COMPLETED = "completed"
    FAILED = "failed"


class SiteMapEntry(BaseModel):
    """One crawled page."""
    url: str
    title: str = ""
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    content: str = ""
    last_crawled: datetime = Field(default_factory=utcnow)

    @field_validator("content")
    @classmethod
    def _cap_content(cls, value: str) -> str:
        return value[:MAX_CONTENT_LENGTH]


class SiteMap(BaseModel):
    """Crawl output aggregate, one per website resource."""
    id: str = Field(default_factory=new_object_id)
    campaign_id: str
    website_resource_id: str
    base_url: str
    status: SiteMapStatus = SiteMapStatus.CRAWLING
    pages_crawled: int = 0
    entries: List[SiteMapEntry] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def size_bytes(self) -> int:
        """Approximate serialized size, used for crawl summaries."""
        return len(self.model_dump_json().encode("utf-8"))

    def summary(self) -> str:
        """Per-page url, title, description and keywords, capped for resource content."""
        blocks = []
        for entry in self.entries:
            lines = [f"URL: {entry.url}"]
            if entry.title:
                lines.append(f"Title: {entry.title}")
            if entry.description:
                lines.append(f"Description: {entry.description}")
            if entry.keywords:
                lines.append(f"Keywords: {', '.join(entry.keywords)}")
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks)[:MAX_CONTENT_LENGTH]


class WebsiteResource(BaseModel):
    """A URL (or uploaded page) attached to a campaign."""
    id: str = Field(default_factory=new_object_id)
    campaign_id: str
    type: ResourceType = ResourceType.URL
    url: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    status: ResourceStatus = ResourceStatus.PENDING
    error: Optional[str] = None
    pages_crawled: int = 0
    sitemap_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_fetched: Optional[datetime] = None

    def status_view(self) -> Dict[str, Any]:
        """Shape returned to status pollers."""
        view: Dict[str, Any] = {
            "status": self.status.value,
            "pagesCrawled": self.pages_crawled,
        }
        if self.error:
            view["error"] = self.error
        if self.last_fetched:
            view["lastFetched"] = self.last_fetched.isoformat()
        return view


class PageCacheRecord(BaseModel):
    url: str
    content: str
    fetched_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(default_factory=lambda: utcnow() + PAGE_CACHE_TTL)

    @classmethod
    def fresh(cls, url: str, content: str, now: Optional[datetime] = None) -> "PageCacheRecord":
        now = now or utcnow()
        return cls(url=url, content=content, fetched_at=now, expires_at=now + PAGE_CACHE_TTL)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class ScoredCandidate(BaseModel):
    """Retrieval-time pairing of an entry with its relevance score."""
    entry: SiteMapEntry
    score: int = 0


class CrawlJob(BaseModel):
    """Queue message asking a worker to crawl one resource."""
    website_resource_id: str
    campaign_id: str
    url: str
    timestamp: datetime = Field(default_factory=utcnow)

    def to_message(self) -> Dict[str, str]:
        return {
            "websiteResourceId": self.website_resource_id,
            "campaignId": self.campaign_id,
            "url": self.url,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_message(cls, body: Dict[str, Any]) -> "CrawlJob":
        if not isinstance(body, dict):
            raise InvalidJobError("Message body must be a JSON object")

        resource_id = body.get("websiteResourceId")
        url = body.get("url")
        if not resource_id or not url:
            raise InvalidJobError("Missing websiteResourceId or url")
        if not is_valid_object_id(resource_id):
            raise InvalidJobError(f"Invalid websiteResourceId: {resource_id}")

        data = {
            "website_resource_id": resource_id,
            "campaign_id": body.get("campaignId") or "",
            "url": url,
        }
        if body.get("timestamp"):
            data["timestamp"] = body["timestamp"]
        try:
            return cls(**data)
        except ValidationError as e:
            raise InvalidJobError(str(e)) from e
