"""Runtime settings for the crawler, the job queue and retrieval."""

from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .database import DatabaseConfig


class CrawlerSettings(BaseModel):
    """Crawl frontier and fetcher settings."""
    fetcher: str = Field(default="http", description="Fetch strategy: 'http' or 'browser'")
    max_pages: int = Field(default=50, ge=1, description="Page cap per crawl")
    debug_max_pages: int = Field(default=10, ge=1, description="Page cap in debug mode")
    debug: bool = False
    flush_every: int = Field(default=5, ge=1, description="Persist entries every N pages")
    politeness_delay: Tuple[float, float] = Field(
        default=(1.0, 3.0), description="Random delay range between fetches, seconds"
    )
    request_timeout: float = Field(default=15.0, gt=0)
    max_redirects: int = 5
    max_retries: int = Field(default=3, ge=1, description="Fetch attempts per URL")
    retry_base_delay: float = 1.0
    forbidden_base_delay: float = Field(default=5.0, description="Backoff base after HTTP 403")
    challenge_wait: float = Field(default=10.0, description="Extra wait for browser challenges")
    user_agents: Optional[List[str]] = None

    @field_validator("fetcher")
    @classmethod
    def _known_fetcher(cls, value: str) -> str:
        value = value.lower()
        if value not in ("http", "browser"):
            raise ValueError(f"Unknown fetcher strategy: {value}")
        return value

    @field_validator("politeness_delay")
    @classmethod
    def _ordered_delay(cls, value: Tuple[float, float]) -> Tuple[float, float]:
        low, high = value
        if low < 0 or high < low:
            raise ValueError("politeness_delay must be (low, high) with 0 <= low <= high")
        return value

    @property
    def page_limit(self) -> int:
        return self.debug_max_pages if self.debug else self.max_pages


class RetrievalSettings(BaseModel):
    """Relevance ranking and snippet extraction constants."""
    top_k: int = 5
    context_pages: int = 3
    body_snippet_length: int = 500
    source_snippet_length: int = 200
    sample_length: int = 500
    cluster_distance: int = 300
    context_window: int = 150
    sentence_slack: int = 50
    cache_ttl_hours: int = 24
    fetch_timeout: float = 15.0


class QueueConfig(BaseModel):
    """Redis-backed job queue configuration."""
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "sitecrawl:crawl-jobs"
    visibility_timeout: int = Field(default=900, description="Seconds before an unacked message is redelivered")
    max_receives: int = Field(default=5, description="Deliveries before a message is dead-lettered")
    receive_batch_size: int = 1
    receive_wait_seconds: int = 20
    group_lease_seconds: int = 900


class LoggingSettings(BaseModel):
    level: str = "INFO"
    service_name: str = "sitecrawl"
    log_file: Optional[str] = None
    use_json: bool = False
    use_colors: bool = True


class SchedulerSettings(BaseModel):
    """Periodic refresh of stale resources."""
    enabled: bool = False
    refresh_cron: str = "0 3 * * *"
    refresh_interval_hours: int = 168


class Settings(BaseModel):
    """Top-level settings object handed to the worker and producer."""
    crawler: CrawlerSettings = Field(default_factory=CrawlerSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
