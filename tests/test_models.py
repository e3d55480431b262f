"""Tests for the data model: job messages, status transitions, content caps."""

from datetime import datetime, timedelta, timezone

import pytest

from indexer.models import (
    MAX_CONTENT_LENGTH,
    CrawlJob,
    InvalidJobError,
    InvalidStatusTransition,
    PageCacheRecord,
    ResourceStatus,
    SiteMap,
    SiteMapEntry,
    WebsiteResource,
    check_transition,
    is_valid_object_id,
    new_object_id,
    utcnow,
)

RESOURCE_ID = "a1b2c3d4e5f6a7b8c9d0e1f2"


class TestCrawlJob:
    """Queue message parsing and serialization."""

    def test_round_trip_uses_camel_case_keys(self):
        job = CrawlJob(website_resource_id=RESOURCE_ID, campaign_id="c" * 24, url="https://example.com")
        message = job.to_message()

        assert set(message) == {"websiteResourceId", "campaignId", "url", "timestamp"}
        parsed = CrawlJob.from_message(message)
        assert parsed.website_resource_id == RESOURCE_ID
        assert parsed.url == "https://example.com"
        assert parsed.timestamp == job.timestamp

    def test_missing_url_is_rejected(self):
        with pytest.raises(InvalidJobError, match="Missing"):
            CrawlJob.from_message({"websiteResourceId": RESOURCE_ID})

    @pytest.mark.parametrize("resource_id", ["not-an-id", "abc", "z" * 24, 12345])
    def test_invalid_resource_id_is_rejected(self, resource_id):
        with pytest.raises(InvalidJobError):
            CrawlJob.from_message({"websiteResourceId": resource_id, "url": "https://example.com"})

    def test_non_object_body_is_rejected(self):
        with pytest.raises(InvalidJobError):
            CrawlJob.from_message("not json")

    def test_bad_timestamp_is_rejected(self):
        with pytest.raises(InvalidJobError):
            CrawlJob.from_message({
                "websiteResourceId": RESOURCE_ID,
                "url": "https://example.com",
                "timestamp": "yesterday-ish",
            })


class TestResourceStatus:
    """Explicit status transition table."""

    @pytest.mark.parametrize("current,target", [
        (ResourceStatus.PENDING, ResourceStatus.PROCESSING),
        (ResourceStatus.PROCESSING, ResourceStatus.COMPLETED),
        (ResourceStatus.PROCESSING, ResourceStatus.FAILED),
        (ResourceStatus.PROCESSING, ResourceStatus.PROCESSING),
        (ResourceStatus.COMPLETED, ResourceStatus.PROCESSING),
        (ResourceStatus.FAILED, ResourceStatus.PROCESSING),
    ])
    def test_allowed_transitions(self, current, target):
        assert current.can_transition_to(target)

    @pytest.mark.parametrize("current,target", [
        (ResourceStatus.PENDING, ResourceStatus.COMPLETED),
        (ResourceStatus.PENDING, ResourceStatus.FAILED),
        (ResourceStatus.COMPLETED, ResourceStatus.FAILED),
        (ResourceStatus.FAILED, ResourceStatus.COMPLETED),
        (ResourceStatus.COMPLETED, ResourceStatus.PENDING),
    ])
    def test_rejected_transitions(self, current, target):
        with pytest.raises(InvalidStatusTransition):
            check_transition(current, target)

    def test_failed_always_carries_an_error(self):
        assert check_transition(ResourceStatus.PROCESSING, ResourceStatus.FAILED) == "Unknown error"
        assert check_transition(ResourceStatus.PROCESSING, ResourceStatus.FAILED, "boom") == "boom"

    def test_other_states_clear_the_error(self):
        assert check_transition(ResourceStatus.PROCESSING, ResourceStatus.COMPLETED, "stale") is None

    def test_terminal_states(self):
        assert ResourceStatus.COMPLETED.is_terminal
        assert ResourceStatus.FAILED.is_terminal
        assert not ResourceStatus.PROCESSING.is_terminal


def test_entry_content_is_capped():
    entry = SiteMapEntry(url="https://example.com", content="x" * (MAX_CONTENT_LENGTH + 500))
    assert len(entry.content) == MAX_CONTENT_LENGTH


def test_status_view_shape():
    fetched = datetime(2024, 5, 1, 12, 0, 0)
    resource = WebsiteResource(
        campaign_id="c" * 24,
        url="https://example.com",
        status=ResourceStatus.FAILED,
        error="HTTP 500",
        pages_crawled=3,
        last_fetched=fetched,
    )
    assert resource.status_view() == {
        "status": "failed",
        "pagesCrawled": 3,
        "error": "HTTP 500",
        "lastFetched": fetched.isoformat(),
    }
    assert WebsiteResource(campaign_id="c" * 24).status_view() == {"status": "pending", "pagesCrawled": 0}


def test_page_cache_expiry():
    now = datetime(2024, 5, 1, 12, 0, 0)
    record = PageCacheRecord.fresh("https://example.com", "text", now=now)
    assert record.expires_at == now + timedelta(hours=24)
    assert not record.is_expired(now + timedelta(hours=23))
    assert record.is_expired(now + timedelta(hours=24))


def test_object_ids():
    assert is_valid_object_id(new_object_id())
    assert not is_valid_object_id(None)


def test_utcnow_is_naive_utc():
    now = utcnow()
    assert now.tzinfo is None
    assert abs(now - datetime.now(timezone.utc).replace(tzinfo=None)) < timedelta(seconds=5)
    assert now > datetime(2024, 5, 1)


def test_site_map_summary():
    site_map = SiteMap(campaign_id="c" * 24, website_resource_id="r" * 24, base_url="https://example.com",
                       entries=[
                           SiteMapEntry(url="https://example.com/", title="Home",
                                        description="Welcome", keywords=["parks", "events"],
                                        content="body text is left out"),
                           SiteMapEntry(url="https://example.com/about"),
                       ])

    assert site_map.summary() == (
        "URL: https://example.com/\nTitle: Home\nDescription: Welcome\nKeywords: parks, events"
        "\n\nURL: https://example.com/about"
    )


def test_site_map_summary_is_capped():
    entries = [SiteMapEntry(url=f"https://example.com/{i}", title="t" * 200) for i in range(100)]
    site_map = SiteMap(campaign_id="c" * 24, website_resource_id="r" * 24,
                       base_url="https://example.com", entries=entries)

    assert len(site_map.summary()) == MAX_CONTENT_LENGTH
    assert site_map.size_bytes() > MAX_CONTENT_LENGTH
