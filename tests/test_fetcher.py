"""Tests for the fetch strategies and their retry policy."""

import asyncio
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from config.settings import CrawlerSettings
from pipelines.fetcher import (
    USER_AGENTS,
    BotChallengeError,
    FetchError,
    SimpleHTTPFetcher,
    browser_headers,
    create_fetcher,
    looks_like_challenge,
    normalize_url,
)

OK_HTML = "<html><head><title>Home</title></head><body>hello</body></html>"
CHALLENGE_HTML = "<html><head><title>Just a moment...</title></head><body>Checking your browser</body></html>"


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fetcher(sleeps):
    async def record_sleep(seconds):
        sleeps.append(seconds)

    return SimpleHTTPFetcher(CrawlerSettings(), sleep=record_sleep)


class TestSimpleHTTPFetcher:
    """Retry, backoff and challenge handling."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, fetcher, sleeps):
        with patch.object(fetcher, "_attempt", AsyncMock(return_value=(200, OK_HTML, "https://example.com/"))):
            result = await fetcher.fetch("example.com")

        assert result.status_code == 200
        assert result.html == OK_HTML
        assert result.final_url == "https://example.com/"
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self, fetcher, sleeps):
        attempt = AsyncMock(side_effect=[
            aiohttp.ClientConnectionError("reset"),
            (503, "unavailable", "https://example.com"),
            (200, OK_HTML, "https://example.com"),
        ])
        with patch.object(fetcher, "_attempt", attempt):
            result = await fetcher.fetch("https://example.com")

        assert result.html == OK_HTML
        assert sleeps == [2.0, 4.0]
        assert attempt.await_count == 3

    @pytest.mark.asyncio
    async def test_user_agent_rotates_per_attempt(self, fetcher):
        attempt = AsyncMock(side_effect=[
            asyncio.TimeoutError(),
            asyncio.TimeoutError(),
            (200, OK_HTML, "https://example.com"),
        ])
        with patch.object(fetcher, "_attempt", attempt):
            await fetcher.fetch("https://example.com")

        agents = [call.args[1] for call in attempt.await_args_list]
        assert agents == USER_AGENTS[:3]

    @pytest.mark.asyncio
    async def test_forbidden_adds_extra_wait(self, fetcher, sleeps):
        attempt = AsyncMock(side_effect=[
            (403, "denied", "https://example.com"),
            (200, OK_HTML, "https://example.com"),
        ])
        with patch.object(fetcher, "_attempt", attempt):
            await fetcher.fetch("https://example.com")

        # 5s * 2**0 after the 403, then the regular backoff before attempt 2.
        assert sleeps == [5.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_after_exhausting_attempts(self, fetcher):
        attempt = AsyncMock(return_value=(500, "error", "https://example.com"))
        with patch.object(fetcher, "_attempt", attempt):
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch("https://example.com")

        assert not isinstance(exc_info.value, BotChallengeError)
        assert exc_info.value.last_error == "HTTP 500"
        assert exc_info.value.status_code == 500
        assert attempt.await_count == 3

    @pytest.mark.asyncio
    async def test_persistent_challenge_raises_bot_challenge(self, fetcher):
        attempt = AsyncMock(return_value=(200, CHALLENGE_HTML, "https://example.com"))
        with patch.object(fetcher, "_attempt", attempt):
            with pytest.raises(BotChallengeError):
                await fetcher.fetch("https://example.com")

    @pytest.mark.asyncio
    async def test_forbidden_challenge_raises_bot_challenge(self, fetcher):
        attempt = AsyncMock(return_value=(403, CHALLENGE_HTML, "https://example.com"))
        with patch.object(fetcher, "_attempt", attempt):
            with pytest.raises(BotChallengeError):
                await fetcher.fetch("https://example.com")

    @pytest.mark.asyncio
    async def test_context_manager_opens_and_closes_session(self):
        fetcher = SimpleHTTPFetcher(CrawlerSettings())
        async with fetcher:
            assert fetcher.session is not None
        assert fetcher.session is None


def test_normalize_url():
    assert normalize_url("example.com") == "https://example.com"
    assert normalize_url("  http://example.com/a ") == "http://example.com/a"
    assert normalize_url("https://example.com") == "https://example.com"


def test_challenge_markers():
    assert looks_like_challenge(CHALLENGE_HTML)
    assert looks_like_challenge('<div class="cf-browser-verification"></div>')
    assert not looks_like_challenge(OK_HTML)


def test_browser_headers():
    headers = browser_headers("agent/1.0")
    assert headers["User-Agent"] == "agent/1.0"
    assert headers["Referer"] == "https://www.google.com/"
    assert headers["Sec-Fetch-Mode"] == "navigate"


def test_create_fetcher_defaults_to_http():
    assert isinstance(create_fetcher(CrawlerSettings()), SimpleHTTPFetcher)


def test_unknown_fetcher_strategy_is_rejected():
    with pytest.raises(ValueError):
        CrawlerSettings(fetcher="carrier-pigeon")
