"""Tests for the page scraper and the subreddit adapter."""

from datetime import datetime, timezone

import pytest

from feed_digest.models.content import Category
from feed_digest.services.feed_registry import FeedSource
from feed_digest.services.scrapers import RedditService, ScraperError, ScraperService


PAGE_SOURCE = FeedSource(
    name="Artificial Analysis",
    url="https://artificialanalysis.ai/articles",
    category=Category.AGENTS,
    kind="scrape",
    base_url="https://artificialanalysis.ai",
    max_items=3,
)

REDDIT_SOURCE = FeedSource(
    name="r/SEO",
    url="https://www.reddit.com/r/SEO/hot.json?limit=5",
    category=Category.SEO,
    kind="reddit",
    max_items=5,
)


def test_parse_listing_primary_pattern():
    page = """
    <a class="card" href="/articles/model-benchmarks"><div><h2>Model &amp; Benchmarks</h2></div></a>
    <a href="/articles/latency-report"><h2 class="title">Latency   report</h2></a>
    """
    records = ScraperService().parse_listing(page, PAGE_SOURCE)

    assert [r.url for r in records] == [
        "https://artificialanalysis.ai/articles/model-benchmarks",
        "https://artificialanalysis.ai/articles/latency-report",
    ]
    assert [r.title for r in records] == ["Model & Benchmarks", "Latency report"]
    assert all(not r.has_reliable_timestamp for r in records)
    assert all(r.category is Category.AGENTS for r in records)


def test_parse_listing_falls_back_to_link_and_heading_pairs():
    page = (
        'href="/articles/one" href="/articles/one" href="/articles/two"\n'
        "## First title\n"
        "## Second title\n"
    )
    records = ScraperService().parse_listing(page, PAGE_SOURCE)

    assert [(r.url, r.title) for r in records] == [
        ("https://artificialanalysis.ai/articles/one", "First title"),
        ("https://artificialanalysis.ai/articles/two", "Second title"),
    ]


def test_parse_listing_caps_items():
    page = "".join(f'<a href="/articles/{i}"><h2>Title {i}</h2></a>' for i in range(10))
    records = ScraperService().parse_listing(page, PAGE_SOURCE)
    assert len(records) == 3


def test_parse_listing_without_matches_is_empty():
    assert ScraperService().parse_listing("<html><body>nothing</body></html>", PAGE_SOURCE) == []


@pytest.mark.asyncio
async def test_fetch_source_swallows_http_errors(monkeypatch):
    service = ScraperService()

    async def failing_fetch(url):
        raise ScraperError("HTTP 503")

    monkeypatch.setattr(service, "_fetch_text", failing_fetch)
    assert await service.fetch_source(PAGE_SOURCE) == []


@pytest.mark.asyncio
async def test_fetch_many_runs_sources_in_order(monkeypatch):
    service = ScraperService(request_delay=0)
    seen = []

    async def fake_fetch_source(source):
        seen.append(source.name)
        return []

    monkeypatch.setattr(service, "fetch_source", fake_fetch_source)
    second = FeedSource(name="Second", url="https://example.com", category=Category.TECH, kind="scrape")
    await service.fetch_many([PAGE_SOURCE, second])
    assert seen == ["Artificial Analysis", "Second"]


def test_reddit_listing_skips_stickied_and_missing_permalinks():
    payload = {
        "data": {
            "children": [
                {"data": {"title": "Weekly thread", "permalink": "/r/SEO/comments/a/", "stickied": True}},
                {"data": {"title": "No link"}},
                {
                    "data": {
                        "title": "Core update rolled out",
                        "permalink": "/r/SEO/comments/b/core_update/",
                        "selftext": "Rankings **moved** a lot",
                        "created_utc": 1792152000,
                    }
                },
                {"data": {"title": "Undated", "permalink": "/r/SEO/comments/c/undated/"}},
            ]
        }
    }
    records = RedditService().parse_listing(payload, REDDIT_SOURCE)

    assert [r.url for r in records] == [
        "https://www.reddit.com/r/SEO/comments/b/core_update/",
        "https://www.reddit.com/r/SEO/comments/c/undated/",
    ]
    dated, undated = records
    assert dated.published_at == datetime.fromtimestamp(1792152000, tz=timezone.utc)
    assert dated.has_reliable_timestamp
    assert dated.snippet == "Rankings **moved** a lot"
    assert dated.source_name == "r/SEO"
    assert not undated.has_reliable_timestamp


@pytest.mark.asyncio
async def test_reddit_fetch_source_returns_empty_on_error(monkeypatch):
    service = RedditService()

    async def failing_fetch(url):
        raise ScraperError("HTTP 429")

    monkeypatch.setattr(service, "_fetch_json", failing_fetch)
    assert await service.fetch_source(REDDIT_SOURCE) == []
