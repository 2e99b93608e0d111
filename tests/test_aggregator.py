"""Tests for fan-out fetching and the recency window."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from feed_digest.models.content import Category
from feed_digest.pipeline.content_aggregator import ContentAggregator, filter_recent
from feed_digest.services.deduplication_service import dedupe_batch
from feed_digest.services.feed_registry import FeedSource
from feed_digest.services.scrapers import RedditService

from tests.conftest import make_record


def _source(name, kind="rss"):
    return FeedSource(name=name, url=f"https://example.com/{name}", category=Category.TECH, kind=kind)


class FakeRSS:
    def __init__(self, behaviours):
        self.behaviours = behaviours

    async def fetch_source(self, source):
        behaviour = self.behaviours[source.name]
        if isinstance(behaviour, Exception):
            raise behaviour
        if behaviour == "hang":
            await asyncio.sleep(10)
        return [make_record(f"https://example.com/{source.name}/1", source_name=source.name)]


class FakeGroup:
    def __init__(self, prefix):
        self.prefix = prefix
        self.calls = []

    async def fetch_many(self, sources, timeout=None):
        self.calls.append([s.name for s in sources])
        return [make_record(f"https://{self.prefix}.example.com/{s.name}", source_name=s.name) for s in sources]


@pytest.mark.asyncio
async def test_failing_source_does_not_affect_others():
    sources = [_source("good"), _source("broken"), _source("also-good")]
    aggregator = ContentAggregator(
        sources,
        FakeRSS({"good": "ok", "broken": RuntimeError("boom"), "also-good": "ok"}),
        FakeGroup("scrape"),
        FakeGroup("reddit"),
    )

    result = await aggregator.fetch_all()

    assert sorted(r.source_name for r in result.records) == ["also-good", "good"]
    assert [f.source for f in result.failed] == ["broken"]
    assert result.failed[0].error == "boom"


@pytest.mark.asyncio
async def test_slow_source_times_out():
    sources = [_source("fast"), _source("slow")]
    aggregator = ContentAggregator(
        sources,
        FakeRSS({"fast": "ok", "slow": "hang"}),
        FakeGroup("scrape"),
        FakeGroup("reddit"),
        source_timeout=0.05,
    )

    result = await aggregator.fetch_all()

    assert [r.source_name for r in result.records] == ["fast"]
    assert result.failed[0].source == "slow"
    assert result.failed[0].error == "timeout"


@pytest.mark.asyncio
async def test_scraped_and_reddit_sources_run_as_groups():
    scrape, reddit = FakeGroup("scrape"), FakeGroup("reddit")
    sources = [_source("feed"), _source("page-a", "scrape"), _source("page-b", "scrape"), _source("r/x", "reddit")]
    aggregator = ContentAggregator(sources, FakeRSS({"feed": "ok"}), scrape, reddit)

    result = await aggregator.fetch_all()

    assert scrape.calls == [["page-a", "page-b"]]
    assert reddit.calls == [["r/x"]]
    assert len(result.records) == 4
    assert {f.source for f in result.results} == {"feed", "scraped pages", "reddit"}


@pytest.mark.asyncio
async def test_hung_subreddit_keeps_its_siblings(monkeypatch):
    reddit = RedditService(request_delay=0)

    async def fake_fetch_source(source):
        if source.name == "r/hung":
            await asyncio.sleep(5)
        return [make_record(f"https://www.reddit.com/{source.name}/1", source_name=source.name)]

    monkeypatch.setattr(reddit, "fetch_source", fake_fetch_source)
    sources = [_source("r/good", "reddit"), _source("r/hung", "reddit"), _source("r/also_good", "reddit")]
    aggregator = ContentAggregator(sources, FakeRSS({}), FakeGroup("scrape"), reddit, source_timeout=0.2)

    result = await aggregator.fetch_all()

    assert sorted(r.source_name for r in result.records) == ["r/also_good", "r/good"]
    assert result.failed == []


class FiveItemRSS:
    """Two feeds with five items each, sharing one url; a third never answers."""

    async def fetch_source(self, source):
        if source.name == "stalled":
            await asyncio.sleep(10)
        urls = [f"https://example.com/{source.name}/{i}" for i in range(4)]
        urls.append("https://example.com/shared")
        return [make_record(url, source_name=source.name) for url in urls]


@pytest.mark.asyncio
async def test_one_stalled_feed_and_a_shared_url_leave_nine_records():
    sources = [_source("alpha"), _source("beta"), _source("stalled")]
    aggregator = ContentAggregator(sources, FiveItemRSS(), FakeGroup("scrape"), FakeGroup("reddit"), source_timeout=0.1)

    result = await aggregator.fetch_all()
    unique = dedupe_batch(result.records)

    assert len(result.records) == 10
    assert len(unique) == 9
    assert [f.source for f in result.failed] == ["stalled"]
    assert result.failed[0].error == "timeout"


def test_filter_recent_boundary_is_inclusive():
    now = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
    cutoff = now - timedelta(hours=24)
    at_cutoff = make_record("https://example.com/edge", published_at=cutoff)
    just_older = make_record("https://example.com/old", published_at=cutoff - timedelta(microseconds=1))
    fresh = make_record("https://example.com/fresh", published_at=now - timedelta(hours=1))

    kept = filter_recent([at_cutoff, just_older, fresh], window_hours=24, now=now)

    assert [r.url for r in kept] == ["https://example.com/edge", "https://example.com/fresh"]


def test_filter_recent_passes_exempt_and_undated_records():
    now = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
    old = now - timedelta(days=3)
    exempt = make_record("https://example.com/a", source_name="Artificial Analysis", published_at=old)
    undated = make_record("https://example.com/b", published_at=old, reliable=False)
    stale = make_record("https://example.com/c", published_at=old)

    kept = filter_recent([exempt, undated, stale], now=now, exempt_sources={"Artificial Analysis"})

    assert [r.url for r in kept] == ["https://example.com/a", "https://example.com/b"]
