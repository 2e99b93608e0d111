import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Collection, Iterable, List, Optional, Tuple

from feed_digest.models.content import RawRecord
from feed_digest.services.feed_registry import FeedSource
from feed_digest.services.rss import RSSService
from feed_digest.services.scrapers import RedditService, ScraperService
from feed_digest.utils.concurrency import gather_settled


@dataclass
class FetchResult:
    """Result from a content fetch operation"""
    source: str
    count: int
    fetch_time: float
    error: Optional[str] = None


@dataclass
class AggregationResult:
    records: List[RawRecord] = field(default_factory=list)
    results: List[FetchResult] = field(default_factory=list)

    @property
    def failed(self) -> List[FetchResult]:
        return [r for r in self.results if r.error is not None]


class ContentAggregator:
    """
    Fans a fetch out across every registered source.

    Feeds are fetched concurrently, one task each. Scraped pages and
    subreddit listings are fetched as one sequential group per kind so the
    fixed delay between their requests holds, with the timeout applied to
    each member rather than the group. A failing or slow source contributes
    zero records and never cancels the others.
    """

    def __init__(
        self,
        sources: List[FeedSource],
        rss_service: RSSService,
        scraper_service: ScraperService,
        reddit_service: RedditService,
        source_timeout: float = 30.0,
    ):
        self.sources = sources
        self.rss_service = rss_service
        self.scraper_service = scraper_service
        self.reddit_service = reddit_service
        self.source_timeout = source_timeout
        self.logger = logging.getLogger(__name__)

    async def fetch_all(self) -> AggregationResult:
        jobs = self._build_jobs()
        self.logger.info(f"📡 Fetching {len(self.sources)} sources in {len(jobs)} tasks")

        settled = await gather_settled(self._timed(factory, timeout) for _, factory, timeout in jobs)

        aggregated = AggregationResult()
        for (label, _, _), outcome in zip(jobs, settled):
            if outcome.ok:
                records, elapsed = outcome.value
                aggregated.records.extend(records)
                aggregated.results.append(FetchResult(label, len(records), elapsed))
            else:
                error = outcome.error
                reason = "timeout" if isinstance(error, asyncio.TimeoutError) else str(error)
                self.logger.warning(f"⚠️ Source task {label} failed: {reason or type(error).__name__}")
                aggregated.results.append(FetchResult(label, 0, 0.0, error=reason or type(error).__name__))

        self.logger.info(
            f"✅ Fetched {len(aggregated.records)} records, "
            f"{len(aggregated.failed)} of {len(jobs)} tasks failed"
        )
        return aggregated

    def _build_jobs(self) -> List[Tuple[str, Callable[[], Awaitable[List[RawRecord]]], Optional[float]]]:
        """One job per feed; scraped pages and subreddits run as sequential groups timed per member."""
        jobs: List[Tuple[str, Callable[[], Awaitable[List[RawRecord]]], Optional[float]]] = []
        scraped = [s for s in self.sources if s.kind == "scrape"]
        reddit = [s for s in self.sources if s.kind == "reddit"]

        for source in self.sources:
            if source.kind == "rss":
                jobs.append((source.name, lambda s=source: self.rss_service.fetch_source(s), self.source_timeout))
        if scraped:
            jobs.append(("scraped pages", lambda: self.scraper_service.fetch_many(scraped, timeout=self.source_timeout), None))
        if reddit:
            jobs.append(("reddit", lambda: self.reddit_service.fetch_many(reddit, timeout=self.source_timeout), None))
        return jobs

    async def _timed(
        self,
        factory: Callable[[], Awaitable[List[RawRecord]]],
        timeout: Optional[float],
    ) -> Tuple[List[RawRecord], float]:
        start = time.monotonic()
        records = await asyncio.wait_for(factory(), timeout=timeout)
        return records, time.monotonic() - start


def filter_recent(
    records: Iterable[RawRecord],
    window_hours: float = 24,
    now: Optional[datetime] = None,
    exempt_sources: Collection[str] = (),
) -> List[RawRecord]:
    """
    Keep records published within the trailing window (boundary inclusive).

    Records from exempt sources, or without a reliable timestamp, always pass.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=window_hours)
    return [
        r for r in records
        if r.source_name in exempt_sources
        or not r.has_reliable_timestamp
        or r.published_at >= cutoff
    ]
