"""
Adapters for sources that publish no feed.

Both adapters honour the RSS fetcher's contract: ``fetch_source`` returns
normalized records and never raises.
"""

import asyncio
import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern
from urllib.parse import urljoin

import aiohttp

from feed_digest.models.content import RawRecord
from feed_digest.services.feed_registry import FeedSource
from feed_digest.services.rss import USER_AGENT, clean_snippet


@dataclass(frozen=True)
class ScrapePatterns:
    """Regex set used to pull (link, title) pairs out of page markup"""
    primary: Pattern[str]
    fallback_link: Pattern[str]
    fallback_title: Pattern[str]


ARTICLE_PATTERNS = ScrapePatterns(
    primary=re.compile(r'<a[^>]*href="(/articles/[^"]+)"[^>]*>[\s\S]*?<h2[^>]*>([^<]+)</h2>', re.IGNORECASE),
    fallback_link=re.compile(r'href="(/articles/[^"]+)"', re.IGNORECASE),
    fallback_title=re.compile(r"## ([^\n]+)", re.IGNORECASE),
)


class ScraperService:
    """Scrapes article listings from pages without RSS."""

    def __init__(
        self,
        timeout: float = 10.0,
        request_delay: float = 0.1,
        patterns: Optional[Dict[str, ScrapePatterns]] = None,
    ):
        self.timeout = timeout
        self.request_delay = request_delay
        self.patterns = patterns or {}
        self.logger = logging.getLogger(__name__)

    async def fetch_source(self, source: FeedSource) -> List[RawRecord]:
        try:
            page = await self._fetch_text(source.url)
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"⚠️ Scrape failed for {source.name}: {e}")
            return []

        records = self.parse_listing(page, source)
        self.logger.info(f"Scraped {len(records)} articles from {source.name}")
        return records

    async def fetch_many(self, sources: List[FeedSource], timeout: Optional[float] = None) -> List[RawRecord]:
        """Scrape sources one at a time with a fixed pause between requests."""
        return await fetch_in_sequence(self.fetch_source, sources, self.request_delay, timeout, self.logger)

    def parse_listing(self, page: str, source: FeedSource) -> List[RawRecord]:
        """Extract records from markup with the primary pattern, else the fallback pair."""
        patterns = self.patterns.get(source.name, ARTICLE_PATTERNS)
        pairs = [
            (m.group(1), _clean_title(m.group(2)))
            for m in patterns.primary.finditer(page)
            if m.group(1) and _clean_title(m.group(2))
        ]

        if not pairs:
            links: List[str] = []
            for m in patterns.fallback_link.finditer(page):
                if m.group(1) not in links:
                    links.append(m.group(1))
            titles = [_clean_title(m.group(1)) for m in patterns.fallback_title.finditer(page)]
            pairs = list(zip(links, titles))

        base = source.base_url or source.url
        now = datetime.now(timezone.utc)
        return [
            RawRecord(
                title=title or "Untitled",
                url=urljoin(base, link),
                source_name=source.name,
                category=source.category,
                published_at=now,
                snippet="",
                has_reliable_timestamp=False,
            )
            for link, title in pairs[: source.max_items]
        ]

    async def _fetch_text(self, url: str) -> str:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers={"User-Agent": USER_AGENT}) as resp:
                if resp.status != 200:
                    raise ScraperError(f"HTTP {resp.status} for {url}")
                return await resp.text()


class RedditService:
    """Reads hot posts from subreddit JSON listings."""

    def __init__(self, timeout: float = 10.0, request_delay: float = 0.1):
        self.timeout = timeout
        self.request_delay = request_delay
        self.logger = logging.getLogger(__name__)

    async def fetch_source(self, source: FeedSource) -> List[RawRecord]:
        try:
            payload = await self._fetch_json(source.url)
            records = self.parse_listing(payload, source)
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"⚠️ Reddit fetch failed for {source.name}: {e}")
            return []
        return records

    async def fetch_many(self, sources: List[FeedSource], timeout: Optional[float] = None) -> List[RawRecord]:
        return await fetch_in_sequence(self.fetch_source, sources, self.request_delay, timeout, self.logger)

    def parse_listing(self, payload: Dict[str, Any], source: FeedSource) -> List[RawRecord]:
        children = payload.get("data", {}).get("children", [])
        records: List[RawRecord] = []
        for child in children:
            post = child.get("data", {})
            if post.get("stickied") or not post.get("permalink"):
                continue
            created = post.get("created_utc")
            if created is not None:
                published = datetime.fromtimestamp(float(created), tz=timezone.utc)
            else:
                published = datetime.now(timezone.utc)
            records.append(
                RawRecord(
                    title=(post.get("title") or "").strip() or "Untitled",
                    url=urljoin("https://www.reddit.com", post["permalink"]),
                    source_name=source.name,
                    category=source.category,
                    published_at=published,
                    snippet=clean_snippet(post.get("selftext") or ""),
                    has_reliable_timestamp=created is not None,
                )
            )
        return records[: source.max_items]

    async def _fetch_json(self, url: str) -> Dict[str, Any]:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers={"User-Agent": "FeedDigest/1.0"}) as resp:
                if resp.status != 200:
                    raise ScraperError(f"HTTP {resp.status} for {url}")
                return await resp.json(content_type=None)


async def fetch_in_sequence(
    fetch: Callable[[FeedSource], Awaitable[List[RawRecord]]],
    sources: List[FeedSource],
    request_delay: float,
    timeout: Optional[float],
    logger: logging.Logger,
) -> List[RawRecord]:
    """
    Fetch sources one after another with a fixed pause between requests.

    Each source gets its own ``timeout``; a source that runs over contributes
    nothing and the loop moves on to the next one.
    """
    records: List[RawRecord] = []
    for i, source in enumerate(sources):
        if i > 0 and request_delay:
            await asyncio.sleep(request_delay)
        try:
            records.extend(await asyncio.wait_for(fetch(source), timeout=timeout))
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ {source.name} timed out after {timeout:.1f}s")
    return records


def _clean_title(raw: str) -> str:
    return " ".join(html.unescape(raw or "").split())


class ScraperError(Exception):
    """Custom exception for scraper failures"""
    pass
