import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urljoin

import aiohttp
import feedparser
from bs4 import BeautifulSoup
from dateutil import parser as dateutil_parser

from feed_digest.models.content import RawRecord
from feed_digest.services.feed_registry import FeedSource


USER_AGENT = "Mozilla/5.0 (compatible; FeedDigest/1.0)"
SNIPPET_MAX_CHARS = 500


@dataclass
class ParsedDate:
    value: datetime
    reliable: bool


class RSSService:
    """
    RSS/Atom feed fetcher.

    ``fetch_source`` never raises: any transport, HTTP or parse failure is
    logged and the source contributes zero records to the run.
    """

    def __init__(self, timeout: float = 10.0, max_retries: int = 2):
        self.timeout = timeout
        self.max_retries = max_retries
        self.logger = logging.getLogger(__name__)

    async def fetch_source(self, source: FeedSource) -> List[RawRecord]:
        """Fetch and normalize one feed, returning [] on any failure."""
        try:
            content = await self.fetch_feed(source.url)
            records = self._parse_feed(content, source)
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"⚠️ Feed failed for {source.name}: {e}")
            return []

        self.logger.debug(f"Fetched {len(records)} items from {source.name}")
        return records

    async def fetch_feed(self, feed_url: str) -> str:
        """Fetch raw feed content with exponential backoff between attempts."""
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return await self._fetch_with_retry(feed_url)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(0.25 * (2 ** attempt))

        raise RSSServiceError(str(last_error) if last_error else "Failed to fetch feed")

    async def _fetch_with_retry(self, url: str) -> str:
        """Single attempt fetch; external retry handled by caller."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/rss+xml,application/atom+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers=headers) as resp:
                if resp.status != 200:
                    raise RSSServiceError(f"HTTP {resp.status} for {url}")
                return await resp.text()

    def _parse_feed(self, content: str, source: FeedSource) -> List[RawRecord]:
        """Parse RSS/Atom feed content into records."""
        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            raise RSSServiceError(f"Malformed feed: {parsed.get('bozo_exception')}")

        fetched_at = datetime.now(timezone.utc)
        records: List[RawRecord] = []
        for entry in parsed.entries:
            link = (getattr(entry, "link", "") or "").strip()
            if not link:
                continue
            url = urljoin(source.url, link)

            title = (getattr(entry, "title", "") or "").strip() or "Untitled"
            summary = getattr(entry, "summary", None) or getattr(entry, "description", "") or ""
            published_raw = getattr(entry, "published", None) or getattr(entry, "updated", None)
            published = self._parse_date(published_raw, fetched_at)

            records.append(
                RawRecord(
                    title=title,
                    url=url,
                    source_name=source.name,
                    category=source.category,
                    published_at=published.value,
                    snippet=clean_snippet(summary),
                    has_reliable_timestamp=published.reliable,
                )
            )

        return records

    def _parse_date(self, date_str: Optional[str], fallback: datetime) -> ParsedDate:
        """Parse a feed date into aware UTC, falling back to the fetch time."""
        if not date_str or not date_str.strip():
            return ParsedDate(fallback, False)

        try:
            dt = dateutil_parser.parse(date_str)
        except (ValueError, TypeError, OverflowError) as e:
            self.logger.debug(f"Failed to parse feed date '{date_str}': {e}, using fetch time")
            return ParsedDate(fallback, False)

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return ParsedDate(dt.astimezone(timezone.utc), True)


def clean_snippet(text: str, limit: int = SNIPPET_MAX_CHARS) -> str:
    """Strip markup and collapse whitespace in a feed summary."""
    if not text:
        return ""
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ", strip=True)
    return " ".join(text.split())[:limit]


class RSSServiceError(Exception):
    """Custom exception for RSS service failures"""
    pass
