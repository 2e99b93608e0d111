import asyncio
import logging
import ssl
from typing import Optional

import aiohttp
import certifi
from bs4 import BeautifulSoup

from feed_digest.services.rss import USER_AGENT


ARTICLE_SELECTORS = [
    "article",
    '[role="main"]',
    ".article-body",
    ".story-body",
    ".entry-content",
    ".post-content",
    "main",
    ".content",
]


class ContentExtractionService:
    """Fetches an article page and pulls out its readable text."""

    def __init__(self, timeout: float = 10.0, max_chars: int = 8000):
        self.timeout = timeout
        self.max_chars = max_chars
        self.logger = logging.getLogger(__name__)

    async def extract(self, url: str) -> Optional[str]:
        """Return the article text, or None when the page can't be fetched or has no text."""
        try:
            html = await self._fetch_html(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.debug(f"Full-text fetch failed for {url}: {e}")
            return None
        if html is None:
            return None
        return extract_text(html, self.max_chars)

    async def _fetch_html(self, url: str) -> Optional[str]:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            async with session.get(url, headers={"User-Agent": USER_AGENT}) as response:
                if response.status != 200:
                    self.logger.debug(f"Full-text fetch for {url}: HTTP {response.status}")
                    return None
                return await response.text()


def extract_text(html: str, max_chars: int = 8000) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "nav", "footer", "aside", "header", "form"]):
        tag.decompose()

    content = ""
    for selector in ARTICLE_SELECTORS:
        element = soup.select_one(selector)
        if element:
            content = element.get_text(separator=" ", strip=True)
            if content:
                break

    if not content and soup.body:
        content = soup.body.get_text(separator=" ", strip=True)

    content = " ".join(content.split())
    return content[:max_chars] or None
