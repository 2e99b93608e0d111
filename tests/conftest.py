"""Shared fixtures for the digest test suite."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio

from feed_digest.models.content import Category, RawRecord
from feed_digest.services.article_store import ArticleStore


def make_record(
    url: str,
    title: str = "Story",
    source_name: str = "Test Feed",
    category: Category = Category.TECH,
    published_at: Optional[datetime] = None,
    snippet: str = "",
    reliable: bool = True,
) -> RawRecord:
    return RawRecord(
        title=title,
        url=url,
        source_name=source_name,
        category=category,
        published_at=published_at or datetime.now(timezone.utc) - timedelta(hours=1),
        snippet=snippet,
        has_reliable_timestamp=reliable,
    )


@pytest.fixture
def record_factory():
    return make_record


@pytest_asyncio.fixture
async def store(tmp_path):
    article_store = ArticleStore(str(tmp_path / "data" / "articles.db"))
    await article_store.initialize_db()
    return article_store
