from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Set

import aiosqlite

from feed_digest.models.content import EnrichedRecord, RawRecord


@dataclass
class SaveStats:
    saved: int = 0
    errors: int = 0


class ArticleStore:
    """
    SQLite-backed article history.

    Every call opens its own connection; nothing is held between calls.
    ``upsert`` ignores conflicts on ``url`` so concurrent or repeated runs
    never overwrite an existing row.
    """

    # Keeps IN (...) lists well below SQLite's host parameter limit
    QUERY_CHUNK = 500

    def __init__(self, db_path: str = "data/articles.db"):
        self.db_path = db_path
        self.logger = logging.getLogger(__name__)
        # Call await initialize_db() after constructing.

    async def initialize_db(self) -> None:
        """Create tables and indexes."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS articles (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        url TEXT UNIQUE NOT NULL,
                        title TEXT NOT NULL,
                        source_name TEXT,
                        category TEXT,
                        published_at TEXT,
                        full_text TEXT,
                        summary TEXT,
                        briefing TEXT,
                        tags TEXT DEFAULT '[]',
                        content_angles TEXT DEFAULT '[]',
                        enriched INTEGER DEFAULT 0,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS deleted_urls (
                        url TEXT PRIMARY KEY,
                        deleted_at TEXT NOT NULL
                    )
                    """
                )
                await db.execute("CREATE INDEX IF NOT EXISTS idx_articles_created ON articles(created_at)")
                await db.execute("CREATE INDEX IF NOT EXISTS idx_articles_category ON articles(category)")
                await db.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to initialize database: {e}") from e

    async def exists(self, url: str) -> bool:
        return url in await self.existing_urls([url])

    async def existing_urls(self, urls: Iterable[str]) -> Set[str]:
        """Return the subset of ``urls`` already stored, in one query per chunk."""
        urls = list(dict.fromkeys(urls))
        found: Set[str] = set()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                for i in range(0, len(urls), self.QUERY_CHUNK):
                    chunk = urls[i:i + self.QUERY_CHUNK]
                    placeholders = ",".join("?" for _ in chunk)
                    cur = await db.execute(
                        f"SELECT url FROM articles WHERE url IN ({placeholders})",
                        chunk,
                    )
                    found.update(row[0] for row in await cur.fetchall())
        except aiosqlite.Error as e:
            raise StoreError(f"Existence check failed: {e}") from e
        return found

    async def upsert(self, row: Dict[str, Any]) -> bool:
        """Insert one article row, ignoring a conflicting url. Returns True when inserted."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute(
                    """
                    INSERT INTO articles (
                        url, title, source_name, category, published_at, full_text,
                        summary, briefing, tags, content_angles, enriched, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(url) DO NOTHING
                    """,
                    (
                        row["url"],
                        row["title"],
                        row.get("source_name"),
                        row.get("category"),
                        row.get("published_at"),
                        row.get("full_text"),
                        row.get("summary"),
                        row.get("briefing"),
                        json.dumps(row.get("tags") or []),
                        json.dumps(row.get("content_angles") or []),
                        1 if row.get("enriched") else 0,
                        row.get("created_at") or _utc_stamp(datetime.now(timezone.utc)),
                    ),
                )
                await db.commit()
                return cur.rowcount > 0
        except (aiosqlite.Error, KeyError) as e:
            raise StoreError(f"Upsert failed for {row.get('url')}: {e}") from e

    async def save_enriched(self, records: List[EnrichedRecord]) -> SaveStats:
        return await self._save_rows([enriched_row(r) for r in records])

    async def save_basic(self, records: List[RawRecord]) -> SaveStats:
        return await self._save_rows([basic_row(r) for r in records])

    async def _save_rows(self, rows: List[Dict[str, Any]]) -> SaveStats:
        stats = SaveStats()
        for row in rows:
            try:
                await self.upsert(row)
                stats.saved += 1
            except StoreError as e:
                self.logger.error(f"❌ {e}")
                stats.errors += 1
        return stats

    async def count_created_since(self, since: datetime) -> int:
        """Count rows created at or after ``since``."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute(
                    "SELECT COUNT(*) FROM articles WHERE created_at >= ?",
                    (_utc_stamp(since),),
                )
                row = await cur.fetchone()
                return row[0] if row else 0
        except aiosqlite.Error as e:
            raise StoreError(f"Count query failed: {e}") from e

    async def deleted_urls(self) -> Set[str]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute("SELECT url FROM deleted_urls")
                return {row[0] for row in await cur.fetchall()}
        except aiosqlite.Error as e:
            raise StoreError(f"Deleted-url read failed: {e}") from e

    async def mark_deleted(self, url: str) -> None:
        """Soft-delete a URL so future runs skip it, and drop any stored row."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT OR IGNORE INTO deleted_urls (url, deleted_at) VALUES (?, ?)",
                    (url, _utc_stamp(datetime.now(timezone.utc))),
                )
                await db.execute("DELETE FROM articles WHERE url = ?", (url,))
                await db.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"Soft delete failed for {url}: {e}") from e
        self.logger.info(f"🗑️ Marked deleted: {url}")

    async def clear_deleted(self) -> int:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute("DELETE FROM deleted_urls")
                await db.commit()
                return cur.rowcount
        except aiosqlite.Error as e:
            raise StoreError(f"Clearing deleted urls failed: {e}") from e

    async def get_statistics(self) -> dict:
        """Summary counts for the CLI."""
        stats: Dict[str, Any] = {
            "total_articles": 0,
            "enriched_articles": 0,
            "articles_by_category": {},
            "articles_by_source": {},
            "date_range": {},
            "deleted_urls": 0,
        }

        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute("SELECT COUNT(*), COALESCE(SUM(enriched), 0) FROM articles")
                row = await cur.fetchone()
                if row:
                    stats["total_articles"], stats["enriched_articles"] = row[0], row[1]

                if stats["total_articles"] > 0:
                    cur = await db.execute(
                        "SELECT category, COUNT(*) FROM articles GROUP BY category ORDER BY COUNT(*) DESC"
                    )
                    stats["articles_by_category"] = {r[0]: r[1] for r in await cur.fetchall()}

                    cur = await db.execute(
                        "SELECT source_name, COUNT(*) FROM articles GROUP BY source_name ORDER BY COUNT(*) DESC LIMIT 10"
                    )
                    stats["articles_by_source"] = {r[0]: r[1] for r in await cur.fetchall()}

                    cur = await db.execute("SELECT MIN(created_at), MAX(created_at) FROM articles")
                    row = await cur.fetchone()
                    if row and row[0] and row[1]:
                        stats["date_range"] = {"oldest": row[0], "newest": row[1]}

                cur = await db.execute("SELECT COUNT(*) FROM deleted_urls")
                row = await cur.fetchone()
                stats["deleted_urls"] = row[0] if row else 0
        except aiosqlite.Error as e:
            raise StoreError(f"Statistics query failed: {e}") from e

        return stats


def basic_row(record: RawRecord) -> Dict[str, Any]:
    """Row for a record saved without enrichment."""
    return {
        "url": record.url,
        "title": record.title,
        "source_name": record.source_name,
        "category": record.category.value,
        "published_at": record.published_at.isoformat(),
        "full_text": None,
        "summary": (record.snippet or "")[:500],
        "briefing": None,
        "tags": [],
        "content_angles": [],
        "enriched": False,
    }


def enriched_row(record: EnrichedRecord) -> Dict[str, Any]:
    return {
        "url": record.url,
        "title": record.title,
        "source_name": record.source_name,
        "category": record.category.value,
        "published_at": record.published_at.isoformat(),
        "full_text": record.full_text,
        "summary": record.summary,
        "briefing": record.briefing,
        "tags": record.tags,
        "content_angles": record.content_angles,
        "enriched": True,
    }


def _utc_stamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


class StoreError(Exception):
    """Custom exception for article store failures"""
    pass
