"""
Content models for the digest pipeline.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional


class Category(str, Enum):
    """Topic category, fixed per source."""
    AGENTS = "agents"
    AI = "ai"
    SEO = "seo"
    TECH = "tech"
    MARKETING = "marketing"


@dataclass(frozen=True)
class RawRecord:
    """One normalized item from any source."""

    title: str
    url: str
    source_name: str
    category: Category
    published_at: datetime
    snippet: str = ""
    full_text: Optional[str] = None
    # False when the date was defaulted or the source has none
    has_reliable_timestamp: bool = True

    def with_full_text(self, full_text: Optional[str]) -> "RawRecord":
        return replace(self, full_text=full_text)


@dataclass(frozen=True)
class ScoredRecord:
    record: RawRecord
    score: int


@dataclass(frozen=True)
class EnrichedRecord(RawRecord):
    """A record plus generated fields. Failed enrichment leaves them empty, never None."""

    summary: str = ""
    briefing: str = ""
    tags: List[str] = field(default_factory=list)
    content_angles: List[str] = field(default_factory=list)

    @classmethod
    def from_record(
        cls,
        record: RawRecord,
        summary: str = "",
        briefing: str = "",
        tags: Optional[List[str]] = None,
        content_angles: Optional[List[str]] = None,
    ) -> "EnrichedRecord":
        return cls(
            title=record.title,
            url=record.url,
            source_name=record.source_name,
            category=record.category,
            published_at=record.published_at,
            snippet=record.snippet,
            full_text=record.full_text,
            has_reliable_timestamp=record.has_reliable_timestamp,
            summary=summary,
            briefing=briefing,
            tags=list(tags or []),
            content_angles=list(content_angles or []),
        )

    @classmethod
    def empty(cls, record: RawRecord) -> "EnrichedRecord":
        return cls.from_record(record)
