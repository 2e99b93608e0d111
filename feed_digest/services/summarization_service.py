import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from feed_digest.models.content import EnrichedRecord, RawRecord
from feed_digest.services.ai_service import AIService
from feed_digest.services.content_extraction import ContentExtractionService
from feed_digest.utils.concurrency import gather_settled


@dataclass
class BriefingParseOk:
    items: List[Any]


@dataclass
class BriefingParseError:
    reason: str


BriefingParseResult = Union[BriefingParseOk, BriefingParseError]

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_briefing_response(text: Optional[str]) -> BriefingParseResult:
    """
    Parse a summarizer reply.

    Accepts ``{"articles": [...]}`` or a bare array, optionally wrapped in a
    Markdown code fence.
    """
    if not text or not text.strip():
        return BriefingParseError("empty response")

    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        return BriefingParseError(f"invalid JSON: {e}")

    if isinstance(data, list):
        return BriefingParseOk(data)
    if isinstance(data, dict):
        articles = data.get("articles")
        if isinstance(articles, list):
            return BriefingParseOk(articles)
        return BriefingParseError("object without an 'articles' array")
    return BriefingParseError(f"unexpected JSON type {type(data).__name__}")


def map_briefings(records: List[RawRecord], items: List[Any]) -> List[EnrichedRecord]:
    """Pair reply items with records by position; anything missing or mistyped becomes empty."""
    enriched: List[EnrichedRecord] = []
    for idx, record in enumerate(records):
        item = items[idx] if idx < len(items) else None
        if not isinstance(item, dict):
            enriched.append(EnrichedRecord.empty(record))
            continue
        enriched.append(
            EnrichedRecord.from_record(
                record,
                summary=_as_text(item.get("summary")),
                briefing=_as_text(item.get("briefing")),
                tags=_as_text_list(item.get("tags")),
                content_angles=_as_text_list(item.get("contentAngles", item.get("content_angles"))),
            )
        )
    return enriched


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_text_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


class SummarizationService:
    """
    Enriches records with full text and generated briefings.

    Full text is fetched concurrently in small chunks; summarizer batches run
    one after another. The output always has one entry per input, in order.
    """

    def __init__(
        self,
        ai_service: AIService,
        extraction_service: ContentExtractionService,
        batch_size: int = 5,
        fetch_batch_size: int = 5,
        max_content_chars: int = 4000,
    ):
        self.ai = ai_service
        self.extractor = extraction_service
        self.batch_size = max(1, batch_size)
        self.fetch_batch_size = max(1, fetch_batch_size)
        self.max_content_chars = max_content_chars
        self.logger = logging.getLogger(__name__)

        self.stats: Dict[str, int] = {
            "full_text_fetched": 0,
            "batches": 0,
            "degraded_batches": 0,
        }

    async def enrich(self, records: List[RawRecord]) -> List[EnrichedRecord]:
        self.stats = {"full_text_fetched": 0, "batches": 0, "degraded_batches": 0}
        if not records:
            return []

        with_text = await self.fetch_full_text(records)

        enriched: List[EnrichedRecord] = []
        for i in range(0, len(with_text), self.batch_size):
            chunk = with_text[i:i + self.batch_size]
            enriched.extend(await self._summarize_batch(chunk, i // self.batch_size + 1))

        self.logger.info(
            f"🧠 Enriched {len(enriched)} records in {self.stats['batches']} batches "
            f"({self.stats['degraded_batches']} degraded, {self.stats['full_text_fetched']} with full text)"
        )
        return enriched

    async def fetch_full_text(self, records: List[RawRecord]) -> List[RawRecord]:
        out: List[RawRecord] = []
        for i in range(0, len(records), self.fetch_batch_size):
            chunk = records[i:i + self.fetch_batch_size]
            outcomes = await gather_settled(self.extractor.extract(r.url) for r in chunk)
            for record, outcome in zip(chunk, outcomes):
                if not outcome.ok:
                    self.logger.warning(f"Content extraction error for {record.url}: {outcome.error}")
                text = outcome.value if outcome.ok else None
                if text:
                    self.stats["full_text_fetched"] += 1
                out.append(record.with_full_text(text or None))
        return out

    async def _summarize_batch(self, batch: List[RawRecord], batch_no: int) -> List[EnrichedRecord]:
        self.stats["batches"] += 1
        try:
            reply = await self.ai.generate(
                "briefing_batch",
                {"articles": self._format_articles(batch)},
                json_mode=True,
            )
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"❌ Briefing batch {batch_no} failed: {e}")
            return self._degrade(batch)

        parsed = parse_briefing_response(reply)
        if isinstance(parsed, BriefingParseError):
            self.logger.error(f"❌ Briefing batch {batch_no} unparseable: {parsed.reason}")
            return self._degrade(batch)

        if len(parsed.items) != len(batch):
            self.logger.warning(
                f"Briefing batch {batch_no} returned {len(parsed.items)} items for {len(batch)} articles"
            )
        return map_briefings(batch, parsed.items)

    def _degrade(self, batch: List[RawRecord]) -> List[EnrichedRecord]:
        self.stats["degraded_batches"] += 1
        return [EnrichedRecord.empty(r) for r in batch]

    def _format_articles(self, batch: List[RawRecord]) -> str:
        blocks = []
        for idx, r in enumerate(batch, start=1):
            content = (r.full_text or r.snippet or "")[: self.max_content_chars]
            blocks.append(
                f"ARTICLE {idx}:\n"
                f"Title: {r.title}\n"
                f"Source: {r.source_name}\n"
                f"Category: {r.category.value}\n"
                f"URL: {r.url}\n"
                f"Content: {content}\n"
                f"---"
            )
        return "\n".join(blocks)
