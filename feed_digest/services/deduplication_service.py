import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Set

from feed_digest.models.content import RawRecord
from feed_digest.services.article_store import ArticleStore, StoreError


@dataclass
class DedupOutcome:
    new: List[RawRecord] = field(default_factory=list)
    duplicates: int = 0
    deleted: int = 0


def dedupe_batch(records: Iterable[RawRecord]) -> List[RawRecord]:
    """Keep the first record per url, preserving input order."""
    seen: Set[str] = set()
    unique: List[RawRecord] = []
    for record in records:
        if record.url in seen:
            continue
        seen.add(record.url)
        unique.append(record)
    return unique


class DeduplicationService:
    """
    Drops records the store already knows about or that were soft-deleted.

    Store read failures fail open: the candidates are treated as new and the
    conflict-ignoring upsert catches anything that slips through.
    """

    def __init__(self, store: ArticleStore) -> None:
        self.store = store
        self.logger = logging.getLogger(__name__)

    async def filter_known(self, records: List[RawRecord]) -> DedupOutcome:
        deleted = await self._deleted_urls()
        outcome = DedupOutcome()

        candidates = []
        for record in records:
            if record.url in deleted:
                outcome.deleted += 1
            else:
                candidates.append(record)

        try:
            existing = await self.store.existing_urls(r.url for r in candidates)
        except StoreError as e:
            self.logger.warning(f"⚠️ Existence check failed, treating {len(candidates)} records as new: {e}")
            existing = set()

        for record in candidates:
            if record.url in existing:
                outcome.duplicates += 1
            else:
                outcome.new.append(record)

        self.logger.info(
            f"🔍 Dedup: {len(outcome.new)} new, {outcome.duplicates} already stored, "
            f"{outcome.deleted} deleted"
        )
        return outcome

    async def _deleted_urls(self) -> Set[str]:
        try:
            return await self.store.deleted_urls()
        except StoreError as e:
            self.logger.warning(f"⚠️ Could not read deleted urls: {e}")
            return set()
