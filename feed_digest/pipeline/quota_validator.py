"""
Daily enrichment quota.

Splits a ranked list into the records that get summarized this run and the
records saved without enrichment. The daily limit and per-run cap together
bound how many summarizer calls a day of runs can make.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from feed_digest.models.content import RawRecord, ScoredRecord


logger = logging.getLogger(__name__)


@dataclass
class DailyUsage:
    used: int
    limit: int
    remaining: int

    def to_dict(self) -> Dict[str, int]:
        return {"used": self.used, "limit": self.limit, "remaining": self.remaining}


@dataclass
class BudgetPartition:
    """Result of applying the quota to a ranked list"""
    enrich: List[RawRecord] = field(default_factory=list)
    basic: List[RawRecord] = field(default_factory=list)
    quota: int = 0
    remaining: int = 0


def partition_by_budget(
    ranked: List[ScoredRecord],
    daily_limit: int,
    per_run_cap: int,
    used_today: int,
) -> BudgetPartition:
    """
    Take the top ``min(remaining, per_run_cap)`` records for enrichment.

    ``len(enrich) + len(basic) == len(ranked)`` and ``len(enrich) <= quota``.
    """
    remaining = max(0, daily_limit - used_today)
    quota = max(0, min(remaining, per_run_cap))
    records = [s.record for s in ranked]

    partition = BudgetPartition(
        enrich=records[:quota],
        basic=records[quota:],
        quota=quota,
        remaining=remaining,
    )
    logger.info(
        f"💰 Budget: {used_today}/{daily_limit} used today, quota {quota} -> "
        f"{len(partition.enrich)} enrich, {len(partition.basic)} basic"
    )
    return partition
