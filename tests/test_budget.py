"""Tests for the daily enrichment quota."""

from feed_digest.models.content import ScoredRecord
from feed_digest.pipeline.quota_validator import DailyUsage, partition_by_budget

from tests.conftest import make_record


def _ranked(n):
    return [ScoredRecord(record=make_record(f"https://example.com/{i}"), score=n - i) for i in range(n)]


def test_partition_takes_top_of_ranking_up_to_run_cap():
    ranked = _ranked(30)

    partition = partition_by_budget(ranked, daily_limit=50, per_run_cap=20, used_today=0)

    assert partition.quota == 20
    assert partition.remaining == 50
    assert [r.url for r in partition.enrich] == [s.record.url for s in ranked[:20]]
    assert len(partition.enrich) + len(partition.basic) == len(ranked)


def test_partition_limited_by_remaining_daily_budget():
    partition = partition_by_budget(_ranked(10), daily_limit=50, per_run_cap=20, used_today=45)

    assert partition.quota == 5
    assert len(partition.enrich) == 5
    assert len(partition.basic) == 5


def test_partition_with_exhausted_budget_enriches_nothing():
    partition = partition_by_budget(_ranked(4), daily_limit=50, per_run_cap=20, used_today=60)

    assert partition.remaining == 0
    assert partition.quota == 0
    assert partition.enrich == []
    assert len(partition.basic) == 4


def test_quota_larger_than_batch():
    partition = partition_by_budget(_ranked(3), daily_limit=50, per_run_cap=20, used_today=0)

    assert len(partition.enrich) == 3
    assert partition.basic == []


def test_daily_usage_serializes():
    assert DailyUsage(used=12, limit=50, remaining=38).to_dict() == {"used": 12, "limit": 50, "remaining": 38}


def test_nearly_spent_budget_caps_quota_regardless_of_batch_size():
    for size in (3, 40):
        partition = partition_by_budget(_ranked(size), daily_limit=50, per_run_cap=20, used_today=48)

        assert partition.quota == 2
        assert len(partition.enrich) == 2
        assert len(partition.basic) == size - 2
