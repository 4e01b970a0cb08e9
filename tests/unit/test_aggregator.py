"""Tests for run status derivation and aggregation."""

import pytest

from tests.payloads import NOW, root_metadata, store_task
from trend_scout.models.tasks import ExpansionStats, KeywordDetection, RunStatus, SpikePriority, TaskCounts
from trend_scout.pipeline.aggregator import RunAggregator, derive_run_status


class TestDeriveRunStatus:
    """Tests for derive_run_status."""

    @pytest.mark.parametrize(
        "counts,expected",
        [
            (TaskCounts(total=5, completed=3, queued=2, error=0), RunStatus.RUNNING),
            (TaskCounts(total=5, completed=3, queued=0, error=2), RunStatus.COMPLETED_WITH_ERRORS),
            (TaskCounts(total=5, completed=5, queued=0, error=0), RunStatus.COMPLETED),
            (TaskCounts(total=5, completed=2, queued=2, error=1), RunStatus.RUNNING_WITH_ERRORS),
            (TaskCounts(), RunStatus.COMPLETED),
        ],
    )
    def test_status(self, counts, expected):
        assert derive_run_status(counts) == expected


class TestRunAggregator:
    """Tests for RunAggregator.refresh."""

    def test_refresh_updates_status_and_metadata(self, repository):
        run = repository.create_run(
            status="running", trigger_source="test", root_keywords=["ai agent"], metadata={"markets": ["global"]}
        )
        store_task(repository, run.id, "t1", "ai agent", root_metadata(), status="completed", cost=0.01)
        store_task(repository, run.id, "t2", "ai agent", root_metadata(), status="error", cost=0.02)
        store_task(repository, run.id, "t3", "agent crm", root_metadata(), status="queued", cost=None)

        stats = ExpansionStats(
            queued=3,
            recorded=[
                KeywordDetection(keyword="agent crm", priority=SpikePriority.HOT),
                KeywordDetection(keyword="ai sdr", priority=SpikePriority.HOT),
                KeywordDetection(keyword="crm agent", priority=None),
            ],
        )

        status = RunAggregator(repository).refresh(run.id, stats, now=NOW)

        assert status == RunStatus.RUNNING_WITH_ERRORS
        updated = repository.get_run(run.id)
        assert updated.status == "running_with_errors"
        assert updated.metadata["markets"] == ["global"]
        assert updated.metadata["task_counts"] == {"total": 3, "completed": 1, "queued": 1, "error": 1}
        assert updated.metadata["cost_total_usd"] == pytest.approx(0.03)
        assert updated.metadata["last_callback_at"] == NOW.isoformat()
        assert updated.metadata["keyword_spikes"] == {
            "queued_tasks": 3,
            "recorded_keywords": ["agent crm", "ai sdr", "crm agent"],
            "priority_counts": {"24h": 2, "unknown": 1},
            "updated_at": NOW.isoformat(),
        }

    def test_refresh_without_stats_keeps_previous_spikes(self, repository):
        run = repository.create_run(
            status="running",
            trigger_source="test",
            root_keywords=["ai agent"],
            metadata={"keyword_spikes": {"recorded_keywords": ["agent crm"]}},
        )
        store_task(repository, run.id, "t1", "ai agent", root_metadata(), status="completed")

        status = RunAggregator(repository).refresh(run.id, now=NOW)

        assert status == RunStatus.COMPLETED
        assert repository.get_run(run.id).metadata["keyword_spikes"] == {"recorded_keywords": ["agent crm"]}

    def test_empty_stats_keep_previous_spikes(self, repository):
        previous = {"queued_tasks": 2, "recorded_keywords": ["agent crm"], "priority_counts": {"24h": 1}}
        run = repository.create_run(
            status="running",
            trigger_source="test",
            root_keywords=["ai agent"],
            metadata={"keyword_spikes": previous},
        )
        store_task(repository, run.id, "t1", "ai agent", root_metadata(), status="completed")

        RunAggregator(repository).refresh(run.id, ExpansionStats(), now=NOW)

        updated = repository.get_run(run.id)
        assert updated.metadata["keyword_spikes"] == previous
        assert updated.metadata["last_callback_at"] == NOW.isoformat()

    def test_unknown_run(self, repository):
        assert RunAggregator(repository).refresh("missing-run", now=NOW) is None
