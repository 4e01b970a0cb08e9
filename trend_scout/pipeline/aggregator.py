"""Run status and metadata aggregation after each callback batch."""

import logging
from collections import Counter
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from trend_scout.db.repository import TrendRepository
from trend_scout.models.tasks import ExpansionStats, RunStatus, TaskCounts
from trend_scout.utils.time import utcnow

logger = logging.getLogger(__name__)


def derive_run_status(counts: TaskCounts) -> RunStatus:
    """
    Aggregate status from task counts.

    A run with pending tasks is running; otherwise it is completed. Either
    carries ``_with_errors`` when any task failed.
    """
    if counts.queued > 0:
        return RunStatus.RUNNING_WITH_ERRORS if counts.error > 0 else RunStatus.RUNNING
    return RunStatus.COMPLETED_WITH_ERRORS if counts.error > 0 else RunStatus.COMPLETED


def summarize_stats(stats: ExpansionStats, now: datetime) -> dict:
    priorities = Counter(
        detection.priority.value if detection.priority else "unknown" for detection in stats.recorded
    )
    return {
        "queued_tasks": stats.queued,
        "recorded_keywords": [detection.keyword for detection in stats.recorded],
        "priority_counts": dict(priorities),
        "updated_at": now.isoformat(),
    }


class RunAggregator:
    """Recomputes a run's status, task counts and cost from its stored tasks."""

    def __init__(self, repository: TrendRepository):
        self.repository = repository

    def refresh(
        self,
        run_id: str,
        stats: ExpansionStats | None = None,
        now: datetime | None = None,
    ) -> RunStatus | None:
        """
        Update one run. Existing metadata keys are kept; aggregation keys are
        overwritten.

        Returns:
            The new status, or None if the run could not be updated
        """
        now = now or utcnow()

        try:
            run = self.repository.get_run(run_id)
            if run is None:
                logger.warning(f"Cannot aggregate unknown run {run_id}")
                return None

            counts = self.repository.get_run_task_status_counts(run_id)
            cost_total = self.repository.get_run_task_cost_total(run_id)
            status = derive_run_status(counts)

            metadata = {
                **run.metadata,
                "last_callback_at": now.isoformat(),
                "task_counts": counts.model_dump(),
                "cost_total_usd": cost_total,
            }
            # A batch that queued and recorded nothing keeps the previous summary
            if stats is not None and (stats.queued or stats.recorded):
                metadata["keyword_spikes"] = summarize_stats(stats, now)

            self.repository.update_run(run_id, status=status.value, metadata=metadata)
        except SQLAlchemyError as e:
            logger.error(f"Failed to aggregate run {run_id}: {e}")
            return None

        logger.info(
            f"Run {run_id} aggregated: {status.value}",
            extra={"task_counts": counts.model_dump(), "cost_total_usd": cost_total},
        )
        return status
