"""DataForSEO postback handling: task state, detection, expansion and run aggregation."""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from trend_scout.analysis.series import decode_metadata_tag
from trend_scout.db.repository import TrendRepository
from trend_scout.models.tasks import (
    CallbackPayload,
    CallbackTask,
    ExpansionStats,
    TaskStatus,
)
from trend_scout.pipeline.aggregator import RunAggregator
from trend_scout.pipeline.expansion import ExpansionController
from trend_scout.utils.time import utcnow

logger = logging.getLogger(__name__)


class CallbackOutcome(BaseModel):
    """What one callback delivery changed."""

    processed: int = 0
    errors: int = 0
    skipped: int = 0
    runs_updated: list[str] = Field(default_factory=list)


class CallbackProcessor:
    """
    Applies a callback payload to stored tasks.

    Each task is processed independently: an unknown or already completed
    task is skipped, a storage failure is logged and the rest of the batch
    still runs. Every run touched by the batch is re-aggregated at the end.
    """

    def __init__(
        self,
        repository: TrendRepository,
        expansion: ExpansionController,
        aggregator: RunAggregator | None = None,
    ):
        self.repository = repository
        self.expansion = expansion
        self.aggregator = aggregator or RunAggregator(repository)

    async def process(self, payload: CallbackPayload | dict[str, Any], now: datetime | None = None) -> CallbackOutcome:
        if not isinstance(payload, CallbackPayload):
            payload = CallbackPayload.model_validate(payload if isinstance(payload, dict) else {})

        now = now or utcnow()
        outcome = CallbackOutcome()
        runs: list[str] = []
        stats: dict[str, ExpansionStats] = {}

        for callback_task in payload.tasks:
            run_id = await self._process_task(callback_task, outcome, stats, now)
            if run_id and run_id not in runs:
                runs.append(run_id)

        for run_id in runs:
            if self.aggregator.refresh(run_id, stats.get(run_id), now=now) is not None:
                outcome.runs_updated.append(run_id)

        logger.info(
            f"Callback processed: processed={outcome.processed} errors={outcome.errors} "
            f"skipped={outcome.skipped} runs={len(outcome.runs_updated)}"
        )
        return outcome

    async def _process_task(
        self,
        callback_task: CallbackTask,
        outcome: CallbackOutcome,
        stats: dict[str, ExpansionStats],
        now: datetime,
    ) -> str | None:
        """Process one task. Returns its run id when the task was applied."""
        task_id = callback_task.id
        if not task_id:
            outcome.skipped += 1
            return None

        try:
            task = self.repository.get_task_by_task_id(task_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load task {task_id}: {e}")
            outcome.skipped += 1
            return None

        if task is None:
            logger.warning(f"Callback for unknown task {task_id}")
            outcome.skipped += 1
            return None

        if task.completed_at is not None:
            logger.warning(f"Duplicate callback for completed task {task_id}, ignoring")
            outcome.skipped += 1
            return None

        succeeded = callback_task.succeeded
        metadata = decode_metadata_tag(callback_task.tag) or task.stored_metadata
        request = task.request or callback_task.data

        try:
            self.repository.update_task(
                task_id,
                status=(TaskStatus.COMPLETED if succeeded else TaskStatus.ERROR).value,
                payload={
                    "metadata": metadata.model_dump(mode="json", exclude_none=True) if metadata else None,
                    "request": request,
                    "result": callback_task.result,
                },
                completed_at=now,
                cost=callback_task.cost if callback_task.cost is not None else task.cost,
                error=None if succeeded else callback_task.model_dump(mode="json"),
            )
        except SQLAlchemyError as e:
            # Left incomplete so a redelivery can apply it; no discovery until then
            logger.error(f"Failed to update task {task_id}: {e}")
            outcome.errors += 1
            return None

        outcome.processed += 1
        if not succeeded:
            outcome.errors += 1
            logger.warning(
                f"Task {task_id} failed: {callback_task.status_code} {callback_task.status_message}"
            )
            return task.run_id

        run_stats = stats.setdefault(task.run_id, ExpansionStats())
        try:
            run_stats.queued += await self.expansion.expand(task, metadata, request, callback_task.result, now=now)
            detection = await self.expansion.detect(task, metadata, callback_task.result, now=now)
            if detection is not None:
                run_stats.recorded.append(detection)
        except Exception as e:
            logger.exception(f"Failed to run discovery for task {task_id}: {e}")

        return task.run_id
