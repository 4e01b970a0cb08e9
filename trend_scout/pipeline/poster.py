"""Batch submission of Explore tasks to DataForSEO."""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from trend_scout.clients.base import batch_items
from trend_scout.clients.dataforseo import DataForSEOClient
from trend_scout.config import Settings, get_settings
from trend_scout.db.repository import TrendRepository
from trend_scout.models.explore import to_int, to_number, to_str
from trend_scout.models.tasks import (
    PostedExploreTask,
    PostError,
    PostResult,
    QueuedExploreTask,
    status_from_code,
)
from trend_scout.utils.time import utcnow

logger = logging.getLogger(__name__)

# DataForSEO rejects tags longer than this
MAX_TAG_LENGTH = 255

MISSING_TASK_ID = "Missing task id in DataForSEO response"


def build_request(task: QueuedExploreTask) -> dict[str, Any]:
    """Provider request for a task, carrying the metadata tag when it fits."""
    request = task.payload.to_request()
    if "tag" not in request:
        tag = task.metadata.to_tag()
        if len(tag) <= MAX_TAG_LENGTH:
            request["tag"] = tag
    return request


class TaskPoster:
    """
    Posts queued tasks in bounded batches and records them.

    Every task the provider answered with an id is stored, including ones
    it rejected with an error status, so failed submissions stay visible.
    A failing batch marks its tasks as errors and later batches still run.
    """

    def __init__(
        self,
        repository: TrendRepository,
        client: DataForSEOClient | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.client = client or DataForSEOClient(settings=self.settings)
        self.batch_size = min(self.settings.task_post_batch_size, DataForSEOClient.MAX_TASKS_PER_REQUEST)

    async def post_tasks(self, tasks: list[QueuedExploreTask]) -> PostResult:
        result = PostResult()
        if not tasks:
            return result

        logger.info(
            f"Posting {len(tasks)} explore tasks",
            extra={"keywords": [task.keyword for task in tasks]},
        )

        for batch in batch_items(tasks, self.batch_size):
            requests = [build_request(task) for task in batch]

            try:
                response = await self.client.post_explore_tasks(requests)
            except Exception as e:
                logger.error(f"Failed to post explore tasks batch of {len(batch)}: {e}")
                result.errors.extend(PostError(task=task, reason=str(e)) for task in batch)
                continue

            self._collect(batch, requests, response, result)

        self._store(result.posted)

        logger.info(
            f"Posted explore tasks: requested={len(tasks)} "
            f"posted={len(result.posted)} errors={len(result.errors)}"
        )
        return result

    def _collect(
        self,
        batch: list[QueuedExploreTask],
        requests: list[dict[str, Any]],
        response: Any,
        result: PostResult,
    ) -> None:
        api_tasks = response.get("tasks") if isinstance(response, dict) else None
        api_tasks = api_tasks if isinstance(api_tasks, list) else []

        for index, task in enumerate(batch):
            api_task = api_tasks[index] if index < len(api_tasks) else None
            api_task = api_task if isinstance(api_task, dict) else {}

            task_id = to_str(api_task.get("id"))
            if not task_id:
                result.errors.append(PostError(task=task, reason=MISSING_TASK_ID))
                continue

            posted = PostedExploreTask(
                task_id=task_id,
                status_code=to_int(api_task.get("status_code")) or 0,
                status_message=to_str(api_task.get("status_message")),
                cost=to_number(api_task.get("cost")),
                queue=task,
                request=requests[index],
            )
            if posted.is_error:
                result.errors.append(
                    PostError(task=task, reason=posted.status_message or "Unknown DataForSEO error")
                )
            result.posted.append(posted)

    def _store(self, posted: list[PostedExploreTask]) -> None:
        if not posted:
            return

        now = utcnow()
        records = []
        for item in posted:
            queue = item.queue
            records.append(
                {
                    "run_id": queue.run_id,
                    "task_id": item.task_id,
                    "keyword": queue.keyword,
                    "locale": queue.locale,
                    "timeframe": queue.timeframe,
                    "location_name": queue.payload.location_name or queue.metadata.location_name,
                    "location_code": queue.payload.location_code or queue.metadata.location_code,
                    "language_name": queue.payload.language_name or queue.metadata.language_name,
                    "status": status_from_code(item.status_code).value,
                    "payload": {
                        "metadata": queue.metadata.model_dump(mode="json", exclude_none=True),
                        "request": item.request or build_request(queue),
                    },
                    "cost": item.cost,
                    "posted_at": now,
                    "error": (
                        {"status_code": item.status_code, "status_message": item.status_message}
                        if item.is_error
                        else None
                    ),
                }
            )

        try:
            self.repository.insert_tasks(records)
        except SQLAlchemyError as e:
            logger.error(f"Failed to store {len(records)} posted tasks: {e}")
