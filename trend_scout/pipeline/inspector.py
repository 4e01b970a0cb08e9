"""Read models for inspecting runs and their tasks."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from trend_scout.db.repository import TrendRepository
from trend_scout.models.records import TrendRun, TrendTask
from trend_scout.models.tasks import TaskCounts


class RunSummary(BaseModel):
    id: str
    status: str
    trigger_source: str | None = None
    root_keywords: list[str] = Field(default_factory=list)
    triggered_at: datetime
    updated_at: datetime
    task_counts: TaskCounts = Field(default_factory=TaskCounts)
    cost_total_usd: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskItem(BaseModel):
    task_id: str
    keyword: str
    locale: str
    timeframe: str
    location_name: str | None = None
    status: str
    cost: float | None = None
    posted_at: datetime | None = None
    completed_at: datetime | None = None
    metadata: dict[str, Any] | None = None
    request: dict[str, Any] | None = None
    result: Any = None
    error_message: str | None = None


class RunDetail(BaseModel):
    run: RunSummary
    tasks: list[TaskItem] = Field(default_factory=list)


def extract_error_message(error: Any) -> str | None:
    """Human-readable message from a stored task error."""
    if error is None:
        return None
    if isinstance(error, str):
        return error.strip() or None
    if isinstance(error, dict):
        for key in ("message", "status_message", "detail"):
            value = error.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def _summary(repository: TrendRepository, run: TrendRun) -> RunSummary:
    return RunSummary(
        id=run.id,
        status=run.status,
        trigger_source=run.trigger_source,
        root_keywords=run.root_keywords,
        triggered_at=run.triggered_at,
        updated_at=run.updated_at,
        task_counts=repository.get_run_task_status_counts(run.id),
        cost_total_usd=repository.get_run_task_cost_total(run.id),
        metadata=run.metadata,
    )


def _task_item(task: TrendTask) -> TaskItem:
    metadata = task.payload.get("metadata")
    return TaskItem(
        task_id=task.task_id,
        keyword=task.keyword,
        locale=task.locale,
        timeframe=task.timeframe,
        location_name=task.location_name,
        status=task.status,
        cost=task.cost,
        posted_at=task.posted_at,
        completed_at=task.completed_at,
        metadata=metadata if isinstance(metadata, dict) else None,
        request=task.request,
        result=task.result,
        error_message=extract_error_message(task.error),
    )


def list_runs(repository: TrendRepository, limit: int = 20) -> list[RunSummary]:
    return [_summary(repository, run) for run in repository.list_runs(limit=limit)]


def get_run_detail(repository: TrendRepository, run_id: str) -> RunDetail | None:
    run = repository.get_run(run_id)
    if run is None:
        return None
    return RunDetail(
        run=_summary(repository, run),
        tasks=[_task_item(task) for task in repository.get_tasks_by_run(run_id)],
    )
