"""Pydantic models for runs, tasks and their discovery lineage."""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

# DataForSEO status codes at or above this value are task failures
PROVIDER_ERROR_STATUS = 40000

TASK_METADATA_VERSION = 1


class TaskStatus(str, Enum):
    """Lifecycle of a posted task: queued -> completed | error."""

    QUEUED = "queued"
    COMPLETED = "completed"
    ERROR = "error"


class RunStatus(str, Enum):
    """Aggregate status of a discovery run."""

    QUEUED = "queued"
    RUNNING = "running"
    RUNNING_WITH_ERRORS = "running_with_errors"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class TaskSource(str, Enum):
    """Where a task came from."""

    ROOT = "root"  # Seed keyword (root list, news, candidate)
    RISING = "rising"  # Child spawned from another task's rising queries


class SpikePriority(str, Enum):
    """Urgency bucket for a detected spike."""

    HOT = "24h"
    RECENT = "72h"


class DemandLabel(str, Enum):
    TOOL = "tool"
    NON_TOOL = "non_tool"
    UNCLEAR = "unclear"


def status_from_code(status_code: int | None) -> TaskStatus:
    """Map a provider status code to the status a freshly posted task is stored with."""
    if status_code is None:
        return TaskStatus.QUEUED
    return TaskStatus.ERROR if status_code >= PROVIDER_ERROR_STATUS else TaskStatus.QUEUED


class StoredDemandAssessment(BaseModel):
    """Demand classifier outcome as persisted in task and keyword metadata."""

    label: DemandLabel = DemandLabel.UNCLEAR
    score: float | None = None
    reason: str | None = None
    summary: str | None = None
    updated_at: datetime | None = None

    @field_validator("label", mode="before")
    @classmethod
    def coerce_label(cls, v: Any) -> Any:
        """Anything that is not a known label is unclear."""
        if isinstance(v, str):
            v = v.strip().lower()
            if v in {label.value for label in DemandLabel}:
                return v
        if isinstance(v, DemandLabel):
            return v
        return DemandLabel.UNCLEAR


class TaskMetadata(BaseModel):
    """
    Discovery lineage carried with every task.

    Round-trips through the provider (as the task ``tag``) and is stored in
    the task payload. Unknown keys are dropped on parse so downstream steps
    only ever see the fields declared here.
    """

    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    version: int = TASK_METADATA_VERSION
    source: TaskSource = TaskSource.ROOT

    # Root lineage
    root_id: str | None = None
    root_keyword: str | None = None
    root_label: str | None = None
    baseline: str | None = None

    # Seed provenance
    seed_origin: str | None = None
    news_id: str | None = None
    news_source: str | None = None
    news_title: str | None = None
    news_published_at: str | None = None
    candidate_id: str | None = None
    candidate_source: str | None = None
    candidate_llm_label: str | None = None
    candidate_llm_score: float | None = None
    candidate_captured_at: str | None = None

    # Market and time range
    locale: str | None = None
    time_range: str | None = None
    location_name: str | None = None
    location_code: int | None = None
    language_name: str | None = None

    # Expansion
    discovery_depth: int | None = Field(default=None, ge=0)
    parent_task_id: str | None = None
    parent_keyword: str | None = None
    demand_assessment: StoredDemandAssessment | None = None

    @field_validator("discovery_depth", mode="before")
    @classmethod
    def clamp_depth(cls, v: Any) -> Any:
        """Negative depths clamp to 0; fractional depths are floored."""
        if isinstance(v, bool) or v is None:
            return None
        if isinstance(v, (int, float)):
            return max(0, int(v))
        return v

    @field_validator("root_id", "candidate_id", "news_id", "parent_task_id", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def is_root(self) -> bool:
        return self.source == TaskSource.ROOT

    @property
    def has_root_lineage(self) -> bool:
        return bool(self.root_id and self.root_keyword and self.root_label)

    @property
    def depth(self) -> int:
        """Discovery depth, defaulting to 0 for roots and 1 for rising tasks."""
        if self.discovery_depth is not None:
            return self.discovery_depth
        return 0 if self.is_root else 1

    def to_tag(self) -> str:
        """Serialize for the provider ``tag`` field."""
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_raw(cls, value: Any) -> "TaskMetadata | None":
        """Parse a stored dict or JSON tag. Returns None when unusable."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            if not value.strip():
                return None
            try:
                value = json.loads(value)
            except ValueError:
                logger.error(f"Failed to decode metadata tag: {value[:200]}")
                return None
        if not isinstance(value, dict):
            return None
        try:
            return cls.model_validate(value)
        except ValidationError as e:
            logger.error(f"Invalid task metadata: {e}")
            return None


class ExploreTaskPayload(BaseModel):
    """Request body for one Google Trends Explore task."""

    time_range: str
    keywords: list[str]
    location_name: str | None = None
    location_code: int | None = None
    language_name: str | None = None
    postback_url: str | None = None
    item_types: list[str] = Field(default_factory=list)
    tag: str | None = None

    def to_request(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class QueuedExploreTask(BaseModel):
    """A task ready to be posted to the provider."""

    run_id: str
    keyword: str
    locale: str
    timeframe: str
    payload: ExploreTaskPayload
    metadata: TaskMetadata


class PostedExploreTask(BaseModel):
    """A task the provider accepted (or rejected with an id)."""

    task_id: str
    status_code: int = 0
    status_message: str | None = None
    cost: float | None = None
    queue: QueuedExploreTask
    request: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= PROVIDER_ERROR_STATUS


class PostError(BaseModel):
    task: QueuedExploreTask
    reason: str


class PostResult(BaseModel):
    """Outcome of posting a set of tasks."""

    posted: list[PostedExploreTask] = Field(default_factory=list)
    errors: list[PostError] = Field(default_factory=list)


class CallbackTask(BaseModel):
    """One task result delivered by the provider callback."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    status_code: int | None = None
    status_message: str | None = None
    cost: float | None = None
    result: Any = None
    data: dict[str, Any] | None = None
    tag: str | None = None

    @property
    def succeeded(self) -> bool:
        return (self.status_code or 0) < PROVIDER_ERROR_STATUS


class CallbackPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    status_code: int | None = None
    status_message: str | None = None
    tasks: list[CallbackTask] = Field(default_factory=list)

    @field_validator("tasks", mode="before")
    @classmethod
    def drop_non_objects(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, dict)]


class TaskCounts(BaseModel):
    """Status counts for the tasks of one run."""

    total: int = 0
    completed: int = 0
    queued: int = 0
    error: int = 0


class SeriesPoint(BaseModel):
    timestamp: datetime
    value: float


class RisingEntry(BaseModel):
    """A rising query or topic surfaced in another keyword's result."""

    keyword: str
    value: float = 0.0


class SpikeAnalysis(BaseModel):
    """Outcome of the spike heuristic for one series."""

    qualifies: bool
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None
    priority: SpikePriority | None = None
    spike_score: float | None = None
    baseline_max: float | None = None
    recent_max: float | None = None
    reason: str | None = None


class KeywordDetection(BaseModel):
    """A keyword recorded as a new spike while processing a callback."""

    keyword: str
    priority: SpikePriority | None = None


class ExpansionStats(BaseModel):
    """Per-run expansion/detection statistics accumulated over a callback batch."""

    queued: int = 0
    recorded: list[KeywordDetection] = Field(default_factory=list)
