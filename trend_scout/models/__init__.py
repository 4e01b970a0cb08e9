"""Data models for the trend discovery engine."""

from trend_scout.models.explore import (
    ExploreItem,
    ExploreResult,
    GraphItem,
    MapItem,
    NormalizedTaskResult,
    QueriesListItem,
    TopicsListItem,
    UnknownItem,
    normalize_task_results,
)
from trend_scout.models.tasks import (
    CallbackPayload,
    CallbackTask,
    DemandLabel,
    ExpansionStats,
    ExploreTaskPayload,
    KeywordDetection,
    PostedExploreTask,
    PostError,
    PostResult,
    QueuedExploreTask,
    RisingEntry,
    RunStatus,
    SeriesPoint,
    SpikeAnalysis,
    SpikePriority,
    StoredDemandAssessment,
    TaskCounts,
    TaskMetadata,
    TaskSource,
    TaskStatus,
)

__all__ = [
    "ExploreItem",
    "ExploreResult",
    "GraphItem",
    "MapItem",
    "NormalizedTaskResult",
    "QueriesListItem",
    "TopicsListItem",
    "UnknownItem",
    "normalize_task_results",
    "CallbackPayload",
    "CallbackTask",
    "DemandLabel",
    "ExpansionStats",
    "ExploreTaskPayload",
    "KeywordDetection",
    "PostedExploreTask",
    "PostError",
    "PostResult",
    "QueuedExploreTask",
    "RisingEntry",
    "RunStatus",
    "SeriesPoint",
    "SpikeAnalysis",
    "SpikePriority",
    "StoredDemandAssessment",
    "TaskCounts",
    "TaskMetadata",
    "TaskSource",
    "TaskStatus",
]
