"""Discovery pipeline: seeding, posting, callbacks, detection and expansion."""

from trend_scout.pipeline.aggregator import RunAggregator, derive_run_status
from trend_scout.pipeline.callback import CallbackOutcome, CallbackProcessor
from trend_scout.pipeline.discovery import TrendDiscovery
from trend_scout.pipeline.expansion import ExpansionController
from trend_scout.pipeline.inspector import RunDetail, RunSummary, get_run_detail, list_runs
from trend_scout.pipeline.poster import TaskPoster
from trend_scout.pipeline.seeding import SeedOutcome, Seeder

__all__ = [
    "RunAggregator",
    "derive_run_status",
    "CallbackOutcome",
    "CallbackProcessor",
    "TrendDiscovery",
    "ExpansionController",
    "RunDetail",
    "RunSummary",
    "get_run_detail",
    "list_runs",
    "TaskPoster",
    "SeedOutcome",
    "Seeder",
]
