"""Wires the clients, repository and pipeline steps together."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from trend_scout.clients.dataforseo import DataForSEOClient
from trend_scout.clients.demand_classifier import ClassifierCache, DemandClassifierClient
from trend_scout.config import Settings, get_settings
from trend_scout.db.repository import TrendRepository
from trend_scout.models.tasks import CallbackPayload
from trend_scout.pipeline.aggregator import RunAggregator
from trend_scout.pipeline.callback import CallbackOutcome, CallbackProcessor
from trend_scout.pipeline.expansion import ExpansionController
from trend_scout.pipeline.inspector import RunDetail, RunSummary, get_run_detail, list_runs
from trend_scout.pipeline.poster import TaskPoster
from trend_scout.pipeline.seeding import DEFAULT_TRIGGER_SOURCE, SeedOutcome, Seeder

logger = logging.getLogger(__name__)


class TrendDiscovery:
    """
    Entry point for the discovery engine.

    Flow:
    1. ``trigger_run`` seeds a run and posts its depth-0 tasks
    2. DataForSEO calls back with results; ``process_callback`` stores them,
       records keyword spikes and posts rising children
    3. Runs are re-aggregated after every callback batch

    Clients can be injected for testing.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        repository: TrendRepository | None = None,
        dataforseo_client: DataForSEOClient | None = None,
        classifier: DemandClassifierClient | None = None,
        classifier_cache: ClassifierCache | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository or TrendRepository(settings=self.settings)

        self.dataforseo = dataforseo_client or DataForSEOClient(settings=self.settings)
        self.classifier = classifier or DemandClassifierClient(
            cache=classifier_cache, settings=self.settings
        )

        self.poster = TaskPoster(self.repository, self.dataforseo, self.settings)
        self.expansion = ExpansionController(self.repository, self.poster, self.classifier, self.settings)
        self.aggregator = RunAggregator(self.repository)
        self.seeder = Seeder(self.repository, self.poster, self.settings)
        self.processor = CallbackProcessor(self.repository, self.expansion, self.aggregator)

    async def trigger_run(
        self, callback_url: str, trigger_source: str = DEFAULT_TRIGGER_SOURCE
    ) -> SeedOutcome:
        return await self.seeder.queue_root_tasks(callback_url, trigger_source=trigger_source)

    async def process_callback(self, payload: CallbackPayload | dict[str, Any]) -> CallbackOutcome:
        return await self.processor.process(payload)

    async def replay_callback(self, path: Path) -> CallbackOutcome:
        """Process a callback body saved to disk."""
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
        logger.info(f"Replaying callback from {path}")
        return await self.process_callback(payload)

    def list_runs(self, limit: int = 20) -> list[RunSummary]:
        return list_runs(self.repository, limit=limit)

    def get_run_detail(self, run_id: str) -> RunDetail | None:
        return get_run_detail(self.repository, run_id)

    async def close(self) -> None:
        """Close all client connections."""
        await asyncio.gather(
            self.dataforseo.close(),
            self.classifier.close(),
            return_exceptions=True,
        )

    async def __aenter__(self) -> "TrendDiscovery":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
