"""
Run trigger: collects seed keywords and posts the depth-0 root tasks.

Seeds come from three sources, in order, deduplicated by normalized
keyword:

1. Active roots configured by an operator
2. Keywords extracted from recent news items
3. Approved candidate roots
"""

import logging
from collections import Counter
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from trend_scout.analysis.series import normalize_keyword
from trend_scout.config import Settings, get_settings
from trend_scout.db.repository import TrendRepository
from trend_scout.models.explore import ALL_ITEM_TYPES
from trend_scout.models.records import CandidateRoot, TrendRoot
from trend_scout.models.tasks import (
    ExploreTaskPayload,
    QueuedExploreTask,
    RunStatus,
    TaskMetadata,
    TaskSource,
)
from trend_scout.pipeline.markets import is_global, resolve_market_info
from trend_scout.pipeline.poster import TaskPoster
from trend_scout.utils.time import utcnow

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_SOURCE = "api/trends/run"


class NewsSeed(BaseModel):
    news_id: str
    keyword: str
    locale: str
    title: str | None = None
    source: str | None = None
    published_at: str | None = None

    @property
    def root_label(self) -> str:
        title = (self.title or "").strip() or self.keyword
        return f"{title} · {self.source}" if self.source else title


class SeedOutcome(BaseModel):
    """Result of triggering a run. ``run_id`` is None when there was nothing to seed."""

    run_id: str | None = None
    posted: int = 0
    errors: int = 0
    details: list[str] = Field(default_factory=list)


class Seeder:
    """Builds and posts the root tasks of a new discovery run."""

    def __init__(
        self,
        repository: TrendRepository,
        poster: TaskPoster,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.poster = poster

    @property
    def fallback_market(self) -> str:
        return next((market for market in self.settings.markets if not is_global(market)), "us")

    def collect_news_seeds(self, seen: set[str]) -> list[NewsSeed]:
        """Unseen keywords from recent news, adding each one to ``seen``."""
        max_seeds = self.settings.news_keyword_max_seeds
        locale = "global" if "global" in self.settings.markets else self.fallback_market

        items = self.repository.get_recent_news_items(
            within_hours=self.settings.news_keyword_window_hours,
            limit=max_seeds * 3,
        )

        seeds: list[NewsSeed] = []
        for item in items:
            for candidate in item.keywords:
                if not isinstance(candidate, str):
                    continue
                keyword = candidate.strip()
                normalized = normalize_keyword(keyword)
                if not normalized or normalized in seen:
                    continue

                seen.add(normalized)
                published = item.published_at or item.created_at
                seeds.append(
                    NewsSeed(
                        news_id=item.id,
                        keyword=keyword,
                        locale=locale,
                        title=item.title,
                        source=item.source,
                        published_at=published.isoformat() if published else None,
                    )
                )
                if len(seeds) >= max_seeds:
                    return seeds
        return seeds

    def collect_candidate_seeds(self, seen: set[str]) -> list[CandidateRoot]:
        selected = []
        for candidate in self.repository.get_approved_candidates(limit=self.settings.candidate_seed_limit):
            normalized = normalize_keyword(candidate.term)
            if not normalized or normalized in seen:
                continue
            seen.add(normalized)
            selected.append(candidate)
        return selected

    def _root_task(
        self,
        run_id: str,
        keyword: str,
        locale: str,
        timeframe: str,
        postback_url: str,
        lineage: dict[str, Any],
    ) -> QueuedExploreTask:
        payload = ExploreTaskPayload(
            time_range=timeframe,
            keywords=[keyword],
            postback_url=postback_url,
            item_types=ALL_ITEM_TYPES,
        )
        metadata = TaskMetadata(
            source=TaskSource.ROOT,
            discovery_depth=0,
            locale=locale,
            time_range=timeframe,
            **lineage,
        )

        if is_global(locale):
            metadata.location_name = "Global"
        else:
            market = resolve_market_info(locale, self.fallback_market)
            payload.location_name = metadata.location_name = market.name
            payload.location_code = metadata.location_code = market.code
            payload.language_name = metadata.language_name = market.language_name

        return QueuedExploreTask(
            run_id=run_id,
            keyword=keyword,
            locale=locale,
            timeframe=timeframe,
            payload=payload,
            metadata=metadata,
        )

    def build_tasks(
        self,
        run_id: str,
        postback_url: str,
        roots: list[TrendRoot],
        news_seeds: list[NewsSeed],
        candidates: list[CandidateRoot],
    ) -> list[QueuedExploreTask]:
        timeframes = self.settings.timeframes
        tasks: list[QueuedExploreTask] = []

        for root in roots:
            lineage = {"root_id": root.id, "root_keyword": root.keyword, "root_label": root.label}
            for timeframe in timeframes:
                tasks.append(self._root_task(run_id, root.keyword, root.locale, timeframe, postback_url, lineage))

        for seed in news_seeds:
            lineage = {
                "root_id": seed.news_id,
                "root_keyword": seed.keyword,
                "root_label": seed.root_label,
                "seed_origin": "news",
                "news_id": seed.news_id,
                "news_source": seed.source,
                "news_title": seed.title,
                "news_published_at": seed.published_at,
            }
            for timeframe in timeframes:
                tasks.append(self._root_task(run_id, seed.keyword, seed.locale, timeframe, postback_url, lineage))

        for candidate in candidates:
            lineage = {
                "root_id": candidate.id,
                "root_keyword": candidate.term,
                "root_label": f"{candidate.term} · {candidate.source or 'candidate'}",
                "seed_origin": "candidate",
                "candidate_id": candidate.id,
                "candidate_source": candidate.source,
                "candidate_llm_label": candidate.label,
                "candidate_llm_score": candidate.score,
                "candidate_captured_at": candidate.captured_at.isoformat(),
            }
            for timeframe in timeframes:
                tasks.append(self._root_task(run_id, candidate.term, "global", timeframe, postback_url, lineage))

        return tasks

    async def queue_root_tasks(
        self, callback_url: str, trigger_source: str = DEFAULT_TRIGGER_SOURCE
    ) -> SeedOutcome:
        """
        Create a run and post one root task per (seed, timeframe).

        Args:
            callback_url: Postback URL the provider calls with results
            trigger_source: Recorded on the run

        Returns:
            SeedOutcome with the run id and posting counts
        """
        roots = self.repository.get_active_roots()
        seen = {normalize_keyword(root.keyword) for root in roots}
        seen.discard("")

        news_seeds = self.collect_news_seeds(seen)
        candidates = self.collect_candidate_seeds(seen)

        seed_keywords = (
            [root.keyword for root in roots]
            + [seed.keyword for seed in news_seeds]
            + [candidate.term for candidate in candidates]
        )
        if not seed_keywords:
            logger.info("No seed keywords, skipping run")
            return SeedOutcome()

        run_metadata = {
            "markets": self.settings.markets,
            "timeframes": self.settings.timeframes,
            "root_count": len(roots),
            "news_keyword_count": len(news_seeds),
            "candidate_root_count": len(candidates),
            "news_keyword_window_hours": self.settings.news_keyword_window_hours,
            "seed_keyword_total": len(seed_keywords),
            "news_keywords": [seed.keyword for seed in news_seeds],
            "candidate_keywords": [candidate.term for candidate in candidates],
            "candidate_sources": dict(Counter(candidate.source or "unknown" for candidate in candidates)),
        }

        run = self.repository.create_run(
            status=RunStatus.QUEUED.value,
            trigger_source=trigger_source,
            root_keywords=seed_keywords,
            metadata=run_metadata,
        )
        logger.info(
            f"Created run {run.id} with {len(seed_keywords)} seed keywords",
            extra={"roots": len(roots), "news": len(news_seeds), "candidates": len(candidates)},
        )

        queued = self.build_tasks(run.id, callback_url, roots, news_seeds, candidates)
        result = await self.poster.post_tasks(queued)

        candidate_ids = sorted(
            {item.queue.metadata.candidate_id for item in result.posted if item.queue.metadata.candidate_id}
        )
        if candidate_ids:
            try:
                self.repository.mark_candidates_queued(candidate_ids)
            except SQLAlchemyError as e:
                logger.error(f"Failed to mark {len(candidate_ids)} candidates queued: {e}")

        if not result.posted:
            status = RunStatus.FAILED
        elif result.errors:
            status = RunStatus.RUNNING_WITH_ERRORS
        else:
            status = RunStatus.RUNNING

        metadata = {
            **run.metadata,
            "queued_tasks": len(queued),
            "posted_tasks": len(result.posted),
            "post_errors": len(result.errors),
            "last_posted_at": utcnow().isoformat(),
            "cost_posted_usd": sum(item.cost or 0.0 for item in result.posted),
        }
        try:
            self.repository.update_run(run.id, status=status.value, metadata=metadata)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update run {run.id} after posting: {e}")

        return SeedOutcome(
            run_id=run.id,
            posted=len(result.posted),
            errors=len(result.errors),
            details=[error.reason for error in result.errors],
        )
