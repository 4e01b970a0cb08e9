"""
Keyword spike detection and recursive rising-query expansion.

Both run for every successfully completed task:

- Detection records rising-derived keywords whose series shows a fresh,
  still-active spike.
- Expansion turns a task's rising queries into child tasks one level
  deeper. No child is ever created at ``max_discovery_depth`` or beyond.
  The frontier at depth d is exactly the set of tasks posted from depth
  d-1 callbacks, so the fan-out terminates.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from trend_scout.analysis.series import extract_rising, extract_series, normalize_keyword, timeframe_key
from trend_scout.analysis.spike import analyze_spike, has_decayed, is_within_new_keyword_window
from trend_scout.clients.demand_classifier import (
    DemandAssessment,
    DemandClassifierClient,
    DemandRequest,
    is_tool_demand,
)
from trend_scout.config import Settings, get_settings
from trend_scout.db.repository import TrendRepository
from trend_scout.models.explore import ALL_ITEM_TYPES
from trend_scout.models.records import TrendKeyword, TrendTask
from trend_scout.models.tasks import (
    DemandLabel,
    ExploreTaskPayload,
    KeywordDetection,
    QueuedExploreTask,
    RisingEntry,
    StoredDemandAssessment,
    TaskMetadata,
    TaskSource,
)
from trend_scout.pipeline.markets import is_global, match_configured_market, resolve_market_info
from trend_scout.pipeline.poster import TaskPoster
from trend_scout.utils.time import utcnow

logger = logging.getLogger(__name__)

MAX_SUMMARY_LENGTH = 240


def truncate_summary(value: str | None) -> str | None:
    if not value or not value.strip():
        return None
    text = value.strip()
    if len(text) > MAX_SUMMARY_LENGTH:
        return f"{text[: MAX_SUMMARY_LENGTH - 3]}..."
    return text


def _stored_assessment(value: Any) -> DemandAssessment | None:
    if not isinstance(value, (dict, StoredDemandAssessment)):
        return None
    try:
        return DemandAssessment.from_stored(value)
    except ValidationError:
        return None


def dedupe_entries(entries: list[RisingEntry], exclude: set[str]) -> list[RisingEntry]:
    """Keep the first entry per normalized keyword, dropping excluded keywords."""
    seen = set(exclude)
    unique = []
    for entry in entries:
        normalized = normalize_keyword(entry.keyword)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        unique.append(RisingEntry(keyword=entry.keyword.strip(), value=entry.value))
    return unique


class ExpansionController:
    """Runs keyword detection and rising-query expansion for completed tasks."""

    def __init__(
        self,
        repository: TrendRepository,
        poster: TaskPoster,
        classifier: DemandClassifierClient,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.poster = poster
        self.classifier = classifier

    def _existing_keyword(self, keyword: str, locale: str, timeframe: str) -> TrendKeyword | None:
        try:
            return self.repository.get_keyword(keyword, locale, timeframe)
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch existing keyword '{keyword}' ({locale}, {timeframe}): {e}")
            return None

    def _is_new(self, existing: TrendKeyword | None, now: datetime) -> bool:
        if existing is None:
            return True
        return is_within_new_keyword_window(
            existing.first_seen, now, self.settings.new_keyword_max_age_hours
        )

    # =========================================================================
    # Expansion
    # =========================================================================

    async def expand(
        self,
        task: TrendTask,
        metadata: TaskMetadata | None,
        request: dict[str, Any] | None,
        result: Any,
        now: datetime | None = None,
    ) -> int:
        """
        Post child tasks for the rising queries of a completed task.

        Returns:
            Number of child tasks posted
        """
        now = now or utcnow()
        task_id = task.task_id

        if metadata is None:
            logger.debug(f"Skip expansion for {task_id}: missing metadata")
            return 0
        if not task.run_id:
            logger.debug(f"Skip expansion for {task_id}: missing run id")
            return 0
        if not metadata.has_root_lineage:
            logger.debug(f"Skip expansion for {task_id}: incomplete root lineage")
            return 0

        markets = self.settings.markets
        fallback_locale = (metadata.locale or task.locale or "").strip().lower()
        top_markets, matched = match_configured_market(result, markets)
        locale = matched or fallback_locale or "global"

        if not metadata.is_root and not matched and locale not in markets:
            logger.debug(
                f"Skip expansion for {task_id}: locale '{locale}' not in markets",
                extra={"top_markets": top_markets},
            )
            return 0

        location_name = metadata.location_name or task.location_name
        location_code = metadata.location_code or task.location_code
        language_name = metadata.language_name or task.language_name
        if matched:
            market = resolve_market_info(
                matched, fallback_locale if fallback_locale and fallback_locale != matched else matched
            )
            location_name, location_code, language_name = market.name, market.code, market.language_name
        elif is_global(locale):
            location_name = location_code = language_name = None

        raw_timeframe = metadata.time_range or task.timeframe
        if not raw_timeframe:
            logger.debug(f"Skip expansion for {task_id}: missing timeframe")
            return 0
        timeframe = timeframe_key(raw_timeframe)

        depth = metadata.depth
        if depth + 1 >= self.settings.max_discovery_depth:
            logger.debug(
                f"Skip expansion for {task_id}: child depth {depth + 1} would reach max "
                f"{self.settings.max_discovery_depth}"
            )
            return 0

        entries = extract_rising(result)
        if not entries:
            logger.debug(f"Skip expansion for {task_id}: no rising entries")
            return 0

        threshold = self.settings.rising_queue_threshold
        entries = [entry for entry in entries if entry.value >= threshold]
        if not entries:
            logger.debug(f"Skip expansion for {task_id}: all rising entries below {threshold}")
            return 0

        entries = dedupe_entries(
            entries, {normalize_keyword(task.keyword), normalize_keyword(metadata.root_keyword)}
        )
        if not entries:
            logger.debug(f"Skip expansion for {task_id}: no unique rising entries")
            return 0

        postback_url = request.get("postback_url") if request else None
        if not postback_url:
            logger.debug(f"Skip expansion for {task_id}: missing postback url")
            return 0

        logger.info(
            f"Rising expansion candidates for {task_id}: {len(entries)}",
            extra={"run_id": task.run_id, "timeframe": timeframe},
        )

        children: list[QueuedExploreTask] = []
        for entry in entries:
            existing = self._existing_keyword(entry.keyword, locale, timeframe)
            if not self._is_new(existing, now):
                logger.debug(f"Skip rising entry '{entry.keyword}': outside new keyword window")
                continue

            assessment = await self.classifier.assess(
                DemandRequest(
                    keyword=entry.keyword,
                    root_keyword=metadata.root_keyword,
                    parent_keyword=task.keyword,
                    locale=locale,
                    timeframe=timeframe,
                    spike_score=entry.value,
                    notes="rising_expansion",
                )
            )
            if not is_tool_demand(assessment):
                logger.debug(
                    f"Skip rising entry '{entry.keyword}': classified {assessment.label.value}"
                )
                continue

            child_metadata = TaskMetadata(
                source=TaskSource.RISING,
                root_id=metadata.root_id,
                root_keyword=metadata.root_keyword,
                root_label=metadata.root_label,
                baseline=metadata.baseline,
                locale=locale,
                time_range=timeframe,
                location_name=location_name,
                location_code=location_code,
                language_name=language_name,
                parent_task_id=task.task_id,
                parent_keyword=task.keyword,
                discovery_depth=depth + 1,
                demand_assessment=assessment.to_stored(now),
            )
            children.append(
                QueuedExploreTask(
                    run_id=task.run_id,
                    keyword=entry.keyword,
                    locale=locale,
                    timeframe=timeframe,
                    payload=ExploreTaskPayload(
                        time_range=timeframe,
                        keywords=[entry.keyword],
                        location_name=location_name,
                        location_code=location_code,
                        language_name=language_name,
                        postback_url=postback_url,
                        item_types=ALL_ITEM_TYPES,
                    ),
                    metadata=child_metadata,
                )
            )

        if not children:
            return 0

        outcome = await self.poster.post_tasks(children)
        if outcome.errors:
            logger.warning(
                f"{len(outcome.errors)} errors while posting rising tasks for {task_id}",
                extra={"errors": [error.reason for error in outcome.errors]},
            )
        return len(outcome.posted)

    # =========================================================================
    # Detection
    # =========================================================================

    async def detect(
        self,
        task: TrendTask,
        metadata: TaskMetadata | None,
        result: Any,
        now: datetime | None = None,
    ) -> KeywordDetection | None:
        """Record a rising-derived keyword if its series shows a new, active spike."""
        now = now or utcnow()
        settings = self.settings
        task_id = task.task_id

        if metadata is None or metadata.source != TaskSource.RISING:
            return None

        keyword = (task.keyword or "").strip()
        if not keyword:
            return None

        locale = (metadata.locale or task.locale or "global").strip().lower() or "global"
        raw_timeframe = metadata.time_range or task.timeframe
        if not raw_timeframe:
            logger.debug(f"Skip spike for '{keyword}' ({task_id}): missing timeframe")
            return None
        if result is None:
            logger.debug(f"Skip spike for '{keyword}' ({task_id}): missing result")
            return None
        timeframe = timeframe_key(raw_timeframe)

        series = extract_series(result, keyword)
        analysis = analyze_spike(
            series,
            now=now,
            window_hours=settings.new_keyword_window_hours,
            baseline_max_allowed=settings.baseline_max_before_window,
            min_spike_value=settings.min_spike_value,
            hot_window_hours=settings.hot_keyword_window_hours,
        )
        if not analysis.qualifies or analysis.first_seen_at is None or analysis.last_seen_at is None:
            logger.debug(
                f"Skip spike for '{keyword}' ({task_id}): {analysis.reason}",
                extra={"baseline_max": analysis.baseline_max, "recent_max": analysis.recent_max},
            )
            return None

        if has_decayed(series, now, settings.spike_decay_window_hours, settings.spike_decay_max_value):
            logger.debug(f"Skip spike for '{keyword}' ({task_id}): demand decayed")
            return None

        if not is_within_new_keyword_window(analysis.first_seen_at, now, settings.new_keyword_max_age_hours):
            logger.debug(f"Skip spike for '{keyword}' ({task_id}): first seen too long ago")
            return None

        existing = self._existing_keyword(keyword, locale, timeframe)
        if not self._is_new(existing, now):
            logger.debug(f"Skip spike for '{keyword}' ({task_id}): existing record outside window")
            return None

        existing_metadata = dict(existing.metadata) if existing else {}

        assessment = _stored_assessment(metadata.demand_assessment) or _stored_assessment(
            existing_metadata.get("demand_assessment")
        )
        if assessment is None or assessment.label == DemandLabel.UNCLEAR or not assessment.summary:
            assessment = await self.classifier.assess(
                DemandRequest(
                    keyword=keyword,
                    root_keyword=metadata.root_keyword,
                    parent_keyword=metadata.parent_keyword or task.keyword,
                    locale=locale,
                    timeframe=timeframe,
                    spike_score=analysis.spike_score if analysis.spike_score is not None else analysis.recent_max,
                    notes=f"priority={analysis.priority.value}" if analysis.priority else None,
                )
            )

        if not is_tool_demand(assessment):
            logger.debug(f"Skip spike for '{keyword}' ({task_id}): classified {assessment.label.value}")
            return None

        stored = assessment.to_stored(now)
        keyword_metadata = {
            **existing_metadata,
            "spike_detection": {
                "run_id": task.run_id,
                "task_id": task.task_id,
                "updated_at": now.isoformat(),
                "baseline_max": analysis.baseline_max,
                "recent_max": analysis.recent_max,
            },
        }
        keyword_metadata["demand_assessment"] = stored.model_dump(mode="json")

        summary = truncate_summary(stored.summary) or truncate_summary(
            existing.summary if existing else None
        )

        try:
            self.repository.upsert_keyword(
                keyword=keyword,
                locale=locale,
                timeframe=timeframe,
                first_seen=analysis.first_seen_at,
                last_seen=analysis.last_seen_at,
                spike_score=analysis.spike_score,
                priority=analysis.priority.value if analysis.priority else None,
                summary=summary,
                metadata=keyword_metadata,
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record keyword spike '{keyword}' ({locale}, {timeframe}): {e}")
            return None

        logger.info(
            f"Keyword spike recorded: '{keyword}' ({locale}, {timeframe})",
            extra={"priority": analysis.priority, "spike_score": analysis.spike_score},
        )
        return KeywordDetection(keyword=keyword, priority=analysis.priority)
