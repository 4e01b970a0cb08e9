"""Database repository for runs, tasks, keyword spikes and seed sources."""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Table, create_engine, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

from trend_scout.analysis.series import normalize_keyword
from trend_scout.config import Settings, get_settings
from trend_scout.db.models import (
    Base,
    CandidateRootRow,
    NewsItemRow,
    TrendKeywordRow,
    TrendRootRow,
    TrendRunRow,
    TrendTaskRow,
)
from trend_scout.models.records import (
    CandidateRoot,
    NewsItem,
    TrendKeyword,
    TrendRoot,
    TrendRun,
    TrendTask,
)
from trend_scout.models.tasks import TaskCounts, TaskStatus
from trend_scout.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

TASK_UPDATE_FIELDS = {"status", "payload", "error", "cost", "completed_at"}


def _to_run(row: TrendRunRow) -> TrendRun:
    return TrendRun(
        id=row.id,
        status=row.status,
        trigger_source=row.trigger_source,
        root_keywords=list(row.root_keywords or []),
        metadata=dict(row.run_metadata or {}),
        triggered_at=row.triggered_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_task(row: TrendTaskRow) -> TrendTask:
    return TrendTask(
        id=row.id,
        run_id=row.run_id,
        task_id=row.task_id,
        keyword=row.keyword,
        locale=row.locale,
        timeframe=row.timeframe,
        location_name=row.location_name,
        location_code=row.location_code,
        language_name=row.language_name,
        status=row.status,
        payload=row.payload if isinstance(row.payload, dict) else {},
        error=row.error,
        cost=row.cost,
        posted_at=row.posted_at,
        completed_at=row.completed_at,
    )


def _to_keyword(row: TrendKeywordRow) -> TrendKeyword:
    return TrendKeyword(
        id=row.id,
        keyword=row.keyword,
        keyword_key=row.keyword_key,
        locale=row.locale,
        timeframe=row.timeframe,
        first_seen=row.first_seen,
        last_seen=row.last_seen,
        spike_score=row.spike_score,
        priority=row.priority,
        summary=row.summary,
        metadata=dict(row.keyword_metadata or {}),
        updated_at=row.updated_at,
    )


class TrendRepository:
    """Repository for trend discovery database operations."""

    def __init__(self, database_url: str | None = None, settings: Settings | None = None):
        settings = settings or get_settings()
        self.database_url = database_url or settings.database_url

        # Hosted Postgres URLs still use the postgres:// scheme
        # SQLAlchemy 1.4+ requires postgresql://
        if self.database_url.startswith("postgres://"):
            self.database_url = self.database_url.replace("postgres://", "postgresql://", 1)

        self.engine = create_engine(self.database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self._is_postgres = self.database_url.startswith("postgresql")

    def create_tables(self) -> None:
        """Create all database tables if they don't exist."""
        Base.metadata.create_all(self.engine, checkfirst=True)
        logger.info("Database tables created/verified")

    def get_session(self) -> Session:
        """Get a database session."""
        return self.SessionLocal()

    def _insert(self, model: type[Base] | Table):
        return pg_insert(model) if self._is_postgres else sqlite_insert(model)

    # =========================================================================
    # Runs
    # =========================================================================

    def create_run(
        self,
        status: str,
        trigger_source: str | None,
        root_keywords: list[str],
        metadata: dict[str, Any] | None = None,
    ) -> TrendRun:
        with self.get_session() as session:
            row = TrendRunRow(
                status=status,
                trigger_source=trigger_source,
                root_keywords=root_keywords,
                run_metadata=metadata or {},
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_run(row)

    def get_run(self, run_id: str) -> TrendRun | None:
        with self.get_session() as session:
            row = session.get(TrendRunRow, run_id)
            return _to_run(row) if row else None

    def update_run(
        self,
        run_id: str,
        status: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Update a run's status and/or replace its metadata. Returns False if missing."""
        with self.get_session() as session:
            row = session.get(TrendRunRow, run_id)
            if row is None:
                return False
            if status is not None:
                row.status = status
            if metadata is not None:
                row.run_metadata = metadata
            row.updated_at = utcnow()
            session.commit()
            return True

    def list_runs(self, limit: int = 20) -> list[TrendRun]:
        with self.get_session() as session:
            stmt = select(TrendRunRow).order_by(TrendRunRow.triggered_at.desc()).limit(limit)
            return [_to_run(row) for row in session.execute(stmt).scalars().all()]

    # =========================================================================
    # Tasks
    # =========================================================================

    def insert_tasks(self, records: list[dict[str, Any]]) -> int:
        """
        Insert posted tasks, upserting on the provider task id.

        Args:
            records: Column values for ``trend_tasks`` rows

        Returns:
            Number of rows written
        """
        if not records:
            return 0

        with self.get_session() as session:
            for values in records:
                values = {"posted_at": utcnow(), **values}
                update_set = {
                    key: values[key]
                    for key in ("status", "payload", "error", "cost", "posted_at")
                    if key in values
                }
                stmt = self._insert(TrendTaskRow).values(created_at=utcnow(), **values)
                stmt = stmt.on_conflict_do_update(index_elements=["task_id"], set_=update_set)
                session.execute(stmt)
            session.commit()

        return len(records)

    def get_task_by_task_id(self, task_id: str) -> TrendTask | None:
        with self.get_session() as session:
            stmt = select(TrendTaskRow).where(TrendTaskRow.task_id == task_id)
            row = session.execute(stmt).scalar_one_or_none()
            return _to_task(row) if row else None

    def update_task(self, task_id: str, **fields: Any) -> bool:
        """Update the terminal-state columns of a task. Returns False if missing."""
        unknown = set(fields) - TASK_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")

        with self.get_session() as session:
            result = session.execute(
                update(TrendTaskRow).where(TrendTaskRow.task_id == task_id).values(**fields)
            )
            session.commit()
            return result.rowcount > 0

    def get_tasks_by_run(self, run_id: str) -> list[TrendTask]:
        with self.get_session() as session:
            stmt = (
                select(TrendTaskRow)
                .where(TrendTaskRow.run_id == run_id)
                .order_by(TrendTaskRow.posted_at, TrendTaskRow.id)
            )
            return [_to_task(row) for row in session.execute(stmt).scalars().all()]

    def get_run_task_status_counts(self, run_id: str) -> TaskCounts:
        """Count a run's tasks by status. Anything not completed or errored counts as queued."""
        with self.get_session() as session:
            rows = session.execute(
                select(TrendTaskRow.status, func.count(TrendTaskRow.id))
                .where(TrendTaskRow.run_id == run_id)
                .group_by(TrendTaskRow.status)
            ).all()

        counts = TaskCounts()
        for status, count in rows:
            counts.total += count
            if status == TaskStatus.COMPLETED.value:
                counts.completed += count
            elif status == TaskStatus.ERROR.value:
                counts.error += count
            else:
                counts.queued += count
        return counts

    def get_run_task_cost_total(self, run_id: str) -> float:
        with self.get_session() as session:
            total = session.execute(
                select(func.coalesce(func.sum(TrendTaskRow.cost), 0.0)).where(
                    TrendTaskRow.run_id == run_id
                )
            ).scalar()
        return round(float(total or 0.0), 6)

    # =========================================================================
    # Keyword spikes
    # =========================================================================

    def get_keyword(self, keyword: str, locale: str, timeframe: str) -> TrendKeyword | None:
        with self.get_session() as session:
            row = self._get_keyword_row(session, normalize_keyword(keyword), locale, timeframe)
            return _to_keyword(row) if row else None

    def _get_keyword_row(
        self, session: Session, keyword_key: str, locale: str, timeframe: str
    ) -> TrendKeywordRow | None:
        stmt = select(TrendKeywordRow).where(
            TrendKeywordRow.keyword_key == keyword_key,
            TrendKeywordRow.locale == locale,
            TrendKeywordRow.timeframe == timeframe,
        )
        return session.execute(stmt).scalar_one_or_none()

    def upsert_keyword(
        self,
        keyword: str,
        locale: str,
        timeframe: str,
        first_seen: datetime,
        last_seen: datetime,
        spike_score: float | None,
        priority: str | None,
        summary: str | None,
        metadata: dict[str, Any],
    ) -> TrendKeyword:
        """
        Record a keyword spike keyed on (keyword, locale, timeframe).

        ``first_seen`` never moves later and ``last_seen`` never moves
        earlier than what is already stored.
        """
        keyword_key = normalize_keyword(keyword)
        table = TrendKeywordRow.__table__
        now = utcnow()
        values = {
            "keyword": keyword,
            "keyword_key": keyword_key,
            "locale": locale,
            "timeframe": timeframe,
            "first_seen": ensure_utc(first_seen),
            "last_seen": ensure_utc(last_seen),
            "spike_score": spike_score,
            "priority": priority,
            "summary": summary,
            "metadata": metadata,
            "created_at": now,
            "updated_at": now,
        }

        stmt = self._insert(table).values(**values)
        # Bounds are merged inside the upsert so concurrent callbacks cannot race
        earliest, latest = (func.least, func.greatest) if self._is_postgres else (func.min, func.max)
        stmt = stmt.on_conflict_do_update(
            index_elements=["keyword_key", "locale", "timeframe"],
            set_={
                "keyword": stmt.excluded.keyword,
                "first_seen": earliest(stmt.excluded.first_seen, table.c.first_seen),
                "last_seen": latest(stmt.excluded.last_seen, table.c.last_seen),
                "spike_score": stmt.excluded.spike_score,
                "priority": stmt.excluded.priority,
                "summary": stmt.excluded.summary,
                "metadata": stmt.excluded["metadata"],
                "updated_at": stmt.excluded.updated_at,
            },
        )

        with self.get_session() as session:
            session.execute(stmt)
            session.commit()

            row = self._get_keyword_row(session, keyword_key, locale, timeframe)
            return _to_keyword(row)

    def list_keywords(self, limit: int = 100) -> list[TrendKeyword]:
        with self.get_session() as session:
            stmt = select(TrendKeywordRow).order_by(TrendKeywordRow.last_seen.desc()).limit(limit)
            return [_to_keyword(row) for row in session.execute(stmt).scalars().all()]

    # =========================================================================
    # Seed sources
    # =========================================================================

    def add_root(
        self,
        keyword: str,
        label: str | None = None,
        locale: str = "global",
        is_active: bool = True,
    ) -> TrendRoot:
        with self.get_session() as session:
            row = TrendRootRow(keyword=keyword, label=label or keyword, locale=locale, is_active=is_active)
            session.add(row)
            session.commit()
            return TrendRoot.model_validate(row, from_attributes=True)

    def get_active_roots(self) -> list[TrendRoot]:
        with self.get_session() as session:
            stmt = (
                select(TrendRootRow)
                .where(TrendRootRow.is_active.is_(True))
                .order_by(TrendRootRow.created_at)
            )
            return [
                TrendRoot.model_validate(row, from_attributes=True)
                for row in session.execute(stmt).scalars().all()
            ]

    def add_news_item(
        self,
        title: str | None,
        keywords: list[str],
        source: str | None = None,
        url: str | None = None,
        published_at: datetime | None = None,
    ) -> NewsItem:
        with self.get_session() as session:
            row = NewsItemRow(
                title=title, keywords=keywords, source=source, url=url, published_at=published_at
            )
            session.add(row)
            session.commit()
            return NewsItem.model_validate(row, from_attributes=True)

    def get_recent_news_items(
        self, within_hours: int, limit: int, now: datetime | None = None
    ) -> list[NewsItem]:
        """News published (or ingested, when undated) within the last ``within_hours``."""
        cutoff = (now or utcnow()) - timedelta(hours=within_hours)
        seen_at = func.coalesce(NewsItemRow.published_at, NewsItemRow.created_at)

        with self.get_session() as session:
            stmt = select(NewsItemRow).where(seen_at >= cutoff).order_by(seen_at.desc()).limit(limit)
            return [
                NewsItem.model_validate(row, from_attributes=True)
                for row in session.execute(stmt).scalars().all()
            ]

    def add_candidate(
        self,
        term: str,
        status: str = "approved",
        source: str | None = None,
        label: str | None = None,
        score: float | None = None,
    ) -> CandidateRoot:
        with self.get_session() as session:
            row = CandidateRootRow(term=term, status=status, source=source, label=label, score=score)
            session.add(row)
            session.commit()
            return CandidateRoot.model_validate(row, from_attributes=True)

    def get_approved_candidates(self, limit: int) -> list[CandidateRoot]:
        with self.get_session() as session:
            stmt = (
                select(CandidateRootRow)
                .where(CandidateRootRow.status == "approved")
                .order_by(CandidateRootRow.captured_at.desc())
                .limit(limit)
            )
            return [
                CandidateRoot.model_validate(row, from_attributes=True)
                for row in session.execute(stmt).scalars().all()
            ]

    def mark_candidates_queued(self, candidate_ids: list[str]) -> int:
        if not candidate_ids:
            return 0

        with self.get_session() as session:
            result = session.execute(
                update(CandidateRootRow)
                .where(CandidateRootRow.id.in_(candidate_ids))
                .values(status="queued", updated_at=utcnow())
            )
            session.commit()
            return result.rowcount
