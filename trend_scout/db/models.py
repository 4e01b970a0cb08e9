"""SQLAlchemy database models."""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from trend_scout.utils.time import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TrendRunRow(Base):
    """Discovery runs - one row per sweep over the seed keywords."""

    __tablename__ = "trend_runs"

    id = Column(String(36), primary_key=True, default=_uuid)
    status = Column(String(40), nullable=False, default="queued")
    trigger_source = Column(String(200), nullable=True)
    root_keywords = Column(JSON, nullable=False, default=list)
    # "metadata" is reserved on declarative classes
    run_metadata = Column("metadata", JSON, nullable=False, default=dict)
    triggered_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    tasks = relationship("TrendTaskRow", back_populates="run", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_trend_runs_triggered_at", "triggered_at"),)

    def __repr__(self) -> str:
        return f"<TrendRunRow(id='{self.id}', status='{self.status}')>"


class TrendTaskRow(Base):
    """Explore tasks posted to DataForSEO, keyed by the provider task id."""

    __tablename__ = "trend_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), ForeignKey("trend_runs.id", ondelete="CASCADE"), nullable=False)
    task_id = Column(String(64), nullable=False)
    keyword = Column(String(500), nullable=False)
    locale = Column(String(20), nullable=False)
    timeframe = Column(String(50), nullable=False)
    location_name = Column(String(200), nullable=True)
    location_code = Column(Integer, nullable=True)
    language_name = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="queued")  # queued, completed, error

    # {"metadata": ..., "request": ..., "result": ...}
    payload = Column(JSON, nullable=True)
    error = Column(JSON, nullable=True)
    cost = Column(Float, nullable=True)

    posted_at = Column(DateTime(timezone=True), default=utcnow, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    run = relationship("TrendRunRow", back_populates="tasks")

    __table_args__ = (
        Index("idx_trend_tasks_task_id", "task_id", unique=True),
        Index("idx_trend_tasks_run_status", "run_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<TrendTaskRow(task_id='{self.task_id}', keyword='{self.keyword}', status='{self.status}')>"


class TrendKeywordRow(Base):
    """Detected keyword spikes - one row per (keyword, locale, timeframe)."""

    __tablename__ = "trend_keywords"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String(500), nullable=False)
    keyword_key = Column(String(500), nullable=False)  # normalized keyword
    locale = Column(String(20), nullable=False)
    timeframe = Column(String(50), nullable=False)
    first_seen = Column(DateTime(timezone=True), nullable=False)
    last_seen = Column(DateTime(timezone=True), nullable=False)
    spike_score = Column(Float, nullable=True)
    priority = Column(String(10), nullable=True)  # 24h, 72h
    summary = Column(Text, nullable=True)
    keyword_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_trend_keywords_unique", "keyword_key", "locale", "timeframe", unique=True),
        Index("idx_trend_keywords_last_seen", "last_seen"),
    )

    def __repr__(self) -> str:
        return f"<TrendKeywordRow(keyword='{self.keyword}', locale='{self.locale}', priority='{self.priority}')>"


class TrendRootRow(Base):
    """Seed keywords maintained by operators."""

    __tablename__ = "trend_roots"

    id = Column(String(36), primary_key=True, default=_uuid)
    label = Column(String(200), nullable=False)
    keyword = Column(String(500), nullable=False)
    locale = Column(String(20), nullable=False, default="global")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class NewsItemRow(Base):
    """Ingested news items whose extracted keywords seed runs."""

    __tablename__ = "trend_news"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(Text, nullable=True)
    url = Column(Text, nullable=True)
    source = Column(String(200), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    keywords = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("idx_trend_news_published_at", "published_at"),)


class CandidateRootRow(Base):
    """Candidate seed terms; approved ones are queued once per run."""

    __tablename__ = "trend_candidates"

    id = Column(String(36), primary_key=True, default=_uuid)
    term = Column(String(500), nullable=False)
    source = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # pending, approved, queued, expired
    label = Column(String(20), nullable=True)
    score = Column(Float, nullable=True)
    captured_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (Index("idx_trend_candidates_status", "status", "captured_at"),)
