"""Read models for stored runs, tasks, keywords and seed sources."""

from datetime import datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, Field

from trend_scout.models.tasks import TaskMetadata
from trend_scout.utils.time import ensure_utc

# SQLite hands back naive datetimes
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class TrendRun(BaseModel):
    id: str
    status: str
    trigger_source: str | None = None
    root_keywords: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    triggered_at: UtcDatetime
    created_at: UtcDatetime
    updated_at: UtcDatetime


class TrendTask(BaseModel):
    id: int
    run_id: str
    task_id: str
    keyword: str
    locale: str
    timeframe: str
    location_name: str | None = None
    location_code: int | None = None
    language_name: str | None = None
    status: str
    payload: dict[str, Any] = Field(default_factory=dict)
    error: Any = None
    cost: float | None = None
    posted_at: UtcDatetime | None = None
    completed_at: UtcDatetime | None = None

    @property
    def stored_metadata(self) -> TaskMetadata | None:
        return TaskMetadata.from_raw(self.payload.get("metadata"))

    @property
    def request(self) -> dict[str, Any] | None:
        request = self.payload.get("request")
        return request if isinstance(request, dict) else None

    @property
    def result(self) -> Any:
        return self.payload.get("result")


class TrendKeyword(BaseModel):
    id: int
    keyword: str
    keyword_key: str
    locale: str
    timeframe: str
    first_seen: UtcDatetime
    last_seen: UtcDatetime
    spike_score: float | None = None
    priority: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: UtcDatetime


class TrendRoot(BaseModel):
    id: str
    label: str
    keyword: str
    locale: str = "global"
    is_active: bool = True


class NewsItem(BaseModel):
    id: str
    title: str | None = None
    url: str | None = None
    source: str | None = None
    published_at: UtcDatetime | None = None
    keywords: list[Any] = Field(default_factory=list)
    created_at: UtcDatetime


class CandidateRoot(BaseModel):
    id: str
    term: str
    source: str | None = None
    status: str
    label: str | None = None
    score: float | None = None
    captured_at: UtcDatetime
