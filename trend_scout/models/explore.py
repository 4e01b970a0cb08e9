"""Pydantic models for DataForSEO Google Trends Explore results.

Callback payloads arrive in a handful of envelope shapes and with item
types that change over time. Every item is parsed into exactly one variant
of ``ExploreItem``; anything unrecognized becomes an ``UnknownItem`` that
keeps the original payload. None of the parse functions raise.
"""

import math
from datetime import datetime
from typing import Any, Literal, Union

from pydantic import BaseModel, Field

from trend_scout.utils.time import parse_datetime

GRAPH_TYPE = "google_trends_graph"
MAP_TYPE = "google_trends_map"
TOPICS_LIST_TYPE = "google_trends_topics_list"
QUERIES_LIST_TYPE = "google_trends_queries_list"

ALL_ITEM_TYPES = [GRAPH_TYPE, MAP_TYPE, TOPICS_LIST_TYPE, QUERIES_LIST_TYPE]

# Google Trends reports rising values above 5000% as "Breakout"
BREAKOUT_SENTINEL_VALUE = 5000.0


class GraphPoint(BaseModel):
    """
    One interest-over-time point.

    ``values`` holds one value per keyword in column order, None where the
    provider had no number for that keyword.
    """

    timestamp: datetime
    value: float
    values: list[float | None] = Field(default_factory=list)
    date_from: str | None = None
    date_to: str | None = None
    missing: bool = False


class MapEntry(BaseModel):
    """Interest by region."""

    geo_id: str | None = None
    geo_name: str | None = None
    value: float | None = None
    max_value_index: int | None = None


class RankedTopic(BaseModel):
    topic_id: str | None = None
    title: str | None = None
    topic_type: str | None = None
    value: float | None = None


class RankedQuery(BaseModel):
    query: str | None = None
    value: float | None = None


class _ItemBase(BaseModel):
    title: str | None = None
    position: int | None = None
    keywords: list[str] = Field(default_factory=list)


class GraphItem(_ItemBase):
    type: Literal["google_trends_graph"] = GRAPH_TYPE
    data: list[GraphPoint] = Field(default_factory=list)
    averages: dict[str, float | None] = Field(default_factory=dict)


class MapItem(_ItemBase):
    type: Literal["google_trends_map"] = MAP_TYPE
    data: list[MapEntry] = Field(default_factory=list)


class TopicsListItem(_ItemBase):
    type: Literal["google_trends_topics_list"] = TOPICS_LIST_TYPE
    top: list[RankedTopic] = Field(default_factory=list)
    rising: list[RankedTopic] = Field(default_factory=list)


class QueriesListItem(_ItemBase):
    type: Literal["google_trends_queries_list"] = QUERIES_LIST_TYPE
    top: list[RankedQuery] = Field(default_factory=list)
    rising: list[RankedQuery] = Field(default_factory=list)


class UnknownItem(_ItemBase):
    """Item of a type this engine does not model. ``raw`` is the original payload."""

    type: str = "unknown"
    raw: Any = None


ExploreItem = Union[GraphItem, MapItem, TopicsListItem, QueriesListItem, UnknownItem]


class ExploreResult(BaseModel):
    """One ``result[]`` entry of an explore task."""

    keywords: list[str] = Field(default_factory=list)
    location_code: int | None = None
    language_code: str | None = None
    check_url: str | None = None
    checked_at: str | None = None
    items_count: int | None = None
    items: list[ExploreItem] = Field(default_factory=list)


class TaskResultMeta(BaseModel):
    id: str | None = None
    status_code: int | None = None
    status_message: str | None = None
    cost: float | None = None
    time: str | None = None
    result_count: int | None = None
    path: list[str] | None = None


class NormalizedTaskResult(BaseModel):
    meta: TaskResultMeta = Field(default_factory=TaskResultMeta)
    results: list[ExploreResult] = Field(default_factory=list)


# =============================================================================
# Coercion helpers
# =============================================================================


def to_str(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return str(value)
    return None


def to_number(value: Any) -> float | None:
    """Coerce a number or numeric string. ``"Breakout"`` maps to the sentinel value."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        trimmed = value.strip()
        if trimmed.lower() == "breakout":
            return BREAKOUT_SENTINEL_VALUE
        try:
            parsed = float(trimmed.rstrip("%").replace(",", ""))
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def to_int(value: Any) -> int | None:
    number = to_number(value)
    return int(number) if number is not None else None


def numeric_values(value: Any) -> list[float]:
    """Flatten numbers out of scalars, lists and ``{"value": ...}`` objects."""
    if isinstance(value, list):
        return [number for item in value for number in numeric_values(item)]
    if isinstance(value, dict):
        return numeric_values(value.get("value")) if "value" in value else []
    number = to_number(value)
    return [number] if number is not None else []


def column_values(value: Any) -> list[float | None]:
    """Per-keyword values in column order. Unusable entries stay as None."""
    if not isinstance(value, list):
        value = [value]
    return [to_number(item.get("value")) if isinstance(item, dict) else to_number(item) for item in value]


def average(values: list[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def to_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


# =============================================================================
# Variant parsers
# =============================================================================


def _parse_graph_points(value: Any) -> list[GraphPoint]:
    if not isinstance(value, list):
        return []

    points = []
    for item in value:
        if not isinstance(item, dict):
            continue

        date_from = to_str(item.get("date_from"))
        date_to = to_str(item.get("date_to"))
        timestamp = parse_datetime(item.get("timestamp"))
        if timestamp is None:
            timestamp = parse_datetime(date_from) or parse_datetime(date_to)

        raw_values = item.get("values")
        if raw_values is None and "value" in item:
            raw_values = item.get("value")
        values = column_values(raw_values)
        point_value = average([number for number in values if number is not None])

        if timestamp is None or point_value is None:
            continue

        points.append(
            GraphPoint(
                timestamp=timestamp,
                value=point_value,
                values=values,
                date_from=date_from,
                date_to=date_to,
                missing=item.get("missing_data") is True,
            )
        )

    return points


def _parse_graph_averages(value: Any) -> dict[str, float | None]:
    if not isinstance(value, list):
        return {}

    averages: dict[str, float | None] = {}
    for index, item in enumerate(value):
        label = f"series {index + 1}"
        if not isinstance(item, dict):
            averages[label] = average(numeric_values(item))
            continue
        label = to_str(item.get("keyword") or item.get("topic_title") or item.get("term")) or label
        averages[label] = average(numeric_values(item.get("value", item.get("average"))))
    return averages


def parse_graph_item(value: dict[str, Any], base: dict[str, Any]) -> GraphItem:
    return GraphItem(
        **base,
        data=_parse_graph_points(value.get("data")),
        averages=_parse_graph_averages(value.get("averages")),
    )


def parse_map_item(value: dict[str, Any], base: dict[str, Any]) -> MapItem:
    entries = []
    data = value.get("data")
    for item in data if isinstance(data, list) else []:
        if not isinstance(item, dict):
            continue
        values = numeric_values(item.get("values", item.get("value")))
        geo_id = to_str(item.get("geo_id"))
        geo_name = to_str(item.get("geo_name"))
        if not geo_id and not geo_name and not values:
            continue
        entries.append(
            MapEntry(
                geo_id=geo_id,
                geo_name=geo_name,
                value=average(values),
                max_value_index=to_int(item.get("max_value_index")),
            )
        )
    return MapItem(**base, data=entries)


def _parse_topics(value: Any) -> list[RankedTopic]:
    topics = []
    for item in value if isinstance(value, list) else []:
        if not isinstance(item, dict):
            continue
        title = to_str(item.get("topic_title") or item.get("title"))
        topic_type = to_str(item.get("topic_type") or item.get("type"))
        item_value = average(numeric_values(item.get("value")))
        if not title and item_value is None:
            continue
        topics.append(
            RankedTopic(
                topic_id=to_str(item.get("topic_id")),
                title=title or topic_type,
                topic_type=topic_type,
                value=item_value,
            )
        )
    return topics


def parse_topics_list_item(value: dict[str, Any], base: dict[str, Any]) -> TopicsListItem:
    data = _as_dict(value.get("data"))
    return TopicsListItem(**base, top=_parse_topics(data.get("top")), rising=_parse_topics(data.get("rising")))


def _parse_queries(value: Any) -> list[RankedQuery]:
    queries = []
    for item in value if isinstance(value, list) else []:
        if not isinstance(item, dict):
            continue
        query = to_str(item.get("query") or item.get("keyword") or item.get("term"))
        item_value = average(numeric_values(item.get("value")))
        if not query and item_value is None:
            continue
        queries.append(RankedQuery(query=query, value=item_value))
    return queries


def parse_queries_list_item(value: dict[str, Any], base: dict[str, Any]) -> QueriesListItem:
    data = _as_dict(value.get("data"))
    return QueriesListItem(**base, top=_parse_queries(data.get("top")), rising=_parse_queries(data.get("rising")))


def parse_unknown_item(value: Any, base: dict[str, Any]) -> UnknownItem:
    return UnknownItem(**base, raw=value)


_ITEM_PARSERS = {
    GRAPH_TYPE: parse_graph_item,
    MAP_TYPE: parse_map_item,
    TOPICS_LIST_TYPE: parse_topics_list_item,
    QUERIES_LIST_TYPE: parse_queries_list_item,
}


def parse_explore_item(value: Any) -> ExploreItem:
    """Parse one raw item into its variant."""
    if not isinstance(value, dict):
        return parse_unknown_item(value, {})

    item_type = to_str(value.get("type")) or "unknown"
    base = {
        "title": to_str(value.get("title")),
        "position": to_int(value.get("position")),
        "keywords": to_str_list(value.get("keywords")),
    }

    parser = _ITEM_PARSERS.get(item_type)
    if parser is None:
        return UnknownItem(**base, type=item_type, raw=value)
    return parser(value, base)


# =============================================================================
# Envelope parsing
# =============================================================================


def parse_explore_result(value: Any) -> ExploreResult | None:
    if not isinstance(value, dict):
        return None

    items = value.get("items")
    return ExploreResult(
        keywords=to_str_list(value.get("keywords")),
        location_code=to_int(value.get("location_code")),
        language_code=to_str(value.get("language_code")),
        check_url=to_str(value.get("check_url")),
        checked_at=_normalize_datetime(value.get("datetime")),
        items_count=to_int(value.get("items_count")),
        items=[parse_explore_item(item) for item in items] if isinstance(items, list) else [],
    )


def _normalize_datetime(value: Any) -> str | None:
    raw = to_str(value)
    if raw is None:
        return None
    parsed = parse_datetime(raw)
    return parsed.isoformat() if parsed else raw


def _parse_meta(value: dict[str, Any], include_id: bool = True) -> TaskResultMeta:
    path = value.get("path")
    return TaskResultMeta(
        id=to_str(value.get("id")) if include_id else None,
        status_code=to_int(value.get("status_code")),
        status_message=to_str(value.get("status_message")),
        cost=to_number(value.get("cost")),
        time=to_str(value.get("time")),
        result_count=to_int(value.get("result_count")),
        path=[str(item) for item in path] if isinstance(path, list) else None,
    )


def _parse_results(raw: Any) -> list[ExploreResult]:
    if not isinstance(raw, list):
        return []
    return [result for result in (parse_explore_result(item) for item in raw) if result is not None]


def parse_task_result(value: Any) -> NormalizedTaskResult | None:
    if not isinstance(value, dict):
        return None

    if isinstance(value.get("result"), list):
        raw_results = value["result"]
    elif isinstance(value.get("tasks"), list):
        raw_results = [
            result
            for task in value["tasks"]
            if isinstance(task, dict) and isinstance(task.get("result"), list)
            for result in task["result"]
        ]
    else:
        raw_results = []

    return NormalizedTaskResult(meta=_parse_meta(value), results=_parse_results(raw_results))


def normalize_task_results(value: Any) -> list[NormalizedTaskResult]:
    """
    Normalize any supported result envelope into a list of task results.

    Accepted shapes:
    - ``[{"result": [...]}, ...]`` or ``[{"tasks": [{"result": [...]}]}, ...]``
    - ``[{"items": [...]}, ...]`` (bare explore results)
    - ``{"tasks": [...]}``
    - ``{"result": [...], "status_code": ...}``
    - ``{"items": [...]}`` (a single explore result)

    Returns an empty list for anything else.
    """
    if not value:
        return []

    if isinstance(value, list):
        parsed: list[NormalizedTaskResult] = []
        for item in value:
            if not isinstance(item, dict):
                continue
            if isinstance(item.get("result"), list) or isinstance(item.get("tasks"), list):
                task_result = parse_task_result(item)
                if task_result is not None:
                    parsed.append(task_result)
            elif isinstance(item.get("items"), list):
                explore_result = parse_explore_result(item)
                if explore_result is not None:
                    parsed.append(NormalizedTaskResult(results=[explore_result]))
        return parsed

    if isinstance(value, dict):
        if isinstance(value.get("tasks"), list):
            return normalize_task_results(value["tasks"])

        if isinstance(value.get("result"), list):
            return [
                NormalizedTaskResult(
                    meta=_parse_meta(value, include_id=False),
                    results=_parse_results(value["result"]),
                )
            ]

        if isinstance(value.get("items"), list):
            explore_result = parse_explore_result(value)
            return [NormalizedTaskResult(results=[explore_result])] if explore_result else []

    return []


def iter_items(value: Any):
    """Yield every parsed item across all task results in ``value``."""
    for task_result in normalize_task_results(value):
        for explore_result in task_result.results:
            yield from explore_result.items
