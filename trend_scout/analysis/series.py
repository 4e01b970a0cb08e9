"""Series and rising-entry extraction from Google Trends Explore results.

Every function here is pure and total: malformed payloads produce empty
results, never exceptions.
"""

from typing import Any
from urllib.parse import unquote

from trend_scout.models.explore import (
    GraphItem,
    GraphPoint,
    QueriesListItem,
    TopicsListItem,
    UnknownItem,
    iter_items,
    numeric_values,
    to_number,
    to_str,
)
from trend_scout.models.tasks import RisingEntry, SeriesPoint, TaskMetadata

TIMEFRAME_ALIASES = {
    "now%201%2bd": "past_day",
    "now 1+d": "past_day",
    "now%207-d": "past_7_days",
    "now 7-d": "past_7_days",
}


def normalize_keyword(value: str | None) -> str:
    """Case- and whitespace-insensitive keyword key."""
    if not value:
        return ""
    return " ".join(value.split()).lower()


def normalize_timeframe(value: str) -> str:
    """Map legacy Google Trends time ranges to DataForSEO ``time_range`` keys."""
    return TIMEFRAME_ALIASES.get(value, TIMEFRAME_ALIASES.get(value.lower(), value))


def timeframe_key(value: str) -> str:
    """Normalize a possibly URL-encoded timeframe."""
    return normalize_timeframe(unquote(normalize_timeframe(value.strip())))


def decode_metadata_tag(tag: str | None) -> TaskMetadata | None:
    """Decode the metadata round-tripped through the provider ``tag``."""
    if not tag:
        return None
    return TaskMetadata.from_raw(tag)


def _column_value(index: int | None, point: GraphPoint) -> float | None:
    if index is None:
        return point.value
    return point.values[index] if index < len(point.values) else None


def extract_series(result: Any, keyword: str) -> list[SeriesPoint]:
    """
    Build the interest-over-time series for ``keyword``.

    Graph items whose keyword list is empty or contains the keyword are
    used. In multi-keyword graphs only the keyword's own column is read, and
    points with no number in that column are dropped.
    Points are returned in ascending timestamp order.
    """
    target = normalize_keyword(keyword)
    if not target:
        return []

    points: list[SeriesPoint] = []
    for item in iter_items(result):
        if not isinstance(item, GraphItem):
            continue

        keywords = [normalize_keyword(value) for value in item.keywords]
        if keywords and target not in keywords:
            continue

        index = keywords.index(target) if len(keywords) > 1 else None
        for point in item.data:
            value = _column_value(index, point)
            if value is not None:
                points.append(SeriesPoint(timestamp=point.timestamp, value=value))

    points.sort(key=lambda point: point.timestamp)
    return points


def _entry(keyword: str | None, value: Any) -> RisingEntry | None:
    keyword = (keyword or "").strip()
    if not keyword:
        return None
    number = to_number(value)
    return RisingEntry(keyword=keyword, value=number if number is not None else 0.0)


def _legacy_rising(raw: Any) -> list[RisingEntry]:
    """Rising entries from an item whose type is not modelled (``data.rising``)."""
    if not isinstance(raw, dict) or not isinstance(raw.get("data"), dict):
        return []

    rising = raw["data"].get("rising")
    if isinstance(rising, dict):
        rising = rising.get("topics")
    if not isinstance(rising, list):
        return []

    entries = []
    for item in rising:
        if not isinstance(item, dict):
            continue
        keyword = to_str(item.get("query")) or to_str(item.get("keyword")) or to_str(item.get("topic_title"))
        values = numeric_values(item.get("value"))
        entry = _entry(keyword, values[0] if values else None)
        if entry:
            entries.append(entry)
    return entries


def extract_rising(result: Any) -> list[RisingEntry]:
    """
    Extract rising queries and topics from a result.

    Topic entries use the topic title, falling back to the topic type.
    Entries without a keyword are dropped; a missing value becomes 0.
    """
    entries: list[RisingEntry] = []
    unknown: list[UnknownItem] = []

    for item in iter_items(result):
        if isinstance(item, QueriesListItem):
            for query in item.rising:
                entry = _entry(query.query, query.value)
                if entry:
                    entries.append(entry)
        elif isinstance(item, TopicsListItem):
            for topic in item.rising:
                entry = _entry(topic.title or topic.topic_type, topic.value)
                if entry:
                    entries.append(entry)
        elif isinstance(item, UnknownItem):
            unknown.append(item)

    if entries:
        return entries

    for item in unknown:
        entries.extend(_legacy_rising(item.raw))
    return entries
