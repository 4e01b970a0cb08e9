"""Tests for series and rising-entry extraction."""

from datetime import timedelta

import pytest

from tests.payloads import NOW, explore_result, graph_item, queries_item
from trend_scout.analysis.series import (
    decode_metadata_tag,
    extract_rising,
    extract_series,
    normalize_keyword,
    normalize_timeframe,
    timeframe_key,
)
from trend_scout.models.tasks import TaskSource


class TestNormalization:
    """Tests for keyword and timeframe normalization."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Agent CRM", "agent crm"),
            ("  agent   crm ", "agent crm"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize_keyword(self, value, expected):
        assert normalize_keyword(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("now 7-d", "past_7_days"),
            ("now 1+d", "past_day"),
            ("now%207-d", "past_7_days"),
            ("past_30_days", "past_30_days"),
        ],
    )
    def test_normalize_timeframe(self, value, expected):
        assert normalize_timeframe(value) == expected

    def test_timeframe_key_decodes_url_encoding(self):
        assert timeframe_key(" now%201%2Bd ") == "past_day"
        assert timeframe_key("past_7_days") == "past_7_days"


class TestExtractSeries:
    """Tests for extract_series."""

    def test_reads_single_keyword_graph(self):
        result = explore_result(
            graph_item("agent crm", [(NOW - timedelta(hours=2), 40), (NOW - timedelta(hours=80), 5)])
        )

        points = extract_series(result, "Agent CRM")

        assert [point.value for point in points] == [5, 40]
        assert points[0].timestamp < points[1].timestamp

    def test_skips_graphs_for_other_keywords(self):
        result = explore_result(graph_item("something else", [(NOW, 99)]))

        assert extract_series(result, "agent crm") == []

    def test_uses_own_column_in_multi_keyword_graph(self):
        result = explore_result(
            {
                "type": "google_trends_graph",
                "keywords": ["crm", "agent crm"],
                "data": [{"timestamp": int(NOW.timestamp()), "values": [80, 12]}],
            }
        )

        points = extract_series(result, "agent crm")

        assert len(points) == 1
        assert points[0].value == 12

    def test_missing_column_value_is_not_shifted(self):
        result = explore_result(
            {
                "type": "google_trends_graph",
                "keywords": ["a", "b"],
                "data": [
                    {"timestamp": int((NOW - timedelta(hours=2)).timestamp()), "values": [None, 40]},
                    {"timestamp": int(NOW.timestamp()), "values": [15, 30]},
                ],
            }
        )

        assert [point.value for point in extract_series(result, "a")] == [15]
        assert [point.value for point in extract_series(result, "b")] == [40, 30]

    def test_graph_without_keywords_applies_to_any_keyword(self):
        result = explore_result(
            {
                "type": "google_trends_graph",
                "keywords": [],
                "data": [{"date_from": "2026-09-30", "value": 7}],
            }
        )

        points = extract_series(result, "agent crm")

        assert [point.value for point in points] == [7]

    def test_drops_points_without_timestamp_or_value(self):
        result = explore_result(
            {
                "type": "google_trends_graph",
                "keywords": ["agent crm"],
                "data": [{"values": [3]}, {"timestamp": int(NOW.timestamp()), "values": []}, "junk"],
            }
        )

        assert extract_series(result, "agent crm") == []

    @pytest.mark.parametrize("payload", [None, {}, [], "oops", {"tasks": "nope"}, [1, 2, 3]])
    def test_malformed_payloads(self, payload):
        assert extract_series(payload, "agent crm") == []

    def test_is_idempotent(self):
        result = explore_result(graph_item("agent crm", [(NOW, 40)]))

        assert extract_series(result, "agent crm") == extract_series(result, "agent crm")


class TestExtractRising:
    """Tests for extract_rising."""

    def test_reads_rising_queries(self):
        result = explore_result(queries_item([("agent crm", 250), ("ai sdr", "Breakout")], top=[("crm", 100)]))

        entries = extract_rising(result)

        assert [(entry.keyword, entry.value) for entry in entries] == [("agent crm", 250), ("ai sdr", 5000)]

    def test_reads_rising_topics(self):
        result = explore_result(
            {
                "type": "google_trends_topics_list",
                "data": {
                    "rising": [
                        {"topic_title": "Customer relationship management", "topic_type": "Topic", "value": "+350%"},
                        {"topic_type": "Software", "value": 120},
                    ]
                },
            }
        )

        entries = extract_rising(result)

        assert [(entry.keyword, entry.value) for entry in entries] == [
            ("Customer relationship management", 350),
            ("Software", 120),
        ]

    def test_legacy_unknown_item(self):
        result = explore_result(
            {
                "type": "google_trends_related_queries",
                "data": {"rising": [{"query": "agent crm", "value": [300]}, {"query": " "}]},
            }
        )

        entries = extract_rising(result)

        assert [(entry.keyword, entry.value) for entry in entries] == [("agent crm", 300)]

    def test_missing_value_is_zero(self):
        result = explore_result(queries_item([("agent crm", None)]))

        entries = extract_rising(result)

        assert entries[0].value == 0

    def test_task_envelope(self):
        payload = {"tasks": [{"id": "t1", "result": explore_result(queries_item([("agent crm", 200)]))}]}

        assert [entry.keyword for entry in extract_rising(payload)] == ["agent crm"]

    @pytest.mark.parametrize("payload", [None, {}, "junk", [{"items": "nope"}]])
    def test_malformed_payloads(self, payload):
        assert extract_rising(payload) == []

    def test_is_idempotent(self):
        result = explore_result(queries_item([("agent crm", 250)]))

        assert extract_rising(result) == extract_rising(result)


class TestDecodeMetadataTag:
    """Tests for decode_metadata_tag."""

    def test_decodes_json_tag(self):
        metadata = decode_metadata_tag('{"source": "rising", "discovery_depth": 2, "root_id": 7}')

        assert metadata.source == TaskSource.RISING
        assert metadata.depth == 2
        assert metadata.root_id == "7"

    @pytest.mark.parametrize("tag", [None, "", "not json", "[1, 2]"])
    def test_unusable_tags(self, tag):
        assert decode_metadata_tag(tag) is None
