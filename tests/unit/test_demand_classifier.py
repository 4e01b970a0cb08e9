"""Tests for demand classifier parsing, caching and verdict rules."""

import json

import pytest

from trend_scout.clients.demand_classifier import (
    ClassifierCache,
    DemandAssessment,
    DemandRequest,
    build_prompt,
    is_tool_demand,
    normalize_label,
    parse_completion,
)
from trend_scout.models.tasks import DemandLabel


def completion(content) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestLabels:
    """Tests for label normalization and the tool-demand rule."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("tool", DemandLabel.TOOL),
            ("AI_TOOL", DemandLabel.TOOL),
            ("productized", DemandLabel.TOOL),
            ("yes", DemandLabel.TOOL),
            ("non_tool", DemandLabel.NON_TOOL),
            ("none", DemandLabel.NON_TOOL),
            ("No", DemandLabel.NON_TOOL),
            ("unclear", DemandLabel.UNCLEAR),
            ("maybe", DemandLabel.UNCLEAR),
            (None, DemandLabel.UNCLEAR),
            (3, DemandLabel.UNCLEAR),
        ],
    )
    def test_normalize_label(self, raw, expected):
        assert normalize_label(raw) == expected

    def test_only_enabled_non_tool_rejects(self):
        assert is_tool_demand(None) is True
        assert is_tool_demand(DemandAssessment.disabled()) is True
        assert is_tool_demand(DemandAssessment(label=DemandLabel.TOOL)) is True
        assert is_tool_demand(DemandAssessment(label=DemandLabel.UNCLEAR)) is True
        assert is_tool_demand(DemandAssessment(label=DemandLabel.NON_TOOL)) is False
        assert is_tool_demand(DemandAssessment(enabled=False, label=DemandLabel.NON_TOOL)) is True

    def test_disabled_verdict(self):
        verdict = DemandAssessment.disabled()

        assert verdict.enabled is False
        assert verdict.label == DemandLabel.TOOL


class TestParseCompletion:
    """Tests for parse_completion."""

    def test_full_response(self):
        content = json.dumps(
            {"label": "tool", "score": 0.82, "demand_summary": " Find a CRM run by AI agents. ", "reason": "software"}
        )

        assessment = parse_completion(completion(content))

        assert assessment.label == DemandLabel.TOOL
        assert assessment.score == 0.82
        assert assessment.summary == "Find a CRM run by AI agents."
        assert assessment.reason == "software"

    def test_summary_fallback_key(self):
        assessment = parse_completion(completion(json.dumps({"label": "unclear", "summary": "Something"})))

        assert assessment.summary == "Something"

    def test_non_numeric_score(self):
        assessment = parse_completion(completion(json.dumps({"label": "tool", "score": "high"})))

        assert assessment.score is None

    @pytest.mark.parametrize(
        "response",
        [
            {},
            {"choices": []},
            completion(None),
            completion("not json"),
            completion("[1, 2]"),
        ],
    )
    def test_unusable_responses_raise(self, response):
        with pytest.raises(ValueError):
            parse_completion(response)


class TestDemandRequest:
    """Tests for prompts and cache keys."""

    def test_cache_key_ignores_case_and_whitespace(self):
        first = DemandRequest(keyword="Agent CRM ", locale="US", spike_score=40)
        second = DemandRequest(keyword="agent crm", locale="us", spike_score=40)

        assert first.cache_key() == second.cache_key()

    def test_cache_key_depends_on_context(self):
        first = DemandRequest(keyword="agent crm", notes="priority=24h")
        second = DemandRequest(keyword="agent crm", notes="rising_expansion")

        assert first.cache_key() != second.cache_key()

    def test_prompt_includes_context(self):
        prompt = build_prompt(
            DemandRequest(
                keyword="agent crm",
                root_keyword="ai agent",
                parent_keyword="ai agent",
                locale="us",
                spike_score=250,
                notes="rising_expansion",
            )
        )

        assert "Keyword: agent crm" in prompt
        assert "Root Keyword: ai agent" in prompt
        assert "Parent Keyword: ai agent" in prompt
        assert "Spike Score: 250" in prompt
        assert "Notes: rising_expansion" in prompt
        assert "Timeframe" not in prompt


class TestClassifierCache:
    """Tests for the bounded LRU cache."""

    def test_evicts_least_recently_used(self):
        cache = ClassifierCache(max_size=2)
        cache.set("a", DemandAssessment(label=DemandLabel.TOOL))
        cache.set("b", DemandAssessment(label=DemandLabel.NON_TOOL))

        cache.get("a")
        cache.set("c", DemandAssessment(label=DemandLabel.UNCLEAR))

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert len(cache) == 2

    def test_clear(self):
        cache = ClassifierCache()
        cache.set("a", DemandAssessment())

        cache.clear()

        assert len(cache) == 0
        assert cache.get("a") is None
