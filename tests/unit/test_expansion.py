"""Tests for rising-query expansion and keyword spike detection."""

from datetime import timedelta

import pytest

from tests.payloads import (
    NOW,
    explore_result,
    graph_item,
    map_item,
    queries_item,
    rising_metadata,
    root_metadata,
    spike_points,
    store_task,
)
from trend_scout.clients.demand_classifier import DemandAssessment
from trend_scout.models.tasks import DemandLabel, RisingEntry, SpikePriority, TaskSource
from trend_scout.pipeline.expansion import ExpansionController, dedupe_entries, truncate_summary
from trend_scout.pipeline.poster import TaskPoster


@pytest.fixture
def run_id(repository) -> str:
    return repository.create_run(status="running", trigger_source="test", root_keywords=["ai agent"]).id


@pytest.fixture
def controller(repository, dataforseo_client, classifier, settings) -> ExpansionController:
    poster = TaskPoster(repository, dataforseo_client, settings)
    return ExpansionController(repository, poster, classifier, settings)


def parent_task(repository, run_id, keyword="ai agent", metadata=None, **kwargs):
    store_task(repository, run_id, "parent-task", keyword, metadata or root_metadata(), **kwargs)
    return repository.get_task_by_task_id("parent-task")


def children(repository, run_id):
    return [task for task in repository.get_tasks_by_run(run_id) if task.task_id != "parent-task"]


class TestHelpers:
    """Tests for dedupe_entries and truncate_summary."""

    def test_dedupe_keeps_first_and_drops_excluded(self):
        entries = [
            RisingEntry(keyword="Agent CRM", value=300),
            RisingEntry(keyword="agent  crm", value=250),
            RisingEntry(keyword="AI Agent", value=500),
            RisingEntry(keyword="ai sdr", value=120),
        ]

        unique = dedupe_entries(entries, {"ai agent"})

        assert [(entry.keyword, entry.value) for entry in unique] == [("Agent CRM", 300), ("ai sdr", 120)]

    def test_truncate_summary(self):
        assert truncate_summary(None) is None
        assert truncate_summary("   ") is None
        assert truncate_summary(" short ") == "short"

        truncated = truncate_summary("x" * 300)

        assert len(truncated) == 240
        assert truncated.endswith("...")


class TestExpand:
    """Tests for ExpansionController.expand."""

    @pytest.mark.asyncio
    async def test_root_task_spawns_depth_one_children(self, controller, repository, run_id, classifier):
        task = parent_task(repository, run_id)
        result = explore_result(
            queries_item([("agent crm", 250), ("Agent  CRM", 300), ("AI agent", 500), ("too small", 50)])
        )

        queued = await controller.expand(task, task.stored_metadata, task.request, result, now=NOW)

        assert queued == 1
        (child,) = children(repository, run_id)
        assert child.keyword == "agent crm"
        metadata = child.stored_metadata
        assert metadata.source == TaskSource.RISING
        assert metadata.discovery_depth == 1
        assert metadata.parent_task_id == "parent-task"
        assert metadata.parent_keyword == "ai agent"
        assert metadata.root_keyword == "ai agent"
        assert metadata.demand_assessment.label == DemandLabel.TOOL
        assert child.request["postback_url"] == task.request["postback_url"]
        assert child.request["item_types"] == [
            "google_trends_graph",
            "google_trends_map",
            "google_trends_topics_list",
            "google_trends_queries_list",
        ]

        request = classifier.assess.call_args.args[0]
        assert request.notes == "rising_expansion"
        assert request.spike_score == 250

    @pytest.mark.asyncio
    async def test_depth_one_parent_posts_nothing(self, controller, repository, run_id, classifier, dataforseo_client):
        task = parent_task(repository, run_id, keyword="agent crm", metadata=rising_metadata(depth=1))
        result = explore_result(queries_item([("agent crm pricing", 400)]))

        queued = await controller.expand(task, task.stored_metadata, task.request, result, now=NOW)

        assert queued == 0
        assert children(repository, run_id) == []
        classifier.assess.assert_not_called()
        dataforseo_client.post_explore_tasks.assert_not_called()

    @pytest.mark.asyncio
    async def test_depth_one_parent_expands_under_higher_max(self, controller, repository, run_id):
        controller.settings.max_discovery_depth = 3
        task = parent_task(repository, run_id, keyword="agent crm", metadata=rising_metadata(depth=1))
        result = explore_result(queries_item([("agent crm pricing", 400)]))

        queued = await controller.expand(task, task.stored_metadata, task.request, result, now=NOW)

        assert queued == 1
        (child,) = children(repository, run_id)
        assert child.stored_metadata.discovery_depth == 2

    @pytest.mark.asyncio
    async def test_max_depth_parent_posts_nothing(self, controller, repository, run_id, dataforseo_client):
        task = parent_task(repository, run_id, keyword="agent crm pricing", metadata=rising_metadata(depth=2))
        result = explore_result(queries_item([("agent crm pricing free", 400)]))

        queued = await controller.expand(task, task.stored_metadata, task.request, result, now=NOW)

        assert queued == 0
        dataforseo_client.post_explore_tasks.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_tool_entries_are_skipped(self, controller, repository, run_id, classifier, dataforseo_client):
        classifier.assess.return_value = DemandAssessment(label=DemandLabel.NON_TOOL, reason="celebrity")
        task = parent_task(repository, run_id)

        queued = await controller.expand(
            task, task.stored_metadata, task.request, explore_result(queries_item([("agent crm", 250)])), now=NOW
        )

        assert queued == 0
        dataforseo_client.post_explore_tasks.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_postback_url(self, controller, repository, run_id, classifier):
        task = parent_task(repository, run_id, postback_url=None)

        queued = await controller.expand(
            task, task.stored_metadata, task.request, explore_result(queries_item([("agent crm", 250)])), now=NOW
        )

        assert queued == 0
        classifier.assess.assert_not_called()

    @pytest.mark.asyncio
    async def test_incomplete_lineage(self, controller, repository, run_id, classifier):
        task = parent_task(repository, run_id, metadata=root_metadata(root_label=None))

        queued = await controller.expand(
            task, task.stored_metadata, task.request, explore_result(queries_item([("agent crm", 250)])), now=NOW
        )

        assert queued == 0

    @pytest.mark.asyncio
    async def test_rising_task_outside_markets(self, controller, repository, run_id, classifier):
        task = parent_task(
            repository, run_id, keyword="agent crm", metadata=rising_metadata(locale="de"), locale="de"
        )

        queued = await controller.expand(
            task, task.stored_metadata, task.request, explore_result(queries_item([("agent crm api", 250)])), now=NOW
        )

        assert queued == 0
        classifier.assess.assert_not_called()

    @pytest.mark.asyncio
    async def test_matched_market_sets_location(self, controller, repository, run_id):
        task = parent_task(repository, run_id)
        result = explore_result(
            map_item([("US", "United States", 100), ("DE", "Germany", 30)]),
            queries_item([("agent crm", 250)]),
        )

        await controller.expand(task, task.stored_metadata, task.request, result, now=NOW)

        (child,) = children(repository, run_id)
        assert child.locale == "us"
        assert child.request["location_code"] == 2840
        assert child.request["language_name"] == "English"
        assert child.stored_metadata.location_name == "United States"

    @pytest.mark.asyncio
    async def test_global_child_has_no_location(self, controller, repository, run_id):
        task = parent_task(repository, run_id, metadata=root_metadata(location_name="Global"))

        await controller.expand(
            task, task.stored_metadata, task.request, explore_result(queries_item([("agent crm", 250)])), now=NOW
        )

        (child,) = children(repository, run_id)
        assert child.locale == "global"
        assert "location_name" not in child.request
        assert child.stored_metadata.location_name is None

    @pytest.mark.asyncio
    async def test_known_old_keyword_is_not_expanded(self, controller, repository, run_id, classifier):
        repository.upsert_keyword(
            keyword="agent crm",
            locale="global",
            timeframe="past_7_days",
            first_seen=NOW - timedelta(hours=200),
            last_seen=NOW - timedelta(hours=150),
            spike_score=40,
            priority="72h",
            summary=None,
            metadata={},
        )
        task = parent_task(repository, run_id)

        queued = await controller.expand(
            task, task.stored_metadata, task.request, explore_result(queries_item([("agent crm", 250)])), now=NOW
        )

        assert queued == 0
        classifier.assess.assert_not_called()


class TestDetect:
    """Tests for ExpansionController.detect."""

    def rising_task(self, repository, run_id, keyword="agent crm", metadata=None):
        store_task(repository, run_id, "rising-task", keyword, metadata or rising_metadata(depth=1))
        return repository.get_task_by_task_id("rising-task")

    @pytest.mark.asyncio
    async def test_records_new_spike(self, controller, repository, run_id, classifier):
        task = self.rising_task(repository, run_id)
        result = explore_result(graph_item("agent crm", spike_points(NOW)))

        detection = await controller.detect(task, task.stored_metadata, result, now=NOW)

        assert detection.keyword == "agent crm"
        assert detection.priority == SpikePriority.HOT

        keyword = repository.get_keyword("agent crm", "global", "past_7_days")
        assert keyword.spike_score == 40
        assert keyword.priority == "24h"
        assert keyword.first_seen == NOW - timedelta(hours=2)
        assert keyword.summary == "People are looking for software that does this."
        assert keyword.metadata["spike_detection"]["task_id"] == "rising-task"
        assert keyword.metadata["spike_detection"]["baseline_max"] == 5
        assert keyword.metadata["demand_assessment"]["label"] == "tool"

        request = classifier.assess.call_args.args[0]
        assert request.notes == "priority=24h"
        assert request.parent_keyword == "ai agent"
        assert request.spike_score == 40

    @pytest.mark.asyncio
    async def test_root_tasks_are_not_recorded(self, controller, repository, run_id):
        store_task(repository, run_id, "root-task", "agent crm", root_metadata(keyword="agent crm"))
        task = repository.get_task_by_task_id("root-task")

        detection = await controller.detect(
            task, task.stored_metadata, explore_result(graph_item("agent crm", spike_points(NOW))), now=NOW
        )

        assert detection is None
        assert repository.get_keyword("agent crm", "global", "past_7_days") is None

    @pytest.mark.asyncio
    async def test_high_baseline_is_not_recorded(self, controller, repository, run_id, classifier):
        task = self.rising_task(repository, run_id)
        points = [(NOW - timedelta(hours=80), 15), (NOW - timedelta(hours=2), 40)]

        detection = await controller.detect(
            task, task.stored_metadata, explore_result(graph_item("agent crm", points)), now=NOW
        )

        assert detection is None
        classifier.assess.assert_not_called()

    @pytest.mark.asyncio
    async def test_decayed_spike_is_not_recorded(self, controller, repository, run_id):
        task = self.rising_task(repository, run_id)
        points = [(NOW - timedelta(hours=80), 5), (NOW - timedelta(hours=30), 40), (NOW - timedelta(hours=2), 1)]

        detection = await controller.detect(
            task, task.stored_metadata, explore_result(graph_item("agent crm", points)), now=NOW
        )

        assert detection is None

    @pytest.mark.asyncio
    async def test_non_tool_is_not_recorded(self, controller, repository, run_id, classifier):
        classifier.assess.return_value = DemandAssessment(label=DemandLabel.NON_TOOL)
        task = self.rising_task(repository, run_id)

        detection = await controller.detect(
            task, task.stored_metadata, explore_result(graph_item("agent crm", spike_points(NOW))), now=NOW
        )

        assert detection is None
        assert repository.get_keyword("agent crm", "global", "past_7_days") is None

    @pytest.mark.asyncio
    async def test_stored_assessment_skips_classifier(self, controller, repository, run_id, classifier):
        metadata = rising_metadata(
            depth=1,
            demand_assessment={"label": "tool", "score": 0.7, "summary": "Automate CRM updates with agents."},
        )
        task = self.rising_task(repository, run_id, metadata=metadata)

        detection = await controller.detect(
            task, task.stored_metadata, explore_result(graph_item("agent crm", spike_points(NOW))), now=NOW
        )

        assert detection is not None
        classifier.assess.assert_not_called()
        keyword = repository.get_keyword("agent crm", "global", "past_7_days")
        assert keyword.summary == "Automate CRM updates with agents."

    @pytest.mark.asyncio
    async def test_unclear_stored_assessment_is_reclassified(self, controller, repository, run_id, classifier):
        metadata = rising_metadata(depth=1, demand_assessment={"label": "unclear", "summary": "Hard to say."})
        task = self.rising_task(repository, run_id, metadata=metadata)

        await controller.detect(
            task, task.stored_metadata, explore_result(graph_item("agent crm", spike_points(NOW))), now=NOW
        )

        classifier.assess.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_old_keyword_is_not_updated(self, controller, repository, run_id):
        repository.upsert_keyword(
            keyword="agent crm",
            locale="global",
            timeframe="past_7_days",
            first_seen=NOW - timedelta(hours=100),
            last_seen=NOW - timedelta(hours=90),
            spike_score=22,
            priority="72h",
            summary="old",
            metadata={},
        )
        task = self.rising_task(repository, run_id)

        detection = await controller.detect(
            task, task.stored_metadata, explore_result(graph_item("agent crm", spike_points(NOW))), now=NOW
        )

        assert detection is None
        assert repository.get_keyword("agent crm", "global", "past_7_days").spike_score == 22

    @pytest.mark.asyncio
    async def test_recent_keyword_keeps_earliest_first_seen(self, controller, repository, run_id):
        repository.upsert_keyword(
            keyword="Agent CRM",
            locale="global",
            timeframe="past_7_days",
            first_seen=NOW - timedelta(hours=10),
            last_seen=NOW - timedelta(hours=10),
            spike_score=30,
            priority="24h",
            summary="earlier summary",
            metadata={"source_note": "kept"},
        )
        task = self.rising_task(repository, run_id)

        await controller.detect(
            task, task.stored_metadata, explore_result(graph_item("agent crm", spike_points(NOW))), now=NOW
        )

        keyword = repository.get_keyword("agent crm", "global", "past_7_days")
        assert keyword.first_seen == NOW - timedelta(hours=10)
        assert keyword.last_seen == NOW - timedelta(hours=2)
        assert keyword.spike_score == 40
        assert keyword.metadata["source_note"] == "kept"
