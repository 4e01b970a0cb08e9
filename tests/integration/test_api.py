"""Integration tests for the FastAPI endpoints."""

import gzip
import json

import pytest
from fastapi.testclient import TestClient

from api.main import app, decode_callback_body, get_discovery, get_repository
from tests.payloads import callback_payload, callback_task, explore_result, queries_item, root_metadata, store_task
from trend_scout.pipeline.discovery import TrendDiscovery

CALLBACK_PATH = "/api/dataforseo/callback"


@pytest.fixture
def client(repository, settings, dataforseo_client, classifier):
    async def discovery_override():
        async with TrendDiscovery(
            settings=settings,
            repository=repository,
            dataforseo_client=dataforseo_client,
            classifier=classifier,
        ) as discovery:
            yield discovery

    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_discovery] = discovery_override
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def run_id(repository) -> str:
    return repository.create_run(status="running", trigger_source="test", root_keywords=["ai agent"]).id


class TestDecodeCallbackBody:
    """Tests for decode_callback_body."""

    def test_plain_json(self):
        assert decode_callback_body(b'{"tasks": []}', None) == {"tasks": []}

    def test_gzip_is_detected_without_header(self):
        assert decode_callback_body(gzip.compress(b'{"tasks": []}'), None) == {"tasks": []}

    def test_empty_body(self):
        assert decode_callback_body(b"  ", "identity") == {}

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]"])
    def test_invalid_bodies(self, body):
        with pytest.raises(ValueError):
            decode_callback_body(body, None)

    def test_invalid_gzip(self):
        with pytest.raises(ValueError):
            decode_callback_body(b"plain", "gzip")


class TestEndpoints:
    """Tests for the HTTP surface."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_trigger_run_without_seeds(self, client, dataforseo_client):
        response = client.post("/api/trends/run")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "run_id": None, "posted": 0, "errors": 0, "details": []}
        dataforseo_client.post_explore_tasks.assert_not_called()

    def test_trigger_run_posts_root_tasks(self, client, repository, dataforseo_client):
        repository.add_root("ai agent")

        response = client.post("/api/trends/run")

        body = response.json()
        assert response.status_code == 200
        assert body["posted"] == 1
        payloads = dataforseo_client.post_explore_tasks.call_args.args[0]
        assert payloads[0]["postback_url"].endswith(CALLBACK_PATH)

    def test_callback_processes_gzipped_payload(self, client, repository, run_id):
        store_task(repository, run_id, "root-task", "ai agent", root_metadata())
        payload = callback_payload(callback_task("root-task", explore_result(queries_item([("agent crm", 250)]))))

        response = client.post(
            CALLBACK_PATH,
            content=gzip.compress(json.dumps(payload).encode()),
            headers={"Content-Encoding": "gzip", "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "processed": 1, "errors": 0, "skipped": 0, "runs_updated": 1}
        assert repository.get_task_by_task_id("root-task").status == "completed"

    def test_callback_rejects_invalid_json(self, client):
        response = client.post(CALLBACK_PATH, content=b"{broken", headers={"Content-Type": "application/json"})

        assert response.status_code == 400

    def test_empty_callback(self, client):
        response = client.post(CALLBACK_PATH, content=b"")

        assert response.status_code == 200
        assert response.json()["processed"] == 0

    def test_list_runs(self, client, run_id):
        response = client.get("/api/runs", params={"limit": 5})

        assert response.status_code == 200
        assert [run["id"] for run in response.json()] == [run_id]

    def test_list_runs_limit_is_bounded(self, client):
        assert client.get("/api/runs", params={"limit": 0}).status_code == 422

    def test_run_detail(self, client, repository, run_id):
        store_task(repository, run_id, "root-task", "ai agent", root_metadata(), status="error")
        repository.update_task("root-task", error={"status_message": "Task Handed."})

        response = client.get(f"/api/runs/{run_id}")

        body = response.json()
        assert response.status_code == 200
        assert body["run"]["task_counts"]["error"] == 1
        assert body["tasks"][0]["error_message"] == "Task Handed."

    def test_unknown_run(self, client):
        assert client.get("/api/runs/missing").status_code == 404
