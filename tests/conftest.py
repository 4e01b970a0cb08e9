"""Pytest configuration and fixtures."""

import itertools
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.payloads import NOW
from trend_scout.clients.demand_classifier import DemandAssessment
from trend_scout.config import Settings
from trend_scout.db.repository import TrendRepository
from trend_scout.models.tasks import DemandLabel


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        dataforseo_login="test_login",
        dataforseo_password="test_password",
        openrouter_api_key="",
        database_url="sqlite:///:memory:",
        trends_markets="global,us",
        trends_timeframes="past_7_days",
    )


@pytest.fixture
def repository(tmp_path, settings) -> TrendRepository:
    """File-backed SQLite repository with fresh tables."""
    repo = TrendRepository(database_url=f"sqlite:///{tmp_path / 'trends.db'}", settings=settings)
    repo.create_tables()
    return repo


@pytest.fixture
def classifier() -> MagicMock:
    """Classifier that accepts every keyword as tool demand."""
    mock = MagicMock()
    mock.assess = AsyncMock(
        return_value=DemandAssessment(
            enabled=True,
            label=DemandLabel.TOOL,
            score=0.9,
            reason="software category",
            summary="People are looking for software that does this.",
        )
    )
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def dataforseo_client() -> MagicMock:
    """DataForSEO client that accepts every posted task."""
    mock = MagicMock()
    ids = itertools.count(1)

    async def post_explore_tasks(payloads):
        return {
            "status_code": 20000,
            "tasks": [
                {
                    "id": f"task-{next(ids)}",
                    "status_code": 20100,
                    "status_message": "Task Created.",
                    "cost": 0.0025,
                }
                for _ in payloads
            ],
        }

    mock.post_explore_tasks = AsyncMock(side_effect=post_explore_tasks)
    mock.close = AsyncMock()
    return mock

