"""FastAPI application for the trend discovery engine."""

import gzip
import json
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from trend_scout import __version__
from trend_scout.clients.demand_classifier import ClassifierCache
from trend_scout.config import get_settings
from trend_scout.db.repository import TrendRepository
from trend_scout.pipeline.callback import CallbackOutcome
from trend_scout.pipeline.discovery import TrendDiscovery
from trend_scout.pipeline.inspector import RunDetail, RunSummary, get_run_detail, list_runs
from trend_scout.pipeline.seeding import SeedOutcome
from trend_scout.utils.logging import setup_logging

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/dataforseo/callback"

setup_logging()

# Initialize FastAPI app
app = FastAPI(
    title="Trend Scout - Trend Discovery",
    description="Discovers newly emerging search keywords from Google Trends Explore data",
    version=__version__,
)

# CORS middleware for API access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": str(exc),
            "type": type(exc).__name__,
            "path": str(request.url.path),
        },
    )


@lru_cache
def get_repository() -> TrendRepository:
    """Shared repository; tables are created on first use."""
    repository = TrendRepository()
    repository.create_tables()
    return repository


@lru_cache
def get_classifier_cache() -> ClassifierCache:
    return ClassifierCache(get_settings().classifier_cache_size)


async def get_discovery(repository: TrendRepository = Depends(get_repository)):
    """Discovery engine for one request. HTTP clients are closed afterwards."""
    async with TrendDiscovery(
        repository=repository, classifier_cache=get_classifier_cache()
    ) as discovery:
        yield discovery


# Request/Response Models
class TriggerRunResponse(BaseModel):
    status: str = "ok"
    run_id: str | None
    posted: int
    errors: int
    details: list[str] = Field(default_factory=list)


class CallbackResponse(BaseModel):
    status: str = "ok"
    processed: int
    errors: int
    skipped: int
    runs_updated: int


def build_callback_url(request: Request) -> str:
    """Postback URL from the configured public URL, else from the incoming request."""
    base_url = get_settings().app_url or str(request.base_url)
    return f"{base_url.rstrip('/')}{CALLBACK_PATH}"


def decode_callback_body(body: bytes, content_encoding: str | None) -> dict[str, Any]:
    """
    Decode a (possibly gzipped) callback body.

    An empty body is an empty payload. Raises ValueError for bodies that
    are not a JSON object.
    """
    if (content_encoding or "").lower() == "gzip" or body[:2] == b"\x1f\x8b":
        try:
            body = gzip.decompress(body)
        except OSError as e:
            raise ValueError(f"Invalid gzip body: {e}") from e

    if not body.strip():
        return {}

    payload = json.loads(body)
    if not isinstance(payload, dict):
        raise ValueError("Callback body must be a JSON object")
    return payload


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "dataforseo_configured": bool(settings.dataforseo_login),
        "classifier_configured": settings.classifier_configured,
        "markets": settings.markets,
        "timeframes": settings.timeframes,
    }


@app.post("/api/trends/run", response_model=TriggerRunResponse)
async def trigger_run(request: Request, discovery: TrendDiscovery = Depends(get_discovery)):
    """
    Start a discovery run.

    Seeds root tasks from active roots, recent news and approved candidates.
    Results arrive later through the DataForSEO callback.
    """
    outcome: SeedOutcome = await discovery.trigger_run(build_callback_url(request))
    return TriggerRunResponse(
        run_id=outcome.run_id,
        posted=outcome.posted,
        errors=outcome.errors,
        details=outcome.details,
    )


@app.post(CALLBACK_PATH, response_model=CallbackResponse)
async def dataforseo_callback(request: Request, discovery: TrendDiscovery = Depends(get_discovery)):
    """Receive completed Explore tasks from DataForSEO."""
    body = await request.body()
    try:
        payload = decode_callback_body(body, request.headers.get("content-encoding"))
    except ValueError as e:
        logger.warning(f"Rejected callback body: {e}")
        raise HTTPException(status_code=400, detail=f"Invalid callback payload: {e}")

    outcome: CallbackOutcome = await discovery.process_callback(payload)
    return CallbackResponse(
        processed=outcome.processed,
        errors=outcome.errors,
        skipped=outcome.skipped,
        runs_updated=len(outcome.runs_updated),
    )


@app.get("/api/runs", response_model=list[RunSummary])
async def get_runs(
    limit: int = Query(default=20, ge=1, le=200),
    repository: TrendRepository = Depends(get_repository),
):
    """List recent runs, newest first."""
    return list_runs(repository, limit=limit)


@app.get("/api/runs/{run_id}", response_model=RunDetail)
async def get_run(run_id: str, repository: TrendRepository = Depends(get_repository)):
    """Run summary with its tasks."""
    detail = get_run_detail(repository, run_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return detail


# ASGI entry point for serverless hosting
app_handler = app
