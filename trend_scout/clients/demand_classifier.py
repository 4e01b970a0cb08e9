"""
Demand classifier client.

Asks an LLM (OpenRouter chat completions) whether a keyword reflects demand
for a software tool. The classifier is advisory: a missing API key fails
open (everything counts as a tool) and request failures come back as
``unclear`` so they never silently reject a keyword.
"""

import hashlib
import json
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel

from trend_scout.clients.base import APIError, BaseAPIClient
from trend_scout.config import Settings, get_settings
from trend_scout.models.tasks import DemandLabel, StoredDemandAssessment
from trend_scout.utils.time import utcnow

logger = logging.getLogger(__name__)

LABEL_ALIASES = {
    "tool": DemandLabel.TOOL,
    "ai_tool": DemandLabel.TOOL,
    "software": DemandLabel.TOOL,
    "software_tool": DemandLabel.TOOL,
    "productized": DemandLabel.TOOL,
    "yes": DemandLabel.TOOL,
    "non_tool": DemandLabel.NON_TOOL,
    "none": DemandLabel.NON_TOOL,
    "not_tool": DemandLabel.NON_TOOL,
    "no": DemandLabel.NON_TOOL,
    "unclear": DemandLabel.UNCLEAR,
    "unknown": DemandLabel.UNCLEAR,
}

SYSTEM_PROMPT = (
    "You classify search keywords by whether they indicate demand for a software tool, "
    "automation, or online service. Respond with strict JSON only."
)


class DemandRequest(BaseModel):
    """Keyword plus the context the classifier sees."""

    keyword: str
    root_keyword: str | None = None
    parent_keyword: str | None = None
    locale: str | None = None
    timeframe: str | None = None
    spike_score: float | None = None
    notes: str | None = None

    def cache_key(self) -> str:
        parts = [
            self.keyword,
            self.root_keyword,
            self.parent_keyword,
            self.locale,
            self.timeframe,
            self.spike_score,
            self.notes,
        ]
        joined = "::".join("" if part is None else str(part).strip().lower() for part in parts)
        return hashlib.sha256(joined.encode()).hexdigest()


class DemandAssessment(BaseModel):
    """Classifier verdict. ``enabled`` is False when no classifier is configured."""

    enabled: bool = True
    label: DemandLabel = DemandLabel.UNCLEAR
    score: float | None = None
    reason: str | None = None
    summary: str | None = None

    @classmethod
    def disabled(cls) -> "DemandAssessment":
        return cls(enabled=False, label=DemandLabel.TOOL)

    @classmethod
    def from_stored(cls, stored: StoredDemandAssessment | dict | None) -> "DemandAssessment | None":
        """Rebuild an assessment persisted in task or keyword metadata."""
        if stored is None:
            return None
        if isinstance(stored, dict):
            stored = StoredDemandAssessment.model_validate(stored)
        summary = (stored.summary or "").strip() or None
        return cls(
            enabled=True,
            label=stored.label,
            score=stored.score,
            reason=stored.reason,
            summary=summary,
        )

    def to_stored(self, now: datetime | None = None) -> StoredDemandAssessment:
        return StoredDemandAssessment(
            label=self.label,
            score=self.score,
            reason=self.reason,
            summary=self.summary,
            updated_at=now or utcnow(),
        )


def normalize_label(value: Any) -> DemandLabel:
    if not isinstance(value, str):
        return DemandLabel.UNCLEAR
    return LABEL_ALIASES.get(value.strip().lower(), DemandLabel.UNCLEAR)


def is_tool_demand(assessment: DemandAssessment | None) -> bool:
    """Only an enabled classifier saying ``non_tool`` rejects a keyword."""
    if assessment is None or not assessment.enabled:
        return True
    return assessment.label != DemandLabel.NON_TOOL


class ClassifierCache:
    """Bounded LRU cache of classifier verdicts, keyed by ``DemandRequest.cache_key``."""

    def __init__(self, max_size: int = 1024):
        self.max_size = max_size
        self._entries: OrderedDict[str, DemandAssessment] = OrderedDict()

    def get(self, key: str) -> DemandAssessment | None:
        assessment = self._entries.get(key)
        if assessment is not None:
            self._entries.move_to_end(key)
        return assessment

    def set(self, key: str, assessment: DemandAssessment) -> None:
        self._entries[key] = assessment
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


def build_prompt(request: DemandRequest) -> str:
    lines = [f"Keyword: {request.keyword}"]
    if request.root_keyword:
        lines.append(f"Root Keyword: {request.root_keyword}")
    if request.parent_keyword and request.parent_keyword != request.keyword:
        lines.append(f"Parent Keyword: {request.parent_keyword}")
    if request.locale:
        lines.append(f"Locale: {request.locale}")
    if request.timeframe:
        lines.append(f"Timeframe: {request.timeframe}")
    if request.spike_score is not None:
        lines.append(f"Spike Score: {request.spike_score}")
    if request.notes:
        lines.append(f"Notes: {request.notes}")

    lines.extend(
        [
            "Task: Decide whether searchers behind this keyword are likely seeking a software tool, "
            "automation, or online service that can directly satisfy the need. "
            "Focus on practical, actionable demand.",
            "If no software or automation solution would directly help, classify the term as non_tool. "
            "When unsure, mark unclear.",
            "Summarize the underlying user task in one concise sentence if you classify it as tool or unclear.",
            'Return strict JSON: {"label":"tool|non_tool|unclear","score":number 0-1,'
            '"demand_summary":string,"reason":string}.',
        ]
    )
    return "\n".join(lines)


def parse_completion(response: dict[str, Any]) -> DemandAssessment:
    """Parse a chat-completions response into an assessment."""
    choices = response.get("choices") or []
    content = None
    if choices and isinstance(choices[0], dict):
        content = (choices[0].get("message") or {}).get("content")
    if not content or not isinstance(content, str):
        raise ValueError("Classifier response missing content")

    parsed = json.loads(content)
    if not isinstance(parsed, dict):
        raise ValueError("Classifier response is not a JSON object")

    score = parsed.get("score")
    summary = parsed.get("demand_summary")
    if not isinstance(summary, str):
        summary = parsed.get("summary")
    reason = parsed.get("reason")

    return DemandAssessment(
        enabled=True,
        label=normalize_label(parsed.get("label")),
        score=float(score) if isinstance(score, (int, float)) and not isinstance(score, bool) else None,
        reason=reason.strip() if isinstance(reason, str) else None,
        summary=(summary.strip() or None) if isinstance(summary, str) else None,
    )


class DemandClassifierClient(BaseAPIClient):
    """OpenRouter-backed demand classifier with an injected response cache."""

    BASE_URL = "https://openrouter.ai/api/v1"
    COMPLETIONS_ENDPOINT = "/chat/completions"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        cache: ClassifierCache | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        super().__init__(base_url=self.BASE_URL, settings=settings, timeout=30.0, transport=transport)

        self.api_key = api_key or settings.openrouter_api_key.get_secret_value()
        self.model = model or settings.openrouter_model
        self.cache = cache if cache is not None else ClassifierCache(settings.classifier_cache_size)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get_default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://trend-scout",
            "X-Title": "Trend Scout",
        }

    async def assess(self, request: DemandRequest) -> DemandAssessment:
        """
        Classify a keyword.

        Never raises: returns a disabled ``tool`` verdict without an API key
        and an ``unclear`` verdict with ``reason="llm_error: ..."`` on failure.
        """
        if not self.enabled:
            return DemandAssessment.disabled()

        key = request.cache_key()
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        body = {
            "model": self.model,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(request)},
            ],
        }

        try:
            response = await self.post(self.COMPLETIONS_ENDPOINT, json_data=body)
            assessment = parse_completion(response)
        except (APIError, httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to assess keyword demand for '{request.keyword}': {e}")
            assessment = DemandAssessment(
                enabled=True,
                label=DemandLabel.UNCLEAR,
                reason=f"llm_error: {e}",
            )

        self.cache.set(key, assessment)
        return assessment
