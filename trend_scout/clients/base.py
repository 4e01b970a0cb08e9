"""Shared async HTTP plumbing for the DataForSEO and demand classifier clients."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, TypeVar

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from trend_scout.config import Settings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

JsonBody = dict[str, Any] | list[Any]


class APIError(Exception):
    """An upstream API answered with an HTTP error status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class RateLimitError(APIError):
    """HTTP 429 from the upstream API."""


class AuthenticationError(APIError):
    """HTTP 401 from the upstream API: bad or missing credentials."""


# Statuses with a dedicated exception; anything else >= 400 is a plain APIError
STATUS_ERRORS: dict[int, tuple[type[APIError], str]] = {
    401: (AuthenticationError, "Authentication failed"),
    429: (RateLimitError, "Rate limit exceeded"),
}


class RateLimiter:
    """
    Spaces out calls to at most ``calls_per_minute``.

    Each call reserves the next free slot under the lock and sleeps outside
    it, so concurrent callers queue up in order instead of all waking at once.
    """

    def __init__(self, calls_per_minute: int):
        self.interval = 60.0 / calls_per_minute
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.interval

        delay = slot - now
        if delay > 0:
            logger.debug(f"Rate limiter delaying call by {delay:.3f}s")
            await asyncio.sleep(delay)


def parse_response(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON response, raising the matching APIError for error statuses."""
    try:
        data = response.json()
    except ValueError:
        data = {"raw": response.text}
    if not isinstance(data, dict):
        data = {"data": data}

    if response.status_code >= 400:
        error_class, message = STATUS_ERRORS.get(
            response.status_code, (APIError, f"API request failed: {response.status_code}")
        )
        raise error_class(message, status_code=response.status_code, response_data=data)

    return data


class BaseAPIClient(ABC):
    """
    JSON-over-HTTP client with a lazily created ``httpx.AsyncClient``.

    Only failures to connect are retried, with exponential backoff. Once the
    request may have reached the server (read timeouts, HTTP error statuses)
    it is not repeated, since a second task_post could queue the same tasks
    twice.
    """

    def __init__(
        self,
        base_url: str,
        settings: Settings | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @abstractmethod
    def _get_default_headers(self) -> dict[str, str]:
        """Headers sent with every request (auth, content type)."""

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._get_default_headers(),
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @retry(
        retry=retry_if_exception_type((httpx.ConnectTimeout, httpx.ConnectError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def post(
        self,
        endpoint: str,
        json_data: JsonBody | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST a JSON body and return the decoded JSON object."""
        if self.rate_limiter:
            await self.rate_limiter.acquire()

        started = time.monotonic()
        response = await self.client.post(endpoint, json=json_data, headers=headers)
        logger.debug(
            f"POST {self.base_url}{endpoint} -> {response.status_code} "
            f"in {time.monotonic() - started:.2f}s"
        )
        return parse_response(response)


def batch_items(items: list[T], batch_size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [items[start : start + batch_size] for start in range(0, len(items), batch_size)]
