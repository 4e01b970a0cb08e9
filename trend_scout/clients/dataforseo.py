"""DataForSEO client for Google Trends Explore tasks."""

import base64
import logging
from typing import Any

import httpx

from trend_scout.clients.base import AuthenticationError, BaseAPIClient, RateLimiter
from trend_scout.config import Settings, get_settings

logger = logging.getLogger(__name__)


def basic_auth_header(login: str, password: str) -> str:
    token = base64.b64encode(f"{login}:{password}".encode()).decode()
    return f"Basic {token}"


class DataForSEOClient(BaseAPIClient):
    """
    Posts Google Trends Explore tasks to DataForSEO.

    Only ``task_post`` is used. Results are never polled: DataForSEO sends
    each finished task to the ``postback_url`` it was posted with, and the
    ``tag`` field comes back unchanged.
    """

    TASK_POST_ENDPOINT = "/v3/keywords_data/google_trends/explore/task_post"
    MAX_TASKS_PER_REQUEST = 100
    CALLS_PER_MINUTE = 2000

    def __init__(
        self,
        login: str | None = None,
        password: str | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        super().__init__(
            base_url=settings.dataforseo_base_url,
            settings=settings,
            rate_limiter=RateLimiter(self.CALLS_PER_MINUTE),
            timeout=settings.dataforseo_timeout,
            transport=transport,
        )
        default_login, default_password = settings.dataforseo_credentials
        self.login = login or default_login
        self.password = password or default_password

    @property
    def configured(self) -> bool:
        return bool(self.login and self.password)

    def _get_default_headers(self) -> dict[str, str]:
        return {
            "Authorization": basic_auth_header(self.login, self.password),
            "Content-Type": "application/json",
        }

    async def post_explore_tasks(self, payloads: list[dict[str, Any]]) -> dict[str, Any]:
        """
        Submit up to ``MAX_TASKS_PER_REQUEST`` Explore tasks in one request.

        Args:
            payloads: Task bodies (keywords, time_range, location, postback_url, tag)

        Returns:
            The raw response. ``tasks[i]`` answers ``payloads[i]`` with the
            provider task id, status_code, status_message and cost.

        Raises:
            ValueError: Too many tasks for one request
            AuthenticationError: Credentials are not configured
        """
        if len(payloads) > self.MAX_TASKS_PER_REQUEST:
            raise ValueError(
                f"At most {self.MAX_TASKS_PER_REQUEST} tasks per request, got {len(payloads)}"
            )
        if not self.configured:
            raise AuthenticationError("DataForSEO credentials not configured")

        response = await self.post(self.TASK_POST_ENDPOINT, json_data=payloads)
        logger.debug(
            f"task_post answered {response.get('status_code')} "
            f"({response.get('status_message')}) for {len(payloads)} tasks"
        )
        return response
