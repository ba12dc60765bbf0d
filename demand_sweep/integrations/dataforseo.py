"""DataForSEO API integration for keyword volumes and keyword ideas."""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from demand_sweep.config import settings
from demand_sweep.core.exceptions import (
    APIKeyMissingError,
    AuthenticationFailedError,
    ExternalAPIError,
    ExternalAPITimeoutError,
    RateLimitExceededError,
)

logger = logging.getLogger(__name__)

API_NAME = "DataForSEO"
STATUS_OK = 20000
AUTH_STATUS_CODES = frozenset({40100, 40101, 40102, 40103, 40104})

SEARCH_VOLUME_ENDPOINT = "keywords_data/google_ads/search_volume/live"
KEYWORDS_FOR_KEYWORDS_ENDPOINT = "keywords_data/google_ads/keywords_for_keywords/live"


@dataclass(slots=True)
class TaskResults:
    """Result items of every successful task plus messages of failed tasks."""

    items: list[dict[str, Any]] = field(default_factory=list)
    task_errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class VolumeRow:
    keyword: str
    search_volume: int | None
    cpc: float | None
    competition_index: float | None


class DataForSEOClient:
    """Async client for the DataForSEO Google Ads keyword endpoints.

    Use as an async context manager. Transport failures are raised as
    ``ExternalAPIError`` subclasses so callers can classify them.
    """

    def __init__(
        self,
        login: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        base_url: str | None = None,
    ) -> None:
        self.login = login or settings.dataforseo_login
        self.password = password or settings.dataforseo_password
        self.timeout = timeout if timeout is not None else settings.dataforseo_timeout_seconds
        self.base_url = (base_url or settings.dataforseo_base_url).rstrip("/")
        self._client: httpx.AsyncClient | None = None

        if not self.login or not self.password:
            raise APIKeyMissingError(API_NAME)

    @property
    def _auth_header(self) -> str:
        """Generate Basic Auth header."""
        credentials = f"{self.login}:{self.password}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return f"Basic {encoded}"

    async def __aenter__(self) -> "DataForSEOClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={
                "Authorization": self._auth_header,
                "Content-Type": "application/json",
            },
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client must be used as async context manager")
        return self._client

    async def _make_request(
        self,
        endpoint: str,
        data: list[dict[str, Any]],
    ) -> TaskResults:
        """POST to an endpoint and collect task results.

        Failed tasks inside a successful response do not raise; their status
        messages are returned alongside the items of the tasks that succeeded.
        """
        logger.debug("DataForSEO API request", extra={"endpoint": endpoint})
        url = f"{self.base_url}/{endpoint}"

        try:
            response = await self.client.post(url, json=data)
        except httpx.TimeoutException as e:
            logger.warning("DataForSEO request timed out", extra={"endpoint": endpoint})
            raise ExternalAPITimeoutError(API_NAME) from e
        except httpx.HTTPError as e:
            logger.warning("DataForSEO HTTP error", extra={"endpoint": endpoint, "error": str(e)})
            raise ExternalAPIError(API_NAME, str(e)) from e

        if response.status_code in (401, 403):
            raise AuthenticationFailedError(API_NAME, f"HTTP {response.status_code}")
        if response.status_code == 429:
            logger.warning("DataForSEO rate limit hit", extra={"endpoint": endpoint})
            raise RateLimitExceededError(API_NAME)

        try:
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalAPIError(API_NAME, f"HTTP {response.status_code}") from e
        except ValueError as e:
            raise ExternalAPIError(API_NAME, "Invalid JSON response") from e

        status_code = payload.get("status_code")
        if status_code in AUTH_STATUS_CODES:
            raise AuthenticationFailedError(API_NAME, payload.get("status_message", "Unauthorized"))
        if status_code != STATUS_OK:
            logger.warning(
                "DataForSEO API error",
                extra={"endpoint": endpoint, "status": payload.get("status_message")},
            )
            raise ExternalAPIError(API_NAME, payload.get("status_message", "Unknown error"))

        results = TaskResults()
        for task in payload.get("tasks") or []:
            if task.get("status_code") == STATUS_OK:
                results.items.extend(task.get("result") or [])
            else:
                results.task_errors.append(
                    f"{task.get('status_code')}: {task.get('status_message', 'task failed')}"
                )
        return results

    async def get_search_volume(
        self,
        keywords: list[str],
        location_code: int | None = None,
        language_code: str | None = None,
    ) -> tuple[list[VolumeRow], list[str]]:
        """Get monthly search volume, CPC and competition for up to 1000 keywords.

        Returns the parsed rows and any task-level error messages.
        """
        if not keywords:
            return [], []

        data = [
            {
                "keywords": keywords,
                "location_code": location_code or settings.dataforseo_location_code,
                "language_code": language_code or settings.dataforseo_language_code,
            }
        ]
        results = await self._make_request(SEARCH_VOLUME_ENDPOINT, data)
        rows = [row for row in (self._parse_volume_item(item) for item in results.items) if row]
        logger.debug(
            "Search volume fetched",
            extra={"requested": len(keywords), "returned": len(rows), "task_errors": len(results.task_errors)},
        )
        return rows, results.task_errors

    async def get_keywords_for_keywords(
        self,
        seeds: list[str],
        location_code: int | None = None,
        language_code: str | None = None,
    ) -> tuple[list[VolumeRow], list[str]]:
        """Get keyword ideas related to up to 20 seed keywords."""
        if not seeds:
            return [], []

        data = [
            {
                "keys": seeds[:20],
                "location_code": location_code or settings.dataforseo_location_code,
                "language_code": language_code or settings.dataforseo_language_code,
            }
        ]
        results = await self._make_request(KEYWORDS_FOR_KEYWORDS_ENDPOINT, data)
        rows = [row for row in (self._parse_volume_item(item) for item in results.items) if row]
        return rows, results.task_errors

    @staticmethod
    def _parse_volume_item(item: dict[str, Any]) -> VolumeRow | None:
        keyword = item.get("keyword")
        if not keyword:
            return None
        volume = item.get("search_volume")
        cpc = item.get("cpc")
        competition = item.get("competition_index")
        return VolumeRow(
            keyword=str(keyword),
            search_volume=int(volume) if volume is not None else None,
            cpc=float(cpc) if cpc is not None else None,
            competition_index=float(competition) if competition is not None else None,
        )
