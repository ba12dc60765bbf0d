"""Unit tests for the DataForSEO client."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from demand_sweep.config import settings
from demand_sweep.core.exceptions import (
    APIKeyMissingError,
    AuthenticationFailedError,
    ExternalAPIError,
    ExternalAPITimeoutError,
    RateLimitExceededError,
)
from demand_sweep.integrations.dataforseo import SEARCH_VOLUME_ENDPOINT, DataForSEOClient


class FakeResponse:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://api.dataforseo.test")
            raise httpx.HTTPStatusError(
                "error",
                request=request,
                response=httpx.Response(self.status_code, request=request),
            )


def _install_fake_client(
    monkeypatch: pytest.MonkeyPatch,
    response: FakeResponse | Exception,
) -> dict[str, Any]:
    captured: dict[str, Any] = {}

    class FakeAsyncClient:
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            captured["init"] = kwargs

        async def post(self, url: str, json: Any) -> FakeResponse:
            captured["url"] = url
            captured["json"] = json
            if isinstance(response, Exception):
                raise response
            return response

        async def aclose(self) -> None:
            captured["closed"] = True

    monkeypatch.setattr("demand_sweep.integrations.dataforseo.httpx.AsyncClient", FakeAsyncClient)
    return captured


def _ok_payload(tasks: list[dict[str, Any]]) -> dict[str, Any]:
    return {"status_code": 20000, "status_message": "Ok.", "tasks": tasks}


def test_client_requires_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "dataforseo_login", None)
    monkeypatch.setattr(settings, "dataforseo_password", None)

    with pytest.raises(APIKeyMissingError):
        DataForSEOClient(login="", password="", base_url="https://api.dataforseo.test")


@pytest.mark.asyncio
async def test_get_search_volume_parses_rows_and_builds_request(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _install_fake_client(
        monkeypatch,
        FakeResponse(
            200,
            _ok_payload(
                [
                    {
                        "status_code": 20000,
                        "result": [
                            {"keyword": "razor", "search_volume": 1000, "cpc": 0.5, "competition_index": 30},
                            {"keyword": "trimmer", "search_volume": None, "cpc": None, "competition_index": None},
                            {"keyword": None, "search_volume": 10},
                        ],
                    }
                ]
            ),
        ),
    )

    async with DataForSEOClient(login="user", password="pass", base_url="https://api.dataforseo.test/v3/") as client:
        rows, task_errors = await client.get_search_volume(["razor", "trimmer"], location_code=2840, language_code="en")

    assert captured["url"] == f"https://api.dataforseo.test/v3/{SEARCH_VOLUME_ENDPOINT}"
    assert captured["json"] == [{"keywords": ["razor", "trimmer"], "location_code": 2840, "language_code": "en"}]
    assert captured["init"]["headers"]["Authorization"].startswith("Basic ")
    assert captured["closed"] is True
    assert task_errors == []
    assert [(row.keyword, row.search_volume, row.cpc) for row in rows] == [
        ("razor", 1000, 0.5),
        ("trimmer", None, None),
    ]


@pytest.mark.asyncio
async def test_failed_tasks_are_reported_not_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    _install_fake_client(
        monkeypatch,
        FakeResponse(
            200,
            _ok_payload(
                [
                    {"status_code": 20000, "result": [{"keyword": "razor", "search_volume": 5}]},
                    {"status_code": 40501, "status_message": "Invalid Field"},
                ]
            ),
        ),
    )

    async with DataForSEOClient(login="user", password="pass") as client:
        rows, task_errors = await client.get_search_volume(["razor", "blade"])

    assert [row.keyword for row in rows] == ["razor"]
    assert task_errors == ["40501: Invalid Field"]


@pytest.mark.asyncio
async def test_empty_keyword_list_skips_request(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _install_fake_client(monkeypatch, FakeResponse(200, _ok_payload([])))

    async with DataForSEOClient(login="user", password="pass") as client:
        assert await client.get_search_volume([]) == ([], [])

    assert "url" not in captured


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "error_type"),
    [
        (FakeResponse(401, {}), AuthenticationFailedError),
        (FakeResponse(429, {}), RateLimitExceededError),
        (FakeResponse(500, {}), ExternalAPIError),
        (FakeResponse(200, {"status_code": 40100, "status_message": "Not authorized"}), AuthenticationFailedError),
        (FakeResponse(200, {"status_code": 50000, "status_message": "Internal error"}), ExternalAPIError),
        (FakeResponse(200, ValueError("not json")), ExternalAPIError),
        (httpx.ReadTimeout("timed out"), ExternalAPITimeoutError),
        (httpx.ConnectError("refused"), ExternalAPIError),
    ],
)
async def test_errors_are_mapped_to_exception_types(
    monkeypatch: pytest.MonkeyPatch,
    response: FakeResponse | Exception,
    error_type: type[Exception],
) -> None:
    _install_fake_client(monkeypatch, response)

    async with DataForSEOClient(login="user", password="pass") as client:
        with pytest.raises(error_type):
            await client.get_search_volume(["razor"])


@pytest.mark.asyncio
async def test_keywords_for_keywords_limits_seeds(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _install_fake_client(
        monkeypatch,
        FakeResponse(200, _ok_payload([{"status_code": 20000, "result": [{"keyword": "razor for men"}]}])),
    )
    seeds = [f"seed {i}" for i in range(30)]

    async with DataForSEOClient(login="user", password="pass") as client:
        rows, _ = await client.get_keywords_for_keywords(seeds)

    assert captured["json"][0]["keys"] == seeds[:20]
    assert [row.keyword for row in rows] == ["razor for men"]
