"""Unit tests for Redis-backed sweep job state."""

from __future__ import annotations

import json
from typing import Any

import pytest

from demand_sweep.services.job_store import SweepJobStore


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.values[key] = value
        self.expiry[key] = ex


@pytest.mark.asyncio
async def test_set_category_state_merges_updates() -> None:
    redis = FakeRedis()
    store = SweepJobStore(redis, ttl_seconds=60)  # type: ignore[arg-type]

    await store.set_category_state("job1", "shaving", status="running", stage="seeding")
    state = await store.set_category_state(
        "job1",
        "shaving",
        stage="resolving",
        details={"attempt": 0},
    )

    assert state["status"] == "running"
    assert state["stage"] == "resolving"
    assert state["details"] == {"attempt": 0}
    assert "error_message" not in state
    assert redis.expiry["sweep:job1:shaving"] == 60
    assert json.loads(redis.values["sweep:job1:shaving"])["category_id"] == "shaving"


@pytest.mark.asyncio
async def test_error_message_can_be_cleared() -> None:
    store = SweepJobStore(FakeRedis(), ttl_seconds=60)  # type: ignore[arg-type]

    await store.set_category_state("job1", "beard", status="failed", error_message="boom")
    state = await store.set_category_state("job1", "beard", status="running", error_message=None)

    assert state["error_message"] is None


@pytest.mark.asyncio
async def test_get_job_status_collects_known_categories() -> None:
    redis = FakeRedis()
    store = SweepJobStore(redis, ttl_seconds=60)  # type: ignore[arg-type]
    await store.set_category_state("job1", "shaving", status="completed")
    redis.values["sweep:job1:beard"] = "{not json"

    status: dict[str, Any] = await store.get_job_status("job1", ["shaving", "beard", "oral-care"])

    assert status["job_id"] == "job1"
    assert list(status["categories"]) == ["shaving"]
    assert status["categories"]["shaving"]["status"] == "completed"
