"""Batch job status backed by Redis."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal

from redis.asyncio import Redis

from demand_sweep.config import settings
from demand_sweep.core.redis import get_redis_client

logger = logging.getLogger(__name__)

JOB_KEY_PREFIX = "sweep"
UNSET: object = object()

CategoryJobStatus = Literal["queued", "running", "completed", "stopped", "failed", "refused"]


class SweepJobStore:
    """Store and fetch per-category progress of a sweep job."""

    def __init__(self, redis_client: Redis | None = None, *, ttl_seconds: int | None = None) -> None:
        self.redis = redis_client or get_redis_client()
        self.ttl_seconds = ttl_seconds or settings.job_state_ttl_seconds

    async def get_category_state(self, job_id: str, category_id: str) -> dict[str, Any] | None:
        raw = await self.redis.get(self._key(job_id, category_id))
        if raw is None:
            return None

        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(
                "Invalid job payload in Redis",
                extra={"job_id": job_id, "category_id": category_id},
            )
            return None

    async def get_job_status(self, job_id: str, category_ids: list[str]) -> dict[str, Any]:
        """Return every known category state of a job."""
        categories: dict[str, Any] = {}
        for category_id in category_ids:
            state = await self.get_category_state(job_id, category_id)
            if state is not None:
                categories[category_id] = state
        return {"job_id": job_id, "categories": categories}

    async def set_category_state(
        self,
        job_id: str,
        category_id: str,
        *,
        status: CategoryJobStatus | None = None,
        stage: str | None = None,
        snapshot_id: str | None = None,
        valid_total: int | None = None,
        lifecycle: str | None = None,
        details: dict[str, Any] | None = None,
        error_message: str | None | object = UNSET,
    ) -> dict[str, Any]:
        """Create or update one category's state within a job."""
        now = self._now_iso()
        payload = await self.get_category_state(job_id, category_id) or {
            "job_id": job_id,
            "category_id": category_id,
            "created_at": now,
        }
        payload["updated_at"] = now

        updates = {
            "status": status,
            "stage": stage,
            "snapshot_id": snapshot_id,
            "valid_total": valid_total,
            "lifecycle": lifecycle,
            "details": details,
        }
        for key, value in updates.items():
            if value is not None:
                payload[key] = value
        if error_message is not UNSET:
            payload["error_message"] = error_message

        await self.redis.set(
            self._key(job_id, category_id),
            json.dumps(payload, default=str),
            ex=self.ttl_seconds,
        )
        return payload

    @staticmethod
    def _key(job_id: str, category_id: str) -> str:
        return f"{JOB_KEY_PREFIX}:{job_id}:{category_id}"

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()
