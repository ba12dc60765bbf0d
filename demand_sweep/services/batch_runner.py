"""Concurrent multi-category sweeps."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from demand_sweep.config import settings
from demand_sweep.core.cancellation import CancelToken
from demand_sweep.core.exceptions import CategoryNotFoundError
from demand_sweep.schemas.category import CategoryConfig
from demand_sweep.services.category_pipeline import CategoryPipeline, CategorySweepResult
from demand_sweep.services.growth import GrowthReport, ProgressFn
from demand_sweep.services.job_store import CategoryJobStatus, SweepJobStore

logger = logging.getLogger(__name__)


class BatchRunner:
    """Run several categories at once with isolated failures and stop signals.

    A failure in one category is recorded in that category's result and never
    reaches the others. Each category gets a fresh cancel token for every run;
    all of them share the pipeline's rate limiter.
    """

    def __init__(
        self,
        pipeline: CategoryPipeline,
        categories: Mapping[str, CategoryConfig],
        *,
        concurrency: int | None = None,
        job_store: SweepJobStore | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.categories = dict(categories)
        self.concurrency = max(1, concurrency or settings.batch_concurrency)
        self.job_store = job_store
        self._tokens: dict[str, CancelToken] = {}

    def stop(self, category_id: str, reason: str = "stop requested") -> bool:
        """Signal one running category to stop at its next pass boundary."""
        token = self._tokens.get(category_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def stop_all(self, reason: str = "stop requested") -> None:
        for token in self._tokens.values():
            token.cancel(reason)

    async def run(
        self,
        category_ids: Iterable[str],
        *,
        job_id: str | None = None,
        trends: Mapping[str, float] | None = None,
        allow_downgrade: bool = False,
    ) -> list[CategorySweepResult]:
        """Sweep the given categories and return results in request order."""
        ordered = list(dict.fromkeys(category_ids))
        job_id = job_id or uuid.uuid4().hex
        trends = dict(trends or {})
        tokens = {category_id: CancelToken(category_id) for category_id in ordered}
        self._tokens.update(tokens)
        for category_id in ordered:
            await self._record(job_id, category_id, status="queued", stage="queued")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(category_id: str) -> CategorySweepResult:
            token = tokens[category_id]
            try:
                async with semaphore:
                    return await self._run_one(
                        category_id,
                        token,
                        job_id=job_id,
                        trend_percent=trends.get(category_id),
                        allow_downgrade=allow_downgrade,
                    )
            finally:
                if self._tokens.get(category_id) is token:
                    del self._tokens[category_id]

        logger.info(
            "Batch sweep started",
            extra={"job_id": job_id, "categories": ordered, "concurrency": self.concurrency},
        )
        results = await asyncio.gather(*(_bounded(category_id) for category_id in ordered))
        logger.info(
            "Batch sweep finished",
            extra={
                "job_id": job_id,
                "statuses": {result.category_id: result.status for result in results},
            },
        )
        return list(results)

    async def _run_one(
        self,
        category_id: str,
        token: CancelToken,
        *,
        job_id: str,
        trend_percent: float | None,
        allow_downgrade: bool,
    ) -> CategorySweepResult:
        category = self.categories.get(category_id)
        if category is None:
            error = CategoryNotFoundError(category_id)
            logger.error("Unknown category in batch", extra={"job_id": job_id, "category_id": category_id})
            await self._record(job_id, category_id, status="failed", stage="done", error_message=error.message)
            return self._failed(category_id, error.message)

        if token.cancelled:
            await self._record(job_id, category_id, status="stopped", stage="done")
            return CategorySweepResult(
                category_id=category_id,
                growth=GrowthReport(category_id=category_id, snapshot_id=None, status="stopped", reason="stopped"),
            )

        await self._record(job_id, category_id, status="running", stage="starting")
        try:
            result = await self.pipeline.run(
                category,
                cancel_token=token,
                trend_percent=trend_percent,
                allow_downgrade=allow_downgrade,
                on_progress=self._progress_callback(job_id, category_id),
            )
        except Exception as exc:
            logger.exception(
                "Category sweep crashed",
                extra={"job_id": job_id, "category_id": category_id},
            )
            await self._record(job_id, category_id, status="failed", stage="done", error_message=str(exc))
            return self._failed(category_id, str(exc))

        await self._record(
            job_id,
            category_id,
            status=result.status,
            stage="done",
            snapshot_id=result.growth.snapshot_id,
            valid_total=result.growth.valid_total,
            lifecycle=result.metrics.raw.lifecycle if result.metrics else result.growth.lifecycle,
            details={"reason": result.growth.reason},
            error_message=result.growth.error,
        )
        return result

    def _progress_callback(self, job_id: str, category_id: str) -> ProgressFn:
        async def _on_progress(stage: str, details: dict[str, Any]) -> None:
            await self._record(job_id, category_id, stage=stage, details=details)

        return _on_progress

    async def _record(
        self,
        job_id: str,
        category_id: str,
        *,
        status: CategoryJobStatus | None = None,
        stage: str | None = None,
        **fields: Any,
    ) -> None:
        if self.job_store is None:
            return
        try:
            await self.job_store.set_category_state(job_id, category_id, status=status, stage=stage, **fields)
        except Exception:
            logger.warning(
                "Failed to record sweep job state",
                extra={"job_id": job_id, "category_id": category_id, "stage": stage},
                exc_info=True,
            )

    @staticmethod
    def _failed(category_id: str, message: str) -> CategorySweepResult:
        return CategorySweepResult(
            category_id=category_id,
            growth=GrowthReport(
                category_id=category_id,
                snapshot_id=None,
                status="failed",
                error=message,
            ),
        )
