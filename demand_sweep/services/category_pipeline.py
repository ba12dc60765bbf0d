"""Growth, certification, scoring and calibration for one category."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from demand_sweep.config import settings
from demand_sweep.core.cancellation import CancelToken
from demand_sweep.core.rate_limiter import IntervalRateLimiter, get_volume_rate_limiter
from demand_sweep.schemas.category import CategoryConfig, CertificationPolicy, SweepCatalog
from demand_sweep.schemas.metrics import CalibratedMetrics, CalibrationPolicyName
from demand_sweep.services.benchmark_calibration import BenchmarkCalibrator
from demand_sweep.services.certification import CertificationDecision, anchor_tallies, certify
from demand_sweep.services.corpus_store import CorpusStore
from demand_sweep.services.growth import (
    GrowthConfig,
    GrowthOrchestrator,
    GrowthReport,
    ProgressFn,
    SleepFn,
)
from demand_sweep.services.keyword_guard import KeywordGuard
from demand_sweep.services.metrics_calculator import compute_metrics
from demand_sweep.services.seed_generator import SeedGenerator
from demand_sweep.services.volume_cache import KeywordVolumeCache
from demand_sweep.services.volume_resolver import VolumeResolver

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CategorySweepResult:
    category_id: str
    growth: GrowthReport
    certification: CertificationDecision | None = None
    metrics: CalibratedMetrics | None = None

    @property
    def status(self) -> str:
        return self.growth.status

    def to_dict(self) -> dict[str, Any]:
        return {
            "categoryId": self.category_id,
            "growth": self.growth.to_dict(),
            "certification": (
                {
                    "lifecycle": self.certification.lifecycle,
                    "tier": self.certification.tier,
                    "failures": self.certification.failures,
                    "snapshot": self.certification.snapshot,
                }
                if self.certification is not None
                else None
            ),
            "metrics": self.metrics.model_dump(mode="json", by_alias=True) if self.metrics else None,
        }


class CategoryPipeline:
    """Run one category end to end against a corpus store."""

    def __init__(
        self,
        store: CorpusStore,
        orchestrator: GrowthOrchestrator,
        certification: CertificationPolicy,
        calibrator: BenchmarkCalibrator,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.certification = certification
        self.calibrator = calibrator

    async def run(
        self,
        category: CategoryConfig,
        *,
        cancel_token: CancelToken | None = None,
        trend_percent: float | None = None,
        allow_downgrade: bool = False,
        on_progress: ProgressFn | None = None,
    ) -> CategorySweepResult:
        report = await self.orchestrator.grow(
            category,
            cancel_token=cancel_token,
            allow_downgrade=allow_downgrade,
            on_progress=on_progress,
        )
        result = CategorySweepResult(category_id=category.id, growth=report)
        if report.snapshot_id is None:
            return result

        snapshot = await self.store.get_snapshot(report.snapshot_id)
        rows = await self.store.list_rows(snapshot.snapshot_id)

        if not snapshot.is_certified:
            decision = certify(anchor_tallies(rows, category.anchor_ids), self.certification, snapshot.lifecycle)
            result.certification = decision
            if decision.lifecycle != snapshot.lifecycle:
                snapshot = await self.store.set_lifecycle(
                    snapshot.snapshot_id,
                    decision.lifecycle,
                    reason=f"certification after growth ({report.reason})",
                )
            if not decision.certified:
                logger.info(
                    "Category not certified",
                    extra={"category_id": category.id, "failures": decision.failures},
                )

        metrics = compute_metrics(snapshot, rows, trend_percent=trend_percent)
        result.metrics = self.calibrator.calibrate(metrics)
        return result


def build_category_pipeline(
    catalog: SweepCatalog,
    store: CorpusStore,
    *,
    resolver: VolumeResolver | None = None,
    volume_cache: KeywordVolumeCache | None = None,
    limiter: IntervalRateLimiter | None = None,
    growth_config: GrowthConfig | None = None,
    calibration_policy: CalibrationPolicyName | None = None,
    calibration_alpha: float | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> CategoryPipeline:
    """Wire the pipeline components from a catalog and settings."""
    orchestrator = GrowthOrchestrator(
        store,
        resolver or VolumeResolver(cache=volume_cache),
        SeedGenerator(catalog.expansion, max_candidates=settings.seed_max_candidates),
        KeywordGuard(catalog.guard, catalog.categories),
        catalog.certification,
        config=growth_config,
        limiter=limiter or get_volume_rate_limiter(),
        sleep=sleep,
    )
    calibrator = BenchmarkCalibrator(
        catalog.benchmarks(),
        policy=calibration_policy,
        alpha=calibration_alpha,
    )
    return CategoryPipeline(store, orchestrator, catalog.certification, calibrator)
