"""Benchmark calibration of displayed category scores.

The corpus is a partial sample of real search demand, so raw scores run
low. Calibration pulls the displayed values toward per-category reference
values and always keeps the raw metrics next to the calibrated ones.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from demand_sweep.config import settings
from demand_sweep.schemas.category import BenchmarkEntry
from demand_sweep.schemas.metrics import (
    CalibratedMetrics,
    CalibrationAdjustment,
    CalibrationPolicyName,
    CategoryMetrics,
    DemandIndex,
    LabeledScore,
)
from demand_sweep.services.metrics_calculator import (
    MAX_SCORE,
    MIN_SCORE,
    buying_intent_index,
    demand_over_time,
    format_demand,
    score_label,
)

logger = logging.getLogger(__name__)


class BenchmarkCalibrator:
    """Apply the configured calibration policy to computed metrics.

    ``blend``: ``alpha * raw + (1 - alpha) * benchmark``.
    ``override``: the benchmark value when the category has one.
    ``none``: the raw values unchanged.
    Categories without a benchmark entry always fall back to raw values.
    """

    def __init__(
        self,
        benchmarks: Mapping[str, BenchmarkEntry],
        *,
        policy: CalibrationPolicyName | None = None,
        alpha: float | None = None,
    ) -> None:
        self.benchmarks = dict(benchmarks)
        self.policy: CalibrationPolicyName = policy or settings.calibration_policy
        self.alpha = settings.calibration_alpha if alpha is None else alpha
        if not 0.0 <= self.alpha <= 1.0:
            raise ValueError("alpha must be within [0, 1]")

    def calibrate(self, metrics: CategoryMetrics) -> CalibratedMetrics:
        benchmark = self.benchmarks.get(metrics.category_id)
        alpha = self.alpha if self.policy == "blend" else None
        if self.policy == "none" or benchmark is None:
            return CalibratedMetrics(
                policy=self.policy,
                alpha=alpha,
                benchmark_applied=False,
                raw=metrics,
                calibrated=metrics.model_copy(deep=True),
            )

        demand = self._apply(metrics.demand_index.value, benchmark.demand_mn)
        readiness = self._clamp_score(self._apply(metrics.readiness_score.value, benchmark.readiness))
        spread = self._clamp_score(self._apply(metrics.spread_score.value, benchmark.spread))
        trend_percent = metrics.trend.value_percent

        calibrated = metrics.model_copy(
            deep=True,
            update={
                "demand_index": DemandIndex(value=demand, display=format_demand(demand)),
                "readiness_score": LabeledScore(value=readiness, label=score_label(readiness)),
                "spread_score": LabeledScore(value=spread, label=score_label(spread)),
                "demand_over_time": demand_over_time(demand, trend_percent),
                "buying_intent_index": buying_intent_index(readiness, spread),
            },
        )
        adjustments = [
            CalibrationAdjustment(
                metric="demandIndex",
                raw=metrics.demand_index.value,
                benchmark=benchmark.demand_mn,
                calibrated=demand,
            ),
            CalibrationAdjustment(
                metric="readinessScore",
                raw=metrics.readiness_score.value,
                benchmark=benchmark.readiness,
                calibrated=readiness,
            ),
            CalibrationAdjustment(
                metric="spreadScore",
                raw=metrics.spread_score.value,
                benchmark=benchmark.spread,
                calibrated=spread,
            ),
        ]
        logger.debug(
            "Metrics calibrated",
            extra={"category_id": metrics.category_id, "policy": self.policy, "alpha": alpha},
        )
        return CalibratedMetrics(
            policy=self.policy,
            alpha=alpha,
            benchmark_applied=True,
            raw=metrics,
            calibrated=calibrated,
            adjustments=adjustments,
        )

    def _apply(self, raw: float, benchmark: float) -> float:
        if self.policy == "override":
            return benchmark
        return self.alpha * raw + (1.0 - self.alpha) * benchmark

    @staticmethod
    def _clamp_score(value: float) -> float:
        return max(MIN_SCORE, min(MAX_SCORE, value))
