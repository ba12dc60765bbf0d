"""Metrics objects handed to the display layer."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ScoreLabel = Literal["High", "Medium", "Low"]
TrendLabel = Literal["Growing", "Stable", "Declining", "Unknown"]
CalibrationPolicyName = Literal["none", "blend", "override"]


class _Output(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class DemandIndex(_Output):
    value: float
    display: str


class LabeledScore(_Output):
    value: float = Field(ge=1.0, le=10.0)
    label: ScoreLabel


class TrendSignal(_Output):
    label: TrendLabel
    value_percent: float | None = None


class DemandOverTime(_Output):
    growth: float
    total: float


class BuyingIntentIndex(_Output):
    value: float


class MetricsInputs(_Output):
    keyword_count_total: int
    keyword_count_validated: int
    volume_sum_validated: int
    coverage: float


class QualityReason(_Output):
    code: str
    message: str


class MetricsQuality(_Output):
    is_partial: bool
    reasons: list[QualityReason] = Field(default_factory=list)


class CategoryMetrics(_Output):
    """Scores derived from a snapshot's active VALID rows."""

    category_id: str
    snapshot_id: str
    lifecycle: str
    demand_index: DemandIndex
    readiness_score: LabeledScore
    spread_score: LabeledScore
    trend: TrendSignal
    demand_over_time: DemandOverTime
    buying_intent_index: BuyingIntentIndex
    inputs: MetricsInputs
    quality: MetricsQuality
    anchor_volume: dict[str, int] = Field(default_factory=dict)


class CalibrationAdjustment(_Output):
    metric: Literal["demandIndex", "readinessScore", "spreadScore"]
    raw: float
    benchmark: float | None
    calibrated: float


class CalibratedMetrics(_Output):
    """Raw and display metrics side by side; ``raw`` is never modified."""

    policy: CalibrationPolicyName
    alpha: float | None = None
    benchmark_applied: bool
    raw: CategoryMetrics
    calibrated: CategoryMetrics
    adjustments: list[CalibrationAdjustment] = Field(default_factory=list)
