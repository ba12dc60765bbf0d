"""Demand, readiness and spread scoring for a category snapshot.

All scores are pure functions of the snapshot's active VALID rows and the
externally supplied trend percent. Rows are processed in keyword-id order so
that the float sums do not depend on storage order.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from demand_sweep.schemas.corpus import CategorySnapshot, KeywordRow
from demand_sweep.schemas.metrics import (
    BuyingIntentIndex,
    CategoryMetrics,
    DemandIndex,
    DemandOverTime,
    LabeledScore,
    MetricsInputs,
    MetricsQuality,
    QualityReason,
    ScoreLabel,
    TrendLabel,
    TrendSignal,
)
from demand_sweep.services.keyword_classification import intent_weight

DEMAND_DIVISOR = 1_000_000
MIN_SCORE = 1.0
MAX_SCORE = 10.0
HIGH_LABEL_THRESHOLD = 7.5
MEDIUM_LABEL_THRESHOLD = 4.5
TREND_BAND_PCT = 5.0
DEFAULT_MIN_COVERAGE = 0.10
UNCERTIFIED_LIFECYCLES = frozenset({"DRAFT", "HYDRATED"})


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def score_label(value: float) -> ScoreLabel:
    if value >= HIGH_LABEL_THRESHOLD:
        return "High"
    if value >= MEDIUM_LABEL_THRESHOLD:
        return "Medium"
    return "Low"


def trend_label(trend_percent: float | None) -> TrendLabel:
    if trend_percent is None:
        return "Unknown"
    if trend_percent > TREND_BAND_PCT:
        return "Growing"
    if trend_percent < -TREND_BAND_PCT:
        return "Declining"
    return "Stable"


def format_demand(value: float) -> str:
    return f"{value:.2f} Mn"


def readiness_from_intent(avg_intent: float) -> float:
    """Map a volume-weighted intent weight onto the 1-10 scale with sqrt smoothing."""
    normalized = _clamp((avg_intent - 0.5) / 0.5, 0.0, 1.0)
    return MIN_SCORE + 9.0 * math.sqrt(normalized)


def spread_from_anchor_volume(anchor_volume: dict[str, int]) -> float:
    """``10 * (1 - top-3 share)`` clamped to 1-10; 1 when at most one anchor has volume."""
    volumes = sorted((v for v in anchor_volume.values() if v > 0), reverse=True)
    if len(volumes) <= 1:
        return MIN_SCORE
    total = sum(volumes)
    top3_share = sum(volumes[:3]) / total
    return _clamp(10.0 * (1.0 - top3_share), MIN_SCORE, MAX_SCORE)


def demand_over_time(demand_index: float, trend_percent: float | None) -> DemandOverTime:
    growth = demand_index * ((trend_percent or 0.0) / 100.0)
    return DemandOverTime(growth=growth, total=demand_index + growth)


def buying_intent_index(readiness: float, spread: float) -> BuyingIntentIndex:
    return BuyingIntentIndex(value=readiness / spread if spread > 0 else 0.0)


def compute_metrics(
    snapshot: CategorySnapshot,
    rows: Sequence[KeywordRow],
    *,
    trend_percent: float | None = None,
    min_coverage: float = DEFAULT_MIN_COVERAGE,
) -> CategoryMetrics:
    """Aggregate a snapshot's rows into the display metrics object."""
    active = sorted((row for row in rows if row.active), key=lambda row: row.keyword_id)
    valid = [row for row in active if row.status == "VALID" and (row.volume or 0) > 0]
    unverified = sum(1 for row in active if row.status == "UNVERIFIED")

    volume_sum = 0
    weighted_sum = 0.0
    anchor_volume: dict[str, int] = {}
    for row in valid:
        volume = int(row.volume or 0)
        volume_sum += volume
        weighted_sum += volume * intent_weight(row.intent_bucket)
        anchor_volume[row.anchor_id] = anchor_volume.get(row.anchor_id, 0) + volume

    demand_value = weighted_sum / DEMAND_DIVISOR
    readiness = readiness_from_intent(weighted_sum / volume_sum) if volume_sum else MIN_SCORE
    spread = spread_from_anchor_volume(anchor_volume)

    total_count = len(active)
    coverage = len(valid) / total_count if total_count else 0.0

    reasons: list[QualityReason] = []
    if not valid:
        reasons.append(QualityReason(code="NO_VALIDATED_KEYWORDS", message="No keywords with confirmed search volume"))
    if coverage < min_coverage:
        reasons.append(
            QualityReason(
                code="COVERAGE_BELOW_THRESHOLD",
                message=f"Validated coverage {coverage:.1%} is below {min_coverage:.0%}",
            )
        )
    if snapshot.lifecycle in UNCERTIFIED_LIFECYCLES:
        reasons.append(
            QualityReason(
                code="VALIDATION_INCOMPLETE",
                message=f"Snapshot is not certified (lifecycle {snapshot.lifecycle})",
            )
        )
    if unverified:
        reasons.append(
            QualityReason(
                code="UNVERIFIED_ROWS_PENDING",
                message=f"{unverified} keywords have not been volume-checked yet",
            )
        )

    return CategoryMetrics(
        category_id=snapshot.category_id,
        snapshot_id=snapshot.snapshot_id,
        lifecycle=snapshot.lifecycle,
        demand_index=DemandIndex(value=demand_value, display=format_demand(demand_value)),
        readiness_score=LabeledScore(value=readiness, label=score_label(readiness)),
        spread_score=LabeledScore(value=spread, label=score_label(spread)),
        trend=TrendSignal(label=trend_label(trend_percent), value_percent=trend_percent),
        demand_over_time=demand_over_time(demand_value, trend_percent),
        buying_intent_index=buying_intent_index(readiness, spread),
        inputs=MetricsInputs(
            keyword_count_total=total_count,
            keyword_count_validated=len(valid),
            volume_sum_validated=volume_sum,
            coverage=coverage,
        ),
        quality=MetricsQuality(is_partial=bool(reasons), reasons=reasons),
        anchor_volume=dict(sorted(anchor_volume.items())),
    )
