"""Certification and lifecycle gate for category snapshots."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from demand_sweep.schemas.category import CertificationPolicy, CertificationTierThresholds
from demand_sweep.schemas.corpus import CERTIFIED_LIFECYCLES, UNCLASSIFIED_ANCHOR, KeywordRow, SnapshotLifecycle

CertificationTier = Literal["CERTIFIED_FULL", "CERTIFIED_LITE"]


@dataclass(slots=True)
class AnchorTally:
    valid: int = 0
    zero: int = 0
    unverified: int = 0

    @property
    def total(self) -> int:
        return self.valid + self.zero + self.unverified


@dataclass(slots=True)
class CorpusTallies:
    """Per-anchor and overall status counts over active rows."""

    anchors: dict[str, AnchorTally] = field(default_factory=dict)

    @property
    def valid(self) -> int:
        return sum(t.valid for t in self.anchors.values())

    @property
    def zero(self) -> int:
        return sum(t.zero for t in self.anchors.values())

    @property
    def unverified(self) -> int:
        return sum(t.unverified for t in self.anchors.values())

    @property
    def total(self) -> int:
        return sum(t.total for t in self.anchors.values())

    @property
    def coverage_pct(self) -> float:
        return (self.valid / self.total * 100.0) if self.total else 0.0

    @property
    def zero_pct(self) -> float:
        return (self.zero / self.total * 100.0) if self.total else 0.0

    def anchors_passing(self, min_valid: int) -> int:
        return sum(
            1
            for anchor_id, tally in self.anchors.items()
            if anchor_id != UNCLASSIFIED_ANCHOR and tally.valid >= min_valid
        )


@dataclass(slots=True)
class CertificationDecision:
    lifecycle: SnapshotLifecycle
    tier: CertificationTier | None
    failures: dict[str, list[str]] = field(default_factory=dict)
    snapshot: dict[str, Any] = field(default_factory=dict)

    @property
    def certified(self) -> bool:
        return self.tier is not None


def anchor_tallies(rows: Iterable[KeywordRow], anchor_ids: Sequence[str] = ()) -> CorpusTallies:
    """Count VALID, ZERO and UNVERIFIED active rows per anchor."""
    tallies = CorpusTallies(anchors={anchor_id: AnchorTally() for anchor_id in anchor_ids})
    for row in rows:
        if not row.active:
            continue
        tally = tallies.anchors.setdefault(row.anchor_id, AnchorTally())
        if row.status == "VALID":
            tally.valid += 1
        elif row.status == "ZERO":
            tally.zero += 1
        else:
            tally.unverified += 1
    return tallies


def tier_failures(
    tallies: CorpusTallies,
    thresholds: CertificationTierThresholds,
    anchor_min_valid: int,
) -> list[str]:
    """Return the reasons a tier is not met; empty when it is."""
    failures: list[str] = []
    passing = tallies.anchors_passing(anchor_min_valid)
    if passing < thresholds.min_anchors_passing:
        failures.append(f"anchors passing {passing} < {thresholds.min_anchors_passing}")
    if tallies.coverage_pct < thresholds.min_coverage_pct:
        failures.append(f"coverage {tallies.coverage_pct:.1f}% < {thresholds.min_coverage_pct}%")
    if tallies.valid < thresholds.min_valid_keywords_total:
        failures.append(f"valid keywords {tallies.valid} < {thresholds.min_valid_keywords_total}")
    if tallies.zero_pct > thresholds.max_zero_pct:
        failures.append(f"zero rate {tallies.zero_pct:.1f}% > {thresholds.max_zero_pct}%")
    return failures


def hydration_reached(tallies: CorpusTallies, policy: CertificationPolicy) -> bool:
    return tallies.anchors_passing(policy.anchor_min_valid) >= policy.hydration_min_anchors


def certify(
    tallies: CorpusTallies,
    policy: CertificationPolicy,
    current: SnapshotLifecycle = "HYDRATED",
) -> CertificationDecision:
    """Decide the lifecycle a snapshot qualifies for.

    FULL is checked before LITE. A snapshot with no valid rows never
    certifies. Without a tier the lifecycle is left as it was, except that a
    DRAFT snapshot meeting the hydration gate becomes HYDRATED.
    """
    summary = {
        "valid": tallies.valid,
        "zero": tallies.zero,
        "unverified": tallies.unverified,
        "total": tallies.total,
        "coverage_pct": round(tallies.coverage_pct, 2),
        "zero_pct": round(tallies.zero_pct, 2),
        "anchors_passing": tallies.anchors_passing(policy.anchor_min_valid),
    }

    if tallies.valid == 0:
        fallback: SnapshotLifecycle = "HYDRATED" if current in CERTIFIED_LIFECYCLES else current
        return CertificationDecision(
            lifecycle=fallback,
            tier=None,
            failures={"CERTIFIED_FULL": ["no valid keywords"], "CERTIFIED_LITE": ["no valid keywords"]},
            snapshot=summary,
        )

    full_failures = tier_failures(tallies, policy.full, policy.anchor_min_valid)
    if not full_failures:
        return CertificationDecision(lifecycle="CERTIFIED_FULL", tier="CERTIFIED_FULL", snapshot=summary)

    lite_failures = tier_failures(tallies, policy.lite, policy.anchor_min_valid)
    failures = {"CERTIFIED_FULL": full_failures}
    if not lite_failures:
        return CertificationDecision(
            lifecycle="CERTIFIED_LITE",
            tier="CERTIFIED_LITE",
            failures=failures,
            snapshot=summary,
        )

    failures["CERTIFIED_LITE"] = lite_failures
    lifecycle = current
    if current in CERTIFIED_LIFECYCLES:
        lifecycle = "HYDRATED"
    elif current == "DRAFT" and hydration_reached(tallies, policy):
        lifecycle = "HYDRATED"
    return CertificationDecision(lifecycle=lifecycle, tier=None, failures=failures, snapshot=summary)
