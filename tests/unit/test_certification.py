"""Unit tests for snapshot certification."""

from __future__ import annotations

from demand_sweep.schemas.category import CertificationPolicy, CertificationTierThresholds
from demand_sweep.schemas.corpus import KeywordRow
from demand_sweep.services.certification import anchor_tallies, certify, hydration_reached


def _rows(anchor_id: str, *, valid: int = 0, zero: int = 0, unverified: int = 0) -> list[KeywordRow]:
    rows: list[KeywordRow] = []
    for status, count in (("VALID", valid), ("ZERO", zero), ("UNVERIFIED", unverified)):
        for i in range(count):
            rows.append(
                KeywordRow(
                    keyword_id=f"{anchor_id}-{status}-{i}",
                    keyword_text=f"{anchor_id} {status.lower()} {i}",
                    anchor_id=anchor_id,
                    intent_bucket="Discovery",
                    status=status,  # type: ignore[arg-type]
                    volume=100 if status == "VALID" else (0 if status == "ZERO" else None),
                )
            )
    return rows


POLICY = CertificationPolicy(
    full=CertificationTierThresholds(min_anchors_passing=2, min_valid_keywords_total=20, max_zero_pct=98),
    lite=CertificationTierThresholds(min_anchors_passing=1, min_valid_keywords_total=5, max_zero_pct=99),
)


def test_three_passing_anchors_with_high_zero_rate_certify_full() -> None:
    rows = [
        *_rows("a", valid=10, zero=75),
        *_rows("b", valid=8, zero=75),
        *_rows("c", valid=7, zero=75),
    ]
    tallies = anchor_tallies(rows)

    decision = certify(tallies, POLICY, "HYDRATED")

    assert tallies.valid == 25
    assert tallies.zero_pct == 90.0
    assert decision.lifecycle == "CERTIFIED_FULL"
    assert decision.tier == "CERTIFIED_FULL"
    assert decision.failures == {}
    assert decision.snapshot["anchors_passing"] == 3


def test_falls_back_to_lite_and_reports_full_failures() -> None:
    tallies = anchor_tallies(_rows("a", valid=6, zero=4))

    decision = certify(tallies, POLICY, "HYDRATED")

    assert decision.lifecycle == "CERTIFIED_LITE"
    assert decision.failures["CERTIFIED_FULL"] == [
        "anchors passing 1 < 2",
        "valid keywords 6 < 20",
    ]


def test_zero_valid_never_certifies() -> None:
    tallies = anchor_tallies(_rows("a", zero=50))

    decision = certify(tallies, POLICY, "DRAFT")

    assert decision.tier is None
    assert decision.lifecycle == "DRAFT"
    assert decision.failures["CERTIFIED_LITE"] == ["no valid keywords"]


def test_failing_certified_snapshot_drops_to_hydrated() -> None:
    tallies = anchor_tallies(_rows("a", valid=1, zero=1))

    decision = certify(tallies, POLICY, "CERTIFIED_LITE")

    assert decision.tier is None
    assert decision.lifecycle == "HYDRATED"


def test_draft_meeting_hydration_gate_becomes_hydrated() -> None:
    tallies = anchor_tallies(_rows("a", valid=2, zero=2000))

    decision = certify(tallies, POLICY, "DRAFT")

    assert hydration_reached(tallies, POLICY)
    assert decision.tier is None
    assert decision.lifecycle == "HYDRATED"


def test_tallies_ignore_inactive_rows_and_seed_configured_anchors() -> None:
    rows = _rows("a", valid=3, unverified=2)
    rows[0].active = False

    tallies = anchor_tallies(rows, ["a", "b"])

    assert tallies.anchors["a"].valid == 2
    assert tallies.anchors["a"].unverified == 2
    assert tallies.anchors["b"].total == 0
    assert tallies.coverage_pct == 50.0


def test_unclassified_rows_count_toward_totals_but_not_anchors_passing() -> None:
    rows = [*_rows("hardware-tools", valid=5), *_rows("unclassified", valid=20)]
    tallies = anchor_tallies(rows, ["hardware-tools", "pre-shave"])

    decision = certify(tallies, POLICY, "HYDRATED")

    assert tallies.valid == 25
    assert tallies.anchors_passing(2) == 1
    assert decision.lifecycle == "CERTIFIED_LITE"
    assert decision.failures["CERTIFIED_FULL"] == ["anchors passing 1 < 2"]


def test_unclassified_bucket_alone_does_not_hydrate_a_draft() -> None:
    tallies = anchor_tallies(_rows("unclassified", valid=10), ["hardware-tools"])

    assert not hydration_reached(tallies, POLICY)
    assert certify(tallies, POLICY, "DRAFT").lifecycle == "DRAFT"
