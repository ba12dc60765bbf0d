"""Unit tests for keyword normalization, intent and anchor attribution."""

from __future__ import annotations

import pytest

from demand_sweep.schemas.category import CategoryConfig
from demand_sweep.services.keyword_classification import (
    build_keyword_row,
    contains_phrase,
    derive_keyword_id,
    infer_anchor,
    infer_intent_bucket,
    intent_weight,
    normalize_keyword,
)


def test_normalize_keyword_folds_case_accents_and_separators() -> None:
    assert normalize_keyword("  Après-Shave   Balm ") == "apres shave balm"
    assert normalize_keyword("Gillette Mach3/Fusion") == "gillette mach3 fusion"
    assert normalize_keyword("razor!!") == "razor"
    assert normalize_keyword("   ") == ""


def test_contains_phrase_respects_token_boundaries() -> None:
    assert contains_phrase("best safety razor", "safety razor")
    assert not contains_phrase("razors for men", "razor")
    assert not contains_phrase("anything", "")


def test_keyword_id_is_stable_across_spelling_variants() -> None:
    assert derive_keyword_id("Safety-Razor", "shaving") == derive_keyword_id("safety razor", "shaving")
    assert derive_keyword_id("safety razor", "shaving") != derive_keyword_id("safety razor", "beard")


@pytest.mark.parametrize(
    ("keyword", "bucket"),
    [
        ("buy razor online", "Decision"),
        ("best trimmer", "Consideration"),
        ("razor burn treatment", "Problem"),
        ("razor blade refill", "Need"),
        ("daily shaving routine", "Habit"),
        ("luxury shaving brush", "Aspirational"),
        ("safety razor", "Discovery"),
    ],
)
def test_infer_intent_bucket(keyword: str, bucket: str) -> None:
    assert infer_intent_bucket(keyword) == bucket


def test_intent_weights_collapse_to_three_tiers() -> None:
    assert intent_weight("Decision") == 1.0
    assert intent_weight("Consideration") == intent_weight("Problem") == 0.7
    assert intent_weight("Discovery") == intent_weight("Habit") == 0.4


def test_infer_anchor_prefers_longest_vocabulary_match(shaving: CategoryConfig) -> None:
    assert infer_anchor("gillette razor blades", shaving.anchors) == "blades-refills"
    assert infer_anchor("razor", shaving.anchors) == "hardware-tools"
    assert infer_anchor("shaving cream for sensitive skin", shaving.anchors) == "skin-protection"
    assert infer_anchor("gillette", shaving.anchors) == "unclassified"


def test_build_keyword_row_starts_unverified(shaving: CategoryConfig) -> None:
    row = build_keyword_row("Best Razor  Price", shaving)

    assert row.keyword_text == "best razor price"
    assert row.keyword_id == derive_keyword_id("best razor price", "shaving")
    assert row.status == "UNVERIFIED"
    assert row.volume is None
    assert row.active is True
    assert row.intent_bucket == "Decision"
