"""Unit tests for the category specificity guard."""

from __future__ import annotations

import pytest

from demand_sweep.schemas.category import SweepCatalog
from demand_sweep.services.keyword_guard import (
    BLOCKED_TERM,
    BRAND_WITH_GENERIC_ONLY,
    EMPTY,
    GENERIC_COMPOSITION,
    NOT_CATEGORY_SPECIFIC,
    OK,
    RULE_PRECEDENCE,
    SINGLE_TOKEN_NOT_CATEGORY,
    TOO_SHORT,
    UNKNOWN_CATEGORY,
    YEAR_TOKEN,
    KeywordGuard,
)


@pytest.fixture
def guard(catalog: SweepCatalog) -> KeywordGuard:
    return KeywordGuard(catalog.guard, catalog.categories)


def test_precedence_order_is_explicit() -> None:
    assert RULE_PRECEDENCE == (
        TOO_SHORT,
        YEAR_TOKEN,
        BLOCKED_TERM,
        SINGLE_TOKEN_NOT_CATEGORY,
        GENERIC_COMPOSITION,
        BRAND_WITH_GENERIC_ONLY,
        NOT_CATEGORY_SPECIFIC,
    )


def test_year_token_wins_over_blocked_audience_term(guard: KeywordGuard) -> None:
    result = guard.is_specific("lipstick for women 2024", "shaving")

    assert result.ok is False
    assert result.reason == YEAR_TOKEN
    assert result.matched_token == "2024"
    assert result.matched_rules == (YEAR_TOKEN, BLOCKED_TERM, NOT_CATEGORY_SPECIFIC)


def test_blocked_audience_term_rejects_on_topic_keyword(guard: KeywordGuard) -> None:
    result = guard.is_specific("razor for women", "shaving")

    assert result.ok is False
    assert result.reason == BLOCKED_TERM
    assert result.matched_token == "women"
    assert result.matched_rules == (BLOCKED_TERM,)


def test_oral_care_has_no_audience_block_list(guard: KeywordGuard) -> None:
    assert guard.is_specific("toothpaste for women", "oral-care").ok is True


@pytest.mark.parametrize(
    ("keyword", "reason"),
    [
        ("", EMPTY),
        ("!!!", EMPTY),
        ("ab", TOO_SHORT),
        ("razor 2024", YEAR_TOKEN),
        ("wallet", SINGLE_TOKEN_NOT_CATEGORY),
        ("best price", GENERIC_COMPOSITION),
        ("gillette for men", BRAND_WITH_GENERIC_ONLY),
        ("laptop bag", NOT_CATEGORY_SPECIFIC),
    ],
)
def test_rejection_reasons(guard: KeywordGuard, keyword: str, reason: str) -> None:
    result = guard.is_specific(keyword, "shaving")

    assert result.ok is False
    assert result.reason == reason


@pytest.mark.parametrize(
    "keyword",
    [
        "razor",
        "gillette",
        "gillette price",
        "best trimmer under 2000",
        "Shaving-Cream for sensitive skin",
        "philips oneblade review",
    ],
)
def test_accepts_category_specific_keywords(guard: KeywordGuard, keyword: str) -> None:
    result = guard.is_specific(keyword, "shaving")

    assert result.ok is True
    assert result.reason == OK
    assert result.matched_rules == ()


def test_brand_with_commerce_token_reports_brand(guard: KeywordGuard) -> None:
    result = guard.is_specific("gillette price", "shaving")

    assert result.matched_token == "gillette"


def test_unknown_category_is_rejected(guard: KeywordGuard) -> None:
    result = guard.is_specific("razor", "kitchen")

    assert result.ok is False
    assert result.reason == UNKNOWN_CATEGORY


def test_guard_is_deterministic(guard: KeywordGuard) -> None:
    keywords = ["lipstick for women 2024", "razor", "best price", "gillette for men"]

    first = [guard.is_specific(keyword, "shaving") for keyword in keywords]
    second = [guard.is_specific(keyword, "shaving") for keyword in keywords]

    assert first == second
