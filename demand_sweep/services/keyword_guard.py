"""Category specificity guard for candidate keywords.

Rejection rules are evaluated in a fixed precedence order. The first rule
that matches becomes the ``reason``; every matching rule is reported in
``matched_rules`` so callers can see overlapping causes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from demand_sweep.schemas.category import CategoryConfig, GuardRules
from demand_sweep.services.keyword_classification import contains_phrase, normalize_keyword

logger = logging.getLogger(__name__)

OK = "OK"
EMPTY = "EMPTY"
UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"
TOO_SHORT = "TOO_SHORT"
YEAR_TOKEN = "YEAR_TOKEN"
BLOCKED_TERM = "BLOCKED_TERM"
SINGLE_TOKEN_NOT_CATEGORY = "SINGLE_TOKEN_NOT_CATEGORY"
GENERIC_COMPOSITION = "GENERIC_COMPOSITION"
BRAND_WITH_GENERIC_ONLY = "BRAND_WITH_GENERIC_ONLY"
NOT_CATEGORY_SPECIFIC = "NOT_CATEGORY_SPECIFIC"

RULE_PRECEDENCE: tuple[str, ...] = (
    TOO_SHORT,
    YEAR_TOKEN,
    BLOCKED_TERM,
    SINGLE_TOKEN_NOT_CATEGORY,
    GENERIC_COMPOSITION,
    BRAND_WITH_GENERIC_ONLY,
    NOT_CATEGORY_SPECIFIC,
)


@dataclass(frozen=True, slots=True)
class GuardResult:
    ok: bool
    reason: str
    matched_rules: tuple[str, ...] = ()
    matched_token: str | None = None


class KeywordGuard:
    """Decide whether a keyword is specific enough to count for a category."""

    def __init__(self, rules: GuardRules, categories: Mapping[str, CategoryConfig]) -> None:
        self.rules = rules
        self.categories = dict(categories)
        self._generic = frozenset(rules.generic_terms) | frozenset(rules.stopwords)
        self._commerce = frozenset(rules.commerce_terms)

    def is_specific(self, keyword: str, category_id: str) -> GuardResult:
        category = self.categories.get(category_id)
        if category is None:
            return GuardResult(ok=False, reason=UNKNOWN_CATEGORY, matched_rules=(UNKNOWN_CATEGORY,))

        normalized = normalize_keyword(keyword or "")
        if not normalized:
            return GuardResult(ok=False, reason=EMPTY, matched_rules=(EMPTY,))

        matches: dict[str, str | None] = {}
        tokens = normalized.split()

        if len(normalized) < self.rules.min_keyword_length:
            matches[TOO_SHORT] = None

        year = self._year_token(tokens)
        if year is not None:
            matches[YEAR_TOKEN] = year

        blocked = next(
            (term for term in category.blocked_terms if contains_phrase(normalized, term)),
            None,
        )
        if blocked is not None:
            matches[BLOCKED_TERM] = blocked

        if self.rules.require_category_term:
            rule, token = self._specificity(normalized, tokens, category)
            if rule is not None:
                matches[rule] = token
            elif not matches:
                return GuardResult(ok=True, reason=OK, matched_token=token)

        if not matches:
            return GuardResult(ok=True, reason=OK)

        matched_rules = tuple(rule for rule in RULE_PRECEDENCE if rule in matches)
        reason = matched_rules[0]
        return GuardResult(
            ok=False,
            reason=reason,
            matched_rules=matched_rules,
            matched_token=matches[reason],
        )

    def _year_token(self, tokens: list[str]) -> str | None:
        for token in tokens:
            if len(token) == 4 and token.isdigit():
                if self.rules.year_min <= int(token) <= self.rules.year_max:
                    return token
        return None

    def _specificity(
        self,
        normalized: str,
        tokens: list[str],
        category: CategoryConfig,
    ) -> tuple[str | None, str | None]:
        """Return (failed rule, token) or (None, matched head/brand)."""
        if len(tokens) == 1:
            if normalized in category.head_terms or normalized in category.brands:
                return None, normalized
            return SINGLE_TOKEN_NOT_CATEGORY, normalized

        if all(token in self._generic for token in tokens):
            return GENERIC_COMPOSITION, None

        head = next((h for h in category.head_terms if contains_phrase(normalized, h)), None)
        if head is not None:
            return None, head

        brands = [b for b in category.brands if contains_phrase(normalized, b)]
        if not brands:
            return NOT_CATEGORY_SPECIFIC, None

        remainder = f" {normalized} "
        for brand in brands:
            remainder = remainder.replace(f" {brand} ", " ")
        remainder_tokens = remainder.split()
        if not remainder_tokens or any(token in self._commerce for token in remainder_tokens):
            return None, brands[0]
        if all(token in self._generic for token in remainder_tokens):
            return BRAND_WITH_GENERIC_ONLY, brands[0]
        return None, brands[0]
