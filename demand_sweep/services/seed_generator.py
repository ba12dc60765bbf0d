"""Candidate keyword generation for category growth passes."""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Iterator
from itertools import combinations

from demand_sweep.schemas.category import CategoryConfig, ExpansionRules
from demand_sweep.services.keyword_classification import normalize_keyword

logger = logging.getLogger(__name__)

BRAND_HEAD_TEMPLATES = (
    "{brand} {head}",
    "{brand} {head} price",
    "{brand} {head} for men",
    "{brand} {head} online",
    "{brand} {head} review",
    "{brand} {head} combo",
    "{brand} {head} kit",
    "best {head} {brand}",
    "{head} by {brand}",
)


class SeedGenerator:
    """Build a bounded, deterministic candidate pool and hand out rotating slices.

    The pool order is curated seeds, anchor vocabulary, discovery seeds and
    then template expansions, so earlier attempts favour higher-trust phrases.
    """

    def __init__(self, expansion: ExpansionRules, *, max_candidates: int = 3000) -> None:
        if max_candidates < 1:
            raise ValueError("max_candidates must be >= 1")
        self.expansion = expansion
        self.max_candidates = max_candidates
        self._pools: dict[str, list[str]] = {}

    def candidate_pool(self, category: CategoryConfig) -> list[str]:
        """Return the full normalized, deduplicated and capped pool for a category."""
        cached = self._pools.get(category.id)
        if cached is not None:
            return cached

        pool: list[str] = []
        seen: set[str] = set()
        for raw in self._iter_sources(category):
            candidate = normalize_keyword(raw)
            if not candidate or candidate in seen:
                continue
            seen.add(candidate)
            pool.append(candidate)
            if len(pool) >= self.max_candidates:
                break

        logger.debug(
            "Candidate pool built",
            extra={"category_id": category.id, "pool_size": len(pool)},
        )
        self._pools[category.id] = pool
        return pool

    def generate(
        self,
        category: CategoryConfig,
        *,
        existing: Collection[str] = (),
        attempt: int = 0,
        limit: int | None = None,
    ) -> list[str]:
        """Return unseen candidates for one pass.

        Candidates already in ``existing`` are skipped. The remaining pool is
        rotated by ``attempt * limit`` so consecutive attempts start at
        different positions.
        """
        known = {normalize_keyword(keyword) for keyword in existing}
        remaining = [candidate for candidate in self.candidate_pool(category) if candidate not in known]
        if not remaining:
            return []
        if limit is None or limit >= len(remaining):
            return remaining
        if limit < 1:
            return []

        offset = (max(attempt, 0) * limit) % len(remaining)
        rotated = remaining[offset:] + remaining[:offset]
        return rotated[:limit]

    def seed_window(self, category: CategoryConfig, *, attempt: int, size: int) -> list[str]:
        """Return a rotating window of curated seeds and head terms for keyword discovery."""
        base = _unique(normalize_keyword(term) for term in [*category.curated_seeds, *category.head_terms])
        if not base or size < 1:
            return []
        if size >= len(base):
            return base
        offset = (max(attempt, 0) * size) % len(base)
        rotated = base[offset:] + base[:offset]
        return rotated[:size]

    def _iter_sources(self, category: CategoryConfig) -> Iterator[str]:
        yield from category.curated_seeds

        for anchor in category.anchors:
            yield from anchor.vocabulary

        yield from self._discovery_seeds(category)

        for brand in category.brands:
            for head in category.head_terms:
                for template in BRAND_HEAD_TEMPLATES:
                    yield template.format(brand=brand, head=head)

        for head in category.head_terms:
            for modifier in self.expansion.price_modifiers:
                yield f"{head} {modifier}"
                yield f"best {head} {modifier}"

        for head in category.head_terms:
            for modifier in self.expansion.intent_modifiers:
                yield f"{head} {modifier}"

        pairs = combinations(category.brands, 2)
        for index, (left, right) in enumerate(pairs):
            if index >= self.expansion.max_brand_comparisons:
                break
            yield f"{left} vs {right}"

    def _discovery_seeds(self, category: CategoryConfig) -> Iterator[str]:
        for head in category.head_terms:
            yield head
            yield f"best {head}"
            for suffix in self.expansion.discovery_suffixes:
                yield f"{head} {suffix}"
        yield from category.brands
        for phrase in category.problem_phrases:
            yield phrase
            yield f"{phrase} treatment"


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result
