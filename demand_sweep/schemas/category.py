"""Category catalog schemas.

The catalog is static configuration: one cohesive record per category
(anchors, vocabulary, curated seeds, guard block-list, benchmark) plus the
shared guard tables, expansion modifiers and certification thresholds. All
models are frozen so a loaded catalog can be shared between concurrent
category runs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from demand_sweep.core.exceptions import CategoryNotFoundError, ConfigurationError

logger = logging.getLogger(__name__)


def _lower_unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    cleaned: list[str] = []
    for value in values:
        item = " ".join(str(value).lower().split())
        if item and item not in seen:
            seen.add(item)
            cleaned.append(item)
    return cleaned


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Anchor(_Frozen):
    """Named sub-segment of a category used to bucket keywords."""

    id: str
    label: str
    vocabulary: list[str] = Field(
        default_factory=list,
        description="Phrases that attribute a keyword to this anchor.",
    )

    @field_validator("vocabulary")
    @classmethod
    def _normalize_vocabulary(cls, value: list[str]) -> list[str]:
        return _lower_unique(value)


class BenchmarkEntry(_Frozen):
    """Reference values used to calibrate displayed scores."""

    demand_mn: float = Field(ge=0.0)
    readiness: float = Field(ge=1.0, le=10.0)
    spread: float = Field(ge=1.0, le=10.0)
    trend_5y_pct: float | None = None


class CertificationTierThresholds(_Frozen):
    """Thresholds one snapshot must meet for a certification tier.

    Percentages are expressed on a 0-100 scale.
    """

    min_anchors_passing: int = Field(ge=0)
    min_coverage_pct: float = Field(default=0.0, ge=0.0, le=100.0)
    min_valid_keywords_total: int = Field(ge=0)
    max_zero_pct: float = Field(default=100.0, ge=0.0, le=100.0)


class CertificationPolicy(_Frozen):
    """Thresholds for certification tiers and the hydration gate."""

    full: CertificationTierThresholds = CertificationTierThresholds(
        min_anchors_passing=2,
        min_coverage_pct=3.0,
        min_valid_keywords_total=20,
        max_zero_pct=98.0,
    )
    lite: CertificationTierThresholds = CertificationTierThresholds(
        min_anchors_passing=1,
        min_coverage_pct=1.0,
        min_valid_keywords_total=5,
        max_zero_pct=99.0,
    )
    anchor_min_valid: int = Field(
        default=2,
        ge=1,
        description="Valid keywords an anchor needs to count as passing.",
    )
    hydration_min_anchors: int = Field(
        default=1,
        ge=1,
        description="Passing anchors needed before a DRAFT snapshot becomes HYDRATED.",
    )

    @model_validator(mode="after")
    def _lite_is_looser(self) -> CertificationPolicy:
        full, lite = self.full, self.lite
        not_stricter = (
            lite.min_anchors_passing <= full.min_anchors_passing
            and lite.min_coverage_pct <= full.min_coverage_pct
            and lite.min_valid_keywords_total <= full.min_valid_keywords_total
            and lite.max_zero_pct >= full.max_zero_pct
        )
        if not not_stricter:
            raise ValueError("lite certification thresholds must not be stricter than full")
        if lite == full:
            raise ValueError("lite certification thresholds must be looser than full in at least one field")
        return self


class GuardRules(_Frozen):
    """Shared tables used by the keyword guard."""

    min_keyword_length: int = Field(default=3, ge=1)
    year_min: int = Field(default=2010, ge=1000, le=9999)
    year_max: int = Field(default=2039, ge=1000, le=9999)
    require_category_term: bool = True
    generic_terms: list[str] = Field(default_factory=list)
    stopwords: list[str] = Field(default_factory=list)
    commerce_terms: list[str] = Field(
        default_factory=list,
        description="Tokens that make a brand-only keyword commercially specific.",
    )

    @field_validator("generic_terms", "stopwords", "commerce_terms")
    @classmethod
    def _normalize_terms(cls, value: list[str]) -> list[str]:
        return _lower_unique(value)


class ExpansionRules(_Frozen):
    """Modifier words combined with head terms and brands."""

    price_modifiers: list[str] = Field(default_factory=list)
    intent_modifiers: list[str] = Field(default_factory=list)
    discovery_suffixes: list[str] = Field(default_factory=lambda: ["for men", "india"])
    max_brand_comparisons: int = Field(default=30, ge=0)


class CategoryConfig(_Frozen):
    """Everything the pipeline knows about one category."""

    id: str
    name: str
    anchors: list[Anchor] = Field(min_length=1)
    head_terms: list[str] = Field(min_length=1)
    brands: list[str] = Field(default_factory=list)
    curated_seeds: list[str] = Field(default_factory=list)
    problem_phrases: list[str] = Field(default_factory=list)
    blocked_terms: list[str] = Field(
        default_factory=list,
        description="Orthogonal-audience terms that disqualify a keyword.",
    )
    benchmark: BenchmarkEntry | None = None

    @field_validator("head_terms", "brands", "curated_seeds", "problem_phrases", "blocked_terms")
    @classmethod
    def _normalize_terms(cls, value: list[str]) -> list[str]:
        return _lower_unique(value)

    @model_validator(mode="after")
    def _unique_anchor_ids(self) -> CategoryConfig:
        ids = [anchor.id for anchor in self.anchors]
        if len(ids) != len(set(ids)):
            raise ValueError(f"duplicate anchor ids in category {self.id}")
        return self

    @property
    def anchor_ids(self) -> list[str]:
        return [anchor.id for anchor in self.anchors]


class SweepCatalog(_Frozen):
    """Root of the category catalog file."""

    guard: GuardRules = GuardRules()
    expansion: ExpansionRules = ExpansionRules()
    certification: CertificationPolicy = CertificationPolicy()
    categories: dict[str, CategoryConfig]

    @model_validator(mode="before")
    @classmethod
    def _inject_category_ids(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        categories = data.get("categories")
        if isinstance(categories, dict):
            data = {
                **data,
                "categories": {
                    key: {"id": key, **value} if isinstance(value, dict) else value
                    for key, value in categories.items()
                },
            }
        return data

    def get_category(self, category_id: str) -> CategoryConfig:
        category = self.categories.get(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    def benchmarks(self) -> dict[str, BenchmarkEntry]:
        return {
            category_id: category.benchmark
            for category_id, category in self.categories.items()
            if category.benchmark is not None
        }


def load_catalog(path: Path | str) -> SweepCatalog:
    """Load and validate a category catalog YAML file."""
    catalog_path = Path(path)
    try:
        raw = yaml.safe_load(catalog_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Unable to read category catalog: {catalog_path}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Category catalog must be a mapping: {catalog_path}")

    # Underscore keys only hold YAML anchors shared between categories
    raw = {key: value for key, value in raw.items() if not str(key).startswith("_")}
    try:
        catalog = SweepCatalog.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid category catalog: {catalog_path}",
            {"errors": exc.errors(include_url=False)},
        ) from exc

    logger.info(
        "Category catalog loaded",
        extra={"path": str(catalog_path), "categories": sorted(catalog.categories)},
    )
    return catalog
