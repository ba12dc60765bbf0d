"""Keyword normalization, identity, intent and anchor attribution."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable
from typing import Literal

from demand_sweep.core.ids import content_hash_id
from demand_sweep.schemas.category import Anchor, CategoryConfig
from demand_sweep.schemas.corpus import UNCLASSIFIED_ANCHOR, IntentBucket, KeywordRow

IntentTier = Literal["transactional", "evaluative", "informational"]

_SEPARATORS_RE = re.compile(r"[-_/&+.,]")
_INVALID_CHARS_RE = re.compile(r"[^a-z0-9\s]")

# Checked in order; the first bucket with a matching cue wins.
INTENT_CUES: tuple[tuple[IntentBucket, frozenset[str]], ...] = (
    (
        "Decision",
        frozenset(
            {
                "buy", "price", "prices", "offer", "offers", "online", "cost", "amazon",
                "flipkart", "shop", "deal", "discount", "sale", "under", "combo",
            }
        ),
    ),
    (
        "Consideration",
        frozenset(
            {
                "best", "review", "reviews", "vs", "top", "better", "brand", "brands",
                "compare", "comparison", "alternative",
            }
        ),
    ),
    (
        "Problem",
        frozenset(
            {
                "burn", "irritation", "bump", "bumps", "fix", "solution", "problem", "pain",
                "acne", "treatment", "remedy", "dandruff", "itch", "itchy", "ingrown", "rash",
                "bleeding", "cure",
            }
        ),
    ),
    ("Need", frozenset({"need", "refill", "replacement", "sensitive", "kit"})),
    ("Habit", frozenset({"daily", "everyday", "routine", "regular"})),
    ("Aspirational", frozenset({"premium", "luxury", "gift", "professional", "styles", "style"})),
)

INTENT_TIERS: dict[IntentBucket, IntentTier] = {
    "Decision": "transactional",
    "Consideration": "evaluative",
    "Need": "evaluative",
    "Problem": "evaluative",
    "Habit": "informational",
    "Aspirational": "informational",
    "Discovery": "informational",
}

TIER_WEIGHTS: dict[IntentTier, float] = {
    "transactional": 1.0,
    "evaluative": 0.7,
    "informational": 0.4,
}


def normalize_keyword(keyword: str) -> str:
    """Lowercase, fold accents, drop punctuation and collapse whitespace."""
    folded = unicodedata.normalize("NFKD", keyword)
    ascii_text = "".join(ch for ch in folded if not unicodedata.combining(ch)).lower()
    ascii_text = _SEPARATORS_RE.sub(" ", ascii_text)
    ascii_text = _INVALID_CHARS_RE.sub("", ascii_text)
    return " ".join(ascii_text.split())


def contains_phrase(normalized_text: str, phrase: str) -> bool:
    """Return True when ``phrase`` occurs on token boundaries in ``normalized_text``."""
    if not phrase:
        return False
    return f" {phrase} " in f" {normalized_text} "


def contains_any_phrase(normalized_text: str, phrases: Iterable[str]) -> bool:
    return any(contains_phrase(normalized_text, phrase) for phrase in phrases)


def derive_keyword_id(keyword: str, category_id: str) -> str:
    """Content-derived row id, stable for a (normalized keyword, category) pair."""
    return content_hash_id(normalize_keyword(keyword), category_id)


def infer_intent_bucket(keyword: str) -> IntentBucket:
    tokens = set(normalize_keyword(keyword).split())
    for bucket, cues in INTENT_CUES:
        if tokens & cues:
            return bucket
    return "Discovery"


def intent_tier(bucket: IntentBucket) -> IntentTier:
    return INTENT_TIERS.get(bucket, "informational")


def intent_weight(bucket: IntentBucket) -> float:
    return TIER_WEIGHTS[intent_tier(bucket)]


def infer_anchor(keyword: str, anchors: Iterable[Anchor]) -> str:
    """Attribute a keyword to the anchor with the longest matching vocabulary term.

    Ties go to the anchor listed first. Keywords matching no vocabulary land in
    the ``unclassified`` anchor.
    """
    normalized = normalize_keyword(keyword)
    best_anchor = UNCLASSIFIED_ANCHOR
    best_length = 0
    for anchor in anchors:
        for term in anchor.vocabulary:
            if len(term) > best_length and contains_phrase(normalized, term):
                best_anchor = anchor.id
                best_length = len(term)
    return best_anchor


def build_keyword_row(keyword: str, category: CategoryConfig) -> KeywordRow:
    """Create an UNVERIFIED row with derived id, anchor and intent bucket."""
    normalized = normalize_keyword(keyword)
    return KeywordRow(
        keyword_id=content_hash_id(normalized, category.id),
        keyword_text=normalized,
        anchor_id=infer_anchor(normalized, category.anchors),
        intent_bucket=infer_intent_bucket(normalized),
    )
