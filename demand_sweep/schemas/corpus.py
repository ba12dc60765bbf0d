"""Keyword corpus records shared by the store, growth and scoring services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

KeywordStatus = Literal["VALID", "ZERO", "UNVERIFIED"]
SnapshotLifecycle = Literal["DRAFT", "HYDRATED", "CERTIFIED_LITE", "CERTIFIED_FULL"]
IntentBucket = Literal[
    "Decision",
    "Consideration",
    "Need",
    "Problem",
    "Habit",
    "Aspirational",
    "Discovery",
]

CERTIFIED_LIFECYCLES: frozenset[str] = frozenset({"CERTIFIED_LITE", "CERTIFIED_FULL"})
UNCLASSIFIED_ANCHOR = "unclassified"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class KeywordRow:
    """One candidate search phrase scoped to a category."""

    keyword_id: str
    keyword_text: str
    anchor_id: str
    intent_bucket: IntentBucket
    status: KeywordStatus = "UNVERIFIED"
    volume: int | None = None
    cpc: float | None = None
    competition: float | None = None
    active: bool = True
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class CategorySnapshot:
    """Versioned container header for one category's keyword rows."""

    snapshot_id: str
    category_id: str
    anchor_ids: list[str]
    lifecycle: SnapshotLifecycle = "DRAFT"
    version: int = 0
    lifecycle_reason: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_certified(self) -> bool:
        return self.lifecycle in CERTIFIED_LIFECYCLES
