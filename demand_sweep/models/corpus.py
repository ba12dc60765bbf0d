"""Category snapshot and keyword row tables."""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from demand_sweep.models.base import Base, TimestampMixin


class CategorySnapshotRecord(Base, TimestampMixin):
    """Versioned container of one category's keyword corpus."""

    __tablename__ = "category_snapshots"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    category_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    anchor_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    lifecycle: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    lifecycle_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    rows: Mapped[list[KeywordRowRecord]] = relationship(
        "KeywordRowRecord",
        back_populates="snapshot",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<CategorySnapshotRecord {self.id} {self.lifecycle}>"


class KeywordRowRecord(Base, TimestampMixin):
    """One keyword row; unique per snapshot and content-derived keyword id."""

    __tablename__ = "keyword_rows"
    __table_args__ = (
        UniqueConstraint("snapshot_id", "keyword_id", name="uq_keyword_rows_snapshot_keyword"),
        Index("ix_keyword_rows_snapshot_status", "snapshot_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("category_snapshots.id", ondelete="CASCADE"),
        nullable=False,
    )
    keyword_id: Mapped[str] = mapped_column(String(64), nullable=False)
    keyword_text: Mapped[str] = mapped_column(String(500), nullable=False)
    anchor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    intent_bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="UNVERIFIED")
    volume: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cpc: Mapped[float | None] = mapped_column(Float, nullable=True)
    competition: Mapped[float | None] = mapped_column(Float, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    snapshot: Mapped[CategorySnapshotRecord] = relationship("CategorySnapshotRecord", back_populates="rows")

    def __repr__(self) -> str:
        return f"<KeywordRowRecord {self.keyword_text} {self.status}>"
