"""Keyword corpus storage: snapshots, rows and lifecycle.

Two implementations share one contract: ``InMemoryCorpusStore`` for dry
runs and tests, ``SqlCorpusStore`` on async SQLAlchemy. Both guarantee that
a snapshot never holds two rows with the same keyword id, that certified
snapshots are read-only until explicitly downgraded, and that only one
growth operation holds a snapshot at a time.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from demand_sweep.core.db_retry import run_with_db_retry
from demand_sweep.core.database import session_scope
from demand_sweep.core.exceptions import (
    LifecycleTransitionError,
    SnapshotBusyError,
    SnapshotNotFoundError,
)
from demand_sweep.core.ids import generate_snapshot_id
from demand_sweep.models.corpus import CategorySnapshotRecord, KeywordRowRecord
from demand_sweep.schemas.category import CategoryConfig
from demand_sweep.schemas.corpus import (
    CERTIFIED_LIFECYCLES,
    UNCLASSIFIED_ANCHOR,
    CategorySnapshot,
    KeywordRow,
    SnapshotLifecycle,
)

logger = logging.getLogger(__name__)

LIFECYCLE_RANK: dict[str, int] = {
    "DRAFT": 0,
    "HYDRATED": 1,
    "CERTIFIED_LITE": 2,
    "CERTIFIED_FULL": 3,
}

# Keeps IN (...) lists under SQLite's bound-parameter limit
_SQL_CHUNK = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _chunks(items: Sequence[str], size: int = _SQL_CHUNK) -> Iterable[Sequence[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class CorpusStore(ABC):
    """Storage contract for category snapshots and their keyword rows."""

    def __init__(self) -> None:
        self._leases: set[str] = set()

    @abstractmethod
    async def create_snapshot(self, category: CategoryConfig) -> CategorySnapshot: ...

    @abstractmethod
    async def get_snapshot(self, snapshot_id: str) -> CategorySnapshot: ...

    @abstractmethod
    async def latest_snapshot(self, category_id: str) -> CategorySnapshot | None: ...

    @abstractmethod
    async def list_rows(self, snapshot_id: str, *, active_only: bool = True) -> list[KeywordRow]: ...

    @abstractmethod
    async def append_rows(self, snapshot_id: str, rows: Sequence[KeywordRow]) -> list[KeywordRow]:
        """Insert rows whose keyword id is new to the snapshot; return the inserted ones."""

    @abstractmethod
    async def update_rows(self, snapshot_id: str, rows: Sequence[KeywordRow]) -> int:
        """Overwrite resolution fields of existing rows; return how many were updated."""

    @abstractmethod
    async def deactivate_rows(self, snapshot_id: str, keyword_ids: Sequence[str]) -> int: ...

    @abstractmethod
    async def _write_lifecycle(
        self,
        snapshot_id: str,
        lifecycle: SnapshotLifecycle,
        reason: str | None,
    ) -> CategorySnapshot: ...

    async def get_or_create_snapshot(self, category: CategoryConfig) -> CategorySnapshot:
        snapshot = await self.latest_snapshot(category.id)
        if snapshot is None:
            snapshot = await self.create_snapshot(category)
        return snapshot

    async def set_lifecycle(
        self,
        snapshot_id: str,
        lifecycle: SnapshotLifecycle,
        *,
        reason: str | None = None,
    ) -> CategorySnapshot:
        """Move a snapshot forward, or sideways between uncertified states.

        Leaving a certified state for a lower one requires ``downgrade_lifecycle``.
        """
        snapshot = await self.get_snapshot(snapshot_id)
        if snapshot.lifecycle == lifecycle:
            return snapshot
        if (
            snapshot.lifecycle in CERTIFIED_LIFECYCLES
            and LIFECYCLE_RANK[lifecycle] < LIFECYCLE_RANK[snapshot.lifecycle]
        ):
            raise LifecycleTransitionError(snapshot_id, snapshot.lifecycle, lifecycle)
        logger.info(
            "Snapshot lifecycle changed",
            extra={
                "snapshot_id": snapshot_id,
                "category_id": snapshot.category_id,
                "from": snapshot.lifecycle,
                "to": lifecycle,
                "reason": reason,
            },
        )
        return await self._write_lifecycle(snapshot_id, lifecycle, reason)

    async def downgrade_lifecycle(
        self,
        snapshot_id: str,
        *,
        reason: str,
        to: SnapshotLifecycle = "HYDRATED",
    ) -> CategorySnapshot:
        """Explicitly drop a certified snapshot back to an editable state."""
        if not reason.strip():
            raise ValueError("a downgrade reason is required")
        snapshot = await self.get_snapshot(snapshot_id)
        if LIFECYCLE_RANK[to] >= LIFECYCLE_RANK[snapshot.lifecycle]:
            raise LifecycleTransitionError(snapshot_id, snapshot.lifecycle, to)
        logger.warning(
            "Snapshot lifecycle downgraded",
            extra={
                "snapshot_id": snapshot_id,
                "category_id": snapshot.category_id,
                "from": snapshot.lifecycle,
                "to": to,
                "reason": reason,
            },
        )
        return await self._write_lifecycle(snapshot_id, to, reason)

    @asynccontextmanager
    async def lease(self, snapshot_id: str) -> AsyncIterator[CategorySnapshot]:
        """Hold exclusive growth access to a snapshot for the duration of the block."""
        if snapshot_id in self._leases:
            raise SnapshotBusyError(snapshot_id)
        self._leases.add(snapshot_id)
        try:
            yield await self.get_snapshot(snapshot_id)
        finally:
            self._leases.discard(snapshot_id)

    def is_leased(self, snapshot_id: str) -> bool:
        return snapshot_id in self._leases

    @staticmethod
    def _ensure_writable(snapshot: CategorySnapshot) -> None:
        if snapshot.is_certified:
            raise LifecycleTransitionError(snapshot.snapshot_id, snapshot.lifecycle, "row write")


class InMemoryCorpusStore(CorpusStore):
    """Process-local store; returned objects are copies, never live references."""

    def __init__(self) -> None:
        super().__init__()
        self._snapshots: dict[str, CategorySnapshot] = {}
        self._rows: dict[str, dict[str, KeywordRow]] = {}
        self._lock = asyncio.Lock()

    async def create_snapshot(self, category: CategoryConfig) -> CategorySnapshot:
        snapshot = CategorySnapshot(
            snapshot_id=generate_snapshot_id(category.id),
            category_id=category.id,
            anchor_ids=[*category.anchor_ids, UNCLASSIFIED_ANCHOR],
        )
        async with self._lock:
            self._snapshots[snapshot.snapshot_id] = snapshot
            self._rows[snapshot.snapshot_id] = {}
        logger.info(
            "Snapshot created",
            extra={"snapshot_id": snapshot.snapshot_id, "category_id": category.id},
        )
        return self._copy_snapshot(snapshot)

    async def get_snapshot(self, snapshot_id: str) -> CategorySnapshot:
        return self._copy_snapshot(self._require(snapshot_id))

    async def latest_snapshot(self, category_id: str) -> CategorySnapshot | None:
        candidates = [s for s in self._snapshots.values() if s.category_id == category_id]
        if not candidates:
            return None
        latest = max(candidates, key=lambda s: (s.created_at, s.snapshot_id))
        return self._copy_snapshot(latest)

    async def list_rows(self, snapshot_id: str, *, active_only: bool = True) -> list[KeywordRow]:
        self._require(snapshot_id)
        rows = self._rows[snapshot_id].values()
        return [replace(row) for row in rows if row.active or not active_only]

    async def append_rows(self, snapshot_id: str, rows: Sequence[KeywordRow]) -> list[KeywordRow]:
        async with self._lock:
            snapshot = self._require(snapshot_id)
            self._ensure_writable(snapshot)
            stored = self._rows[snapshot_id]
            inserted: list[KeywordRow] = []
            for row in rows:
                if row.keyword_id in stored:
                    continue
                stored[row.keyword_id] = replace(row)
                inserted.append(replace(row))
            if inserted:
                self._touch(snapshot)
        return inserted

    async def update_rows(self, snapshot_id: str, rows: Sequence[KeywordRow]) -> int:
        async with self._lock:
            snapshot = self._require(snapshot_id)
            self._ensure_writable(snapshot)
            stored = self._rows[snapshot_id]
            updated = 0
            for row in rows:
                current = stored.get(row.keyword_id)
                if current is None:
                    continue
                stored[row.keyword_id] = replace(
                    current,
                    status=row.status,
                    volume=row.volume,
                    cpc=row.cpc,
                    competition=row.competition,
                    anchor_id=row.anchor_id,
                    intent_bucket=row.intent_bucket,
                )
                updated += 1
            if updated:
                self._touch(snapshot)
        return updated

    async def deactivate_rows(self, snapshot_id: str, keyword_ids: Sequence[str]) -> int:
        async with self._lock:
            snapshot = self._require(snapshot_id)
            self._ensure_writable(snapshot)
            stored = self._rows[snapshot_id]
            changed = 0
            for keyword_id in keyword_ids:
                row = stored.get(keyword_id)
                if row is not None and row.active:
                    row.active = False
                    changed += 1
            if changed:
                self._touch(snapshot)
        return changed

    async def _write_lifecycle(
        self,
        snapshot_id: str,
        lifecycle: SnapshotLifecycle,
        reason: str | None,
    ) -> CategorySnapshot:
        async with self._lock:
            snapshot = self._require(snapshot_id)
            snapshot.lifecycle = lifecycle
            snapshot.lifecycle_reason = reason
            self._touch(snapshot)
        return self._copy_snapshot(snapshot)

    def _require(self, snapshot_id: str) -> CategorySnapshot:
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(snapshot_id)
        return snapshot

    @staticmethod
    def _touch(snapshot: CategorySnapshot) -> None:
        snapshot.version += 1
        snapshot.updated_at = _utcnow()

    @staticmethod
    def _copy_snapshot(snapshot: CategorySnapshot) -> CategorySnapshot:
        return replace(snapshot, anchor_ids=list(snapshot.anchor_ids))


class SqlCorpusStore(CorpusStore):
    """Corpus store backed by the ``category_snapshots`` and ``keyword_rows`` tables."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self.session_maker = session_maker

    async def create_snapshot(self, category: CategoryConfig) -> CategorySnapshot:
        snapshot_id = generate_snapshot_id(category.id)

        async def _create() -> CategorySnapshot:
            async with session_scope(self.session_maker) as session:
                record = CategorySnapshotRecord(
                    id=snapshot_id,
                    category_id=category.id,
                    anchor_ids=[*category.anchor_ids, UNCLASSIFIED_ANCHOR],
                    lifecycle="DRAFT",
                    version=0,
                )
                session.add(record)
                await session.flush()
                await session.refresh(record)
                return self._to_snapshot(record)

        snapshot = await run_with_db_retry(
            _create,
            operation_name="create_snapshot",
            log_context={"category_id": category.id},
        )
        logger.info(
            "Snapshot created",
            extra={"snapshot_id": snapshot.snapshot_id, "category_id": category.id},
        )
        return snapshot

    async def get_snapshot(self, snapshot_id: str) -> CategorySnapshot:
        async with session_scope(self.session_maker, commit_on_exit=False) as session:
            record = await self._get_record(session, snapshot_id)
            return self._to_snapshot(record)

    async def latest_snapshot(self, category_id: str) -> CategorySnapshot | None:
        async with session_scope(self.session_maker, commit_on_exit=False) as session:
            result = await session.execute(
                select(CategorySnapshotRecord)
                .where(CategorySnapshotRecord.category_id == category_id)
                .order_by(CategorySnapshotRecord.created_at.desc(), CategorySnapshotRecord.id.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return self._to_snapshot(record) if record is not None else None

    async def list_rows(self, snapshot_id: str, *, active_only: bool = True) -> list[KeywordRow]:
        async with session_scope(self.session_maker, commit_on_exit=False) as session:
            await self._get_record(session, snapshot_id)
            query = (
                select(KeywordRowRecord)
                .where(KeywordRowRecord.snapshot_id == snapshot_id)
                .order_by(KeywordRowRecord.id)
            )
            if active_only:
                query = query.where(KeywordRowRecord.active.is_(True))
            result = await session.execute(query)
            return [self._to_row(record) for record in result.scalars()]

    async def append_rows(self, snapshot_id: str, rows: Sequence[KeywordRow]) -> list[KeywordRow]:
        if not rows:
            return []

        async def _append() -> list[KeywordRow]:
            async with session_scope(self.session_maker) as session:
                snapshot_record = await self._get_record(session, snapshot_id)
                self._ensure_writable(self._to_snapshot(snapshot_record))

                unique: dict[str, KeywordRow] = {}
                for row in rows:
                    unique.setdefault(row.keyword_id, row)
                existing = await self._existing_ids(session, snapshot_id, list(unique))

                inserted = [row for keyword_id, row in unique.items() if keyword_id not in existing]
                for row in inserted:
                    session.add(self._to_record(snapshot_id, row))
                if inserted:
                    snapshot_record.version += 1
                return [replace(row) for row in inserted]

        return await run_with_db_retry(
            _append,
            operation_name="append_rows",
            log_context={"snapshot_id": snapshot_id, "rows": len(rows)},
        )

    async def update_rows(self, snapshot_id: str, rows: Sequence[KeywordRow]) -> int:
        if not rows:
            return 0
        by_id = {row.keyword_id: row for row in rows}

        async def _update() -> int:
            async with session_scope(self.session_maker) as session:
                snapshot_record = await self._get_record(session, snapshot_id)
                self._ensure_writable(self._to_snapshot(snapshot_record))
                updated = 0
                for chunk in _chunks(list(by_id)):
                    result = await session.execute(
                        select(KeywordRowRecord).where(
                            KeywordRowRecord.snapshot_id == snapshot_id,
                            KeywordRowRecord.keyword_id.in_(chunk),
                        )
                    )
                    for record in result.scalars():
                        row = by_id[record.keyword_id]
                        record.status = row.status
                        record.volume = row.volume
                        record.cpc = row.cpc
                        record.competition = row.competition
                        record.anchor_id = row.anchor_id
                        record.intent_bucket = row.intent_bucket
                        updated += 1
                if updated:
                    snapshot_record.version += 1
                return updated

        return await run_with_db_retry(
            _update,
            operation_name="update_rows",
            log_context={"snapshot_id": snapshot_id, "rows": len(by_id)},
        )

    async def deactivate_rows(self, snapshot_id: str, keyword_ids: Sequence[str]) -> int:
        if not keyword_ids:
            return 0
        async with session_scope(self.session_maker) as session:
            snapshot_record = await self._get_record(session, snapshot_id)
            self._ensure_writable(self._to_snapshot(snapshot_record))
            changed = 0
            for chunk in _chunks(list(keyword_ids)):
                result = await session.execute(
                    select(KeywordRowRecord).where(
                        KeywordRowRecord.snapshot_id == snapshot_id,
                        KeywordRowRecord.keyword_id.in_(chunk),
                        KeywordRowRecord.active.is_(True),
                    )
                )
                for record in result.scalars():
                    record.active = False
                    changed += 1
            if changed:
                snapshot_record.version += 1
            return changed

    async def _write_lifecycle(
        self,
        snapshot_id: str,
        lifecycle: SnapshotLifecycle,
        reason: str | None,
    ) -> CategorySnapshot:
        async with session_scope(self.session_maker) as session:
            record = await self._get_record(session, snapshot_id)
            record.lifecycle = lifecycle
            record.lifecycle_reason = reason
            record.version += 1
            await session.flush()
            await session.refresh(record)
            return self._to_snapshot(record)

    @staticmethod
    async def _get_record(session: AsyncSession, snapshot_id: str) -> CategorySnapshotRecord:
        record = await session.get(CategorySnapshotRecord, snapshot_id)
        if record is None:
            raise SnapshotNotFoundError(snapshot_id)
        return record

    @staticmethod
    async def _existing_ids(session: AsyncSession, snapshot_id: str, keyword_ids: list[str]) -> set[str]:
        existing: set[str] = set()
        for chunk in _chunks(keyword_ids):
            result = await session.execute(
                select(KeywordRowRecord.keyword_id).where(
                    KeywordRowRecord.snapshot_id == snapshot_id,
                    KeywordRowRecord.keyword_id.in_(chunk),
                )
            )
            existing.update(result.scalars())
        return existing

    @staticmethod
    def _to_snapshot(record: CategorySnapshotRecord) -> CategorySnapshot:
        return CategorySnapshot(
            snapshot_id=record.id,
            category_id=record.category_id,
            anchor_ids=list(record.anchor_ids or []),
            lifecycle=record.lifecycle,  # type: ignore[arg-type]
            version=record.version,
            lifecycle_reason=record.lifecycle_reason,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    @staticmethod
    def _to_row(record: KeywordRowRecord) -> KeywordRow:
        return KeywordRow(
            keyword_id=record.keyword_id,
            keyword_text=record.keyword_text,
            anchor_id=record.anchor_id,
            intent_bucket=record.intent_bucket,  # type: ignore[arg-type]
            status=record.status,  # type: ignore[arg-type]
            volume=record.volume,
            cpc=record.cpc,
            competition=record.competition,
            active=record.active,
            created_at=record.created_at,
        )

    @staticmethod
    def _to_record(snapshot_id: str, row: KeywordRow) -> KeywordRowRecord:
        return KeywordRowRecord(
            snapshot_id=snapshot_id,
            keyword_id=row.keyword_id,
            keyword_text=row.keyword_text,
            anchor_id=row.anchor_id,
            intent_bucket=row.intent_bucket,
            status=row.status,
            volume=row.volume,
            cpc=row.cpc,
            competition=row.competition,
            active=row.active,
            created_at=row.created_at,
        )
