"""Keyword growth state machine for one category.

A growth run moves through INIT -> SEEDING -> RESOLVING -> PERSISTING and
loops back to SEEDING while anchors still have a deficit and attempts
remain, then finishes in DONE. Each pass asks the seed generator for unseen
candidates, keeps the ones the guard accepts, stores them as UNVERIFIED,
resolves their volumes through the shared rate limiter and writes back
VALID or ZERO.

This is the only place that decides between retrying a batch, skipping it
and aborting the run.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Literal

from demand_sweep.config import settings
from demand_sweep.core.cancellation import CancelToken
from demand_sweep.core.rate_limiter import IntervalRateLimiter
from demand_sweep.schemas.category import CategoryConfig, CertificationPolicy
from demand_sweep.schemas.corpus import CategorySnapshot, KeywordRow
from demand_sweep.services.certification import anchor_tallies, hydration_reached
from demand_sweep.services.corpus_store import CorpusStore
from demand_sweep.services.keyword_classification import build_keyword_row
from demand_sweep.services.keyword_guard import KeywordGuard
from demand_sweep.services.seed_generator import SeedGenerator
from demand_sweep.services.volume_resolver import BatchOutcome, ResolvedKeyword, ResolverError, VolumeResolver

logger = logging.getLogger(__name__)

GrowthState = Literal["INIT", "SEEDING", "RESOLVING", "PERSISTING", "DONE"]
GrowthStatus = Literal["completed", "stopped", "failed", "refused"]
TerminationReason = Literal[
    "target_reached",
    "attempts_exhausted",
    "candidates_exhausted",
    "stopped",
    "auth_failed",
    "certified_locked",
]
ProgressFn = Callable[[str, dict[str, Any]], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class GrowthConfig:
    """Targets and bounds for growth runs."""

    max_attempts: int = 8
    target_valid_per_anchor: int = 40
    target_valid_total: int | None = None
    candidate_multiplier: int = 6
    min_candidates_per_pass: int = 250
    max_candidates_per_pass: int = 1000
    batch_max_attempts: int = 3
    retry_backoff_seconds: float = 2.0
    discovery_fallback_enabled: bool = True
    discovery_fallback_threshold: int = 200
    discovery_max_attempts: int = 2
    discovery_seed_window: int = 20

    @classmethod
    def from_settings(cls) -> GrowthConfig:
        return cls(
            max_attempts=settings.growth_max_attempts,
            target_valid_per_anchor=settings.growth_target_valid_per_anchor,
            target_valid_total=settings.growth_target_valid_total,
            candidate_multiplier=settings.growth_candidate_multiplier,
            min_candidates_per_pass=settings.growth_min_candidates_per_pass,
            max_candidates_per_pass=settings.growth_max_candidates_per_pass,
            batch_max_attempts=settings.volume_max_attempts,
            retry_backoff_seconds=settings.volume_retry_backoff_seconds,
            discovery_fallback_enabled=settings.discovery_fallback_enabled,
            discovery_fallback_threshold=settings.discovery_fallback_threshold,
            discovery_max_attempts=settings.discovery_max_attempts,
            discovery_seed_window=settings.discovery_seed_window,
        )

    def target_total(self, category: CategoryConfig) -> int:
        if self.target_valid_total is not None:
            return self.target_valid_total
        return self.target_valid_per_anchor * len(category.anchors)

    def candidate_request(self, total_deficit: int) -> int:
        requested = total_deficit * self.candidate_multiplier
        return max(self.min_candidates_per_pass, min(requested, self.max_candidates_per_pass))


@dataclass(slots=True)
class PassSummary:
    attempt: int
    requested: int = 0
    generated: int = 0
    discovered: int = 0
    guard_rejected: dict[str, int] = field(default_factory=dict)
    appended: int = 0
    batches: int = 0
    batch_retries: int = 0
    skipped_batches: int = 0
    lost_keywords: int = 0
    cache_hits: int = 0
    resolved_valid: int = 0
    resolved_zero: int = 0


@dataclass(slots=True)
class GrowthReport:
    category_id: str
    snapshot_id: str | None
    status: GrowthStatus = "completed"
    reason: TerminationReason | None = None
    lifecycle: str | None = None
    valid_total: int = 0
    anchor_valid: dict[str, int] = field(default_factory=dict)
    passes: list[PassSummary] = field(default_factory=list)
    states: list[GrowthState] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class _Resolution:
    updates: list[KeywordRow] = field(default_factory=list)
    fatal: ResolverError | None = None


class GrowthOrchestrator:
    """Grow a category snapshot until targets are met or the run must stop."""

    def __init__(
        self,
        store: CorpusStore,
        resolver: VolumeResolver,
        seed_generator: SeedGenerator,
        guard: KeywordGuard,
        certification: CertificationPolicy,
        *,
        config: GrowthConfig | None = None,
        limiter: IntervalRateLimiter | None = None,
        sleep: SleepFn = asyncio.sleep,
        on_progress: ProgressFn | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.seed_generator = seed_generator
        self.guard = guard
        self.certification = certification
        self.config = config or GrowthConfig.from_settings()
        self.limiter = limiter
        self._sleep = sleep
        self._on_progress = on_progress

    async def grow(
        self,
        category: CategoryConfig,
        *,
        snapshot_id: str | None = None,
        cancel_token: CancelToken | None = None,
        allow_downgrade: bool = False,
        on_progress: ProgressFn | None = None,
    ) -> GrowthReport:
        token = cancel_token or CancelToken(category.id)
        progress = on_progress or self._on_progress
        report = GrowthReport(category_id=category.id, snapshot_id=snapshot_id)
        log_context = {"category_id": category.id}

        self._enter(report, "INIT")
        if snapshot_id is not None:
            snapshot = await self.store.get_snapshot(snapshot_id)
        else:
            snapshot = await self.store.get_or_create_snapshot(category)
        report.snapshot_id = snapshot.snapshot_id
        log_context["snapshot_id"] = snapshot.snapshot_id

        if snapshot.is_certified and not allow_downgrade:
            logger.warning(
                "Refusing to grow certified snapshot",
                extra={**log_context, "lifecycle": snapshot.lifecycle},
            )
            return self._finish(report, snapshot, "refused", "certified_locked")

        if not self.resolver.credentials.present:
            logger.error("DataForSEO credentials missing, aborting growth", extra=log_context)
            report.error = "DataForSEO credentials not configured"
            return self._finish(report, snapshot, "failed", "auth_failed")

        target_total = self.config.target_total(category)
        discovery_uses = 0

        async with self.store.lease(snapshot.snapshot_id) as snapshot:
            if snapshot.is_certified:
                if not allow_downgrade:
                    return self._finish(report, snapshot, "refused", "certified_locked")
                snapshot = await self.store.downgrade_lifecycle(
                    snapshot.snapshot_id,
                    reason="growth re-run requested with allow_downgrade",
                )
            rows = await self.store.list_rows(snapshot.snapshot_id, active_only=False)
            for attempt in range(self.config.max_attempts):
                if token.cancelled:
                    logger.info("Growth stopped at pass boundary", extra={**log_context, "attempt": attempt})
                    return self._finish(report, snapshot, "stopped", "stopped", rows)

                tallies = anchor_tallies(rows, category.anchor_ids)
                deficits = {
                    anchor_id: max(0, self.config.target_valid_per_anchor - tallies.anchors[anchor_id].valid)
                    for anchor_id in category.anchor_ids
                }
                total_deficit = sum(deficits.values())
                if tallies.valid >= target_total or total_deficit == 0:
                    return self._finish(report, snapshot, "completed", "target_reached", rows)

                summary = PassSummary(attempt=attempt)
                report.passes.append(summary)
                await self._notify(
                    progress,
                    "seeding",
                    {"category_id": category.id, "attempt": attempt, "valid": tallies.valid, "deficit": total_deficit},
                )

                self._enter(report, "SEEDING")
                used_discovery, fatal = await self._seed(
                    category,
                    snapshot,
                    rows,
                    summary=summary,
                    attempt=attempt,
                    request=self.config.candidate_request(total_deficit),
                    deficits=deficits,
                    allow_discovery=discovery_uses < self.config.discovery_max_attempts,
                    discovery_attempt=discovery_uses,
                )
                discovery_uses += int(used_discovery)
                if fatal is not None:
                    report.error = fatal.message
                    rows = await self.store.list_rows(snapshot.snapshot_id, active_only=False)
                    return self._finish(report, snapshot, "failed", "auth_failed", rows)

                rows = await self.store.list_rows(snapshot.snapshot_id, active_only=False)
                pending = [row for row in rows if row.active and row.status == "UNVERIFIED"]
                if not pending:
                    logger.info("Candidate pool exhausted", extra={**log_context, "attempt": attempt})
                    return self._finish(report, snapshot, "completed", "candidates_exhausted", rows)

                self._enter(report, "RESOLVING")
                await self._notify(progress, "resolving", {"category_id": category.id, "attempt": attempt, "pending": len(pending)})
                resolution = await self._resolve(pending, summary, log_context)

                self._enter(report, "PERSISTING")
                if resolution.updates:
                    await self.store.update_rows(snapshot.snapshot_id, resolution.updates)
                rows = await self.store.list_rows(snapshot.snapshot_id, active_only=False)
                snapshot = await self._maybe_hydrate(snapshot, rows)

                logger.info(
                    "Growth pass finished",
                    extra={**log_context, **asdict(summary), "valid_total": anchor_tallies(rows).valid},
                )

                if resolution.fatal is not None:
                    report.error = resolution.fatal.message
                    return self._finish(report, snapshot, "failed", "auth_failed", rows)

            return self._finish(report, snapshot, "completed", "attempts_exhausted", rows)

    async def _seed(
        self,
        category: CategoryConfig,
        snapshot: CategorySnapshot,
        rows: Sequence[KeywordRow],
        *,
        summary: PassSummary,
        attempt: int,
        request: int,
        deficits: dict[str, int],
        allow_discovery: bool,
        discovery_attempt: int,
    ) -> tuple[bool, ResolverError | None]:
        """Generate, guard and append new UNVERIFIED rows.

        Returns whether keyword discovery was used and a fatal error, if any.
        """
        known_texts = {row.keyword_text for row in rows}
        known_ids = {row.keyword_id for row in rows}
        summary.requested = request

        candidates = self.seed_generator.generate(category, existing=known_texts, attempt=attempt, limit=request)
        summary.generated = len(candidates)
        rejected: Counter[str] = Counter()
        accepted = self._guarded(candidates, category, rejected)

        used_discovery = False
        fatal: ResolverError | None = None
        if (
            self.config.discovery_fallback_enabled
            and allow_discovery
            and len(accepted) < self.config.discovery_fallback_threshold
        ):
            used_discovery = True
            seeds = self.seed_generator.seed_window(
                category,
                attempt=discovery_attempt,
                size=self.config.discovery_seed_window,
            )
            if self.limiter is not None:
                await self.limiter.acquire()
            outcome = await self.resolver.discover(seeds)
            if outcome.error is not None and outcome.error.fatal:
                fatal = outcome.error
            elif outcome.error is not None:
                logger.warning(
                    "Keyword discovery incomplete",
                    extra={"category_id": category.id, "error": outcome.error.message},
                )
            seen = known_texts | set(accepted)
            fresh = [keyword for keyword in outcome.keywords if keyword not in seen]
            discovered = self._guarded(fresh, category, rejected)
            summary.discovered = len(discovered)
            accepted.extend(discovered[: max(request - len(accepted), 0)])

        summary.guard_rejected = dict(rejected)

        new_rows: list[KeywordRow] = []
        for keyword in accepted:
            row = build_keyword_row(keyword, category)
            if row.keyword_id in known_ids:
                continue
            known_ids.add(row.keyword_id)
            new_rows.append(row)

        # Rows for anchors still short of target are resolved first
        new_rows.sort(key=lambda row: 0 if deficits.get(row.anchor_id, 0) > 0 else 1)
        if new_rows:
            inserted = await self.store.append_rows(snapshot.snapshot_id, new_rows)
            summary.appended = len(inserted)
        return used_discovery, fatal

    def _guarded(self, keywords: Sequence[str], category: CategoryConfig, rejected: Counter[str]) -> list[str]:
        accepted: list[str] = []
        for keyword in keywords:
            result = self.guard.is_specific(keyword, category.id)
            if result.ok:
                accepted.append(keyword)
            else:
                rejected[result.reason] += 1
        return accepted

    async def _resolve(
        self,
        pending: Sequence[KeywordRow],
        summary: PassSummary,
        log_context: dict[str, Any],
    ) -> _Resolution:
        resolution = _Resolution()
        by_text = {row.keyword_text: row for row in pending}
        cached = await self.resolver.cached_volumes(list(by_text))
        for keyword, hit in cached.items():
            current = by_text.get(keyword)
            if current is not None:
                self._apply_hit(current, hit, resolution, summary)
                summary.cache_hits += 1
        if cached:
            logger.debug("Volumes served from cache", extra={**log_context, "cache_hits": summary.cache_hits})

        uncached = [keyword for keyword in by_text if keyword not in cached]
        for batch in self.resolver.chunk(uncached):
            summary.batches += 1
            outcome, retries = await self._resolve_with_retry(batch, log_context)
            summary.batch_retries += retries

            if outcome.error is not None and outcome.error.fatal:
                logger.error(
                    "Volume provider rejected credentials, aborting growth",
                    extra={**log_context, "error": outcome.error.message},
                )
                resolution.fatal = outcome.error
                break

            if outcome.error is not None and not outcome.rows:
                summary.skipped_batches += 1
                summary.lost_keywords += len(batch)
                logger.warning(
                    "Skipping volume batch after retries",
                    extra={**log_context, "batch_size": len(batch), "error": outcome.error.message},
                )
                continue

            resolved = {row.keyword: row for row in outcome.rows}
            for keyword in batch:
                current = by_text[keyword]
                hit = resolved.get(keyword)
                if hit is None:
                    if outcome.error is not None:
                        # Partial batch: unknown keywords stay UNVERIFIED for a later pass
                        summary.lost_keywords += 1
                        continue
                    resolution.updates.append(replace(current, status="ZERO", volume=0))
                    summary.resolved_zero += 1
                    continue
                self._apply_hit(current, hit, resolution, summary)
        return resolution

    @staticmethod
    def _apply_hit(
        current: KeywordRow,
        hit: ResolvedKeyword,
        resolution: _Resolution,
        summary: PassSummary,
    ) -> None:
        status = "VALID" if hit.volume > 0 else "ZERO"
        resolution.updates.append(
            replace(
                current,
                status=status,
                volume=hit.volume,
                cpc=hit.cpc,
                competition=hit.competition_index,
            )
        )
        if status == "VALID":
            summary.resolved_valid += 1
        else:
            summary.resolved_zero += 1

    async def _resolve_with_retry(
        self,
        batch: list[str],
        log_context: dict[str, Any],
    ) -> tuple[BatchOutcome, int]:
        """Resolve a batch, retrying transient failures with linear backoff."""
        attempts = max(self.config.batch_max_attempts, 1)
        retries = 0
        outcome = BatchOutcome(keywords=batch)
        for attempt in range(1, attempts + 1):
            if self.limiter is not None:
                await self.limiter.acquire()
            outcome = await self.resolver.resolve_batch(batch)
            if outcome.error is None or outcome.error.fatal or outcome.rows:
                return outcome, retries
            if attempt == attempts:
                break
            retries += 1
            logger.warning(
                "Transient volume error, retrying batch",
                extra={
                    **log_context,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error": outcome.error.message,
                },
            )
            await self._sleep(self.config.retry_backoff_seconds * attempt)
        return outcome, retries

    async def _maybe_hydrate(self, snapshot: CategorySnapshot, rows: Sequence[KeywordRow]) -> CategorySnapshot:
        if snapshot.lifecycle != "DRAFT":
            return snapshot
        if not hydration_reached(anchor_tallies(rows), self.certification):
            return snapshot
        return await self.store.set_lifecycle(
            snapshot.snapshot_id,
            "HYDRATED",
            reason="anchor validity threshold reached",
        )

    @staticmethod
    async def _notify(progress: ProgressFn | None, stage: str, details: dict[str, Any]) -> None:
        if progress is not None:
            await progress(stage, details)

    @staticmethod
    def _enter(report: GrowthReport, state: GrowthState) -> None:
        report.states.append(state)

    def _finish(
        self,
        report: GrowthReport,
        snapshot: CategorySnapshot,
        status: GrowthStatus,
        reason: TerminationReason,
        rows: Sequence[KeywordRow] = (),
    ) -> GrowthReport:
        tallies = anchor_tallies(rows)
        report.status = status
        report.reason = reason
        report.lifecycle = snapshot.lifecycle
        report.valid_total = tallies.valid
        report.anchor_valid = {anchor_id: tally.valid for anchor_id, tally in tallies.anchors.items()}
        self._enter(report, "DONE")
        logger.info(
            "Growth finished",
            extra={
                "category_id": report.category_id,
                "snapshot_id": report.snapshot_id,
                "status": status,
                "reason": reason,
                "valid_total": report.valid_total,
                "passes": len(report.passes),
            },
        )
        return report
