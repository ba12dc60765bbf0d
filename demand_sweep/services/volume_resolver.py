"""Keyword volume resolution against DataForSEO.

Every call returns a typed outcome instead of raising: authentication
problems are fatal for a run, transport problems are transient, and empty
results are not errors at all. Retry and throttling decisions belong to the
growth orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from demand_sweep.config import settings
from demand_sweep.core.exceptions import (
    APIKeyMissingError,
    AuthenticationFailedError,
    ExternalAPIError,
)
from demand_sweep.core.rate_limiter import IntervalRateLimiter
from demand_sweep.integrations.dataforseo import DataForSEOClient, VolumeRow
from demand_sweep.services.keyword_classification import normalize_keyword
from demand_sweep.services.volume_cache import KeywordVolumeCache

logger = logging.getLogger(__name__)

ResolverErrorKind = Literal["auth", "transient"]


@dataclass(frozen=True, slots=True)
class ProviderCredentials:
    login: str | None
    password: str | None

    @classmethod
    def from_settings(cls) -> ProviderCredentials:
        return cls(login=settings.dataforseo_login, password=settings.dataforseo_password)

    @property
    def present(self) -> bool:
        return bool(self.login and self.password)


@dataclass(frozen=True, slots=True)
class ResolverError:
    kind: ResolverErrorKind
    message: str

    @property
    def fatal(self) -> bool:
        return self.kind == "auth"


@dataclass(frozen=True, slots=True)
class ResolvedKeyword:
    keyword: str
    volume: int
    cpc: float | None
    competition_index: float | None


@dataclass(slots=True)
class BatchOutcome:
    """Rows the provider returned for one batch, plus an error if the batch was incomplete."""

    keywords: list[str]
    rows: list[ResolvedKeyword] = field(default_factory=list)
    error: ResolverError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def partial(self) -> bool:
        return self.error is not None and bool(self.rows)


@dataclass(slots=True)
class ResolveResult:
    rows: list[ResolvedKeyword] = field(default_factory=list)
    errors: list[ResolverError] = field(default_factory=list)
    failed_keywords: list[str] = field(default_factory=list)
    cache_hits: int = 0


@dataclass(slots=True)
class DiscoveryOutcome:
    keywords: list[str] = field(default_factory=list)
    error: ResolverError | None = None


ClientFactory = Callable[..., Any]


class VolumeResolver:
    """Resolve monthly search volume for keyword batches."""

    def __init__(
        self,
        credentials: ProviderCredentials | None = None,
        *,
        batch_size: int | None = None,
        location_code: int | None = None,
        language_code: str | None = None,
        client_factory: ClientFactory = DataForSEOClient,
        cache: KeywordVolumeCache | None = None,
    ) -> None:
        self.credentials = credentials or ProviderCredentials.from_settings()
        self.batch_size = batch_size or settings.dataforseo_batch_size
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.location_code = location_code or settings.dataforseo_location_code
        self.language_code = language_code or settings.dataforseo_language_code
        self._client_factory = client_factory
        self.cache = cache

    def chunk(self, keywords: Sequence[str]) -> list[list[str]]:
        """Split keywords into provider-sized batches, preserving order."""
        items = list(keywords)
        return [items[i : i + self.batch_size] for i in range(0, len(items), self.batch_size)]

    async def resolve_batch(self, keywords: Sequence[str]) -> BatchOutcome:
        """Resolve one batch; never raises for provider or transport failures."""
        batch = list(keywords)
        if len(batch) > self.batch_size:
            raise ValueError(f"batch of {len(batch)} exceeds batch_size {self.batch_size}")
        if not batch:
            return BatchOutcome(keywords=batch)
        if not self.credentials.present:
            return BatchOutcome(keywords=batch, error=ResolverError("auth", "DataForSEO credentials not configured"))

        try:
            async with self._client_factory(
                login=self.credentials.login,
                password=self.credentials.password,
            ) as client:
                provider_rows, task_errors = await client.get_search_volume(
                    batch,
                    location_code=self.location_code,
                    language_code=self.language_code,
                )
        except (APIKeyMissingError, AuthenticationFailedError) as e:
            return BatchOutcome(keywords=batch, error=ResolverError("auth", e.message))
        except ExternalAPIError as e:
            return BatchOutcome(keywords=batch, error=ResolverError("transient", e.message))

        rows = self._to_resolved(provider_rows)
        error = None
        if task_errors:
            error = ResolverError("transient", "; ".join(task_errors))
            logger.warning(
                "Volume batch partially failed",
                extra={"batch_size": len(batch), "rows_returned": len(rows), "task_errors": task_errors},
            )
        elif not rows:
            logger.debug("Volume batch returned no rows", extra={"batch_size": len(batch)})
        await self._remember(batch, rows, complete=error is None)
        return BatchOutcome(keywords=batch, rows=rows, error=error)

    async def cached_volumes(self, keywords: Sequence[str]) -> dict[str, ResolvedKeyword]:
        """Return fresh cached volumes keyed by normalized keyword."""
        if self.cache is None:
            return {}
        entries = await self.cache.get_many(
            keywords,
            location_code=self.location_code,
            language_code=self.language_code,
        )
        return {
            keyword: ResolvedKeyword(
                keyword=keyword,
                volume=max(entry["volume"], 0),
                cpc=entry.get("cpc"),
                competition_index=entry.get("competition_index"),
            )
            for keyword, entry in entries.items()
        }

    async def _remember(self, batch: Sequence[str], rows: Sequence[ResolvedKeyword], *, complete: bool) -> None:
        if self.cache is None:
            return
        entries = [(row.keyword, row.volume, row.cpc, row.competition_index) for row in rows]
        if complete:
            # Keywords a complete response leaves out have no measurable volume
            returned = {row.keyword for row in rows}
            missing = dict.fromkeys(normalize_keyword(k) for k in batch)
            entries.extend((keyword, 0, None, None) for keyword in missing if keyword and keyword not in returned)
        if entries:
            await self.cache.set_many(
                entries,
                location_code=self.location_code,
                language_code=self.language_code,
            )

    async def resolve(
        self,
        keywords: Sequence[str],
        *,
        limiter: IntervalRateLimiter | None = None,
    ) -> ResolveResult:
        """Resolve every batch once, stopping early on an authentication failure.

        Keywords with a cached volume are answered from the cache and never
        sent to the provider.
        """
        result = ResolveResult()
        cached = await self.cached_volumes(keywords)
        result.rows.extend(cached.values())
        result.cache_hits = len(cached)
        missing = [k for k in keywords if normalize_keyword(k) not in cached]
        for batch in self.chunk(missing):
            if limiter is not None:
                await limiter.acquire()
            outcome = await self.resolve_batch(batch)
            result.rows.extend(outcome.rows)
            if outcome.error is not None:
                result.errors.append(outcome.error)
                resolved = {row.keyword for row in outcome.rows}
                result.failed_keywords.extend(k for k in batch if normalize_keyword(k) not in resolved)
                if outcome.error.fatal:
                    break
        return result

    async def discover(self, seeds: Sequence[str]) -> DiscoveryOutcome:
        """Ask the provider for related keyword ideas; volumes are resolved later."""
        if not seeds:
            return DiscoveryOutcome()
        if not self.credentials.present:
            return DiscoveryOutcome(error=ResolverError("auth", "DataForSEO credentials not configured"))

        try:
            async with self._client_factory(
                login=self.credentials.login,
                password=self.credentials.password,
            ) as client:
                provider_rows, task_errors = await client.get_keywords_for_keywords(
                    list(seeds),
                    location_code=self.location_code,
                    language_code=self.language_code,
                )
        except (APIKeyMissingError, AuthenticationFailedError) as e:
            return DiscoveryOutcome(error=ResolverError("auth", e.message))
        except ExternalAPIError as e:
            return DiscoveryOutcome(error=ResolverError("transient", e.message))

        keywords = [normalize_keyword(row.keyword) for row in provider_rows]
        error = ResolverError("transient", "; ".join(task_errors)) if task_errors else None
        return DiscoveryOutcome(keywords=[k for k in keywords if k], error=error)

    @staticmethod
    def _to_resolved(provider_rows: list[VolumeRow]) -> list[ResolvedKeyword]:
        resolved: dict[str, ResolvedKeyword] = {}
        for row in provider_rows:
            keyword = normalize_keyword(row.keyword)
            if not keyword:
                continue
            resolved[keyword] = ResolvedKeyword(
                keyword=keyword,
                volume=max(row.search_volume or 0, 0),
                cpc=row.cpc,
                competition_index=row.competition_index,
            )
        return list(resolved.values())
