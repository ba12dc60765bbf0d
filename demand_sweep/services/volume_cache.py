"""Redis cache of resolved keyword volumes shared across snapshots and categories."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from redis.asyncio import Redis

from demand_sweep.config import settings
from demand_sweep.core.redis import get_redis_client
from demand_sweep.services.keyword_classification import normalize_keyword

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "volume"


class KeywordVolumeCache:
    """Store provider volumes per market and normalized keyword with a TTL.

    Entries are plain dicts with ``volume``, ``cpc``, ``competition_index`` and
    ``fetched_at``. Redis failures degrade to cache misses.
    """

    def __init__(self, redis_client: Redis | None = None, *, ttl_seconds: int | None = None) -> None:
        self.redis = redis_client or get_redis_client()
        self.ttl_seconds = ttl_seconds or settings.volume_cache_ttl_seconds

    async def get_many(
        self,
        keywords: Sequence[str],
        *,
        location_code: int,
        language_code: str,
    ) -> dict[str, dict[str, Any]]:
        """Return cached entries keyed by normalized keyword; misses are omitted."""
        normalized = list(dict.fromkeys(k for k in (normalize_keyword(k) for k in keywords) if k))
        if not normalized:
            return {}

        keys = [self._key(location_code, language_code, keyword) for keyword in normalized]
        try:
            raw_values = await self.redis.mget(keys)
        except Exception:
            logger.warning(
                "Volume cache read failed",
                extra={"keywords": len(keys)},
                exc_info=True,
            )
            return {}

        entries: dict[str, dict[str, Any]] = {}
        for keyword, raw in zip(normalized, raw_values):
            if raw is None:
                continue
            try:
                entry = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Invalid volume cache payload", extra={"keyword": keyword})
                continue
            if isinstance(entry, dict) and isinstance(entry.get("volume"), int):
                entries[keyword] = entry
        return entries

    async def set_many(
        self,
        entries: Iterable[tuple[str, int, float | None, float | None]],
        *,
        location_code: int,
        language_code: str,
    ) -> int:
        """Write ``(keyword, volume, cpc, competition_index)`` entries; returns how many were stored."""
        fetched_at = datetime.now(timezone.utc).isoformat()
        stored = 0
        for keyword, volume, cpc, competition_index in entries:
            normalized = normalize_keyword(keyword)
            if not normalized:
                continue
            payload = {
                "keyword": normalized,
                "location_code": location_code,
                "language_code": language_code,
                "volume": volume,
                "cpc": cpc,
                "competition_index": competition_index,
                "fetched_at": fetched_at,
            }
            try:
                await self.redis.set(
                    self._key(location_code, language_code, normalized),
                    json.dumps(payload),
                    ex=self.ttl_seconds,
                )
            except Exception:
                logger.warning(
                    "Volume cache write failed",
                    extra={"keyword": normalized, "stored": stored},
                    exc_info=True,
                )
                break
            stored += 1
        return stored

    @staticmethod
    def _key(location_code: int, language_code: str, keyword: str) -> str:
        return f"{CACHE_KEY_PREFIX}:{location_code}:{language_code}:{keyword}"
