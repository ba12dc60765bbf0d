"""Unit tests for the keyword volume cache and its use by the resolver."""

from __future__ import annotations

import json

import pytest

from demand_sweep.services.corpus_store import InMemoryCorpusStore
from demand_sweep.services.growth import GrowthConfig, GrowthOrchestrator
from demand_sweep.services.keyword_guard import KeywordGuard
from demand_sweep.services.seed_generator import SeedGenerator
from demand_sweep.services.volume_cache import KeywordVolumeCache


@pytest.mark.asyncio
async def test_entries_are_keyed_by_market_and_normalized_keyword(volume_cache, fake_redis) -> None:
    stored = await volume_cache.set_many(
        [("  Razor  Price ", 1200, 8.5, 30.0)],
        location_code=2356,
        language_code="en",
    )

    hits = await volume_cache.get_many(["razor price", "trimmer"], location_code=2356, language_code="en")
    other_market = await volume_cache.get_many(["razor price"], location_code=2840, language_code="en")

    assert stored == 1
    assert list(hits) == ["razor price"]
    assert hits["razor price"]["volume"] == 1200
    assert hits["razor price"]["cpc"] == 8.5
    assert other_market == {}
    assert fake_redis.expiry["volume:2356:en:razor price"] == 3600


@pytest.mark.asyncio
async def test_invalid_payloads_are_treated_as_misses(volume_cache, fake_redis) -> None:
    fake_redis.values["volume:2356:en:razor"] = "{broken"
    fake_redis.values["volume:2356:en:trimmer"] = json.dumps({"volume": "many"})

    assert await volume_cache.get_many(["razor", "trimmer"], location_code=2356, language_code="en") == {}


@pytest.mark.asyncio
async def test_redis_outage_degrades_to_cache_misses(volume_cache, fake_redis) -> None:
    fake_redis.fail = True

    hits = await volume_cache.get_many(["razor"], location_code=2356, language_code="en")
    stored = await volume_cache.set_many([("razor", 10, None, None)], location_code=2356, language_code="en")

    assert hits == {}
    assert stored == 0


@pytest.mark.asyncio
async def test_resolver_skips_provider_for_cached_keywords(make_resolver, provider, volume_cache) -> None:
    await volume_cache.set_many([("razor", 900, 4.0, 20.0)], location_code=2356, language_code="en")
    provider.volumes = {"trimmer": 300}
    resolver = make_resolver(cache=volume_cache)

    result = await resolver.resolve(["razor", "trimmer"])

    assert provider.volume_calls == [["trimmer"]]
    assert result.cache_hits == 1
    assert {row.keyword: row.volume for row in result.rows} == {"razor": 900, "trimmer": 300}


@pytest.mark.asyncio
async def test_complete_batch_caches_missing_keywords_as_zero(make_resolver, provider, volume_cache) -> None:
    provider.volumes = {"razor": 1000}
    resolver = make_resolver(cache=volume_cache)

    await resolver.resolve_batch(["razor", "gillette razor"])

    cached = await resolver.cached_volumes(["razor", "gillette razor"])
    assert cached["razor"].volume == 1000
    assert cached["razor"].cpc == 12.5
    assert cached["gillette razor"].volume == 0


@pytest.mark.asyncio
async def test_partial_batch_caches_only_returned_rows(make_resolver, provider, volume_cache) -> None:
    provider.volumes = {"razor": 1000}
    provider.task_errors = ["50000: internal error"]
    resolver = make_resolver(cache=volume_cache)

    outcome = await resolver.resolve_batch(["razor", "trimmer"])

    assert outcome.partial
    assert set(await resolver.cached_volumes(["razor", "trimmer"])) == {"razor"}


@pytest.mark.asyncio
async def test_failed_batch_writes_nothing(make_resolver, provider, volume_cache, fake_redis) -> None:
    provider.task_errors = ["50000: internal error"]
    resolver = make_resolver(cache=volume_cache)

    await resolver.resolve_batch(["razor"])

    assert fake_redis.values == {}


@pytest.mark.asyncio
async def test_second_snapshot_reuses_cached_volumes(catalog, shaving, make_resolver, provider, volume_cache) -> None:
    category = shaving.model_copy(update={"curated_seeds": ["razor", "trimmer", "gillette razor"]})
    provider.volumes = {"razor": 1000, "trimmer": 500, "gillette razor": 0}

    def orchestrator(store: InMemoryCorpusStore) -> GrowthOrchestrator:
        return GrowthOrchestrator(
            store,
            make_resolver(cache=volume_cache),
            SeedGenerator(catalog.expansion, max_candidates=3),
            KeywordGuard(catalog.guard, catalog.categories),
            catalog.certification,
            config=GrowthConfig(
                max_attempts=1,
                min_candidates_per_pass=3,
                max_candidates_per_pass=3,
                discovery_fallback_enabled=False,
            ),
        )

    first = await orchestrator(InMemoryCorpusStore()).grow(category)
    second_store = InMemoryCorpusStore()
    second = await orchestrator(second_store).grow(category)

    rows = await second_store.list_rows(second.snapshot_id)
    assert len(provider.volume_calls) == 1
    assert first.passes[0].cache_hits == 0
    assert second.passes[0].cache_hits == 3
    assert second.passes[0].batches == 0
    assert {row.keyword_text: (row.status, row.volume) for row in rows} == {
        "razor": ("VALID", 1000),
        "trimmer": ("VALID", 500),
        "gillette razor": ("ZERO", 0),
    }


def test_default_ttl_is_thirty_days(fake_redis) -> None:
    assert KeywordVolumeCache(fake_redis).ttl_seconds == 30 * 24 * 3600  # type: ignore[arg-type]
