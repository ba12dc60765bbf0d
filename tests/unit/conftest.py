"""Shared fixtures for demand sweep unit tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from demand_sweep.config import DEFAULT_CATALOG_PATH
from demand_sweep.integrations.dataforseo import VolumeRow
from demand_sweep.schemas.category import CategoryConfig, SweepCatalog, load_catalog
from demand_sweep.services.volume_cache import KeywordVolumeCache
from demand_sweep.services.volume_resolver import ProviderCredentials, VolumeResolver


class FakeVolumeProvider:
    """Scripted stand-in for the DataForSEO client.

    ``failures`` are raised one per volume call, in order, before any
    successful response. Keywords missing from ``volumes`` are omitted from
    the response unless ``default_volume`` is set.
    """

    def __init__(self) -> None:
        self.volumes: dict[str, int] = {}
        self.default_volume: int | None = None
        self.failures: list[Exception] = []
        self.task_errors: list[str] = []
        self.discovered: list[str] = []
        self.volume_calls: list[list[str]] = []
        self.discovery_calls: list[list[str]] = []
        self.client_kwargs: list[dict[str, Any]] = []

    def client(self, **kwargs: Any) -> _FakeProviderClient:
        self.client_kwargs.append(kwargs)
        return _FakeProviderClient(self)


class _FakeProviderClient:
    def __init__(self, provider: FakeVolumeProvider) -> None:
        self.provider = provider

    async def __aenter__(self) -> _FakeProviderClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        return None

    async def get_search_volume(
        self,
        keywords: list[str],
        location_code: int | None = None,
        language_code: str | None = None,
    ) -> tuple[list[VolumeRow], list[str]]:
        self.provider.volume_calls.append(list(keywords))
        if self.provider.failures:
            raise self.provider.failures.pop(0)
        rows: list[VolumeRow] = []
        for keyword in keywords:
            volume = self.provider.volumes.get(keyword, self.provider.default_volume)
            if volume is None:
                continue
            rows.append(VolumeRow(keyword=keyword, search_volume=volume, cpc=12.5, competition_index=40.0))
        return rows, list(self.provider.task_errors)

    async def get_keywords_for_keywords(
        self,
        seeds: list[str],
        location_code: int | None = None,
        language_code: str | None = None,
    ) -> tuple[list[VolumeRow], list[str]]:
        self.provider.discovery_calls.append(list(seeds))
        rows = [
            VolumeRow(keyword=keyword, search_volume=None, cpc=None, competition_index=None)
            for keyword in self.provider.discovered
        ]
        return rows, []


@pytest.fixture(scope="session")
def catalog() -> SweepCatalog:
    return load_catalog(DEFAULT_CATALOG_PATH)


@pytest.fixture
def shaving(catalog: SweepCatalog) -> CategoryConfig:
    return catalog.get_category("shaving")


@pytest.fixture
def provider() -> FakeVolumeProvider:
    return FakeVolumeProvider()


@pytest.fixture
def make_resolver(provider: FakeVolumeProvider) -> Callable[..., VolumeResolver]:
    def _make(
        *,
        credentials: ProviderCredentials | None = None,
        batch_size: int = 1000,
        cache: KeywordVolumeCache | None = None,
    ) -> VolumeResolver:
        return VolumeResolver(
            credentials or ProviderCredentials(login="login", password="secret"),
            batch_size=batch_size,
            location_code=2356,
            language_code="en",
            client_factory=provider.client,
            cache=cache,
        )

    return _make


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}
        self.fail = False

    async def get(self, key: str) -> str | None:
        if self.fail:
            raise ConnectionError("redis down")
        return self.values.get(key)

    async def mget(self, keys: list[str]) -> list[str | None]:
        if self.fail:
            raise ConnectionError("redis down")
        return [self.values.get(key) for key in keys]

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.values[key] = value
        self.expiry[key] = ex


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def volume_cache(fake_redis: FakeRedis) -> KeywordVolumeCache:
    return KeywordVolumeCache(fake_redis, ttl_seconds=3600)  # type: ignore[arg-type]
