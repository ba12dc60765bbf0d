"""Unit tests for settings normalization."""

from __future__ import annotations

from demand_sweep.config import Settings


def test_sync_postgres_urls_are_normalized_to_asyncpg(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@db:5432/sweep")

    settings = Settings(_env_file=None)

    assert settings.database_url == "postgresql+asyncpg://user:pw@db:5432/sweep"


def test_blank_dataforseo_credentials_count_as_missing(monkeypatch) -> None:
    monkeypatch.setenv("DATAFORSEO_LOGIN", "  ")
    monkeypatch.setenv("DATAFORSEO_PASSWORD", "secret")

    settings = Settings(_env_file=None)

    assert settings.dataforseo_login is None
    assert settings.dataforseo_configured is False
