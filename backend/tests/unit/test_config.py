"""
Unit Tests for Configuration

Covers the service settings (session store URL, provider credentials and
per-route request limits), the INGESTION_ prefixed pipeline settings and
the YAML pool configuration.
"""

import os
from unittest.mock import patch

import pytest

from app.config import (
    IngestionSettings,
    Settings,
    get_ingestion_settings,
    get_settings,
    ingestion_settings,
    load_yaml_config,
    settings,
)
from app.enums import RateLimitType
from app.enums.ingestion import SourceCategory


class TestSettings:
    """Service settings."""

    def test_default_values(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            test_settings = Settings(_env_file=None)

        assert test_settings.APP_NAME == "Domain Ingestion"
        assert test_settings.DEBUG is False
        assert test_settings.POSTGRES_DB == "ingestion"
        assert test_settings.GITHUB_ACCESS_TOKEN == ""
        assert test_settings.YOUTUBE_API_KEY == ""

    def test_session_store_url(self) -> None:
        test_settings = Settings(
            POSTGRES_HOST="db",
            POSTGRES_PORT=5433,
            POSTGRES_USER="ingest",
            POSTGRES_PASSWORD="secret",
            POSTGRES_DB="sessions",
        )

        assert test_settings.POSTGRES_URL == "postgresql+asyncpg://ingest:secret@db:5433/sessions"

    def test_provider_credentials_from_env(self) -> None:
        env = {"GITHUB_ACCESS_TOKEN": "ghp_token", "YOUTUBE_API_KEY": "yt-key", "DEBUG": "true"}
        with patch.dict(os.environ, env, clear=True):
            test_settings = Settings(_env_file=None)

        assert test_settings.GITHUB_ACCESS_TOKEN == "ghp_token"
        assert test_settings.YOUTUBE_API_KEY == "yt-key"
        assert test_settings.DEBUG is True

    def test_cached_instance(self) -> None:
        assert get_settings() is get_settings()
        assert settings is get_settings()


class TestRouteRateLimits:
    """Per-route request limits."""

    @pytest.mark.parametrize(
        "kind,limit",
        [
            (RateLimitType.START, "10/minute"),
            (RateLimitType.STAGE, "30/minute"),
            (RateLimitType.GRAPH, "120/minute"),
        ],
    )
    def test_defaults(self, kind, limit) -> None:
        with patch.dict(os.environ, {}, clear=True):
            test_settings = Settings(_env_file=None)

        assert test_settings.ENABLE_RATE_LIMITING is True
        assert test_settings.get_rate_limit(kind) == limit

    def test_env_override(self) -> None:
        env = {"RATE_LIMIT_STAGE": "2/second", "ENABLE_RATE_LIMITING": "false"}
        with patch.dict(os.environ, env, clear=True):
            test_settings = Settings(_env_file=None)

        assert test_settings.get_rate_limit(RateLimitType.STAGE) == "2/second"
        assert test_settings.get_rate_limit(RateLimitType.START) == "10/minute"
        assert test_settings.ENABLE_RATE_LIMITING is False

    def test_every_category_has_a_limit(self) -> None:
        test_settings = Settings(_env_file=None)

        assert all(test_settings.get_rate_limit(kind) for kind in RateLimitType)


class TestIngestionSettings:
    """Pipeline settings with the INGESTION_ prefix."""

    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            config = IngestionSettings(_env_file=None)

        assert config.MODEL_ANALYZER == "openai/gpt-4o-mini"
        assert config.ADAPTER_TIMEOUT_SECONDS == 120
        assert config.MAX_CONCURRENT_SESSIONS == 8
        assert config.TTL_COMPLETED_SECONDS == 7200
        assert config.TTL_FAILED_SECONDS == 3600
        assert config.LLM_MAX_RETRIES == 3
        assert config.LLM_TOKEN_BUDGET == 3000

    def test_prefixed_env_override(self) -> None:
        env = {
            "INGESTION_THRESHOLD_PAPERS": "0.5",
            "INGESTION_LIMIT_VIDEOS": "3",
            "INGESTION_MODEL_EXTRACTOR": "anthropic/claude-3-5-haiku-latest",
            # Unprefixed names are ignored
            "THRESHOLD_REPOS": "0.1",
        }
        with patch.dict(os.environ, env, clear=True):
            config = IngestionSettings(_env_file=None)

        assert config.THRESHOLD_PAPERS == 0.5
        assert config.LIMIT_VIDEOS == 3
        assert config.MODEL_EXTRACTOR == "anthropic/claude-3-5-haiku-latest"
        assert config.THRESHOLD_REPOS == 0.55

    @pytest.mark.parametrize(
        "category,threshold,limit",
        [
            (SourceCategory.PAPERS, 0.70, 15),
            (SourceCategory.REPOS, 0.55, 20),
            (SourceCategory.DOCS, 0.65, 25),
            (SourceCategory.VIDEOS, 0.50, 30),
            (SourceCategory.EXPERT, 0.60, 20),
            (SourceCategory.REPORTS, 0.65, 10),
        ],
    )
    def test_category_lookup(self, category, threshold, limit) -> None:
        config = IngestionSettings(_env_file=None)

        assert config.threshold_for(category) == threshold
        assert config.limit_for(category.value) == limit

    def test_category_budget(self) -> None:
        budget = IngestionSettings(_env_file=None).category_budget()

        assert set(budget) == {c.value for c in SourceCategory}
        assert budget["papers"] == {"threshold": 0.70, "limit": 15}

    def test_cached_instance(self) -> None:
        assert get_ingestion_settings() is get_ingestion_settings()
        assert ingestion_settings is get_ingestion_settings()


class TestYamlConfig:
    """Pool settings from config/default.yaml."""

    def test_database_pool(self) -> None:
        load_yaml_config.cache_clear()
        config = load_yaml_config()

        assert config["database"]["pool_size"] == 5
        assert config["database"]["max_overflow"] == 10
        assert config["database"]["pool_pre_ping"] is True

    def test_missing_file(self, tmp_path) -> None:
        load_yaml_config.cache_clear()
        try:
            with patch("app.config.settings.Path") as path_cls:
                path_cls.return_value.parent.parent.parent.parent.__truediv__.return_value.__truediv__.return_value = (
                    tmp_path / "absent.yaml"
                )
                assert load_yaml_config() == {}
        finally:
            load_yaml_config.cache_clear()
