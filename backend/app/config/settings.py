"""
Service Settings

Process-level settings for the ingestion service: the database that stores
finished sessions, LLM provider keys, source provider credentials and the
per-route request limits. Pipeline tuning (thresholds, timeouts, model
names) lives in IngestionSettings instead.

Values come from the environment or a .env file. Pool sizing for the
database is read from config/default.yaml.

Usage:
    from app.config import settings

    engine = create_async_engine(settings.POSTGRES_URL)
    limit = settings.get_rate_limit(RateLimitType.STAGE)  # "30/minute"
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.enums.api import RateLimitType


class Settings(BaseSettings):
    """Ingestion service settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Domain Ingestion"
    DEBUG: bool = False

    # Session store
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "ingestion"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "ingestion"

    @property
    def POSTGRES_URL(self) -> str:
        """asyncpg URL for the session store."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # LLM providers (any one is enough; LiteLLM picks the key per model prefix)
    OPENAI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""
    OPENROUTER_API_KEY: str = ""

    # Source provider credentials (optional)
    # Without a GitHub token the repo adapter runs a single query to stay
    # under the anonymous search rate limit. Without a YouTube key the video
    # adapter produces deterministic simulated results.
    GITHUB_ACCESS_TOKEN: str = ""
    YOUTUBE_API_KEY: str = ""

    # Per-client request limits for the ingestion routes
    ENABLE_RATE_LIMITING: bool = True
    RATE_LIMIT_START: str = "10/minute"
    RATE_LIMIT_STAGE: str = "30/minute"
    RATE_LIMIT_GRAPH: str = "120/minute"

    def get_rate_limit(self, rate_limit_type: RateLimitType) -> str:
        """Limit string for a category of ingestion route."""
        return {
            RateLimitType.START: self.RATE_LIMIT_START,
            RateLimitType.STAGE: self.RATE_LIMIT_STAGE,
            RateLimitType.GRAPH: self.RATE_LIMIT_GRAPH,
        }[rate_limit_type]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()


@lru_cache()
def load_yaml_config() -> dict[str, Any]:
    """Load config/default.yaml from the repository root, or {} when absent."""
    config_path = Path(__file__).parent.parent.parent.parent / "config" / "default.yaml"

    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


yaml_config: dict[str, Any] = load_yaml_config()
