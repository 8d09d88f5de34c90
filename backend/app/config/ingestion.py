"""
Domain Ingestion Configuration

Configuration for the five-stage ingestion pipeline: model selection per
LLM operation, per-category relevance thresholds and result limits, crawl
budgets, session TTLs, and LLM retry/token budgets.

All settings can be overridden via environment variables with INGESTION_ prefix.

Usage:
    from app.config.ingestion import ingestion_settings
    from app.enums.ingestion import SourceCategory

    threshold = ingestion_settings.threshold_for(SourceCategory.PAPERS)
    timeout = ingestion_settings.ADAPTER_TIMEOUT_SECONDS

Environment Variables:
    INGESTION_MODEL_ANALYZER - Model for domain analysis
    INGESTION_THRESHOLD_PAPERS - Minimum relevance for papers (default: 0.70)
    INGESTION_LIMIT_VIDEOS - Maximum video results kept (default: 30)
    INGESTION_MAX_CONCURRENT_SESSIONS - Concurrent ingestion bound (default: 8)
    etc.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings

from app.enums.ingestion import SourceCategory


class IngestionSettings(BaseSettings):
    """
    Ingestion pipeline configuration.

    Attributes are grouped by category:
    - LLM model configuration
    - Category thresholds and limits
    - Crawl budgets and timeouts
    - Session lifecycle
    - LLM retry and token budgets
    """

    # =========================================================================
    # LLM MODEL CONFIGURATION
    # =========================================================================
    # Model identifiers use LiteLLM format: provider/model-name

    # Domain analysis (subdomains, prerequisites, complexity)
    MODEL_ANALYZER: str = "openai/gpt-4o-mini"

    # Concept and relationship extraction
    MODEL_EXTRACTOR: str = "openai/gpt-4o-mini"

    # Pathway optimization hints
    MODEL_OPTIMIZER: str = "openai/gpt-4o-mini"

    ANALYSIS_TEMPERATURE: float = 0.2
    ANALYSIS_MAX_TOKENS: int = 1200
    EXTRACTION_TEMPERATURE: float = 0.2
    EXTRACTION_MAX_TOKENS: int = 2500

    # Items summarized into the extraction prompt
    EXTRACTION_MAX_ITEMS: int = 40
    EXTRACTION_ITEM_SUMMARY_CHARS: int = 300

    # =========================================================================
    # CATEGORY THRESHOLDS AND LIMITS
    # =========================================================================
    THRESHOLD_PAPERS: float = 0.70
    THRESHOLD_REPOS: float = 0.55
    THRESHOLD_DOCS: float = 0.65
    THRESHOLD_VIDEOS: float = 0.50
    THRESHOLD_EXPERT: float = 0.60
    THRESHOLD_REPORTS: float = 0.65

    LIMIT_PAPERS: int = 15
    LIMIT_REPOS: int = 20
    LIMIT_DOCS: int = 25
    LIMIT_VIDEOS: int = 30
    LIMIT_EXPERT: int = 20
    LIMIT_REPORTS: int = 10

    # Repos with this many stars are admitted at a lower score
    REPO_STAR_OVERRIDE_MIN_STARS: int = 10000
    REPO_STAR_OVERRIDE_MIN_SCORE: float = 0.45

    # =========================================================================
    # CRAWL BUDGETS
    # =========================================================================
    MAX_PAGES_PER_SITE: int = 8
    PAGE_TIMEOUT_SECONDS: float = 15.0
    BROWSER_NAVIGATION_TIMEOUT_SECONDS: float = 20.0
    ADAPTER_TIMEOUT_SECONDS: float = 120.0
    MAX_CONCURRENT_SESSIONS: int = 8
    BROWSER_POOL_SIZE: int = 2
    BROWSER_ENABLED: bool = True

    # Politeness delay between external calls within an adapter
    POLITE_DELAY_MIN_SECONDS: float = 1.0
    POLITE_DELAY_MAX_SECONDS: float = 3.0

    # Store every surviving item as a crawled document
    STORE_CRAWLED_DOCUMENTS: bool = True

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================
    TTL_COMPLETED_SECONDS: int = 7200
    TTL_FAILED_SECONDS: int = 3600
    EVICTION_INTERVAL_SECONDS: int = 300

    # Progress events: emit on >= this many points, or after this many seconds
    PROGRESS_EMIT_MIN_DELTA: float = 1.0
    PROGRESS_EMIT_INTERVAL_SECONDS: float = 2.0

    SHUTDOWN_GRACE_SECONDS: float = 5.0

    # =========================================================================
    # PERSISTENCE
    # =========================================================================
    PERSISTENCE_MAX_ATTEMPTS: int = 3
    PERSISTENCE_RETRY_BASE_SECONDS: float = 2.0

    # =========================================================================
    # LLM RETRY AND TOKEN BUDGET
    # =========================================================================
    LLM_ENDPOINT: str = ""  # Optional api_base override (e.g., OpenRouter)
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_BASE_MS: int = 1000
    LLM_RETRY_MAX_MS: int = 15000
    LLM_TOKEN_BUDGET: int = 3000
    LLM_ATTEMPTS_PER_PROMPT: int = 2

    class Config:
        env_prefix = "INGESTION_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def threshold_for(self, category: SourceCategory) -> float:
        """Minimum relevance score an item must reach to survive filtering."""
        return getattr(self, f"THRESHOLD_{SourceCategory(category).name}")

    def limit_for(self, category: SourceCategory) -> int:
        """Maximum number of items kept for a category."""
        return getattr(self, f"LIMIT_{SourceCategory(category).name}")

    def category_budget(self) -> dict[str, dict[str, float]]:
        """Thresholds and limits keyed by category value, for stats endpoints."""
        return {
            category.value: {
                "threshold": self.threshold_for(category),
                "limit": self.limit_for(category),
            }
            for category in SourceCategory
        }


@lru_cache()
def get_ingestion_settings() -> IngestionSettings:
    """Get cached ingestion settings instance."""
    return IngestionSettings()


# Global settings instance
ingestion_settings = get_ingestion_settings()
