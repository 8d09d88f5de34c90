"""Configuration package."""

from app.config.ingestion import (
    IngestionSettings,
    get_ingestion_settings,
    ingestion_settings,
)
from app.config.settings import (
    Settings,
    get_settings,
    load_yaml_config,
    settings,
    yaml_config,
)

__all__ = [
    # Ingestion settings
    "ingestion_settings",
    "IngestionSettings",
    "get_ingestion_settings",
    # Application settings
    "Settings",
    "get_settings",
    "load_yaml_config",
    "settings",
    "yaml_config",
]
