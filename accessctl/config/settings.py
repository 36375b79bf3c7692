"""
Process-level settings for the access-control service.

This module reads environment overrides with secure defaults. YAML files
hold the engine configuration; these settings only select the environment,
where configuration and data live, and how to log.
"""

from typing import Optional
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Environment-driven settings."""

    model_config = SettingsConfigDict(env_prefix="ACCESSCTL_", extra="ignore")

    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ACCESSCTL_ENVIRONMENT", "ENVIRONMENT"),
        description="Configuration environment name"
    )

    config_dir: Optional[str] = Field(
        default=None,
        description="Directory containing engine.yaml and environment overrides"
    )

    storage_backend: Optional[str] = Field(
        default=None,
        description="Override for storage.backend (memory, file)"
    )

    data_dir: Optional[str] = Field(
        default=None,
        description="Override for storage.data_dir"
    )

    log_level: Optional[str] = Field(
        default=None,
        description="Override for server.log_level"
    )

    log_format: Optional[str] = Field(
        default=None,
        description="Override for server.log_format (json, text)"
    )

    sweep_enabled: bool = Field(
        default=True,
        description="Run the background expiry sweep"
    )


_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = EngineSettings()
    return _settings


def reload_settings() -> EngineSettings:
    """Reload settings from the environment."""
    global _settings
    _settings = EngineSettings()
    return _settings
