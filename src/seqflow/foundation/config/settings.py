"""Environment-based configuration using pydantic-settings.

Provides type-safe, validated configuration from environment variables
with sensible defaults. Supports .env files and nested configuration.

Example:
    >>> from seqflow.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.streams.high_water_mark
    1
    >>> settings.logging.level
    'INFO'
    
    # Or with environment variables:
    # SEQFLOW_STREAM_HIGH_WATER_MARK=4
    # SEQFLOW_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, NonNegativeFloat, NonNegativeInt, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StreamSettings(BaseSettings):
    """Defaults for the stream primitive and stream sources."""
    
    model_config = SettingsConfigDict(
        env_prefix="SEQFLOW_STREAM_",
        extra="ignore",
    )
    
    high_water_mark: NonNegativeInt = Field(
        default=1,
        description="Chunks a readable stream buffers ahead of its reader",
    )
    iota_tick: NonNegativeFloat = Field(
        default=0.0,
        description="Seconds the iota stream sleeps before producing each value",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="SEQFLOW_LOG_",
        extra="ignore",
    )
    
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"
    colors: bool | None = None
    
    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class SeqflowSettings(BaseSettings):
    """Root settings for seqflow.
    
    Loads configuration from environment variables with SEQFLOW_ prefix.
    Supports nested configuration and .env files.
    
    Example environment variables:
        SEQFLOW_DEBUG=true
        SEQFLOW_STREAM_HIGH_WATER_MARK=8
        SEQFLOW_LOG_LEVEL=DEBUG
        SEQFLOW_LOG_FORMAT=json
    """
    
    model_config = SettingsConfigDict(
        env_prefix="SEQFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )
    
    debug: bool = Field(default=False, description="Enable debug mode")
    
    # Nested settings (loaded with SEQFLOW_STREAM_, SEQFLOW_LOG_)
    streams: StreamSettings = Field(default_factory=StreamSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    
    @computed_field
    @property
    def effective_log_level(self) -> str:
        """Log level after applying debug mode."""
        return "DEBUG" if self.debug else self.logging.level


@lru_cache(maxsize=1)
def get_settings() -> SeqflowSettings:
    """Get the global settings instance (cached).
    
    Example:
        >>> get_settings().debug
        False
    """
    return SeqflowSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).
    
    After calling this, the next get_settings() call will
    reload configuration from environment.
    """
    get_settings.cache_clear()
