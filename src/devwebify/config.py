"""Configuration management with pydantic-settings."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SCRIPT_LOG_LEVELS = ("error", "warning", "info", "debug", "trace")


class DevwebifySettings(BaseSettings):
    """devwebify application settings loaded from environment variables.

    All settings use the DEVWEBIFY_ prefix for environment variables.
    """

    # Logging configuration
    log_level: str = Field(default="WARNING", description="Logging level")
    log_format: str = Field(
        default="console",
        description="Log output format: console or json",
    )

    # Output configuration
    output_dir: Path = Field(
        default=Path("devweb-script"),
        description="Default directory for generated DevWeb scripts",
    )

    # Generation defaults
    think_time: float = Field(
        default=1.0,
        description="Think time in seconds inserted between requests",
    )
    script_log_level: str = Field(
        default="info",
        description="load.LogLevel used for per-request status logging in generated code",
    )
    payload_min_length: int = Field(
        default=1000,
        description="Minimum length of a base64 string before it is moved to a side file",
    )
    runtime_prefix: str = Field(
        default="_",
        description="Name prefix marking empty declared variables as runtime-only",
    )

    model_config = SettingsConfigDict(
        env_prefix="DEVWEBIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("script_log_level")
    @classmethod
    def _check_script_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in SCRIPT_LOG_LEVELS:
            raise ValueError(f"script_log_level must be one of {', '.join(SCRIPT_LOG_LEVELS)}")
        return value

    @field_validator("payload_min_length")
    @classmethod
    def _check_payload_min_length(cls, value: int) -> int:
        if value < 16:
            raise ValueError("payload_min_length must be at least 16")
        return value


# Global settings instance
_settings: DevwebifySettings | None = None


def get_settings() -> DevwebifySettings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = DevwebifySettings()
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None
