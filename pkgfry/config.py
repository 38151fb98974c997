"""Configuration settings for pkgfry.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default download cache directory."""
    return Path.home() / ".cache" / "pkgfry"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the PKGFRY_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="PKGFRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Engine
    docker_host: str = Field(
        default="unix:///var/run/docker.sock",
        validation_alias=AliasChoices("PKGFRY_DOCKER_HOST", "DOCKER_HOST"),
        description="Container engine endpoint (unix:// or tcp://)",
    )
    api_version: str = Field(
        default="1.41",
        description="Engine API version used as URL prefix",
    )
    engine_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Read timeout for engine requests (None = wait forever)",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Download cache for url sources",
    )
    output_dir: Path = Field(
        default=Path("."),
        description="Directory receiving the built packages",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent directory for staging areas (uses system default if not set)",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    cache_tag_prefix: str = Field(
        default="pkgfry",
        min_length=1,
        description="Repository name used for cached source images",
    )
    download_timeout: int = Field(
        default=3600,
        ge=10,
        description="Timeout for url source downloads (seconds)",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
