"""Configuration settings for ohx_addon_cli.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_config_dir() -> Path:
    """Return the default configuration directory."""
    return Path.home() / ".config"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the OHX_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="OHX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Local state
    config_dir: Path = Field(
        default_factory=_default_config_dir,
        description="Directory holding the session and registry cache files",
    )
    session_file_name: str = Field(
        default=".ohx_login",
        description="File name of the persisted user session",
    )
    registry_cache_file_name: str = Field(
        default=".ohx_registry_cache",
        description="File name of the registry snapshot cache",
    )

    # OAuth
    oauth_base_url: str = Field(
        default="https://oauth.openhabx.com",
        description="Base URL of the OAuth service (token, authorize, userinfo)",
    )
    oauth_client_id: str = Field(default="addoncli", description="OAuth client id")

    # Remote endpoints
    vault_url: str = Field(
        default="https://vault.openhabx.com/get/docker-access.json",
        description="Registry credential vault endpoint",
    )
    registry_data_url: str = Field(
        default=(
            "https://raw.githubusercontent.com/openhab-nodes/addons-registry"
            "/master/extensions.json"
        ),
        description="Addon catalog snapshot",
    )
    registry_stats_url: str = Field(
        default=(
            "https://raw.githubusercontent.com/openhab-nodes/addons-registry"
            "/master/extensions_stats.json"
        ),
        description="Addon catalog statistics snapshot",
    )
    publish_url: str = Field(
        default="https://vault.openhabx.com/addon",
        description="Catalog endpoint receiving published addon records",
    )

    # Images
    image_registry: str = Field(default="docker.io", description="Image registry host")
    image_namespace: str = Field(default="ohx", description="Image namespace")
    builder_executable: str = Field(
        default="podman",
        description="Container tool used for build, inspect and push",
    )

    # Timing (in seconds)
    registry_cache_ttl: int = Field(
        default=500,
        ge=0,
        description="Freshness window of the registry cache",
    )
    device_poll_interval: int = Field(
        default=2,
        ge=1,
        description="Device flow poll interval if the server declares none",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for HTTP requests",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=1,
        ge=1,
        le=8,
        description="Maximum concurrent image builds",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Logging level",
    )

    @property
    def session_file(self) -> Path:
        """Path of the persisted user session."""
        return self.config_dir / self.session_file_name

    @property
    def registry_cache_file(self) -> Path:
        """Path of the registry snapshot cache."""
        return self.config_dir / self.registry_cache_file_name

    @property
    def token_url(self) -> str:
        return f"{self.oauth_base_url}/token"

    @property
    def authorize_url(self) -> str:
        return f"{self.oauth_base_url}/authorize"

    @property
    def userinfo_url(self) -> str:
        return f"{self.oauth_base_url}/userinfo"


def get_settings() -> Settings:
    """Get the application settings singleton.

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
