"""
Configuration for the LiveKit CLI.

Two settings sources:
- Settings: CLI knobs read from LK_* environment variables
- ProjectEnv: project credentials read from LIVEKIT_* environment variables
"""

import os
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from lkcli import __version__


def _default_config_dir() -> str:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return str(base / "livekit")


class Settings(BaseSettings):
    """CLI settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="LK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Cloud endpoints
    cloud_api_url: str = "https://cloud-api.livekit.io"
    dashboard_url: str = "https://cloud.livekit.io"
    agents_url: str = ""  # Empty = derive from project url

    # Persisted state
    config_dir: str = _default_config_dir()
    config_file_name: str = "cli-config.toml"

    # Device authorization
    auth_timeout: float = 900.0  # 15 minutes
    auth_poll_interval: float = 4.0

    # HTTP
    http_timeout: float = 30.0
    sip_participant_timeout: float = 30.0
    upload_attempts: int = 3

    cli_version: str = __version__

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir) / self.config_file_name


class ProjectEnv(BaseSettings):
    """Project credentials supplied through the environment."""

    model_config = SettingsConfigDict(env_prefix="LIVEKIT_", extra="ignore")

    url: str = ""
    api_key: str = ""
    api_secret: str = ""


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_project_env() -> ProjectEnv:
    """Read LIVEKIT_* credentials; not cached so tests can patch the environment."""
    return ProjectEnv()
