"""
Application settings using Pydantic.

Provides environment-based configuration loading with VRIKSH_ prefix.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # State
    home_dir: Path = Path.home() / ".vriksh"
    database_url: str | None = None

    # Debug / logging
    debug: bool = False
    log_level: str = "WARNING"
    log_json: bool = True

    # Execution substrate
    backend: Literal["docker", "memory"] = "docker"
    docker_socket: str = "/var/run/docker.sock"
    docker_api_version: str = "v1.43"
    resource_prefix: str = "vriksh"
    image_pull_timeout: float = 900.0

    # HTTP client settings
    http_timeout: float = 30.0

    # Provider health checks
    health_check_timeout: float = 300.0
    health_check_interval: float = 5.0

    # Lifecycle
    ready_timeout: float | None = None
    teardown_order: Literal["declared", "reverse"] = "declared"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "VRIKSH_"

    @property
    def resolved_database_url(self) -> str:
        """Database URL, defaulting to an SQLite file under the home dir."""
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.home_dir / 'state.sqlite'}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
