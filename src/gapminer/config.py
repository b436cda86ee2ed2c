"""GapMiner key service settings.

Created: 2026-10-13

Settings come from ``GAPMINER_*`` environment variables or a local ``.env``
file. ``get_settings()`` caches the loaded instance; call
``get_settings.cache_clear()`` after changing the environment.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gapminer.keys.models import Permission, parse_permissions


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GAPMINER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    config_dir: Path = Field(default_factory=lambda: Path.home() / ".gapminer")

    # API keys
    api_key_default_rate_limit: int = Field(60, gt=0)
    api_key_default_scopes: list[Permission] = Field(
        default_factory=lambda: [Permission.PAPERS_READ, Permission.GAPS_READ]
    )
    usage_window_days: int = Field(7, gt=0)
    rate_limit_cleanup_interval: float = Field(300.0, gt=0)  # seconds

    # Ambient
    audit_enabled: bool = True
    log_level: str = "INFO"

    @field_validator("api_key_default_scopes", mode="before")
    @classmethod
    def _known_scopes(cls, v):
        return parse_permissions(v)

    @classmethod
    def load(cls) -> Settings:
        return cls()


@lru_cache
def get_settings() -> Settings:
    return Settings.load()


def get_config_dir() -> Path:
    """Return the config directory, creating it if needed."""
    path = get_settings().config_dir
    path.mkdir(parents=True, exist_ok=True)
    return path
