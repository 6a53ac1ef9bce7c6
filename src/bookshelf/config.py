"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (BOOKSHELF__SERVER__PORT=9090)
  2. bookshelf.yaml         (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional: all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


def _find_config_file() -> str | None:
    """Return the path of the first bookshelf.yaml found, or None."""
    candidates = [
        Path("bookshelf.yaml"),
        Path(platformdirs.user_config_dir("bookshelf")) / "bookshelf.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080


class UpstreamSettings(BaseModel):
    catalog_url: str = "https://gutendex.com"
    # Metadata is small; full texts can run to several megabytes.
    metadata_timeout_seconds: float = Field(default=8.0, gt=0)
    text_timeout_seconds: float = Field(default=25.0, gt=0)
    retry_attempts: int = Field(default=2, ge=1)
    retry_delay_seconds: float = Field(default=1.2, ge=0)
    max_redirects: int = Field(default=5, ge=0)
    allowed_domains: list[str] = ["gutendex.com", "gutenberg.org"]
    user_agent: str = "bookshelf/1.0"


class CacheSettings(BaseModel):
    listing_ttl_minutes: float = Field(default=10, gt=0)
    sweep_interval_seconds: float = Field(default=60, gt=0)
    content_max_entries: int = Field(default=20, ge=1)
    content_ttl_hours: float = Field(default=24, gt=0)


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: BOOKSHELF__CACHE__CONTENT_MAX_ENTRIES=50
        env_prefix="BOOKSHELF__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    upstream: UpstreamSettings = UpstreamSettings()
    cache: CacheSettings = CacheSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
