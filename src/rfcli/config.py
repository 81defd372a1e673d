"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (RFCLI__CACHE__TTL_HOURS=48)
  2. rfcli.yaml             (searched in cwd, then platform config dir)
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

_DEFAULT_CACHE_DIR = platformdirs.user_cache_dir("rfcli")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_CACHE_DIR) / "rfcli.db")
_DEFAULT_BLOB_DIR = str(Path(_DEFAULT_CACHE_DIR) / "blobs")


def _find_config_file() -> str | None:
    """Return the path of the first rfcli.yaml found, or None."""
    candidates = [
        Path("rfcli.yaml"),
        Path(platformdirs.user_config_dir("rfcli")) / "rfcli.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class CatalogSettings(BaseModel):
    index_url: str = "https://www.rfc-editor.org/rfc/rfc-index.txt"
    refresh_interval_hours: int = 24 * 7
    excerpt_chars: int = Field(default=240, ge=0)


class CacheSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    blob_dir: str = _DEFAULT_BLOB_DIR
    # RFCs are immutable once published; the TTL mostly governs TLDR refresh.
    ttl_hours: int = 24 * 30
    max_bytes: int = Field(default=256 * 1024 * 1024, ge=1)
    cleanup_interval_hours: int = 24
    cleanup_grace_days: int = 7


class FetcherSettings(BaseModel):
    base_url: str = "https://www.rfc-editor.org/rfc"
    fetch_timeout_seconds: float = 30.0
    derive_timeout_seconds: float = 60.0
    max_retries: int = Field(default=2, ge=0)
    backoff_seconds: float = 0.5
    user_agent: str = "rfcli/1.0"


class SummarizerSettings(BaseModel):
    backend: Literal["auto", "groq", "extractive"] = "auto"
    api_url: str = "https://api.groq.com/openai/v1/chat/completions"
    api_key: str | None = None
    model: str = "llama-3.1-8b-instant"
    context_lines: int = 300
    abstract_sentences: int = 3


class SearchSettings(BaseModel):
    default_limit: int = Field(default=20, ge=1)
    suggestion_cutoff: int = 70
    max_suggestions: int = 3


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: RFCLI__FETCHER__MAX_RETRIES=5
        env_prefix="RFCLI__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    catalog: CatalogSettings = CatalogSettings()
    cache: CacheSettings = CacheSettings()
    fetcher: FetcherSettings = FetcherSettings()
    summarizer: SummarizerSettings = SummarizerSettings()
    search: SearchSettings = SearchSettings()
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
