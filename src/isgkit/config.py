"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments (the orchestrator's own config loader)
  2. Environment variables  (ISGKIT__CACHE__DIR=.cache/isg)
  3. isgkit.yaml            (searched in cwd, then platform config dir)
  4. Hardcoded defaults

The ISG block is validated by ``validate_isg_config`` before the model is
built, so a bad TTL, cap or aging rule fails with an ``ISGConfigurationError``
naming the offending field instead of being coerced.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from isgkit.validation import validate_isg_config

DEFAULT_TTL_SECONDS = 6 * 60 * 60
MANIFEST_FILENAME = "manifest.json"
LOCK_FILENAME = ".build-lock"


def _find_config_file() -> str | None:
    """Return the path of the first isgkit.yaml found, or None."""
    candidates = [
        Path("isgkit.yaml"),
        Path(platformdirs.user_config_dir("isgkit")) / "isgkit.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class SiteSettings(BaseModel):
    src_dir: str = "site"
    out_dir: str = "dist"
    template_extension: str = ".eta"


class CacheSettings(BaseModel):
    dir: str = ".isgkit"
    hash_workers: int = 8


class LockSettings(BaseModel):
    timeout_seconds: float = 30.0
    poll_interval_seconds: float = 1.0
    # Locks whose owner cannot be checked (foreign host, unreadable file)
    # are considered abandoned after this long.
    stale_after_seconds: float = 60 * 60


class AgingRule(BaseModel):
    """Cache lifetime for content up to ``until_days`` old."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    until_days: int
    ttl_seconds: int


class IsgSettings(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = True
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    max_age_cap_days: int | None = None
    aging: list[AgingRule] = []

    @model_validator(mode="before")
    @classmethod
    def _validate_raw(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            validate_isg_config(data)
        return data


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: ISGKIT__CACHE__HASH_WORKERS=4
        env_prefix="ISGKIT__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    site: SiteSettings = SiteSettings()
    cache: CacheSettings = CacheSettings()
    lock: LockSettings = LockSettings()
    isg: IsgSettings = IsgSettings()
    logging: LoggingSettings = LoggingSettings()

    @property
    def src_dir(self) -> Path:
        return Path(self.site.src_dir).expanduser().absolute()

    @property
    def cache_dir(self) -> Path:
        return Path(self.cache.dir).expanduser().absolute()

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
            # dotenv and file secrets are not read
        )
