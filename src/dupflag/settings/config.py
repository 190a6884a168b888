"""Configuration loader for dupflag services using Pydantic settings."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

ENV_VAR_NAME = "DUPFLAG_ENV"
DEFAULT_ENV = "local"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.default.toml"
LOCAL_CONFIG_FILE = CONFIG_DIR / "settings.local.toml"
SETTINGS_FILE_ENV_VAR = "DUPFLAG_SETTINGS_FILE"

# Largest page the record API will return for a single query.
MAX_PAGE_SIZE = 100

_SHORT_ALIASES = (
    ("records", "token", "NOTION_TOKEN"),
    ("records", "database_id", "NOTION_DATABASE_ID"),
    ("storage", "database_url", "DATABASE_URL"),
)


def _resolve_env(explicit_env: str | None = None) -> str:
    """Return the active environment name.

    Args:
        explicit_env: Environment value supplied directly by the caller.

    Returns:
        A stripped environment name, falling back to ``DEFAULT_ENV``.
    """

    env = explicit_env or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV
    return env.strip()


def _env_file_candidates(env: str) -> list[Path]:
    """List candidate ``.env`` files used during settings resolution."""

    return [
        PROJECT_ROOT / ".env",
        PROJECT_ROOT / f".env.{env}",
        PROJECT_ROOT / ".env.local",
    ]


def _resolve_config_path(raw_path: str | None) -> Path | None:
    """Return an absolute config path from user input."""

    if not raw_path:
        return None
    candidate = Path(raw_path).expanduser()
    if not candidate.is_absolute():
        candidate = (PROJECT_ROOT / candidate).resolve()
    return candidate


def _config_file_priority(include_missing: bool = False) -> tuple[Path, ...]:
    """Return config files in descending precedence order."""

    ordered: list[Path] = []
    env_override = _resolve_config_path(os.getenv(SETTINGS_FILE_ENV_VAR))
    if env_override:
        ordered.append(env_override)
    ordered.append(LOCAL_CONFIG_FILE)
    ordered.append(DEFAULT_CONFIG_FILE)
    if include_missing:
        return tuple(ordered)
    return tuple(path for path in ordered if path.exists())


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Pydantic settings source that loads values from a TOML file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path) -> None:
        super().__init__(settings_cls)
        self.path = path
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        try:
            with self.path.open("rb") as handle:
                self._data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:  # pragma: no cover - invalid files surface immediately
            raise ValueError(f"Invalid TOML syntax in {self.path}") from exc
        return self._data

    def __call__(self) -> dict[str, Any]:  # pragma: no cover - trivial wrapper
        return self._load()

    def get_field_value(self, field_name: str, field):  # pragma: no cover - passthrough helper
        data = self._load()
        return data.get(field_name), field_name in data


class StorageSettings(BaseSettings):
    """Location of the name index and progress tables."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    sqlite_path: Path = Field(default=PROJECT_ROOT / "data" / "dupflag.db")
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "STORAGE__DATABASE_URL"),
    )


class RecordSourceSettings(BaseSettings):
    """Record API wiring and the property names the engine reads and writes."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    api_base: str = Field(
        default="https://api.notion.com/v1",
        validation_alias=AliasChoices("NOTION_API_BASE", "RECORDS__API_BASE"),
    )
    api_version: str = Field(
        default="2022-06-28",
        validation_alias=AliasChoices("NOTION_VERSION", "RECORDS__API_VERSION"),
    )
    token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("NOTION_TOKEN", "RECORDS__TOKEN"),
    )
    database_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("NOTION_DATABASE_ID", "RECORDS__DATABASE_ID"),
    )
    name_property: str = Field(
        default="Name",
        validation_alias=AliasChoices("RECORDS_NAME_PROPERTY", "RECORDS__NAME_PROPERTY"),
    )
    tag_property: str = Field(
        default="Duplicate Flag",
        validation_alias=AliasChoices("RECORDS_TAG_PROPERTY", "RECORDS__TAG_PROPERTY"),
    )
    tag_kind: Literal["select", "multi_select"] = Field(
        default="select",
        validation_alias=AliasChoices("RECORDS_TAG_KIND", "RECORDS__TAG_KIND"),
    )
    tag_value: str = Field(
        default="Duplicate",
        validation_alias=AliasChoices("RECORDS_TAG_VALUE", "RECORDS__TAG_VALUE"),
    )
    page_size: int = Field(
        default=MAX_PAGE_SIZE,
        validation_alias=AliasChoices("RECORDS_PAGE_SIZE", "RECORDS__PAGE_SIZE"),
    )
    timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("RECORDS_TIMEOUT_SECONDS", "RECORDS__TIMEOUT_SECONDS"),
    )

    @field_validator("page_size")
    @classmethod
    def _clamp_page_size(cls, value: int) -> int:
        return max(1, min(int(value), MAX_PAGE_SIZE))


class RetrySettings(BaseSettings):
    """Backoff policy shared by record API and index store calls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    max_attempts: int = Field(
        default=3,
        validation_alias=AliasChoices("RETRY_MAX_ATTEMPTS", "RETRY__MAX_ATTEMPTS"),
    )
    initial_delay_seconds: float = Field(
        default=1.0,
        validation_alias=AliasChoices("RETRY_INITIAL_DELAY_SECONDS", "RETRY__INITIAL_DELAY_SECONDS"),
    )
    retry_server_errors: bool = Field(
        default=False,
        validation_alias=AliasChoices("RETRY_SERVER_ERRORS", "RETRY__RETRY_SERVER_ERRORS"),
    )


class ScannerSettings(BaseSettings):
    """Time budget for one resumable index scan invocation."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    time_budget_seconds: float = Field(
        default=45.0,
        validation_alias=AliasChoices("SCANNER_TIME_BUDGET_SECONDS", "SCANNER__TIME_BUDGET_SECONDS"),
    )
    budget_fraction: float = Field(
        default=0.85,
        validation_alias=AliasChoices("SCANNER_BUDGET_FRACTION", "SCANNER__BUDGET_FRACTION"),
    )


class ReconcilerSettings(BaseSettings):
    """Bulk duplicate reconciliation controls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    dry_run: bool = Field(
        default=False,
        validation_alias=AliasChoices("RECONCILER_DRY_RUN", "RECONCILER__DRY_RUN"),
    )
    checkpoint_interval: int = Field(
        default=50,
        validation_alias=AliasChoices("RECONCILER_CHECKPOINT_INTERVAL", "RECONCILER__CHECKPOINT_INTERVAL"),
    )
    request_delay_seconds: float = Field(
        default=0.1,
        validation_alias=AliasChoices("RECONCILER_REQUEST_DELAY_SECONDS", "RECONCILER__REQUEST_DELAY_SECONDS"),
    )


class ObservabilitySettings(BaseSettings):
    """Logging and metrics configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_logging: bool = Field(
        default=True,
        validation_alias=AliasChoices("OBS_STRUCTURED_LOGGING", "OBSERVABILITY__STRUCTURED_LOGGING"),
    )
    statsd_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBS_STATSD_HOST", "OBSERVABILITY__STATSD_HOST"),
    )
    statsd_port: int = Field(
        default=8125,
        validation_alias=AliasChoices("OBS_STATSD_PORT", "OBSERVABILITY__STATSD_PORT"),
    )
    statsd_prefix: str = Field(
        default="dupflag",
        validation_alias=AliasChoices("OBS_STATSD_PREFIX", "OBSERVABILITY__STATSD_PREFIX"),
    )


class Settings(BaseSettings):
    """Top-level configuration model with nested sections for each subsystem."""

    env: str = Field(
        default_factory=lambda: _resolve_env(),
        validation_alias=AliasChoices("ENV", "ENVIRONMENT", "RUNTIME__ENV"),
    )
    project_root: Path = Field(default=PROJECT_ROOT)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    records: RecordSourceSettings = Field(default_factory=RecordSourceSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    scanner: ScannerSettings = Field(default_factory=ScannerSettings)
    reconciler: ReconcilerSettings = Field(default_factory=ReconcilerSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    env_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)
    config_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="DUPFLAG_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Extend settings sources with TOML-based config files."""

        config_sources = [TomlConfigSettingsSource(settings_cls, path) for path in _config_file_priority()]
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            *config_sources,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths once the model is initialised."""

        if not self.storage.sqlite_path.is_absolute():
            resolved = (self.project_root / self.storage.sqlite_path).resolve()
            object.__setattr__(self, "storage", self.storage.model_copy(update={"sqlite_path": resolved}))
        return self

    @model_validator(mode="after")
    def _apply_short_aliases(self) -> "Settings":
        """Honour unprefixed credential variables when a config file supplied the section."""

        for section_name, field_name, env_name in _SHORT_ALIASES:
            section = getattr(self, section_name)
            raw = os.getenv(env_name)
            if raw and not getattr(section, field_name):
                object.__setattr__(self, section_name, section.model_copy(update={field_name: raw}))
        return self

    @model_validator(mode="after")
    def _apply_environment_overrides(self) -> "Settings":
        """Force environment-specific defaults after basic resolution."""

        if self.env.lower() == "local":
            observability_update = {"structured_logging": False, "statsd_host": None}
            object.__setattr__(self, "observability", self.observability.model_copy(update=observability_update))
        return self

    @property
    def is_local(self) -> bool:
        """bool: True when the active environment is ``local``."""

        return self.env.lower() == "local"


def _load_settings(env: str | None = None) -> Settings:
    """Load settings with optional environment override.

    Args:
        env: Environment name supplied programmatically.

    Returns:
        Fully parsed :class:`Settings` instance with env files applied.
    """

    resolved_env = _resolve_env(env)
    candidate_files = [path for path in _env_file_candidates(resolved_env) if path.exists()]
    config_files = _config_file_priority()
    return Settings(
        _env_file=[str(path) for path in candidate_files],
        _env_file_encoding="utf-8",
        env=resolved_env,
        env_files=tuple(candidate_files),
        config_files=config_files,
    )


@lru_cache(maxsize=1)
def get_settings(env: str | None = None) -> Settings:
    """Return cached settings for the requested environment."""

    return _load_settings(env)


def reload_settings(env: str | None = None) -> Settings:
    """Clear the cached settings and reload from disk."""

    get_settings.cache_clear()
    return get_settings(env)


__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
    "MAX_PAGE_SIZE",
]
