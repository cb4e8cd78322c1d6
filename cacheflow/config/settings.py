"""cacheflow.config.settings
==========================
Runtime configuration for **cacheflow**.

This module provides a single `CacheflowSettings` object powered by
`pydantic-settings` (v2) that merges configuration from **environment
variables**, **.env**, **TOML** and **YAML** files. The loading order
(highest → lowest priority):

1. Environment variables (``CACHEFLOW_`` prefix, ``__`` for nesting)
2. Values passed via `CacheflowSettings(...)` kwargs
3. External YAML (``settings.yaml`` or path in ``CACHEFLOW_SETTINGS``)
4. External TOML (``settings.toml`` or path in ``CACHEFLOW_SETTINGS``)
5. ``.env`` file in project root (if present)
6. File-secrets directory (Kubernetes-style)

The nested sections mirror the initialization object of the cache::

    {
        "local": {"enabled": True, "checkExpireIntervalSeconds": 1, "globalThreshold": 100},
        "remote": {"host": "127.0.0.1", "port": 6379, "password": None},
    }

Keys may be given in camelCase or snake_case. A missing ``local`` section
disables the local backend; a missing ``remote`` section disables Redis.

The module also exposes helpers:

* `get_settings()` – cached accessor for the CLI and the HTTP app.
* `configure_logging()` – sets up logging from ``logging.yaml`` and
  honours `log_level_per_module` for fine-grained control.
"""
from __future__ import annotations

import logging
import logging.config
import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Dict, Tuple, Type

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    StringConstraints,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

__all__ = [
    "CacheflowSettings",
    "LocalSettings",
    "RemoteSettings",
    "ScoringSettings",
    "get_settings",
    "configure_logging",
]

DEFAULT_SWEEP_INTERVAL_SECONDS = 10.0


# ---------------------------------------------------------------------------
# Helpers to load external config files
# ---------------------------------------------------------------------------

def _load_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fp:  # tomllib requires binary mode
        return tomllib.load(fp)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fp:
        return yaml.safe_load(fp) or {}


# ---------------------------------------------------------------------------
# Nested sections
# ---------------------------------------------------------------------------

class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class LocalSettings(_Section):
    """Embedded SQLite backend and expiry sweeper."""

    enabled: bool = Field(True, description="Use the local entry table")
    check_expire_interval_seconds: PositiveFloat = Field(
        DEFAULT_SWEEP_INTERVAL_SECONDS, description="Sweeper tick interval")
    global_threshold: PositiveFloat | None = Field(
        None, description="Default frequency threshold in calls per second")
    reset_on_start: bool = Field(True, description="Empty the entry table on init")

    @property
    def threshold_per_ms(self) -> float | None:
        if self.global_threshold is None:
            return None
        return self.global_threshold / 1000


class RemoteSettings(_Section):
    """Redis connection parameters."""

    host: str = Field("127.0.0.1", description="Redis host")
    port: PositiveInt = Field(6379, description="Redis port")
    password: SecretStr | None = Field(None, description="Redis password")
    db: int = Field(0, ge=0, description="Redis database index")
    key_prefix: str = Field("", description="Prefix applied to every cached key")
    socket_timeout: PositiveFloat = Field(5.0, description="Socket timeout in seconds")


class ScoringSettings(_Section):
    """Coefficients of the adaptive cache score.

    The defaults are empirically tuned values kept as found::

        score = callRate + interval_weight / (interval_coefficient * intervalMs)
                + size_weight * (dataSize - avgSize) / size_divisor
    """

    interval_coefficient: PositiveFloat = 0.004
    interval_weight: float = 0.92
    size_weight: float = 0.17
    size_divisor: PositiveFloat = 300.0
    threshold_ratio: PositiveFloat = 0.97
    nominal_threshold: PositiveFloat = 1.0
    insufficient_interval_ms: PositiveFloat = 10_000.0
    nonpositive_interval_ms: PositiveFloat = 5_000.0


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------

_log_level_type = Annotated[
    str,
    StringConstraints(pattern=r"^(CRITICAL|ERROR|WARNING|INFO|DEBUG|NOTSET)$", strip_whitespace=True),
]


class CacheflowSettings(BaseSettings):
    """Application runtime settings (validated & type-safe)."""

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------
    local: LocalSettings | None = Field(None, description="Local backend; omit to disable")
    remote: RemoteSettings | None = Field(None, description="Remote backend; omit to disable")
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)

    # ------------------------------------------------------------------
    # Storage paths
    # ------------------------------------------------------------------
    sqlite_path: str = Field(
        "cacheflow.db", description="SQLite file holding entries and metric documents")

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: _log_level_type = Field("INFO", description="Root log level")
    log_level_per_module: Dict[str, _log_level_type] | None = Field(
        default=None,
        description="Per-module log levels, e.g. '{\"cacheflow.core.sweeper\": \"DEBUG\"}'.",
    )

    # ------------------------------------------------------------------
    # HTTP viewer
    # ------------------------------------------------------------------
    host: str = Field("127.0.0.1", description="Bind address of the metrics API")
    port: PositiveInt = Field(8000, description="Bind port of the metrics API")

    # ------------------------------------------------------------------
    # Pydantic settings config
    # ------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_prefix="CACHEFLOW_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def _redis_section(cls, data: Any) -> Any:
        # "redis" names the remote section in older init objects
        if isinstance(data, dict) and "redis" in data:
            data = dict(data)
            redis = data.pop("redis")
            data.setdefault("remote", redis)
        return data

    @property
    def local_enabled(self) -> bool:
        return self.local is not None and self.local.enabled

    @property
    def sweep_interval_seconds(self) -> float:
        if self.local is not None:
            return self.local.check_expire_interval_seconds
        return DEFAULT_SWEEP_INTERVAL_SECONDS

    # ------------------------------------------------------------------
    # custom sources (TOML / YAML)
    # ------------------------------------------------------------------

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[Any, ...]:
        """Define custom loading order with TOML & YAML support."""

        def yaml_settings() -> Dict[str, Any]:
            env_val = os.getenv("CACHEFLOW_SETTINGS")
            path = Path(env_val) if env_val else Path("settings.yaml")
            if path.suffix not in (".yaml", ".yml"):
                return {}
            return _load_yaml(path)

        def toml_settings() -> Dict[str, Any]:
            env_val = os.getenv("CACHEFLOW_SETTINGS")
            path = Path(env_val) if env_val else Path("settings.toml")
            if path.suffix != ".toml":
                return {}
            return _load_toml(path)

        # Precedence: ENV → init → YAML → TOML → .env → secrets
        return (
            env_settings,
            init_settings,
            yaml_settings,
            toml_settings,
            dotenv_settings,
            file_secret_settings,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> CacheflowSettings:  # pragma: no cover
    """Return a cached `CacheflowSettings` instance for the CLI and HTTP app."""
    return CacheflowSettings()


def configure_logging(settings: CacheflowSettings | None = None) -> None:
    """Configure logging from ``logging.yaml`` and apply overrides.

    If the YAML file is missing, falls back to ``basicConfig``. Call this
    once at startup.
    """
    settings = settings or get_settings()
    cfg_path = Path(__file__).resolve().parent.parent / "logging.yaml"
    if cfg_path.exists():
        try:
            with cfg_path.open("r", encoding="utf-8") as fp:
                config_dict = yaml.safe_load(fp)
            config_dict.setdefault("root", {})["level"] = settings.log_level
            logging.config.dictConfig(config_dict)
        except (OSError, ValueError, yaml.YAMLError):  # pragma: no cover
            logging.basicConfig(level=settings.log_level)
            logging.getLogger(__name__).exception(
                "Failed to load logging.yaml – falling back to basicConfig")
    else:
        logging.basicConfig(level=settings.log_level)

    # fine-grained overrides
    if settings.log_level_per_module:
        for mod, lvl in settings.log_level_per_module.items():
            logging.getLogger(mod).setLevel(lvl)
