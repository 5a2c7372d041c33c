"""Typed configuration for package builds.

Settings come from three layers, later ones winning:

1. model defaults (``PackageSettings()``),
2. a YAML file (:func:`load_config`),
3. ``CSPACK_*`` environment variables (:class:`EnvironmentOverrides`).

Every failure, whether a missing file, malformed YAML, or a value rejected by
validation, surfaces as :class:`CsPack.errors.ConfigError`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .catalog import DEFAULT_PRODUCT_VERSION
from .checksums import MANIFEST_ALGORITHM_NAMES
from .errors import ConfigError
from .opc import COMPRESSION_MODES

__all__ = [
    "LoggingConfiguration",
    "PackageSettings",
    "EnvironmentOverrides",
    "build_settings",
    "load_raw_yaml",
    "load_config",
]

logger = logging.getLogger(__name__)

_HASHING_CHOICES = frozenset(MANIFEST_ALGORITHM_NAMES) | {"none"}


class LoggingConfiguration(BaseModel):
    """Logging-related configuration for package builds."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    max_log_size_mb: int = Field(default=100, gt=0, description="Maximum size of rotated log files")
    retention_days: int = Field(default=30, ge=1, description="Days before old JSON log files are deleted")
    log_dir: Optional[Path] = Field(default=None, description="Directory for JSON log files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {sorted(valid_levels)}")
        return upper

    model_config = {"validate_assignment": True, "extra": "forbid"}


class PackageSettings(BaseModel):
    """Knobs controlling how a package is hashed, archived, and scheduled."""

    product_version: str = Field(
        default=DEFAULT_PRODUCT_VERSION,
        min_length=1,
        description="Value recorded under the ProductVersion metadata key",
    )
    hashing_algorithm: str = Field(
        default="sha256",
        description="Digest used for deduplication and integrity fields; 'none' disables hashing",
    )
    compression: str = Field(default="stored", description="Archive compression: stored or deflated")
    max_workers: int = Field(default=4, ge=1, le=32, description="Concurrent role tasks")
    keep_staging: bool = Field(default=False, description="Keep the staging directory after sealing")
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    @field_validator("hashing_algorithm")
    @classmethod
    def validate_hashing_algorithm(cls, value: str) -> str:
        lowered = value.strip().lower()
        if lowered not in _HASHING_CHOICES:
            raise ValueError(f"hashing_algorithm must be one of {sorted(_HASHING_CHOICES)}")
        return lowered

    @field_validator("compression")
    @classmethod
    def validate_compression(cls, value: str) -> str:
        lowered = value.strip().lower()
        if lowered not in COMPRESSION_MODES:
            raise ValueError(f"compression must be one of {sorted(COMPRESSION_MODES)}")
        return lowered

    model_config = {"validate_assignment": True, "extra": "forbid"}


class EnvironmentOverrides(BaseSettings):
    """Environment-derived overrides applied on top of file configuration."""

    product_version: Optional[str] = Field(default=None, alias="CSPACK_PRODUCT_VERSION")
    hashing_algorithm: Optional[str] = Field(default=None, alias="CSPACK_HASHING_ALGORITHM")
    compression: Optional[str] = Field(default=None, alias="CSPACK_COMPRESSION")
    max_workers: Optional[int] = Field(default=None, alias="CSPACK_MAX_WORKERS")
    log_level: Optional[str] = Field(default=None, alias="CSPACK_LOG_LEVEL")

    model_config = SettingsConfigDict(env_prefix="CSPACK_", case_sensitive=False, extra="ignore")


def _format_validation_error(exc: ValidationError) -> str:
    messages: List[str] = []
    for error in exc.errors():
        location = " -> ".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}")
    return "Configuration validation failed:\n  " + "\n  ".join(messages)


def _apply_env_overrides(settings: PackageSettings) -> None:
    env = EnvironmentOverrides()
    applied: Dict[str, Any] = {
        "product_version": env.product_version,
        "hashing_algorithm": env.hashing_algorithm,
        "compression": env.compression,
        "max_workers": env.max_workers,
    }
    for field_name, value in applied.items():
        if value is None:
            continue
        setattr(settings, field_name, value)
        logger.info("Config overridden: %s=%s", field_name, value, extra={"stage": "config"})
    if env.log_level is not None:
        settings.logging.level = env.log_level
        logger.info("Config overridden: log_level=%s", env.log_level, extra={"stage": "config"})


def build_settings(raw: Optional[Mapping[str, object]] = None) -> PackageSettings:
    """Validate ``raw`` and apply environment overrides.

    Raises:
        ConfigError: If the mapping or an override fails validation.
    """

    try:
        settings = PackageSettings.model_validate(dict(raw or {}))
        _apply_env_overrides(settings)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from exc
    return settings


def load_raw_yaml(config_path: Union[str, Path]) -> Mapping[str, object]:
    """Read a YAML configuration file and return its top-level mapping."""

    path = Path(config_path).expanduser()
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file '{path}' contains invalid YAML") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration file must contain a mapping at the root")
    return data


def load_config(config_path: Union[str, Path]) -> PackageSettings:
    """Load and validate settings from ``config_path``."""

    return build_settings(load_raw_yaml(config_path))
