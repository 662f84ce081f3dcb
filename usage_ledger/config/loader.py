"""
Configuration management and loading.

Handles ingestion settings read from a YAML file.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

from usage_ledger.core.sink import DEFAULT_SERVICE_NAME
from usage_ledger.core.synthetic import DEFAULT_SYNTHETIC_ROLE
from usage_ledger.storage.db import DEFAULT_DB_PATH

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class IngestionConfig:
    """Settings for the ingestion engine."""
    db_path: str = DEFAULT_DB_PATH
    default_service_name: str = DEFAULT_SERVICE_NAME
    synthetic_role: str = DEFAULT_SYNTHETIC_ROLE
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate settings are usable."""
        for name in ("db_path", "default_service_name", "synthetic_role"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{name} must be a non-empty string")
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {list(VALID_LOG_LEVELS)}")

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)


_ALLOWED_KEYS = {"db_path", "default_service_name", "synthetic_role", "log_level"}


def load_ingestion_config(path: str) -> IngestionConfig:
    """Load and validate ingestion configuration from a YAML file.

    Keys that are not given take their defaults; unknown keys are rejected
    so a typo never silently falls back to a default.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated IngestionConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Ingestion config file not found: {path}")

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - _ALLOWED_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    values: Dict[str, Any] = {}
    for key, value in raw_config.items():
        if not isinstance(value, str):
            raise ValueError(f"'{key}' must be a string")
        values[key] = value
    if "log_level" in values:
        values["log_level"] = values["log_level"].upper()

    return IngestionConfig(**values)
