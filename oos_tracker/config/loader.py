from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import AppConfig, StorageConfig

"""Config loader.

- Load YAML (default: config/oos.yml)
- Validate against config_schema.json (unknown keys rejected)
- Apply defaults for every missing key
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "resolve_config",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/oos.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file unreadable, or the data violates the schema
    """
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    try:
        jsonschema.validate(data, schema)
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    defaults = AppConfig()
    storage_raw = data.get("storage") or {}
    storage = StorageConfig(
        backend=storage_raw.get("backend", defaults.storage.backend),
        directory=storage_raw.get("directory", defaults.storage.directory),
        dsn=storage_raw.get("dsn", defaults.storage.dsn),
        records_key=storage_raw.get("records_key", defaults.storage.records_key),
        history_key=storage_raw.get("history_key", defaults.storage.history_key),
    )
    if storage.records_key == storage.history_key:
        raise ConfigError("storage.records_key and storage.history_key must differ")

    return AppConfig(
        storage=storage,
        join_key_guesses=tuple(data.get("join_key_guesses", defaults.join_key_guesses)),
        fallback_id=data.get("fallback_id", defaults.fallback_id),
        overdue_days=data.get("overdue_days", defaults.overdue_days),
        actor=data.get("actor", defaults.actor),
        log_directory=data.get("log_directory", defaults.log_directory),
    )


def resolve_config(path: Path | None = None) -> AppConfig:
    """Load an explicit config file, or the default one when present, else defaults."""
    if path is not None:
        return load_config(path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return AppConfig()
