from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

"""Config loader for the project import engine.

Responsibilities:
- Load YAML (default config/import.yml)
- Validate against the bundled JSON schema (import_schema.json)
- Apply defaults for every optional key
"""

__all__ = [
    "ConfigError",
    "DatabaseConfig",
    "DefaultTaskConfig",
    "ImportConfig",
    "config_from_dict",
    "load_config",
    "SCHEMA_PATH",
]

SCHEMA_PATH = Path(__file__).with_name("import_schema.json")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback. Environment variables take precedence."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
    min_connections: int = 1
    max_connections: int = 10


@dataclass(frozen=True)
class DefaultTaskConfig:
    """Follow-up task seeded on newly imported projects."""
    title: str = "Seguimiento de proyecto"
    description: str | None = "Tarea para el seguimiento general del proyecto importado desde Excel"
    tags: tuple[str, ...] = ("importado", "seguimiento")


@dataclass(frozen=True)
class ImportConfig:
    batch_size: int = 10
    email_domain: str = "teamtime.com"
    legacy_email_domains: tuple[str, ...] = ("imported.com",)
    default_password: str = "temp_password123"
    password_rounds: int = 10
    error_log_dir: str | None = None  # None -> JSONL error log disabled
    default_task: DefaultTaskConfig = field(default_factory=DefaultTaskConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: schema file missing or unreadable, or data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def config_from_dict(data: dict[str, Any]) -> ImportConfig:
    _validate_config_schema(data)

    defaults = ImportConfig()
    task_raw = data.get("default_task")
    default_task = defaults.default_task
    if task_raw:
        default_task = DefaultTaskConfig(
            title=task_raw["title"],
            description=task_raw.get("description"),
            tags=tuple(task_raw.get("tags", default_task.tags)),
        )

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
        min_connections=db_raw.get("min_connections", 1),
        max_connections=db_raw.get("max_connections", 10),
    )
    return ImportConfig(
        batch_size=data.get("batch_size", defaults.batch_size),
        email_domain=data.get("email_domain", defaults.email_domain),
        legacy_email_domains=tuple(data.get("legacy_email_domains", defaults.legacy_email_domains)),
        default_password=data.get("default_password", defaults.default_password),
        password_rounds=data.get("password_rounds", defaults.password_rounds),
        error_log_dir=data.get("error_log_dir", "./logs"),
        default_task=default_task,
        database=db,
    )


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")
    return config_from_dict(data)
