"""Configuration management for the change history and migration engine."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    backend: Literal["sqlite", "memory"] = Field(default="sqlite")
    sqlite_path: str = Field(default="./data/doc_history.sqlite")
    sqlite_wal: bool = Field(default=True)


class HistorySettings(BaseModel):
    collection_suffix: str = Field(default="_history", min_length=1)
    default_actor: str = Field(default="system", min_length=1)
    identity_fields: tuple[str, ...] = Field(
        default=("_id", "_rev"),
        description="Storage-generated fields excluded from diffs and stripped on revert.",
    )
    record_noop_updates: bool = Field(
        default=True,
        description="If False, updates that change no field do not produce a history entry.",
    )

    @field_validator("identity_fields")
    @classmethod
    def _validate_identity_fields(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if "_id" not in value:
            return ("_id", *value)
        return value


class MigrationSettings(BaseModel):
    ledger_collection: str = Field(default="migrations", min_length=1)
    plan_path: str | None = Field(default=None, description="Optional migrations.yaml path")
    continue_on_error: bool = Field(default=False)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    migrations: MigrationSettings = Field(default_factory=MigrationSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "store": "DOC_HISTORY_STORE",
    "sqlite_path": "SQLITE_PATH",
    "sqlite_wal": "SQLITE_WAL",
    "history_suffix": "HISTORY_COLLECTION_SUFFIX",
    "history_actor": "HISTORY_DEFAULT_ACTOR",
    "history_identity_fields": "HISTORY_IDENTITY_FIELDS",
    "history_record_noop": "HISTORY_RECORD_NOOP_UPDATES",
    "migrations_collection": "MIGRATIONS_COLLECTION",
    "migrations_plan_path": "MIGRATIONS_PLAN_PATH",
    "migrations_continue": "MIGRATIONS_CONTINUE_ON_ERROR",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _split_csv_preserve_case(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_csv(key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    values = _split_csv_preserve_case(os.getenv(key))
    return tuple(values) if values else default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    plan_path_env = os.getenv(ENV_KEYS["migrations_plan_path"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "backend": os.getenv(ENV_KEYS["store"], StorageSettings().backend).strip().lower(),
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
        },
        "history": {
            "collection_suffix": os.getenv(
                ENV_KEYS["history_suffix"], HistorySettings().collection_suffix
            ),
            "default_actor": os.getenv(
                ENV_KEYS["history_actor"], HistorySettings().default_actor
            ),
            "identity_fields": _env_csv(
                ENV_KEYS["history_identity_fields"], HistorySettings().identity_fields
            ),
            "record_noop_updates": _env_bool(
                ENV_KEYS["history_record_noop"], HistorySettings().record_noop_updates
            ),
        },
        "migrations": {
            "ledger_collection": os.getenv(
                ENV_KEYS["migrations_collection"], MigrationSettings().ledger_collection
            ),
            "plan_path": _resolve_path(plan_path_env) if plan_path_env else None,
            "continue_on_error": _env_bool(
                ENV_KEYS["migrations_continue"], MigrationSettings().continue_on_error
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.storage.backend == "sqlite":
        Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
    else:
        _config_logger.warning(
            "Using in-memory document store; history and ledger are not persisted"
        )

    return settings
