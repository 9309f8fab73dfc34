from __future__ import annotations

from unittest.mock import patch

import pytest

from doc_history import config


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    for key in config.ENV_KEYS.values():
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DOC_HISTORY_STORE", "memory")
    config._load_settings_cached.cache_clear()
    yield monkeypatch
    config._load_settings_cached.cache_clear()


def test_split_csv_preserve_case() -> None:
    values = config._split_csv_preserve_case(" _id, _Rev ,,meta ")
    assert values == ["_id", "_Rev", "meta"]


def test_resolve_path_absolute_inside_project() -> None:
    root = str(config._project_root().resolve())
    absolute = f"{root}/data/test.sqlite"
    assert config._resolve_path(absolute) == absolute


def test_resolve_path_absolute_outside_project_rejected() -> None:
    with pytest.raises(ValueError, match="Path traversal detected"):
        config._resolve_path("/tmp/example.sqlite")


def test_env_bool_accepts_common_truthy_values(monkeypatch: pytest.MonkeyPatch) -> None:
    for value in ("1", "true", "YES"):
        monkeypatch.setenv("TEST_BOOL_VALUE", value)
        assert config._env_bool("TEST_BOOL_VALUE", False) is True
    monkeypatch.setenv("TEST_BOOL_VALUE", "off")
    assert config._env_bool("TEST_BOOL_VALUE", True) is False


def test_env_bool_missing_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TEST_BOOL_MISSING", raising=False)
    assert config._env_bool("TEST_BOOL_MISSING", True) is True


def test_load_settings_defaults(clean_env) -> None:
    settings = config.load_settings()

    assert settings.logging.level == "INFO"
    assert settings.storage.backend == "memory"
    assert settings.history.collection_suffix == "_history"
    assert settings.history.default_actor == "system"
    assert settings.history.identity_fields == ("_id", "_rev")
    assert settings.history.record_noop_updates is True
    assert settings.migrations.ledger_collection == "migrations"
    assert settings.migrations.plan_path is None
    assert settings.migrations.continue_on_error is False


def test_load_settings_is_cached(clean_env) -> None:
    assert config.load_settings() is config.load_settings()


def test_load_settings_reads_environment(clean_env) -> None:
    clean_env.setenv("HISTORY_COLLECTION_SUFFIX", "_audit")
    clean_env.setenv("HISTORY_DEFAULT_ACTOR", "batch-job")
    clean_env.setenv("HISTORY_RECORD_NOOP_UPDATES", "false")
    clean_env.setenv("MIGRATIONS_COLLECTION", "schema_ledger")
    clean_env.setenv("MIGRATIONS_CONTINUE_ON_ERROR", "true")
    clean_env.setenv("MIGRATIONS_PLAN_PATH", "migrations.yaml")

    settings = config.load_settings()

    assert settings.history.collection_suffix == "_audit"
    assert settings.history.default_actor == "batch-job"
    assert settings.history.record_noop_updates is False
    assert settings.migrations.ledger_collection == "schema_ledger"
    assert settings.migrations.continue_on_error is True
    assert settings.migrations.plan_path == str(config._project_root() / "migrations.yaml")


def test_identity_fields_always_include_id(clean_env) -> None:
    clean_env.setenv("HISTORY_IDENTITY_FIELDS", "_rev,updated_at")

    settings = config.load_settings()

    assert settings.history.identity_fields == ("_id", "_rev", "updated_at")


def test_load_settings_raises_runtime_error_on_validation(clean_env) -> None:
    clean_env.setenv("DOC_HISTORY_STORE", "postgres")

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.load_settings()


def test_memory_backend_logs_warning(clean_env) -> None:
    with patch.object(config, "_config_logger") as mock_logger:
        config.load_settings()

    mock_logger.warning.assert_called_once()


def test_plan_path_outside_project_rejected(clean_env) -> None:
    clean_env.setenv("MIGRATIONS_PLAN_PATH", "/etc/migrations.yaml")

    with pytest.raises(ValueError, match="Path traversal detected"):
        config.load_settings()
