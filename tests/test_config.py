"""Tests for configuration loading and validation."""

import pytest
from pydantic import ValidationError

from forum_migration.config import (
    DuplicateKeyPolicy,
    LoggingConfig,
    MigrationConfig,
    OwnerTakeoverConfig,
    StateConfig,
    load_config_from_yaml,
)

MINIMAL_YAML = """
target:
  adapter: tests.helpers.fakes:InMemoryTargetStore
"""


def test_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(MINIMAL_YAML)

    config = load_config_from_yaml(path)

    assert config.run.duplicate_key_policy is DuplicateKeyPolicy.MERGE
    assert config.run.auto_confirm_emails is True
    assert config.run.environment_overrides["maintenanceMode"] == 1
    assert config.performance.cooldown_seconds == 5.0
    assert config.source.adapter.endswith(":JsonExportSourceProvider")


def test_env_var_expansion(tmp_path, monkeypatch):
    monkeypatch.setenv("FORUM_STATE_URL", "sqlite:///state/run.db")
    path = tmp_path / "config.yaml"
    path.write_text(MINIMAL_YAML + "state:\n  db_url: ${FORUM_STATE_URL}\n")

    assert load_config_from_yaml(path).state.url == "sqlite:///state/run.db"


def test_missing_env_var_is_an_error(tmp_path, monkeypatch):
    monkeypatch.delenv("FORUM_MISSING_VAR", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(MINIMAL_YAML + "paths:\n  base_dir: ${FORUM_MISSING_VAR}\n")

    with pytest.raises(ValueError, match="FORUM_MISSING_VAR"):
        load_config_from_yaml(path)


def test_missing_and_empty_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config_from_yaml(tmp_path / "absent.yaml")

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    with pytest.raises(ValueError, match="Empty configuration"):
        load_config_from_yaml(empty)


def test_adapter_needs_module_and_callable():
    with pytest.raises(ValidationError):
        MigrationConfig(target={"adapter": "no_callable_here"})


def test_unknown_duplicate_policy_is_rejected():
    with pytest.raises(ValidationError):
        MigrationConfig(target={"adapter": "a:b"}, run={"duplicate_key_policy": "overwrite"})


def test_run_config_is_frozen():
    config = MigrationConfig(target={"adapter": "a:b"})
    with pytest.raises(ValidationError):
        config.run.auto_confirm_emails = False


def test_blank_pool_entries_are_rejected():
    with pytest.raises(ValidationError):
        MigrationConfig(target={"adapter": "a:b"}, run={"container_icons": ["fa-comment", " "]})


def test_state_url():
    assert StateConfig(db_path="x/state.db").url == "sqlite:///x/state.db"
    assert StateConfig(db_url="postgresql://db/forum").url == "postgresql://db/forum"


def test_logging_validation():
    assert LoggingConfig(level="debug").level == "DEBUG"
    with pytest.raises(ValidationError):
        LoggingConfig(level="loud")
    with pytest.raises(ValidationError):
        LoggingConfig(console_events=["shout"])


def test_owner_takeover_matching():
    by_id = OwnerTakeoverConfig(enabled=True, source_id="7")
    assert by_id.matches(7, None)
    assert not by_id.matches(8, "someone")

    by_name = OwnerTakeoverConfig(enabled=True, username="Admin")
    assert by_name.matches(1, "admin")
    assert not OwnerTakeoverConfig(username="admin").matches(1, "admin")


def test_environment_variables_override(monkeypatch):
    monkeypatch.setenv("FORUM_BRIDGE_PERFORMANCE__BATCH_SIZE", "42")
    config = MigrationConfig(target={"adapter": "a:b"})
    assert config.performance.batch_size == 42
