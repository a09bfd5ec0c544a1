"""Tests for OrmSettings: init kwargs, env vars and TOML in one object."""

from __future__ import annotations

from pathlib import Path

import click
import pytest

from fluentorm.config.discovery import CONFIG_ENV_VAR
from fluentorm.config.settings import OrmSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.delenv("FLUENTORM_DATABASE__URL", raising=False)
    monkeypatch.delenv("FLUENTORM_LOGGING__VERBOSE", raising=False)


class TestOrmSettingsDefaults:
    def test_all_defaults(self, tmp_path: Path) -> None:
        settings = OrmSettings.load(start=tmp_path)
        assert settings.config_path is None
        assert settings.database.url == "sqlite:///fluentorm.db"
        assert settings.database.wal is True
        assert settings.logging.verbose is False
        assert settings.logging.log_queries is False

    def test_frozen(self, tmp_path: Path) -> None:
        settings = OrmSettings.load(start=tmp_path)
        with pytest.raises(Exception):
            settings.config_path = tmp_path  # type: ignore[misc]


class TestTomlSource:
    def test_loads_from_toml(self, tmp_path: Path) -> None:
        toml = tmp_path / "fluentorm.toml"
        toml.write_text('[database]\nurl = "sqlite:///toml.db"\n[logging]\nlog_queries = true\n')
        settings = OrmSettings.load(start=tmp_path)
        assert settings.config_path == toml.resolve()
        assert settings.database.url == "sqlite:///toml.db"
        assert settings.logging.log_queries is True
        assert settings.database.foreign_keys is True

    def test_explicit_config_path(self, tmp_path: Path) -> None:
        custom = tmp_path / "custom" / "my.toml"
        custom.parent.mkdir(parents=True)
        custom.write_text("[database]\necho = true\n")
        settings = OrmSettings.load(config_path=str(custom))
        assert settings.database.echo is True
        assert settings.config_path == custom

    def test_missing_explicit_path_uses_defaults(self, tmp_path: Path) -> None:
        settings = OrmSettings.load(config_path=tmp_path / "absent.toml")
        assert settings.config_path is None
        assert settings.database.echo is False

    def test_invalid_toml(self, tmp_path: Path) -> None:
        (tmp_path / "fluentorm.toml").write_text("[database\n")
        with pytest.raises(click.ClickException, match="Invalid TOML"):
            OrmSettings.load(start=tmp_path)


class TestPriority:
    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "fluentorm.toml").write_text('[database]\nurl = "sqlite:///toml.db"\n')
        monkeypatch.setenv("FLUENTORM_DATABASE__URL", "sqlite:///env.db")
        settings = OrmSettings.load(start=tmp_path)
        assert settings.database.url == "sqlite:///env.db"

    def test_overrides_beat_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FLUENTORM_LOGGING__VERBOSE", "false")
        settings = OrmSettings.load(start=tmp_path, logging={"verbose": True})
        assert settings.logging.verbose is True

    def test_sparse_override_keeps_toml_siblings(self, tmp_path: Path) -> None:
        (tmp_path / "fluentorm.toml").write_text(
            '[database]\nurl = "sqlite:///toml.db"\nwal = false\n'
        )
        settings = OrmSettings.load(start=tmp_path, database={"echo": True})
        assert settings.database.echo is True
        assert settings.database.url == "sqlite:///toml.db"
        assert settings.database.wal is False
