from __future__ import annotations

from pathlib import Path  # noqa: TC003

import pytest

from sparsetree.config import storage
from sparsetree.config.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_storage_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        storage.DATA_DIR_ENV,
        storage.DB_FILENAME_ENV,
        storage.SQL_ECHO_ENV,
        *storage.DATABASE_URI_ENVS,
    ):
        monkeypatch.delenv(name, raising=False)


def test_storage_config_prefers_explicit_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    custom = tmp_path / "custom-data"
    monkeypatch.setenv("SPARSETREE_DATA_DIR", str(custom))

    result = storage.get_storage_config().resolve_data_dir()

    assert result == custom.resolve()


def test_database_config_uses_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URI", "sqlite:///override.db")

    config = storage.get_database_config()

    assert config.uri == "sqlite:///override.db"
    assert config.is_sqlite


def test_sparsetree_uri_wins_over_generic_uri(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URI", "postgresql://elsewhere/app")
    monkeypatch.setenv("SPARSETREE_DATABASE_URI", "sqlite:///graph.db")
    monkeypatch.setenv("SPARSETREE_SQL_ECHO", "yes")

    config = storage.get_database_config()

    assert config.uri == "sqlite:///graph.db"
    assert config.echo


def test_database_config_creates_data_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SPARSETREE_DATA_DIR", str(tmp_path / "data-dir"))

    config = storage.get_database_config()

    expected_path = (tmp_path / "data-dir" / storage.DEFAULT_DB_FILENAME).resolve()
    assert config.uri == f"sqlite+pysqlite:///{expected_path}"
    assert expected_path.parent.exists()
    assert not config.echo


def test_database_filename_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SPARSETREE_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SPARSETREE_DB_FILENAME", "berg-family.db")

    path = storage.get_storage_config().database_path(ensure=False)

    assert path == tmp_path.resolve() / "berg-family.db"


@pytest.mark.parametrize("filename", ["", "../escape.db", "nested/graph.db"])
def test_database_filename_must_be_bare(tmp_path: Path, filename: str) -> None:
    with pytest.raises(ConfigurationError):
        storage.StorageConfig(data_dir=tmp_path, database_filename=filename)


def test_default_data_dir_follows_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))

    config = storage.get_storage_config()

    assert config.resolve_data_dir() == (tmp_path / storage.APP_DIR_NAME).resolve()
