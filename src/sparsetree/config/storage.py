"""Where the graph store lives.

The graph is one SQLite file under the sparsetree data directory unless a full SQLAlchemy
URI is configured. ``SPARSETREE_DATABASE_URI`` takes precedence over the generic
``DATABASE_URI``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import optional_env
from .errors import ConfigurationError

APP_DIR_NAME: Final[str] = "sparsetree"
DEFAULT_DB_FILENAME: Final[str] = "sparsetree.db"
SQLITE_DRIVER: Final[str] = "sqlite+pysqlite"

DATA_DIR_ENV: Final[str] = "SPARSETREE_DATA_DIR"
DB_FILENAME_ENV: Final[str] = "SPARSETREE_DB_FILENAME"
DATABASE_URI_ENVS: Final[tuple[str, ...]] = ("SPARSETREE_DATABASE_URI", "DATABASE_URI")
SQL_ECHO_ENV: Final[str] = "SPARSETREE_SQL_ECHO"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME

    def __post_init__(self) -> None:
        name = self.database_filename
        if not name or Path(name).name != name:
            raise ConfigurationError(
                f"{DB_FILENAME_ENV} must be a bare file name, got {name!r}"
            )

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def database_path(self, *, ensure: bool = True) -> Path:
        """Path of the graph file; the data directory is created unless ``ensure`` is off."""

        data_dir = self.resolve_data_dir()
        if ensure:
            data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / self.database_filename

    def database_uri(self) -> str:
        return f"{SQLITE_DRIVER}:///{self.database_path()}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str
    echo: bool = False

    @property
    def is_sqlite(self) -> bool:
        # FTS5 search and the upsert statements only exist on SQLite.
        return self.uri.startswith("sqlite")


def _default_data_dir() -> Path:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        base_path = Path(base) if base else (Path.home() / "AppData" / "Local")
    else:
        base = os.getenv("XDG_DATA_HOME")
        base_path = Path(base) if base else (Path.home() / ".local" / "share")
    return (base_path / APP_DIR_NAME).expanduser().resolve()


def get_storage_config() -> StorageConfig:
    env_dir = os.getenv(DATA_DIR_ENV)
    data_dir = Path(env_dir) if env_dir else _default_data_dir()
    filename = optional_env(DB_FILENAME_ENV, DEFAULT_DB_FILENAME)
    return StorageConfig(data_dir=data_dir, database_filename=filename)


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    echo = optional_env(SQL_ECHO_ENV, "").lower() in _TRUTHY
    for name in DATABASE_URI_ENVS:
        env_uri = optional_env(name, "")
        if env_uri:
            return DatabaseConfig(uri=env_uri, echo=echo)
    storage_config = storage or get_storage_config()
    return DatabaseConfig(uri=storage_config.database_uri(), echo=echo)
