from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from sparsetree.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork, shutdown, startup
from sparsetree.domain.cache import CacheRegistry
from sparsetree.domain.identity import IdentityResolver

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from sqlalchemy.engine import Engine


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    # One shared connection keeps the in-memory store alive across sessions and threads.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemyUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def caches() -> CacheRegistry:
    return CacheRegistry()


@pytest.fixture
def identity(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork], caches: CacheRegistry
) -> IdentityResolver:
    return IdentityResolver(sqlite_unit_of_work, caches=caches)
