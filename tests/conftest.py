"""Shared pytest fixtures and test helpers for fluentorm tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from click.testing import CliRunner
from sqlalchemy.engine import Engine

from fluentorm.demo import User, demo_users
from fluentorm.infrastructure.database.engine import create_db_engine
from fluentorm.infrastructure.database.registry import SchemaRegistry
from fluentorm.orm import Orm


class QueryRecorder:
    """Query logger hook that keeps every ``(query, params)`` it sees."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []

    def __call__(self, query: str, params: list[str]) -> None:
        self.calls.append((query, params))

    @property
    def queries(self) -> list[str]:
        return [query for query, _ in self.calls]

    def selects(self) -> list[str]:
        return [query for query in self.queries if query.lstrip().upper().startswith("SELECT")]

    def clear(self) -> None:
        self.calls.clear()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def db_engine() -> Iterator[Engine]:
    """Private in-memory SQLite engine."""
    engine = create_db_engine()
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def registry() -> SchemaRegistry:
    return SchemaRegistry()


@pytest.fixture
def recorder() -> QueryRecorder:
    return QueryRecorder()


@pytest.fixture
def orm(db_engine: Engine, recorder: QueryRecorder) -> Iterator[Orm]:
    """Orm with the demo entities registered and their tables created."""
    o = Orm(db_engine, logger=recorder)
    o.register(User)
    o.create_all()
    try:
        yield o
    finally:
        o.close()


@pytest.fixture
def seeded(orm: Orm, recorder: QueryRecorder) -> list[User]:
    """The three demo users, persisted in order (florent, kevin, alex)."""
    users = orm.add(demo_users())
    recorder.clear()
    return users
