"""Storage backends: the row-level CRUD surface the executor drives.

:class:`StorageBackend` is the contract; :class:`SqlAlchemyBackend` is
the shipped implementation on top of a SQLAlchemy ``Engine``. Backends
raise whatever their driver raises; translating failures into
:class:`~fluentorm.errors.ExecutionError` is the executor's job.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import delete, insert

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from sqlalchemy import Connection, Table
    from sqlalchemy.engine import Engine

    from fluentorm.infrastructure.database.codec import Row
    from fluentorm.infrastructure.database.compiler import CompiledQuery
    from fluentorm.infrastructure.database.registry import SchemaRegistry


class StorageBackend(Protocol):
    """Row-level storage operations used by the executor."""

    def execute(self, query: CompiledQuery) -> Iterator[Row]:
        """Run a compiled statement and return its rows (empty for DML)."""
        ...

    def insert_many(self, table: str, rows: Sequence[Row]) -> list[Any]:
        """Insert *rows* in order and return their primary keys."""
        ...

    def delete_all(self, table: str) -> int:
        """Delete every row of *table*; return the number removed."""
        ...

    def transaction(self) -> AbstractContextManager[None]:
        """Group the calls made inside the block into one atomic unit."""
        ...


class SqlAlchemyBackend:
    """:class:`StorageBackend` over a SQLAlchemy engine.

    Outside :meth:`transaction`, every call commits on its own. Inside it,
    all calls share one connection and commit (or roll back) together.
    """

    def __init__(self, engine: Engine, registry: SchemaRegistry) -> None:
        self._engine = engine
        self._registry = registry
        self._conn: Connection | None = None

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._conn is not None:
            yield
            return
        with self._engine.begin() as conn:
            self._conn = conn
            try:
                yield
            finally:
                self._conn = None

    def execute(self, query: CompiledQuery) -> Iterator[Row]:
        with self._connection() as conn:
            result = conn.execute(query.statement)
            if not result.returns_rows:
                return iter(())
            rows = [dict(row) for row in result.mappings()]
        return iter(rows)

    def insert_many(self, table: str, rows: Sequence[Row]) -> list[Any]:
        if not rows:
            return []
        target = self._table(table)
        with self._connection() as conn:
            if not target.primary_key.columns:
                conn.execute(insert(target), list(rows))
                return []
            keys: list[Any] = []
            for row in rows:
                result = conn.execute(insert(target).values(**row))
                keys.append(result.inserted_primary_key[0])
        return keys

    def delete_all(self, table: str) -> int:
        with self._connection() as conn:
            result = conn.execute(delete(self._table(table)))
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        if self._conn is not None:
            yield self._conn
            return
        with self._engine.begin() as conn:
            yield conn

    def _table(self, name: str) -> Table:
        try:
            return self._registry.metadata.tables[name]
        except KeyError:
            msg = f"Unknown table {name!r}"
            raise KeyError(msg) from None
