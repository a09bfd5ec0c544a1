"""Orm: the single entry point wiring registry, executor and logger hook.

Usage::

    orm = Orm(create_db_engine("sqlite:///app.db"), logger=print_query)
    orm.register(User)
    orm.create_all()

    orm.delete_all(User)
    orm.add([User(age=21, name="florent", hacker=True)])
    hackers = orm.select(User).hacker.is_true().or_().age.equals_to(4).as_list()

The logger hook is injected per instance (constructor or
:meth:`Orm.set_logger`); there is no process-wide logger.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, TypeVar

from fluentorm.domain.entity import Entity
from fluentorm.infrastructure.database.backend import SqlAlchemyBackend
from fluentorm.infrastructure.database.compiler import SqlCompiler
from fluentorm.infrastructure.database.engine import (
    create_all,
    create_db_engine,
    engine_from_settings,
)
from fluentorm.infrastructure.database.registry import SchemaRegistry
from fluentorm.plugins.query_logger import QueryLoggerSlot, StructlogQueryLogger
from fluentorm.query.builder import Query
from fluentorm.services.executor import Executor

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

    from fluentorm.config.settings import OrmSettings
    from fluentorm.infrastructure.database.backend import StorageBackend
    from fluentorm.infrastructure.database.registry import Schema
    from fluentorm.plugins.query_logger import QueryHook

E = TypeVar("E", bound=Entity)


class Orm:
    """Entity persistence and querying over one storage backend.

    Parameters:
        engine: SQLAlchemy engine. Defaults to a private in-memory SQLite
            database when neither *engine* nor *backend* is given.
        backend: Custom storage backend. When given, *engine* is only used
            for its dialect and for :meth:`create_all`.
        registry: Shared schema registry (a fresh one by default).
        logger: Initial query logger hook.
    """

    def __init__(
        self,
        engine: Engine | None = None,
        *,
        backend: StorageBackend | None = None,
        registry: SchemaRegistry | None = None,
        logger: QueryHook | None = None,
    ) -> None:
        self._owns_engine = engine is None and backend is None
        if self._owns_engine:
            engine = create_db_engine()
        self.engine = engine
        self.registry = registry if registry is not None else SchemaRegistry()
        if backend is None:
            assert engine is not None
            backend = SqlAlchemyBackend(engine, self.registry)
        self.backend = backend

        self._slot = QueryLoggerSlot(logger)
        dialect = engine.dialect if engine is not None else None
        self.executor = Executor(
            backend, self.registry, SqlCompiler(self.registry, dialect), self._slot
        )

    @classmethod
    def from_settings(cls, settings: OrmSettings, *, logger: QueryHook | None = None) -> Orm:
        """Build an Orm from loaded settings.

        ``[logging] log_queries`` installs a :class:`StructlogQueryLogger`
        unless an explicit *logger* is given.
        """
        if logger is None and settings.logging.log_queries:
            logger = StructlogQueryLogger()
        orm = cls(engine_from_settings(settings), logger=logger)
        orm._owns_engine = True
        return orm

    def __enter__(self) -> Orm:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Dispose of the engine if this Orm created it."""
        if self._owns_engine and self.engine is not None:
            self.engine.dispose()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def register(self, *entity_types: type[Entity]) -> list[Schema]:
        """Register entity types; see :meth:`SchemaRegistry.register`."""
        return [self.registry.register(entity_type) for entity_type in entity_types]

    def create_all(self) -> None:
        """Create the tables of every registered entity."""
        if self.engine is None:
            msg = "create_all() needs an engine"
            raise RuntimeError(msg)
        create_all(self.engine, self.registry)

    # ------------------------------------------------------------------
    # Logger hook
    # ------------------------------------------------------------------

    @property
    def logger(self) -> QueryHook | None:
        """The current query logger hook."""
        return self._slot.hook

    def set_logger(self, hook: QueryHook | None) -> None:
        """Replace the query logger hook; ``None`` removes it.

        The hook runs while this Orm holds its execution lock, so it must
        not query the same Orm: such a call raises :class:`RuntimeError`,
        which the slot swallows like any other logger failure.
        """
        self._slot.set(hook)

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def select(self, entity_type: type[E]) -> Query[E]:
        """Start a query over *entity_type*."""
        return Query(self.executor, self.registry.get(entity_type))

    def add(self, entities: Iterable[E]) -> list[E]:
        """Persist *entities* (all of one type) with their owned relations.

        Returns persisted copies, in order, with primary keys assigned.
        """
        batch = list(entities)
        if not batch:
            return []
        entity_types = {type(entity) for entity in batch}
        if len(entity_types) > 1:
            names = sorted(t.__name__ for t in entity_types)
            msg = f"add() takes entities of one type, got {names}"
            raise TypeError(msg)
        schema = self.registry.get(type(batch[0]))
        return self.executor.insert(schema, batch)  # type: ignore[return-value]

    def add_one(self, entity: E) -> E:
        return self.add([entity])[0]

    def delete_all(self, entity_type: type[Entity]) -> int:
        """Delete every stored *entity_type*; return how many were removed."""
        return self.executor.delete_all(self.registry.get(entity_type))

    def count(self, entity_type: type[Entity]) -> int:
        return self.select(entity_type).count()
