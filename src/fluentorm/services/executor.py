"""Execution engine: compiled queries run against the storage backend.

Each public operation is one pass through the state machine::

    IDLE -> COMPILING -> EXECUTING -> STREAMING -> IDLE

and runs inside a single critical section, so statements issued by
concurrent callers never overlap on the backend connection.

Reads are all-or-nothing: every row is fetched and decoded before the
first entity is handed back, and any backend failure surfaces as
:class:`~fluentorm.errors.ExecutionError` with nothing returned. Eager
relations are loaded with one batched statement per relation, keyed by
the owners' primary keys, however many rows the result holds.

INVARIANT: The query logger sees every statement before the backend does.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from fluentorm.errors import ExecutionError, FluentOrmError
from fluentorm.infrastructure.database.codec import RelatedEntities, decode, encode, link_rows
from fluentorm.infrastructure.database.compiler import OWNER_KEY
from fluentorm.infrastructure.database.registry import FieldKind

if TYPE_CHECKING:
    from fluentorm.domain.entity import Entity
    from fluentorm.domain.predicates import Ordering, Predicate
    from fluentorm.infrastructure.database.backend import StorageBackend
    from fluentorm.infrastructure.database.codec import Row
    from fluentorm.infrastructure.database.compiler import CompiledQuery, SqlCompiler
    from fluentorm.infrastructure.database.registry import Schema, SchemaRegistry
    from fluentorm.plugins.query_logger import QueryLoggerSlot

logger = logging.getLogger(__name__)

# Upper bound on ids bound into one IN (...) list.
BATCH_SIZE = 500


class ExecutionState(StrEnum):
    IDLE = "idle"
    COMPILING = "compiling"
    EXECUTING = "executing"
    STREAMING = "streaming"


_TRANSITIONS: dict[ExecutionState, frozenset[ExecutionState]] = {
    ExecutionState.IDLE: frozenset({ExecutionState.COMPILING}),
    ExecutionState.COMPILING: frozenset({ExecutionState.EXECUTING}),
    ExecutionState.EXECUTING: frozenset({ExecutionState.STREAMING}),
    ExecutionState.STREAMING: frozenset(),
}


class Executor:
    """Runs queries and writes for one storage backend.

    Parameters:
        backend: Row-level storage the statements run against.
        registry: Schemas for every entity the executor may touch.
        compiler: Builds statements for *backend*'s dialect.
        logger_slot: Observer notified before each backend call.
    """

    def __init__(
        self,
        backend: StorageBackend,
        registry: SchemaRegistry,
        compiler: SqlCompiler,
        logger_slot: QueryLoggerSlot,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._compiler = compiler
        self._slot = logger_slot
        self._lock = threading.Lock()
        self._owner: int | None = None
        self._state = ExecutionState.IDLE

    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    @property
    def compiler(self) -> SqlCompiler:
        return self._compiler

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch(
        self,
        schema: Schema,
        predicate: Predicate | None = None,
        *,
        orderings: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Entity]:
        """Return every entity of *schema* matching *predicate*."""
        with self._operation("select", schema):
            compiled = self._compiler.select(
                schema, predicate, orderings=orderings, limit=limit, offset=offset
            )
            self._advance(ExecutionState.EXECUTING)
            rows = self._execute(compiled)
            related = self._prefetch(schema, rows)
            self._advance(ExecutionState.STREAMING)
            entities = [decode(row, schema, related) for row in rows]
        logger.debug("Fetched %d rows from %s", len(entities), schema.table_name)
        return entities

    def stream(
        self,
        schema: Schema,
        predicate: Predicate | None = None,
        *,
        orderings: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> Iterator[Entity]:
        """Yield matching entities one by one, once the whole result decoded."""
        yield from self.fetch(
            schema, predicate, orderings=orderings, limit=limit, offset=offset
        )

    def count(
        self,
        schema: Schema,
        predicate: Predicate | None = None,
        *,
        orderings: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> int:
        with self._operation("count", schema):
            compiled = self._compiler.count(
                schema, predicate, orderings=orderings, limit=limit, offset=offset
            )
            value = self._scalar(compiled)
        return int(value or 0)

    def aggregate(
        self,
        schema: Schema,
        function: str,
        path: str,
        predicate: Predicate | None = None,
        *,
        orderings: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> Any:
        """Return ``min``/``max``/``sum``/``average`` of a scalar field."""
        with self._operation(function, schema):
            compiled = self._compiler.aggregate(
                schema, function, path, predicate, orderings=orderings, limit=limit, offset=offset
            )
            return self._scalar(compiled)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, schema: Schema, entities: Sequence[Entity]) -> list[Entity]:
        """Persist *entities* with their owned relations, atomically.

        Returns copies carrying the primary keys the backend assigned, in
        the order given.
        """
        with self._operation("insert", schema):
            self._advance(ExecutionState.EXECUTING)
            with self._unit_of_work("insert", schema):
                persisted = self._persist(schema, list(entities))
        logger.debug("Inserted %d rows into %s", len(persisted), schema.table_name)
        return persisted

    def delete_all(self, schema: Schema) -> int:
        """Delete every row of *schema* (and its link rows); return rows removed."""
        with self._operation("delete_all", schema):
            self._advance(ExecutionState.EXECUTING)
            with self._unit_of_work("delete_all", schema):
                for link in schema.link_tables.values():
                    self._slot.notify(self._compiler.delete_all(link))
                    self._backend.delete_all(link.name)
                self._slot.notify(self._compiler.delete_all(schema.table))
                removed = self._backend.delete_all(schema.table_name)
        logger.debug("Deleted %d rows from %s", removed, schema.table_name)
        return removed

    def delete(
        self,
        schema: Schema,
        predicate: Predicate | None,
        *,
        orderings: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> int:
        """Delete rows matching *predicate*; return how many owners were removed.

        Matching ids are read first, within the page when *limit* or
        *offset* is set, so predicates on one-to-many paths still see the
        link rows they depend on.
        """
        with self._operation("delete", schema):
            matching = self._compiler.select_ids(
                schema, predicate, orderings=orderings, limit=limit, offset=offset
            )
            self._advance(ExecutionState.EXECUTING)
            with self._unit_of_work("delete", schema):
                ids = [row[schema.primary_key] for row in self._execute(matching)]
                for batch in _batches(ids):
                    for compiled in self._compiler.delete(schema, batch):
                        self._execute(compiled)
        logger.debug("Deleted %d rows from %s", len(ids), schema.table_name)
        return len(ids)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(self, name: str, schema: Schema) -> Iterator[None]:
        """Hold the backend for one operation and reset to IDLE afterwards.

        The lock is not reentrant: a call made from inside an operation on
        the same thread (a query logger querying the same Orm) raises
        :class:`RuntimeError` instead of blocking forever.
        """
        if self._owner == threading.get_ident():
            msg = f"{name} on {schema.table_name} issued while another operation is running"
            raise RuntimeError(msg)
        with self._lock:
            self._owner = threading.get_ident()
            self._advance(ExecutionState.COMPILING)
            try:
                yield
            except ExecutionError:
                logger.debug("%s on %s failed", name, schema.table_name, exc_info=True)
                raise
            finally:
                self._state = ExecutionState.IDLE
                self._owner = None

    @contextmanager
    def _unit_of_work(self, name: str, schema: Schema) -> Iterator[None]:
        """Run the block in one backend transaction; failures become ExecutionError."""
        try:
            with self._backend.transaction():
                yield
        except FluentOrmError:
            raise
        except Exception as exc:
            msg = f"{name} on {schema.table_name} failed: {exc}"
            raise ExecutionError(msg) from exc

    def _advance(self, new_state: ExecutionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            msg = f"Illegal executor transition {self._state} -> {new_state}"
            raise RuntimeError(msg)
        self._state = new_state

    def _execute(self, compiled: CompiledQuery) -> list[Row]:
        self._slot.notify(compiled)
        try:
            return list(self._backend.execute(compiled))
        except Exception as exc:
            msg = f"Query failed: {exc}"
            raise ExecutionError(msg) from exc

    def _scalar(self, compiled: CompiledQuery) -> Any:
        if self._state is ExecutionState.COMPILING:
            self._advance(ExecutionState.EXECUTING)
        rows = self._execute(compiled)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    def _prefetch(self, schema: Schema, rows: list[Row]) -> RelatedEntities:
        """Load every eager relation of *rows*, one statement per relation batch."""
        related = RelatedEntities()
        if not rows:
            return related

        for spec in schema.eager_relations:
            target = self._registry.get(spec.target)
            if spec.kind is FieldKind.ONE:
                ids = sorted({row[spec.column] for row in rows if row[spec.column] is not None})
                loaded: dict[int, Entity] = {}
                for batch in _batches(ids):
                    child_rows = self._execute(self._compiler.select_by_ids(target, batch))
                    for child in self._load(target, child_rows):
                        loaded[child.id] = child
                related.one[spec.name] = loaded
            else:
                owner_ids = [row[schema.primary_key] for row in rows]
                grouped: dict[int, list[Entity]] = {}
                for batch in _batches(owner_ids):
                    child_rows = self._execute(self._compiler.select_children(schema, spec, batch))
                    for row, child in zip(child_rows, self._load(target, child_rows), strict=True):
                        grouped.setdefault(row[OWNER_KEY], []).append(child)
                related.many[spec.name] = grouped
        return related

    def _load(self, schema: Schema, rows: list[Row]) -> list[Entity]:
        related = self._prefetch(schema, rows)
        return [decode(row, schema, related) for row in rows]

    def _persist(self, schema: Schema, entities: list[Entity]) -> list[Entity]:
        """Insert *entities*: one-to-one children, owners, then collections."""
        if not entities:
            return []

        staged = list(entities)
        for spec in schema.relations:
            if spec.kind is not FieldKind.ONE:
                continue
            owners = [i for i, entity in enumerate(staged) if getattr(entity, spec.name) is not None]
            children = self._persist(
                self._registry.get(spec.target),
                [getattr(staged[i], spec.name) for i in owners],
            )
            for i, child in zip(owners, children, strict=True):
                staged[i] = staged[i].model_copy(update={spec.name: child})

        rows = [encode(entity, schema) for entity in staged]
        for row in rows:
            self._slot.notify(self._compiler.insert(schema.table, row))
        keys = self._backend.insert_many(schema.table_name, rows)
        staged = [
            entity.model_copy(update={schema.primary_key: key})
            for entity, key in zip(staged, keys, strict=True)
        ]

        for spec in schema.relations:
            if spec.kind is not FieldKind.MANY:
                continue
            counts = [len(getattr(entity, spec.name)) for entity in staged]
            children = self._persist(
                self._registry.get(spec.target),
                [child for entity in staged for child in getattr(entity, spec.name)],
            )
            links: list[Row] = []
            start = 0
            for i, count in enumerate(counts):
                owned = children[start : start + count]
                start += count
                links.extend(link_rows(staged[i].id, owned))
                staged[i] = staged[i].model_copy(update={spec.name: owned})

            link_table = schema.link_tables[spec.name]
            for row in links:
                self._slot.notify(self._compiler.insert(link_table, row))
            self._backend.insert_many(link_table.name, links)

        return staged


def _batches(ids: Sequence[int]) -> Iterator[list[int]]:
    for start in range(0, len(ids), BATCH_SIZE):
        yield list(ids[start : start + BATCH_SIZE])
