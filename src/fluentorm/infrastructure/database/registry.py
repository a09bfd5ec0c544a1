"""Schema registry: entity types mapped to SQLAlchemy Core tables.

Each registered :class:`~fluentorm.domain.entity.Entity` subclass gets one
table named after it. Scalar fields become columns, one-to-one relations
become a ``<field>_id`` foreign key on the owner, and one-to-many
relations get a link table ``<owner>_<field>`` holding
``(owner_id, child_id, position)`` so collection order survives a round
trip.

Registration is idempotent per type and recursive: related entity types
are registered before their owner. Schemas are immutable once built and
shared read-only by every query.
"""

from __future__ import annotations

import logging
import threading
import types
from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Union, get_args, get_origin

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.types import TypeEngine

from fluentorm.domain.entity import PRIMARY_KEY, Entity, FetchStrategy, Relation
from fluentorm.errors import DuplicateSchemaError

logger = logging.getLogger(__name__)

SCALAR_TYPES: dict[type, type[TypeEngine[Any]]] = {
    int: Integer,
    float: Float,
    str: Text,
    bool: Boolean,
    bytes: LargeBinary,
    datetime: DateTime,
    date: Date,
}


class FieldKind(StrEnum):
    SCALAR = "scalar"
    ONE = "one"
    MANY = "many"


@dataclass(frozen=True)
class FieldSpec:
    """How one entity field is stored.

    Attributes:
        name: Attribute name on the entity.
        column: Column on the owner table (``None`` for one-to-many).
        kind: Scalar value, owned single entity, or owned ordered collection.
        python_type: Declared scalar type, or the related entity type.
        nullable: Whether ``None`` is an accepted value.
        fetch: Load strategy for relation fields.
        link_table: Link table name for one-to-many relations.
    """

    name: str
    column: str | None
    kind: FieldKind
    python_type: type
    nullable: bool = False
    fetch: FetchStrategy = FetchStrategy.EAGER
    link_table: str | None = None

    @property
    def is_relation(self) -> bool:
        return self.kind is not FieldKind.SCALAR

    @property
    def target(self) -> type[Entity]:
        """Related entity type (relation fields only)."""
        if not self.is_relation:
            msg = f"Field {self.name!r} is not a relation"
            raise TypeError(msg)
        return self.python_type


@dataclass(frozen=True, eq=False)
class Schema:
    """Immutable mapping from an entity type to its storage layout."""

    entity_type: type[Entity]
    table_name: str
    table: Table
    fields: tuple[FieldSpec, ...]
    link_tables: dict[str, Table]
    primary_key: str = PRIMARY_KEY

    def field(self, name: str) -> FieldSpec:
        """Look up a field spec by attribute name.

        Raises:
            ValueError: If the entity has no such field.
        """
        if name == self.primary_key:
            return FieldSpec(name=name, column=name, kind=FieldKind.SCALAR, python_type=int)
        for spec in self.fields:
            if spec.name == name:
                return spec
        known = ", ".join([self.primary_key, *(f.name for f in self.fields)])
        msg = f"{self.entity_type.__name__} has no field {name!r} (known: {known})"
        raise ValueError(msg)

    @property
    def scalars(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.kind is FieldKind.SCALAR)

    @property
    def relations(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.is_relation)

    @property
    def eager_relations(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.relations if f.fetch is FetchStrategy.EAGER)


class SchemaRegistry:
    """Registry of entity schemas backed by one SQLAlchemy ``MetaData``.

    Usage::

        registry = SchemaRegistry()
        schema = registry.register(User)   # registers Cat and Dog too
        registry.metadata.create_all(engine)
    """

    def __init__(self, metadata: MetaData | None = None) -> None:
        self.metadata = metadata if metadata is not None else MetaData()
        self._schemas: dict[type[Entity], Schema] = {}
        # table name -> entity type, or "Owner.field" for link tables
        self._owners: dict[str, Any] = {}
        self._pending: set[type[Entity]] = set()
        self._lock = threading.RLock()

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._schemas

    def register(self, entity_type: type[Entity]) -> Schema:
        """Register *entity_type* (and its related types) and return its schema.

        Raises:
            DuplicateSchemaError: If another mapping already claims the
                table name (or one of its link table names).
            TypeError: If a field annotation cannot be mapped.
        """
        if not (isinstance(entity_type, type) and issubclass(entity_type, Entity)):
            msg = f"{entity_type!r} must be an Entity subclass"
            raise TypeError(msg)

        with self._lock:
            existing = self._schemas.get(entity_type)
            if existing is not None:
                return existing
            if entity_type in self._pending:
                msg = f"Cyclic ownership involving {entity_type.__name__}"
                raise TypeError(msg)

            self._pending.add(entity_type)
            try:
                schema = self._build(entity_type)
            finally:
                self._pending.discard(entity_type)

            self._schemas[entity_type] = schema
            logger.debug("Registered schema %s -> %s", entity_type.__name__, schema.table_name)
            return schema

    def get(self, entity_type: type[Entity]) -> Schema:
        """Return the schema for a registered type.

        Raises:
            KeyError: If *entity_type* was never registered.
        """
        try:
            return self._schemas[entity_type]
        except KeyError:
            msg = f"Entity {entity_type.__name__} is not registered"
            raise KeyError(msg) from None

    def schemas(self) -> list[Schema]:
        """All registered schemas, in registration order."""
        return list(self._schemas.values())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _build(self, entity_type: type[Entity]) -> Schema:
        table_name = entity_type.table_name()
        self._claim_check(table_name, entity_type)

        specs: list[FieldSpec] = []
        for name, info in entity_type.model_fields.items():
            if name == PRIMARY_KEY:
                continue
            spec = _classify(entity_type, table_name, name, info.annotation, info.metadata)
            if spec.fetch is FetchStrategy.NONE and info.is_required():
                msg = (
                    f"{entity_type.__name__}.{name} is never loaded "
                    f"(FetchStrategy.NONE) and needs a default"
                )
                raise TypeError(msg)
            if spec.is_relation:
                self.register(spec.target)
            specs.append(spec)

        columns = {spec.column for spec in specs if spec.column is not None}
        if len(columns) != sum(1 for spec in specs if spec.column is not None):
            msg = f"{entity_type.__name__} has fields mapping to the same column"
            raise TypeError(msg)
        for spec in specs:
            if spec.link_table is not None:
                self._claim_check(spec.link_table, f"{entity_type.__name__}.{spec.name}")

        table = Table(table_name, self.metadata, *self._columns(specs))
        self._owners[table_name] = entity_type

        link_tables: dict[str, Table] = {}
        for spec in specs:
            if spec.kind is FieldKind.MANY:
                assert spec.link_table is not None
                link_tables[spec.name] = self._link_table(table_name, spec)
                self._owners[spec.link_table] = f"{entity_type.__name__}.{spec.name}"

        return Schema(
            entity_type=entity_type,
            table_name=table_name,
            table=table,
            fields=tuple(specs),
            link_tables=link_tables,
        )

    def _claim_check(self, table_name: str, incoming: Any) -> None:
        owner = self._owners.get(table_name)
        if owner is not None and owner is not incoming:
            raise DuplicateSchemaError(table_name, owner, incoming)
        if owner is None and table_name in self.metadata.tables:
            raise DuplicateSchemaError(table_name, self.metadata.tables[table_name], incoming)

    def _columns(self, specs: list[FieldSpec]) -> list[Column[Any]]:
        columns: list[Column[Any]] = [
            Column(PRIMARY_KEY, Integer, primary_key=True, autoincrement=True)
        ]
        for spec in specs:
            if spec.kind is FieldKind.SCALAR:
                columns.append(
                    Column(spec.column, SCALAR_TYPES[spec.python_type](), nullable=spec.nullable)
                )
            elif spec.kind is FieldKind.ONE:
                target_table = self.get(spec.target).table_name
                columns.append(
                    Column(
                        spec.column,
                        Integer,
                        ForeignKey(f"{target_table}.{PRIMARY_KEY}"),
                        nullable=True,
                    )
                )
        return columns

    def _link_table(self, owner_table: str, spec: FieldSpec) -> Table:
        assert spec.link_table is not None
        target_table = self.get(spec.target).table_name
        link = Table(
            spec.link_table,
            self.metadata,
            Column("owner_id", Integer, ForeignKey(f"{owner_table}.{PRIMARY_KEY}"), nullable=False),
            Column("child_id", Integer, ForeignKey(f"{target_table}.{PRIMARY_KEY}"), nullable=False),
            Column("position", Integer, nullable=False),
            UniqueConstraint("owner_id", "position"),
        )
        Index(f"ix_{spec.link_table}_owner", link.c.owner_id)
        return link


# ---------------------------------------------------------------------------
# Annotation classification
# ---------------------------------------------------------------------------


def _classify(
    entity_type: type[Entity],
    table_name: str,
    name: str,
    annotation: Any,
    metadata: list[Any],
) -> FieldSpec:
    inner, nullable = _unwrap_optional(annotation)
    relation = next((m for m in metadata if isinstance(m, Relation)), None)
    fetch = relation.fetch if relation is not None else FetchStrategy.EAGER

    if isinstance(inner, type) and issubclass(inner, Entity):
        return FieldSpec(
            name=name,
            column=f"{name}_id",
            kind=FieldKind.ONE,
            python_type=inner,
            nullable=nullable,
            fetch=fetch,
        )

    if get_origin(inner) is list:
        args = get_args(inner)
        if len(args) == 1 and isinstance(args[0], type) and issubclass(args[0], Entity):
            return FieldSpec(
                name=name,
                column=None,
                kind=FieldKind.MANY,
                python_type=args[0],
                nullable=nullable,
                fetch=fetch,
                link_table=f"{table_name}_{name}",
            )

    if relation is not None:
        msg = f"{entity_type.__name__}.{name}: Relation() only applies to entity fields"
        raise TypeError(msg)

    if isinstance(inner, type) and inner in SCALAR_TYPES:
        return FieldSpec(
            name=name,
            column=name,
            kind=FieldKind.SCALAR,
            python_type=inner,
            nullable=nullable,
        )

    msg = f"{entity_type.__name__}.{name}: unsupported field type {annotation!r}"
    raise TypeError(msg)


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    """Split ``X | None`` into ``(X, True)``; other annotations pass through."""
    if get_origin(annotation) in (Union, types.UnionType):
        args = get_args(annotation)
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1 and len(non_none) < len(args):
            return non_none[0], True
        msg = f"unsupported union type {annotation!r}"
        raise TypeError(msg)
    return annotation, False
