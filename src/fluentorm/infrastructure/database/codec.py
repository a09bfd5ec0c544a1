"""Row codec: entities to storage rows and back.

A row is a plain ``dict`` keyed by column name, the same shape
``conn.execute(...).mappings()`` yields. Encoding flattens scalar fields
and replaces one-to-one relations with the related entity's primary key.
One-to-many relations live in link tables and are encoded separately via
:func:`link_rows`.

Decoding never issues queries itself. Relation values are fetched ahead
of time (keyed by foreign key or owner primary key) and handed in as a
:class:`RelatedEntities` bundle, so the caller decides how many queries a
result set costs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from fluentorm.domain.entity import Entity, FetchStrategy
from fluentorm.errors import CodecMismatchError
from fluentorm.infrastructure.database.registry import FieldKind, FieldSpec, Schema

Row = dict[str, Any]


@dataclass
class RelatedEntities:
    """Relation values resolved ahead of decoding.

    Attributes:
        one: ``{field: {child_id: entity}}`` for one-to-one relations.
        many: ``{field: {owner_id: [entity, ...]}}`` for one-to-many
            relations, children in stored order.
    """

    one: dict[str, dict[int, Entity]] = field(default_factory=dict)
    many: dict[str, dict[int, list[Entity]]] = field(default_factory=dict)

    @classmethod
    def from_entities(cls, schema: Schema, entities: Iterable[Entity]) -> RelatedEntities:
        """Collect the relation values already attached to *entities*."""
        related = cls()
        for entity in entities:
            for spec in schema.relations:
                value = getattr(entity, spec.name)
                if spec.kind is FieldKind.ONE and value is not None:
                    related.one.setdefault(spec.name, {})[_require_id(value)] = value
                elif spec.kind is FieldKind.MANY:
                    related.many.setdefault(spec.name, {})[_require_id(entity)] = list(value)
        return related


def encode(entity: Entity, schema: Schema) -> Row:
    """Flatten *entity* into a row for ``schema.table``.

    The primary key is omitted while unassigned so the backend can
    generate it. Related entities must already be persisted.

    Timezone-aware datetimes are rejected with :class:`TypeError`: the
    column stores naive values only, so the offset would not survive a
    round trip.
    """
    if not isinstance(entity, schema.entity_type):
        msg = f"Cannot encode {type(entity).__name__} with the {schema.table_name} schema"
        raise TypeError(msg)

    row: Row = {}
    if entity.id is not None:
        row[schema.primary_key] = entity.id

    for spec in schema.fields:
        value = getattr(entity, spec.name)
        if spec.kind is FieldKind.SCALAR:
            if isinstance(value, datetime) and value.tzinfo is not None:
                msg = (
                    f"{schema.table_name}.{spec.column} stores naive datetimes only, "
                    f"got {value.isoformat()}; convert to naive UTC first"
                )
                raise TypeError(msg)
            row[spec.column] = value
        elif spec.kind is FieldKind.ONE:
            row[spec.column] = None if value is None else _require_id(value)
    return row


def link_rows(owner_id: int, children: Sequence[Entity]) -> list[Row]:
    """Link-table rows for an ordered one-to-many collection."""
    return [
        {"owner_id": owner_id, "child_id": _require_id(child), "position": position}
        for position, child in enumerate(children)
    ]


def decode(row: Mapping[str, Any], schema: Schema, related: RelatedEntities | None = None) -> Entity:
    """Rebuild an entity from *row*.

    Relation fields are filled from *related*; when it is ``None``, or the
    relation is declared with ``FetchStrategy.NONE``, they keep their
    model defaults. Every related entity is copied so that no two decoded
    owners share an instance.

    Raises:
        CodecMismatchError: If a stored value does not match the declared
            field type, or a non-nullable value is missing.
    """
    values: dict[str, Any] = {
        schema.primary_key: _check_scalar(schema, schema.field(schema.primary_key), row)
    }
    owner_id = values[schema.primary_key]

    for spec in schema.fields:
        if spec.kind is FieldKind.SCALAR:
            values[spec.name] = _check_scalar(schema, spec, row)
            continue
        if related is None or spec.fetch is FetchStrategy.NONE:
            continue

        if spec.kind is FieldKind.ONE:
            values[spec.name] = _resolve_one(schema, spec, row, related)
        else:
            children = related.many.get(spec.name, {}).get(owner_id, [])
            values[spec.name] = [child.model_copy(deep=True) for child in children]

    return schema.entity_type.model_validate(values)


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------


def _resolve_one(
    schema: Schema,
    spec: FieldSpec,
    row: Mapping[str, Any],
    related: RelatedEntities,
) -> Entity | None:
    assert spec.column is not None
    key = row.get(spec.column)
    if key is None:
        if spec.nullable:
            return None
        raise CodecMismatchError(schema.table_name, spec.column, spec.target.__name__, None)

    child = related.one.get(spec.name, {}).get(key)
    if child is None:
        raise CodecMismatchError(
            schema.table_name, spec.column, f"reference to {spec.target.__name__}", key
        )
    return child.model_copy(deep=True)


def _check_scalar(schema: Schema, spec: FieldSpec, row: Mapping[str, Any]) -> Any:
    assert spec.column is not None
    value = row.get(spec.column)
    expected = spec.python_type

    if value is None:
        if spec.nullable:
            return None
        raise CodecMismatchError(schema.table_name, spec.column, expected.__name__, value)

    if expected is bool:
        # SQLite stores booleans as 0/1 when read without column types
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
    elif expected is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif expected is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif expected is bytes:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
    elif expected is date:
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
    elif isinstance(value, expected):
        return value

    raise CodecMismatchError(schema.table_name, spec.column, expected.__name__, value)


def _require_id(entity: Entity) -> int:
    if entity.id is None:
        msg = f"{type(entity).__name__} must be persisted before it can be referenced"
        raise ValueError(msg)
    return entity.id
