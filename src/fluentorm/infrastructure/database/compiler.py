"""Predicate trees compiled to SQL text plus positional parameters.

The compiler lowers :mod:`fluentorm.domain.predicates` nodes onto
SQLAlchemy Core expressions, then renders them with the backend's
dialect. The resulting :class:`CompiledQuery` carries both the rendered
text and bound values (what the query logger sees) and the executable
statement (what the backend runs). Both come from the same compilation,
so the logged text is the text that reaches the driver.

Every comparison value goes through an explicit, typed bind parameter;
nothing is inlined into the SQL text.

Dotted paths (``cat.short_name``, ``dogs.name``) compile to ``IN``
subqueries over the related table, through the link table for
one-to-many relations.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import (
    Select,
    Subquery,
    Table,
    and_,
    bindparam,
    delete,
    false,
    func,
    insert,
    not_,
    or_,
    select,
)
from sqlalchemy.dialects import sqlite
from sqlalchemy.engine import Dialect
from sqlalchemy.sql import ColumnElement, Executable

from fluentorm.domain.predicates import (
    And,
    Comparison,
    Not,
    Operator,
    Or,
    Ordering,
    Predicate,
)
from fluentorm.infrastructure.database.registry import (
    FieldKind,
    FieldSpec,
    Schema,
    SchemaRegistry,
)

OWNER_KEY = "fluentorm_owner_id"

_AGGREGATES = {
    "min": func.min,
    "max": func.max,
    "sum": func.sum,
    "average": func.avg,
}

_TEXT_OPERATORS = frozenset({Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH})


@dataclass(frozen=True)
class CompiledQuery:
    """Backend-ready query: rendered text, ordered parameters, statement."""

    text: str
    params: tuple[Any, ...]
    statement: Executable = field(compare=False, repr=False)

    @property
    def string_params(self) -> list[str]:
        """Bound values rendered as strings, in placeholder order."""
        return [str(value) for value in self.params]


class SqlCompiler:
    """Compile predicate trees against registered schemas.

    Parameters:
        registry: Source of schemas for relation paths.
        dialect: Dialect used to render text; defaults to SQLite.
    """

    def __init__(self, registry: SchemaRegistry, dialect: Dialect | None = None) -> None:
        self._registry = registry
        self._dialect = dialect if dialect is not None else sqlite.dialect()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def select(
        self,
        schema: Schema,
        predicate: Predicate | None = None,
        *,
        orderings: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> CompiledQuery:
        """``SELECT`` every column of *schema*'s table.

        Results are always ordered by primary key last, so rows come back
        in insertion order unless an explicit ordering says otherwise.
        """
        stmt = self._filtered(select(schema.table), schema, predicate)
        return self.compile(self._paged(stmt, schema, orderings, limit, offset))

    def count(
        self,
        schema: Schema,
        predicate: Predicate | None = None,
        *,
        orderings: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> CompiledQuery:
        """``SELECT count(*)`` over the matching rows, within the page if one is set."""
        if limit is None and offset is None:
            stmt = select(func.count()).select_from(schema.table)
            return self.compile(self._filtered(stmt, schema, predicate))
        pk = schema.table.c[schema.primary_key]
        page = self._page_of(pk, schema, predicate, orderings, limit, offset)
        return self.compile(select(func.count()).select_from(page))

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
    ) -> CompiledQuery:
        """``SELECT <function>(<column>)`` over the matching rows.

        *function* is one of ``min``, ``max``, ``sum``, ``average``. With a
        limit or offset the aggregate covers only that page of rows.
        """
        try:
            sql_function = _AGGREGATES[function]
        except KeyError:
            msg = f"Unknown aggregate {function!r}. Expected one of {sorted(_AGGREGATES)}"
            raise ValueError(msg) from None

        column = self._scalar_column(schema, path)
        if limit is None and offset is None:
            stmt = select(sql_function(column)).select_from(schema.table)
            return self.compile(self._filtered(stmt, schema, predicate))
        page = self._page_of(column, schema, predicate, orderings, limit, offset)
        return self.compile(select(sql_function(page.c[column.name])))

    def select_ids(
        self,
        schema: Schema,
        predicate: Predicate | None = None,
        *,
        orderings: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> CompiledQuery:
        """Primary keys of the rows matching *predicate*, in result order."""
        stmt = self._filtered(select(schema.table.c[schema.primary_key]), schema, predicate)
        return self.compile(self._paged(stmt, schema, orderings, limit, offset))

    def delete(self, schema: Schema, ids: Sequence[int]) -> list[CompiledQuery]:
        """``DELETE`` statements for the rows with primary keys *ids*, link tables first."""
        pk = schema.table.c[schema.primary_key]
        statements = [
            self.compile(
                delete(link).where(
                    link.c.owner_id.in_([_bind(link.c.owner_id, value) for value in ids])
                )
            )
            for link in schema.link_tables.values()
        ]
        statements.append(
            self.compile(delete(schema.table).where(pk.in_([_bind(pk, value) for value in ids])))
        )
        return statements

    def insert(self, table: Table, row: dict[str, Any]) -> CompiledQuery:
        """``INSERT`` of one row, as the backend will run it."""
        return self.compile(insert(table).values(**row))

    def delete_all(self, table: Table) -> CompiledQuery:
        return self.compile(delete(table))

    def select_by_ids(self, schema: Schema, ids: Sequence[int]) -> CompiledQuery:
        """Fetch rows of *schema* whose primary key is in *ids*."""
        pk = schema.table.c[schema.primary_key]
        stmt = select(schema.table).where(pk.in_([_bind(pk, value) for value in ids]))
        return self.compile(stmt.order_by(pk))

    def select_children(
        self,
        owner: Schema,
        spec: FieldSpec,
        owner_ids: Sequence[int],
    ) -> CompiledQuery:
        """Fetch one-to-many children for every owner id in one statement.

        Each row carries the owner id under :data:`OWNER_KEY`; rows are
        ordered by owner, then by stored position.
        """
        link = owner.link_tables[spec.name]
        target = self._registry.get(spec.target)
        child_pk = target.table.c[target.primary_key]
        stmt = (
            select(link.c.owner_id.label(OWNER_KEY), target.table)
            .select_from(link.join(target.table, link.c.child_id == child_pk))
            .where(link.c.owner_id.in_([_bind(link.c.owner_id, value) for value in owner_ids]))
            .order_by(link.c.owner_id, link.c.position)
        )
        return self.compile(stmt)

    def compile(self, statement: Executable) -> CompiledQuery:
        """Render *statement* into text and positional parameters."""
        compiled = statement.compile(dialect=self._dialect)
        values = compiled.construct_params()
        names = compiled.positiontup if compiled.positiontup is not None else list(values)
        return CompiledQuery(
            text=str(compiled),
            params=tuple(values[name] for name in names),
            statement=statement,
        )

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def where_clause(self, schema: Schema, predicate: Predicate) -> ColumnElement[bool]:
        """Lower a predicate tree into a SQLAlchemy boolean expression."""
        if isinstance(predicate, Comparison):
            return self._comparison(schema, predicate.path.split("."), predicate)
        if isinstance(predicate, And):
            return and_(
                self.where_clause(schema, predicate.left),
                self.where_clause(schema, predicate.right),
            )
        if isinstance(predicate, Or):
            return or_(
                self.where_clause(schema, predicate.left),
                self.where_clause(schema, predicate.right),
            )
        if isinstance(predicate, Not):
            return not_(self.where_clause(schema, predicate.operand))
        msg = f"Unknown predicate node: {predicate!r}"
        raise TypeError(msg)

    def _comparison(
        self,
        schema: Schema,
        parts: list[str],
        node: Comparison,
    ) -> ColumnElement[bool]:
        head, rest = parts[0], parts[1:]
        spec = schema.field(head)

        if rest:
            if not spec.is_relation:
                msg = f"{schema.entity_type.__name__}.{head} is not a relation"
                raise ValueError(msg)
            target = self._registry.get(spec.target)
            matching = select(target.table.c[target.primary_key]).where(
                self._comparison(target, rest, node)
            )
            if spec.kind is FieldKind.ONE:
                return schema.table.c[spec.column].in_(matching)
            link = schema.link_tables[spec.name]
            owners = select(link.c.owner_id).where(link.c.child_id.in_(matching))
            return schema.table.c[schema.primary_key].in_(owners)

        if spec.kind is FieldKind.ONE and node.op in (Operator.IS_NULL, Operator.IS_NOT_NULL):
            column = schema.table.c[spec.column]
            return column.is_(None) if node.op is Operator.IS_NULL else column.is_not(None)
        if spec.is_relation:
            msg = (
                f"{schema.entity_type.__name__}.{head} is a relation; "
                f"compare one of its fields instead (e.g. '{head}.<field>')"
            )
            raise ValueError(msg)
        if node.op in _TEXT_OPERATORS and spec.python_type is not str:
            msg = f"{node.op} requires a str field, {head!r} is {spec.python_type.__name__}"
            raise ValueError(msg)

        return _apply(schema.table.c[spec.column], node.op, node.value)

    def _scalar_column(self, schema: Schema, path: str) -> Any:
        spec = schema.field(path)
        if spec.kind is not FieldKind.SCALAR:
            msg = f"{schema.entity_type.__name__}.{path} is not a scalar field"
            raise ValueError(msg)
        return schema.table.c[spec.column]

    def _filtered(self, stmt: Select[Any], schema: Schema, predicate: Predicate | None) -> Any:
        if predicate is None:
            return stmt
        return stmt.where(self.where_clause(schema, predicate))

    def _paged(
        self,
        stmt: Select[Any],
        schema: Schema,
        orderings: Sequence[Ordering],
        limit: int | None,
        offset: int | None,
    ) -> Select[Any]:
        for ordering in orderings:
            column = self._scalar_column(schema, ordering.path)
            stmt = stmt.order_by(column.desc() if ordering.descending else column.asc())
        stmt = stmt.order_by(schema.table.c[schema.primary_key].asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        return stmt

    def _page_of(
        self,
        column: Any,
        schema: Schema,
        predicate: Predicate | None,
        orderings: Sequence[Ordering],
        limit: int | None,
        offset: int | None,
    ) -> Subquery:
        """*column* of one page of matching rows, as a subquery."""
        stmt = self._filtered(select(column), schema, predicate)
        return self._paged(stmt, schema, orderings, limit, offset).subquery()


def _bind(column: Any, value: Any) -> Any:
    return bindparam(None, value, type_=column.type)


def _apply(column: Any, op: Operator, value: Any) -> ColumnElement[bool]:
    if op is Operator.EQ:
        return column.is_(None) if value is None else column == _bind(column, value)
    if op is Operator.NE:
        return column.is_not(None) if value is None else column != _bind(column, value)
    if op is Operator.GT:
        return column > _bind(column, value)
    if op is Operator.GE:
        return column >= _bind(column, value)
    if op is Operator.LT:
        return column < _bind(column, value)
    if op is Operator.LE:
        return column <= _bind(column, value)
    if op is Operator.BETWEEN:
        low, high = value
        return column.between(_bind(column, low), _bind(column, high))
    if op is Operator.IN:
        if not value:
            return false()
        return column.in_([_bind(column, item) for item in value])
    if op is Operator.IS_NULL:
        return column.is_(None)
    if op is Operator.IS_NOT_NULL:
        return column.is_not(None)
    if op is Operator.CONTAINS:
        return column.contains(value, autoescape=True)
    if op is Operator.STARTS_WITH:
        return column.startswith(value, autoescape=True)
    if op is Operator.ENDS_WITH:
        return column.endswith(value, autoescape=True)
    msg = f"Unsupported operator: {op!r}"
    raise ValueError(msg)
