"""Fluent, immutable query builder.

Every call returns a new :class:`Query`; the receiver is never modified,
so a partially built query can be reused as the prefix of several
others::

    hackers = orm.select(User).hacker.is_true()
    young_hackers = hackers.and_().age.less_than(25)
    hackers_or_four = hackers.or_().age.equals_to(4)

Grouping is strictly left-to-right in call order. A connector always
takes the whole expression built so far as its left operand, so

    a.and_().b.or_().c   ->   ((a AND b) OR c)

Use :meth:`Query.group` for an explicitly parenthesised operand. Two
terms with no connector between them are joined with AND.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Generic, Literal, TypeVar

from fluentorm.domain.entity import Entity
from fluentorm.domain.predicates import Comparison, Not, Operator, Ordering, Predicate, combine

if TYPE_CHECKING:
    from fluentorm.infrastructure.database.compiler import CompiledQuery
    from fluentorm.infrastructure.database.registry import Schema
    from fluentorm.services.executor import Executor

E = TypeVar("E", bound=Entity)

Connector = Literal["and", "or"]


@dataclass(frozen=True)
class Query(Generic[E]):
    """An immutable query over one entity type.

    Fields are reached with :meth:`field` or attribute access
    (``query.age``); fields whose names clash with a ``Query`` method are
    only reachable through :meth:`field`.
    """

    _executor: Executor
    _schema: Schema
    predicate: Predicate | None = None
    orderings: tuple[Ordering, ...] = ()
    _connector: Connector | None = None
    _negate: bool = False
    _limit: int | None = None
    _offset: int | None = None

    def __getattr__(self, name: str) -> FieldRef[E]:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self.field(name)
        except ValueError as exc:
            raise AttributeError(str(exc)) from None

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def field(self, path: str) -> FieldRef[E]:
        """Start a comparison on *path* (``"age"``, ``"cat.short_name"``).

        Raises:
            ValueError: If a path segment is not a field, or a non-final
                segment is not a relation.
        """
        schema = self._schema
        parts = path.split(".")
        for depth, part in enumerate(parts):
            spec = schema.field(part)
            if depth < len(parts) - 1:
                if not spec.is_relation:
                    msg = f"{schema.entity_type.__name__}.{part} is not a relation"
                    raise ValueError(msg)
                schema = self._executor.registry.get(spec.target)
        return FieldRef(self, path)

    def and_(self) -> Query[E]:
        return self._connect("and")

    def or_(self) -> Query[E]:
        return self._connect("or")

    def not_(self) -> Query[E]:
        """Negate the next term."""
        return replace(self, _negate=not self._negate)

    def group(self, build: Callable[[Query[E]], Query[E]]) -> Query[E]:
        """Add a parenthesised sub-expression as the next term.

        *build* receives an empty query over the same entity and returns
        the sub-expression::

            orm.select(User).hacker.is_true().and_().group(
                lambda q: q.age.equals_to(21).or_().age.equals_to(30)
            )
        """
        sub = build(self._blank())
        sub._check_complete()
        if sub.predicate is None:
            msg = "group() built an empty expression"
            raise ValueError(msg)
        return self._add(sub.predicate)

    def where(self, predicate: Predicate) -> Query[E]:
        """Add a prebuilt predicate tree as the next term."""
        return self._add(predicate)

    def order_by(self, path: str, *, descending: bool = False) -> Query[E]:
        self._schema.field(path)
        return replace(self, orderings=(*self.orderings, Ordering(path, descending)))

    def limit(self, count: int) -> Query[E]:
        if count < 0:
            msg = f"limit must be >= 0, got {count}"
            raise ValueError(msg)
        return replace(self, _limit=count)

    def offset(self, count: int) -> Query[E]:
        if count < 0:
            msg = f"offset must be >= 0, got {count}"
            raise ValueError(msg)
        return replace(self, _offset=count)

    # ------------------------------------------------------------------
    # Terminals
    # ------------------------------------------------------------------

    def compile(self) -> CompiledQuery:
        """Compile without executing."""
        self._check_complete()
        return self._executor.compiler.select(self._schema, self.predicate, **self._paging())

    def as_list(self) -> list[E]:
        """Compile, execute, and return every matching entity."""
        self._check_complete()
        return self._executor.fetch(  # type: ignore[return-value]
            self._schema, self.predicate, **self._paging()
        )

    def iterate(self) -> Iterator[E]:
        self._check_complete()
        return self._executor.stream(  # type: ignore[return-value]
            self._schema, self.predicate, **self._paging()
        )

    def first(self) -> E | None:
        results = self.limit(1).as_list()
        return results[0] if results else None

    def count(self) -> int:
        self._check_complete()
        return self._executor.count(self._schema, self.predicate, **self._paging())

    def min(self, path: str) -> Any:
        return self._aggregate("min", path)

    def max(self, path: str) -> Any:
        return self._aggregate("max", path)

    def sum(self, path: str) -> Any:
        return self._aggregate("sum", path)

    def average(self, path: str) -> Any:
        return self._aggregate("average", path)

    def delete(self) -> int:
        """Delete every matching entity; return how many were removed.

        With a limit or offset only that page of matches is deleted, taken
        in the same order :meth:`as_list` would return them.
        """
        self._check_complete()
        return self._executor.delete(self._schema, self.predicate, **self._paging())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _connect(self, connector: Connector) -> Query[E]:
        if self.predicate is None:
            msg = f"{connector}_() needs a term before it"
            raise ValueError(msg)
        if self._connector is not None:
            msg = f"{connector}_() cannot follow {self._connector}_()"
            raise ValueError(msg)
        if self._negate:
            msg = f"{connector}_() cannot follow not_()"
            raise ValueError(msg)
        return replace(self, _connector=connector)

    def _add(self, term: Predicate) -> Query[E]:
        if self._negate:
            term = Not(term)
        tree = combine(self.predicate, term, disjunction=self._connector == "or")
        return replace(self, predicate=tree, _connector=None, _negate=False)

    def _blank(self) -> Query[E]:
        return Query(self._executor, self._schema)

    def _check_complete(self) -> None:
        if self._connector is not None:
            msg = f"Query ends with a dangling {self._connector}_()"
            raise ValueError(msg)
        if self._negate:
            msg = "Query ends with a dangling not_()"
            raise ValueError(msg)

    def _aggregate(self, function: str, path: str) -> Any:
        self._check_complete()
        return self._executor.aggregate(
            self._schema, function, path, self.predicate, **self._paging()
        )

    def _paging(self) -> dict[str, Any]:
        return {"orderings": self.orderings, "limit": self._limit, "offset": self._offset}


@dataclass(frozen=True)
class FieldRef(Generic[E]):
    """A field of a query awaiting its comparator."""

    query: Query[E]
    path: str

    def _compare(self, op: Operator, value: Any = None) -> Query[E]:
        return self.query._add(Comparison(self.path, op, value))

    def equals_to(self, value: Any) -> Query[E]:
        return self._compare(Operator.EQ, value)

    def not_equals_to(self, value: Any) -> Query[E]:
        return self._compare(Operator.NE, value)

    def greater_than(self, value: Any) -> Query[E]:
        return self._compare(Operator.GT, value)

    def greater_or_equal(self, value: Any) -> Query[E]:
        return self._compare(Operator.GE, value)

    def less_than(self, value: Any) -> Query[E]:
        return self._compare(Operator.LT, value)

    def less_or_equal(self, value: Any) -> Query[E]:
        return self._compare(Operator.LE, value)

    def between(self, low: Any, high: Any) -> Query[E]:
        """Inclusive range."""
        return self._compare(Operator.BETWEEN, (low, high))

    def in_(self, values: Any) -> Query[E]:
        return self._compare(Operator.IN, tuple(values))

    def is_true(self) -> Query[E]:
        return self._compare(Operator.EQ, True)

    def is_false(self) -> Query[E]:
        return self._compare(Operator.EQ, False)

    def is_null(self) -> Query[E]:
        return self._compare(Operator.IS_NULL)

    def is_not_null(self) -> Query[E]:
        return self._compare(Operator.IS_NOT_NULL)

    def contains(self, text: str) -> Query[E]:
        return self._compare(Operator.CONTAINS, text)

    def starts_with(self, text: str) -> Query[E]:
        return self._compare(Operator.STARTS_WITH, text)

    def ends_with(self, text: str) -> Query[E]:
        return self._compare(Operator.ENDS_WITH, text)
