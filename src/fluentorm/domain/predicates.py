"""Predicate nodes: the immutable filter-expression tree.

A tree is built from four node kinds: :class:`Comparison` leaves and the
:class:`And`, :class:`Or`, :class:`Not` combinators. Nodes are frozen
dataclasses, so a subtree can be shared between builder snapshots without
copying.

``str(node)`` renders a fully parenthesised form that makes grouping
visible, e.g. ``((hacker = True) OR (age = 4))``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class Operator(StrEnum):
    """Comparison operators understood by the SQL compiler."""

    EQ = "="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    BETWEEN = "BETWEEN"
    IN = "IN"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS WITH"
    ENDS_WITH = "ENDS WITH"


UNARY_OPERATORS = frozenset({Operator.IS_NULL, Operator.IS_NOT_NULL})


@dataclass(frozen=True)
class Comparison:
    """Leaf node: ``<path> <op> <value>``.

    *path* is a field name, or a dotted path through relation fields
    (``"cat.short_name"``).
    """

    path: str
    op: Operator
    value: Any = None

    def __str__(self) -> str:
        if self.op in UNARY_OPERATORS:
            return f"({self.path} {self.op})"
        return f"({self.path} {self.op} {self.value!r})"


@dataclass(frozen=True)
class And:
    left: Predicate
    right: Predicate

    def __str__(self) -> str:
        return f"({self.left} AND {self.right})"


@dataclass(frozen=True)
class Or:
    left: Predicate
    right: Predicate

    def __str__(self) -> str:
        return f"({self.left} OR {self.right})"


@dataclass(frozen=True)
class Not:
    operand: Predicate

    def __str__(self) -> str:
        return f"(NOT {self.operand})"


Predicate = Comparison | And | Or | Not


def combine(left: Predicate | None, right: Predicate, *, disjunction: bool) -> Predicate:
    """Attach *right* to *left*, making the whole of *left* the left operand."""
    if left is None:
        return right
    if disjunction:
        return Or(left, right)
    return And(left, right)


@dataclass(frozen=True)
class Ordering:
    """``ORDER BY`` term on a scalar field of the queried entity."""

    path: str
    descending: bool = False
