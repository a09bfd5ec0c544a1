"""Error taxonomy for fluentorm.

Every failure the core surfaces to callers derives from
:class:`FluentOrmError`. None of them are retried by the library.
Programming mistakes (unknown fields, unsupported annotations,
unregistered entities) use the builtin ``TypeError`` / ``KeyError`` /
``ValueError`` instead.
"""

from __future__ import annotations

from typing import Any


class FluentOrmError(Exception):
    """Base class for all fluentorm errors."""


class DuplicateSchemaError(FluentOrmError):
    """A different mapping already claims the same table name."""

    def __init__(self, table_name: str, existing: Any, incoming: Any) -> None:
        self.table_name = table_name
        self.existing = existing
        self.incoming = incoming
        msg = (
            f"Table {table_name!r} is already mapped by {_describe(existing)}; "
            f"cannot map it to {_describe(incoming)}"
        )
        super().__init__(msg)


class CodecMismatchError(FluentOrmError):
    """A stored value's type disagrees with the schema's declared type."""

    def __init__(self, table: str, column: str, expected: str, actual: Any) -> None:
        self.table = table
        self.column = column
        self.expected = expected
        self.actual = actual
        msg = (
            f"Column {table}.{column} expected {expected}, "
            f"got {type(actual).__name__} ({actual!r})"
        )
        super().__init__(msg)


class ExecutionError(FluentOrmError):
    """The storage backend failed while running a statement."""


def _describe(obj: Any) -> str:
    if isinstance(obj, type):
        return f"{obj.__module__}.{obj.__qualname__}"
    return repr(obj)
