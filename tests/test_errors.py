"""Tests for the error taxonomy."""

from __future__ import annotations

from fluentorm.demo import Cat
from fluentorm.errors import (
    CodecMismatchError,
    DuplicateSchemaError,
    ExecutionError,
    FluentOrmError,
)


class TestErrors:
    def test_common_base(self) -> None:
        for error_type in (DuplicateSchemaError, CodecMismatchError, ExecutionError):
            assert issubclass(error_type, FluentOrmError)

    def test_duplicate_schema_message(self) -> None:
        error = DuplicateSchemaError("cat", Cat, "User.cats")
        assert str(error) == (
            "Table 'cat' is already mapped by fluentorm.demo.Cat; cannot map it to 'User.cats'"
        )

    def test_codec_mismatch_message(self) -> None:
        error = CodecMismatchError("user", "age", "int", "21")
        assert str(error) == "Column user.age expected int, got str ('21')"
        assert (error.table, error.column, error.expected, error.actual) == (
            "user",
            "age",
            "int",
            "21",
        )
