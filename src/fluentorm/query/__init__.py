"""Fluent query construction."""

from fluentorm.query.builder import FieldRef, Query

__all__ = ["FieldRef", "Query"]
