"""Pluggy-based observer hooks."""

from fluentorm.plugins.hookspecs import hookimpl
from fluentorm.plugins.query_logger import QueryLoggerSlot, StructlogQueryLogger

__all__ = ["QueryLoggerSlot", "StructlogQueryLogger", "hookimpl"]
