"""Pluggy hook specifications for fluentorm observers.

A query logger is any object implementing :meth:`QueryLoggerSpec.on_query`
with the ``@hookimpl`` marker below. Plain callables are adapted by
:class:`~fluentorm.plugins.query_logger.QueryLoggerSlot`.
"""

from __future__ import annotations

import pluggy

PROJECT_NAME = "fluentorm"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class QueryLoggerSpec:
    """Hook specifications for query observation."""

    @hookspec
    def on_query(self, query: str, params: list[str]) -> None:
        """Called with the compiled query text and its bound parameters.

        Invoked synchronously, immediately before the statement reaches
        the storage backend, while the executor holds its lock. An
        implementation must not issue queries through the same Orm.
        """
