"""Single-slot query logger hook.

The slot holds at most one observer at a time; setting a new one
replaces the previous. Observers are dispatched through a private pluggy
``PluginManager`` so hook objects written against
:class:`~fluentorm.plugins.hookspecs.QueryLoggerSpec` and plain
``(query, params)`` callables behave the same.

INVARIANT: Logger failures are swallowed, never propagated to the query.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import pluggy
import structlog

from fluentorm.plugins.hookspecs import PROJECT_NAME, QueryLoggerSpec, hookimpl

if TYPE_CHECKING:
    from fluentorm.infrastructure.database.compiler import CompiledQuery

QueryHook = Callable[[str, list[str]], Any] | object

logger = logging.getLogger(__name__)

_SLOT_NAME = "query_logger"


class _CallableLogger:
    """Adapts a ``(query, params)`` callable to the ``on_query`` hookspec."""

    def __init__(self, fn: Callable[[str, list[str]], Any]) -> None:
        self.fn = fn

    @hookimpl
    def on_query(self, query: str, params: list[str]) -> None:
        self.fn(query, params)


class StructlogQueryLogger:
    """Ready-made hook that emits each query as a structlog debug event."""

    def __init__(self, logger_name: str = "fluentorm.query") -> None:
        self._log = structlog.get_logger(logger_name)

    @hookimpl
    def on_query(self, query: str, params: list[str]) -> None:
        self._log.debug("query", sql=query, params=params)


class QueryLoggerSlot:
    """Holds the current query logger and notifies it.

    Parameters:
        hook: Initial observer, or None for an empty slot.
    """

    def __init__(self, hook: QueryHook | None = None) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(QueryLoggerSpec)
        self._hook: QueryHook | None = None
        self._plugin: object | None = None
        self.set(hook)

    @property
    def hook(self) -> QueryHook | None:
        """The observer as it was passed to :meth:`set`."""
        return self._hook

    def set(self, hook: QueryHook | None) -> None:
        """Replace the current observer; ``None`` empties the slot."""
        if self._plugin is not None:
            self._pm.unregister(self._plugin)
            self._plugin = None
            self._hook = None
        if hook is None:
            return

        if _has_hook_impl(hook):
            plugin = hook
        elif callable(hook):
            plugin = _CallableLogger(hook)
        else:
            msg = f"Query logger must be callable or implement on_query, got {hook!r}"
            raise TypeError(msg)

        self._pm.register(plugin, name=_SLOT_NAME)
        self._plugin = plugin
        self._hook = hook

    def notify(self, query: CompiledQuery) -> None:
        """Send *query*'s text and parameters to the observer (best-effort)."""
        if self._plugin is None:
            return
        try:
            self._pm.hook.on_query(query=query.text, params=query.string_params)
        except Exception:
            logger.debug("Query logger failed for %s", query.text, exc_info=True)


def _has_hook_impl(obj: object) -> bool:
    """Check whether *obj* carries an ``@hookimpl``-decorated ``on_query``.

    Pluggy's ``HookimplMarker("fluentorm")`` sets a ``fluentorm_impl``
    attribute on decorated methods.
    """
    method = getattr(obj, "on_query", None)
    return callable(method) and getattr(method, f"{PROJECT_NAME}_impl", None) is not None
