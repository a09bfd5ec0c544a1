"""Execution services that drive the storage backend."""

from fluentorm.services.executor import ExecutionState, Executor

__all__ = ["ExecutionState", "Executor"]
